"""
SEIR Gate

Read-only verification gates for a deployed EC2 + Secrets Manager + RDS
stack. Each gate inspects live cloud state, emits ordered PASS/FAIL/WARN/INFO
evidence and a single verdict; the orchestrator combines gates into a
GREEN/YELLOW/RED badge with CI-friendly exit codes.
"""

__version__ = "1.0.0"

from .main import (
    Badge,
    CheckResult,
    CombinedResult,
    ConfigError,
    GateExecutionError,
    GateResult,
    GateStatus,
    GateToggles,
    RunContext,
    Severity,
    derive_badge,
)

from .cloud import (
    CloudQueryError,
    CloudStateReader,
    CredentialsUnavailableError,
    SnapshotStateReader,
)

from .gates import GATES, Gate, IdentityGate, NetworkGate
from .orchestrator import GateOrchestrator, GatePhase

__all__ = [
    # Outcomes
    "Severity",
    "GateStatus",
    "Badge",
    "CheckResult",
    "GateResult",
    "CombinedResult",
    "derive_badge",
    # Configuration
    "RunContext",
    "GateToggles",
    # Errors
    "GateExecutionError",
    "ConfigError",
    "CloudQueryError",
    "CredentialsUnavailableError",
    # Readers
    "CloudStateReader",
    "SnapshotStateReader",
    # Gates
    "Gate",
    "IdentityGate",
    "NetworkGate",
    "GATES",
    "GateOrchestrator",
    "GatePhase",
    # Meta
    "__version__",
]
