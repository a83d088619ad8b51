"""
Structured Gate Reports

Machine-readable JSON records for each gate and for the combined run. The
records carry inputs, resolved facts, toggles and every check, but never a
credential payload: readers only ever report whether a read succeeded.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from ..gates import GATES
from ..main import (
    BADGE_MEANING,
    CombinedResult,
    GateExecutionError,
    GateResult,
    RunContext,
)

logger = logging.getLogger(__name__)

COMBINED_GATE_NAME = "all_gates"
COMBINED_RESULT_FILE = "gate_result.json"

# toggles that influence each gate
_GATE_TOGGLES = {
    "secrets_and_role": ("require_rotation", "check_policy_wildcard", "check_value_read"),
    "network_db": ("check_private_subnets",),
}


class ReportWriteError(GateExecutionError):
    """A report file could not be written"""
    pass


def default_result_file(gate_name: str) -> str:
    return f"gate_{gate_name}.json"


# --- Report Models ---


class CheckEntry(BaseModel):
    """One check outcome as recorded in a report"""

    id: str = Field(..., description="Stable check identifier")
    severity: str = Field(..., description="PASS, FAIL, WARN, INFO or ERROR")
    message: str = Field(..., description="Human-readable evidence")


class GateReport(BaseModel):
    """Structured record of one gate run"""

    gate: str = Field(..., description="Gate name")
    timestamp_utc: str = Field(..., description="ISO-8601 UTC time the gate started")
    region: str
    inputs: Dict[str, str] = Field(
        default_factory=dict, description="Identifiers the gate was run against"
    )
    resolved: Dict[str, Any] = Field(
        default_factory=dict, description="Facts resolved while checking"
    )
    toggles: Dict[str, bool] = Field(default_factory=dict)
    status: str = Field(..., description="PASS or FAIL")
    exit_code: int = Field(..., description="0 pass, 2 fail, 1 error")
    checks: List[CheckEntry] = Field(default_factory=list)
    details: List[str] = Field(
        default_factory=list, description="Transcript lines in check order"
    )
    warnings: List[str] = Field(default_factory=list)
    failures: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    duration_ms: int = 0


class ChildGateEntry(BaseModel):
    """Pointer from a combined report to one child gate report"""

    name: str
    exit_code: int
    result_file: str = Field(..., description="File name of the child report")


class BadgeInfo(BaseModel):
    """Badge colour and its legend"""

    status: str = Field(..., description="GREEN, YELLOW or RED")
    meaning: str = BADGE_MEANING


class CombinedReport(BaseModel):
    """Structured record of a combined run"""

    gate: str = COMBINED_GATE_NAME
    timestamp_utc: str
    region: str
    inputs: Dict[str, str] = Field(default_factory=dict)
    child_gates: List[ChildGateEntry] = Field(default_factory=list)
    badge: BadgeInfo
    status: str
    exit_code: int


# --- Builders ---


def build_gate_report(result: GateResult, ctx: RunContext) -> GateReport:
    """Build the structured record for one gate"""
    gate_cls = GATES.get(result.gate_name)
    input_names = gate_cls.required_inputs if gate_cls else ()
    all_inputs = ctx.inputs()
    toggles = ctx.toggles.to_dict()
    toggle_names = _GATE_TOGGLES.get(result.gate_name, tuple(toggles))

    return GateReport(
        gate=result.gate_name,
        timestamp_utc=result.timestamp_utc,
        region=ctx.region,
        inputs={name: all_inputs.get(name, "") for name in input_names},
        resolved=dict(result.context),
        toggles={name: toggles[name] for name in toggle_names},
        status=result.status.value,
        exit_code=result.exit_code,
        checks=[CheckEntry(**check.to_dict()) for check in result.checks],
        details=[check.line for check in result.checks],
        warnings=[check.message for check in result.warnings],
        failures=[check.message for check in result.failures],
        errors=[check.message for check in result.errors],
        duration_ms=result.duration_ms,
    )


def build_combined_report(
    combined: CombinedResult,
    ctx: RunContext,
    result_files: Optional[Mapping[str, Path]] = None,
) -> CombinedReport:
    """Build the combined record pointing at each child report"""
    result_files = result_files or {}
    children = []
    for gate in combined.gates:
        path = result_files.get(gate.gate_name)
        children.append(ChildGateEntry(
            name=gate.gate_name,
            exit_code=gate.exit_code,
            result_file=path.name if path else default_result_file(gate.gate_name),
        ))

    return CombinedReport(
        timestamp_utc=combined.timestamp_utc,
        region=ctx.region,
        inputs=ctx.inputs(),
        child_gates=children,
        badge=BadgeInfo(status=combined.badge.value),
        status=combined.status.value,
        exit_code=combined.exit_code,
    )


def write_report(path: Path, report: BaseModel) -> Path:
    """Write a report as indented JSON, creating parent directories"""
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(report.model_dump_json(indent=2) + "\n", encoding="utf-8")
    except OSError as e:
        raise ReportWriteError(f"Cannot write {path}: {e}") from e

    logger.debug(f"Report written to {path}")
    return path
