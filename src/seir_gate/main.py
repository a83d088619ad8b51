"""
Configuration and Types for SEIR Gate

Check outcomes, gate aggregates, the badge model and the per-run context.
"""

import os
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional


EXIT_PASS = 0
EXIT_ERROR = 1
EXIT_FAIL = 2

DEFAULT_REGION = "us-east-1"
DEFAULT_QUERY_TIMEOUT_S = 20.0

BADGE_MEANING = "GREEN=all pass, YELLOW=pass with warnings, RED=one or more failures"


class Severity(Enum):
    """Outcome of a single check"""
    PASS = "PASS"
    FAIL = "FAIL"
    WARN = "WARN"
    INFO = "INFO"
    ERROR = "ERROR"  # query could not complete (timeout)


class GateStatus(Enum):
    """Aggregate verdict of a gate or a combined run"""
    PASS = "PASS"
    FAIL = "FAIL"


class Badge(Enum):
    """Human-facing summary of a combined run"""
    GREEN = "GREEN"
    YELLOW = "YELLOW"
    RED = "RED"


class GateExecutionError(Exception):
    """The run cannot produce a verdict at all (exit code 1)"""
    pass


class ConfigError(GateExecutionError):
    """Required parameter missing or a parameter is malformed"""
    pass


def now_utc() -> str:
    """Current time as an ISO-8601 UTC timestamp"""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class CheckResult:
    """One atomic piece of evidence produced by a check"""
    id: str
    message: str
    severity: Severity

    @classmethod
    def passed(cls, check_id: str, message: str) -> "CheckResult":
        return cls(check_id, message, Severity.PASS)

    @classmethod
    def failed(cls, check_id: str, message: str) -> "CheckResult":
        return cls(check_id, message, Severity.FAIL)

    @classmethod
    def warning(cls, check_id: str, message: str) -> "CheckResult":
        return cls(check_id, message, Severity.WARN)

    @classmethod
    def info(cls, check_id: str, message: str) -> "CheckResult":
        return cls(check_id, message, Severity.INFO)

    @classmethod
    def error(cls, check_id: str, message: str) -> "CheckResult":
        return cls(check_id, message, Severity.ERROR)

    @property
    def line(self) -> str:
        """Transcript line, e.g. ``PASS: secret exists``"""
        return f"{self.severity.value}: {self.message}"

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "severity": self.severity.value,
            "message": self.message,
        }


@dataclass
class GateResult:
    """
    Ordered checks of one gate invocation plus the facts it resolved.

    Status and exit code are always derived from the checks, never stored.
    """
    gate_name: str
    checks: List[CheckResult] = field(default_factory=list)
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp_utc: str = field(default_factory=now_utc)
    duration_ms: int = 0

    def _with(self, severity: Severity) -> List[CheckResult]:
        return [c for c in self.checks if c.severity is severity]

    @property
    def failures(self) -> List[CheckResult]:
        return self._with(Severity.FAIL)

    @property
    def warnings(self) -> List[CheckResult]:
        return self._with(Severity.WARN)

    @property
    def errors(self) -> List[CheckResult]:
        return self._with(Severity.ERROR)

    @property
    def status(self) -> GateStatus:
        return GateStatus.FAIL if self.failures else GateStatus.PASS

    @property
    def errored(self) -> bool:
        return bool(self.errors)

    @property
    def exit_code(self) -> int:
        if self.errored:
            return EXIT_ERROR
        return EXIT_FAIL if self.status is GateStatus.FAIL else EXIT_PASS


def derive_badge(gates: List[GateResult]) -> Badge:
    """RED on any failure, YELLOW on any warning, GREEN otherwise"""
    if any(g.status is GateStatus.FAIL for g in gates):
        return Badge.RED
    if any(len(g.warnings) > 0 for g in gates):
        return Badge.YELLOW
    return Badge.GREEN


@dataclass
class CombinedResult:
    """Merged outcome of every gate in a run"""
    gates: List[GateResult] = field(default_factory=list)
    timestamp_utc: str = field(default_factory=now_utc)

    @property
    def status(self) -> GateStatus:
        if any(g.status is GateStatus.FAIL for g in self.gates):
            return GateStatus.FAIL
        return GateStatus.PASS

    @property
    def exit_code(self) -> int:
        if any(g.errored for g in self.gates):
            return EXIT_ERROR
        return EXIT_FAIL if self.status is GateStatus.FAIL else EXIT_PASS

    @property
    def badge(self) -> Badge:
        return derive_badge(self.gates)

    def gate(self, name: str) -> Optional[GateResult]:
        for result in self.gates:
            if result.gate_name == name:
                return result
        return None


# =========================================================================
# Run configuration
# =========================================================================

def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


def parse_int(name: str, value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer (got {value!r})")


def parse_port(name: str, value: Any) -> Optional[int]:
    port = parse_int(name, value)
    if port is not None and not 1 <= port <= 65535:
        raise ConfigError(f"{name} must be a port between 1 and 65535 (got {port})")
    return port


def parse_float(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number (got {value!r})")


@dataclass
class GateToggles:
    """Feature toggles; each one can only add checks or strictness"""
    require_rotation: bool = False
    check_policy_wildcard: bool = True
    check_value_read: bool = False
    check_private_subnets: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


# env var -> (attribute, kind)
_ENV_FIELDS = {
    "REGION": ("region", "str"),
    "INSTANCE_ID": ("instance_id", "str"),
    "SECRET_ID": ("secret_id", "str"),
    "DB_ID": ("db_id", "str"),
    "EXPECTED_ROLE_NAME": ("expected_role_name", "str"),
    "DB_PORT": ("db_port_override", "port"),
    "QUERY_TIMEOUT_S": ("query_timeout_s", "float"),
    "AWS_PROFILE": ("aws_profile", "str"),
    "OUT_JSON": ("out_path", "path"),
}

_ENV_TOGGLES = {
    "REQUIRE_ROTATION": "require_rotation",
    "CHECK_SECRET_POLICY_WILDCARD": "check_policy_wildcard",
    "CHECK_SECRET_VALUE_READ": "check_value_read",
    "CHECK_PRIVATE_SUBNETS": "check_private_subnets",
}


@dataclass
class RunContext:
    """
    Resolved identifiers and toggles for one invocation.

    Never persisted. Layering is YAML file < environment < CLI flags.
    """
    region: str = DEFAULT_REGION
    instance_id: str = ""
    secret_id: str = ""
    db_id: str = ""
    expected_role_name: Optional[str] = None
    db_port_override: Optional[int] = None
    toggles: GateToggles = field(default_factory=GateToggles)
    query_timeout_s: float = DEFAULT_QUERY_TIMEOUT_S
    aws_profile: Optional[str] = None
    out_path: Optional[Path] = None

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        base: Optional["RunContext"] = None,
    ) -> "RunContext":
        """Load context from environment variables, on top of ``base``"""
        environ = os.environ if environ is None else environ
        ctx = replace(base) if base else cls()
        ctx.toggles = replace(ctx.toggles)

        for env_name, (attr, kind) in _ENV_FIELDS.items():
            raw = environ.get(env_name)
            if raw is None or raw == "":
                continue
            setattr(ctx, attr, _coerce(env_name, raw, kind))

        for env_name, attr in _ENV_TOGGLES.items():
            raw = environ.get(env_name)
            if raw:
                setattr(ctx.toggles, attr, parse_bool(raw))

        return ctx

    @classmethod
    def from_yaml(cls, path: str) -> "RunContext":
        """Load context from a YAML file"""
        import yaml

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot load config {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"{path}: expected a mapping at top level")

        raw_toggles = data.pop("toggles", None) or {}
        if not isinstance(raw_toggles, dict):
            raise ConfigError(f"{path}: toggles must be a mapping")

        toggles = GateToggles()
        for key, raw in raw_toggles.items():
            if not hasattr(toggles, key):
                raise ConfigError(f"{path}: unknown toggle {key!r}")
            if raw is not None:
                setattr(toggles, key, parse_bool(raw))

        kinds = {attr: kind for attr, kind in _ENV_FIELDS.values()}
        values: Dict[str, Any] = {}
        for key, raw in data.items():
            if key not in kinds:
                raise ConfigError(f"{path}: unknown config key {key!r}")
            # an empty key leaves the default in place
            if raw is None or raw == "":
                continue
            values[key] = _coerce(key, raw, kinds[key])

        return cls(toggles=toggles, **values)

    def require(self, *names: str) -> None:
        """Raise ConfigError naming every required identifier that is blank"""
        missing = [n for n in names if not getattr(self, n)]
        if missing:
            env_names = {attr: env for env, (attr, _) in _ENV_FIELDS.items()}
            listed = ", ".join(env_names.get(n, n.upper()) for n in missing)
            raise ConfigError(f"{listed} {'is' if len(missing) == 1 else 'are'} required.")

    def inputs(self) -> Dict[str, str]:
        return {
            "instance_id": self.instance_id,
            "secret_id": self.secret_id,
            "db_id": self.db_id,
        }


def _coerce(name: str, raw: Any, kind: str) -> Any:
    if kind == "int":
        return parse_int(name, raw)
    if kind == "port":
        return parse_port(name, raw)
    if kind == "float":
        return parse_float(name, raw)
    if kind == "path":
        return Path(str(raw))
    return str(raw)
