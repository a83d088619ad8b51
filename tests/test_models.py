"""
Tests for check outcomes, aggregation laws and the run configuration
"""

import pytest

from seir_gate.gates import IdentityGate, NetworkGate
from seir_gate.main import (
    Badge,
    CheckResult,
    CombinedResult,
    ConfigError,
    GateResult,
    GateStatus,
    GateToggles,
    RunContext,
    Severity,
    derive_badge,
    parse_bool,
)


def gate_with(*severities, name="g"):
    return GateResult(
        gate_name=name,
        checks=[CheckResult(f"c{i}", "m", s) for i, s in enumerate(severities)],
    )


class TestCheckResult:
    def test_line(self):
        """Should render as SEVERITY: message"""
        assert CheckResult.warning("x", "inconclusive").line == "WARN: inconclusive"

    def test_to_dict(self):
        """Should serialise id, severity and message"""
        assert CheckResult.passed("db_exists", "ok").to_dict() == {
            "id": "db_exists",
            "severity": "PASS",
            "message": "ok",
        }


class TestGateResult:
    """Tests for status and exit code derivation"""

    def test_pass_with_warnings_and_info(self):
        """Should PASS with exit 0 when nothing failed"""
        result = gate_with(Severity.PASS, Severity.WARN, Severity.INFO)
        assert result.status == GateStatus.PASS
        assert result.exit_code == 0

    def test_single_fail(self):
        """Should FAIL with exit 2 on any failure"""
        result = gate_with(Severity.PASS, Severity.FAIL)
        assert result.status == GateStatus.FAIL
        assert result.exit_code == 2

    def test_error_wins_exit_code(self):
        """Should exit 1 on an ERROR even when a check failed"""
        result = gate_with(Severity.FAIL, Severity.ERROR)
        assert result.status == GateStatus.FAIL
        assert result.exit_code == 1

    def test_empty_gate_passes(self):
        """Should PASS when no checks were recorded"""
        assert gate_with().status == GateStatus.PASS

    def test_buckets(self):
        """Should bucket checks by severity in order"""
        result = gate_with(Severity.WARN, Severity.FAIL, Severity.WARN)
        assert [c.id for c in result.warnings] == ["c0", "c2"]
        assert [c.id for c in result.failures] == ["c1"]


class TestBadge:
    """Tests for the combined badge law"""

    @pytest.mark.parametrize("gates,expected", [
        ([(Severity.PASS,), (Severity.PASS,)], Badge.GREEN),
        ([(Severity.PASS,), (Severity.WARN,)], Badge.YELLOW),
        ([(Severity.FAIL,), (Severity.WARN,)], Badge.RED),
        ([(Severity.INFO,), (Severity.PASS, Severity.FAIL)], Badge.RED),
        ([(Severity.INFO,), (Severity.INFO,)], Badge.GREEN),
    ])
    def test_badge_law(self, gates, expected):
        """Should be RED on any FAIL, else YELLOW on any WARN, else GREEN"""
        assert derive_badge([gate_with(*g) for g in gates]) == expected

    def test_warning_counted_not_measured(self):
        """Should go YELLOW for one short warning message"""
        gate = GateResult("g", checks=[CheckResult.warning("x", "w")])
        assert derive_badge([gate]) == Badge.YELLOW

    def test_combined_exit_codes(self):
        """Should exit 1 if any gate errored, else 2 on FAIL, else 0"""
        ok = gate_with(Severity.PASS, name="a")
        failed = gate_with(Severity.FAIL, name="b")
        errored = gate_with(Severity.ERROR, name="c")

        assert CombinedResult([ok, ok]).exit_code == 0
        assert CombinedResult([ok, failed]).exit_code == 2
        assert CombinedResult([failed, errored]).exit_code == 1
        assert CombinedResult([ok, failed]).gate("b") is failed
        assert CombinedResult([ok]).gate("missing") is None


class TestGateProperties:
    """Repeatability and toggle monotonicity against recorded state"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("gate_cls", [IdentityGate, NetworkGate])
    async def test_idempotent(self, gate_cls, reader, ctx):
        """Should yield identical severities for identical state"""
        first = await gate_cls(reader).run(ctx)
        second = await gate_cls(reader).run(ctx)

        assert [(c.id, c.severity) for c in first.checks] == \
            [(c.id, c.severity) for c in second.checks]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("toggle,value", [
        ("require_rotation", True),
        ("check_value_read", True),
        ("check_private_subnets", True),
        ("check_policy_wildcard", True),
    ])
    async def test_toggle_never_removes_checks(self, toggle, value, reader, ctx):
        """Should only add checks or upgrade INFO when a toggle is enabled"""
        ctx.toggles = GateToggles(check_policy_wildcard=False)
        before = []
        for gate_cls in (IdentityGate, NetworkGate):
            before.extend((await gate_cls(reader).run(ctx)).checks)

        setattr(ctx.toggles, toggle, value)
        after = []
        for gate_cls in (IdentityGate, NetworkGate):
            after.extend((await gate_cls(reader).run(ctx)).checks)

        after_ids = [c.id for c in after]
        for check in before:
            assert check.id in after_ids
        changed = [
            (b.severity, a.severity)
            for b, a in zip(before, after)
            if b.id == a.id and b.severity != a.severity
        ]
        assert all(old == Severity.INFO for old, _ in changed)


class TestParsing:
    @pytest.mark.parametrize("raw,expected", [
        ("true", True), ("TRUE", True), (" true ", True),
        ("false", False), ("1", False), ("yes", False), (True, True),
    ])
    def test_parse_bool(self, raw, expected):
        """Should only treat the literal 'true' as enabled"""
        assert parse_bool(raw) is expected


class TestRunContext:
    """Tests for configuration layering"""

    def test_defaults(self):
        """Should default region, timeout and toggles"""
        ctx = RunContext.from_env({})
        assert ctx.region == "us-east-1"
        assert ctx.query_timeout_s == 20.0
        assert ctx.toggles.check_policy_wildcard is True
        assert ctx.toggles.require_rotation is False

    def test_from_env(self):
        """Should read identifiers, overrides and toggles from the environment"""
        ctx = RunContext.from_env({
            "REGION": "eu-west-1",
            "INSTANCE_ID": "i-1",
            "SECRET_ID": "s",
            "DB_ID": "d",
            "DB_PORT": "5432",
            "REQUIRE_ROTATION": "true",
            "CHECK_SECRET_POLICY_WILDCARD": "false",
            "QUERY_TIMEOUT_S": "3.5",
        })
        assert ctx.region == "eu-west-1"
        assert ctx.db_port_override == 5432
        assert ctx.toggles.require_rotation is True
        assert ctx.toggles.check_policy_wildcard is False
        assert ctx.query_timeout_s == 3.5

    def test_env_overrides_base(self):
        """Should layer the environment over a base context without mutating it"""
        base = RunContext(region="ap-south-1", instance_id="i-base")
        ctx = RunContext.from_env({"INSTANCE_ID": "i-env"}, base=base)

        assert ctx.instance_id == "i-env"
        assert ctx.region == "ap-south-1"
        assert base.instance_id == "i-base"

    def test_bad_port(self):
        """Should reject a non-integer DB_PORT"""
        with pytest.raises(ConfigError, match="DB_PORT"):
            RunContext.from_env({"DB_PORT": "mysql"})

    def test_from_yaml(self, tmp_path):
        """Should load identifiers and nested toggles from YAML"""
        path = tmp_path / "gate.yml"
        path.write_text(
            "region: us-west-2\n"
            "instance_id: i-yaml\n"
            "db_port_override: 5432\n"
            "toggles:\n"
            "  check_private_subnets: true\n"
        )
        ctx = RunContext.from_yaml(str(path))

        assert ctx.region == "us-west-2"
        assert ctx.instance_id == "i-yaml"
        assert ctx.db_port_override == 5432
        assert ctx.toggles.check_private_subnets is True

    def test_yaml_unknown_key(self, tmp_path):
        """Should reject unknown config keys"""
        path = tmp_path / "gate.yml"
        path.write_text("instance: i-typo\n")
        with pytest.raises(ConfigError, match="instance"):
            RunContext.from_yaml(str(path))

    def test_yaml_unknown_toggle(self, tmp_path):
        path = tmp_path / "gate.yml"
        path.write_text("toggles:\n  check_everything: true\n")
        with pytest.raises(ConfigError, match="check_everything"):
            RunContext.from_yaml(str(path))

    def test_yaml_empty_values_keep_defaults(self, tmp_path):
        """Should treat keys left empty in YAML as unset"""
        path = tmp_path / "gate.yml"
        path.write_text(
            "region:\n"
            "expected_role_name:\n"
            "aws_profile:\n"
            "out_path:\n"
            "toggles:\n"
            "  check_policy_wildcard:\n"
        )
        ctx = RunContext.from_yaml(str(path))

        assert ctx.region == "us-east-1"
        assert ctx.expected_role_name is None
        assert ctx.aws_profile is None
        assert ctx.out_path is None
        assert ctx.toggles.check_policy_wildcard is True

    @pytest.mark.parametrize("body", ["toggles:\n  - require_rotation\n", "toggles: yes\n"])
    def test_yaml_toggles_must_be_mapping(self, tmp_path, body):
        """Should raise ConfigError when toggles is not a mapping"""
        path = tmp_path / "gate.yml"
        path.write_text(body)
        with pytest.raises(ConfigError, match="toggles must be a mapping"):
            RunContext.from_yaml(str(path))

    @pytest.mark.parametrize("port", ["0", "-1", "70000"])
    def test_port_out_of_range(self, port):
        """Should reject a DB_PORT outside 1-65535"""
        with pytest.raises(ConfigError, match="between 1 and 65535"):
            RunContext.from_env({"DB_PORT": port})

    def test_yaml_missing_file(self, tmp_path):
        """Should raise ConfigError for a missing config file"""
        with pytest.raises(ConfigError):
            RunContext.from_yaml(str(tmp_path / "absent.yml"))

    def test_require_lists_all_missing(self):
        """Should name every missing identifier"""
        ctx = RunContext(instance_id="i-1")
        with pytest.raises(ConfigError, match="SECRET_ID, DB_ID are required"):
            ctx.require("instance_id", "secret_id", "db_id")
