"""
SEIR Gate CLI

Command-line entry points for the individual gates and the combined run.
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from . import __version__
from .cloud import CloudStateReader, SnapshotStateReader
from .logging_config import get_logger, setup_logging
from .main import GateExecutionError, RunContext, parse_port
from .orchestrator import DEFAULT_GATES, GateOrchestrator
from .output import (
    COMBINED_RESULT_FILE,
    ConsoleFormatter,
    OutputLevel,
    build_combined_report,
    build_gate_report,
    default_result_file,
    write_report,
)

logger = get_logger("cli")

ENV_HELP = """
environment:
  REGION                        AWS region (default us-east-1)
  INSTANCE_ID                   EC2 instance id
  SECRET_ID                     Secrets Manager secret id or ARN
  DB_ID                         RDS DB instance identifier
  REQUIRE_ROTATION              true to FAIL when rotation is disabled
  CHECK_SECRET_POLICY_WILDCARD  false to skip the wildcard policy check
  CHECK_SECRET_VALUE_READ       true to test reading the secret value on-instance
  EXPECTED_ROLE_NAME            role the instance profile must resolve to
  CHECK_PRIVATE_SUBNETS         true to FAIL on DB subnets routed to an IGW
  DB_PORT                       override the discovered DB port
  OUT_JSON                      result file path
  QUERY_TIMEOUT_S               per-query timeout in seconds (default 20)
  AWS_PROFILE                   named AWS profile

exit codes: 0 PASS, 2 FAIL, 1 ERROR
"""

EXAMPLES = {
    "secrets_and_role": (
        "example:\n"
        "  REGION=us-east-1 INSTANCE_ID=i-0123 SECRET_ID=my-db-secret seir-gate-secrets\n"
    ),
    "network_db": (
        "example:\n"
        "  REGION=us-east-1 INSTANCE_ID=i-0123 DB_ID=mydb01 seir-gate-network\n"
    ),
    "all": (
        "example:\n"
        "  REGION=us-east-1 INSTANCE_ID=i-0123 SECRET_ID=my-db-secret DB_ID=mydb01 seir-gate-all\n"
    ),
}


def _add_options(parser: argparse.ArgumentParser) -> None:
    """Options shared by every gate command"""
    target = parser.add_argument_group("targets")
    target.add_argument("--region", help="AWS region")
    target.add_argument("--instance-id", help="EC2 instance id")
    target.add_argument("--secret-id", help="Secrets Manager secret id or ARN")
    target.add_argument("--db-id", help="RDS DB instance identifier")
    target.add_argument("--expected-role", help="Expected instance role name")
    target.add_argument("--db-port", type=int, help="Override the discovered DB port")

    toggles = parser.add_argument_group("toggles")
    toggles.add_argument(
        "--require-rotation",
        dest="require_rotation",
        action="store_const",
        const=True,
        help="FAIL when secret rotation is disabled",
    )
    toggles.add_argument(
        "--no-policy-wildcard-check",
        dest="check_policy_wildcard",
        action="store_const",
        const=False,
        help="Skip the wildcard-principal policy check",
    )
    toggles.add_argument(
        "--check-value-read",
        dest="check_value_read",
        action="store_const",
        const=True,
        help="Verify the secret value can be read (on-instance only)",
    )
    toggles.add_argument(
        "--check-private-subnets",
        dest="check_private_subnets",
        action="store_const",
        const=True,
        help="FAIL when a DB subnet routes to an internet gateway",
    )

    run = parser.add_argument_group("run")
    run.add_argument("--out", help="Result JSON path")
    run.add_argument("--timeout", type=float, help="Per-query timeout in seconds")
    run.add_argument("--profile", help="Named AWS profile")
    run.add_argument(
        "--snapshot",
        help="Read cloud state from a recorded YAML/JSON snapshot instead of AWS",
    )
    run.add_argument("--config", help="YAML config file (lowest precedence)")

    parser.add_argument(
        "--verbose", "-v",
        action="count",
        default=0,
        help="Increase verbosity",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Quiet mode",
    )
    parser.add_argument(
        "--log-file",
        help="Log to file",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output",
    )


class GateArgumentParser(argparse.ArgumentParser):
    """Usage errors are run errors (exit 1), never a gate FAIL (exit 2)"""

    def error(self, message: str):
        self.print_usage(sys.stderr)
        self.exit(1, f"ERROR: {message}\n")


def build_parser(prog: str, description: str, example: str) -> argparse.ArgumentParser:
    parser = GateArgumentParser(
        prog=prog,
        description=description,
        epilog=ENV_HELP + "\n" + example,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    _add_options(parser)
    return parser


def resolve_context(args: argparse.Namespace) -> RunContext:
    """Layer YAML config, then environment, then CLI flags"""
    base = RunContext.from_yaml(args.config) if args.config else None
    ctx = RunContext.from_env(base=base)

    overrides = {
        "region": args.region,
        "instance_id": args.instance_id,
        "secret_id": args.secret_id,
        "db_id": args.db_id,
        "expected_role_name": args.expected_role,
        "db_port_override": parse_port("--db-port", args.db_port),
        "query_timeout_s": args.timeout,
        "aws_profile": args.profile,
        "out_path": Path(args.out) if args.out else None,
    }
    for attr, value in overrides.items():
        if value is not None:
            setattr(ctx, attr, value)

    for attr in ("require_rotation", "check_policy_wildcard", "check_value_read", "check_private_subnets"):
        value = getattr(args, attr)
        if value is not None:
            setattr(ctx.toggles, attr, value)

    return ctx


def make_reader(ctx: RunContext, snapshot: Optional[str]) -> CloudStateReader:
    if snapshot:
        return SnapshotStateReader.from_file(snapshot)

    from .cloud.aws import AwsStateReader

    return AwsStateReader(
        region=ctx.region,
        profile=ctx.aws_profile,
        timeout_s=ctx.query_timeout_s,
    )


def _setup(args: argparse.Namespace) -> ConsoleFormatter:
    log_level = "DEBUG" if args.verbose >= 2 else ("INFO" if args.verbose >= 1 else "WARNING")
    if args.quiet:
        log_level = "ERROR"

    setup_logging(
        level=log_level,
        log_file=args.log_file,
        use_colors=not args.no_color,
    )

    output_level = OutputLevel.DEBUG if args.verbose >= 2 else (
        OutputLevel.VERBOSE if args.verbose >= 1 else (
            OutputLevel.QUIET if args.quiet else OutputLevel.NORMAL
        )
    )
    return ConsoleFormatter(level=output_level, use_colors=not args.no_color)


async def run_gates(
    args: argparse.Namespace,
    gate_names: Sequence[str],
    formatter: ConsoleFormatter,
    combined: bool,
) -> int:
    """Run the selected gates, print transcripts and write reports"""
    ctx = resolve_context(args)
    reader = make_reader(ctx, args.snapshot)
    orchestrator = GateOrchestrator(reader, gate_names)

    if combined:
        out_path = ctx.out_path or Path(COMBINED_RESULT_FILE)
        result_files: Dict[str, Path] = {
            name: out_path.parent / default_result_file(name) for name in gate_names
        }
    else:
        out_path = ctx.out_path or Path(default_result_file(gate_names[0]))
        result_files = {gate_names[0]: out_path}

    total = len(gate_names)

    def on_gate_started(event: str, gate_name: str, **kwargs):
        if combined and formatter.at_least(OutputLevel.NORMAL):
            index = list(gate_names).index(gate_name) + 1
            print(f"=== Running Gate {index}/{total}: {gate_name} ===")

    orchestrator.on("gate.started", on_gate_started)

    result = await orchestrator.run(ctx)

    for gate in result.gates:
        path = write_report(result_files[gate.gate_name], build_gate_report(gate, ctx))
        formatter.gate_result(gate, ctx, result_file=path)

    if not combined:
        return result.gates[0].exit_code

    write_report(out_path, build_combined_report(result, ctx, result_files))
    formatter.combined_summary(result, result_files, out_path=out_path)
    return result.exit_code


def _run(argv: Optional[List[str]], prog: str, description: str, gate_names: Sequence[str], combined: bool) -> int:
    key = "all" if combined else gate_names[0]
    parser = build_parser(prog, description, EXAMPLES[key])
    args = parser.parse_args(argv)
    formatter = _setup(args)

    try:
        return asyncio.run(run_gates(args, gate_names, formatter, combined))
    except GateExecutionError as e:
        logger.debug(f"Run aborted: {e!r}")
        formatter.error(str(e))
        return 1
    except KeyboardInterrupt:
        formatter.error("interrupted")
        return 1


def main_secrets(argv: Optional[List[str]] = None) -> int:
    """Secrets + EC2 role gate"""
    return _run(
        argv,
        prog="seir-gate-secrets",
        description="SEIR Gate - Secrets + EC2 role verification",
        gate_names=["secrets_and_role"],
        combined=False,
    )


def main_network(argv: Optional[List[str]] = None) -> int:
    """Network + RDS gate"""
    return _run(
        argv,
        prog="seir-gate-network",
        description="SEIR Gate - EC2 to RDS network verification",
        gate_names=["network_db"],
        combined=False,
    )


def main_all(argv: Optional[List[str]] = None) -> int:
    """Every gate, plus the combined badge report"""
    return _run(
        argv,
        prog="seir-gate-all",
        description="SEIR Gate - run all gates and produce a combined badge",
        gate_names=list(DEFAULT_GATES),
        combined=True,
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point: python -m seir_gate runs every gate"""
    return main_all(argv)


if __name__ == "__main__":
    sys.exit(main())
