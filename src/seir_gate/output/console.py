"""
Console Output Formatter

Human-readable gate transcripts and the combined badge summary.
"""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .base import BaseFormatter, OutputLevel
from ..gates import GATES
from ..main import Badge, CombinedResult, GateResult, GateStatus, RunContext, Severity


def _or(value: Any, placeholder: str) -> str:
    if value is None or value == "":
        return placeholder
    return str(value)


def _header_rows(result: GateResult, ctx: RunContext) -> List[Tuple[str, str]]:
    facts = result.context
    caller = ("Caller ARN", _or(facts.get("caller_arn"), "(unknown)"))

    if result.gate_name == "secrets_and_role":
        return [
            ("Instance ID", ctx.instance_id),
            ("Secret ID", ctx.secret_id),
            ("Resolved Role", _or(facts.get("resolved_role_name"), "(none)")),
            caller,
        ]
    if result.gate_name == "network_db":
        return [
            ("EC2 Instance", ctx.instance_id),
            ("RDS Instance", ctx.db_id),
            ("Engine", _or(facts.get("engine"), "(unknown)")),
            ("DB Port", _or(facts.get("db_port"), "(unknown)")),
            caller,
        ]
    return [caller]


class ConsoleFormatter(BaseFormatter):
    """
    Console formatter with colored output.

    Uses ANSI escape codes for colors in terminal environments.
    Falls back to plain text when not in a TTY.
    """

    # ANSI color codes
    COLORS = {
        "reset": "\033[0m",
        "bold": "\033[1m",
        "dim": "\033[2m",
        "green": "\033[32m",
        "yellow": "\033[33m",
        "red": "\033[31m",
        "cyan": "\033[36m",
        "magenta": "\033[35m",
    }

    SEVERITY_COLORS = {
        Severity.PASS: "green",
        Severity.FAIL: "red",
        Severity.WARN: "yellow",
        Severity.INFO: "dim",
        Severity.ERROR: "magenta",
    }

    BADGE_COLORS = {
        Badge.GREEN: "green",
        Badge.YELLOW: "yellow",
        Badge.RED: "red",
    }

    def __init__(self, level: OutputLevel = OutputLevel.NORMAL, use_colors: bool = True):
        super().__init__(level)
        self.use_colors = use_colors and sys.stdout.isatty()

    def _c(self, color: str, text: str) -> str:
        """Apply color to text"""
        if self.use_colors:
            return f"{self.COLORS.get(color, '')}{text}{self.COLORS['reset']}"
        return text

    def _status(self, status: GateStatus) -> str:
        return self._c("green" if status is GateStatus.PASS else "red", status.value)

    def gate_result(
        self,
        result: GateResult,
        ctx: RunContext,
        result_file: Optional[Path] = None,
    ) -> None:
        """Print the full transcript of one gate"""
        gate_cls = GATES.get(result.gate_name)
        title = gate_cls.title if gate_cls else result.gate_name

        if self.at_least(OutputLevel.NORMAL):
            print()
            print(self._c("bold", f"=== SEIR Gate: {title} ==="))
            rows = [("Timestamp (UTC)", result.timestamp_utc), ("Region", ctx.region)]
            rows.extend(_header_rows(result, ctx))
            for label, value in rows:
                print(f"{label + ':':<17}{value}")
            print("-" * 47)

            for check in result.checks:
                color = self.SEVERITY_COLORS.get(check.severity, "dim")
                print(f"{self._c(color, check.severity.value)}: {check.message}")

            if result.warnings:
                print()
                print(self._c("yellow", "Warnings:"))
                for check in result.warnings:
                    print(f"  - {check.message}")

            if result.failures:
                print()
                print(self._c("red", "Failures:"))
                for check in result.failures:
                    print(f"  - {check.message}")

            if result.errors:
                print()
                print(self._c("magenta", "Errors:"))
                for check in result.errors:
                    print(f"  - {check.message}")

            if self.at_least(OutputLevel.VERBOSE):
                print()
                print(self._c("dim", "Resolved:"))
                for key, value in result.context.items():
                    print(f"  {self._c('dim', key + ':')} {value}")
                print(f"  {self._c('dim', 'duration_ms:')} {result.duration_ms}")

            print()

        print(f"RESULT: {self._status(result.status)} (exit {result.exit_code})")

        if self.at_least(OutputLevel.NORMAL):
            print("=" * 47)
            if result_file:
                print(f"Wrote: {result_file}")

    def combined_summary(
        self,
        combined: CombinedResult,
        result_files: Dict[str, Path],
        out_path: Optional[Path] = None,
    ) -> None:
        """Print the badge-style summary of every gate"""
        print()
        print(self._c("bold", "===== SEIR Combined Gate Summary ====="))

        width = max((len(g.gate_name) for g in combined.gates), default=0)
        for index, gate in enumerate(combined.gates, start=1):
            target = result_files.get(gate.gate_name)
            suffix = f"  -> {target.name}" if target else ""
            name = f"({gate.gate_name})".ljust(width + 2)
            print(f"Gate {index} {name} exit: {gate.exit_code}{suffix}")

        print("-" * 38)
        badge = combined.badge
        print(f"BADGE:  {self._c(self.BADGE_COLORS[badge], badge.value)}")
        print(f"RESULT: {self._status(combined.status)} (exit {combined.exit_code})")
        if out_path:
            print(f"Wrote:  {out_path}")
        print("=" * 38)
        print()

    def error(self, message: str) -> None:
        """Print a run-level error to stderr"""
        print(f"ERROR: {message}", file=sys.stderr)
