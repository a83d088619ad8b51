"""
Output Formatting

Console transcripts and structured JSON reports.
"""

from .base import BaseFormatter, OutputLevel
from .console import ConsoleFormatter
from .report import (
    COMBINED_RESULT_FILE,
    CombinedReport,
    GateReport,
    ReportWriteError,
    build_combined_report,
    build_gate_report,
    default_result_file,
    write_report,
)

__all__ = [
    "BaseFormatter",
    "OutputLevel",
    "ConsoleFormatter",
    "COMBINED_RESULT_FILE",
    "CombinedReport",
    "GateReport",
    "ReportWriteError",
    "build_combined_report",
    "build_gate_report",
    "default_result_file",
    "write_report",
]
