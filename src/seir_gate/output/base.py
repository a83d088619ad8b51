"""
Base Output Formatter
"""

from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from ..main import CombinedResult, GateResult, RunContext


class OutputLevel(Enum):
    """Output verbosity levels"""
    QUIET = 0
    NORMAL = 1
    VERBOSE = 2
    DEBUG = 3


class BaseFormatter(ABC):
    """Base class for output formatters"""

    def __init__(self, level: OutputLevel = OutputLevel.NORMAL):
        self.level = level

    def at_least(self, level: OutputLevel) -> bool:
        return self.level.value >= level.value

    @abstractmethod
    def gate_result(
        self,
        result: GateResult,
        ctx: RunContext,
        result_file: Optional[Path] = None,
    ) -> None:
        """Format the transcript of one gate"""
        pass

    @abstractmethod
    def combined_summary(
        self,
        combined: CombinedResult,
        result_files: Dict[str, Path],
        out_path: Optional[Path] = None,
    ) -> None:
        """Format the badge summary of a combined run"""
        pass

    @abstractmethod
    def error(self, message: str) -> None:
        """Format a run-level error"""
        pass
