"""
Gate Base

A gate is an ordered pipeline of checks over a mutable per-run state. Each
step reads the facts resolved by earlier steps and returns the CheckResults
it produced; the runner concatenates them in order.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..cloud.base import CloudQueryError, CloudStateReader
from ..main import CheckResult, GateResult, RunContext

logger = logging.getLogger(__name__)

CALLER_IDENTITY = "caller_identity"


class QueryTimeoutError(Exception):
    """A single external query exceeded the per-query timeout"""

    def __init__(self, operation: str, timeout_s: float):
        self.operation = operation
        self.timeout_s = timeout_s
        super().__init__(f"{operation} timed out after {timeout_s:g}s")


@dataclass
class GateState:
    """Facts shared between the steps of one gate run"""
    halted: bool = False
    caller_arn: Optional[str] = None

    def context(self) -> Dict[str, Any]:
        return {"caller_arn": self.caller_arn or ""}


Step = Callable[[RunContext, Any], Awaitable[List[CheckResult]]]


class Gate(ABC):
    """
    Base class for verification gates.

    Steps never raise for a missing or malformed fact: they record FAIL,
    WARN or INFO instead. Only a timed-out query escapes a step, and the
    runner turns it into an ERROR result for that step's check id.
    """

    name: str = "base"
    title: str = "Gate"
    required_inputs: Tuple[str, ...] = ("instance_id",)

    def __init__(self, reader: CloudStateReader, timeout_s: Optional[float] = None):
        self.reader = reader
        self.timeout_s = timeout_s
        self._timeout = timeout_s

    @abstractmethod
    def new_state(self, ctx: RunContext) -> GateState:
        pass

    @abstractmethod
    def steps(self) -> List[Tuple[str, Step]]:
        """(check id, step) pairs in reporting order"""
        pass

    async def query(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking reader call off the event loop, bounded by the timeout"""
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            operation = getattr(fn, "__name__", "query")
            raise QueryTimeoutError(operation, self._timeout or 0) from e

    async def run(self, ctx: RunContext) -> GateResult:
        """Execute every step in order and return the gate's result"""
        ctx.require(*self.required_inputs)
        self._timeout = self.timeout_s if self.timeout_s is not None else ctx.query_timeout_s

        result = GateResult(gate_name=self.name)
        state = self.new_state(ctx)
        start_time = time.time()

        logger.info(f"[{self.name}] Gate started (reader={self.reader.name})")

        for check_id, step in self.steps():
            try:
                produced = await step(ctx, state)
            except QueryTimeoutError as e:
                logger.warning(f"[{self.name}] {check_id}: {e}")
                produced = [CheckResult.error(check_id, f"{e}; check is inconclusive")]
            result.checks.extend(produced)
            if state.halted:
                logger.warning(f"[{self.name}] Halted after {check_id}")
                break

        result.context = state.context()
        result.duration_ms = int((time.time() - start_time) * 1000)

        logger.info(
            f"[{self.name}] Gate {result.status.value} "
            f"({len(result.checks)} checks, {len(result.failures)} failed, "
            f"{len(result.warnings)} warnings) in {result.duration_ms}ms"
        )
        return result

    # =========================================================================
    # Shared steps
    # =========================================================================

    async def check_caller_identity(self, ctx: RunContext, state: GateState) -> List[CheckResult]:
        """The querying principal must resolve; otherwise nothing else can be trusted"""
        state.halted = True
        try:
            caller = await self.query(self.reader.get_caller_identity)
        except CloudQueryError as e:
            return [CheckResult.failed(
                CALLER_IDENTITY,
                f"caller identity could not be resolved ({e.code}); "
                "no further checks can be trusted",
            )]

        state.halted = False
        state.caller_arn = caller.arn
        return [CheckResult.passed(
            CALLER_IDENTITY,
            f"caller identity resolved, credentials OK ({caller.arn})",
        )]
