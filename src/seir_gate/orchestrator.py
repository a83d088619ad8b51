"""
Gate Orchestrator

Runs every configured gate against one shared RunContext and merges the
outcomes into a CombinedResult. Gates are independent evidence: a failing
gate never stops another one, and they run concurrently.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from .cloud.base import CloudStateReader
from .gates import GATES, Gate
from .main import CombinedResult, ConfigError, GateResult, RunContext

logger = logging.getLogger(__name__)

DEFAULT_GATES = ("secrets_and_role", "network_db")


class GatePhase(Enum):
    """Per-gate lifecycle; PASS and FAIL are terminal"""
    INIT = "init"
    RUNNING = "running"
    PASS = "pass"
    FAIL = "fail"


class GateOrchestrator:
    """
    Runs gates to completion and combines their verdicts.

    Events:
      gate.started    handler(event, gate_name)
      gate.completed  handler(event, gate_name, result=GateResult)
    """

    def __init__(
        self,
        reader: CloudStateReader,
        gate_names: Sequence[str] = DEFAULT_GATES,
        timeout_s: Optional[float] = None,
    ):
        unknown = [n for n in gate_names if n not in GATES]
        if unknown:
            raise ConfigError(f"Unknown gate(s): {', '.join(unknown)}")

        self.reader = reader
        self.gate_names = list(gate_names)
        self.timeout_s = timeout_s
        self._phases: Dict[str, GatePhase] = {n: GatePhase.INIT for n in self.gate_names}
        self._event_handlers: Dict[str, List[Callable]] = {}

    def on(self, event: str, handler: Callable) -> None:
        """Register event handler"""
        self._event_handlers.setdefault(event, []).append(handler)

    async def _emit_event(self, event: str, gate_name: str, **kwargs) -> None:
        for handler in self._event_handlers.get(event, []):
            try:
                if inspect.iscoroutinefunction(handler):
                    await handler(event, gate_name, **kwargs)
                else:
                    handler(event, gate_name, **kwargs)
            except Exception as e:
                logger.error(f"Event handler error for {event}: {e}")

    def phase(self, gate_name: str) -> GatePhase:
        return self._phases[gate_name]

    def build_gates(self) -> List[Gate]:
        return [GATES[name](self.reader, self.timeout_s) for name in self.gate_names]

    async def _run_one(self, gate: Gate, ctx: RunContext) -> GateResult:
        self._phases[gate.name] = GatePhase.RUNNING
        await self._emit_event("gate.started", gate.name)

        result = await gate.run(ctx)

        self._phases[gate.name] = GatePhase(result.status.value.lower())
        await self._emit_event("gate.completed", gate.name, result=result)
        return result

    async def run(self, ctx: RunContext) -> CombinedResult:
        """
        Run every gate and merge the results.

        Missing inputs for any gate are reported before anything runs. A
        GateExecutionError from one gate is re-raised only after the others
        have finished.
        """
        gates = self.build_gates()
        required: List[str] = []
        for gate in gates:
            required.extend(n for n in gate.required_inputs if n not in required)
        ctx.require(*required)

        logger.info(f"Running {len(gates)} gate(s): {', '.join(self.gate_names)}")

        outcomes = await asyncio.gather(
            *(self._run_one(gate, ctx) for gate in gates),
            return_exceptions=True,
        )

        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

        combined = CombinedResult(gates=list(outcomes))
        logger.info(
            f"Combined result {combined.status.value} "
            f"(badge={combined.badge.value}, exit={combined.exit_code})"
        )
        return combined

    async def run_gate(self, gate_name: str, ctx: RunContext) -> GateResult:
        """Run a single named gate"""
        if gate_name not in self._phases:
            raise ConfigError(f"Gate not configured: {gate_name}")
        gate = GATES[gate_name](self.reader, self.timeout_s)
        return await self._run_one(gate, ctx)
