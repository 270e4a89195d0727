"""Sequential step runner with best-effort compensation, used by provisioning."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

StepContext = Dict[str, object]


@dataclass(slots=True)
class Step:
    name: str
    action: Callable[[StepContext], None]
    # runs only when a *later* step fails
    compensator: Optional[Callable[[StepContext], None]] = None


class StepRunner:
    """Run steps in order; on failure undo completed steps and re-raise the original error.

    Compensation failures are logged and swallowed so the caller always sees the
    error that actually stopped the sequence.
    """

    def run(self, steps: List[Step], context: StepContext) -> StepContext:
        completed: List[Step] = []
        for step in steps:
            logger.info("Running step '%s'", step.name)
            try:
                step.action(context)
            except Exception:
                logger.error("Step '%s' failed", step.name)
                self._compensate(completed, context)
                raise
            completed.append(step)
        return context

    def _compensate(self, completed: List[Step], context: StepContext) -> None:
        for step in reversed(completed):
            if step.compensator is None:
                continue
            logger.info("Compensating step '%s'", step.name)
            try:
                step.compensator(context)
            except Exception as exc:  # noqa: BLE001 - keep the original failure visible
                logger.warning("Compensation for step '%s' failed: %s", step.name, exc)
