"""Per-invocation time budget for external calls."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable

from .errors import DeadlineExceededError

Clock = Callable[[], float]


@dataclass(slots=True)
class Deadline:
    seconds: float
    clock: Clock = time.monotonic
    started_at: float = field(init=False)

    def __post_init__(self) -> None:
        self.started_at = self.clock()

    def remaining(self) -> float:
        return self.seconds - (self.clock() - self.started_at)

    def is_expired(self) -> bool:
        return self.remaining() <= 0

    def check(self, operation: str, resource: str = "") -> None:
        if self.is_expired():
            raise DeadlineExceededError(
                operation=operation,
                resource=resource or "<unknown>",
                detail=f"call deadline of {self.seconds:g}s exceeded",
            )


class DeadlineBound:
    """Forward method calls to ``target`` after checking the deadline."""

    def __init__(self, target: Any, deadline: Deadline) -> None:
        self._target = target
        self._deadline = deadline

    def __getattr__(self, name: str) -> Any:
        attribute = getattr(self._target, name)
        if not callable(attribute):
            return attribute

        def bound(*args: Any, **kwargs: Any) -> Any:
            resource = args[0] if args and isinstance(args[0], str) else ""
            self._deadline.check(name, resource)
            return attribute(*args, **kwargs)

        return bound
