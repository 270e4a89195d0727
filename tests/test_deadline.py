from __future__ import annotations

import pytest

from cache_broker.deadline import Deadline, DeadlineBound
from cache_broker.errors import DeadlineExceededError


class ManualClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class DummyTarget:
    region = "eu-west-1"

    def __init__(self) -> None:
        self.calls: list[str] = []

    def describe(self, name: str) -> str:
        self.calls.append(name)
        return name.upper()


def test_deadline_counts_down_from_creation() -> None:
    clock = ManualClock()
    deadline = Deadline(30, clock)

    clock.now += 10
    assert deadline.remaining() == pytest.approx(20)
    deadline.check("DescribeReplicationGroups")

    clock.now += 25
    assert deadline.is_expired()
    with pytest.raises(DeadlineExceededError, match="deadline of 30s exceeded"):
        deadline.check("DescribeReplicationGroups", "cf-abc")


def test_bound_target_checks_before_each_call() -> None:
    clock = ManualClock()
    target = DummyTarget()
    bound = DeadlineBound(target, Deadline(5, clock))

    assert bound.describe("cf-abc") == "CF-ABC"
    assert bound.region == "eu-west-1"

    clock.now += 6
    with pytest.raises(DeadlineExceededError) as excinfo:
        bound.describe("cf-def")

    assert excinfo.value.operation == "describe"
    assert excinfo.value.resource == "cf-def"
    assert target.calls == ["cf-abc"]
