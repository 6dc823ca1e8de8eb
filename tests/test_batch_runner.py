"""Tests for the bounded-concurrency batch runner."""

from __future__ import annotations

import asyncio

from hn_digest.config import RetryConfig
from hn_digest.core.types import PermanentFailure, Success, TransientFailure
from hn_digest.pipeline.batch import BatchRunner


async def _no_sleep(_delay: float) -> None:
    return None


def _runner(**overrides) -> BatchRunner:
    retry = RetryConfig(**{"max_retry_attempts": 5, "local_attempts": 5, **overrides})
    return BatchRunner(retry, sleep=_no_sleep)


def test_concurrency_ceiling_is_never_exceeded():
    runner = _runner()

    async def operation(subject: int):
        await asyncio.sleep(0.01)
        return Success(subject * 2)

    result = asyncio.run(runner.run(list(range(20)), concurrency=3, operation=operation))

    assert runner.peak_in_flight == 3
    assert len(result.succeeded) == 20
    assert result.outcomes["7"].outcome == Success(14)


def test_permanent_failure_is_not_retried():
    runner = _runner()
    calls: list[int] = []

    async def operation(subject: int):
        calls.append(subject)
        return PermanentFailure("404 Not Found")

    result = asyncio.run(runner.run([1], concurrency=1, operation=operation))

    outcome = result.outcomes["1"]
    assert calls == [1]
    assert outcome.permanent
    assert outcome.failures == 1
    assert result.failed == [("1", "404 Not Found")]


def test_transient_failures_retry_until_success():
    runner = _runner()
    calls = {"n": 0}

    async def operation(subject: str):
        calls["n"] += 1
        if calls["n"] < 5:
            return TransientFailure("timeout")
        return Success("done")

    result = asyncio.run(runner.run(["a"], concurrency=1, operation=operation))

    outcome = result.outcomes["a"]
    assert outcome.ok
    assert outcome.failures == 4
    assert calls["n"] == 5


def test_transient_failures_stop_at_budget():
    runner = _runner(local_attempts=3)
    calls = {"n": 0}

    async def operation(subject: str):
        calls["n"] += 1
        return TransientFailure("503")

    result = asyncio.run(runner.run(["a", "b"], concurrency=2, operation=operation))

    assert calls["n"] == 6
    assert all(o.failures == 3 and not o.permanent for o in result.outcomes.values())


def test_per_subject_budget_zero_skips_the_call():
    runner = _runner()
    calls: list[str] = []

    async def operation(subject: str):
        calls.append(subject)
        return Success(subject)

    result = asyncio.run(
        runner.run(
            ["spent", "fresh"],
            concurrency=2,
            operation=operation,
            budget=lambda subject: 0 if subject == "spent" else 2,
        )
    )

    assert calls == ["fresh"]
    spent = result.outcomes["spent"]
    assert isinstance(spent.outcome, TransientFailure)
    assert spent.failures == 0


def test_unexpected_exception_becomes_transient_and_isolated():
    runner = _runner(local_attempts=1)

    async def operation(subject: int):
        if subject == 2:
            raise RuntimeError("boom")
        return Success(subject)

    result = asyncio.run(runner.run([1, 2, 3], concurrency=2, operation=operation))

    assert sorted(result.succeeded) == ["1", "3"]
    crashed = result.outcomes["2"]
    assert isinstance(crashed.outcome, TransientFailure)
    assert "RuntimeError: boom" in crashed.outcome.error


def test_backoff_doubles_and_is_capped():
    delays: list[float] = []

    async def record_sleep(delay: float) -> None:
        delays.append(delay)

    retry = RetryConfig(local_attempts=5, backoff_base_seconds=1.0, backoff_max_seconds=5.0)
    runner = BatchRunner(retry, sleep=record_sleep)

    async def operation(subject: str):
        return TransientFailure("429")

    asyncio.run(runner.run(["a"], concurrency=1, operation=operation))

    assert delays == [1.0, 2.0, 4.0, 5.0]
    assert runner.backoff_delay(0) == 1.0
    assert runner.backoff_delay(10) == 5.0


def test_custom_key_indexes_outcomes():
    runner = _runner()

    async def operation(subject: dict):
        return Success(subject["name"])

    result = asyncio.run(
        runner.run(
            [{"id": "x1", "name": "first"}],
            concurrency=1,
            operation=operation,
            key=lambda subject: subject["id"],
        )
    )

    assert result.outcomes["x1"].outcome.value == "first"
