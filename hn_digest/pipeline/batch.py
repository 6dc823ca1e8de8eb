"""
Bounded-concurrency batch execution with local retries.

``BatchRunner.run`` applies one async operation to every subject of a batch,
never running more than ``concurrency`` operations at once. Operations return
typed outcomes; transient failures are retried with exponential backoff up to
a per-subject budget, permanent failures stop immediately. Unexpected
exceptions are logged and treated as transient, so nothing raised by an
operation escapes ``run``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import Awaitable, Callable, Generic, Sequence, TypeVar

from ..config import RetryConfig
from ..core.errors import describe_error
from ..core.types import PermanentFailure, StageOutcome, Success, TransientFailure
from ..utils.logging import log_event

S = TypeVar("S")

logger = logging.getLogger("hn_digest.batch")


@dataclass
class ItemOutcome(Generic[S]):
    """Final outcome for one subject.

    Attributes:
        subject: The subject the operation ran on
        outcome: Last outcome returned (Success ends the retry loop)
        failures: Number of failed attempts made in this run
    """

    subject: S
    outcome: StageOutcome
    failures: int = 0

    @property
    def ok(self) -> bool:
        return isinstance(self.outcome, Success)

    @property
    def permanent(self) -> bool:
        return isinstance(self.outcome, PermanentFailure)


@dataclass
class BatchResult(Generic[S]):
    outcomes: dict[str, ItemOutcome[S]] = field(default_factory=dict)

    @property
    def succeeded(self) -> list[str]:
        return [key for key, item in self.outcomes.items() if item.ok]

    @property
    def failed(self) -> list[tuple[str, str]]:
        return [
            (key, item.outcome.error)
            for key, item in self.outcomes.items()
            if not item.ok
        ]


class BatchRunner:
    """Runs stage operations over a batch with a hard concurrency ceiling.

    Args:
        retry: Backoff and local attempt settings
        sleep: Awaitable used between attempts; tests pass a no-op
    """

    def __init__(
        self,
        retry: RetryConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.retry = retry
        self._sleep = sleep
        self._in_flight = 0
        self.peak_in_flight = 0

    def backoff_delay(self, attempt: int) -> float:
        delay = self.retry.backoff_base_seconds * (2**attempt)
        return min(delay, self.retry.backoff_max_seconds)

    async def run(
        self,
        subjects: Sequence[S],
        concurrency: int,
        operation: Callable[[S], Awaitable[StageOutcome]],
        key: Callable[[S], str] = str,
        budget: Callable[[S], int] | None = None,
        name: str = "batch",
    ) -> BatchResult[S]:
        """Apply ``operation`` to every subject.

        Args:
            subjects: Work units; each is processed independently
            concurrency: Maximum operations in flight at any instant
            operation: Async callable returning a StageOutcome
            key: Identifier of a subject, used for logging and result lookup
            budget: Attempts allowed for a subject in this run; defaults to
                ``retry.local_attempts``
            name: Stage name used in log events

        Returns:
            BatchResult with one ItemOutcome per subject
        """
        if concurrency < 1:
            raise ValueError("concurrency must be positive")
        semaphore = asyncio.Semaphore(concurrency)

        async def _run_one(subject: S) -> ItemOutcome[S]:
            allowed = budget(subject) if budget else self.retry.local_attempts
            if allowed < 1:
                return ItemOutcome(subject, TransientFailure("retry budget exhausted"), 0)
            async with semaphore:
                return await self._attempt(subject, operation, key, allowed, name)

        tasks = [asyncio.create_task(_run_one(subject)) for subject in subjects]
        results = await asyncio.gather(*tasks)
        return BatchResult(outcomes={key(item.subject): item for item in results})

    async def _attempt(
        self,
        subject: S,
        operation: Callable[[S], Awaitable[StageOutcome]],
        key: Callable[[S], str],
        allowed: int,
        name: str,
    ) -> ItemOutcome[S]:
        failures = 0
        outcome: StageOutcome = TransientFailure("not attempted")
        for attempt in range(allowed):
            outcome = await self._call(subject, operation, key, name)
            if isinstance(outcome, Success):
                return ItemOutcome(subject, outcome, failures)
            failures += 1
            if isinstance(outcome, PermanentFailure):
                break
            if attempt + 1 < allowed:
                delay = self.backoff_delay(attempt)
                log_event(
                    logger,
                    "Retrying after transient failure",
                    level=logging.DEBUG,
                    event="retry_scheduled",
                    stage=name,
                    key=key(subject),
                    attempt=attempt + 1,
                    delay=delay,
                    error=outcome.error,
                )
                await self._sleep(delay)
        return ItemOutcome(subject, outcome, failures)

    async def _call(
        self,
        subject: S,
        operation: Callable[[S], Awaitable[StageOutcome]],
        key: Callable[[S], str],
        name: str,
    ) -> StageOutcome:
        self._in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self._in_flight)
        try:
            return await operation(subject)
        except Exception as exc:  # noqa: BLE001
            logger.exception(
                "Unexpected error in %s operation",
                name,
                extra={"event": "operation_crashed", "stage": name, "key": key(subject)},
            )
            return TransientFailure(describe_error(exc))
        finally:
            self._in_flight -= 1
