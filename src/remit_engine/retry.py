"""Bounded exponential-backoff retry for single async operations.

``execute`` runs an operation up to ``max_retries + 1`` times. It stops early,
re-raising the original exception, as soon as an error is judged not
retryable; by default that judgement comes from the error classifier.

``DebouncedRetry`` collapses concurrent invocations into one shared execution
so rapid repeated triggers (e.g. a retry button tapped twice) cannot race.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
import logging
import random
from typing import Any

from .client.error_handler import should_retry
from .telemetry import TelemetryContext, TelemetryContextProtocol

log = logging.getLogger(__name__)

type Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryConfig:
    """Per-call retry policy. Durations are in seconds.

    ``max_retries`` counts retries, not attempts: ``max_retries=3`` allows four
    attempts in total.
    """

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    jitter: bool = True
    is_retryable: Callable[[BaseException], bool] | None = None
    on_retry: Callable[[int, float, BaseException], None] | None = None

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    @classmethod
    def no_retry(cls) -> RetryConfig:
        """Single attempt; failures surface immediately."""
        return cls(max_retries=0)

    def merged(self, **changes: Any) -> RetryConfig:
        """Return a copy with the given non-None fields replaced."""
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **changes) if changes else self

    def retryable(self, error: BaseException) -> bool:
        if self.is_retryable is not None:
            return self.is_retryable(error)
        return should_retry(error)


def compute_delay(
    attempt: int,
    config: RetryConfig,
    *,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay before the retry that follows 0-based ``attempt``.

    ``min(initial_delay * backoff_multiplier**attempt, max_delay)``, scaled by a
    uniform factor in ``[0.5, 1.0]`` when jitter is on.
    """
    delay = min(
        config.initial_delay * (config.backoff_multiplier**attempt),
        config.max_delay,
    )
    if config.jitter:
        delay *= 0.5 + rng() * 0.5
    return delay


async def execute[T](
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    *,
    sleep: Sleep = asyncio.sleep,
    telemetry: TelemetryContextProtocol | None = None,
) -> T:
    """Run ``operation`` with retry.

    Raises:
        The operation's own exception, unchanged, once it is not retryable or
        the attempts are exhausted.
    """
    cfg = config or RetryConfig()
    ctx = telemetry or TelemetryContext()

    for attempt in range(cfg.max_retries + 1):
        try:
            return await operation()
        except Exception as error:
            if attempt == cfg.max_retries:
                ctx.count("retry.exhausted")
                if cfg.max_retries:
                    log.error(
                        "Operation failed after %d attempts: %s",
                        attempt + 1,
                        error,
                    )
                raise
            if not cfg.retryable(error):
                ctx.count("retry.non_retryable")
                log.debug("Not retrying non-retryable error: %r", error)
                raise

            delay = compute_delay(attempt, cfg)
            ctx.count("retry.attempt")
            log.warning(
                "Retryable error: %s. Retrying in %.2fs (attempt %d/%d)",
                error,
                delay,
                attempt + 2,
                cfg.max_retries + 1,
            )
            if cfg.on_retry is not None:
                cfg.on_retry(attempt + 1, delay, error)
            await sleep(delay)

    raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover


class DebouncedRetry[T]:
    """Share one in-flight retry execution among concurrent callers.

    Example:
        submit = DebouncedRetry(lambda: api.create_funding_intent(payload))
        await asyncio.gather(submit(), submit())  # one execution, two awaiters
    """

    def __init__(
        self,
        operation: Callable[[], Awaitable[T]],
        config: RetryConfig | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._operation = operation
        self._config = config
        self._sleep = sleep
        self._pending: asyncio.Future[T] | None = None

    @property
    def in_flight(self) -> bool:
        return self._pending is not None

    async def __call__(self) -> T:
        if self._pending is None:
            pending = asyncio.ensure_future(
                execute(self._operation, self._config, sleep=self._sleep)
            )
            # Registered before any awaiter, so it runs before they resume
            pending.add_done_callback(self._release)
            self._pending = pending
        # Cancelling one caller leaves the shared execution running
        return await asyncio.shield(self._pending)

    def _release(self, future: asyncio.Future[T]) -> None:
        if self._pending is future:
            self._pending = None


def debounced_retry[T](
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    *,
    sleep: Sleep = asyncio.sleep,
) -> DebouncedRetry[T]:
    return DebouncedRetry(operation, config, sleep=sleep)
