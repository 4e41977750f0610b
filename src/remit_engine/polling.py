"""Poll a status operation until it settles or a wall-clock budget runs out.

Two recovery layers nest here. Each poll *cycle* runs the operation through
``retry.execute`` (by default two quick retries), and a cycle that still fails
with a retryable error does not end the poll: the engine waits one interval
and starts a new cycle. Only a non-retryable error, a falsy
``should_continue`` or the timeout ends the loop.

The timeout is checked before every cycle, so a slow cycle cannot silently
overshoot the budget by more than that one cycle.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, fields
import logging
import time
from typing import Any

from .client.error_handler import should_retry
from .exceptions import PollingTimeoutError
from .retry import RetryConfig, Sleep, execute
from .telemetry import TelemetryContext, TelemetryContextProtocol

log = logging.getLogger(__name__)

# Per-cycle retry; PollingConfig.retry_config overrides individual fields
DEFAULT_POLL_RETRY = RetryConfig(max_retries=2, initial_delay=0.5)


@dataclass(frozen=True)
class PollingConfig[T]:
    """Polling policy. Durations are in seconds.

    Attributes:
        should_continue: Returns False once a result is final.
        interval: Pause between cycles.
        max_duration: Wall-clock budget for the whole poll.
        retry_config: ``RetryConfig`` fields overriding ``DEFAULT_POLL_RETRY``
            for each cycle; fields left out keep the default. The merged
            ``is_retryable`` also decides whether a failed cycle ends the poll.
        on_poll: Called with each successful result and a 1-based counter.
        on_timeout: Called once, just before ``PollingTimeoutError``.
        on_error: Called with the error of each failed cycle that polling
            survives. Raising from it aborts the poll with that exception.
    """

    should_continue: Callable[[T], bool]
    interval: float = 3.0
    max_duration: float = 300.0
    retry_config: Mapping[str, Any] | None = None
    on_poll: Callable[[T, int], None] | None = None
    on_timeout: Callable[[], None] | None = None
    on_error: Callable[[BaseException], None] | None = None

    def __post_init__(self) -> None:
        if self.interval < 0:
            raise ValueError("interval must be >= 0")
        if self.max_duration < 0:
            raise ValueError("max_duration must be >= 0")
        unknown = set(self.retry_config or ()) - {f.name for f in fields(RetryConfig)}
        if unknown:
            raise ValueError(f"unknown retry_config fields: {sorted(unknown)}")

    @property
    def cycle_retry(self) -> RetryConfig:
        return DEFAULT_POLL_RETRY.merged(**(self.retry_config or {}))

    def cycle_is_retryable(self, error: BaseException) -> bool:
        retryable = self.cycle_retry.is_retryable
        if retryable is not None:
            return retryable(error)
        return should_retry(error)


async def poll[T](
    operation: Callable[[], Awaitable[T]],
    config: PollingConfig[T],
    *,
    clock: Callable[[], float] = time.monotonic,
    sleep: Sleep = asyncio.sleep,
    telemetry: TelemetryContextProtocol | None = None,
) -> T:
    """Poll ``operation`` until ``config.should_continue`` returns False.

    Returns:
        The first result for which ``should_continue`` is False.

    Raises:
        PollingTimeoutError: If ``max_duration`` elapses first.
        Exception: The cycle's error when it is not retryable at poll level.
    """
    ctx = telemetry or TelemetryContext()
    retry_config = config.cycle_retry
    started = clock()
    successes = 0

    while True:
        if clock() - started > config.max_duration:
            log.info("Polling timed out after %.1fs", clock() - started)
            ctx.count("poll.timeout")
            if config.on_timeout is not None:
                config.on_timeout()
            raise PollingTimeoutError()

        try:
            with ctx("poll.cycle"):
                result = await execute(
                    operation, retry_config, sleep=sleep, telemetry=ctx
                )
        except Exception as error:
            if not config.cycle_is_retryable(error):
                log.debug("Polling stopped by non-retryable error: %r", error)
                raise
            ctx.count("poll.cycle_failed")
            log.warning("Poll cycle failed, trying again: %s", error)
            if config.on_error is not None:
                config.on_error(error)
            await sleep(config.interval)
            continue

        successes += 1
        if config.on_poll is not None:
            config.on_poll(result, successes)
        if not config.should_continue(result):
            return result
        await sleep(config.interval)
