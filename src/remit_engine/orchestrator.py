"""Funding-confirmation state machine driven by a UI layer.

``PaymentConfirmationOrchestrator`` creates a funding intent, then watches its
status until the payment is confirmed, fails, or runs out of time:

    processing -> waiting -> success | timeout | error
    timeout | error -> processing        (explicit retry)

Two tasks run while waiting. The poll task asks the backend for the intent
status through ``polling.poll``. The ticker task updates ``elapsed_seconds``
once per tick and forces ``timeout`` when the budget is spent, even if the
poll task is stuck inside a slow request. Whichever reaches a terminal phase
first cancels the other.

Every start bumps a generation counter. Work belonging to an older generation
(a cancelled poll, a creation call that returned after ``stop()``) is
discarded instead of touching the state.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from enum import Enum
import logging
import time
from types import TracebackType
from typing import TYPE_CHECKING, Any, Protocol, Self

from .client.error_handler import classify, handle_error
from .exceptions import InvalidPhaseError, PollingAbortedError, PollingTimeoutError
from .polling import PollingConfig, poll
from .retry import DebouncedRetry, RetryConfig, Sleep
from .storage import EscrowRecord
from .telemetry import TelemetryContext, TelemetryContextProtocol

if TYPE_CHECKING:
    from .client.error_handler import Notifier
    from .client.models import (
        FundingIntentPayload,
        FundingIntentResponse,
        FundingIntentStatus,
    )
    from .config import FrozenConfig
    from .storage import LocalRecordStore

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 90.0
DEFAULT_POLL_INTERVAL = 3.0
DEFAULT_MAX_CONSECUTIVE_FAILURES = 5

PAYMENT_FAILED_MESSAGE = "Payment failed. Please try again."
UNREACHABLE_MESSAGE = (
    "We could not confirm your payment right now. Please try again."
)


class ConfirmationPhase(Enum):
    PROCESSING = "processing"
    WAITING = "waiting"
    SUCCESS = "success"
    TIMEOUT = "timeout"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ConfirmationPhase.SUCCESS,
            ConfirmationPhase.TIMEOUT,
            ConfirmationPhase.ERROR,
        )


RETRYABLE_PHASES = frozenset({ConfirmationPhase.TIMEOUT, ConfirmationPhase.ERROR})


@dataclass(frozen=True)
class ConfirmationState:
    phase: ConfirmationPhase = ConfirmationPhase.PROCESSING
    elapsed_seconds: int = 0
    transaction_code: str | None = None
    confirmed_escrow_id: str | None = None
    error_message: str | None = None


class FundingIntentAPI(Protocol):
    async def create_funding_intent(
        self, payload: FundingIntentPayload
    ) -> FundingIntentResponse: ...

    async def get_funding_intent_status(
        self, transaction_code: str
    ) -> FundingIntentStatus: ...


type StateListener = Callable[[ConfirmationState], None]


def intent_is_settled(status: FundingIntentStatus) -> bool:
    """True once a status ends polling.

    ``confirmed`` only counts once the escrow ID is present; until then the
    escrow has not materialized and polling goes on.
    """
    if status.status == "confirmed":
        return bool(status.escrow_id)
    return status.status in ("failed", "timeout")


class PaymentConfirmationOrchestrator:
    """Create a funding intent and follow it to a terminal phase.

    Args:
        api: Creates intents and reports their status.
        records: Where confirmed escrows are remembered. Unconfirmed intents
            are never written.
        settings: Frozen configuration supplying the defaults below.
        timeout: Seconds to wait for confirmation.
        poll_interval: Seconds between status polls.
        max_consecutive_failures: Failed poll cycles in a row that end the
            wait with an error, however much of the timeout is left.
        tick_interval: Seconds between elapsed-time updates.
        poll_retry: ``RetryConfig`` fields overriding the per-cycle retry of
            status polls.
        on_confirmed: Receives the escrow ID on success.
        notifier: Receives user-facing creation failures.
    """

    def __init__(
        self,
        api: FundingIntentAPI,
        *,
        records: LocalRecordStore[EscrowRecord] | None = None,
        settings: FrozenConfig | None = None,
        timeout: float | None = None,
        poll_interval: float | None = None,
        max_consecutive_failures: int | None = None,
        tick_interval: float = 1.0,
        poll_retry: Mapping[str, Any] | None = None,
        on_confirmed: Callable[[str], None] | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        telemetry: TelemetryContextProtocol | None = None,
    ) -> None:
        self._api = api
        self._records = records
        self._timeout = _pick(
            timeout, settings and settings.confirmation_timeout, DEFAULT_TIMEOUT
        )
        self._poll_interval = _pick(
            poll_interval, settings and settings.poll_interval, DEFAULT_POLL_INTERVAL
        )
        self._max_failures = int(
            _pick(
                max_consecutive_failures,
                settings and settings.max_consecutive_failures,
                DEFAULT_MAX_CONSECUTIVE_FAILURES,
            )
        )
        self._tick_interval = tick_interval
        self._poll_retry = poll_retry
        self._on_confirmed = on_confirmed
        self._notifier = notifier
        self._clock = clock
        self._sleep = sleep
        self._tele = telemetry or TelemetryContext()

        self._state = ConfirmationState()
        self._listeners: list[StateListener] = []
        self._payload: FundingIntentPayload | None = None
        self._generation = 0
        self._started_at = 0.0
        self._consecutive_failures = 0
        self._poll_task: asyncio.Task[None] | None = None
        self._ticker_task: asyncio.Task[None] | None = None
        self._retry_guard: DebouncedRetry[None] = DebouncedRetry(
            self._restart, RetryConfig.no_retry()
        )

    # --- Observable state ---

    @property
    def state(self) -> ConfirmationState:
        return self._state

    @property
    def phase(self) -> ConfirmationPhase:
        return self._state.phase

    @property
    def elapsed_seconds(self) -> int:
        return self._state.elapsed_seconds

    @property
    def transaction_code(self) -> str | None:
        return self._state.transaction_code

    @property
    def confirmed_escrow_id(self) -> str | None:
        return self._state.confirmed_escrow_id

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def is_running(self) -> bool:
        return any(t is not None and not t.done() for t in (self._poll_task, self._ticker_task))

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register ``listener`` for every state change; returns an unsubscriber."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # --- Controls ---

    async def start(self, payload: FundingIntentPayload) -> None:
        """Create a funding intent and begin waiting for its confirmation.

        Creation is a single attempt: a failure moves straight to ``error``
        with a user-facing message. Any previous run is stopped first.
        """
        await self.stop()
        self._payload = payload
        generation = self._generation
        self._consecutive_failures = 0
        self._set_state(ConfirmationState(phase=ConfirmationPhase.PROCESSING))

        try:
            with self._tele("orchestrator.create_intent"):
                response = await self._api.create_funding_intent(payload)
        except Exception as error:
            if generation != self._generation:
                return
            info = handle_error(
                error,
                notifier=self._notifier,
                context="create_funding_intent",
                notify=self._notifier is not None,
            )
            self._tele.count("orchestrator.create_failed")
            self._update(phase=ConfirmationPhase.ERROR, error_message=info.user_message)
            return

        if generation != self._generation:
            log.debug("Discarding intent %s created after stop()", response.transaction_code)
            return

        log.info("Funding intent accepted: %s", response.transaction_code)
        self._started_at = self._clock()
        self._update(
            phase=ConfirmationPhase.WAITING,
            transaction_code=response.transaction_code,
            elapsed_seconds=0,
        )
        self._ticker_task = asyncio.create_task(self._run_ticker(generation))
        self._poll_task = asyncio.create_task(
            self._run_poll(generation, response.transaction_code)
        )

    async def retry(self) -> None:
        """Re-issue the captured payload after ``timeout`` or ``error``.

        Concurrent calls share one restart.

        Raises:
            InvalidPhaseError: Outside ``timeout``/``error``, or before any start.
        """
        if self._retry_guard.in_flight:
            await self._retry_guard()
            return
        if self.phase not in RETRYABLE_PHASES:
            raise InvalidPhaseError(f"retry() is not allowed in phase {self.phase.value!r}")
        if self._payload is None:
            raise InvalidPhaseError("retry() called before start()")
        await self._retry_guard()

    async def stop(self) -> None:
        """Cancel polling and the ticker. Safe to call in any phase, repeatedly."""
        self._generation += 1
        current = asyncio.current_task()
        tasks = [
            t
            for t in (self._poll_task, self._ticker_task)
            if t is not None and t is not current and not t.done()
        ]
        self._poll_task = None
        self._ticker_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def wait(self) -> ConfirmationState:
        """Wait for the current run's tasks to finish and return the state."""
        tasks = [t for t in (self._poll_task, self._ticker_task) if t is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return self._state

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()

    # --- Internals ---

    async def _restart(self) -> None:
        payload = self._payload
        if payload is None:
            raise InvalidPhaseError("retry() called before start()")
        log.info("Retrying funding intent after %s", self.phase.value)
        await self.start(payload)

    async def _run_poll(self, generation: int, transaction_code: str) -> None:
        def on_poll(_status: FundingIntentStatus, _attempt: int) -> None:
            self._consecutive_failures = 0

        def on_error(error: BaseException) -> None:
            self._consecutive_failures += 1
            log.warning(
                "Status poll failed (%d/%d in a row): %s",
                self._consecutive_failures,
                self._max_failures,
                error,
            )
            if self._consecutive_failures >= self._max_failures:
                raise PollingAbortedError(self._consecutive_failures, error)

        config: PollingConfig[FundingIntentStatus] = PollingConfig(
            should_continue=lambda status: not intent_is_settled(status),
            interval=self._poll_interval,
            max_duration=self._timeout,
            retry_config=self._poll_retry,
            on_poll=on_poll,
            on_error=on_error,
        )

        try:
            status = await poll(
                lambda: self._api.get_funding_intent_status(transaction_code),
                config,
                clock=self._clock,
                sleep=self._sleep,
                telemetry=self._tele,
            )
        except PollingTimeoutError:
            self._finish(generation, phase=ConfirmationPhase.TIMEOUT)
            return
        except PollingAbortedError as e:
            log.error("Giving up on %s: %s", transaction_code, e)
            self._finish(
                generation, phase=ConfirmationPhase.ERROR, error_message=UNREACHABLE_MESSAGE
            )
            return
        except Exception as error:
            info = classify(error)
            log.error("Status polling for %s failed: %s", transaction_code, error)
            self._finish(
                generation, phase=ConfirmationPhase.ERROR, error_message=info.user_message
            )
            return

        self._settle(generation, status)

    def _settle(self, generation: int, status: FundingIntentStatus) -> None:
        if generation != self._generation:
            return
        if status.status == "confirmed" and status.escrow_id:
            self._finish(
                generation,
                phase=ConfirmationPhase.SUCCESS,
                confirmed_escrow_id=status.escrow_id,
            )
            self._persist_escrow(status.escrow_id)
            self._tele.count("orchestrator.confirmed")
            if self._on_confirmed is not None:
                self._on_confirmed(status.escrow_id)
        elif status.status == "failed":
            self._finish(
                generation, phase=ConfirmationPhase.ERROR, error_message=PAYMENT_FAILED_MESSAGE
            )
        else:
            self._finish(generation, phase=ConfirmationPhase.TIMEOUT)

    def _persist_escrow(self, escrow_id: str) -> None:
        if self._records is None or self._payload is None:
            return
        record = EscrowRecord(
            escrow_id=escrow_id,
            recipient_phone=self._payload.recipient_phone,
            total_amount_usd=self._payload.total_amount_usd,
            categories=tuple(self._payload.categories),
        )
        try:
            self._records.append(record)
        except Exception as e:  # noqa: BLE001
            log.warning("Could not record confirmed escrow %s: %s", escrow_id, e)

    async def _run_ticker(self, generation: int) -> None:
        while generation == self._generation and self.phase is ConfirmationPhase.WAITING:
            await self._sleep(self._tick_interval)
            if generation != self._generation or self.phase is not ConfirmationPhase.WAITING:
                return
            elapsed = self._clock() - self._started_at
            self._update(elapsed_seconds=int(elapsed))
            if elapsed >= self._timeout:
                log.info("No confirmation after %.0fs", elapsed)
                self._finish(generation, phase=ConfirmationPhase.TIMEOUT)
                return

    def _finish(self, generation: int, **changes: object) -> None:
        """Enter a terminal phase for ``generation`` and cancel the sibling task."""
        if generation != self._generation:
            return
        current = asyncio.current_task()
        for task in (self._poll_task, self._ticker_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._update(**changes)

    def _update(self, **changes: object) -> None:
        self._set_state(replace(self._state, **changes))  # type: ignore[arg-type]

    def _set_state(self, state: ConfirmationState) -> None:
        if state == self._state:
            return
        if state.phase is not self._state.phase:
            log.debug("Phase %s -> %s", self._state.phase.value, state.phase.value)
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                log.exception("State listener %r failed", listener)


def _pick(*candidates: float | int | None) -> float:
    for value in candidates:
        if value is not None:
            return float(value)
    raise ValueError("no default available")  # pragma: no cover
