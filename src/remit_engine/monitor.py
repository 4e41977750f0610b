"""Background refresh of a payment request's status.

``PaymentRequestMonitor`` fetches one payment request on a fixed interval and
hands each ``PaymentStatusSnapshot`` to its subscribers, typically an
``AutoDisbursementWatcher``:

    monitor = PaymentRequestMonitor(
        api, "pr-1", interval=5.0,
        stop_on_statuses=("completed", "failed"),
        recipient_phone="+254712345678", amount_kes=1300.0,
    )
    monitor.subscribe(watcher.observe)
    monitor.start()
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
import logging
from typing import TYPE_CHECKING, Protocol

from .disbursement import PaymentStatusSnapshot
from .retry import Sleep

if TYPE_CHECKING:
    from .client.models import PaymentRequestDetail, PaymentRequestStatus

log = logging.getLogger(__name__)

type SnapshotSubscriber = Callable[[PaymentStatusSnapshot], Awaitable[object]]


class PaymentRequestAPI(Protocol):
    async def get_payment_request(self, payment_request_id: str) -> PaymentRequestDetail: ...


class PaymentRequestMonitor:
    def __init__(
        self,
        api: PaymentRequestAPI,
        payment_request_id: str,
        *,
        interval: float,
        stop_on_statuses: Iterable[PaymentRequestStatus | str] = (),
        recipient_phone: str | None = None,
        amount_kes: float | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if interval < 0:
            raise ValueError("interval must be >= 0")
        self._api = api
        self.payment_request_id = payment_request_id
        self._interval = interval
        self._stop_on = frozenset(stop_on_statuses)
        self.recipient_phone = recipient_phone
        self.amount_kes = amount_kes
        self._sleep = sleep
        self._subscribers: list[SnapshotSubscriber] = []
        self._task: asyncio.Task[None] | None = None
        self.latest: PaymentStatusSnapshot | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, subscriber: SnapshotSubscriber) -> Callable[[], None]:
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def start(self) -> asyncio.Task[None]:
        """Start refreshing in the background; a running monitor is left alone."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def refresh(self) -> PaymentStatusSnapshot:
        """Fetch once and notify subscribers."""
        detail = await self._api.get_payment_request(self.payment_request_id)
        snapshot = PaymentStatusSnapshot.from_detail(
            detail,
            recipient_phone=self.recipient_phone,
            amount_kes=self.amount_kes,
        )
        self.latest = snapshot
        for subscriber in list(self._subscribers):
            try:
                await subscriber(snapshot)
            except Exception:
                log.exception("Snapshot subscriber %r failed", subscriber)
        return snapshot

    async def _run(self) -> None:
        while True:
            try:
                snapshot = await self.refresh()
            except Exception as e:
                log.warning(
                    "Refreshing payment request %s failed: %s",
                    self.payment_request_id,
                    e,
                )
            else:
                if snapshot.status in self._stop_on:
                    log.debug(
                        "Payment request %s reached %s; monitor stopping",
                        self.payment_request_id,
                        snapshot.status,
                    )
                    return
            await self._sleep(self._interval)
