"""Automatic KES disbursement once a payment settles on-chain.

``AutoDisbursementWatcher.observe`` is called with every fresh
``PaymentStatusSnapshot``. When the payment is on-chain but not yet paid out
it marks the payment in the ``TriggerStore`` and then issues a single
off-ramp call. The mark is written first and never rolled back, so a payment
is disbursed at most once across restarts, even when the call fails.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
import logging
from typing import TYPE_CHECKING, Protocol

from .exceptions import RecipientPhoneMissingError
from .retry import RetryConfig, execute

if TYPE_CHECKING:
    from .client.models import OfframpResponse, PaymentRequestDetail
    from .storage import TriggerStore
    from .telemetry import TelemetryContextProtocol

log = logging.getLogger(__name__)

READY_FOR_OFFRAMP = "onchain_done_offramp_pending"
OFFRAMP_SETTLED_STATUSES = frozenset({"completed", "processing"})


@dataclass(frozen=True)
class PaymentStatusSnapshot:
    payment_id: str
    onchain_status: str | None = None
    offramp_status: str | None = None
    transaction_hash: str | None = None
    recipient_phone: str | None = None
    amount_kes: float | None = None
    status: str | None = None

    @classmethod
    def from_detail(
        cls,
        detail: PaymentRequestDetail,
        *,
        recipient_phone: str | None = None,
        amount_kes: float | None = None,
    ) -> PaymentStatusSnapshot:
        return cls(
            payment_id=detail.payment_request_id,
            onchain_status=detail.onchain_status,
            offramp_status=detail.offramp_status,
            transaction_hash=detail.transaction_hash,
            recipient_phone=recipient_phone,
            amount_kes=amount_kes,
            status=detail.status,
        )

    @property
    def awaiting_offramp(self) -> bool:
        """On-chain settled, off-ramp not started, and a transaction hash to cite."""
        return (
            self.onchain_status == READY_FOR_OFFRAMP
            and self.offramp_status not in OFFRAMP_SETTLED_STATUSES
            and bool(self.transaction_hash)
        )


@dataclass(frozen=True)
class DisbursementState:
    is_triggering: bool = False
    error: BaseException | None = None
    transaction_code: str | None = None


class OfframpAPI(Protocol):
    async def initiate_offramp(
        self,
        payment_request_id: str,
        phone: str,
        amount_kes: float,
        transaction_hash: str,
    ) -> OfframpResponse: ...


class AutoDisbursementWatcher:
    """Fire the off-ramp call for a payment at most once.

    Args:
        api: Issues the off-ramp call.
        store: Durable set of payments already triggered.
        on_success: Receives the off-ramp response.
        on_error: Receives the failure, or a ``RecipientPhoneMissingError``
            (reported once per watcher) when only the phone is missing.
    """

    def __init__(
        self,
        api: OfframpAPI,
        store: TriggerStore,
        *,
        on_success: Callable[[OfframpResponse], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
        telemetry: TelemetryContextProtocol | None = None,
    ) -> None:
        self._api = api
        self._store = store
        self._on_success = on_success
        self._on_error = on_error
        self._telemetry = telemetry
        self._warned_missing_phone = False
        self._state = DisbursementState()

    @property
    def state(self) -> DisbursementState:
        return self._state

    @property
    def is_triggering(self) -> bool:
        return self._state.is_triggering

    def should_trigger(self, snapshot: PaymentStatusSnapshot) -> bool:
        return (
            not self._state.is_triggering
            and snapshot.awaiting_offramp
            and bool(snapshot.recipient_phone)
            and bool(snapshot.amount_kes)
            and not self._store.has(snapshot.payment_id)
        )

    async def observe(self, snapshot: PaymentStatusSnapshot) -> bool:
        """Reconcile one snapshot; returns True if the off-ramp call was issued.

        Failures are captured in ``state.error`` and passed to ``on_error``;
        they are never raised.
        """
        if not self.should_trigger(snapshot):
            self._check_missing_phone(snapshot)
            return False

        # Checked and marked with no await in between
        self._store.add(snapshot.payment_id)
        self._state = DisbursementState(is_triggering=True)
        log.info("Triggering off-ramp for payment %s", snapshot.payment_id)

        # Non-empty per should_trigger
        phone = snapshot.recipient_phone or ""
        amount = snapshot.amount_kes or 0.0
        tx_hash = snapshot.transaction_hash or ""

        def disburse() -> Awaitable[OfframpResponse]:
            return self._api.initiate_offramp(snapshot.payment_id, phone, amount, tx_hash)

        try:
            response = await execute(
                disburse, RetryConfig.no_retry(), telemetry=self._telemetry
            )
        except Exception as error:
            log.error(
                "Off-ramp for payment %s failed: %s",
                snapshot.payment_id,
                error,
                exc_info=True,
            )
            self._state = DisbursementState(error=error)
            self._report(error)
            return True
        finally:
            # A cancelled call must not leave the watcher blocked
            if self._state.is_triggering:
                self._state = replace(self._state, is_triggering=False)

        log.info(
            "Off-ramp initiated for payment %s: %s",
            snapshot.payment_id,
            response.transaction_code,
        )
        self._state = DisbursementState(transaction_code=response.transaction_code)
        if self._on_success is not None:
            self._on_success(response)
        return True

    def _check_missing_phone(self, snapshot: PaymentStatusSnapshot) -> None:
        if (
            self._warned_missing_phone
            or snapshot.recipient_phone
            or self._state.is_triggering
            or not snapshot.awaiting_offramp
            or not snapshot.amount_kes
            or self._store.has(snapshot.payment_id)
        ):
            return
        self._warned_missing_phone = True
        error = RecipientPhoneMissingError()
        log.warning(
            "Payment %s is ready for off-ramp but the recipient phone is unknown",
            snapshot.payment_id,
        )
        self._state = replace(self._state, error=error)
        self._report(error)

    def _report(self, error: BaseException) -> None:
        if self._on_error is not None:
            self._on_error(error)
