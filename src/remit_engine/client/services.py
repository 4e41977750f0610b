"""Typed endpoint calls for the onramp, offramp and payment-request APIs."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from ..exceptions import ValidationError
from ..storage import PaymentRequestRecord
from .models import (
    CreatePaymentRequestBody,
    CreatePaymentRequestResponse,
    FundingIntentPayload,
    FundingIntentResponse,
    FundingIntentStatus,
    OfframpResponse,
    PaymentRequestDetail,
)

if TYPE_CHECKING:
    from ..storage import LocalRecordStore
    from .transport import RemitAPIClient

log = logging.getLogger(__name__)

_KE_PHONE_RE = re.compile(r"^(?:\+254|0)\d{9}$")


# --- Phone & currency helpers ---


def is_valid_kenyan_phone(phone: str) -> bool:
    """Accept ``+254XXXXXXXXX`` or ``0XXXXXXXXX``."""
    return bool(_KE_PHONE_RE.match(phone))


def to_local_phone(phone: str) -> str:
    """``+254712345678`` -> ``0712345678`` (the onramp format)."""
    if phone.startswith("+254"):
        return "0" + phone[4:]
    return phone


def to_international_phone(phone: str) -> str:
    """``0712345678`` -> ``+254712345678`` (the offramp format)."""
    if phone.startswith("0"):
        return "+254" + phone[1:]
    return phone


def to_cents(amount: float) -> int:
    return round(amount * 100)


def from_cents(cents: int) -> float:
    return cents / 100


# --- Endpoints ---


class RemitAPI:
    """Endpoint wrappers over a ``RemitAPIClient``."""

    def __init__(self, client: RemitAPIClient) -> None:
        self.client = client

    async def create_funding_intent(
        self, payload: FundingIntentPayload
    ) -> FundingIntentResponse:
        """Create a funding intent and trigger the M-Pesa STK push.

        The escrow does not exist yet: the backend creates it once the
        payment is confirmed.
        """
        data = await self.client.post(
            "/onramp/kes/intent",
            {
                "phone_number": to_local_phone(payload.sender_phone),
                "recipient_phone": to_international_phone(payload.recipient_phone),
                "total_amount_usd": payload.total_amount_usd,
                "categories": [c.to_wire() for c in payload.categories],
                "memo": payload.memo,
            },
        )
        return FundingIntentResponse.model_validate(_require_dict(data))

    async def get_funding_intent_status(self, transaction_code: str) -> FundingIntentStatus:
        data = await self.client.get(
            f"/onramp/kes/status/{quote(transaction_code, safe='')}"
        )
        return FundingIntentStatus.model_validate(_require_dict(data))

    async def initiate_offramp(
        self,
        payment_request_id: str,
        phone: str,
        amount_kes: float,
        transaction_hash: str,
    ) -> OfframpResponse:
        """Disburse KES to the recipient via M-Pesa.

        Only valid once the payment reached ``onchain_done_offramp_pending``.
        """
        data = await self.client.post(
            "/offramp/pay",
            {
                "paymentRequestId": payment_request_id,
                "phoneNumber": to_international_phone(phone),
                "amountKes": amount_kes,
                "transactionHash": transaction_hash,
            },
        )
        return OfframpResponse.model_validate(_require_dict(data))

    async def get_payment_request(self, payment_request_id: str) -> PaymentRequestDetail:
        data = await self.client.get(f"/payment-requests/{quote(payment_request_id, safe='')}")
        body = _require_dict(data)
        # The detail endpoint wraps the payload in {"success": ..., "data": {...}}
        inner = body.get("data", body)
        return PaymentRequestDetail.model_validate(_require_dict(inner))

    async def create_payment_request(
        self, body: CreatePaymentRequestBody
    ) -> CreatePaymentRequestResponse:
        data = await self.client.post(
            "/payment-requests", body.model_dump(by_alias=True)
        )
        return CreatePaymentRequestResponse.model_validate(_require_dict(data))


async def submit_payment_request(
    api: RemitAPI,
    body: CreatePaymentRequestBody,
    *,
    category_name: str,
    records: LocalRecordStore[PaymentRequestRecord] | None = None,
) -> CreatePaymentRequestResponse:
    """Create a payment request and remember it locally once accepted."""
    response = await api.create_payment_request(body)
    if records is not None:
        records.append(
            PaymentRequestRecord(
                payment_request_id=response.payment_request_id,
                payment_id=response.payment_id,
                escrow_id=body.escrow_id,
                category_id=body.category_id,
                category_name=category_name,
                amount_kes_cents=body.amount_kes_cents,
                amount_usd_cents=body.amount_usd_cents,
                merchant_name=body.merchant_name,
                merchant_account=body.merchant_account,
            )
        )
        log.debug("Stored payment request %s", response.payment_request_id)
    return response


def _require_dict(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ValidationError(f"Expected a JSON object from the backend, got {type(data).__name__}")
    return data
