"""Wire models for the remit backend.

The backend mixes naming conventions (``transaction_code`` on the onramp
intent, ``transactionCode`` on the offramp, ``escrowId`` on the intent
status), so every model declares its aliases explicitly and populates by
either name.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from ..storage import EscrowCategory

PaymentRequestStatus = Literal[
    "pending_approval",
    "approved",
    "rejected",
    "processing",
    "onchain_pending",
    "onchain_done_offramp_pending",
    "completed",
    "failed",
]


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class FundingIntentPayload(BaseModel):
    """What the sender submits to fund a new escrow."""

    model_config = ConfigDict(frozen=True)

    sender_phone: str = Field(min_length=1)
    recipient_phone: str = Field(min_length=1)
    total_amount_usd: float = Field(gt=0)
    categories: tuple[EscrowCategory, ...] = ()
    memo: str | None = None


class FundingIntentResponse(_WireModel):
    transaction_code: str
    intent_id: str | None = None
    message: str | None = None


class FundingIntentStatus(_WireModel):
    status: str
    escrow_id: str | None = Field(default=None, alias="escrowId")
    intent_id: str | None = Field(default=None, alias="intentId")
    success: bool = True


class OfframpResponse(_WireModel):
    transaction_code: str = Field(alias="transactionCode")
    amount_kes: float | None = Field(default=None, alias="amountKes")
    message: str | None = None


class PaymentRequestDetail(_WireModel):
    payment_request_id: str
    status: str | None = None
    onchain_status: str | None = None
    transaction_hash: str | None = None
    offramp_status: str | None = None
    contract_address: str | None = None
    smart_contract_enabled: bool = False


class CreatePaymentRequestBody(_WireModel):
    escrow_id: str = Field(alias="escrowId")
    category_id: str = Field(alias="categoryId")
    amount_kes_cents: int = Field(alias="amountKesCents", ge=0)
    amount_usd_cents: int = Field(alias="amountUsdCents", ge=0)
    exchange_rate: float = Field(alias="exchangeRate", gt=0)
    merchant_name: str = Field(alias="merchantName")
    merchant_account: str = Field(alias="merchantAccount")


class CreatePaymentRequestResponse(_WireModel):
    payment_request_id: str = Field(alias="paymentRequestId")
    payment_id: str = Field(alias="paymentId")
    status: str | None = None
    success: bool = True
