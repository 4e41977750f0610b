import json

import httpx
import pytest

from remit_engine.client.models import CreatePaymentRequestBody, FundingIntentPayload
from remit_engine.client.services import (
    RemitAPI,
    from_cents,
    is_valid_kenyan_phone,
    submit_payment_request,
    to_cents,
    to_international_phone,
    to_local_phone,
)
from remit_engine.client.transport import RemitAPIClient
from remit_engine.exceptions import ValidationError
from remit_engine.storage import EscrowCategory, payment_request_store


@pytest.fixture
def make_api(mock_transport_factory):
    def _make(routes):
        transport = mock_transport_factory(routes)
        return RemitAPI(RemitAPIClient("https://remit.test", transport=transport)), transport

    return _make


class TestPhoneHelpers:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        ("phone", "valid"),
        [
            ("+254712345678", True),
            ("0712345678", True),
            ("712345678", False),
            ("+25471234567", False),
            ("+2547123456789", False),
        ],
    )
    def test_validation(self, phone, valid):
        assert is_valid_kenyan_phone(phone) is valid

    @pytest.mark.unit
    def test_conversion(self):
        assert to_local_phone("+254712345678") == "0712345678"
        assert to_local_phone("0712345678") == "0712345678"
        assert to_international_phone("0712345678") == "+254712345678"
        assert to_international_phone("+254712345678") == "+254712345678"

    @pytest.mark.unit
    def test_cents(self):
        assert to_cents(10.5) == 1050
        assert from_cents(1050) == 10.5


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_funding_intent_normalizes_phones(make_api):
    api, transport = make_api(
        {
            ("POST", "/onramp/kes/intent"): httpx.Response(
                200, json={"transaction_code": "TX1", "intent_id": "i-1"}
            )
        }
    )
    payload = FundingIntentPayload(
        sender_phone="+254700000001",
        recipient_phone="0712345678",
        total_amount_usd=25,
        categories=(EscrowCategory("rent", 25.0),),
    )

    response = await api.create_funding_intent(payload)

    assert response.transaction_code == "TX1"
    sent = json.loads(transport.requests[0].content)
    assert sent["phone_number"] == "0700000001"
    assert sent["recipient_phone"] == "+254712345678"
    assert sent["categories"] == [{"name": "rent", "amountUsd": 25.0}]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_status_code_is_url_escaped(make_api):
    api, transport = make_api(
        {
            ("GET", "/onramp/kes/status/TX 1"): httpx.Response(
                200, json={"status": "confirmed", "escrowId": "E1"}
            )
        }
    )

    status = await api.get_funding_intent_status("TX 1")

    assert status.status == "confirmed"
    assert status.escrow_id == "E1"
    assert transport.requests[0].url.raw_path == b"/onramp/kes/status/TX%201"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_initiate_offramp_body(make_api):
    api, transport = make_api(
        {
            ("POST", "/offramp/pay"): httpx.Response(
                200, json={"transactionCode": "MP123", "amountKes": 1300}
            )
        }
    )

    response = await api.initiate_offramp("pr-1", "0712345678", 1300.0, "0xabc")

    assert response.transaction_code == "MP123"
    assert json.loads(transport.requests[0].content) == {
        "paymentRequestId": "pr-1",
        "phoneNumber": "+254712345678",
        "amountKes": 1300.0,
        "transactionHash": "0xabc",
    }


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_payment_request_unwraps_data(make_api):
    api, _ = make_api(
        {
            ("GET", "/payment-requests/pr-1"): httpx.Response(
                200,
                json={
                    "success": True,
                    "data": {
                        "payment_request_id": "pr-1",
                        "status": "processing",
                        "onchain_status": "onchain_done_offramp_pending",
                        "transaction_hash": "0xabc",
                    },
                },
            )
        }
    )

    detail = await api.get_payment_request("pr-1")

    assert detail.onchain_status == "onchain_done_offramp_pending"
    assert detail.offramp_status is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_non_object_response_is_rejected(make_api):
    api, _ = make_api({("GET", "/onramp/kes/status/TX1"): httpx.Response(200, json=[1, 2])})

    with pytest.raises(ValidationError):
        await api.get_funding_intent_status("TX1")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_submit_payment_request_records_locally(make_api, memory_backend):
    api, transport = make_api(
        {
            ("POST", "/payment-requests"): httpx.Response(
                201,
                json={"paymentRequestId": "pr-9", "paymentId": "p-9", "status": "pending_approval"},
            )
        }
    )
    records = payment_request_store(memory_backend)
    body = CreatePaymentRequestBody(
        escrow_id="E1",
        category_id="c-1",
        amount_kes_cents=129_000,
        amount_usd_cents=1_000,
        exchange_rate=129.0,
        merchant_name="Landlord",
        merchant_account="0712345678",
    )

    response = await submit_payment_request(api, body, category_name="rent", records=records)

    assert response.payment_request_id == "pr-9"
    assert json.loads(transport.requests[0].content)["escrowId"] == "E1"
    stored = records.get("pr-9")
    assert stored.category_name == "rent"
    assert stored.amount_kes_cents == 129_000
