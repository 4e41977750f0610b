"""End-to-end funding confirmation over a mocked backend."""

import asyncio
import json

import httpx
import pytest

from remit_engine import (
    ConfirmationPhase,
    EscrowCategory,
    FundingIntentPayload,
    create_engine,
    resolve_config,
)
from remit_engine.orchestrator import UNREACHABLE_MESSAGE

FAST = {"poll_interval": 0.001, "tick_interval": 0.001, "poll_retry": {"max_retries": 0}}


@pytest.fixture
def engine_config(tmp_path):
    return resolve_config(
        {"base_url": "https://remit.test", "state_path": tmp_path / "state.json"},
        project_root=tmp_path,
    ).to_frozen()


@pytest.fixture
def payload():
    return FundingIntentPayload(
        sender_phone="+254700000001",
        recipient_phone="0712345678",
        total_amount_usd=40.0,
        categories=(EscrowCategory("school fees", 40.0),),
    )


def status_route(statuses):
    remaining = list(statuses)

    def handler(request):
        entry = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        if isinstance(entry, BaseException):
            raise entry
        return httpx.Response(200, json=entry)

    return handler


@pytest.mark.integration
@pytest.mark.asyncio
async def test_pending_pending_confirmed_reaches_success(
    mock_transport_factory, engine_config, payload
):
    transport = mock_transport_factory(
        {
            ("POST", "/onramp/kes/intent"): httpx.Response(
                200, json={"transaction_code": "TX1", "message": "STK push sent"}
            ),
            ("GET", "/onramp/kes/status/TX1"): status_route(
                [
                    {"status": "pending"},
                    {"status": "pending"},
                    {"status": "confirmed", "escrowId": "E1", "success": True},
                ]
            ),
        }
    )

    async with create_engine(engine_config, transport=transport) as engine:
        engine.credentials.set("token-1")
        orchestrator = engine.confirmation(**FAST)
        await orchestrator.start(payload)
        state = await asyncio.wait_for(orchestrator.wait(), 2)

        assert state.phase is ConfirmationPhase.SUCCESS
        assert state.confirmed_escrow_id == "E1"
        assert engine.escrows.get("E1").total_amount_usd == 40.0

    intent_request = transport.requests[0]
    assert json.loads(intent_request.content)["recipient_phone"] == "+254712345678"
    assert intent_request.headers["Authorization"] == "Bearer token-1"
    assert [r.url.path for r in transport.requests[1:]] == ["/onramp/kes/status/TX1"] * 3


@pytest.mark.integration
@pytest.mark.asyncio
async def test_unreachable_backend_ends_in_error_well_before_the_timeout(
    mock_transport_factory, engine_config, payload
):
    transport = mock_transport_factory(
        {
            ("POST", "/onramp/kes/intent"): httpx.Response(200, json={"transaction_code": "TX1"}),
            ("GET", "/onramp/kes/status/TX1"): httpx.ConnectError("connection refused"),
        }
    )

    async with create_engine(engine_config, transport=transport) as engine:
        orchestrator = engine.confirmation(**FAST)
        await orchestrator.start(payload)
        state = await asyncio.wait_for(orchestrator.wait(), 2)

    assert state.phase is ConfirmationPhase.ERROR
    assert state.error_message == UNREACHABLE_MESSAGE
    assert len(transport.requests) == 1 + 5


@pytest.mark.integration
@pytest.mark.asyncio
async def test_expired_session_clears_token_and_fails_creation(
    mock_transport_factory, engine_config, payload
):
    transport = mock_transport_factory(
        {("POST", "/onramp/kes/intent"): httpx.Response(401, json={"error": "jwt expired"})}
    )

    async with create_engine(engine_config, transport=transport) as engine:
        engine.credentials.set("stale")
        orchestrator = engine.confirmation(**FAST)
        await orchestrator.start(payload)

        assert orchestrator.phase is ConfirmationPhase.ERROR
        assert orchestrator.state.error_message == (
            "Your session has expired. Please log in again."
        )
        assert engine.credentials.get() is None


@pytest.mark.integration
@pytest.mark.asyncio
async def test_state_file_is_shared_across_engines(engine_config, mock_transport_factory):
    transport = mock_transport_factory({})

    async with create_engine(engine_config, transport=transport) as engine:
        engine.triggered.add("pay-1")

    async with create_engine(engine_config, transport=transport) as reopened:
        assert reopened.triggered.has("pay-1")
