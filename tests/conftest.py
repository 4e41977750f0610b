"""
Global test configuration with support for different test types.
"""

import asyncio
from collections.abc import Callable, Generator
from contextlib import contextmanager, suppress
import logging
import os
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

from remit_engine.client.models import (
    FundingIntentPayload,
    FundingIntentResponse,
    FundingIntentStatus,
)
from remit_engine.exceptions import NetworkError
from remit_engine.storage import EscrowCategory, MemoryBackend


# --- Environment Isolation (Autouse) ---
@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-in escape hatch: mark a test with @pytest.mark.allow_dotenv
    to permit .env loading for that specific test.
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "remit_engine.config.env_loader.load_dotenv",
            lambda *_args, **_kwargs: False,
        )


@pytest.fixture(autouse=True)
def isolate_remit_env(request, monkeypatch):
    """Ensure a clean REMIT_* environment for each test.

    Escape hatch: @pytest.mark.allow_env_pollution keeps the current env.
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return

    for key in list(os.environ.keys()):
        if key.startswith("REMIT_"):
            monkeypatch.delenv(key, raising=False)
    # Avoid DEBUG toggles enabling telemetry
    monkeypatch.delenv("DEBUG", raising=False)


@pytest.fixture(autouse=True)
def neutral_home_config(request, monkeypatch, tmp_path):
    """Point the home-config path to an isolated temp file by default.

    Escape hatch: @pytest.mark.allow_real_home_config uses the real path.
    """
    if request.node.get_closest_marker("allow_real_home_config"):
        return

    fake_home_dir = tmp_path / "home_config_isolated"
    fake_home_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("REMIT_CONFIG_HOME", str(fake_home_dir / "remit_engine.toml"))


@pytest.fixture
def isolated_config_sources(tmp_path):
    """Set up explicit config sources for a test.

    Returns a context manager factory; the project directory to pass as
    ``project_root`` is ``tmp_path / "project"``.
    """

    @contextmanager
    def _setup(
        *,
        pyproject_content: str = "",
        home_content: str = "",
        env_vars: dict[str, str] | None = None,
    ) -> Generator[Path]:
        clean_env = {k: v for k, v in os.environ.items() if not k.startswith("REMIT_")}
        if env_vars:
            for key, value in env_vars.items():
                if not key.startswith("REMIT_"):
                    key = f"REMIT_{key.upper()}"
                clean_env[key] = value

        project_dir = tmp_path / "project"
        project_dir.mkdir(exist_ok=True)
        home_dir = tmp_path / "home"
        home_dir.mkdir(exist_ok=True)
        home_config_path = home_dir / "remit_engine.toml"

        if pyproject_content:
            (project_dir / "pyproject.toml").write_text(pyproject_content)
        if home_content:
            home_config_path.write_text(home_content)

        clean_env["REMIT_CONFIG_HOME"] = str(home_config_path)

        with patch.dict(os.environ, clean_env, clear=True):
            yield project_dir

    return _setup


# --- Logging Fixtures ---
@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Sets the log level for noisy external libraries to WARNING."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# --- Test Environment Markers ---
def pytest_configure(config):
    """Configure custom markers for test organization."""
    markers = [
        "unit: Fast, isolated unit tests",
        "integration: Component integration tests with mocked HTTP",
        "contract: Behavioral contracts the public API must keep",
        "allow_dotenv: Permit .env loading for this test",
        "allow_env_pollution: Keep the ambient REMIT_* environment",
        "allow_real_home_config: Read the real home config file",
    ]
    for marker in markers:
        config.addinivalue_line("markers", marker)


# --- Core Fixtures ---


class FakeClock:
    """Deterministic monotonic clock; ``sleep`` advances it instead of waiting."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorded_sleeps() -> tuple[list[float], Callable]:
    """A no-wait ``sleep`` replacement and the list of requested delays."""
    delays: list[float] = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)

    return delays, _sleep


@pytest.fixture
def memory_backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def funding_payload() -> FundingIntentPayload:
    return FundingIntentPayload(
        sender_phone="+254700000001",
        recipient_phone="0712345678",
        total_amount_usd=25.0,
        categories=(EscrowCategory("groceries", 15.0), EscrowCategory("rent", 10.0)),
        memo="October support",
    )


class FakeFundingAPI:
    """Scripted stand-in for the onramp endpoints.

    ``statuses`` is consumed one entry per status call: a status string, a
    ``(status, escrow_id)`` tuple, or an exception to raise. The last entry
    repeats once the script runs out. ``hang=True`` makes status calls block
    until cancelled.
    """

    def __init__(
        self,
        statuses: list | None = None,
        *,
        transaction_code: str = "TX1",
        create_error: BaseException | None = None,
        hang: bool = False,
    ) -> None:
        self.statuses = list(statuses or ["pending"])
        self.transaction_code = transaction_code
        self.create_error = create_error
        self.hang = hang
        self.create_calls: list[FundingIntentPayload] = []
        self.status_calls: list[str] = []

    async def create_funding_intent(self, payload):
        self.create_calls.append(payload)
        if self.create_error is not None:
            raise self.create_error
        return FundingIntentResponse(
            transaction_code=self.transaction_code,
            intent_id="intent-1",
            message="STK push sent",
        )

    async def get_funding_intent_status(self, transaction_code):
        self.status_calls.append(transaction_code)
        if self.hang:
            await asyncio.Event().wait()
        entry = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(entry, BaseException):
            raise entry
        if isinstance(entry, tuple):
            status, escrow_id = entry
            return FundingIntentStatus(status=status, escrowId=escrow_id)
        return FundingIntentStatus(status=entry)


@pytest.fixture
def fake_funding_api() -> Callable[..., FakeFundingAPI]:
    return FakeFundingAPI


@pytest.fixture
def network_error() -> NetworkError:
    return NetworkError("Network request failed: connection refused")


@pytest.fixture
def mock_transport_factory():
    """Build an ``httpx.MockTransport`` from a ``(method, path) -> response`` map.

    Values are ``httpx.Response`` objects, callables taking the request, or
    exceptions to raise. Every request is recorded on ``transport.requests``.
    """

    def _build(routes: dict[tuple[str, str], object]) -> httpx.MockTransport:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            route = routes.get((request.method, request.url.path))
            if route is None:
                return httpx.Response(404, json={"error": "Not found"})
            if isinstance(route, BaseException):
                raise route
            if callable(route):
                return route(request)
            return route

        transport = httpx.MockTransport(handler)
        transport.requests = requests  # type: ignore[attr-defined]
        return transport

    return _build
