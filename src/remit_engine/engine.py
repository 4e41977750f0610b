"""Wiring of the engine components around one frozen configuration.

``create_engine`` is the only place where ambient configuration is resolved.
Everything it builds shares one state backend, so the bearer token, the
triggered-payment set and the local records all live in the same file.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
import logging
from types import TracebackType
from typing import TYPE_CHECKING, Any, Self

from .client.services import RemitAPI
from .client.transport import RemitAPIClient
from .config import FrozenConfig, resolve_config
from .disbursement import AutoDisbursementWatcher
from .monitor import PaymentRequestMonitor
from .orchestrator import PaymentConfirmationOrchestrator
from .storage import (
    CredentialStore,
    JSONFileBackend,
    TriggerStore,
    escrow_record_store,
    payment_request_store,
)
from .telemetry import TelemetryContext

if TYPE_CHECKING:
    import httpx

    from .client.models import OfframpResponse, PaymentRequestStatus
    from .storage import StorageBackend
    from .telemetry import TelemetryContextProtocol

log = logging.getLogger(__name__)


class RemitEngine:
    """Holds the shared client and stores; builds orchestrators and watchers."""

    def __init__(
        self,
        config: FrozenConfig,
        *,
        backend: StorageBackend | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        telemetry: TelemetryContextProtocol | None = None,
    ) -> None:
        self.config = config
        self.backend = backend if backend is not None else JSONFileBackend(config.state_path)
        self.telemetry = telemetry or TelemetryContext()
        self.credentials = CredentialStore(self.backend)
        self.triggered = TriggerStore(self.backend, max_entries=config.trigger_store_limit)
        self.escrows = escrow_record_store(self.backend)
        self.payment_requests = payment_request_store(self.backend)
        self.client = RemitAPIClient(
            config.base_url,
            credentials=self.credentials,
            timeout=config.request_timeout,
            transport=transport,
        )
        self.api = RemitAPI(self.client)
        log.debug("Engine ready for %s", config.base_url)

    def confirmation(self, **kwargs: Any) -> PaymentConfirmationOrchestrator:
        """Build an orchestrator that records confirmed escrows locally."""
        kwargs.setdefault("records", self.escrows)
        kwargs.setdefault("telemetry", self.telemetry)
        return PaymentConfirmationOrchestrator(self.api, settings=self.config, **kwargs)

    def disbursement_watcher(
        self,
        *,
        on_success: Callable[[OfframpResponse], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> AutoDisbursementWatcher:
        return AutoDisbursementWatcher(
            self.api,
            self.triggered,
            on_success=on_success,
            on_error=on_error,
            telemetry=self.telemetry,
        )

    def monitor(
        self,
        payment_request_id: str,
        *,
        interval: float | None = None,
        stop_on_statuses: Iterable[PaymentRequestStatus | str] = ("completed", "failed"),
        recipient_phone: str | None = None,
        amount_kes: float | None = None,
    ) -> PaymentRequestMonitor:
        return PaymentRequestMonitor(
            self.api,
            payment_request_id,
            interval=self.config.poll_interval if interval is None else interval,
            stop_on_statuses=stop_on_statuses,
            recipient_phone=recipient_phone,
            amount_kes=amount_kes,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()


def create_engine(
    config: FrozenConfig | None = None,
    *,
    backend: StorageBackend | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> RemitEngine:
    """Create an engine, resolving configuration from the environment if needed.

    Args:
        config: Frozen configuration; resolved via ``resolve_config`` when omitted.
        backend: State backend; defaults to a JSON file at ``config.state_path``.
        transport: httpx transport override, mainly for tests.
    """
    final_config = config if config is not None else resolve_config().to_frozen()
    return RemitEngine(final_config, backend=backend, transport=transport)
