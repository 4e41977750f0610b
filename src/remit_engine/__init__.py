"""Payment confirmation and disbursement engine for the remit backend."""

import importlib.metadata
import logging

from remit_engine.client import (
    ErrorCategory,
    ErrorInfo,
    FundingIntentPayload,
    RemitAPI,
    RemitAPIClient,
    classify,
    handle_error,
)
from remit_engine.config import FrozenConfig, ResolvedConfig, config_scope, resolve_config
from remit_engine.disbursement import (
    AutoDisbursementWatcher,
    DisbursementState,
    PaymentStatusSnapshot,
)
from remit_engine.engine import RemitEngine, create_engine
from remit_engine.exceptions import (
    APIError,
    ConfigurationError,
    InvalidPhaseError,
    NetworkError,
    PollingAbortedError,
    PollingTimeoutError,
    RecipientPhoneMissingError,
    RemitEngineError,
    ValidationError,
)
from remit_engine.monitor import PaymentRequestMonitor
from remit_engine.orchestrator import (
    ConfirmationPhase,
    ConfirmationState,
    PaymentConfirmationOrchestrator,
)
from remit_engine.polling import PollingConfig, poll
from remit_engine.retry import DebouncedRetry, RetryConfig, debounced_retry, execute
from remit_engine.storage import (
    EscrowCategory,
    EscrowRecord,
    JSONFileBackend,
    MemoryBackend,
    PaymentRequestRecord,
    TriggerStore,
)
from remit_engine.telemetry import TelemetryContext, TelemetryReporter

# Version handling
try:
    __version__ = importlib.metadata.version("remit-engine")
except importlib.metadata.PackageNotFoundError:
    __version__ = "development"

# Library logging stays silent unless the application configures handlers
logging.getLogger(__name__).addHandler(logging.NullHandler())

# Public API
__all__ = [  # noqa: RUF022
    # Engine
    "RemitEngine",
    "create_engine",
    # Confirmation
    "PaymentConfirmationOrchestrator",
    "ConfirmationPhase",
    "ConfirmationState",
    # Disbursement
    "AutoDisbursementWatcher",
    "DisbursementState",
    "PaymentStatusSnapshot",
    "PaymentRequestMonitor",
    # Retry & polling
    "RetryConfig",
    "execute",
    "DebouncedRetry",
    "debounced_retry",
    "PollingConfig",
    "poll",
    # Storage
    "TriggerStore",
    "MemoryBackend",
    "JSONFileBackend",
    "EscrowCategory",
    "EscrowRecord",
    "PaymentRequestRecord",
    # Client
    "RemitAPIClient",
    "RemitAPI",
    "FundingIntentPayload",
    "ErrorCategory",
    "ErrorInfo",
    "classify",
    "handle_error",
    # Configuration
    "resolve_config",
    "config_scope",
    "ResolvedConfig",
    "FrozenConfig",
    # Telemetry
    "TelemetryContext",
    "TelemetryReporter",
    # Exceptions
    "RemitEngineError",
    "APIError",
    "NetworkError",
    "PollingTimeoutError",
    "PollingAbortedError",
    "InvalidPhaseError",
    "RecipientPhoneMissingError",
    "ConfigurationError",
    "ValidationError",
]
