"""Client side of the remit backend contract."""

from .error_handler import (
    ErrorCategory,
    ErrorInfo,
    LoggingNotifier,
    Notifier,
    classify,
    handle_error,
    is_processing,
    requires_auth,
    should_retry,
    user_friendly_message,
)
from .models import (
    CreatePaymentRequestBody,
    CreatePaymentRequestResponse,
    FundingIntentPayload,
    FundingIntentResponse,
    FundingIntentStatus,
    OfframpResponse,
    PaymentRequestDetail,
)
from .services import (
    RemitAPI,
    from_cents,
    is_valid_kenyan_phone,
    submit_payment_request,
    to_cents,
    to_international_phone,
    to_local_phone,
)
from .transport import RemitAPIClient

__all__ = [  # noqa: RUF022
    # Error handling
    "ErrorCategory",
    "ErrorInfo",
    "Notifier",
    "LoggingNotifier",
    "classify",
    "handle_error",
    "should_retry",
    "requires_auth",
    "is_processing",
    "user_friendly_message",
    # Transport & endpoints
    "RemitAPIClient",
    "RemitAPI",
    "submit_payment_request",
    # Wire models
    "FundingIntentPayload",
    "FundingIntentResponse",
    "FundingIntentStatus",
    "OfframpResponse",
    "PaymentRequestDetail",
    "CreatePaymentRequestBody",
    "CreatePaymentRequestResponse",
    # Helpers
    "is_valid_kenyan_phone",
    "to_local_phone",
    "to_international_phone",
    "to_cents",
    "from_cents",
]
