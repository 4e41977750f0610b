"""Error classification and caller-facing error handling.

``classify`` maps any caught failure onto an ``ErrorInfo`` describing its
category, whether a retry may help, and the phrase to show a user. It is the
single source of retryability for the retry and polling layers.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
import logging
from typing import TYPE_CHECKING, Protocol

from ..exceptions import APIError, NetworkError

if TYPE_CHECKING:
    from ..storage import CredentialStore

log = logging.getLogger(__name__)

LOGIN_REDIRECT_PATH = "/recipient/login"
RETRY_HINT = "Please try again"


class ErrorCategory(Enum):
    VALIDATION = "validation"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    NETWORK = "network"
    PROCESSING = "processing"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ErrorInfo:
    category: ErrorCategory
    message: str
    user_message: str
    is_retryable: bool
    should_redirect: bool = False
    redirect_path: str | None = None


def classify(error: object) -> ErrorInfo:
    """Categorize an error and extract what callers need to react to it."""
    if isinstance(error, NetworkError):
        return ErrorInfo(
            category=ErrorCategory.NETWORK,
            message=str(error),
            user_message=user_friendly_message(
                str(error), "Network error. Please check your connection."
            ),
            is_retryable=True,
        )
    if isinstance(error, APIError) and error.status is not None:
        return _classify_status(error.status, str(error))
    if isinstance(error, BaseException):
        message = str(error)
        return ErrorInfo(
            category=ErrorCategory.UNKNOWN,
            message=message,
            user_message=message or "An unexpected error occurred",
            is_retryable=False,
        )
    if isinstance(error, str):
        return ErrorInfo(
            category=ErrorCategory.UNKNOWN,
            message=error,
            user_message=error,
            is_retryable=False,
        )
    return ErrorInfo(
        category=ErrorCategory.UNKNOWN,
        message="Unknown error",
        user_message="An unexpected error occurred. Please try again.",
        is_retryable=False,
    )


def _classify_status(status: int, message: str) -> ErrorInfo:
    if status == 202:
        return ErrorInfo(
            category=ErrorCategory.PROCESSING,
            message="Request is being processed",
            user_message="Your request is being processed. Please wait...",
            is_retryable=False,
        )
    if status == 400:
        return ErrorInfo(
            category=ErrorCategory.VALIDATION,
            message=message,
            user_message=user_friendly_message(
                message, "Please check your input and try again."
            ),
            is_retryable=False,
        )
    if status == 401:
        return ErrorInfo(
            category=ErrorCategory.AUTH,
            message=message,
            user_message="Your session has expired. Please log in again.",
            is_retryable=False,
            should_redirect=True,
            redirect_path=LOGIN_REDIRECT_PATH,
        )
    if status == 404:
        return ErrorInfo(
            category=ErrorCategory.NOT_FOUND,
            message=message,
            user_message=user_friendly_message(
                message, "The requested resource was not found."
            ),
            is_retryable=False,
        )
    if status == 408:
        return ErrorInfo(
            category=ErrorCategory.NETWORK,
            message=message,
            user_message="Request timed out. Please check your connection and try again.",
            is_retryable=True,
        )
    if status == 429:
        return ErrorInfo(
            category=ErrorCategory.RATE_LIMIT,
            message=message,
            user_message="Too many requests. Please wait a moment and try again.",
            is_retryable=True,
        )
    if status == 503:
        return ErrorInfo(
            category=ErrorCategory.SERVER,
            message=message,
            user_message="Service is temporarily unavailable. Please try again in a few seconds.",
            is_retryable=True,
        )
    if 500 <= status < 600:
        return ErrorInfo(
            category=ErrorCategory.SERVER,
            message=message,
            user_message="A server error occurred. Please try again later.",
            is_retryable=True,
        )
    return ErrorInfo(
        category=ErrorCategory.UNKNOWN,
        message=message,
        user_message=user_friendly_message(message, "An error occurred. Please try again."),
        is_retryable=False,
    )


def user_friendly_message(technical_message: str, fallback: str) -> str:
    """Convert a technical error message into something a user can act on."""
    msg = technical_message.lower()

    if "network" in msg or "fetch" in msg:
        return "Network error. Please check your connection."
    if "timeout" in msg:
        return "Request timed out. Please try again."
    if "invalid" in msg and "phone" in msg:
        return "Please enter a valid phone number."
    if "insufficient" in msg and "balance" in msg:
        return "Insufficient balance for this transaction."
    if "not found" in msg:
        return "The requested item was not found."
    if "already exists" in msg:
        return "This item already exists."
    if "unauthorized" in msg or "forbidden" in msg:
        return "You do not have permission to perform this action."

    # Already readable: no jargon and short enough to show as-is
    if "error" not in msg and "failed" not in msg and len(technical_message) < 100:
        return technical_message

    return fallback


# --- Caller-facing handling ---


class Notifier(Protocol):
    """Surface for user-visible notifications (toast, CLI line, chat message)."""

    def error(self, message: str, *, description: str | None = None) -> None: ...


class LoggingNotifier:
    """Default notifier: writes user-facing messages to the library log."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._log = logger or log

    def error(self, message: str, *, description: str | None = None) -> None:
        if description:
            self._log.error("%s (%s)", message, description)
        else:
            self._log.error("%s", message)


def handle_error(
    error: object,
    *,
    notifier: Notifier | None = None,
    credentials: "CredentialStore | None" = None,
    on_redirect: Callable[[str], None] | None = None,
    custom_message: str | None = None,
    context: str | None = None,
    notify: bool = True,
) -> ErrorInfo:
    """Classify ``error`` and apply the standard side effects.

    - PROCESSING: returned as-is, nothing is surfaced.
    - AUTH: the stored credential is cleared, the user is notified and
      ``on_redirect`` receives the login path.
    - Anything else: the user is notified; retryable errors carry a
      "Please try again" hint.

    Returns:
        The ``ErrorInfo`` so the caller can branch on specific categories.
    """
    info = classify(error)
    log.error(
        "[%s] category=%s status=%s message=%s",
        context or "Error",
        info.category.value,
        error.status if isinstance(error, APIError) else None,
        info.message,
    )

    if info.category is ErrorCategory.PROCESSING:
        return info

    sink = notifier or LoggingNotifier()
    message = custom_message or info.user_message

    if info.category is ErrorCategory.AUTH:
        if credentials is not None:
            credentials.clear()
        if notify:
            sink.error(message)
        if on_redirect is not None and info.redirect_path:
            on_redirect(info.redirect_path)
        return info

    if notify:
        if info.is_retryable:
            sink.error(message, description=RETRY_HINT)
        else:
            sink.error(message)
    return info


def should_retry(error: object) -> bool:
    return classify(error).is_retryable


def requires_auth(error: object) -> bool:
    return classify(error).category is ErrorCategory.AUTH


def is_processing(error: object) -> bool:
    return isinstance(error, APIError) and error.status == 202
