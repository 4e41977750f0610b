"""Exceptions raised by the remit confirmation engine."""

from typing import Any


class RemitEngineError(Exception):
    """Base exception for remit engine errors."""


class APIError(RemitEngineError):
    """Structured error for a non-2xx backend response.

    Carries the HTTP status and the decoded error body (if any). The message
    prefers the body's ``error`` field, then ``message``, then a generic
    status line.
    """

    def __init__(
        self,
        status: int | None,
        body: dict[str, Any] | None = None,
        message: str | None = None,
    ) -> None:
        self.status = status
        self.body = body
        if message is None:
            message = _message_from_body(status, body)
        super().__init__(message)

    @property
    def message(self) -> str:
        return str(self)

    @property
    def is_processing(self) -> bool:
        """True when the backend returned 202 (queued / processing)."""
        return self.status == 202

    @property
    def is_service_busy(self) -> bool:
        """True when the service is temporarily unavailable (503)."""
        return self.status == 503

    @property
    def is_unauthorized(self) -> bool:
        """True when the token is invalid or missing (401)."""
        return self.status == 401

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status!r}, message={str(self)!r})"


class NetworkError(APIError):
    """Raised when the request never produced an HTTP response."""

    def __init__(self, message: str = "Network request failed") -> None:
        super().__init__(None, None, message)


class PollingTimeoutError(RemitEngineError):
    """Raised when a poll exceeds its wall-clock budget."""

    def __init__(self, message: str = "Polling timed out") -> None:
        super().__init__(message)


class PollingAbortedError(RemitEngineError):
    """Raised when polling is abandoned after repeated cycle failures."""

    def __init__(self, failures: int, last_error: BaseException) -> None:
        self.failures = failures
        self.last_error = last_error
        super().__init__(
            f"Polling aborted after {failures} consecutive failures: {last_error}"
        )


class InvalidPhaseError(RemitEngineError):
    """Raised when an orchestrator control is used from the wrong phase."""


class RecipientPhoneMissingError(RemitEngineError):
    """Raised when a disbursement is due but no recipient phone is known."""

    def __init__(self) -> None:
        super().__init__("RECIPIENT_PHONE_MISSING")


class ConfigurationError(RemitEngineError):
    """Raised when configuration values fail validation."""


class ValidationError(RemitEngineError):
    """Raised when caller input fails validation."""


def _message_from_body(status: int | None, body: dict[str, Any] | None) -> str:
    if isinstance(body, dict):
        for key in ("error", "message"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    if status is None:
        return "Request failed"
    return f"Request failed with status {status}"
