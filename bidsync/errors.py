"""Error taxonomy shared by the API client, cache, mutations, and push channel."""

from __future__ import annotations

from typing import Any, Mapping


class MarketError(Exception):
    """Base class for every failure surfaced by the client core."""

    default_code = "UNKNOWN_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status: int | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.status = status
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"message": self.message, "code": self.code}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(MarketError):
    """Raised when a form fails client-side (or server-flagged) validation."""

    default_code = "VALIDATION_ERROR"

    def __init__(self, fields: Mapping[str, str], message: str = "Validation failed", **kwargs: Any) -> None:
        kwargs.setdefault("details", dict(fields))
        super().__init__(message, **kwargs)

    @property
    def fields(self) -> dict[str, str]:
        return dict(self.details or {})


class NetworkError(MarketError):
    """Raised when the request never produced an HTTP response."""

    default_code = "NETWORK_ERROR"
    retryable = True


class AuthError(MarketError):
    """Raised for 401/403 responses and unusable credentials."""

    default_code = "UNAUTHORIZED"


class ClientError(MarketError):
    """Raised for 4xx responses other than authentication failures."""

    default_code = "CLIENT_ERROR"


class NotFoundError(ClientError):
    default_code = "NOT_FOUND"


class ServerError(MarketError):
    """Raised for 5xx responses."""

    default_code = "SERVER_ERROR"
    retryable = True


class PushConnectionError(MarketError):
    """Raised inside the push stream loop; never surfaced to the end user."""

    default_code = "CONNECTION_ERROR"
    retryable = True


class OperationInProgress(MarketError):
    """Raised when an authentication operation is already running."""

    default_code = "OPERATION_IN_PROGRESS"


def error_from_response(status: int, body: Any) -> MarketError:
    """Map an HTTP error response onto the taxonomy."""
    data = body if isinstance(body, dict) else {}
    message = str(data.get("message") or data.get("error") or f"request failed with status {status}")
    code = data.get("code")
    details = data.get("details")
    if code == ValidationError.default_code:
        fields = details if isinstance(details, dict) else {"general": message}
        return ValidationError(fields, message, status=status)
    if status in (401, 403):
        return AuthError(message, code=code, status=status, details=details)
    if status == 404:
        return NotFoundError(message, code=code, status=status, details=details)
    if 400 <= status < 500:
        return ClientError(message, code=code, status=status, details=details)
    return ServerError(message, code=code, status=status, details=details)
