"""Unified exception hierarchy for rain-issuing.

Every error raised by this package inherits from RainIssuingError, so callers
can tell three situations apart without parsing messages:

- ``fix_input``: the request itself is wrong (bad display name, illegal
  transition, missing shipping address).
- ``retry_later``: the request may succeed later (limit exposure ages out,
  user approval arrives, the API recovers).
- ``final``: the operation can never succeed (canceled card, wrong key).

Usage:
    from rain_issuing.exceptions import LimitExceededError, RainIssuingError

    try:
        await service.authorize_charge(card_id, 500)
    except LimitExceededError as e:
        print(e.available)
    except RainIssuingError as e:
        print(e.kind, e.disposition, e.message)

All exceptions have:
- kind: Error family (validation, state_conflict, limit_exceeded,
  cryptographic, external_dependency)
- error_code: Machine-readable error code (e.g., "CARD_CANCELED")
- disposition: fix_input, retry_later or final
- message: Human-readable error message
- details: Optional additional context dictionary
- to_dict(): Convert to a serializable error payload
"""
from __future__ import annotations

from typing import Any, Optional, Type


FIX_INPUT = "fix_input"
RETRY_LATER = "retry_later"
FINAL = "final"


class RainIssuingError(Exception):
    """Base exception for all rain-issuing errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Optional additional context
    """

    kind: str = "error"
    error_code: str = "RAIN_ISSUING_ERROR"
    disposition: str = RETRY_LATER

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    @property
    def is_final(self) -> bool:
        return self.disposition == FINAL

    @property
    def is_retryable(self) -> bool:
        return self.disposition == RETRY_LATER

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to an error payload."""
        result = {
            "error": self.error_code,
            "kind": self.kind,
            "disposition": self.disposition,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Validation Errors
# =============================================================================

class ValidationError(RainIssuingError):
    """Invalid input data or parameters."""

    kind = "validation"
    error_code = "VALIDATION_ERROR"
    disposition = FIX_INPUT

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details)
        self.field = field


class DisplayNameError(ValidationError):
    """Display name too long or using characters outside the allowed set."""

    error_code = "INVALID_DISPLAY_NAME"


class ShippingAddressError(ValidationError):
    """Shipping details missing, misplaced or not printable for the method."""

    error_code = "INVALID_SHIPPING"


# =============================================================================
# State Conflict Errors
# =============================================================================

class StateConflictError(RainIssuingError):
    """Operation conflicts with the current state of a card or user."""

    kind = "state_conflict"
    error_code = "STATE_CONFLICT"
    disposition = FIX_INPUT


class CardNotFoundError(StateConflictError):
    """Card is not tracked by this process."""

    error_code = "CARD_NOT_FOUND"

    def __init__(self, card_id: str) -> None:
        super().__init__(
            f"Card '{card_id}' is not tracked",
            details={"card_id": card_id},
        )
        self.card_id = card_id


class InvalidTransitionError(StateConflictError):
    """Status change not permitted from the current status."""

    error_code = "INVALID_TRANSITION"

    def __init__(self, card_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Card '{card_id}' cannot move from {current} to {requested}",
            details={"card_id": card_id, "current": current, "requested": requested},
        )
        self.card_id = card_id
        self.current = current
        self.requested = requested


class CardCanceledError(StateConflictError):
    """Card is canceled; nothing about it can change any more."""

    error_code = "CARD_CANCELED"
    disposition = FINAL

    def __init__(self, card_id: str, operation: Optional[str] = None) -> None:
        message = f"Card '{card_id}' is canceled"
        if operation:
            message = f"{message}; {operation} rejected"
        details: dict[str, Any] = {"card_id": card_id}
        if operation:
            details["operation"] = operation
        super().__init__(message, details=details)
        self.card_id = card_id
        self.operation = operation


class CardNotActiveError(StateConflictError):
    """Card must be active to authorize charges."""

    error_code = "CARD_NOT_ACTIVE"
    disposition = RETRY_LATER

    def __init__(self, card_id: str, status: str) -> None:
        super().__init__(
            f"Card '{card_id}' is {status}, not active",
            details={"card_id": card_id, "status": status},
        )
        self.card_id = card_id
        self.status = status


class UserNotApprovedError(StateConflictError):
    """Owning user's application is not approved for issuance."""

    error_code = "USER_NOT_APPROVED"
    disposition = RETRY_LATER

    def __init__(self, user_id: str, application_status: Optional[str] = None) -> None:
        status = application_status or "unknown"
        super().__init__(
            f"User '{user_id}' is not approved for card issuance (status: {status})",
            details={"user_id": user_id, "application_status": status},
        )
        self.user_id = user_id
        self.application_status = status


# =============================================================================
# Limit Errors
# =============================================================================

class LimitExceededError(RainIssuingError):
    """Charge would push 30-day rolling exposure past the card limit."""

    kind = "limit_exceeded"
    error_code = "LIMIT_EXCEEDED"
    disposition = RETRY_LATER

    def __init__(
        self,
        card_id: str,
        requested: int,
        exposure: int,
        limit: int,
    ) -> None:
        available = limit - exposure
        super().__init__(
            f"Charge of {requested} on card '{card_id}' exceeds limit "
            f"{limit} (exposure {exposure}, available {available})",
            details={
                "card_id": card_id,
                "requested": requested,
                "exposure": exposure,
                "limit": limit,
                "available": available,
            },
        )
        self.card_id = card_id
        self.requested = requested
        self.exposure = exposure
        self.limit = limit
        self.available = available


# =============================================================================
# Cryptographic Errors
# =============================================================================

class CryptographicError(RainIssuingError):
    """Session encryption or field decryption failed."""

    kind = "cryptographic"
    error_code = "CRYPTOGRAPHIC_ERROR"
    disposition = FINAL


class EnvironmentMismatchError(CryptographicError):
    """Session created for one environment used against another."""

    error_code = "ENVIRONMENT_MISMATCH"

    def __init__(self, session_environment: str, request_environment: str) -> None:
        super().__init__(
            f"Session was created for {session_environment} but the request "
            f"targets {request_environment}",
            details={
                "session_environment": session_environment,
                "request_environment": request_environment,
            },
        )
        self.session_environment = session_environment
        self.request_environment = request_environment


class KeyNotConfiguredError(CryptographicError):
    """No public key is configured for the requested environment."""

    error_code = "KEY_NOT_CONFIGURED"

    def __init__(self, environment: str) -> None:
        super().__init__(
            f"No session public key configured for {environment}",
            details={"environment": environment},
        )
        self.environment = environment


class DecryptionError(CryptographicError):
    """Encrypted field is malformed, tampered with or keyed to another secret."""

    error_code = "DECRYPTION_FAILED"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        details: dict[str, Any] = {}
        if field:
            details["field"] = field
        super().__init__(message, details=details)
        self.field = field


class SessionExpiredError(CryptographicError):
    """Session outlived the caller-imposed expiry."""

    error_code = "SESSION_EXPIRED"


# =============================================================================
# External Dependency Errors
# =============================================================================

class ExternalDependencyError(RainIssuingError):
    """Failure reported by (or while reaching) an external collaborator."""

    kind = "external_dependency"
    error_code = "EXTERNAL_ERROR"
    disposition = RETRY_LATER


class APIError(ExternalDependencyError):
    """Error from an API response."""

    error_code = "API_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)
        self.status_code = status_code
        if 400 <= status_code < 500 and status_code not in (408, 429):
            self.disposition = FIX_INPUT

    @classmethod
    def from_response(cls, status_code: int, body: Any) -> "APIError":
        """Create the most specific APIError for an HTTP error response."""
        if status_code == 401:
            message = body.get("message") if isinstance(body, dict) else None
            return AuthenticationError(message or "Invalid or missing API key")
        if isinstance(body, dict):
            error_data = body.get("error", body.get("detail", body))
        else:
            error_data = body
        if isinstance(error_data, str):
            message, code, details = error_data, None, None
        elif isinstance(error_data, list):
            message, code, details = "Validation Error", "VALIDATION_ERROR", {"errors": error_data}
        elif isinstance(error_data, dict):
            message = error_data.get("message") or "Unknown error"
            code = error_data.get("code")
            details = error_data.get("details")
            if details is not None and not isinstance(details, dict):
                details = {"details": details}
        else:
            message, code, details = "Unknown error", None, None
        if status_code == 404:
            return NotFoundError(message, details=details)
        return cls(message, status_code=status_code, error_code=code, details=details)


class AuthenticationError(APIError):
    """Authentication error."""

    error_code = "AUTHENTICATION_ERROR"

    def __init__(self, message: str = "Invalid or missing API key") -> None:
        super().__init__(message, status_code=401)


class NotFoundError(APIError):
    """Resource not found on the API side."""

    error_code = "NOT_FOUND"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message, status_code=404, details=details)


class RateLimitError(APIError):
    """Rate limit exceeded error."""

    error_code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str, retry_after: Optional[int] = None) -> None:
        details = {"retry_after": retry_after} if retry_after is not None else None
        super().__init__(message, status_code=429, details=details)
        self.retry_after = retry_after


class TransportError(ExternalDependencyError):
    """Request never produced an HTTP response (timeout, connection reset)."""

    error_code = "TRANSPORT_ERROR"


_ERROR_CODE_MAP: dict[str, Type[RainIssuingError]] = {
    cls.error_code: cls
    for cls in (
        ValidationError,
        DisplayNameError,
        ShippingAddressError,
        StateConflictError,
        CardNotFoundError,
        InvalidTransitionError,
        CardCanceledError,
        CardNotActiveError,
        UserNotApprovedError,
        LimitExceededError,
        CryptographicError,
        EnvironmentMismatchError,
        KeyNotConfiguredError,
        DecryptionError,
        SessionExpiredError,
        ExternalDependencyError,
        APIError,
        AuthenticationError,
        NotFoundError,
        RateLimitError,
        TransportError,
    )
}


def get_exception_class(error_code: str) -> Type[RainIssuingError]:
    """Look up an exception class by its error code."""
    return _ERROR_CODE_MAP.get(error_code, RainIssuingError)


__all__ = [
    "FIX_INPUT",
    "RETRY_LATER",
    "FINAL",
    "RainIssuingError",
    "ValidationError",
    "DisplayNameError",
    "ShippingAddressError",
    "StateConflictError",
    "CardNotFoundError",
    "InvalidTransitionError",
    "CardCanceledError",
    "CardNotActiveError",
    "UserNotApprovedError",
    "LimitExceededError",
    "CryptographicError",
    "EnvironmentMismatchError",
    "KeyNotConfiguredError",
    "DecryptionError",
    "SessionExpiredError",
    "ExternalDependencyError",
    "APIError",
    "AuthenticationError",
    "NotFoundError",
    "RateLimitError",
    "TransportError",
    "get_exception_class",
]
