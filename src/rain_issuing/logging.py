"""
Logging utilities for rain-issuing with sensitive data masking.

Card data flows through this package in several forms: API keys in headers,
SessionIds, encrypted and decrypted PAN/CVC/PIN values. The helpers here make
sure none of them reach a log record in clear.

Usage:
    import logging
    from rain_issuing.logging import mask_sensitive_data, log_request, log_response

    logger = logging.getLogger(__name__)

    logger.info("Issued card", extra={"data": mask_sensitive_data({
        "card_id": "c_123",
        "api_key": "rk_live_xxx",  # Will be masked
    })})

    log_request(logger, "GET", "/issuing/cards/c_123/secrets", headers)
    log_response(logger, 200, response_body, duration_ms)
"""
from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

MASK_PATTERN = "***MASKED***"
MAX_LOG_MESSAGE_LENGTH = 10_000
MAX_BODY_LOG_LENGTH = 1_000
MAX_MASK_DEPTH = 10

# Matched exactly, after lower-casing and replacing "-" with "_"
SENSITIVE_FIELDS = frozenset({
    "api_key",
    "apikey",
    "sessionid",
    "session_id",
    "secret",
    "pan",
    "cvc",
    "cvv",
    "pin",
    "encryptedpan",
    "encryptedcvc",
    "encryptedpin",
    "encrypted_pan",
    "encrypted_cvc",
    "encrypted_pin",
    "card_number",
    "cardnumber",
    "password",
})

# Matched as substrings of the normalized key
SENSITIVE_FRAGMENTS = ("secret", "password", "token", "api_key", "apikey", "credential", "session")

SENSITIVE_HEADERS = frozenset({
    "api-key",
    "authorization",
    "sessionid",
    "cookie",
    "set-cookie",
})

_INLINE_PATTERNS = [
    # Card numbers: keep the last four digits
    (re.compile(r"\b\d{9,15}(\d{4})\b"), r"************\1"),
    (re.compile(r"\b(api[_-]?key[=:])\s*[\"']?([^\"'\s]+)[\"']?", re.IGNORECASE), r"\1***"),
    (re.compile(r"\b(sessionid[=:])\s*[\"']?([^\"'\s]+)[\"']?", re.IGNORECASE), r"\1***"),
    (re.compile(r"(Bearer\s+)[a-zA-Z0-9._-]+", re.IGNORECASE), r"\1***"),
    (re.compile(r"(https?://)[^:/\s]+:[^@\s]+@", re.IGNORECASE), r"\1***:***@"),
]


# =============================================================================
# Sensitive Data Masking
# =============================================================================

def mask_value(value: str, show_chars: int = 4) -> str:
    """Mask a sensitive value, showing only the last few characters.

    Args:
        value: The value to mask
        show_chars: Number of trailing characters to keep

    Returns:
        Masked string
    """
    if not value or len(value) <= show_chars * 2:
        return MASK_PATTERN

    return f"...{value[-show_chars:]}"


def is_sensitive_key(key: str) -> bool:
    """Check if a key name indicates sensitive data.

    Args:
        key: The key name to check

    Returns:
        True if the key likely contains sensitive data
    """
    key_lower = key.lower().replace("-", "_")
    return key_lower in SENSITIVE_FIELDS or any(
        fragment in key_lower for fragment in SENSITIVE_FRAGMENTS
    )


def mask_sensitive_data(data: Any, additional_fields: Optional[Sequence[str]] = None) -> Any:
    """Return a copy of ``data`` with card secrets and credentials masked.

    Dict keys are matched against the sensitive field names (plus
    ``additional_fields``); strings are scanned for inline card numbers and
    credentials. Nesting deeper than ``MAX_MASK_DEPTH`` is returned unchanged.
    """
    extra = frozenset(additional_fields or ())
    return _mask(data, extra, 0)


def _mask(data: Any, extra: frozenset[str], depth: int) -> Any:
    if depth > MAX_MASK_DEPTH:
        return data
    if isinstance(data, dict):
        return {
            key: MASK_PATTERN
            if isinstance(key, str) and (key in extra or is_sensitive_key(key))
            else _mask(value, extra, depth + 1)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return type(data)(_mask(item, extra, depth + 1) for item in data)
    if isinstance(data, str):
        return _mask_inline_patterns(data)
    return data


def _mask_inline_patterns(text: str) -> str:
    """Mask common sensitive patterns in free text.

    Handles card numbers, ``api_key=...`` / ``sessionId=...`` pairs, bearer
    tokens and URLs with embedded credentials.
    """
    if len(text) > MAX_LOG_MESSAGE_LENGTH:
        text = text[:MAX_LOG_MESSAGE_LENGTH] + "...[truncated]"

    for pattern, replacement in _INLINE_PATTERNS:
        text = pattern.sub(replacement, text)

    return text


def mask_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Mask sensitive HTTP headers.

    Args:
        headers: HTTP headers dictionary

    Returns:
        Headers with sensitive values masked
    """
    result = {}
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS:
            result[key] = MASK_PATTERN
        else:
            result[key] = value
    return result


def _body_for_log(body: Any) -> str:
    body_str = json.dumps(mask_sensitive_data(body), default=str)
    if len(body_str) > MAX_BODY_LOG_LENGTH:
        body_str = body_str[:MAX_BODY_LOG_LENGTH] + "..."
    return body_str


# =============================================================================
# Request/Response Logging
# =============================================================================

def log_request(
    logger: logging.Logger,
    method: str,
    url: str,
    headers: Optional[Dict[str, str]] = None,
    body: Optional[Any] = None,
) -> None:
    """Log an outgoing HTTP request at DEBUG level.

    Args:
        logger: Logger to use
        method: HTTP method (GET, POST, etc.)
        url: Request URL
        headers: Optional request headers (sensitive values masked)
        body: Optional request body (sensitive values masked)
    """
    log_data: Dict[str, Any] = {
        "direction": "request",
        "method": method,
        "url": _mask_inline_patterns(url),
    }
    if headers:
        log_data["headers"] = mask_headers(headers)
    if body is not None:
        log_data["body"] = _body_for_log(body)

    logger.debug(f"HTTP {method} {log_data['url']}", extra={"data": log_data})


def log_response(
    logger: logging.Logger,
    status_code: int,
    body: Optional[Any] = None,
    duration_ms: Optional[float] = None,
    error: Optional[str] = None,
) -> None:
    """Log an HTTP response; 4xx/5xx responses are logged as warnings.

    Args:
        logger: Logger to use
        status_code: HTTP status code
        body: Optional response body (sensitive values masked)
        duration_ms: Request duration in milliseconds
        error: Optional error message
    """
    log_data: Dict[str, Any] = {
        "direction": "response",
        "status_code": status_code,
    }
    if duration_ms is not None:
        log_data["duration_ms"] = duration_ms
    if error:
        log_data["error"] = error
    if body is not None:
        log_data["body"] = _body_for_log(body)

    level = logging.DEBUG if status_code < 400 else logging.WARNING
    message = f"HTTP {status_code}"
    if duration_ms is not None:
        message += f" ({duration_ms:.0f}ms)"

    logger.log(level, message, extra={"data": log_data})


# =============================================================================
# JSON Formatter
# =============================================================================

class JsonFormatter(logging.Formatter):
    """JSON log formatter; masks the structured ``data`` payload again on output."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": _mask_inline_patterns(record.getMessage()),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        data = getattr(record, "data", None)
        if data:
            log_data["data"] = mask_sensitive_data(data)

        return json.dumps(log_data, default=str)


def configure_logging(level: int = logging.INFO, json_format: bool = False) -> logging.Logger:
    """Attach a single stderr handler to the ``rain_issuing`` logger.

    Calling it again replaces the handler instead of stacking another one.
    The root logger is left alone so host applications keep their own setup.
    """
    package_logger = logging.getLogger("rain_issuing")
    for handler in list(package_logger.handlers):
        if getattr(handler, "_rain_issuing", False):
            package_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler._rain_issuing = True  # type: ignore[attr-defined]
    handler.setFormatter(
        JsonFormatter()
        if json_format
        else logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    package_logger.addHandler(handler)
    package_logger.setLevel(level)
    return package_logger


__all__ = [
    "MASK_PATTERN",
    "mask_sensitive_data",
    "mask_value",
    "mask_headers",
    "is_sensitive_key",
    "log_request",
    "log_response",
    "configure_logging",
    "JsonFormatter",
]
