"""Classification of remote call failures.

The checks are duck-typed so they work with any transport: exceptions
that expose ``status_code``/``status`` directly (SDK errors) or through a
``response`` object (HTTP client errors), plus an optional JSON-ish body.
"""

import logging
import re
from typing import Any, Mapping, Optional

from quotashield.domain.errors import AuthExpiredError

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS = 429
FORBIDDEN_STATUS = 403
UNAUTHORIZED_STATUS = 401

RATE_LIMIT_MARKERS = (
    "quota exceeded",
    "too many requests",
    "throttled",
    "rate limit",
)

_RETRY_IN_PATTERN = re.compile(r"try again in (\d+)\s*(?:s\b|sec|second)", re.IGNORECASE)


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def extract_status(error: BaseException) -> Optional[int]:
    """Returns the HTTP status code carried by ``error``, if any."""
    for attr in ("status_code", "status"):
        status = _as_int(getattr(error, attr, None))
        if status is not None:
            return status
    response = getattr(error, "response", None)
    if response is not None:
        for attr in ("status_code", "status"):
            status = _as_int(getattr(response, attr, None))
            if status is not None:
                return status
    return None


def extract_body(error: BaseException) -> Optional[Any]:
    """Returns the decoded error body if the error or its response carries one."""
    body = getattr(error, "body", None)
    if body is not None:
        return body
    response = getattr(error, "response", None)
    if response is None:
        return None
    json_method = getattr(response, "json", None)
    if callable(json_method):
        try:
            return json_method()
        except ValueError:
            return getattr(response, "text", None)
    return getattr(response, "data", None)


def _error_text(error: BaseException) -> str:
    parts = [str(error)]
    body = extract_body(error)
    if body is not None:
        parts.append(str(body))
    return " ".join(parts).lower()


def is_rate_limit_error(error: BaseException) -> bool:
    """True for 429 responses and 403/429 responses with a quota marker."""
    status = extract_status(error)
    if status == RATE_LIMIT_STATUS:
        return True
    if status == FORBIDDEN_STATUS:
        text = _error_text(error)
        return any(marker in text for marker in RATE_LIMIT_MARKERS)
    return False


def is_auth_error(error: BaseException) -> bool:
    """True when the credential is missing, invalid or expired."""
    if isinstance(error, AuthExpiredError):
        return True
    return extract_status(error) == UNAUTHORIZED_STATUS


def _header(headers: Any, name: str) -> Optional[Any]:
    if headers is None:
        return None
    getter = getattr(headers, "get", None)
    if not callable(getter):
        return None
    value = getter(name)
    if value is None:
        value = getter(name.lower())
    return value


def extract_retry_after(error: BaseException) -> Optional[int]:
    """Extracts a retry-after hint in seconds from ``error``.

    Looked up, in order: a ``retry_after`` attribute, the ``Retry-After``
    response header, a ``retryAfter``/``retry_after`` body field, and a
    "try again in N seconds" phrase in the message or body.
    """
    hint = _as_int(getattr(error, "retry_after", None))
    if hint is not None:
        return hint

    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None) if response is not None else getattr(error, "headers", None)
    hint = _as_int(_header(headers, "Retry-After"))
    if hint is not None:
        return hint

    body = extract_body(error)
    if isinstance(body, Mapping):
        for field in ("retryAfter", "retry_after"):
            hint = _as_int(body.get(field))
            if hint is not None:
                return hint

    match = _RETRY_IN_PATTERN.search(_error_text(error))
    if match:
        return int(match.group(1))
    return None
