import pytest
from unittest.mock import MagicMock

from quotashield.domain.errors import AuthExpiredError
from quotashield.infrastructure.resilience.classification import (
    extract_retry_after, extract_status, is_auth_error, is_rate_limit_error,
)


class HttpError(Exception):
    """Error shaped like an HTTP client exception with a response object."""

    def __init__(self, status, body=None, headers=None, message="request failed"):
        super().__init__(message)
        self.response = MagicMock()
        self.response.status_code = status
        self.response.headers = headers or {}
        self.response.json.return_value = body


class SdkError(Exception):
    def __init__(self, status, message="", **attrs):
        super().__init__(message)
        self.status = status
        for name, value in attrs.items():
            setattr(self, name, value)


def test_extract_status_from_error_or_response():
    assert extract_status(SdkError(429)) == 429
    assert extract_status(HttpError(500)) == 500
    assert extract_status(ValueError("plain")) is None


@pytest.mark.parametrize(
    "error, expected",
    [
        (HttpError(429), True),
        (SdkError(429), True),
        (HttpError(403, body={"message": "Quota Exceeded for subscription"}), True),
        (SdkError(403, "Too many requests, slow down"), True),
        (HttpError(403, body={"message": "Forbidden: missing scope"}), False),
        (HttpError(500, body={"message": "quota exceeded"}), False),
        (ValueError("quota exceeded"), False),
    ],
)
def test_is_rate_limit_error(error, expected):
    assert is_rate_limit_error(error) is expected


def test_is_auth_error():
    assert is_auth_error(HttpError(401))
    assert is_auth_error(AuthExpiredError("expired"))
    assert not is_auth_error(HttpError(403))
    assert not is_auth_error(RuntimeError())


def test_retry_after_from_attribute():
    assert extract_retry_after(SdkError(429, retry_after="30")) == 30


def test_retry_after_from_header():
    assert extract_retry_after(HttpError(429, headers={"Retry-After": "12"})) == 12


def test_retry_after_from_body_field():
    assert extract_retry_after(HttpError(429, body={"retryAfter": 45})) == 45


def test_retry_after_from_message_text():
    error = HttpError(429, body={"message": "Rate limit is exceeded. Try again in 17 seconds."})
    assert extract_retry_after(error) == 17


def test_retry_after_missing():
    assert extract_retry_after(HttpError(429, body={"message": "slow down"})) is None
