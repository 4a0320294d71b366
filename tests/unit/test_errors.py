"""Unit tests for error classification."""

import asyncio

import asyncpg
import pytest
from pydantic import ValidationError

from errors import (
    ErrorCode, RecommendationError, classify_error, http_status_for,
    is_retryable, is_temporary,
)
from models import RecommendationRecord


class FakeHTTPError(Exception):
    def __init__(self, status):
        super().__init__(f"HTTP {status}")
        self.status = status


class FakeStatusCodeError(Exception):
    status_code = 503


def _validation_error() -> ValidationError:
    with pytest.raises(ValidationError) as exc:
        RecommendationRecord(session_id="s", product_id="p", rank=0, score=0.5, reason="r")
    return exc.value


@pytest.mark.parametrize("error, code", [
    (FakeHTTPError(401), ErrorCode.AI_AUTHENTICATION_FAILED),
    (FakeHTTPError(429), ErrorCode.AI_RATE_LIMIT_EXCEEDED),
    (FakeHTTPError(504), ErrorCode.AI_REQUEST_TIMEOUT),
    (FakeStatusCodeError(), ErrorCode.AI_SERVICE_UNAVAILABLE),
    (TimeoutError(), ErrorCode.AI_REQUEST_TIMEOUT),
    (asyncio.TimeoutError(), ErrorCode.AI_REQUEST_TIMEOUT),
    (ConnectionResetError(), ErrorCode.NETWORK_ERROR),
    (asyncpg.exceptions.ConnectionDoesNotExistError("connection was closed"),
     ErrorCode.DATABASE_CONNECTION_FAILED),
    (asyncpg.exceptions.UniqueViolationError("duplicate key value"),
     ErrorCode.DATABASE_TRANSACTION_FAILED),
    (ValueError("odd"), ErrorCode.UNKNOWN_ERROR),
])
def test_classify_error(error, code):
    classified = classify_error(error, {"session_id": "s1"})

    assert classified.code == code
    assert classified.context["session_id"] == "s1"


def test_unhandled_http_status_is_unknown():
    assert classify_error(FakeHTTPError(418)).code == ErrorCode.UNKNOWN_ERROR


def test_validation_error_is_invalid_request_data():
    assert classify_error(_validation_error()).code == ErrorCode.INVALID_REQUEST_DATA


def test_recommendation_error_passes_through_with_merged_context():
    original = RecommendationError.duplicate_recommendation("s1")

    classified = classify_error(original, {"session_id": "other", "operation": "save"})

    assert classified is original
    assert classified.context == {"session_id": "s1", "operation": "save"}


def test_to_dict():
    error = RecommendationError.data_not_found("Session", "s1")

    assert error.to_dict() == {
        "code": "DATA_NOT_FOUND",
        "message": "Session not found: s1",
        "details": {"resource": "Session", "id": "s1"},
    }


def test_retry_and_status_mapping():
    timeout = RecommendationError("t", ErrorCode.AI_REQUEST_TIMEOUT)
    rate_limited = RecommendationError("r", ErrorCode.AI_RATE_LIMIT_EXCEEDED)
    invalid = RecommendationError.invalid_request_data("bad")

    assert is_retryable(timeout) and is_temporary(timeout)
    assert not is_retryable(rate_limited) and is_temporary(rate_limited)
    assert not is_retryable(invalid) and not is_temporary(invalid)

    assert http_status_for(timeout) == 504
    assert http_status_for(rate_limited) == 429
    assert http_status_for(invalid) == 400
    assert http_status_for(RecommendationError("x")) == 500


def test_invalid_session_id_factory():
    error = RecommendationError.invalid_session_id("bad id!")

    assert error.code == ErrorCode.INVALID_SESSION_ID
    assert error.context["session_id"] == "bad id!"
    assert http_status_for(error) == 400
    assert is_retryable(error) is False
