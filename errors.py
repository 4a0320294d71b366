"""
errors.py — Error taxonomy for the recommendation pipeline.

Structural problems in the AI payload never reach this module: the response
analyzer reports them as issues. Everything here is for infrastructure and
orchestration failures that callers classify, retry or surface.
"""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Optional

import asyncpg
from pydantic import ValidationError


class ErrorCode(str, Enum):
    # Validation
    INVALID_SESSION_ID = "INVALID_SESSION_ID"
    SESSION_NOT_COMPLETED = "SESSION_NOT_COMPLETED"
    DUPLICATE_RECOMMENDATION = "DUPLICATE_RECOMMENDATION"
    INVALID_REQUEST_DATA = "INVALID_REQUEST_DATA"

    # AI service
    AI_SERVICE_UNAVAILABLE = "AI_SERVICE_UNAVAILABLE"
    AI_REQUEST_TIMEOUT = "AI_REQUEST_TIMEOUT"
    AI_RESPONSE_INVALID = "AI_RESPONSE_INVALID"
    AI_RATE_LIMIT_EXCEEDED = "AI_RATE_LIMIT_EXCEEDED"
    AI_AUTHENTICATION_FAILED = "AI_AUTHENTICATION_FAILED"

    # Database
    DATABASE_CONNECTION_FAILED = "DATABASE_CONNECTION_FAILED"
    DATABASE_TRANSACTION_FAILED = "DATABASE_TRANSACTION_FAILED"
    DATA_NOT_FOUND = "DATA_NOT_FOUND"

    # Product mapping
    NO_MATCHING_PRODUCTS = "NO_MATCHING_PRODUCTS"

    # General
    NETWORK_ERROR = "NETWORK_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class RecommendationError(Exception):
    """Raised by the pipeline and saver; carries a machine-readable code."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.context: dict[str, Any] = dict(context or {})

    def __repr__(self) -> str:
        return f"RecommendationError(code={self.code.value}, message={self.message!r})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": {k: str(v) for k, v in self.context.items()},
        }

    # ── Factories ────────────────────────────────────────────────────────

    @classmethod
    def invalid_session_id(cls, session_id: Any, **context: Any) -> RecommendationError:
        return cls(f"Invalid session id: {session_id!r}",
                   ErrorCode.INVALID_SESSION_ID,
                   {"session_id": session_id, **context})

    @classmethod
    def invalid_request_data(cls, reason: str, **context: Any) -> RecommendationError:
        return cls(f"Invalid request data: {reason}",
                   ErrorCode.INVALID_REQUEST_DATA, context)

    @classmethod
    def duplicate_recommendation(cls, session_id: str, **context: Any) -> RecommendationError:
        return cls(f"Recommendations already exist for session {session_id}",
                   ErrorCode.DUPLICATE_RECOMMENDATION,
                   {"session_id": session_id, **context})

    @classmethod
    def session_not_completed(cls, session_id: str, status: str,
                              **context: Any) -> RecommendationError:
        return cls(f"Session {session_id} is not completed (status: {status})",
                   ErrorCode.SESSION_NOT_COMPLETED,
                   {"session_id": session_id, "status": status, **context})

    @classmethod
    def data_not_found(cls, resource: str, identifier: str,
                       **context: Any) -> RecommendationError:
        return cls(f"{resource} not found: {identifier}",
                   ErrorCode.DATA_NOT_FOUND,
                   {"resource": resource, "id": identifier, **context})

    @classmethod
    def ai_response_invalid(cls, reason: str, **context: Any) -> RecommendationError:
        return cls(f"AI response is invalid: {reason}",
                   ErrorCode.AI_RESPONSE_INVALID, {"reason": reason, **context})

    @classmethod
    def no_valid_recommendations(cls, session_id: str, **context: Any) -> RecommendationError:
        return cls(f"No recommendation could be mapped to a product for session {session_id}",
                   ErrorCode.NO_MATCHING_PRODUCTS,
                   {"session_id": session_id, **context})

    @classmethod
    def database_transaction_failed(cls, **context: Any) -> RecommendationError:
        return cls("Database transaction failed",
                   ErrorCode.DATABASE_TRANSACTION_FAILED, context)


# ============================================================
# Classification
# ============================================================

_HTTP_STATUS_CODES: dict[int, tuple[ErrorCode, str]] = {
    401: (ErrorCode.AI_AUTHENTICATION_FAILED, "AI service authentication failed"),
    429: (ErrorCode.AI_RATE_LIMIT_EXCEEDED, "AI service rate limit exceeded"),
    503: (ErrorCode.AI_SERVICE_UNAVAILABLE, "AI service is unavailable"),
    504: (ErrorCode.AI_REQUEST_TIMEOUT, "AI request timed out"),
}

_DB_CONNECTION_ERRORS = (
    asyncpg.exceptions.ConnectionDoesNotExistError,
    asyncpg.exceptions.ConnectionFailureError,
    asyncpg.exceptions.CannotConnectNowError,
    asyncpg.exceptions.TooManyConnectionsError,
    asyncpg.exceptions.InterfaceError,
)


def classify_error(
    error: BaseException, context: Optional[dict[str, Any]] = None
) -> RecommendationError:
    """Map an arbitrary exception onto the error taxonomy."""
    context = dict(context or {})

    if isinstance(error, RecommendationError):
        for key, value in context.items():
            error.context.setdefault(key, value)
        return error

    status = getattr(error, "status", None) or getattr(error, "status_code", None)
    if isinstance(status, int) and status in _HTTP_STATUS_CODES:
        code, message = _HTTP_STATUS_CODES[status]
        return RecommendationError(message, code, {"original_error": repr(error), **context})

    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return RecommendationError("Request timed out", ErrorCode.AI_REQUEST_TIMEOUT,
                                   {"original_error": repr(error), **context})

    if isinstance(error, _DB_CONNECTION_ERRORS):
        return RecommendationError("Database connection failed",
                                   ErrorCode.DATABASE_CONNECTION_FAILED,
                                   {"original_error": repr(error), **context})

    if isinstance(error, asyncpg.PostgresError):
        return RecommendationError.database_transaction_failed(
            original_error=repr(error), **context)

    if isinstance(error, (ConnectionError, OSError)):
        return RecommendationError("Network error", ErrorCode.NETWORK_ERROR,
                                   {"original_error": repr(error), **context})

    if isinstance(error, ValidationError):
        return RecommendationError.invalid_request_data(
            str(error), original_error=repr(error), **context)

    message = str(error) or "Unexpected error"
    return RecommendationError(message, ErrorCode.UNKNOWN_ERROR,
                               {"original_error": repr(error), **context})


_RETRYABLE = {
    ErrorCode.AI_SERVICE_UNAVAILABLE,
    ErrorCode.AI_REQUEST_TIMEOUT,
    ErrorCode.NETWORK_ERROR,
    ErrorCode.DATABASE_CONNECTION_FAILED,
}

_TEMPORARY = _RETRYABLE | {ErrorCode.AI_RATE_LIMIT_EXCEEDED}


def is_retryable(error: RecommendationError) -> bool:
    return error.code in _RETRYABLE


def is_temporary(error: RecommendationError) -> bool:
    return error.code in _TEMPORARY


_HTTP_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.INVALID_SESSION_ID: 400,
    ErrorCode.SESSION_NOT_COMPLETED: 400,
    ErrorCode.DUPLICATE_RECOMMENDATION: 400,
    ErrorCode.INVALID_REQUEST_DATA: 400,
    ErrorCode.AI_AUTHENTICATION_FAILED: 401,
    ErrorCode.DATA_NOT_FOUND: 404,
    ErrorCode.AI_RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.AI_RESPONSE_INVALID: 502,
    ErrorCode.DATABASE_CONNECTION_FAILED: 503,
    ErrorCode.AI_SERVICE_UNAVAILABLE: 503,
    ErrorCode.AI_REQUEST_TIMEOUT: 504,
}


def http_status_for(error: RecommendationError) -> int:
    return _HTTP_STATUS_BY_CODE.get(error.code, 500)
