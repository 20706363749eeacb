"""
Application error taxonomy and exception translation.

Handler failures are classified into a small, closed set of application error
kinds before they leave a transactional request:

- internal/storage: the data store client or an outbound HTTP call failed
- bad_request: input data failed schema validation
- internal/misuse: a session was requested on a route without a transaction scope
- internal/acquisition: sessions could not be opened for the request

Anything else is passed through untouched so the framework's default handling
applies.
"""

import traceback
from enum import Enum
from typing import Any, ClassVar

import httpx
from fastapi import HTTPException, status
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError


class ApplicationErrorKind(str, Enum):
    STORAGE = "internal/storage"
    VALIDATION = "bad_request"
    MISUSE = "internal/misuse"
    ACQUISITION = "internal/acquisition"


class ApplicationError(HTTPException):
    """
    Base class for errors surfaced to API clients.

    Attributes:
        kind: Stable classification of the error
        message: Human-readable summary (also used as the HTTP detail)
        cause: Underlying cause, kept for observability
        description: Diagnostic trace of the original failure, never sent to clients
    """

    kind: ClassVar[ApplicationErrorKind]
    default_status_code: ClassVar[int] = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        *,
        cause: Any = None,
        description: str | None = None,
    ) -> None:
        super().__init__(status_code=self.default_status_code, detail=message)
        self.message = message
        self.cause = cause
        self.description = description


class StorageError(ApplicationError):
    """The data store or a remote dependency failed while handling the request."""

    kind = ApplicationErrorKind.STORAGE


class RequestValidationFailed(ApplicationError):
    """Input data did not match the expected schema."""

    kind = ApplicationErrorKind.VALIDATION
    default_status_code = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str,
        *,
        cause: Any = None,
        description: str | None = None,
        errors: list[Any] | None = None,
    ) -> None:
        super().__init__(message, cause=cause, description=description or message)
        self.errors = errors or []


class TransactionMisuseError(ApplicationError):
    """A session lookup ran on a request that has no transaction scope."""

    kind = ApplicationErrorKind.MISUSE


class TransactionAcquisitionError(ApplicationError):
    """Sessions could not be opened for the request."""

    kind = ApplicationErrorKind.ACQUISITION
    default_status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, cause: BaseException) -> None:
        message = f"Failed to acquire transaction lock: {_message_of(cause)}"
        super().__init__(message, cause=cause, description=_trace_of(cause))


class StoreClientError(Exception):
    """Base class for errors raised by data store client adapters."""

    pass


class ConnectionUnavailableError(StoreClientError):
    """No data store connection is configured for this process."""

    pass


class DuplicateSessionNameError(ValueError):
    """Two session templates share the same name."""

    def __init__(self, names: list[str]) -> None:
        self.names = names
        super().__init__(f"Duplicate transaction names found: {', '.join(names)}")


def _message_of(error: BaseException) -> str:
    try:
        return str(error)
    except Exception:
        return type(error).__name__


def _trace_of(error: BaseException) -> str:
    try:
        return "".join(traceback.format_exception(type(error), error, error.__traceback__))
    except Exception:
        return _message_of(error)


def _validation_errors_of(error: ValidationError) -> list[Any]:
    try:
        return list(error.errors(include_url=False))
    except Exception:
        return []


def translate_exception(error: BaseException) -> BaseException:
    """
    Map a handler failure to an application error.

    Rules are checked in order and the first match wins:
    1. data store client errors (SQLAlchemy, StoreClientError) -> StorageError
    2. outbound HTTP client errors (httpx) -> StorageError
    3. schema validation errors (pydantic) -> RequestValidationFailed
    4. anything else -> returned unchanged

    Never raises and has no side effects.

    Args:
        error: The exception raised by the handler

    Returns:
        The translated error, or `error` itself when no rule matches
    """
    if isinstance(error, (SQLAlchemyError, StoreClientError)):
        message = _message_of(error)
        return StorageError(message, cause=message, description=_trace_of(error))

    if isinstance(error, httpx.HTTPError):
        return StorageError(
            _message_of(error),
            cause=error.__cause__ if error.__cause__ is not None else error,
            description=_trace_of(error),
        )

    if isinstance(error, ValidationError):
        return RequestValidationFailed(
            _message_of(error),
            cause=error,
            errors=_validation_errors_of(error),
        )

    return error
