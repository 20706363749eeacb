"""
Request-scoped transactions.

Exposes the coordinator that opens and settles named sessions around a
request handler, the session templates it is configured with, the lookup
used by handlers, and the error taxonomy handler failures are mapped to.
"""

from transactions.accessor import session_by_name
from transactions.coordinator import (
    SessionFactory,
    StoreSession,
    TransactionContext,
    TransactionCoordinator,
)
from transactions.errors import (
    ApplicationError,
    ApplicationErrorKind,
    ConnectionUnavailableError,
    DuplicateSessionNameError,
    RequestValidationFailed,
    StorageError,
    StoreClientError,
    TransactionAcquisitionError,
    TransactionMisuseError,
    translate_exception,
)
from transactions.templates import (
    DEFAULT_SESSION_NAME,
    DEFAULT_SESSION_OPTIONS,
    READ_ONLY_SESSION_OPTIONS,
    ReadConcern,
    ReadPreference,
    SessionInstance,
    SessionOptions,
    SessionState,
    SessionTemplate,
    TransactionOptions,
    WriteConcern,
)

__all__ = [
    "ApplicationError",
    "ApplicationErrorKind",
    "ConnectionUnavailableError",
    "DEFAULT_SESSION_NAME",
    "DEFAULT_SESSION_OPTIONS",
    "DuplicateSessionNameError",
    "READ_ONLY_SESSION_OPTIONS",
    "ReadConcern",
    "ReadPreference",
    "RequestValidationFailed",
    "SessionFactory",
    "SessionInstance",
    "SessionOptions",
    "SessionState",
    "SessionTemplate",
    "StorageError",
    "StoreClientError",
    "StoreSession",
    "TransactionAcquisitionError",
    "TransactionContext",
    "TransactionCoordinator",
    "TransactionMisuseError",
    "TransactionOptions",
    "WriteConcern",
    "session_by_name",
    "translate_exception",
]
