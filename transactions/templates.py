"""
Session templates and per-request session instances.

A SessionTemplate is the immutable, named description of how a session is
opened and which transaction guarantees it requests. The coordinator turns
templates into SessionInstance objects for every request; an instance carries
the live session handle for the lifetime of that request only.

Two presets are provided:

- DEFAULT_SESSION_OPTIONS: read-write, tuned for durability and consistency.
  Reads see data acknowledged by a majority, always from the primary. Writes
  wait for majority acknowledgment and journaling (45s max) and are retried.
  Every operation is capped at 60s.
- READ_ONLY_SESSION_OPTIONS: lower latency, possibly stale reads. Majority
  read concern served by the nearest member, no write concern (the
  transaction is opened read-only). Every operation is capped at 60s.
"""

from enum import Enum
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

DEFAULT_SESSION_NAME = "default"


class ReadConcern(str, Enum):
    """Visibility guarantee for reads inside a transaction."""

    LOCAL = "local"
    MAJORITY = "majority"
    SNAPSHOT = "snapshot"


class ReadPreference(str, Enum):
    """Which member of the data store serves reads."""

    PRIMARY = "primary"
    NEAREST = "nearest"


class SessionState(str, Enum):
    """Lifecycle of a SessionInstance within one request."""

    CREATED = "created"
    BOUND = "bound"
    COMMITTED = "committed"
    ABORTED = "aborted"
    ENDED = "ended"


class WriteConcern(BaseModel):
    """Acknowledgment required before a write is considered durable."""

    model_config = ConfigDict(frozen=True)

    w: int | Literal["majority"] = "majority"
    journal: bool = True
    wtimeout_ms: int | None = Field(default=None, ge=0)


class TransactionOptions(BaseModel):
    """Options applied when a transaction is begun on an open session."""

    model_config = ConfigDict(frozen=True)

    read_concern: ReadConcern = ReadConcern.MAJORITY
    read_preference: ReadPreference = ReadPreference.PRIMARY
    write_concern: WriteConcern | None = None
    retry_writes: bool = False
    max_time_ms: int | None = Field(default=None, ge=0)

    @property
    def is_read_only(self) -> bool:
        return self.write_concern is None


class SessionOptions(BaseModel):
    """Options used to open a session, including its default transaction options."""

    model_config = ConfigDict(frozen=True)

    default_transaction_options: TransactionOptions = Field(default_factory=TransactionOptions)
    max_session_ms: int | None = Field(default=None, ge=0)
    causal_consistency: bool = True


DEFAULT_SESSION_OPTIONS = SessionOptions(
    default_transaction_options=TransactionOptions(
        read_concern=ReadConcern.MAJORITY,
        read_preference=ReadPreference.PRIMARY,
        write_concern=WriteConcern(w="majority", journal=True, wtimeout_ms=45000),
        retry_writes=True,
        max_time_ms=60000,
    ),
)

READ_ONLY_SESSION_OPTIONS = SessionOptions(
    default_transaction_options=TransactionOptions(
        read_concern=ReadConcern.MAJORITY,
        read_preference=ReadPreference.NEAREST,
        max_time_ms=60000,
    ),
)


class SessionTemplate(BaseModel):
    """
    Named, immutable session configuration.

    Args:
        name: Identifier used by handlers to look the session up. Must be
            unique among the templates of one coordinator.
        session_options: How to open the session. Defaults to the read-write
            preset when omitted.

    Example:
        >>> SessionTemplate("analytics", READ_ONLY_SESSION_OPTIONS)
    """

    model_config = ConfigDict(frozen=True)

    DEFAULT_OPTIONS: ClassVar[SessionOptions] = DEFAULT_SESSION_OPTIONS
    READ_ONLY_OPTIONS: ClassVar[SessionOptions] = READ_ONLY_SESSION_OPTIONS

    name: str = Field(min_length=1)
    session_options: SessionOptions = DEFAULT_SESSION_OPTIONS

    def __init__(
        self,
        name: str,
        session_options: SessionOptions | None = None,
        **data: Any,
    ) -> None:
        super().__init__(
            name=name,
            session_options=session_options if session_options is not None else DEFAULT_SESSION_OPTIONS,
            **data,
        )


class SessionInstance(SessionTemplate):
    """
    A template bound to a live session for a single request.

    The handle starts empty and is set exactly once by the coordinator right
    after the session is opened. An unbound instance means "no active
    transaction" to downstream code.
    """

    _session: Any = PrivateAttr(default=None)
    _state: SessionState = PrivateAttr(default=SessionState.CREATED)

    @classmethod
    def from_template(cls, template: SessionTemplate) -> "SessionInstance":
        return cls(template.name, template.session_options)

    @property
    def session(self) -> Any:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_bound(self) -> bool:
        return self._session is not None

    def bind(self, session: Any) -> None:
        """Attach the live session handle. Raises if one is already attached."""
        if self._state is not SessionState.CREATED:
            raise RuntimeError(
                f"Session '{self.name}' is already bound (state={self._state.value})"
            )
        self._session = session
        self._state = SessionState.BOUND

    def mark_committed(self) -> None:
        self._state = SessionState.COMMITTED

    def mark_aborted(self) -> None:
        self._state = SessionState.ABORTED

    def mark_ended(self) -> None:
        self._state = SessionState.ENDED
