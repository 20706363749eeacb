"""
Request-scoped transaction coordinator.

The coordinator wraps a single request handler:

1. Build fresh SessionInstance objects from the configured templates
   (or a single "default" session when none are configured)
2. Open each session and begin a transaction on it
3. Hand a TransactionContext to the handler
4. On success commit every session, on failure abort every session
5. End every session, whatever happened before
6. On failure, re-raise the handler error translated into an application error

Commit, abort and end are fanned out concurrently with settle-all semantics:
one session failing to commit never prevents the others from committing or
from being ended. Those failures are logged and never reach the caller.

Settling runs shielded from cancellation: a request cancelled while opening,
committing or aborting still ends every session it opened before the
cancellation propagates.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

from fastapi import HTTPException

from shared.config import Settings, get_settings
from transactions.accessor import session_by_name
from transactions.errors import (
    ConnectionUnavailableError,
    DuplicateSessionNameError,
    TransactionAcquisitionError,
    translate_exception,
)
from transactions.templates import (
    DEFAULT_SESSION_NAME,
    SessionInstance,
    SessionOptions,
    SessionTemplate,
    TransactionOptions,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreSession(Protocol):
    """Live session handle returned by the data store client."""

    async def begin_transaction(self, options: TransactionOptions) -> None: ...
    async def commit_transaction(self) -> None: ...
    async def abort_transaction(self) -> None: ...
    async def end_session(self) -> None: ...


class SessionFactory(Protocol):
    """Process-wide data store connection that sessions are opened from."""

    async def open_session(self, options: SessionOptions) -> StoreSession: ...


@dataclass
class TransactionContext:
    """
    Transaction state for one request.

    Attributes:
        sessions: Session instances opened for the request (empty in bypass mode)
        using_transaction: True once the coordinator has run for the request
        acquisition_error: Set when sessions could not be opened (degraded path)
    """

    sessions: list[SessionInstance] = field(default_factory=list)
    using_transaction: bool = False
    acquisition_error: TransactionAcquisitionError | None = None

    def names(self) -> list[str]:
        return [instance.name for instance in self.sessions]

    def get(self, name: str = DEFAULT_SESSION_NAME) -> Any:
        return session_by_name(self, name)


class TransactionCoordinator:
    """
    Opens, exposes and settles the named sessions of a request.

    Args:
        templates: Sessions to open for every request. None or empty opens a
            single "default" session with the read-write preset.
        session_factory: Data store connection. Resolved from
            database.connection on every request when omitted.
        bypass: Skip the data store entirely. Defaults to the
            `transactions_bypassed` setting.
        settings: Settings used to resolve `bypass` (default: get_settings())

    Raises:
        DuplicateSessionNameError: If two templates share a name

    Example:
        >>> coordinator = TransactionCoordinator([
        ...     SessionTemplate("default"),
        ...     SessionTemplate("analytics", READ_ONLY_SESSION_OPTIONS),
        ... ])
        >>> async with coordinator.transaction() as context:
        ...     session = context.get("analytics")
    """

    def __init__(
        self,
        templates: Sequence[SessionTemplate] | None = None,
        *,
        session_factory: SessionFactory | None = None,
        bypass: bool | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._templates = self._validate_templates(templates)
        self._session_factory = session_factory
        self._bypass = bypass
        self._settings = settings

    @staticmethod
    def _validate_templates(
        templates: Sequence[SessionTemplate] | None,
    ) -> tuple[SessionTemplate, ...]:
        if not templates:
            return (SessionTemplate(DEFAULT_SESSION_NAME),)

        names = [template.name for template in templates]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise DuplicateSessionNameError(duplicates)
        return tuple(templates)

    @property
    def templates(self) -> tuple[SessionTemplate, ...]:
        return self._templates

    @property
    def bypass(self) -> bool:
        if self._bypass is not None:
            return self._bypass
        settings = self._settings or get_settings()
        return settings.transactions_bypassed

    @staticmethod
    def _default_session_factory() -> SessionFactory | None:
        from database.connection import get_session_factory

        return get_session_factory()

    def build_instances(self) -> list[SessionInstance]:
        """Create fresh, unbound instances for one request."""
        if self.bypass:
            return []
        return [SessionInstance.from_template(template) for template in self._templates]

    # =========================================================================
    # OPEN
    # =========================================================================

    async def open(self) -> TransactionContext:
        """
        Open every session and begin its transaction.

        Returns:
            TransactionContext with bound sessions and `using_transaction` set

        Raises:
            TransactionAcquisitionError: If no connection is configured or a
                session could not be opened. Sessions opened before the
                failure are aborted and ended first.
        """
        if self.bypass:
            logger.debug("Transaction bypass active, no sessions opened")
            return TransactionContext(sessions=[], using_transaction=True)

        instances = self.build_instances()
        factory = self._session_factory or self._default_session_factory()
        if factory is None:
            raise TransactionAcquisitionError(
                ConnectionUnavailableError("No database connection configured")
            )

        opened: list[SessionInstance] = []
        try:
            for instance in instances:
                handle = await factory.open_session(instance.session_options)
                instance.bind(handle)
                opened.append(instance)
                await handle.begin_transaction(
                    instance.session_options.default_transaction_options
                )
        except BaseException as e:
            logger.error(
                f"Could not open transaction sessions ({len(opened)}/{len(instances)} opened): {e!r}",
                extra={"transaction_phase": "open", "session_count": len(opened)},
            )
            await self.settle(opened, commit=False)

            # Cancellation and interpreter exits are not acquisition failures
            if not isinstance(e, Exception):
                raise
            raise TransactionAcquisitionError(e) from e

        logger.debug(
            f"Opened {len(instances)} transaction session(s): "
            f"{', '.join(instance.name for instance in instances)}",
            extra={"transaction_phase": "open", "session_count": len(instances)},
        )
        return TransactionContext(sessions=instances, using_transaction=True)

    # =========================================================================
    # SETTLE (commit / abort / end)
    # =========================================================================

    async def _settle_all(
        self,
        sessions: Sequence[SessionInstance],
        phase: str,
        operation: Callable[[StoreSession], Awaitable[Any]],
        on_attempt: Callable[[SessionInstance], None],
        failure_message: str,
    ) -> list[BaseException]:
        bound = [instance for instance in sessions if instance.is_bound]
        results = await asyncio.gather(
            *(operation(instance.session) for instance in bound),
            return_exceptions=True,
        )

        failures: list[BaseException] = []
        for instance, result in zip(bound, results):
            on_attempt(instance)
            if isinstance(result, BaseException):
                failures.append(result)
                logger.error(
                    f"{failure_message} '{instance.name}': {result}",
                    extra={"session_name": instance.name, "transaction_phase": phase},
                )
        return failures

    async def commit_all(self, sessions: Sequence[SessionInstance]) -> list[BaseException]:
        """Commit every bound session concurrently. Failures are logged and returned."""
        return await self._settle_all(
            sessions,
            "commit",
            lambda handle: handle.commit_transaction(),
            SessionInstance.mark_committed,
            "Could not commit transaction",
        )

    async def abort_all(self, sessions: Sequence[SessionInstance]) -> list[BaseException]:
        """Abort every bound session concurrently. Failures are logged and returned."""
        return await self._settle_all(
            sessions,
            "abort",
            lambda handle: handle.abort_transaction(),
            SessionInstance.mark_aborted,
            "Could not rollback transaction",
        )

    async def end_all(self, sessions: Sequence[SessionInstance]) -> list[BaseException]:
        """End every bound session concurrently. Failures are logged and returned."""
        return await self._settle_all(
            sessions,
            "end",
            lambda handle: handle.end_session(),
            SessionInstance.mark_ended,
            "Could not release connection",
        )

    async def _commit_or_abort_then_end(
        self, sessions: Sequence[SessionInstance], commit: bool
    ) -> None:
        try:
            if commit:
                await self.commit_all(sessions)
            else:
                await self.abort_all(sessions)
        finally:
            await self.end_all(sessions)

    async def settle(self, sessions: Sequence[SessionInstance], *, commit: bool) -> None:
        """
        Commit (or abort) every session, then end every session.

        The work runs in its own task shielded from the caller. If the caller
        is cancelled meanwhile, the sessions are still settled and ended
        before the cancellation is re-raised.
        """
        if not sessions:
            return

        settling = asyncio.ensure_future(self._commit_or_abort_then_end(sessions, commit))
        try:
            await asyncio.shield(settling)
        except asyncio.CancelledError:
            logger.warning(
                f"Cancelled while settling {len(sessions)} session(s), finishing cleanup",
                extra={"transaction_phase": "commit" if commit else "abort"},
            )
            await asyncio.wait([settling])
            raise

    # =========================================================================
    # REQUEST LIFECYCLE
    # =========================================================================

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[TransactionContext]:
        """
        Run the body of the `async with` block as the request handler.

        On success all sessions are committed then ended. On failure all
        sessions are aborted then ended, and the handler error is re-raised
        after translation. When sessions cannot be acquired the body still
        runs without them; if it then fails, the acquisition error is raised.
        """
        try:
            context = await self.open()
        except TransactionAcquisitionError as acquisition_error:
            logger.warning(
                f"Running handler without transaction: {acquisition_error.message}",
                extra={"transaction_phase": "open"},
            )
            try:
                yield TransactionContext(
                    sessions=[],
                    using_transaction=False,
                    acquisition_error=acquisition_error,
                )
            except Exception as e:
                raise acquisition_error from e
            return

        try:
            yield context
        except BaseException as e:
            # Client errors (404, 409) are expected outcomes, not failures
            expected = isinstance(e, HTTPException) and e.status_code < 500
            log = logger.debug if expected else logger.warning
            log(
                f"Handler failed, rolling back {len(context.sessions)} session(s): {e!r}",
                extra={"transaction_phase": "abort", "session_count": len(context.sessions)},
            )
            await self.settle(context.sessions, commit=False)

            if not isinstance(e, Exception):
                raise
            translated = translate_exception(e)
            if translated is e:
                raise
            raise translated from e
        else:
            await self.settle(context.sessions, commit=True)

    async def run(
        self,
        handler: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Invoke `handler(context, *args, **kwargs)` exactly once inside a transaction.

        Returns:
            Whatever the handler returns
        """
        async with self.transaction() as context:
            return await handler(context, *args, **kwargs)
