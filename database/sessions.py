"""
SQLAlchemy asyncio implementation of the transactional session client.

SQLAlchemyStoreSession is a regular AsyncSession (handlers use it exactly like
any other session) with the lifecycle methods the transaction coordinator
drives: begin_transaction, commit_transaction, abort_transaction, end_session.

Transaction options are mapped onto the relational engine:

- read concern -> isolation level
- no write concern -> read-only transaction
- max_time_ms -> statement_timeout (PostgreSQL)
- write concern journal / wtimeout_ms -> synchronous_commit / lock_timeout (PostgreSQL)
- session max_session_ms -> idle_in_transaction_session_timeout (PostgreSQL)
- read preference -> primary or replica engine, chosen when the session is opened
"""

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from transactions.templates import (
    ReadConcern,
    ReadPreference,
    SessionOptions,
    TransactionOptions,
)

logger = logging.getLogger(__name__)

ISOLATION_LEVELS = {
    ReadConcern.LOCAL: "READ COMMITTED",
    ReadConcern.MAJORITY: "REPEATABLE READ",
    ReadConcern.SNAPSHOT: "SERIALIZABLE",
}


def build_set_local_statements(
    options: TransactionOptions,
    max_session_ms: int | None = None,
) -> list[str]:
    """
    Build the PostgreSQL SET LOCAL statements enforcing the transaction limits.

    Values are validated integers, so they are safe to inline.
    """
    statements = []
    if options.max_time_ms is not None:
        statements.append(f"SET LOCAL statement_timeout = {int(options.max_time_ms)}")
    if options.write_concern is not None:
        synchronous_commit = "on" if options.write_concern.journal else "off"
        statements.append(f"SET LOCAL synchronous_commit = {synchronous_commit}")
        if options.write_concern.wtimeout_ms is not None:
            statements.append(
                f"SET LOCAL lock_timeout = {int(options.write_concern.wtimeout_ms)}"
            )
    if max_session_ms is not None:
        statements.append(
            f"SET LOCAL idle_in_transaction_session_timeout = {int(max_session_ms)}"
        )
    return statements


class SQLAlchemyStoreSession(AsyncSession):
    """AsyncSession driven by the transaction coordinator."""

    async def begin_transaction(self, options: TransactionOptions) -> None:
        self.info["read_preference"] = options.read_preference.value
        self.info["retry_writes"] = options.retry_writes

        await self.begin()

        execution_options: dict[str, Any] = {
            "isolation_level": ISOLATION_LEVELS[options.read_concern],
        }
        if options.is_read_only:
            execution_options["postgresql_readonly"] = True

        connection = await self.connection(execution_options=execution_options)

        # SET LOCAL is PostgreSQL specific; other dialects rely on driver defaults
        if connection.dialect.name == "postgresql":
            for statement in build_set_local_statements(options, self.info.get("max_session_ms")):
                await self.execute(text(statement))

    async def commit_transaction(self) -> None:
        await self.commit()

    async def abort_transaction(self) -> None:
        await self.rollback()

    async def end_session(self) -> None:
        await self.close()


class SQLAlchemySessionFactory:
    """
    Opens SQLAlchemyStoreSession objects against a primary and optional replica engine.

    Sessions whose read preference is `nearest` use the replica when one is
    configured. Everything else goes to the primary.
    """

    def __init__(self, primary: AsyncEngine, replica: AsyncEngine | None = None) -> None:
        self._primary_sessions = async_sessionmaker(
            primary, class_=SQLAlchemyStoreSession, expire_on_commit=False
        )
        self._replica_sessions = (
            async_sessionmaker(replica, class_=SQLAlchemyStoreSession, expire_on_commit=False)
            if replica is not None
            else None
        )

    async def open_session(self, options: SessionOptions) -> SQLAlchemyStoreSession:
        read_preference = options.default_transaction_options.read_preference
        if read_preference is ReadPreference.NEAREST and self._replica_sessions is not None:
            session = self._replica_sessions()
        else:
            session = self._primary_sessions()

        session.info["max_session_ms"] = options.max_session_ms
        return session
