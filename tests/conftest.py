"""
Test configuration and fixtures.

This module sets up test environment and provides shared fixtures for all tests.
"""

import asyncio
import os

import pytest

# No real database during tests. Must be set BEFORE any imports of
# database.connection or shared.config
os.environ["DATABASE_URL"] = ""
os.environ["DATABASE_REPLICA_URL"] = ""
os.environ["ENVIRONMENT"] = "development"
os.environ["TRANSACTIONS_BYPASS"] = "false"


class FakeStoreSession:
    """
    In-memory StoreSession recording every lifecycle call.

    `calls` is shared between sessions of the same factory so that tests can
    assert on the global ordering of commit/abort/end calls. `delays` maps an
    operation to the seconds it sleeps after being recorded.
    """

    def __init__(
        self,
        name: str,
        calls: list[tuple[str, str]],
        fail_on: set[str],
        delays: dict[str, float] | None = None,
    ):
        self.name = name
        self.calls = calls
        self.fail_on = fail_on
        self.delays = delays or {}
        self.begin_options = None

    async def _record(self, operation: str) -> None:
        self.calls.append((operation, self.name))
        if operation in self.delays:
            await asyncio.sleep(self.delays[operation])
        if operation in self.fail_on:
            raise RuntimeError(f"{operation} failed for {self.name}")

    async def begin_transaction(self, options):
        self.begin_options = options
        await self._record("begin")

    async def commit_transaction(self):
        await self._record("commit")

    async def abort_transaction(self):
        await self._record("abort")

    async def end_session(self):
        await self._record("end")


class FakeSessionFactory:
    """
    SessionFactory handing out FakeStoreSession objects.

    Sessions are named after the order they were opened in unless
    `names` is given. `failures` maps a session name to the operations
    that should raise for it, `delays` maps a session name to
    {operation: seconds} ("open" included).
    """

    def __init__(self, names=None, failures=None, fail_open_at=None, delays=None):
        self.names = list(names or [])
        self.failures = failures or {}
        self.fail_open_at = fail_open_at
        self.delays = delays or {}
        self.calls: list[tuple[str, str]] = []
        self.opened: list[FakeStoreSession] = []
        self.open_options = []

    async def open_session(self, options):
        index = len(self.opened)
        if self.fail_open_at is not None and index == self.fail_open_at:
            raise ConnectionError("connection refused")
        name = self.names[index] if index < len(self.names) else f"session-{index}"
        self.calls.append(("open", name))
        delays = self.delays.get(name, {})
        if "open" in delays:
            await asyncio.sleep(delays["open"])
        self.open_options.append(options)
        session = FakeStoreSession(name, self.calls, set(self.failures.get(name, ())), delays)
        self.opened.append(session)
        return session

    def operations(self, operation: str) -> list[str]:
        return [name for op, name in self.calls if op == operation]

    async def wait_for_call(self, call: tuple[str, str]) -> None:
        """Yield to the event loop until `call` has been recorded."""
        while call not in self.calls:
            await asyncio.sleep(0)


@pytest.fixture
def fake_factory():
    """Factory for the default single-session configuration."""
    return FakeSessionFactory(names=["default"])


@pytest.fixture
def two_session_factory():
    """Factory for a 'default' + 'analytics' configuration."""
    return FakeSessionFactory(names=["default", "analytics"])


@pytest.fixture
def make_factory():
    """Build a FakeSessionFactory with custom names/failures."""
    return FakeSessionFactory
