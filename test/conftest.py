import asyncio
import logging
from pathlib import Path
from typing import Any, AsyncGenerator, Awaitable, Callable

from pytest import fixture

from textvault import *
from textvault.core.store.base import ErrorCallback, Listener

logging.basicConfig(level=logging.WARNING)

QUIET_INTERVAL = 0.05
"""
Quiet interval used by tests, short enough to keep them fast.
"""


class TestStore(MemoryStore):
    """
    Memory store which records writes, can hold them in flight and can be
    told to fail.
    """

    __test__ = False

    writes: list[tuple[str, Any]]
    fail_writes: bool
    fail_listen: bool
    hold_writes: bool
    held: list[asyncio.Event]
    feeds: list[tuple[Listener, ErrorCallback | None]]

    def __init__(self, data: dict[str, Any] | None = None):
        super().__init__(data)
        self.writes = []
        self.fail_writes = False
        self.fail_listen = False
        self.hold_writes = False
        self.held = []
        self.feeds = []

    def writes_to(self, path: str) -> list[Any]:
        return [value for p, value in self.writes if p == path]

    def release(self, index: int = -1):
        """
        Let a held write complete, by default the most recently started one.
        """
        self.held[index].set()

    def release_all(self):
        self.hold_writes = False
        for released in self.held:
            released.set()

    def drop_feeds(self):
        """
        Close open listeners and report the loss through their error callback,
        as a backend does when the realtime feed breaks.
        """
        loop = asyncio.get_running_loop()
        for listener, on_error in self.feeds:
            if listener.closed:
                continue
            listener.close()
            if on_error is not None:
                loop.call_soon(on_error, StoreError("realtime feed dropped"))
        self.feeds.clear()

    async def set(self, path: str, value: Any):
        if self.hold_writes:
            released = asyncio.Event()
            self.held.append(released)
            await released.wait()

        if self.fail_writes:
            raise StoreError(f"write to '{path}' rejected")

        self.writes.append((path, value))
        await super().set(path, value)

    async def listen(self, path, callback, *, on_error=None):
        if self.fail_listen:
            raise StoreError(f"listen on '{path}' rejected")
        listener = await super().listen(path, callback, on_error=on_error)
        self.feeds.append((listener, on_error))
        return listener


async def settle(count: int = 5):
    """
    Let queued callbacks and tasks run.
    """
    for _ in range(count):
        await asyncio.sleep(0)


async def wait_quiet(count: int = 3):
    """
    Wait long enough for a debounced write to start and complete.
    """
    await asyncio.sleep(QUIET_INTERVAL * count)
    await settle()


@fixture
def store() -> TestStore:
    return TestStore()


@fixture
def cache(tmp_path: Path) -> LocalCache:
    return LocalCache(tmp_path / "cache")


@fixture
def channel(store: TestStore) -> SyncChannel:
    return SyncChannel(store)


@fixture
def identity() -> SessionIdentity:
    return SessionIdentity.from_raw("alpha-1", "secret")


@fixture
def errors() -> list[Exception]:
    """
    Collects errors reported through `on_error` callbacks.
    """
    return []


@fixture
async def session_factory(
    channel: SyncChannel,
    cache: LocalCache,
    identity: SessionIdentity,
    errors: list[Exception],
) -> AsyncGenerator[Callable[..., Awaitable[Session]], None]:
    """
    Create and start sessions, closing them at teardown.
    """
    sessions: list[Session] = []

    async def create(
        session_identity: SessionIdentity | None = None, **kwargs
    ) -> Session:
        session = Session(
            session_identity or identity,
            channel=channel,
            cache=cache,
            quiet_interval=QUIET_INTERVAL,
            on_error=errors.append,
            **kwargs,
        )
        sessions.append(session)
        await session.start()
        return session

    yield create

    for session in sessions:
        await session.close()


@fixture
async def session(session_factory) -> AsyncGenerator[Session, None]:
    """
    Started session on empty store, ready for edits.
    """
    session = await session_factory()
    await session.wait_ready(1)

    yield session

    await session.close()
