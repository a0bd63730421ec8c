"""
Implementation of session functionality.
"""

from __future__ import annotations

import asyncio
import logging
from logging import Logger
from typing import Callable

from .cache import LocalCache
from .channel import SyncChannel
from .exceptions import RemoteSubscribeFailed
from .identity import SessionIdentity
from .merge import MergeEngine
from .scheduler import DEFAULT_QUIET_INTERVAL, WriteScheduler
from .tab import Tab, TabCollection

__all__ = [
    "Session",
]

ChangeCallback = Callable[[TabCollection, str | None], None]
"""
Receives the full collection and active tab id after every change.
"""

ErrorCallback = Callable[[Exception], None]


class Session:
    """
    Context of one joined session: its tabs, active tab and pending writes.

    Local edits are applied immediately and written after a quiet interval.
    Remote snapshots are merged as they arrive; while local edits are pending,
    the active tab's local version takes precedence.

    Use as an async context manager, or call {obj}`Session.start` and
    {obj}`Session.close`:

    ```
    async with Session(identity, channel=channel, cache=cache) as session:
        session.edit("hello")
    ```
    """

    identity: SessionIdentity
    """
    Identity this session is bound to. Never changes.
    """

    _channel: SyncChannel
    """
    Channel for remote reads and writes.
    """

    _cache: LocalCache
    """
    Local durability cache.
    """

    _engine: MergeEngine
    """
    Owner of tabs and dirty flag.
    """

    _scheduler: WriteScheduler
    """
    Debounced writer.
    """

    _offline: bool = False
    """
    Whether running from the cache without a live subscription.
    """

    _started: bool = False
    _closed: bool = False

    _ready: asyncio.Event
    """
    Set once the first snapshot was merged, or the session went offline.
    """

    _on_change: ChangeCallback | None
    _on_error: ErrorCallback | None

    _logger: Logger
    """
    Logger to use.
    """

    def __init__(
        self,
        identity: SessionIdentity,
        *,
        channel: SyncChannel,
        cache: LocalCache,
        quiet_interval: float = DEFAULT_QUIET_INTERVAL,
        on_change: ChangeCallback | None = None,
        on_error: ErrorCallback | None = None,
        logger: Logger | None = None,
    ):
        """
        :param identity: Established identity of the session
        :param channel: Remote sync channel
        :param cache: Local durability cache
        :param quiet_interval: Seconds without edits before a write
        :param on_change: Invoked with full collection and active tab id after each change
        :param on_error: Invoked with transient failures, for non-blocking notification
        :param logger: Logger to use, or `None` to use default logger
        """
        self.identity = identity

        self._channel = channel
        self._cache = cache
        self._on_change = on_change
        self._on_error = on_error
        self._logger = logger or logging.getLogger()

        self._ready = asyncio.Event()
        self._engine = MergeEngine()
        self._scheduler = WriteScheduler(
            identity,
            self._engine,
            channel=channel,
            cache=cache,
            quiet_interval=quiet_interval,
            on_error=self._report,
            logger=self._logger,
        )

    def __str__(self):
        return f"Session('{self.identity.session_id}', offline={self._offline}, {self._engine})"

    async def __aenter__(self) -> Session:
        self._logger.debug(f"Entering context: {self}")
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, traceback):
        if exc_type:
            self._logger.error(f"Exiting context with error: {self}")

            # still persist what we have locally
            await self.close()
            return

        self._logger.debug(f"Exiting context: {self}")
        await self.close()

    @property
    def tabs(self) -> TabCollection:
        """
        Copy of current tab collection.
        """
        return self._engine.tabs

    @property
    def active_id(self) -> str | None:
        return self._engine.active_id

    @property
    def active_tab(self) -> Tab | None:
        """
        Copy of active tab, if any.
        """
        return self._engine.active_tab

    @property
    def dirty(self) -> bool:
        """
        Whether local edits haven't been confirmed written remotely.
        """
        return self._engine.dirty

    @property
    def offline(self) -> bool:
        """
        Whether running without a live subscription, after it failed or the
        feed dropped.
        """
        return self._offline

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def scheduler(self) -> WriteScheduler:
        return self._scheduler

    async def start(self):
        """
        Subscribe to remote changes. If the subscription fails, load from the
        local cache and continue without realtime sync.
        """
        assert not self._started, f"{self} already started"
        self._started = True

        try:
            await self._channel.subscribe(
                self.identity,
                self._handle_snapshot,
                on_error=self._handle_disconnect,
            )
        except RemoteSubscribeFailed as e:
            self._go_offline(e)

    async def wait_ready(self, timeout: float | None = None):
        """
        Wait until the first remote snapshot was merged, or the session fell
        back to the local cache.

        :raises TimeoutError: If not ready within `timeout` seconds
        """
        await asyncio.wait_for(self._ready.wait(), timeout)

    async def reconnect(self) -> bool:
        """
        Retry the subscription after running offline. Pending local changes
        are written once connected.

        :returns: Whether the session is connected
        """
        self._assert_open()

        if not self._offline:
            return True

        try:
            await self._channel.subscribe(
                self.identity,
                self._handle_snapshot,
                on_error=self._handle_disconnect,
            )
        except RemoteSubscribeFailed as e:
            self._logger.warning(f"Reconnect failed: {e}")
            self._report(e)
            return False

        self._offline = False
        self._logger.info(f"Reconnected to '{self.identity.session_id}'")

        if self.dirty:
            self._scheduler.flush_soon()

        return True

    async def close(self, *, flush: bool = True):
        """
        Tear down: stop remote delivery, drop the scheduled write, then write
        remaining local changes of this session once.

        :param flush: Write pending changes before returning
        """
        if self._closed:
            return

        self._closed = True

        self._channel.unsubscribe(self.identity)
        self._scheduler.cancel()
        await self._scheduler.drain()

        if flush and self.dirty:
            self._logger.debug(
                f"Writing pending changes of '{self.identity.session_id}' on close"
            )
            await self._scheduler.flush()

        # a completed write may have re-armed the timer
        self._scheduler.cancel()

    def select(self, tab_id: str):
        """
        Make a tab active.
        """
        self._assert_open()
        self._engine.select(tab_id)
        self._changed()

    def edit(self, text: str, *, tab_id: str | None = None) -> str:
        """
        Replace text of a tab, by default the active one. Creates the first
        tab if there is none.

        :returns: Id of edited tab
        """
        self._assert_open()
        tab_id = self._engine.edit(text, tab_id=tab_id)
        self._edited()
        return tab_id

    def rename(self, title: str, *, tab_id: str | None = None) -> str:
        """
        Replace title of a tab, by default the active one.

        :returns: Id of renamed tab
        """
        self._assert_open()
        tab_id = self._engine.rename(title, tab_id=tab_id)
        self._edited()
        return tab_id

    def create_tab(self, *, title: str = "", text: str = "") -> str:
        """
        Create a tab and make it active.

        :returns: Id of new tab
        """
        self._assert_open()
        tab_id = self._engine.create_tab(title=title, text=text)
        self._edited()
        return tab_id

    def delete_tab(self, tab_id: str):
        self._assert_open()
        self._engine.delete_tab(tab_id)
        self._edited()

    def clear(self):
        """
        Delete all tabs of the session. Written like any other edit.
        """
        self._assert_open()
        self._engine.clear()

        # an empty remote snapshot must not reseed from the old cache entry
        self._cache.save(self.identity, {})
        self._edited()

    def search(self, term: str) -> TabCollection:
        """
        Tabs whose title or text contains the given term, case-insensitively.
        """
        return self._engine.search(term)

    async def save(self) -> bool:
        """
        Write immediately instead of waiting for the quiet interval.

        :returns: Whether the remote write succeeded
        """
        self._assert_open()
        self._scheduler.cancel()
        return await self._scheduler.flush()

    async def wait_idle(self):
        """
        Wait until no write is scheduled or in flight.
        """
        await self._scheduler.wait_idle()

    def _handle_snapshot(self, snapshot: TabCollection):
        if self._closed:
            # stale delivery after teardown
            return

        cached = None if snapshot else self._cache.load(self.identity)
        result = self._engine.apply_remote(snapshot, cached=cached)

        if result.seeded:
            self._logger.info(
                f"No remote data for '{self.identity.session_id}', restoring {len(result.tabs)} tabs from cache"
            )
            if not self._offline:
                self._scheduler.flush_soon()

        self._changed()
        self._ready.set()

    def _handle_disconnect(self, error: RemoteSubscribeFailed):
        if self._closed:
            return
        self._go_offline(error)

    def _go_offline(self, error: RemoteSubscribeFailed):
        self._offline = True
        self._report(error)

        if self._ready.is_set():
            # keep what's loaded, including edits not yet written
            self._logger.warning(f"{error}; continuing offline")
            return

        self._logger.warning(f"{error}; continuing from local cache")

        # merge cached copy as if it were the remote snapshot
        cached = self._cache.load(self.identity) or {}
        self._engine.apply_remote(cached)
        self._changed()
        self._ready.set()

    def _edited(self):
        self._scheduler.notify_edit()
        self._changed()

    def _changed(self):
        if self._on_change is not None:
            self._on_change(self._engine.tabs, self._engine.active_id)

    def _report(self, error: Exception):
        if self._on_error is not None:
            self._on_error(error)

    def _assert_open(self):
        assert not self._closed, f"{self} is closed"
