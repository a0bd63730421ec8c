"""
Debounced writing of a session's tab collection.
"""

from __future__ import annotations

import asyncio
import logging
from logging import Logger
from typing import Callable

from .cache import LocalCache
from .channel import SyncChannel
from .exceptions import RemoteWriteFailed
from .identity import SessionIdentity
from .merge import MergeEngine

__all__ = [
    "WriteScheduler",
    "DEFAULT_QUIET_INTERVAL",
]

DEFAULT_QUIET_INTERVAL = 0.6
"""
Seconds without edits after which pending changes are written.
"""


class WriteScheduler:
    """
    Coalesces rapid edits into a single write of the whole collection to the
    remote channel and the local cache.

    At most one timer is live at a time; each edit replaces it. A write
    which already started is never cancelled by a newer edit: the newer edit
    arms its own timer and the generation check in {obj}`MergeEngine.mark_written`
    keeps the session dirty until that one lands. At most one write is in
    flight at a time.
    """

    identity: SessionIdentity
    quiet_interval: float

    _engine: MergeEngine
    _channel: SyncChannel
    _cache: LocalCache
    _on_error: Callable[[Exception], None] | None
    _timer: asyncio.Task | None
    _inflight: set[asyncio.Task]
    _lock: asyncio.Lock
    _logger: Logger

    def __init__(
        self,
        identity: SessionIdentity,
        engine: MergeEngine,
        *,
        channel: SyncChannel,
        cache: LocalCache,
        quiet_interval: float = DEFAULT_QUIET_INTERVAL,
        on_error: Callable[[Exception], None] | None = None,
        logger: Logger | None = None,
    ):
        """
        :param identity: Session whose collection is written
        :param engine: Owner of the collection and dirty flag
        :param channel: Remote channel to write to
        :param cache: Local cache mirroring every write
        :param quiet_interval: Seconds to wait after the last edit
        :param on_error: Receives write failures, e.g. to notify the user
        :param logger: Logger to use, or `None` to use default logger
        """
        assert quiet_interval >= 0

        self.identity = identity
        self.quiet_interval = quiet_interval

        self._engine = engine
        self._channel = channel
        self._cache = cache
        self._on_error = on_error
        self._timer = None
        self._inflight = set()
        self._lock = asyncio.Lock()
        self._logger = logger or logging.getLogger()

    @property
    def pending(self) -> bool:
        """
        Whether a write is scheduled but hasn't started.
        """
        return self._timer is not None

    @property
    def busy(self) -> bool:
        """
        Whether a write is scheduled or in flight.
        """
        return self.pending or bool(self._inflight)

    def notify_edit(self):
        """
        Schedule a write after the quiet interval, superseding any scheduled
        one.
        """
        self.cancel()
        self._timer = asyncio.get_running_loop().create_task(
            self._wait_and_flush()
        )

    def cancel(self):
        """
        Drop the scheduled write, if any. Writes in flight are unaffected.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def flush_soon(self):
        """
        Start a write now without waiting for the quiet interval.
        """
        self.cancel()
        self._spawn()

    async def flush(self) -> bool:
        """
        Write the current collection to the remote channel, then to the local
        cache regardless of the remote outcome.

        Writes are serialized: a flush started while another is in flight
        waits for it and then captures the collection afresh, so an older
        collection can never land after a newer one.

        On success the dirty flag is cleared unless newer edits arrived during
        the write, in which case a write is re-armed. On failure the session
        stays dirty; the next edit or explicit save retries.

        :returns: Whether the remote write succeeded
        """
        async with self._lock:
            generation, tabs = self._engine.snapshot()

            try:
                await self._channel.write(self.identity, tabs)
            except RemoteWriteFailed as e:
                self._logger.warning(f"{e}; changes kept in local cache")
                if self._on_error is not None:
                    self._on_error(e)
                return False
            finally:
                self._cache.save(self.identity, tabs)

            if not self._engine.mark_written(generation):
                self._logger.debug(
                    f"Edits arrived during write of '{self.identity.session_id}', re-arming"
                )
                if self._timer is None:
                    self.notify_edit()

            return True

    async def drain(self):
        """
        Wait for writes in flight to complete.
        """
        while self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def wait_idle(self):
        """
        Wait until no write is scheduled or in flight.
        """
        while self.busy:
            if self._timer is not None:
                await asyncio.wait({self._timer})
            await self.drain()

    async def _wait_and_flush(self):
        await asyncio.sleep(self.quiet_interval)

        # from here on the write must not be cancelled by a new edit
        self._timer = None
        self._spawn()

    def _spawn(self):
        task = asyncio.get_running_loop().create_task(self.flush())
        self._inflight.add(task)
        task.add_done_callback(self._write_done)

    def _write_done(self, task: asyncio.Task):
        self._inflight.discard(task)

        if not task.cancelled() and task.exception() is not None:
            # e.g. cache folder not writable
            self._logger.error(
                f"Write of '{self.identity.session_id}' failed: {task.exception()}"
            )
