"""
In-process store, used for tests and for running without a backend.
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any

from .base import (
    BaseStore,
    ErrorCallback,
    Listener,
    SnapshotCallback,
    get_at_path,
    is_related,
    join_path,
    set_at_path,
)

__all__ = [
    "MemoryStore",
]


class MemoryListener(Listener):
    store: MemoryStore
    callback: SnapshotCallback
    loop: asyncio.AbstractEventLoop

    _closed: bool = False

    def __init__(
        self,
        store: MemoryStore,
        path: str,
        callback: SnapshotCallback,
        loop: asyncio.AbstractEventLoop,
    ):
        super().__init__(path)
        self.store = store
        self.callback = callback
        self.loop = loop

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self):
        if not self._closed:
            self._closed = True
            self.store._listeners.remove(self)

    def schedule(self, value: Any):
        """
        Queue delivery on the listener's loop; never invoke synchronously.
        """
        self.loop.call_soon(self._deliver, value)

    def _deliver(self, value: Any):
        if not self._closed:
            self.callback(value)


class MemoryStore(BaseStore):
    """
    Realtime tree held in memory. Writes notify listeners of related paths
    with a deep copy of their current value.
    """

    _tree: Any
    _listeners: list[MemoryListener]

    def __init__(self, data: dict[str, Any] | None = None):
        self._tree = set_at_path(None, "", data) if data else None
        self._listeners = []

    def __str__(self):
        return f"MemoryStore: listeners={len(self._listeners)}"

    @property
    def data(self) -> Any:
        """
        Deep copy of the whole tree.
        """
        return copy.deepcopy(self._tree)

    async def get(self, path: str) -> Any:
        return copy.deepcopy(get_at_path(self._tree, path))

    async def set(self, path: str, value: Any):
        self._tree = set_at_path(self._tree, path, value)
        self._notify(path)

    async def update(self, path: str, values: dict[str, Any]):
        for key, value in values.items():
            self._tree = set_at_path(self._tree, join_path(path, key), value)
        self._notify(path)

    async def remove(self, path: str):
        await self.set(path, None)

    async def listen(
        self,
        path: str,
        callback: SnapshotCallback,
        *,
        on_error: ErrorCallback | None = None,
    ) -> Listener:
        listener = MemoryListener(
            self, path, callback, asyncio.get_running_loop()
        )
        self._listeners.append(listener)

        # deliver initial value
        listener.schedule(await self.get(path))
        return listener

    async def close(self):
        for listener in list(self._listeners):
            listener.close()

    def _notify(self, path: str):
        for listener in self._listeners:
            if is_related(listener.path, path):
                listener.schedule(
                    copy.deepcopy(get_at_path(self._tree, listener.path))
                )
