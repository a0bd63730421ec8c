"""
Remote sync channel: per-session subscription and whole-collection writes on
top of a {obj}`BaseStore`.
"""

from __future__ import annotations

import logging
from logging import Logger
from typing import Any, Callable

from .exceptions import RemoteSubscribeFailed, RemoteWriteFailed, StoreError
from .identity import SessionIdentity
from .store.base import BaseStore, Listener
from .tab import TabCollection, dump_tabs, load_tabs

__all__ = [
    "SyncChannel",
    "tabs_path",
]

TABS_KEY = "tabs"
"""
Child of a session's namespace holding its tab collection.
"""


def tabs_path(identity: SessionIdentity) -> str:
    """
    Path of a session's tab collection in the store.
    """
    return f"{identity.namespace}/{TABS_KEY}"


class SyncChannel:
    """
    Subscribes to and writes tab collections, keyed by session id. At most one
    subscription per session is live; subscribing again replaces it.
    """

    store: BaseStore

    _subscriptions: dict[str, Listener]
    _logger: Logger

    def __init__(self, store: BaseStore, *, logger: Logger | None = None):
        self.store = store
        self._subscriptions = {}
        self._logger = logger or logging.getLogger()

    def __str__(self):
        return f"SyncChannel: store={self.store}, subscriptions={list(self._subscriptions)}"

    def is_subscribed(self, identity: SessionIdentity) -> bool:
        listener = self._subscriptions.get(identity.session_id)
        return listener is not None and not listener.closed

    async def subscribe(
        self,
        identity: SessionIdentity,
        callback: Callable[[TabCollection], None],
        *,
        on_error: Callable[[RemoteSubscribeFailed], None] | None = None,
    ):
        """
        Deliver the session's full collection now and on every remote change.
        Delivery is at-least-once and may be stale relative to local writes.

        :raises RemoteSubscribeFailed: If the subscription can't be established
        """
        self.unsubscribe(identity)

        def handle_snapshot(raw: Any):
            callback(load_tabs(raw, logger=self._logger))

        def handle_error(e: Exception):
            # only drop the entry if it wasn't replaced in the meantime
            if self._subscriptions.get(identity.session_id) is listener:
                del self._subscriptions[identity.session_id]
            if on_error is not None:
                on_error(RemoteSubscribeFailed(identity.session_id, e))

        try:
            listener = await self.store.listen(
                tabs_path(identity), handle_snapshot, on_error=handle_error
            )
        except StoreError as e:
            raise RemoteSubscribeFailed(identity.session_id, e) from e

        self._subscriptions[identity.session_id] = listener
        self._logger.debug(f"Subscribed to '{identity.session_id}'")

    def unsubscribe(self, identity: SessionIdentity):
        """
        Stop delivery for the session. No-op if not subscribed.
        """
        listener = self._subscriptions.pop(identity.session_id, None)
        if listener is not None:
            listener.close()
            self._logger.debug(f"Unsubscribed from '{identity.session_id}'")

    async def fetch(self, identity: SessionIdentity) -> TabCollection:
        """
        One-shot read of the session's collection.

        :raises RemoteSubscribeFailed: If the read fails
        """
        try:
            raw = await self.store.get(tabs_path(identity))
        except StoreError as e:
            raise RemoteSubscribeFailed(identity.session_id, e) from e

        return load_tabs(raw, logger=self._logger)

    async def write(self, identity: SessionIdentity, tabs: TabCollection):
        """
        Replace the session's entire remote collection.

        :raises RemoteWriteFailed: If the store rejects the write
        """
        try:
            await self.store.set(tabs_path(identity), dump_tabs(tabs))
        except StoreError as e:
            raise RemoteWriteFailed(identity.session_id, e) from e

        self._logger.debug(
            f"Wrote {len(tabs)} tabs for '{identity.session_id}'"
        )

    def close(self):
        """
        Drop all subscriptions.
        """
        for listener in self._subscriptions.values():
            listener.close()
        self._subscriptions.clear()
