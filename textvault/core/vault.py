"""
Application facade: joins, switches and leaves sessions.
"""

from __future__ import annotations

import logging
from logging import Logger
from pathlib import Path

from .auth import AuthManager, AuthResult, SessionStats
from .cache import LocalCache
from .channel import SyncChannel
from .exceptions import NotAuthenticated
from .identity import SessionIdentity
from .scheduler import DEFAULT_QUIET_INTERVAL
from .session import ChangeCallback, ErrorCallback, Session
from .store.base import BaseStore

__all__ = [
    "Vault",
]

REMEMBER_FILENAME = "remembered.json"


class Vault:
    """
    Owns the store, authentication and local cache, and at most one active
    {obj}`Session`.

    Switching sessions tears the old one down completely (unsubscribe, cancel
    its scheduled write, write its remaining changes) before the new one
    subscribes, so a stale callback can never reach the new session.

    :param store: Backend store shared by all sessions
    :param cache_dir: Folder for the local cache and remembered session
    :param quiet_interval: Seconds without edits before a write
    :param on_change: Invoked with full collection and active tab id after each change
    :param on_error: Invoked with transient failures
    :param logger: Logger to use, or `None` to use default logger
    """

    store: BaseStore
    auth: AuthManager
    channel: SyncChannel
    cache: LocalCache
    quiet_interval: float

    _session: Session | None = None
    _on_change: ChangeCallback | None
    _on_error: ErrorCallback | None
    _logger: Logger

    def __init__(
        self,
        store: BaseStore,
        *,
        cache_dir: Path,
        quiet_interval: float = DEFAULT_QUIET_INTERVAL,
        on_change: ChangeCallback | None = None,
        on_error: ErrorCallback | None = None,
        logger: Logger | None = None,
    ):
        self._logger = logger or logging.getLogger()

        self.store = store
        self.quiet_interval = quiet_interval
        self.cache = LocalCache(cache_dir, logger=self._logger)
        self.channel = SyncChannel(store, logger=self._logger)
        self.auth = AuthManager(
            store,
            remember_file=cache_dir / REMEMBER_FILENAME,
            logger=self._logger,
        )

        self._on_change = on_change
        self._on_error = on_error

    def __str__(self):
        return f"Vault: session={self._session}"

    async def __aenter__(self) -> Vault:
        return self

    async def __aexit__(self, exc_type, exc_val, traceback):
        await self.close()

    @property
    def session(self) -> Session:
        """
        Currently joined session.

        :raises NotAuthenticated: If no session is joined
        """
        if self._session is None:
            raise NotAuthenticated()
        return self._session

    @property
    def is_joined(self) -> bool:
        return self._session is not None

    async def join(
        self, raw_id: str, passphrase: str, *, remember: bool = False
    ) -> AuthResult:
        """
        Authenticate and switch to the given session.

        :raises InvalidIdentity: If the session id is malformed
        :raises AuthenticationFailed: If the password doesn't match
        """
        result = await self.auth.authenticate(
            raw_id, passphrase, remember=remember
        )
        await self._switch(result.identity)
        return result

    async def restore(self) -> bool:
        """
        Resume the remembered session, if any.

        :returns: Whether a session was resumed
        """
        identity = self.auth.restore()
        if identity is None:
            return False

        self._logger.info(f"Restoring session '{identity.session_id}'")
        await self._switch(identity)
        return True

    async def logout(self):
        """
        Leave the current session, writing its pending changes first.
        """
        await self._teardown()
        self.auth.logout()

    async def validate(self) -> bool:
        """
        Check the current session still exists; leaves it otherwise.
        """
        if await self.auth.validate():
            return True

        await self._teardown()
        return False

    async def get_stats(self) -> SessionStats:
        return await self.auth.get_stats()

    async def change_password(self, current: str, new: str):
        """
        Change the current session's password and rebind the session to the
        new identity, carrying over its cache entry.
        """
        old_identity = self.auth.require_identity("change password")
        new_identity = await self.auth.change_password(current, new)

        await self._teardown()
        self.cache.move(old_identity, new_identity)
        await self._start(new_identity)

    async def close(self):
        """
        Leave the current session without forgetting it, and release the
        store.
        """
        await self._teardown()
        self.channel.close()
        await self.store.close()

    async def _switch(self, identity: SessionIdentity):
        await self._teardown()
        await self._start(identity)

    async def _start(self, identity: SessionIdentity):
        session = Session(
            identity,
            channel=self.channel,
            cache=self.cache,
            quiet_interval=self.quiet_interval,
            on_change=self._on_change,
            on_error=self._on_error,
            logger=self._logger,
        )
        await session.start()
        self._session = session

    async def _teardown(self):
        session, self._session = self._session, None
        if session is not None:
            await session.close()
