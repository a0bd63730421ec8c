"""
Session authentication: auth records in the remote store and a locally
remembered session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from logging import Logger
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .channel import tabs_path
from .exceptions import AuthenticationFailed, NotAuthenticated
from .identity import SessionIdentity, VerifyResult, derive_secret, normalize
from .store.base import BaseStore
from .utils import now_ms

__all__ = [
    "AuthManager",
    "AuthRecord",
    "AuthResult",
    "RememberedSession",
    "SessionStats",
]

AUTH_KEY = "auth"
"""
Child of a session's namespace holding its auth record.
"""

REMEMBER_DURATION_MS = 7 * 24 * 60 * 60 * 1000
"""
How long a remembered session stays valid.
"""


class AuthRecord(BaseModel):
    """
    Auth record of a session as stored remotely.
    """

    model_config = ConfigDict(populate_by_name=True)

    password_hash: str = Field(alias="passwordHash")
    session_id: str = Field(alias="sessionId")
    created: int
    last_access: int = Field(alias="lastAccess")
    access_count: int = Field(default=0, alias="accessCount")
    password_changed: int | None = Field(default=None, alias="passwordChanged")


class RememberedSession(BaseModel):
    """
    Session persisted locally so it can be resumed without a password.
    """

    session_id: str
    secret: str
    expiry: int
    """Expiry in epoch milliseconds"""

    @property
    def expired(self) -> bool:
        return self.expiry <= now_ms()


class SessionStats(BaseModel):
    session_id: str
    created: int
    last_access: int
    access_count: int
    tab_count: int


@dataclass(frozen=True)
class AuthResult:
    identity: SessionIdentity
    is_new: bool
    """Whether the session was created by this authentication"""


class AuthManager:
    """
    Establishes and tracks the identity of the current session.

    :param store: Store holding auth records
    :param remember_file: File in which to persist a remembered session, or `None` to disable
    :param logger: Logger to use, or `None` to use default logger
    """

    store: BaseStore
    remember_file: Path | None

    _identity: SessionIdentity | None = None
    _logger: Logger

    def __init__(
        self,
        store: BaseStore,
        *,
        remember_file: Path | None = None,
        logger: Logger | None = None,
    ):
        self.store = store
        self.remember_file = remember_file
        self._logger = logger or logging.getLogger()

    @property
    def identity(self) -> SessionIdentity | None:
        return self._identity

    @property
    def is_authenticated(self) -> bool:
        return self._identity is not None

    def require_identity(self, operation: str | None = None) -> SessionIdentity:
        """
        Return current identity.

        :raises NotAuthenticated: If no session is established
        """
        if self._identity is None:
            raise NotAuthenticated(operation)
        return self._identity

    async def verify(self, session_id: str, secret: str) -> VerifyResult:
        """
        Check a secret against the auth record of a session.
        """
        record = await self._get_record(session_id)

        if record is None:
            return VerifyResult.NOT_FOUND
        if record.password_hash != secret:
            return VerifyResult.MISMATCH
        return VerifyResult.MATCH

    async def authenticate(
        self, raw_id: str, passphrase: str, *, remember: bool = False
    ) -> AuthResult:
        """
        Join a session, creating it if it doesn't exist.

        :param raw_id: Session id as entered by the user
        :param passphrase: Password as entered by the user
        :param remember: Persist the session locally for later {obj}`restore`

        :raises InvalidIdentity: If the session id is malformed
        :raises AuthenticationFailed: If the session exists with another password
        """
        session_id = normalize(raw_id)

        if not passphrase:
            raise AuthenticationFailed(session_id, "password is required")

        identity = SessionIdentity(session_id, derive_secret(passphrase))
        now = now_ms()

        record = await self._get_record(session_id)
        is_new = record is None

        if record is None:
            record = AuthRecord(
                password_hash=identity.secret,
                session_id=identity.session_id,
                created=now,
                last_access=now,
                access_count=1,
            )
            await self.store.set(
                self._auth_path(identity.session_id),
                record.model_dump(by_alias=True, exclude_none=True),
            )
            self._logger.info(f"Created session '{identity.session_id}'")
        else:
            if record.password_hash != identity.secret:
                raise AuthenticationFailed(identity.session_id)

            await self.store.update(
                self._auth_path(identity.session_id),
                {
                    "lastAccess": now,
                    "accessCount": record.access_count + 1,
                },
            )
            self._logger.debug(f"Joined session '{identity.session_id}'")

        self._identity = identity

        if remember:
            self._remember(identity)

        return AuthResult(identity=identity, is_new=is_new)

    def restore(self) -> SessionIdentity | None:
        """
        Resume the remembered session, if any and not expired. Unusable
        entries are removed.
        """
        if self.remember_file is None or not self.remember_file.is_file():
            return None

        try:
            remembered = RememberedSession.model_validate_json(
                self.remember_file.read_text(encoding="utf-8")
            )
        except (OSError, ValidationError) as e:
            self._logger.warning(f"Discarding stored session: {e}")
            self.forget()
            return None

        if remembered.expired:
            self._logger.info(
                f"Stored session '{remembered.session_id}' expired"
            )
            self.forget()
            return None

        self._identity = SessionIdentity(
            remembered.session_id, remembered.secret
        )
        return self._identity

    def forget(self):
        """
        Remove remembered session, if any.
        """
        if self.remember_file is not None:
            self.remember_file.unlink(missing_ok=True)

    def logout(self):
        """
        Drop current identity and remembered session.
        """
        if self._identity is not None:
            self._logger.debug(f"Logged out of '{self._identity.session_id}'")

        self._identity = None
        self.forget()

    async def validate(self) -> bool:
        """
        Check that the current session still exists remotely; logs out if it
        was deleted. A session with a changed password stays valid until the
        next authentication.
        """
        if self._identity is None:
            return False

        record = await self._get_record(self._identity.session_id)
        if record is None:
            self._logger.warning(
                f"Session '{self._identity.session_id}' no longer exists"
            )
            self.logout()
            return False

        return True

    async def get_stats(self) -> SessionStats:
        """
        Usage statistics of the current session.

        :raises NotAuthenticated: If no session is established
        """
        identity = self.require_identity("get stats")

        record = await self._get_record(identity.session_id)
        tabs = await self.store.get(tabs_path(identity))
        now = now_ms()

        return SessionStats(
            session_id=identity.session_id,
            created=record.created if record else now,
            last_access=record.last_access if record else now,
            access_count=record.access_count if record else 0,
            tab_count=len(tabs) if isinstance(tabs, dict) else 0,
        )

    async def change_password(
        self, current: str, new: str
    ) -> SessionIdentity:
        """
        Change password of the current session.

        :returns: New identity, which replaces the current one
        :raises NotAuthenticated: If no session is established
        :raises AuthenticationFailed: If `current` doesn't match
        """
        identity = self.require_identity("change password")

        result = await self.verify(identity.session_id, derive_secret(current))
        if result is not VerifyResult.MATCH:
            raise AuthenticationFailed(
                identity.session_id, "current password is incorrect"
            )

        new_identity = SessionIdentity(identity.session_id, derive_secret(new))

        await self.store.update(
            self._auth_path(identity.session_id),
            {
                "passwordHash": new_identity.secret,
                "passwordChanged": now_ms(),
            },
        )

        self._identity = new_identity

        # keep remembered session usable
        if self.remember_file is not None and self.remember_file.is_file():
            self._remember(new_identity)

        self._logger.info(f"Changed password of '{identity.session_id}'")
        return new_identity

    async def _get_record(self, session_id: str) -> AuthRecord | None:
        raw = await self.store.get(self._auth_path(session_id))
        if raw is None:
            return None
        return AuthRecord.model_validate(raw)

    def _remember(self, identity: SessionIdentity):
        if self.remember_file is None:
            self._logger.warning(
                f"Not remembering '{identity.session_id}': no file configured"
            )
            return

        remembered = RememberedSession(
            session_id=identity.session_id,
            secret=identity.secret,
            expiry=now_ms() + REMEMBER_DURATION_MS,
        )

        self.remember_file.parent.mkdir(parents=True, exist_ok=True)
        self.remember_file.write_text(remembered.model_dump_json())

    @staticmethod
    def _auth_path(session_id: str) -> str:
        return f"sessions/{session_id}/{AUTH_KEY}"
