"""
Derivation of canonical session identities from user-supplied inputs.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from enum import Enum, auto

from .exceptions import InvalidIdentity
from .utils import base_n_hash

__all__ = [
    "SessionIdentity",
    "VerifyResult",
    "normalize",
    "derive_secret",
]

SESSION_ID_MIN = 3
"""
Minimum length of a normalized session id.
"""

SESSION_ID_MAX = 50
"""
Maximum length of a normalized session id; longer ids are truncated.
"""

SECRET_SALT = "textVault_salt_2024"
"""
Application-wide salt appended to passphrases before hashing. Changing it
invalidates every existing session.
"""

_DISALLOWED = re.compile(r"[^a-z0-9_-]")


class VerifyResult(Enum):
    """
    Outcome of checking a secret against a session's auth record.
    """

    MATCH = auto()
    """Auth record exists and secret matches"""

    MISMATCH = auto()
    """Auth record exists but secret differs"""

    NOT_FOUND = auto()
    """No auth record; session does not exist yet"""


def normalize(raw_id: str) -> str:
    """
    Canonicalize a session id: lowercase, strip characters other than
    letters, digits, `-` and `_`, then truncate.

    :raises InvalidIdentity: If fewer than {obj}`SESSION_ID_MIN` characters remain
    """
    session_id = _DISALLOWED.sub("", raw_id.lower())[:SESSION_ID_MAX]

    if len(session_id) < SESSION_ID_MIN:
        raise InvalidIdentity(
            raw_id,
            f"must be at least {SESSION_ID_MIN} characters long and contain "
            "only letters, numbers, hyphens, and underscores",
        )

    return session_id


def derive_secret(passphrase: str) -> str:
    """
    One-way, deterministic verifier for a passphrase.
    """
    data = (passphrase + SECRET_SALT).encode("utf-8")
    return hashlib.sha256(data).hexdigest()


@dataclass(frozen=True)
class SessionIdentity:
    """
    Canonical identity of a joined session. Immutable; a new identity is
    created when switching sessions or changing the password.
    """

    session_id: str
    secret: str

    @classmethod
    def from_raw(cls, raw_id: str, passphrase: str) -> SessionIdentity:
        """
        Create identity from raw user input.
        """
        return cls(normalize(raw_id), derive_secret(passphrase))

    @property
    def namespace(self) -> str:
        """
        Path of this session's subtree in the remote store.
        """
        return f"sessions/{self.session_id}"

    @property
    def cache_key(self) -> str:
        """
        Stable key of this session's entry in the local cache. Incorporates
        the secret so that sessions re-created with another password don't
        share a cache entry.
        """
        return base_n_hash(f"{self.session_id}\0{self.secret}".encode())

    def __repr__(self) -> str:
        # keep the verifier out of logs
        return f"SessionIdentity(session_id='{self.session_id}')"
