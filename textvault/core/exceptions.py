__all__ = [
    "InvalidIdentity",
    "NotAuthenticated",
    "AuthenticationFailed",
    "StoreError",
    "RemoteWriteFailed",
    "RemoteSubscribeFailed",
]


class InvalidIdentity(ValueError):
    """
    Raised when a session id is malformed or too short after normalization.
    The user must retry with a different id.
    """

    raw_id: str

    def __init__(self, raw_id: str, reason: str):
        self.raw_id = raw_id
        super().__init__(f"Invalid session id '{raw_id}': {reason}")


class NotAuthenticated(Exception):
    """
    Raised when an operation requires an established {obj}`SessionIdentity`
    but none is present. Fatal to the operation, not the process.
    """

    def __init__(self, operation: str | None = None):
        msg = "No session joined"
        if operation:
            msg += f", cannot {operation}"
        super().__init__(msg)


class AuthenticationFailed(Exception):
    """
    Raised when a passphrase does not match the auth record of an existing
    session.
    """

    session_id: str

    def __init__(self, session_id: str, reason: str = "invalid password"):
        self.session_id = session_id
        super().__init__(f"Authentication failed for '{session_id}': {reason}")


class StoreError(Exception):
    """
    Raised by a backend store when a request fails.
    """


class RemoteWriteFailed(Exception):
    """
    Transient failure writing a tab collection to the remote store. The local
    cache still receives the write and the session stays dirty.
    """

    session_id: str

    def __init__(self, session_id: str, cause: Exception):
        self.session_id = session_id
        super().__init__(f"Failed to write tabs of '{session_id}': {cause}")


class RemoteSubscribeFailed(Exception):
    """
    Failure subscribing to (or staying subscribed to) the remote change feed.
    The session degrades to cache-only mode.
    """

    session_id: str

    def __init__(self, session_id: str, cause: Exception):
        self.session_id = session_id
        super().__init__(f"Failed to subscribe to '{session_id}': {cause}")
