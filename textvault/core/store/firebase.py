"""
Store backed by a Firebase Realtime Database, accessed through its REST API.

Requests are blocking (`requests`) and run in a worker thread. Change feeds
use the database's server-sent events stream, read on a dedicated thread
which hands snapshots to the event loop; it never calls back into session
state directly.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import threading
from logging import Logger
from typing import Any, Iterable, Iterator

import requests

from ..exceptions import StoreError
from .base import (
    BaseStore,
    ErrorCallback,
    Listener,
    SnapshotCallback,
    join_path,
    set_at_path,
)

__all__ = [
    "FirebaseStore",
]

REQUEST_TIMEOUT = 10.0
"""
Timeout for connecting and for regular requests.
"""

STREAM_READ_TIMEOUT = 90.0
"""
Read timeout of event streams; the server sends keep-alive events every
30 seconds.
"""


class FirebaseStore(BaseStore):
    """
    Interface to a Firebase Realtime Database.

    :param database_url: Database URL, e.g. `https://my-app-default-rtdb.firebaseio.com`
    :param auth: Database secret or ID token passed as `auth` query parameter
    :param timeout: Request timeout in seconds
    :param logger: Logger to use, or `None` to use default logger
    """

    _database_url: str
    _auth: str | None
    _timeout: float
    _listeners: list[EventStream]
    _logger: Logger

    def __init__(
        self,
        database_url: str,
        *,
        auth: str | None = None,
        timeout: float = REQUEST_TIMEOUT,
        logger: Logger | None = None,
    ):
        self._database_url = database_url.rstrip("/")
        self._auth = auth
        self._timeout = timeout
        self._listeners = []
        self._logger = logger or logging.getLogger()

    def __str__(self):
        return f"FirebaseStore: {self._database_url}"

    @property
    def database_url(self) -> str:
        return self._database_url

    async def get(self, path: str) -> Any:
        return await asyncio.to_thread(self._request, "GET", path)

    async def set(self, path: str, value: Any):
        await asyncio.to_thread(self._request, "PUT", path, value)

    async def update(self, path: str, values: dict[str, Any]):
        await asyncio.to_thread(self._request, "PATCH", path, values)

    async def remove(self, path: str):
        await asyncio.to_thread(self._request, "DELETE", path)

    async def listen(
        self,
        path: str,
        callback: SnapshotCallback,
        *,
        on_error: ErrorCallback | None = None,
    ) -> Listener:
        stream = EventStream(
            self,
            path,
            callback,
            asyncio.get_running_loop(),
            on_error=on_error,
        )

        # open connection in worker thread so failures surface here
        await asyncio.to_thread(stream.connect)

        self._listeners.append(stream)
        stream.start()
        return stream

    async def close(self):
        for stream in list(self._listeners):
            stream.close()

    def url(self, path: str) -> str:
        """
        REST endpoint for the given path.
        """
        return f"{self._database_url}/{join_path(path)}.json"

    @property
    def _params(self) -> dict[str, str]:
        return {"auth": self._auth} if self._auth else {}

    def _request(self, method: str, path: str, value: Any = None) -> Any:
        url = self.url(path)

        self._logger.debug(f"{method} {url}")

        try:
            response = requests.request(
                method,
                url,
                params=self._params,
                data=json.dumps(value) if method in ("PUT", "PATCH") else None,
                timeout=self._timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise StoreError(f"{method} '{path}' failed: {e}") from e

        if method == "GET":
            return response.json()


class EventStream(Listener):
    """
    Listener on a Firebase event stream. Maintains a mirror of the value at
    its path from `put`/`patch` events and posts a copy to the loop after
    each change.
    """

    store: FirebaseStore
    callback: SnapshotCallback
    loop: asyncio.AbstractEventLoop
    on_error: ErrorCallback | None

    _data: Any = None
    _response: requests.Response | None = None
    _thread: threading.Thread | None = None
    _closed: bool = False

    def __init__(
        self,
        store: FirebaseStore,
        path: str,
        callback: SnapshotCallback,
        loop: asyncio.AbstractEventLoop,
        *,
        on_error: ErrorCallback | None = None,
    ):
        super().__init__(path)
        self.store = store
        self.callback = callback
        self.loop = loop
        self.on_error = on_error

    @property
    def closed(self) -> bool:
        return self._closed

    def connect(self):
        """
        Open the HTTP stream. Blocking.
        """
        try:
            response = requests.get(
                self.store.url(self.path),
                params=self.store._params,
                headers={"Accept": "text/event-stream"},
                stream=True,
                timeout=(self.store._timeout, STREAM_READ_TIMEOUT),
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise StoreError(f"Listening on '{self.path}' failed: {e}") from e

        # iter_lines() yields bytes unless an encoding is known
        response.encoding = response.encoding or "utf-8"
        self._response = response

    def start(self):
        assert self._response is not None

        self._thread = threading.Thread(
            target=self._run,
            name=f"textvault-stream:{self.path}",
            daemon=True,
        )
        self._thread.start()

    def close(self):
        if self._closed:
            return

        self._closed = True

        if self in self.store._listeners:
            self.store._listeners.remove(self)

        # unblocks the reader thread
        if self._response is not None:
            self._response.close()

    def apply(self, event: str, payload: dict[str, Any]) -> bool:
        """
        Apply an event to the mirror. Returns whether the mirror changed.
        """
        path = payload.get("path", "/")
        data = payload.get("data")

        if event == "put":
            self._data = set_at_path(self._data, path, data)
            return True

        if event == "patch":
            assert isinstance(data, dict)
            for key, value in data.items():
                self._data = set_at_path(
                    self._data, join_path(path, key), value
                )
            return True

        return False

    def _run(self):
        assert self._response is not None

        try:
            lines = self._response.iter_lines(decode_unicode=True)
            for event, raw in parse_events(lines):
                if self._closed:
                    break
                self._handle(event, raw)
        except Exception as e:
            if self._closed:
                # closing the response interrupts reading
                return

            self.store._logger.error(f"Event stream on '{self.path}' failed: {e}")
            self._closed = True
            self._post_error(StoreError(f"Event stream on '{self.path}' failed: {e}"))

    def _handle(self, event: str, raw: str):
        if event == "keep-alive":
            return

        if event in ("cancel", "auth_revoked"):
            self.store._logger.warning(
                f"Event stream on '{self.path}' ended by server: {event}"
            )
            self._closed = True
            self._post_error(StoreError(f"Server sent '{event}' on '{self.path}'"))
            return

        payload = json.loads(raw) if raw else {}
        if self.apply(event, payload):
            self.loop.call_soon_threadsafe(
                self._deliver, copy.deepcopy(self._data)
            )

    def _deliver(self, value: Any):
        if not self._closed:
            self.callback(value)

    def _post_error(self, error: Exception):
        if self.on_error is not None:
            self.loop.call_soon_threadsafe(self.on_error, error)


def parse_events(lines: Iterable[str]) -> Iterator[tuple[str, str]]:
    """
    Parse server-sent events into `(event, data)` pairs. Multiple `data`
    lines of one event are joined with newlines.
    """
    event: str | None = None
    data: list[str] = []

    for line in lines:
        if not line:
            # blank line terminates an event
            if event is not None:
                yield event, "\n".join(data)
            event, data = None, []
        elif line.startswith(":"):
            continue
        elif line.startswith("event:"):
            event = line[len("event:") :].strip()
        elif line.startswith("data:"):
            data.append(line[len("data:") :].strip())

    if event is not None:
        yield event, "\n".join(data)
