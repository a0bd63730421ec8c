"""
Abstraction of the realtime key-value tree backing all sessions.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from typing import Any, Callable

__all__ = [
    "BaseStore",
    "Listener",
    "SnapshotCallback",
    "ErrorCallback",
]

SnapshotCallback = Callable[[Any], None]
"""
Receives the full value at a listened path, or `None` if it doesn't exist.
"""

ErrorCallback = Callable[[Exception], None]
"""
Receives an error which terminated a listener.
"""


class Listener(ABC):
    """
    Handle to a subscription on a path. Once closed, no further snapshots are
    delivered, including ones already queued on the event loop.
    """

    path: str

    def __init__(self, path: str):
        self.path = path

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...

    @abstractmethod
    def close(self):
        """
        Stop delivery. Idempotent.
        """
        ...


class BaseStore(ABC):
    """
    Interface to a realtime tree of JSON-like values addressed by
    slash-separated paths, e.g. `sessions/alpha/tabs`.

    Writing `None` or an empty dict removes a node, and reading a missing
    node returns `None`.
    """

    @abstractmethod
    async def get(self, path: str) -> Any:
        """
        Read value at path.
        """
        ...

    @abstractmethod
    async def set(self, path: str, value: Any):
        """
        Replace value at path.
        """
        ...

    @abstractmethod
    async def update(self, path: str, values: dict[str, Any]):
        """
        Replace only the given children of path.
        """
        ...

    @abstractmethod
    async def remove(self, path: str):
        """
        Delete value at path.
        """
        ...

    @abstractmethod
    async def listen(
        self,
        path: str,
        callback: SnapshotCallback,
        *,
        on_error: ErrorCallback | None = None,
    ) -> Listener:
        """
        Deliver the value at path now and after every change affecting it.
        Callbacks run on the event loop which called this method.
        """
        ...

    async def close(self):
        """
        Release resources held by this store.
        """


def split_path(path: str) -> list[str]:
    """
    Split a path into its segments; the root is the empty list.
    """
    return [s for s in path.strip("/").split("/") if s]


def join_path(*parts: str) -> str:
    return "/".join(s for p in parts for s in split_path(p))


def is_related(path_a: str, path_b: str) -> bool:
    """
    Whether one path is an ancestor of (or equal to) the other, i.e. a change
    at one is visible at the other.
    """
    a, b = split_path(path_a), split_path(path_b)
    n = min(len(a), len(b))
    return a[:n] == b[:n]


def get_at_path(tree: Any, path: str) -> Any:
    """
    Lookup value at path in a nested dict, or `None` if missing.
    """
    node = tree
    for segment in split_path(path):
        if not isinstance(node, dict) or segment not in node:
            return None
        node = node[segment]
    return node


def set_at_path(tree: Any, path: str, value: Any) -> Any:
    """
    Return tree with value placed at path, creating intermediate nodes and
    pruning nodes left empty. The tree is modified in place where possible.
    """
    segments = split_path(path)
    value = _prune(copy.deepcopy(value))

    if not segments:
        return value

    root = tree if isinstance(tree, dict) else {}

    # walk down, creating dicts, remembering the trail for pruning
    trail: list[tuple[dict, str]] = []
    node = root
    for segment in segments[:-1]:
        child = node.get(segment)
        if not isinstance(child, dict):
            child = {}
            node[segment] = child
        trail.append((node, segment))
        node = child

    if value is None:
        node.pop(segments[-1], None)
    else:
        node[segments[-1]] = value

    # remove ancestors which became empty
    for parent, segment in reversed(trail):
        if parent[segment]:
            break
        del parent[segment]

    return root if root else None


def _prune(value: Any) -> Any:
    """
    Drop `None` values and empty dicts, recursively.
    """
    if isinstance(value, dict):
        pruned = {}
        for key, child in value.items():
            child = _prune(child)
            if child is not None:
                pruned[str(key)] = child
        return pruned or None
    return value
