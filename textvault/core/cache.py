"""
Implements the local durability cache: a per-session backup of the tab
collection which survives process restarts.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from logging import Logger
from pathlib import Path

from .identity import SessionIdentity
from .tab import TabCollection, dump_tabs_json, load_tabs

__all__ = [
    "LocalCache",
]


class LocalCache:
    """
    Key-value store of serialized tab collections, one `.json` file per
    session named by {obj}`SessionIdentity.cache_key`.
    """

    root: Path
    """Folder holding cache entries"""

    _logger: Logger

    def __init__(self, root: Path, *, logger: Logger | None = None):
        self.root = root
        self._logger = logger or logging.getLogger()

    def __str__(self):
        return f"LocalCache: root={self.root}"

    def path(self, identity: SessionIdentity) -> Path:
        """
        Path to the entry for the given session.
        """
        return self.root / f"{identity.cache_key}.json"

    def exists(self, identity: SessionIdentity) -> bool:
        return self.path(identity).is_file()

    def load(self, identity: SessionIdentity) -> TabCollection | None:
        """
        Load cached collection, or `None` if there's no entry. An unreadable
        entry is reported and treated as missing.
        """
        path = self.path(identity)

        if not path.is_file():
            return None

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            self._logger.warning(
                f"Ignoring unreadable cache entry for '{identity.session_id}': {e}"
            )
            return None

        return load_tabs(raw, logger=self._logger)

    def save(self, identity: SessionIdentity, tabs: TabCollection):
        """
        Replace entry for the given session. Written to a temp file first and
        moved into place so a crash never leaves a truncated entry.
        """
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.path(identity)

        fd, tmp_name = tempfile.mkstemp(
            dir=self.root, prefix=f".{path.stem}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(dump_tabs_json(tabs))
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        self._logger.debug(
            f"Cached {len(tabs)} tabs for '{identity.session_id}'"
        )

    def delete(self, identity: SessionIdentity):
        """
        Remove entry for the given session, if any.
        """
        self.path(identity).unlink(missing_ok=True)

    def move(self, old: SessionIdentity, new: SessionIdentity):
        """
        Re-key an entry, e.g. after the session's password changed.
        """
        path = self.path(old)
        if path.is_file():
            os.replace(path, self.path(new))
