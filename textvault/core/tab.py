"""
Document units ("tabs") and their collection as synchronized with the
remote store.
"""

from __future__ import annotations

import logging
import uuid
from logging import Logger
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .utils import now_ms

__all__ = [
    "Tab",
    "TabCollection",
    "load_tabs",
    "dump_tabs",
    "copy_tabs",
    "new_tab_id",
]


class Tab(BaseModel):
    """
    One titled text document within a session.
    """

    model_config = ConfigDict(populate_by_name=True)

    title: str = ""
    text: str = ""

    created: int | None = None
    """
    Creation time in epoch milliseconds, if known.
    """

    last_modified: int | None = Field(default=None, alias="lastModified")
    """
    Time of last local modification in epoch milliseconds, if known.
    """

    def touch(self) -> None:
        """
        Update modification timestamp, setting creation timestamp if unset.
        """
        now = now_ms()
        if self.created is None:
            self.created = now
        self.last_modified = now

    def matches(self, term: str) -> bool:
        """
        Whether title or text contains the given lowercase term.
        """
        return term in self.title.lower() or term in self.text.lower()


TabCollection = dict[str, Tab]
"""
Mapping of tab id to tab; the full synchronized state of a session.
"""

_tab_adapter: TypeAdapter[Tab] = TypeAdapter(Tab)
_collection_adapter: TypeAdapter[TabCollection] = TypeAdapter(TabCollection)


def load_tabs(raw: Any, *, logger: Logger | None = None) -> TabCollection:
    """
    Build a collection from a raw snapshot as received from a store or read
    from disk. A missing snapshot is an empty collection; entries which don't
    validate are skipped.
    """
    if raw is None:
        return {}

    if not isinstance(raw, dict):
        (logger or logging.getLogger()).warning(
            f"Ignoring tab snapshot of unexpected type {type(raw).__name__}"
        )
        return {}

    tabs: TabCollection = {}

    for tab_id, entry in raw.items():
        try:
            tabs[str(tab_id)] = _tab_adapter.validate_python(entry)
        except ValidationError as e:
            (logger or logging.getLogger()).warning(
                f"Skipping malformed tab '{tab_id}': {e.error_count()} errors"
            )

    return tabs


def dump_tabs(tabs: TabCollection) -> dict[str, Any]:
    """
    Serialize a collection into plain data suitable for a store.
    """
    return _collection_adapter.dump_python(
        tabs, by_alias=True, exclude_none=True
    )


def dump_tabs_json(tabs: TabCollection) -> bytes:
    return _collection_adapter.dump_json(
        tabs, by_alias=True, exclude_none=True
    )


def copy_tabs(tabs: TabCollection) -> TabCollection:
    """
    Deep copy of a collection, so callers can't mutate engine state.
    """
    return {tab_id: tab.model_copy() for tab_id, tab in tabs.items()}


def new_tab_id() -> str:
    """
    Generate an opaque id for a newly created tab.
    """
    return uuid.uuid4().hex
