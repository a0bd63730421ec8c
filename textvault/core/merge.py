"""
Reconciliation of locally edited, not yet written tabs against remote
snapshots.

Policy: while the session is dirty, the remote snapshot is taken as-is except
for the active tab, whose local version wins. Concurrent edits to other tabs
made on another device in the same window are lost.
"""

from __future__ import annotations

from dataclasses import dataclass

from .tab import Tab, TabCollection, copy_tabs, new_tab_id

__all__ = [
    "MergeResult",
    "MergeEngine",
    "merge_tabs",
]


@dataclass(kw_only=True)
class MergeResult:
    """
    Collection to render and to treat as canonical for subsequent writes.
    """

    tabs: TabCollection

    active_id: str | None
    """Active tab after merge, or `None` if the collection is empty"""

    seeded: bool = False
    """
    Whether the collection was seeded from the local cache because the remote
    was empty. The caller must write it through so the remote converges.
    """

    text_changed: bool = False
    """Whether the rendered text of the active tab changed"""

    @property
    def active_tab(self) -> Tab | None:
        return self.tabs.get(self.active_id) if self.active_id else None


def merge_tabs(
    remote: TabCollection,
    local: TabCollection,
    *,
    dirty: bool,
    active_id: str | None,
    cached: TabCollection | None = None,
) -> MergeResult:
    """
    Merge a remote snapshot with local state.

    :param remote: Incoming remote snapshot
    :param local: Current local collection
    :param dirty: Whether local edits are pending
    :param active_id: Currently active tab
    :param cached: Local cache entry for this session, consulted only if remote is empty
    """
    seeded = False
    old_tab = local.get(active_id) if active_id else None

    if not remote and cached:
        # no remote data yet: fall back to the local copy
        tabs = copy_tabs(cached)
        seeded = True
    else:
        tabs = copy_tabs(remote)

    # protect in-flight edits of the active tab
    if dirty and active_id is not None and active_id in local:
        tabs[active_id] = local[active_id].model_copy()

    if active_id not in tabs:
        active_id = next(iter(tabs), None)

    new_tab = tabs.get(active_id) if active_id else None
    old_text = old_tab.text if old_tab else None
    new_text = new_tab.text if new_tab else None

    return MergeResult(
        tabs=tabs,
        active_id=active_id,
        seeded=seeded,
        text_changed=old_text != new_text,
    )


class MergeEngine:
    """
    Owns a session's tab collection, active tab, dirty flag and edit
    generation. Nothing else mutates them.

    The generation is bumped on every local mutation; a completed write only
    clears the dirty flag if the generation it captured is still current.
    """

    _tabs: TabCollection
    _active_id: str | None
    _dirty: bool
    _generation: int

    def __init__(self, tabs: TabCollection | None = None):
        self._tabs = copy_tabs(tabs) if tabs else {}
        self._active_id = next(iter(self._tabs), None)
        self._dirty = False
        self._generation = 0

    def __str__(self):
        return f"MergeEngine: tabs={len(self._tabs)}, active_id={self._active_id}, dirty={self._dirty}, generation={self._generation}"

    @property
    def tabs(self) -> TabCollection:
        """
        Copy of the current collection.
        """
        return copy_tabs(self._tabs)

    @property
    def active_id(self) -> str | None:
        return self._active_id

    @property
    def active_tab(self) -> Tab | None:
        """
        Copy of the active tab, if any.
        """
        if self._active_id is None:
            return None
        return self._tabs[self._active_id].model_copy()

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def generation(self) -> int:
        return self._generation

    def apply_remote(
        self,
        snapshot: TabCollection,
        *,
        cached: TabCollection | None = None,
    ) -> MergeResult:
        """
        Merge an incoming snapshot into local state and adopt the result.
        A result seeded from the cache marks the engine dirty until written.
        """
        result = merge_tabs(
            snapshot,
            self._tabs,
            dirty=self._dirty,
            active_id=self._active_id,
            cached=cached,
        )

        self._tabs = copy_tabs(result.tabs)
        self._active_id = result.active_id

        if result.seeded:
            self._mark_dirty()

        return result

    def snapshot(self) -> tuple[int, TabCollection]:
        """
        Current generation and a copy of the collection, captured together
        before a write.
        """
        return self._generation, copy_tabs(self._tabs)

    def mark_written(self, generation: int) -> bool:
        """
        Record that the collection as of `generation` reached the remote.
        Clears the dirty flag unless newer edits arrived since.

        :returns: Whether the engine is now clean
        """
        if generation == self._generation:
            self._dirty = False
        return not self._dirty

    def select(self, tab_id: str):
        """
        Make the given tab active.
        """
        if tab_id not in self._tabs:
            raise KeyError(f"No tab with id '{tab_id}'")
        self._active_id = tab_id

    def create_tab(
        self, *, title: str = "", text: str = "", tab_id: str | None = None
    ) -> str:
        """
        Create a tab and make it active.

        :returns: Id of new tab
        """
        tab_id = tab_id or new_tab_id()
        if tab_id in self._tabs:
            raise KeyError(f"Tab with id '{tab_id}' already exists")

        tab = Tab(title=title, text=text)
        tab.touch()

        self._tabs[tab_id] = tab
        self._active_id = tab_id
        self._mark_dirty()

        return tab_id

    def edit(self, text: str, *, tab_id: str | None = None) -> str:
        """
        Replace text of the given tab (which becomes active), or of the active
        tab. The first tab of an empty collection is created here.

        :returns: Id of edited tab
        """
        tab_id = self._target(tab_id)
        if tab_id is None:
            return self.create_tab(text=text)

        tab = self._tabs[tab_id]
        tab.text = text
        tab.touch()

        self._mark_dirty()
        return tab_id

    def rename(self, title: str, *, tab_id: str | None = None) -> str:
        """
        Replace title of the given tab (which becomes active), or of the
        active tab, creating one if the collection is empty.

        :returns: Id of renamed tab
        """
        tab_id = self._target(tab_id)
        if tab_id is None:
            return self.create_tab(title=title)

        tab = self._tabs[tab_id]
        tab.title = title
        tab.touch()

        self._mark_dirty()
        return tab_id

    def delete_tab(self, tab_id: str):
        """
        Delete a tab. If it was active, the first remaining tab becomes active.
        """
        if tab_id not in self._tabs:
            raise KeyError(f"No tab with id '{tab_id}'")

        del self._tabs[tab_id]

        if self._active_id == tab_id:
            self._active_id = next(iter(self._tabs), None)

        self._mark_dirty()

    def clear(self):
        """
        Delete all tabs.
        """
        self._tabs = {}
        self._active_id = None
        self._mark_dirty()

    def search(self, term: str) -> TabCollection:
        """
        Tabs whose title or text contains the term, case-insensitively. An
        empty term matches all tabs.
        """
        term = term.strip().lower()
        return {
            tab_id: tab.model_copy()
            for tab_id, tab in self._tabs.items()
            if not term or tab.matches(term)
        }

    def _target(self, tab_id: str | None) -> str | None:
        if tab_id is not None:
            self.select(tab_id)
        return self._active_id

    def _mark_dirty(self):
        self._dirty = True
        self._generation += 1
