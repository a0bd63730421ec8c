"""
Utilities specific to CLI functionality.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from typing import TYPE_CHECKING, Any, Coroutine, TypeVar

from click import Parameter
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from typer import Context, Exit, Typer

from ...core import (
    AuthenticationFailed,
    InvalidIdentity,
    NotAuthenticated,
    StoreError,
    TabCollection,
)

if TYPE_CHECKING:
    from .main import RootContext

T = TypeVar("T")

PREVIEW_LEN = 48
"""
Number of characters of tab text shown in listings.
"""

console = Console()

rich_handler = RichHandler(
    console=console,
    rich_tracebacks=True,
    show_level=True,
    show_time=True,
    show_path=False,
)
rich_handler.setFormatter(logging.Formatter("%(message)s"))

logger = logging.getLogger("textvault")
logger.setLevel(logging.INFO)
logger.addHandler(rich_handler)
logger.propagate = False


class MainTyper(Typer):
    """
    Typer app with preconfigured settings.
    """

    def __init__(self, name: str, *, help: str):
        return super().__init__(
            name=name,
            help=help,
            rich_markup_mode="markdown",
            no_args_is_help=True,
            add_completion=False,
        )


def get_root_context(ctx: Context) -> RootContext:
    from .main import RootContext

    root_context = ctx.find_object(RootContext)
    assert isinstance(root_context, RootContext)
    return root_context


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """
    Run coroutine to completion, mapping session errors to a failed exit.
    """
    try:
        return asyncio.run(coro)
    except (
        InvalidIdentity,
        AuthenticationFailed,
        NotAuthenticated,
        StoreError,
    ) as e:
        logger.error(str(e))
        raise Exit(code=1)


def lookup_param(ctx: Context, name: str) -> Parameter:
    """
    Lookup param by name.
    """
    param = next((p for p in ctx.command.params if p.name == name), None)
    assert param, f"Could not find param with name: {name}"
    return param


def format_timestamp(timestamp_ms: int | None) -> str:
    """
    Format epoch milliseconds as local time.
    """
    if timestamp_ms is None:
        return "-"

    dt = datetime.datetime.fromtimestamp(timestamp_ms / 1000)
    return dt.strftime(r"%Y-%m-%d %H:%M:%S")


def format_preview(text: str, length: int = PREVIEW_LEN) -> str:
    """
    First line of text, shortened to the given length.
    """
    line = text.strip().split("\n", 1)[0]
    return line if len(line) <= length else f"{line[: length - 1]}…"


def tabs_table(
    tabs: TabCollection, *, active_id: str | None = None, title: str | None = None
) -> Table:
    """
    Render tabs as a table, marking the active one.
    """
    table = Table(title=title)
    table.add_column("", width=1)
    table.add_column("Id", style="cyan", no_wrap=True)
    table.add_column("Title", style="bold")
    table.add_column("Text")
    table.add_column("Modified", style="dim")

    for tab_id, tab in tabs.items():
        table.add_row(
            "*" if tab_id == active_id else "",
            tab_id,
            escape(tab.title),
            escape(format_preview(tab.text)),
            format_timestamp(tab.last_modified),
        )

    return table
