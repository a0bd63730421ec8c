"""
Operations on the tabs of a session.
"""
from __future__ import annotations

import sys
from pathlib import Path

import typer
from click import BadParameter
from typer import Argument, Context, Exit, Option

from ._utils import (
    MainTyper,
    console,
    get_root_context,
    logger,
    lookup_param,
    run_async,
    tabs_table,
)

app = MainTyper(
    "tab",
    help="Operations on the tabs of a session",
)


@app.command("list")
def list_tabs(ctx: Context):
    """
    List tabs of the session
    """
    root_context = get_root_context(ctx)

    async def run():
        async with root_context.open_session() as (_, session):
            tabs, active_id = session.tabs, session.active_id

        if not tabs:
            logger.info("No tabs")
            return

        console.print(tabs_table(tabs, active_id=active_id))

    run_async(run())


@app.command()
def show(
    ctx: Context,
    tab_id: str = Argument(help="Id of tab to print"),
):
    """
    Print text of a tab
    """
    root_context = get_root_context(ctx)

    async def run():
        async with root_context.open_session() as (_, session):
            tab = session.tabs.get(tab_id)

        if tab is None:
            raise BadParameter(
                f"tab '{tab_id}' does not exist",
                ctx=ctx,
                param=lookup_param(ctx, "tab_id"),
            )

        console.print(tab.text, markup=False, highlight=False)

    run_async(run())


@app.command()
def write(
    ctx: Context,
    text: str = Argument(
        help="Text to write, or '-' to read from stdin",
    ),
    tab_id: str
    | None = Option(
        None,
        "--id",
        help="Id of tab to overwrite; a new tab is created if omitted",
    ),
    title: str
    | None = Option(
        None,
        help="Title to set",
    ),
    from_file: bool = Option(
        False,
        "--file",
        help="Interpret TEXT as path of a file to read",
    ),
):
    """
    Write text to a new or existing tab
    """
    root_context = get_root_context(ctx)

    if text == "-":
        content = sys.stdin.read()
    elif from_file:
        path = Path(text)
        if not path.is_file():
            raise BadParameter(
                f"file does not exist: {path}",
                ctx=ctx,
                param=lookup_param(ctx, "text"),
            )
        content = path.read_text(encoding="utf-8")
    else:
        content = text

    async def run() -> bool:
        async with root_context.open_session() as (_, session):
            if tab_id is None:
                written_id = session.create_tab(title=title or "", text=content)
            else:
                if tab_id not in session.tabs:
                    raise BadParameter(
                        f"tab '{tab_id}' does not exist",
                        ctx=ctx,
                        param=lookup_param(ctx, "tab_id"),
                    )
                written_id = session.edit(content, tab_id=tab_id)
                if title is not None:
                    session.rename(title, tab_id=tab_id)

            saved = await session.save()

        logger.info(f"Wrote tab '{written_id}'")
        return saved

    if not run_async(run()):
        logger.warning("Remote write failed; changes are only in the local cache")
        raise Exit(code=1)


@app.command()
def rename(
    ctx: Context,
    tab_id: str = Argument(help="Id of tab to rename"),
    title: str = Argument(help="New title"),
):
    """
    Set title of a tab
    """
    root_context = get_root_context(ctx)

    async def run() -> bool:
        async with root_context.open_session() as (_, session):
            if tab_id not in session.tabs:
                raise BadParameter(
                    f"tab '{tab_id}' does not exist",
                    ctx=ctx,
                    param=lookup_param(ctx, "tab_id"),
                )
            session.rename(title, tab_id=tab_id)
            return await session.save()

    if not run_async(run()):
        raise Exit(code=1)


@app.command()
def delete(
    ctx: Context,
    tab_id: str = Argument(help="Id of tab to delete"),
    yes: bool = Option(
        False,
        "-y",
        "--yes",
        help="Don't ask for confirmation",
    ),
):
    """
    Delete a tab
    """
    root_context = get_root_context(ctx)

    async def run() -> bool:
        async with root_context.open_session() as (_, session):
            tab = session.tabs.get(tab_id)
            if tab is None:
                raise BadParameter(
                    f"tab '{tab_id}' does not exist",
                    ctx=ctx,
                    param=lookup_param(ctx, "tab_id"),
                )

            if not yes and not typer.confirm(f"Delete tab '{tab.title or tab_id}'?"):
                return True

            session.delete_tab(tab_id)
            saved = await session.save()

        logger.info(f"Deleted tab '{tab_id}'")
        return saved

    if not run_async(run()):
        raise Exit(code=1)


@app.command()
def clear(
    ctx: Context,
    yes: bool = Option(
        False,
        "-y",
        "--yes",
        help="Don't ask for confirmation",
    ),
):
    """
    Delete all tabs of the session
    """
    root_context = get_root_context(ctx)

    async def run() -> bool:
        async with root_context.open_session() as (_, session):
            count = len(session.tabs)
            if not count:
                logger.info("No tabs")
                return True

            if not yes and not typer.confirm(f"Delete all {count} tabs?"):
                return True

            session.clear()
            saved = await session.save()

        logger.info(f"Deleted {count} tabs")
        return saved

    if not run_async(run()):
        raise Exit(code=1)


@app.command()
def search(
    ctx: Context,
    term: str = Argument(help="Case-insensitive text to find in titles and text"),
):
    """
    List tabs whose title or text contains a term
    """
    root_context = get_root_context(ctx)

    async def run():
        async with root_context.open_session() as (_, session):
            matches = session.search(term)

        if not matches:
            logger.info(f"No tabs match '{term}'")
            return

        console.print(tabs_table(matches, title=f"Tabs matching '{term}'"))

    run_async(run())
