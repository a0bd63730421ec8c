"""
Entry point of `textvault` CLI.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator

import dotenv
from click.exceptions import BadParameter, MissingParameter
from pydantic import ValidationError
from typer import Context, Exit, Option

from ...core import (
    BaseStore,
    Session,
    TabCollection,
    Vault,
)
from ..config import BackendConfig, Config
from . import tab
from ._utils import (
    MainTyper,
    console,
    format_timestamp,
    get_root_context,
    logger,
    lookup_param,
    run_async,
    tabs_table,
)

VALIDATE_INTERVAL = 5 * 60
"""
Seconds between checks that a watched session still exists.
"""

READY_TIMEOUT = 30.0
"""
Seconds to wait for the initial snapshot of a session.
"""

app = MainTyper(
    "textvault",
    help="TextVault CLI: synchronized, password-protected text tabs",
)


@app.callback()
def main(
    ctx: Context,
    database_url: str
    | None = Option(
        None,
        help="Realtime database URL, e.g. https://my-app-default-rtdb.firebaseio.com",
        envvar="TEXTVAULT_DATABASE_URL",
    ),
    auth: str
    | None = Option(
        None,
        help="Database secret or ID token",
        envvar="TEXTVAULT_DATABASE_AUTH",
    ),
    backend_name: str
    | None = Option(
        None,
        "--backend",
        help="Backend name as configured in .yaml",
        envvar="TEXTVAULT_BACKEND",
    ),
    config_file: Path = Option(
        "textvault.yaml",
        help=".yaml file containing backends and settings",
        envvar="TEXTVAULT_CONFIG_FILE",
        dir_okay=False,
    ),
    cache_dir: Path
    | None = Option(
        None,
        help="Folder for local cache, overrides config file",
        envvar="TEXTVAULT_CACHE_DIR",
        file_okay=False,
    ),
    session_id: str
    | None = Option(
        None,
        "--session",
        help="Session id; if omitted, the remembered session is used",
        envvar="TEXTVAULT_SESSION",
    ),
    password: str
    | None = Option(
        None,
        help="Session password",
        envvar="TEXTVAULT_PASSWORD",
    ),
):
    # load environment variables from .env file if it exists
    dotenv.load_dotenv(Path(".env").resolve())

    config = _load_config(ctx, config_file)

    try:
        if database_url:
            backend = BackendConfig(database_url=database_url, auth=auth)
        elif backend_name is None:
            # options were parsed before .env was loaded
            backend = BackendConfig.from_env()
        else:
            backend = None
    except ValidationError as e:
        raise BadParameter(
            str(e), ctx=ctx, param=lookup_param(ctx, "database_url")
        )

    if backend is None:
        try:
            backend = config.get_backend(backend_name)
        except KeyError as e:
            raise MissingParameter(
                message=f"either --database-url or a configured backend must be provided ({e.args[0]})",
                ctx=ctx,
                param_hint=["database_url", "backend"],
                param_type="option",
            )

    if cache_dir:
        config.cache_dir = cache_dir

    ctx.obj = RootContext(
        ctx=ctx,
        config=config,
        backend=backend,
        session_id=session_id,
        password=password,
    )


app.add_typer(tab.app)


@app.command()
def login(
    ctx: Context,
    remember: bool = Option(
        True,
        "--remember/--no-remember",
        help="Remember session for 7 days so later commands don't need a password",
    ),
):
    """
    Join a session, creating it if it doesn't exist
    """
    root_context = get_root_context(ctx)

    if not root_context.session_id:
        raise MissingParameter(
            message="--session/TEXTVAULT_SESSION is required to log in",
            ctx=ctx,
            param_hint=["session"],
            param_type="option",
        )

    async def run():
        vault = root_context.create_vault()
        async with vault:
            result = await root_context.join(vault, remember=remember)
            action = "Created" if result else "Joined"
            logger.info(f"{action} session '{vault.session.identity.session_id}'")

    run_async(run())


@app.command()
def logout(ctx: Context):
    """
    Forget the remembered session
    """
    root_context = get_root_context(ctx)

    vault = root_context.create_vault()
    vault.auth.logout()
    logger.info("Logged out")


@app.command()
def stats(ctx: Context):
    """
    Show statistics of the session
    """
    root_context = get_root_context(ctx)

    async def run():
        async with root_context.open_session(ready=False) as (vault, _):
            session_stats = await vault.get_stats()

        console.print(f"Session:      {session_stats.session_id}")
        console.print(f"Tabs:         {session_stats.tab_count}")
        console.print(f"Accesses:     {session_stats.access_count}")
        console.print(f"Created:      {format_timestamp(session_stats.created)}")
        console.print(f"Last access:  {format_timestamp(session_stats.last_access)}")

    run_async(run())


@app.command()
def passwd(
    ctx: Context,
    new_password: str = Option(
        ...,
        prompt=True,
        confirmation_prompt=True,
        hide_input=True,
        help="New password",
    ),
):
    """
    Change the session's password
    """
    root_context = get_root_context(ctx)

    if not root_context.password:
        raise MissingParameter(
            message="current password is required via --password/TEXTVAULT_PASSWORD",
            ctx=ctx,
            param_hint=["password"],
            param_type="option",
        )

    async def run():
        async with root_context.open_session(ready=False) as (vault, _):
            assert root_context.password
            await vault.change_password(root_context.password, new_password)

        logger.info("Password changed")

    run_async(run())


@app.command()
def watch(ctx: Context):
    """
    Print the session's tabs on every change until interrupted
    """
    root_context = get_root_context(ctx)

    def print_tabs(tabs: TabCollection, active_id: str | None):
        console.print(tabs_table(tabs, active_id=active_id))

    def notify(error: Exception):
        logger.warning(str(error))

    async def run():
        vault = root_context.create_vault(on_change=print_tabs, on_error=notify)
        async with vault:
            await root_context.join(vault)

            while True:
                await asyncio.sleep(VALIDATE_INTERVAL)

                if not await vault.validate():
                    logger.error("Session no longer exists")
                    raise Exit(code=1)

                if vault.session.offline:
                    await vault.session.reconnect()

    try:
        run_async(run())
    except KeyboardInterrupt:
        logger.info("Stopped watching")


def run():
    app()


@dataclass(kw_only=True)
class RootContext:
    ctx: Context
    config: Config
    backend: BackendConfig
    session_id: str | None
    password: str | None

    def create_store(self) -> BaseStore:
        return self.backend.create_store(logger=logger)

    def create_vault(self, **kwargs) -> Vault:
        return Vault(
            self.create_store(),
            cache_dir=self.config.cache_dir,
            quiet_interval=self.config.quiet_interval,
            logger=logger,
            **kwargs,
        )

    async def join(self, vault: Vault, *, remember: bool = False) -> bool:
        """
        Join session given by options, or restore the remembered one.

        :returns: Whether the session was newly created
        """
        if self.session_id:
            if not self.password:
                raise MissingParameter(
                    message="--password/TEXTVAULT_PASSWORD is required with --session",
                    ctx=self.ctx,
                    param_hint=["password"],
                    param_type="option",
                )

            result = await vault.join(
                self.session_id, self.password, remember=remember
            )
            return result.is_new

        if not await vault.restore():
            raise BadParameter(
                "no remembered session; pass --session and --password or run 'textvault login'",
                ctx=self.ctx,
                param=lookup_param(self.ctx, "session_id"),
            )
        return False

    @asynccontextmanager
    async def open_session(
        self, *, ready: bool = True, **kwargs
    ) -> AsyncIterator[tuple[Vault, Session]]:
        """
        Join session and optionally wait for its initial snapshot. Pending
        changes are written on exit.
        """
        vault = self.create_vault(**kwargs)
        async with vault:
            await self.join(vault)
            session = vault.session

            if ready:
                await session.wait_ready(READY_TIMEOUT)

            yield vault, session


def _load_config(ctx: Context, config_file: Path) -> Config:
    if not config_file.is_file():
        return Config()

    try:
        return Config.load_yaml(config_file)
    except (ValueError, ValidationError) as e:
        raise BadParameter(
            f"failed to load config file '{config_file}': {e}",
            ctx=ctx,
            param=lookup_param(ctx, "config_file"),
        )


if __name__ == "__main__":
    app()
