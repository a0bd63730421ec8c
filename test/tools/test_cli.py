import logging
from pathlib import Path
from typing import Callable

from click.testing import Result
from pytest import MonkeyPatch, fixture
from typer.testing import CliRunner

from textvault import *
from textvault.tools.cli import main as cli_main
from textvault.tools.cli._utils import console
from textvault.tools.cli.main import app
from textvault.tools.config import BackendConfig

from conftest import TestStore

DATABASE_URL = "https://textvault-test.firebaseio.com"

ENV_VARS = [
    "TEXTVAULT_DATABASE_URL",
    "TEXTVAULT_DATABASE_AUTH",
    "TEXTVAULT_BACKEND",
    "TEXTVAULT_CONFIG_FILE",
    "TEXTVAULT_CACHE_DIR",
    "TEXTVAULT_SESSION",
    "TEXTVAULT_PASSWORD",
]


class LogHandler(logging.Handler):
    """
    Handler to create a list of logs for testcases to access for verification.
    """

    test_logs: list[str]

    def __init__(self):
        super().__init__()
        self.test_logs = []

    def emit(self, record: logging.LogRecord):
        self.test_logs.append(record.getMessage())


# create and register handler
log_handler = LogHandler()
logging.getLogger("textvault").addHandler(log_handler)

runner = CliRunner()

Invoke = Callable[..., Result]


@fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@fixture
def invoke(
    monkeypatch: MonkeyPatch, tmp_path: Path, store: TestStore, cache_dir: Path
) -> Invoke:
    """
    Invoke CLI against the test store, with a clean environment.
    """
    monkeypatch.chdir(tmp_path)
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.setattr(
        BackendConfig, "create_store", lambda self, *, logger: store
    )

    # wide enough for tables not to wrap
    monkeypatch.setattr(console, "width", 200)

    log_handler.test_logs.clear()

    def invoke(*args: str, input: str | None = None) -> Result:
        return runner.invoke(
            app,
            ["--database-url", DATABASE_URL, "--cache-dir", str(cache_dir)]
            + list(args),
            input=input,
        )

    return invoke


def remote_tabs(store: TestStore, session_id: str = "alpha-1") -> TabCollection:
    return load_tabs(
        (store.data or {}).get("sessions", {}).get(session_id, {}).get("tabs")
    )


def login(invoke: Invoke, password: str = "secret") -> Result:
    return invoke("--session", "Alpha-1", "--password", password, "login")


def test_login(invoke: Invoke, store: TestStore, cache_dir: Path):
    result = login(invoke)

    assert result.exit_code == 0, result.output
    assert "Created session 'alpha-1'" in log_handler.test_logs
    assert (cache_dir / "remembered.json").is_file()

    result = login(invoke)

    assert result.exit_code == 0, result.output
    assert "Joined session 'alpha-1'" in log_handler.test_logs

    assert store.data["sessions"]["alpha-1"]["auth"]["accessCount"] == 2


def test_login_no_remember(invoke: Invoke, cache_dir: Path):
    result = invoke(
        "--session", "alpha-1", "--password", "secret", "login", "--no-remember"
    )

    assert result.exit_code == 0, result.output
    assert not (cache_dir / "remembered.json").exists()


def test_login_failed(invoke: Invoke):
    assert login(invoke).exit_code == 0

    result = login(invoke, password="wrong")

    assert result.exit_code == 1
    assert any("Authentication failed" in log for log in log_handler.test_logs)


def test_login_invalid(invoke: Invoke):
    result = invoke("--session", "a!", "--password", "secret", "login")

    assert result.exit_code == 1
    assert any("Invalid session id" in log for log in log_handler.test_logs)


def test_login_missing_session(invoke: Invoke):
    result = invoke("--password", "secret", "login")
    assert result.exit_code == 2


def test_no_backend(monkeypatch: MonkeyPatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    result = runner.invoke(app, ["--session", "alpha-1", "login"])
    assert result.exit_code == 2


def test_backend_from_config(
    monkeypatch: MonkeyPatch, tmp_path: Path, store: TestStore
):
    monkeypatch.chdir(tmp_path)
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    backends: list[str] = []

    def create_store(self, *, logger):
        backends.append(self.database_url)
        return store

    monkeypatch.setattr(BackendConfig, "create_store", create_store)

    (tmp_path / "textvault.yaml").write_text(
        f"cache_dir: {tmp_path / 'cache'}\n"
        "backends:\n"
        "  test:\n"
        f"    database_url: {DATABASE_URL}\n"
    )

    result = runner.invoke(
        app, ["--session", "alpha-1", "--password", "secret", "login"]
    )

    assert result.exit_code == 0, result.output
    assert backends == [DATABASE_URL]
    assert (tmp_path / "cache" / "remembered.json").is_file()


def test_no_remembered_session(invoke: Invoke):
    result = invoke("tab", "list")
    assert result.exit_code == 2


def test_tabs(invoke: Invoke, store: TestStore):
    assert login(invoke).exit_code == 0

    # empty session
    result = invoke("tab", "list")
    assert result.exit_code == 0, result.output
    assert "No tabs" in log_handler.test_logs

    # uses remembered session
    result = invoke("tab", "write", "hello world", "--title", "Greeting")
    assert result.exit_code == 0, result.output

    tabs = remote_tabs(store)
    assert len(tabs) == 1
    tab_id, tab = next(iter(tabs.items()))
    assert tab.title == "Greeting"
    assert tab.text == "hello world"

    result = invoke("tab", "show", tab_id)
    assert result.exit_code == 0, result.output
    assert "hello world" in result.output

    result = invoke("tab", "list")
    assert result.exit_code == 0, result.output
    assert "Greeting" in result.output
    assert tab_id in result.output

    result = invoke("tab", "search", "HELLO")
    assert result.exit_code == 0, result.output
    assert "Greeting" in result.output

    result = invoke("tab", "search", "nothing")
    assert result.exit_code == 0, result.output
    assert "No tabs match 'nothing'" in log_handler.test_logs

    result = invoke("tab", "rename", tab_id, "Hello")
    assert result.exit_code == 0, result.output
    assert remote_tabs(store)[tab_id].title == "Hello"

    result = invoke("tab", "write", "-", "--id", tab_id, input="from stdin\n")
    assert result.exit_code == 0, result.output
    assert remote_tabs(store)[tab_id].text == "from stdin\n"

    # declined confirmation
    result = invoke("tab", "delete", tab_id, input="n\n")
    assert result.exit_code == 0, result.output
    assert tab_id in remote_tabs(store)

    result = invoke("tab", "delete", tab_id, "--yes")
    assert result.exit_code == 0, result.output
    assert remote_tabs(store) == {}


def test_tab_clear(invoke: Invoke, store: TestStore):
    assert login(invoke).exit_code == 0

    result = invoke("tab", "clear", "--yes")
    assert result.exit_code == 0, result.output
    assert "No tabs" in log_handler.test_logs

    assert invoke("tab", "write", "one", "--title", "One").exit_code == 0
    assert invoke("tab", "write", "two", "--title", "Two").exit_code == 0

    result = invoke("tab", "clear", input="n\n")
    assert result.exit_code == 0, result.output
    assert len(remote_tabs(store)) == 2

    result = invoke("tab", "clear", input="y\n")
    assert result.exit_code == 0, result.output
    assert "Deleted 2 tabs" in log_handler.test_logs
    assert remote_tabs(store) == {}

    # not restored from the local cache on the next run
    result = invoke("tab", "list")
    assert result.exit_code == 0, result.output
    assert remote_tabs(store) == {}


def test_tab_write_file(invoke: Invoke, store: TestStore, tmp_path: Path):
    assert login(invoke).exit_code == 0

    text_path = tmp_path / "notes.txt"
    text_path.write_text("line 1\nline 2\n")

    result = invoke("tab", "write", str(text_path), "--file")
    assert result.exit_code == 0, result.output

    assert [t.text for t in remote_tabs(store).values()] == ["line 1\nline 2\n"]

    result = invoke("tab", "write", str(tmp_path / "missing.txt"), "--file")
    assert result.exit_code == 2


def test_tab_missing(invoke: Invoke):
    assert login(invoke).exit_code == 0

    assert invoke("tab", "show", "missing").exit_code == 2
    assert invoke("tab", "rename", "missing", "Title").exit_code == 2
    assert invoke("tab", "delete", "missing", "-y").exit_code == 2
    assert invoke("tab", "write", "text", "--id", "missing").exit_code == 2


def test_tab_write_failed(invoke: Invoke, store: TestStore, cache_dir: Path):
    assert login(invoke).exit_code == 0

    store.fail_writes = True

    result = invoke("tab", "write", "unsaved")
    assert result.exit_code == 1

    # kept locally
    assert len(list(cache_dir.glob("*.json"))) == 2


def test_stats(invoke: Invoke):
    assert login(invoke).exit_code == 0
    assert invoke("tab", "write", "one").exit_code == 0

    result = invoke("stats")

    assert result.exit_code == 0, result.output
    assert "alpha-1" in result.output
    assert "Tabs:         1" in result.output
    assert "Accesses:     1" in result.output


def test_logout(invoke: Invoke, cache_dir: Path):
    assert login(invoke).exit_code == 0

    result = invoke("logout")

    assert result.exit_code == 0, result.output
    assert "Logged out" in log_handler.test_logs
    assert not (cache_dir / "remembered.json").exists()

    assert invoke("tab", "list").exit_code == 2


def test_passwd(invoke: Invoke, store: TestStore):
    assert login(invoke).exit_code == 0
    assert invoke("tab", "write", "kept").exit_code == 0

    result = invoke(
        "--password", "secret", "passwd", input="new-secret\nnew-secret\n"
    )
    assert result.exit_code == 0, result.output
    assert "Password changed" in log_handler.test_logs

    # remembered session follows the new password
    result = invoke("tab", "list")
    assert result.exit_code == 0, result.output
    assert "kept" in result.output

    assert login(invoke).exit_code == 1
    assert login(invoke, password="new-secret").exit_code == 0


def test_passwd_wrong(invoke: Invoke):
    assert login(invoke).exit_code == 0

    result = invoke(
        "--password", "wrong", "passwd", input="new-secret\nnew-secret\n"
    )
    assert result.exit_code == 1


def test_passwd_missing_password(invoke: Invoke):
    assert login(invoke).exit_code == 0

    result = invoke("passwd", input="new-secret\nnew-secret\n")
    assert result.exit_code == 2


def test_watch(invoke: Invoke, store: TestStore, monkeypatch: MonkeyPatch):
    assert login(invoke).exit_code == 0
    assert invoke("tab", "write", "hello", "--title", "Greeting").exit_code == 0

    monkeypatch.setattr(cli_main, "VALIDATE_INTERVAL", 0.01)

    validate = Vault.validate
    checks: list[bool] = []

    async def validate_then_delete(self: Vault) -> bool:
        if checks:
            # session deleted from another device while watching
            await store.remove("sessions/alpha-1")
        checks.append(await validate(self))
        return checks[-1]

    monkeypatch.setattr(Vault, "validate", validate_then_delete)

    result = invoke("watch")

    assert result.exit_code == 1
    assert checks == [True, False]

    # tabs printed on the initial snapshot
    assert "Greeting" in result.output
    assert "Session no longer exists" in log_handler.test_logs
