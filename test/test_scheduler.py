import asyncio

from pytest import fixture

from textvault import *

from conftest import QUIET_INTERVAL, TestStore, settle, wait_quiet


@fixture
def engine() -> MergeEngine:
    return MergeEngine()


@fixture
def scheduler(
    engine: MergeEngine,
    identity: SessionIdentity,
    channel: SyncChannel,
    cache: LocalCache,
    errors: list[Exception],
) -> WriteScheduler:
    return WriteScheduler(
        identity,
        engine,
        channel=channel,
        cache=cache,
        quiet_interval=QUIET_INTERVAL,
        on_error=errors.append,
    )


def remote_texts(store: TestStore, identity: SessionIdentity) -> list[str]:
    tabs = load_tabs(store.data["sessions"][identity.session_id]["tabs"])
    return [tab.text for tab in tabs.values()]


async def test_coalesce(
    store: TestStore,
    engine: MergeEngine,
    scheduler: WriteScheduler,
    identity: SessionIdentity,
):
    # burst of edits within the quiet interval
    for text in ["h", "he", "hel", "hell", "hello"]:
        engine.edit(text)
        scheduler.notify_edit()
        await asyncio.sleep(QUIET_INTERVAL / 10)

    assert scheduler.pending
    assert store.writes == []

    await wait_quiet()

    assert len(store.writes) == 1
    assert remote_texts(store, identity) == ["hello"]
    assert not engine.dirty
    assert not scheduler.busy


async def test_spaced_edits(
    store: TestStore,
    engine: MergeEngine,
    scheduler: WriteScheduler,
):
    for text in ["a", "ab", "abc"]:
        engine.edit(text)
        scheduler.notify_edit()
        await wait_quiet()

    assert len(store.writes) == 3


async def test_write_mirrors_cache(
    engine: MergeEngine,
    scheduler: WriteScheduler,
    cache: LocalCache,
    identity: SessionIdentity,
):
    engine.edit("hello")
    scheduler.notify_edit()
    await wait_quiet()

    cached = cache.load(identity)
    assert cached is not None
    assert [tab.text for tab in cached.values()] == ["hello"]


async def test_edit_during_write(
    store: TestStore,
    engine: MergeEngine,
    scheduler: WriteScheduler,
    identity: SessionIdentity,
):
    store.hold_writes = True

    engine.edit("a")
    scheduler.notify_edit()
    await asyncio.sleep(QUIET_INTERVAL * 2)

    # write started and is held in flight
    assert not scheduler.pending
    assert scheduler.busy

    engine.edit("ab")
    scheduler.notify_edit()

    store.release_all()
    await settle()

    # write of "a" landed, but "ab" is still pending
    assert remote_texts(store, identity) == ["a"]
    assert engine.dirty

    await wait_quiet()

    assert remote_texts(store, identity) == ["ab"]
    assert not engine.dirty


async def test_rearm_after_write(
    store: TestStore,
    engine: MergeEngine,
    scheduler: WriteScheduler,
    identity: SessionIdentity,
):
    store.hold_writes = True

    engine.edit("a")
    scheduler.notify_edit()
    await asyncio.sleep(QUIET_INTERVAL * 2)

    # mutation without a scheduled write
    engine.edit("ab")

    store.release_all()
    await settle()

    assert scheduler.pending

    await wait_quiet()

    assert remote_texts(store, identity) == ["ab"]
    assert not engine.dirty


async def test_writes_serialized(
    store: TestStore,
    engine: MergeEngine,
    scheduler: WriteScheduler,
    cache: LocalCache,
    identity: SessionIdentity,
):
    store.hold_writes = True

    engine.edit("first")
    scheduler.flush_soon()
    await settle()

    engine.edit("second")
    scheduler.flush_soon()
    await settle()

    # second write waits for the first instead of racing it
    assert len(store.held) == 1

    store.release()
    await settle(10)

    # then captures the newer collection
    assert remote_texts(store, identity) == ["first"]
    assert len(store.held) == 2

    store.release_all()
    await scheduler.wait_idle()

    assert remote_texts(store, identity) == ["second"]
    cached = cache.load(identity)
    assert cached is not None
    assert [tab.text for tab in cached.values()] == ["second"]
    assert not engine.dirty


async def test_write_failed(
    store: TestStore,
    engine: MergeEngine,
    scheduler: WriteScheduler,
    cache: LocalCache,
    identity: SessionIdentity,
    errors: list[Exception],
):
    store.fail_writes = True

    engine.edit("offline")
    scheduler.notify_edit()
    await wait_quiet()

    # remote rejected, cache still written
    assert store.writes == []
    cached = cache.load(identity)
    assert cached is not None
    assert [tab.text for tab in cached.values()] == ["offline"]

    assert engine.dirty
    assert len(errors) == 1
    assert isinstance(errors[0], RemoteWriteFailed)

    # next edit retries
    store.fail_writes = False

    engine.edit("online")
    scheduler.notify_edit()
    await wait_quiet()

    assert remote_texts(store, identity) == ["online"]
    assert not engine.dirty


async def test_flush_idempotent(
    store: TestStore,
    engine: MergeEngine,
    scheduler: WriteScheduler,
):
    engine.edit("hello")

    assert await scheduler.flush()
    data = store.data

    assert await scheduler.flush()
    assert store.data == data
    assert store.writes[0] == store.writes[1]


async def test_cancel(
    store: TestStore,
    engine: MergeEngine,
    scheduler: WriteScheduler,
):
    engine.edit("hello")
    scheduler.notify_edit()
    scheduler.cancel()

    assert not scheduler.busy

    await wait_quiet()

    assert store.writes == []
    assert engine.dirty


async def test_flush_soon(
    store: TestStore,
    engine: MergeEngine,
    scheduler: WriteScheduler,
):
    engine.edit("hello")
    scheduler.notify_edit()
    scheduler.flush_soon()

    assert not scheduler.pending
    await settle()

    assert len(store.writes) == 1

    # superseded timer doesn't write again
    await wait_quiet()
    assert len(store.writes) == 1


async def test_wait_idle(
    store: TestStore,
    engine: MergeEngine,
    scheduler: WriteScheduler,
):
    engine.edit("hello")
    scheduler.notify_edit()

    await scheduler.wait_idle()

    assert not scheduler.busy
    assert len(store.writes) == 1
    assert not engine.dirty
