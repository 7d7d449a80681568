# -*- encoding: utf-8 -*-
"""
test_idb.py - IndexedDB bridge tests against the in-memory double.

Covers:
- Deferred / wrap_request exactly-once settlement
- object store get/get_all/put/add/delete/clear/count
- cursors, walks and index lookups
- transaction completion, abort and request errors
- open/upgrade/blocked/delete lifecycle
"""

from __future__ import annotations

import asyncio

import pytest

from fake_idb import DOMError, Event, Request, settle

from gradebook.idb import (
    Deferred,
    IDBTransactionMode,
    IndexedDBError,
    IndexedDBRequestError,
    TransactionAbortedError,
    delete_database,
    open_database,
    wrap_request,
)


def _items_schema(db, old_version, new_version):
    items = db.create_object_store("items", key_path="id")
    items.create_index("by_kind", "kind")


@pytest.fixture
async def db(factory):
    handle = await open_database("bridge", 1, upgrade=_items_schema, factory=factory)
    yield handle
    handle.close()


async def _fill(db, *rows):
    tx = db.transaction("items", IDBTransactionMode.READWRITE)
    async with tx:
        for row in rows:
            await tx.store.put(row)


# =============================================================================
# SETTLEMENT
# =============================================================================


async def test_deferred_settles_once():
    deferred = Deferred()
    assert deferred.resolve("first") is True
    assert deferred.resolve("second") is False
    assert deferred.reject(ValueError("late")) is False
    assert deferred.settled
    assert await deferred == "first"


async def test_wrap_request_ignores_repeated_events():
    request = Request()
    future = wrap_request(request)
    on_success = request.onsuccess
    on_error = request.onerror

    request.result = "first"
    on_success(Event(request))
    request.result = "second"
    on_success(Event(request))
    request.error = DOMError("UnknownError")
    on_error(Event(request))

    assert await future == "first"
    await settle(2)
    assert request.onsuccess is None, "handlers should be detached once settled"


async def test_wrap_request_carries_native_error():
    request = Request()
    future = wrap_request(request)
    native = DOMError("QuotaExceededError", "disk full")
    request.error = native
    request.fire("onerror")

    with pytest.raises(IndexedDBRequestError) as info:
        await future
    assert info.value.error is native
    assert info.value.name == "QuotaExceededError"


# =============================================================================
# STORE OPERATIONS
# =============================================================================


async def test_put_get_last_write_wins(db):
    await _fill(db, {"id": "a", "kind": "x", "n": 1})
    await _fill(db, {"id": "a", "kind": "x", "n": 2})

    tx = db.transaction("items")
    async with tx:
        row = await tx.store.get("a")
    assert row == {"id": "a", "kind": "x", "n": 2}, f"Got {row!r}"


async def test_put_resolves_with_key(db):
    tx = db.transaction("items", IDBTransactionMode.READWRITE)
    async with tx:
        key = await tx.store.put({"id": "k1"})
    assert key == "k1"


async def test_delete_then_get_is_absent(db):
    await _fill(db, {"id": "a"})

    tx = db.transaction("items", IDBTransactionMode.READWRITE)
    async with tx:
        assert await tx.store.delete("a") is None
        assert await tx.store.get("a") is None


async def test_delete_missing_key_succeeds(db):
    tx = db.transaction("items", IDBTransactionMode.READWRITE)
    async with tx:
        await tx.store.delete("nope")
    assert tx.done.done()


async def test_get_all_count_clear(db):
    await _fill(db, {"id": "b"}, {"id": "a"}, {"id": "c"})

    tx = db.transaction("items", IDBTransactionMode.READWRITE)
    async with tx:
        rows = await tx.store.get_all()
        assert [r["id"] for r in rows] == ["a", "b", "c"], f"Got {rows!r}"
        assert await tx.store.count() == 3
        await tx.store.clear()
        assert await tx.store.count() == 0


async def test_add_existing_key_rejects_and_fails_transaction(db):
    await _fill(db, {"id": "a"})

    tx = db.transaction("items", IDBTransactionMode.READWRITE)
    with pytest.raises(IndexedDBRequestError) as info:
        await tx.store.add({"id": "a"})
    assert info.value.name == "ConstraintError"

    with pytest.raises(IndexedDBRequestError) as info:
        await tx.done
    assert info.value.error.name == "ConstraintError"


async def test_write_on_readonly_transaction_rejects(db):
    tx = db.transaction("items", IDBTransactionMode.READONLY)
    future = tx.store.put({"id": "a"})
    with pytest.raises(DOMError) as info:
        await future
    assert info.value.name == "ReadOnlyError"
    await tx.done


async def test_abort_rejects_completion_and_rolls_back(db):
    tx = db.transaction("items", IDBTransactionMode.READWRITE)
    await tx.store.put({"id": "gone"})
    tx.abort()
    with pytest.raises(TransactionAbortedError):
        await tx.done

    check = db.transaction("items")
    async with check:
        assert await check.store.get("gone") is None


async def test_transaction_exposes_first_store_and_mode(db):
    tx = db.transaction(["items"], "readwrite")
    assert tx.store_names == ["items"]
    assert tx.store.name == "items"
    assert tx.store.key_path == "id"
    assert tx.mode == "readwrite"
    await tx.done


# =============================================================================
# CURSORS AND INDEXES
# =============================================================================


async def test_open_cursor_first_position(db):
    await _fill(db, {"id": "b"}, {"id": "a"})

    tx = db.transaction("items")
    async with tx:
        cursor = await tx.store.open_cursor()
        assert cursor.key == "a"
        cursor = await tx.store.open_cursor(None, "prev")
        assert cursor.key == "b"
        assert await tx.store.open_cursor("zzz") is None


async def test_walk_visits_in_key_order(db):
    await _fill(db, {"id": "c"}, {"id": "a"}, {"id": "b"})
    seen = []
    finished = []

    def on_item(cursor):
        seen.append(cursor.key)
        return True

    tx = db.transaction("items")
    async with tx:
        await tx.store.walk(on_item, lambda: finished.append(True))
    assert seen == ["a", "b", "c"], f"Got {seen!r}"
    assert finished == [True]


async def test_walk_stops_early_and_writes_in_on_done(db):
    await _fill(db, {"id": "a"}, {"id": "b"})
    seen = []
    tx = db.transaction("items", IDBTransactionMode.READWRITE)
    store = tx.store

    def on_item(cursor):
        seen.append(cursor.key)
        return False

    async with tx:
        await store.walk(on_item, lambda: store.put({"id": "after-walk"}))
    assert seen == ["a"]

    check = db.transaction("items")
    async with check:
        assert await check.store.get("after-walk") == {"id": "after-walk"}


async def test_index_lookups(db):
    await _fill(
        db,
        {"id": "1", "kind": "book"},
        {"id": "2", "kind": "pen"},
        {"id": "3", "kind": "book"},
    )

    tx = db.transaction("items")
    async with tx:
        index = tx.store.index("by_kind")
        assert tx.store.index_names == ["by_kind"]
        assert (await index.get("pen"))["id"] == "2"
        books = await index.get_all("book")
        assert [b["id"] for b in books] == ["1", "3"], f"Got {books!r}"
        assert await index.count("book") == 2
        assert await index.count() == 3
        cursor = await index.open_cursor("book")
        assert cursor.primaryKey == "1"
        keys = []
        await index.walk(lambda c: keys.append(c.primaryKey) or True)
        assert keys == ["1", "3", "2"], f"Got {keys!r}"


# =============================================================================
# OPEN / UPGRADE / DELETE
# =============================================================================


async def test_open_without_indexeddb_raises():
    with pytest.raises(IndexedDBError):
        await open_database("nowhere", 1)


async def test_upgrade_receives_versions(factory):
    calls = []

    def upgrade(db, old_version, new_version):
        calls.append((old_version, new_version))
        if not db.contains("items"):
            db.create_object_store("items", key_path="id")

    first = await open_database("versions", 1, upgrade=upgrade, factory=factory)
    first.close()
    second = await open_database("versions", 2, upgrade=upgrade, factory=factory)
    assert calls == [(0, 1), (1, 2)], f"Got {calls!r}"
    assert second.version == 2
    assert second.store_names == ["items"]
    second.close()


async def test_upgrade_failure_closes_connection_and_rejects(factory):
    def upgrade(db, old_version, new_version):
        db.create_object_store("items", key_path="id")
        raise RuntimeError("schema boom")

    with pytest.raises(RuntimeError, match="schema boom"):
        await open_database("broken", 1, upgrade=upgrade, factory=factory)
    assert all(handle.closed for handle in factory.handles)
    assert "broken" not in factory.backings


async def test_open_error_rejects_with_native_error(factory):
    factory.fail_open = DOMError("UnknownError", "storage unavailable")
    with pytest.raises(IndexedDBRequestError) as info:
        await open_database("any", 1, factory=factory)
    assert info.value.error is factory.fail_open


async def test_blocked_upgrade_notifies_without_rejecting(factory):
    old = await open_database("shared", 1, upgrade=_items_schema, factory=factory)
    events = []

    pending = asyncio.ensure_future(
        open_database("shared", 2, blocked=events.append, factory=factory)
    )
    await settle()
    assert len(events) == 1, f"Got {events!r}"
    assert not pending.done(), "blocked open must stay pending"

    old.close()
    upgraded = await pending
    assert upgraded.version == 2
    upgraded.close()


async def test_blocked_without_observer_emits_warning(factory, log_entries):
    old = await open_database("shared", 1, upgrade=_items_schema, factory=factory)
    pending = asyncio.ensure_future(
        open_database("shared", 2, factory=factory)
    )
    await settle()
    assert [e["css"] for e in log_entries] == ["warn"], f"Got {log_entries!r}"
    old.close()
    (await pending).close()


async def test_delete_database(factory):
    db = await open_database("doomed", 1, upgrade=_items_schema, factory=factory)
    db.close()
    assert await delete_database("doomed", factory=factory) is True
    assert "doomed" not in factory.backings


async def test_store_follows_requested_order(factory):
    def upgrade(db, old_version, new_version):
        db.create_object_store("zeta", key_path="id")
        db.create_object_store("alpha", key_path="id")

    db = await open_database("ordered", 1, upgrade=upgrade, factory=factory)
    tx = db.transaction(["zeta", "alpha"])
    assert tx.store_names == ["alpha", "zeta"]
    assert tx.store.name == "zeta", f"Got {tx.store.name!r}"
    await tx.done
    db.close()
