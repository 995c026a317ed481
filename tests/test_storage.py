"""Tests for the SQLite XML store."""

import sqlite3

import pytest

from egresos.accounting.errors import StoreUnavailable
from egresos.accounting.invoice_models import StoredInvoice
from egresos.accounting.storage import XmlStore


def _record(name, created=0, category=None):
    return StoredInvoice(file_name=name, raw_text=f"<X>{name}</X>", expense_category=category, created_at_millis=created)


async def test_put_and_get_round_trip(store):
    await store.put(_record("a.xml", created=10, category="001"))

    assert await store.has("a.xml")
    record = await store.get("a.xml")
    assert record.raw_text == "<X>a.xml</X>"
    assert record.expense_category == "001"
    assert record.created_at_millis == 10
    assert await store.get("missing.xml") is None


async def test_list_all_newest_first(store):
    await store.put(_record("old.xml", created=1))
    await store.put(_record("new.xml", created=3))
    await store.put(_record("mid.xml", created=2))

    names = [r.file_name for r in await store.list_all()]
    assert names == ["new.xml", "mid.xml", "old.xml"]


async def test_update_category_sets_and_clears(store):
    await store.put(_record("a.xml"))

    await store.update_category("a.xml", "009")
    assert (await store.get("a.xml")).expense_category == "009"

    await store.update_category("a.xml", "   ")
    assert (await store.get("a.xml")).expense_category is None


async def test_update_category_on_missing_file_is_a_no_op(store):
    await store.update_category("ghost.xml", "001")
    assert await store.count() == 0


async def test_remove_many_and_clear(store):
    for name in ("a.xml", "b.xml", "c.xml"):
        await store.put(_record(name))

    failures = await store.remove_many(["a.xml", "b.xml", "not-there.xml"])
    assert failures == []
    assert [r.file_name for r in await store.list_all()] == ["c.xml"]

    await store.clear()
    assert await store.count() == 0


async def test_remove_many_keeps_going_after_a_failed_delete(store, monkeypatch):
    for name in ("a.xml", "b.xml", "c.xml"):
        await store.put(_record(name))
    original_remove = store.remove

    async def flaky_remove(file_name):
        if file_name == "b.xml":
            raise StoreUnavailable("disco bloqueado")
        await original_remove(file_name)

    monkeypatch.setattr(store, "remove", flaky_remove)

    failures = await store.remove_many(["a.xml", "b.xml", "c.xml"])

    assert failures == [("b.xml", "disco bloqueado")]
    assert [r.file_name for r in await store.list_all()] == ["b.xml"]


async def test_data_survives_reopen(db_path):
    first = XmlStore(db_path)
    await first.put(_record("a.xml", category="001"))
    await first.close()

    second = XmlStore(db_path)
    try:
        assert (await second.get("a.xml")).expense_category == "001"
    finally:
        await second.close()


async def test_corrupted_database_is_recreated(db_path):
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db_path.write_bytes(b"this is definitely not a sqlite database" * 100)

    store = XmlStore(db_path)
    try:
        await store.initialize()
        assert await store.count() == 0
        await store.put(_record("a.xml"))
        assert await store.has("a.xml")
    finally:
        await store.close()


async def test_unopenable_location_raises_store_unavailable(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("a file where a directory should be")

    store = XmlStore(blocker / "sub" / "xml.db")
    with pytest.raises(StoreUnavailable):
        await store.initialize()


async def test_sql_errors_are_wrapped(store):
    def broken(conn):
        conn.execute("SELECT * FROM no_such_table")

    with pytest.raises(StoreUnavailable):
        await store._run(broken)


async def test_schema_matches_storage_layout(store, db_path):
    conn = sqlite3.connect(db_path)
    columns = [row[1] for row in conn.execute("PRAGMA table_info(xml_files)")]
    conn.close()
    assert columns == ["file_name", "xml_text", "tipo_egreso", "created_at"]
