from datetime import datetime

import pytest
from peewee import IntegrityError, OperationalError

from role_memory.models import RoleRecord, StoreUnavailable, WriteFailed, init_role_store


def test_get_returns_none_without_snapshot(store):
    assert store.get("1", "10") is None


def test_upsert_then_get_round_trips_record(store):
    store.upsert(RoleRecord("1", "10", ["200", "100"], "alice"))

    record = store.get("1", "10")

    assert record == RoleRecord("1", "10", ["200", "100"], "alice")


def test_upsert_overwrites_existing_record(store):
    store.upsert(RoleRecord("1", "10", ["100"], "alice"))
    store.upsert(RoleRecord("1", "10", ["100", "300"], "alice2"))

    assert store.get("1", "10").role_ids == ["100", "300"]
    assert store.get("1", "10").display_name == "alice2"
    assert store.MemberRoles.select().count() == 1


def test_upsert_is_idempotent(store):
    record = RoleRecord("1", "10", ["100"], "alice")
    store.upsert(record)
    store.upsert(record)

    assert store.count("1") == 1
    assert store.get("1", "10") == record


def test_records_are_keyed_by_guild_and_user(store):
    store.upsert(RoleRecord("1", "10", ["100"], "alice"))
    store.upsert(RoleRecord("2", "10", ["500"], "alice"))

    assert store.get("1", "10").role_ids == ["100"]
    assert store.get("2", "10").role_ids == ["500"]
    assert store.count("1") == 1
    assert store.count("3") == 0


def test_upsert_rejects_empty_role_set(store):
    with pytest.raises(ValueError):
        store.upsert(RoleRecord("1", "10", [], "alice"))
    assert store.get("1", "10") is None


def test_store_persists_across_reopen(tmp_path):
    path = str(tmp_path / "nested" / "roles.db")
    first = init_role_store(path)
    first.upsert(RoleRecord("1", "10", ["100"], "alice"))
    first.close()

    second = init_role_store(path)
    try:
        assert second.get("1", "10").role_ids == ["100"]
    finally:
        second.close()


def test_operational_error_maps_to_store_unavailable(store, monkeypatch):
    def broken_insert(**kwargs):
        raise OperationalError("database is locked")

    monkeypatch.setattr(store.MemberRoles, "insert", broken_insert)

    with pytest.raises(StoreUnavailable):
        store.upsert(RoleRecord("1", "10", ["100"], "alice"))


def test_integrity_error_maps_to_write_failed(store, monkeypatch):
    def broken_insert(**kwargs):
        raise IntegrityError("constraint failed")

    monkeypatch.setattr(store.MemberRoles, "insert", broken_insert)

    with pytest.raises(WriteFailed):
        store.upsert(RoleRecord("1", "10", ["100"], "alice"))


def test_read_failure_maps_to_store_unavailable(store, monkeypatch):
    def broken_get(*args, **kwargs):
        raise OperationalError("disk I/O error")

    monkeypatch.setattr(store.MemberRoles, "get_or_none", broken_get)

    with pytest.raises(StoreUnavailable):
        store.get("1", "10")


def test_overwrite_bumps_updated_at_and_keeps_created_at(store, monkeypatch):
    first = datetime(2025, 1, 1, 12, 0)
    second = datetime(2025, 1, 2, 12, 0)
    monkeypatch.setattr("role_memory.models.utcnow_naive", lambda: first)
    store.upsert(RoleRecord("1", "10", ["100"], "alice"))
    monkeypatch.setattr("role_memory.models.utcnow_naive", lambda: second)
    store.upsert(RoleRecord("1", "10", ["100", "300"], "alice"))

    row = store.MemberRoles.get()

    assert row.created_at == first
    assert row.updated_at == second
