from __future__ import annotations

import json

import pytest

from maintenance_hub.config import Settings
from maintenance_hub.errors import PersistenceError
from maintenance_hub.storage import JsonFileStore, MemoryStore, SqlStore, build_store


def test_memory_store_can_be_told_to_fail():
    store = MemoryStore()
    store.set("contracts", "[]")
    store.fail_writes = True

    with pytest.raises(PersistenceError) as exc_info:
        store.set_many({"contracts": "[1]"})

    assert exc_info.value.code == "persistence_failed"
    assert store.get("contracts") == "[]"


def test_json_file_store_round_trip(tmp_path):
    store = JsonFileStore(tmp_path / "data")
    payload = json.dumps([{"id": "1", "name": "Інженер 1"}], ensure_ascii=False)

    store.set_many({"engineers": payload, "objects": "[]"})

    assert store.get("engineers") == payload
    assert (tmp_path / "data" / "engineers.json").read_text(encoding="utf-8") == payload
    assert sorted(path.name for path in (tmp_path / "data").iterdir()) == ["engineers.json", "objects.json"]

    store.remove("objects")
    assert store.get("objects") is None
    store.remove("objects")


def test_sql_store_in_memory():
    store = SqlStore("sqlite:///:memory:")
    assert store.get("tasks") is None

    store.set_many({"tasks": "[]", "kanban": "[]"})
    store.set("tasks", '[{"id": "task-1"}]')

    assert store.get("tasks") == '[{"id": "task-1"}]'
    assert store.get("kanban") == "[]"

    store.remove("kanban")
    assert store.get("kanban") is None
    store.close()


def test_sql_store_survives_reopen(tmp_path):
    url = f"sqlite:///{tmp_path / 'nested' / 'maintenance.db'}"
    first = SqlStore(url)
    first.set("contracts", "[]")
    first.close()

    second = SqlStore(url)
    assert second.get("contracts") == "[]"
    second.close()


def test_build_store_follows_settings(tmp_path):
    assert isinstance(build_store(Settings(storage_backend="memory")), MemoryStore)

    json_store = build_store(Settings(storage_backend="json", data_dir=tmp_path))
    assert isinstance(json_store, JsonFileStore)
    assert json_store.directory == tmp_path

    sql_store = build_store(Settings(storage_backend="sqlite", database_url="sqlite:///:memory:"))
    assert isinstance(sql_store, SqlStore)
    sql_store.close()
