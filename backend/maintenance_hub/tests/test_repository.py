from __future__ import annotations

import json

import pytest

from maintenance_hub.errors import NotFoundError, PersistenceError, ValidationError
from maintenance_hub.services.repository import EntityRepository, generate_id
from maintenance_hub.storage import MemoryStore


def _engineer(**overrides):
    record = {"name": "Інженер", "specialization": ["КОНД"]}
    record.update(overrides)
    return record


def test_generate_id_shape():
    value = generate_id("contract")
    prefix, suffix = value.split("-")
    assert prefix == "contract"
    assert len(suffix) == 8


def test_create_assigns_id_and_marks_dirty():
    repo = EntityRepository(MemoryStore())
    engineer = repo.engineers.create(_engineer())

    assert engineer.id.startswith("engineer-")
    assert repo.dirty_collections() == ["engineers"]


def test_update_and_remove():
    repo = EntityRepository(MemoryStore())
    engineer = repo.engineers.create(_engineer(id="7"))

    updated = repo.engineers.update("7", {"phone": "+380 50 111-2233"})
    assert updated.phone == "+380 50 111-2233"
    assert updated.name == "Інженер"

    with pytest.raises(NotFoundError):
        repo.engineers.update("missing", {"phone": ""})

    assert repo.engineers.remove(engineer.id) is not None
    assert repo.engineers.get(engineer.id) is None


def test_list_returns_copies():
    repo = EntityRepository(MemoryStore())
    repo.engineers.create(_engineer(id="1"))

    listed = repo.engineers.list()
    listed[0].name = "Змінено"

    assert repo.engineers.require("1").name == "Інженер"


def test_flush_writes_only_dirty_keys():
    store = MemoryStore()
    repo = EntityRepository(store)
    repo.engineers.create(_engineer(id="1"))

    assert repo.flush() == ["engineers"]
    assert set(store.data) == {"engineers"}
    assert json.loads(store.data["engineers"])[0]["name"] == "Інженер"
    assert repo.flush() == []


def test_failed_flush_keeps_keys_dirty():
    store = MemoryStore()
    repo = EntityRepository(store)
    repo.engineers.create(_engineer(id="1"))
    store.fail_writes = True

    with pytest.raises(PersistenceError):
        repo.flush()
    assert repo.dirty_collections() == ["engineers"]

    store.fail_writes = False
    assert repo.flush() == ["engineers"]
    assert repo.dirty_collections() == []


def test_load_drops_corrupted_key():
    store = MemoryStore({"contracts": "{not json", "engineers": json.dumps([_engineer(id="1")])})
    repo = EntityRepository(store)

    repo.load()

    assert len(repo.contracts) == 0
    assert "contracts" not in store.data
    assert repo.engineers.require("1").name == "Інженер"


def test_load_drops_key_with_invalid_records():
    store = MemoryStore({"engineers": json.dumps([{"id": "1", "name": ""}])})
    repo = EntityRepository(store)

    repo.load()

    assert len(repo.engineers) == 0
    assert "engineers" not in store.data


def test_load_marks_migrated_keys_dirty():
    legacy = [{"id": 1, "name": "Старий", "specialization": "VRF системи"}]
    store = MemoryStore({"engineers": json.dumps(legacy, ensure_ascii=False)})
    repo = EntityRepository(store)

    repo.load()

    assert repo.dirty_collections() == ["engineers"]
    repo.flush()
    stored = json.loads(store.data["engineers"])
    assert stored[0]["id"] == "1"
    assert stored[0]["specialization"] == ["КОНД"]


def test_restore_is_all_or_nothing():
    repo = EntityRepository(MemoryStore())
    repo.engineers.create(_engineer(id="1"))
    before = repo.snapshot()

    with pytest.raises(ValidationError) as exc_info:
        repo.restore(
            {
                "objects": [{"id": "o-1", "name": "Склад"}],
                "engineers": [_engineer(id="2"), {"id": "3", "name": ""}],
            },
            ["objects", "engineers"],
        )

    assert exc_info.value.details["collection"] == "engineers"
    assert exc_info.value.details["index"] == 1
    assert repo.snapshot() == before


def test_snapshot_is_independent():
    repo = EntityRepository(MemoryStore())
    repo.engineers.create(_engineer(id="1"))

    snapshot = repo.snapshot()
    snapshot["engineers"][0]["name"] = "Інший"

    assert repo.engineers.require("1").name == "Інженер"
    repo.restore(snapshot, ["engineers"])
    assert repo.engineers.require("1").name == "Інший"
