from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, Generic, Iterable, List, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel

from ..errors import MESSAGES, ConflictError, NotFoundError, ServiceError, ValidationError
from ..schemas import (
    Contract,
    ContractKanbanTask,
    KanbanTask,
    MaintenanceReport,
    MaintenanceTask,
    ServiceEngineer,
    ServiceObject,
    dump_record,
    validate_payload,
)
from ..storage import KeyValueStore

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def generate_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


class Collection(Generic[ModelT]):
    """Ordered id -> entity mapping persisted under one storage key."""

    def __init__(self, name: str, storage_key: str, model: Type[ModelT], prefix: str, missing: str) -> None:
        self.name = name
        self.storage_key = storage_key
        self.model = model
        self.prefix = prefix
        self.missing = missing
        self.dirty = False
        self._items: Dict[str, ModelT] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def values(self) -> List[ModelT]:
        return list(self._items.values())

    def get(self, item_id: Optional[str]) -> Optional[ModelT]:
        if item_id is None:
            return None
        return self._items.get(item_id)

    def require(self, item_id: str) -> ModelT:
        item = self.get(item_id)
        if item is None:
            raise NotFoundError(MESSAGES[self.missing], {"id": item_id})
        return item

    def list(self) -> List[ModelT]:
        return [item.model_copy(deep=True) for item in self._items.values()]

    def parse(self, record: Any) -> ModelT:
        if isinstance(record, Mapping):
            record = dict(record)
            if record.get("id") in (None, ""):
                record["id"] = generate_id(self.prefix)
            elif isinstance(record["id"], int):
                record["id"] = str(record["id"])
        return validate_payload(self.model, record)

    def create(self, data: Mapping[str, Any]) -> ModelT:
        item = self.parse(data)
        if item.id in self._items:
            raise ConflictError(MESSAGES["validation_failed"], {"id": item.id, "collection": self.name})
        self._items[item.id] = item
        self.dirty = True
        return item

    def update(self, item_id: str, patch: Mapping[str, Any]) -> ModelT:
        current = self.require(item_id)
        merged = {**current.model_dump(), **patch, "id": item_id}
        item = validate_payload(self.model, merged)
        self._items[item_id] = item
        self.dirty = True
        return item

    def remove(self, item_id: str) -> Optional[ModelT]:
        item = self._items.pop(item_id, None)
        if item is not None:
            self.dirty = True
        return item

    def touch(self) -> None:
        self.dirty = True

    def dump(self) -> List[dict]:
        return [dump_record(item) for item in self._items.values()]

    def set_items(self, items: Iterable[ModelT], *, dirty: bool) -> None:
        self._items = {item.id: item for item in items}
        self.dirty = dirty


class EntityRepository:
    """In-memory collections with write-through persistence of changed keys."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store
        self.contracts: Collection[Contract] = Collection(
            "contracts", "contracts", Contract, "contract", "contract_not_found"
        )
        self.objects: Collection[ServiceObject] = Collection(
            "objects", "objects", ServiceObject, "object", "object_not_found"
        )
        self.engineers: Collection[ServiceEngineer] = Collection(
            "engineers", "engineers", ServiceEngineer, "engineer", "engineer_not_found"
        )
        self.tasks: Collection[MaintenanceTask] = Collection(
            "tasks", "tasks", MaintenanceTask, "task", "task_not_found"
        )
        self.kanban_tasks: Collection[KanbanTask] = Collection(
            "kanbanTasks", "kanban", KanbanTask, "kanban", "kanban_card_not_found"
        )
        self.contract_kanban_tasks: Collection[ContractKanbanTask] = Collection(
            "contractKanbanTasks", "contract_kanban", ContractKanbanTask, "contract-kanban", "kanban_card_not_found"
        )
        self.reports: Collection[MaintenanceReport] = Collection(
            "reports", "maintenance_reports", MaintenanceReport, "report", "report_not_found"
        )
        self.collections: Dict[str, Collection] = {
            collection.name: collection
            for collection in (
                self.contracts,
                self.objects,
                self.engineers,
                self.tasks,
                self.kanban_tasks,
                self.contract_kanban_tasks,
                self.reports,
            )
        }

    @property
    def names(self) -> List[str]:
        return list(self.collections)

    def is_empty(self) -> bool:
        return all(len(collection) == 0 for collection in self.collections.values())

    def load(self) -> None:
        for collection in self.collections.values():
            raw = self.store.get(collection.storage_key)
            if raw is None:
                collection.set_items([], dirty=False)
                continue
            try:
                payload = json.loads(raw)
                if not isinstance(payload, list):
                    raise ValueError("expected a JSON array")
                items = [collection.parse(record) for record in payload]
            except (ValueError, ServiceError) as exc:
                logger.warning("Storage key %r is corrupted and was reset: %s", collection.storage_key, exc)
                self.store.remove(collection.storage_key)
                collection.set_items([], dirty=False)
                continue
            collection.set_items(items, dirty=False)
            if [dump_record(item) for item in items] != payload:
                logger.info("Migrated legacy records in %r", collection.storage_key)
                collection.touch()
        logger.info(
            "Loaded %s",
            ", ".join(f"{name}={len(collection)}" for name, collection in self.collections.items()),
        )

    def dirty_collections(self) -> List[str]:
        return [name for name, collection in self.collections.items() if collection.dirty]

    def flush(self) -> List[str]:
        dirty = [collection for collection in self.collections.values() if collection.dirty]
        if not dirty:
            return []
        payload = {
            collection.storage_key: json.dumps(collection.dump(), ensure_ascii=False)
            for collection in dirty
        }
        self.store.set_many(payload)
        for collection in dirty:
            collection.dirty = False
        return [collection.storage_key for collection in dirty]

    def snapshot(self) -> Dict[str, List[dict]]:
        return {name: collection.dump() for name, collection in self.collections.items()}

    def restore(self, state: Mapping[str, Any], names: Optional[Iterable[str]] = None) -> None:
        """Replace collections wholesale. Nothing changes unless every record validates."""
        selected = list(names) if names is not None else self.names
        parsed: Dict[str, list] = {}
        for name in selected:
            collection = self.collections.get(name)
            if collection is None:
                raise ValidationError(MESSAGES["unknown_collection"], {"collection": name})
            records = state.get(name) or []
            items = []
            for index, record in enumerate(records):
                try:
                    items.append(collection.parse(record))
                except ValidationError as exc:
                    raise ValidationError(
                        exc.message,
                        {"collection": name, "index": index, "errors": exc.details or {}},
                    ) from exc
            ids = [item.id for item in items]
            if len(ids) != len(set(ids)):
                raise ValidationError(MESSAGES["validation_failed"], {"collection": name, "reason": "duplicate ids"})
            parsed[name] = items

        for name, items in parsed.items():
            self.collections[name].set_items(items, dirty=True)

    def rollback(self, state: Mapping[str, Any], dirty_before: Iterable[str]) -> None:
        self.restore(state)
        dirty = set(dirty_before)
        for name, collection in self.collections.items():
            collection.dirty = name in dirty
