from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from ..errors import MESSAGES, ValidationError

EXPORT_VERSION = "1.0"
COLLECTION_NAMES = (
    "contracts",
    "objects",
    "engineers",
    "tasks",
    "kanbanTasks",
    "contractKanbanTasks",
    "reports",
)
META_KEYS = ("exportDate", "version", "dataTypes")
ALL_COLLECTIONS = "all"


def resolve_names(names: Optional[Iterable[str]]) -> List[str]:
    """Expand a collection selection; ``None`` and ``"all"`` select everything.

    An explicit selection that names nothing is rejected.
    """
    if names is None:
        return list(COLLECTION_NAMES)
    if isinstance(names, str):
        names = [names]
    requested = [name.strip() for name in names if name and name.strip()]
    if not requested:
        raise ValidationError(MESSAGES["no_collections_selected"], {"allowed": list(COLLECTION_NAMES)})
    if ALL_COLLECTIONS in requested:
        return list(COLLECTION_NAMES)
    unknown = [name for name in requested if name not in COLLECTION_NAMES]
    if unknown:
        raise ValidationError(MESSAGES["unknown_collection"], {"unknown": unknown, "allowed": list(COLLECTION_NAMES)})
    return [name for name in COLLECTION_NAMES if name in requested]


def build_export(
    state: Mapping[str, List[dict]],
    now: datetime,
    names: Optional[List[str]] = None,
) -> Dict[str, Any]:
    selected = names if names is not None else list(COLLECTION_NAMES)
    payload: Dict[str, Any] = {name: state.get(name, []) for name in selected}
    payload["exportDate"] = now.isoformat()
    payload["version"] = EXPORT_VERSION
    if names is not None:
        payload["dataTypes"] = list(selected)
    return payload


def dumps(payload: Mapping[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2, default=str)


def parse_import(
    raw: Union[str, bytes, Mapping[str, Any]],
    names: Optional[Iterable[str]] = None,
) -> Dict[str, list]:
    """Check the envelope of an import file and pick the collections to replace.

    Records are validated later by the repository, all at once.
    """
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise ValidationError(MESSAGES["invalid_file_format"], {"reason": str(exc)}) from exc
    else:
        payload = raw

    if not isinstance(payload, Mapping):
        raise ValidationError(MESSAGES["invalid_file_format"], {"reason": "top level must be an object"})

    unknown = sorted(key for key in payload if key not in COLLECTION_NAMES and key not in META_KEYS)
    if unknown:
        raise ValidationError(MESSAGES["invalid_file_format"], {"unknownKeys": unknown})

    selected = resolve_names(names)
    present = [name for name in selected if name in payload]
    if not present:
        raise ValidationError(MESSAGES["invalid_file_format"], {"reason": "no collections to import"})

    collections: Dict[str, list] = {}
    for name in present:
        records = payload[name]
        if not isinstance(records, list) or not all(isinstance(record, Mapping) for record in records):
            raise ValidationError(MESSAGES["invalid_file_format"], {"collection": name, "reason": "expected a list of objects"})
        collections[name] = [dict(record) for record in records]
    return collections


def backup_filename(today: date) -> str:
    return f"maintenance_backup_{today.isoformat()}.json"
