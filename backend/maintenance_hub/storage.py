from __future__ import annotations

import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from .database import build_engine, init_db, make_session_factory, session_scope
from .errors import MESSAGES, PersistenceError
from .orm_models import KeyValueEntryORM

if TYPE_CHECKING:
    from .config import Settings

logger = logging.getLogger(__name__)


class KeyValueStore:
    """Durable string storage keyed by collection name.

    Values are JSON documents serialized by the caller. Every backend reports
    failures as ``PersistenceError``.
    """

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError

    def set_many(self, items: Mapping[str, str]) -> None:
        for key, value in items.items():
            self.set(key, value)


class MemoryStore(KeyValueStore):
    def __init__(self, initial: Optional[Mapping[str, str]] = None) -> None:
        self.data: Dict[str, str] = dict(initial or {})
        self.fail_writes = False
        self.write_count = 0

    def _check_writable(self) -> None:
        if self.fail_writes:
            raise PersistenceError(MESSAGES["save_failed"], {"backend": "memory"})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self._check_writable()
        self.data[key] = value
        self.write_count += 1

    def remove(self, key: str) -> None:
        self._check_writable()
        self.data.pop(key, None)

    def set_many(self, items: Mapping[str, str]) -> None:
        self._check_writable()
        self.data.update(items)
        self.write_count += len(items)


class JsonFileStore(KeyValueStore):
    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.exception("Failed to read %s", path)
            raise PersistenceError(MESSAGES["load_failed"], {"key": key}) from exc

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=self.directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(value)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            logger.exception("Failed to write %s", path)
            raise PersistenceError(MESSAGES["save_failed"], {"key": key}) from exc

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise PersistenceError(MESSAGES["save_failed"], {"key": key}) from exc


class SqlStore(KeyValueStore):
    def __init__(self, database_url: str) -> None:
        self.engine = build_engine(database_url)
        self.session_factory = make_session_factory(self.engine)
        try:
            init_db(self.engine)
        except SQLAlchemyError as exc:
            raise PersistenceError(MESSAGES["load_failed"], {"backend": "sql"}) from exc

    def get(self, key: str) -> Optional[str]:
        try:
            with session_scope(self.session_factory) as session:
                entry = session.get(KeyValueEntryORM, key)
                return entry.value if entry is not None else None
        except SQLAlchemyError as exc:
            logger.exception("Failed to read key %s", key)
            raise PersistenceError(MESSAGES["load_failed"], {"key": key}) from exc

    def set(self, key: str, value: str) -> None:
        self.set_many({key: value})

    def remove(self, key: str) -> None:
        try:
            with session_scope(self.session_factory) as session:
                entry = session.get(KeyValueEntryORM, key)
                if entry is not None:
                    session.delete(entry)
        except SQLAlchemyError as exc:
            raise PersistenceError(MESSAGES["save_failed"], {"key": key}) from exc

    def set_many(self, items: Mapping[str, str]) -> None:
        if not items:
            return
        try:
            with session_scope(self.session_factory) as session:
                now = datetime.utcnow()
                for key, value in items.items():
                    entry = session.get(KeyValueEntryORM, key)
                    if entry is None:
                        session.add(KeyValueEntryORM(key=key, value=value, updated_at=now))
                    else:
                        entry.value = value
                        entry.updated_at = now
        except SQLAlchemyError as exc:
            logger.exception("Failed to write keys %s", ", ".join(items))
            raise PersistenceError(MESSAGES["save_failed"], {"keys": sorted(items)}) from exc

    def close(self) -> None:
        self.engine.dispose()


def build_store(settings: "Settings") -> KeyValueStore:
    backend = settings.storage_backend
    if backend == "memory":
        return MemoryStore()
    if backend == "json":
        return JsonFileStore(settings.data_dir)
    return SqlStore(settings.database_url)
