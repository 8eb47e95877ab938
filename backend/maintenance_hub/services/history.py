from __future__ import annotations

import logging
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .repository import generate_id

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 200


def normalize_description(description: str) -> str:
    text = (description or "").strip()
    if len(text) > MAX_DESCRIPTION_LENGTH:
        text = text[:MAX_DESCRIPTION_LENGTH]
    return text


@dataclass
class HistoryEntry:
    description: str
    state: Dict[str, Any]
    id: str = field(default_factory=lambda: generate_id("history"))
    timestamp: datetime = field(default_factory=datetime.utcnow)


class HistoryEngine:
    """Bounded undo/redo stacks of full-state snapshots.

    Callers pass plain JSON data; entries keep their own deep copies.
    """

    def __init__(self, limit: int = 50) -> None:
        self.limit = limit
        self._undo: List[HistoryEntry] = []
        self._redo: List[HistoryEntry] = []

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_entries(self) -> List[HistoryEntry]:
        return list(self._undo)

    @property
    def redo_entries(self) -> List[HistoryEntry]:
        return list(self._redo)

    def record(self, state: Dict[str, Any], description: str) -> HistoryEntry:
        entry = HistoryEntry(description=normalize_description(description), state=deepcopy(state))
        self._undo.append(entry)
        if len(self._undo) > self.limit:
            del self._undo[: len(self._undo) - self.limit]
        self._redo.clear()
        logger.debug("History: recorded %r (%s undo entries)", entry.description, len(self._undo))
        return entry

    def undo(self, current_state: Dict[str, Any]) -> Optional[HistoryEntry]:
        """Pop the latest entry and park ``current_state`` on the redo stack."""
        if not self._undo:
            return None
        entry = self._undo.pop()
        self._redo.append(HistoryEntry(description=entry.description, state=deepcopy(current_state)))
        return entry

    def redo(self, current_state: Dict[str, Any]) -> Optional[HistoryEntry]:
        if not self._redo:
            return None
        entry = self._redo.pop()
        self._undo.append(HistoryEntry(description=entry.description, state=deepcopy(current_state)))
        if len(self._undo) > self.limit:
            del self._undo[: len(self._undo) - self.limit]
        return entry

    def revert(self, entry: HistoryEntry, *, undone: bool) -> None:
        """Put back an entry returned by ``undo``/``redo`` whose restore failed."""
        if undone:
            self._redo.pop()
            self._undo.append(entry)
        else:
            self._undo.pop()
            self._redo.append(entry)

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()

    def recent_actions(self, count: int = 5) -> List[HistoryEntry]:
        return list(reversed(self._undo[-count:])) if count > 0 else []
