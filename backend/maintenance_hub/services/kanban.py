"""Board placement rules shared by the task board and the contract board.

Within a column ``order`` runs 0..n-1 without gaps and every entity has exactly
one card. The entity status decides the column; the card decides the position
inside that column.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Type

from ..schemas import (
    ContractKanbanColumn,
    ContractKanbanTask,
    ContractStatus,
    KanbanColumn,
    KanbanTask,
    TaskStatus,
)
from .repository import Collection

logger = logging.getLogger(__name__)

TASK_STATUS_BY_COLUMN = {
    KanbanColumn.TODO: TaskStatus.PLANNED,
    KanbanColumn.IN_PROGRESS: TaskStatus.IN_PROGRESS,
    KanbanColumn.REVIEW: TaskStatus.IN_PROGRESS,
    KanbanColumn.COMPLETED: TaskStatus.COMPLETED,
}

TASK_COLUMNS_BY_STATUS = {
    TaskStatus.PLANNED: (KanbanColumn.TODO,),
    TaskStatus.OVERDUE: (KanbanColumn.TODO,),
    TaskStatus.IN_PROGRESS: (KanbanColumn.IN_PROGRESS, KanbanColumn.REVIEW),
    TaskStatus.COMPLETED: (KanbanColumn.COMPLETED,),
    TaskStatus.ARCHIVED: (KanbanColumn.COMPLETED,),
}


def contract_column(status: ContractStatus) -> ContractKanbanColumn:
    return ContractKanbanColumn(status.value)


def column_entries(entries: Iterable, column) -> List:
    return sorted((entry for entry in entries if entry.column == column), key=lambda entry: entry.order)


def next_order(entries: Iterable, column) -> int:
    orders = [entry.order for entry in entries if entry.column == column]
    return max(orders) + 1 if orders else 0


def renumber(entries: Sequence) -> bool:
    changed = False
    for index, entry in enumerate(entries):
        if entry.order != index:
            entry.order = index
            changed = True
    return changed


def move_entry(board: Collection, entry, target, position: Optional[int] = None) -> None:
    """Place ``entry`` in ``target`` and close the gap it leaves behind.

    Without a position the card goes to the end of the column.
    """
    source = entry.column
    remaining = [item for item in column_entries(board.values(), source) if item.id != entry.id]
    renumber(remaining)

    siblings = [item for item in column_entries(board.values(), target) if item.id != entry.id]
    entry.column = target
    if position is None or position >= len(siblings):
        entry.order = next_order(siblings, target)
    else:
        siblings.insert(position, entry)
        renumber(siblings)
    board.touch()


def remove_cards(board: Collection, ref_attr: str, ref_id: str) -> int:
    removed = 0
    for entry in board.values():
        if getattr(entry, ref_attr) == ref_id:
            board.remove(entry.id)
            removed += 1
    return removed


def _sync(board: Collection, entities: Collection, ref_attr: str, columns_for, columns: Type) -> bool:
    changed = False
    seen = set()

    for entry in board.values():
        ref_id = getattr(entry, ref_attr)
        entity = entities.get(ref_id)
        if entity is None or ref_id in seen:
            board.remove(entry.id)
            logger.warning("Dropped kanban card %s for %s %s", entry.id, ref_attr, ref_id)
            changed = True
            continue
        seen.add(ref_id)
        allowed = columns_for(entity)
        if entry.column not in allowed:
            target = allowed[0]
            entry.order = next_order(board.values(), target)
            entry.column = target
            changed = True

    for entity in entities.values():
        if entity.id in seen:
            continue
        target = columns_for(entity)[0]
        board.create({ref_attr: entity.id, "column": target, "order": next_order(board.values(), target)})
        changed = True

    for column in columns:
        if renumber(column_entries(board.values(), column)):
            changed = True

    if changed:
        board.touch()
    return changed


def sync_task_board(tasks: Collection, board: Collection[KanbanTask]) -> bool:
    return _sync(
        board,
        tasks,
        "task_id",
        lambda task: TASK_COLUMNS_BY_STATUS[task.status],
        KanbanColumn,
    )


def sync_contract_board(contracts: Collection, board: Collection[ContractKanbanTask]) -> bool:
    return _sync(
        board,
        contracts,
        "contract_id",
        lambda contract: (contract_column(contract.status),),
        ContractKanbanColumn,
    )


def find_card(board: Collection, ref_attr: str, ref_id: str):
    for entry in board.values():
        if getattr(entry, ref_attr) == ref_id:
            return entry
    return None


def board_columns(board: Collection, entities: Collection, ref_attr: str, columns: Type) -> Dict[str, list]:
    grouped: Dict[str, list] = {column.value: [] for column in columns}
    for entry in sorted(board.values(), key=lambda item: item.order):
        if entities.get(getattr(entry, ref_attr)) is None:
            continue
        grouped[entry.column.value].append(entry.model_copy(deep=True))
    return grouped
