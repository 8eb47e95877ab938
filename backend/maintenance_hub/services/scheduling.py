from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, List, Optional

from ..dates import format_date_display
from ..errors import MESSAGES, NotFoundError, ValidationError
from ..schemas import (
    Contract,
    ContractStatus,
    KanbanTask,
    MaintenanceDueStatus,
    MaintenancePeriod,
    MaintenanceTask,
    NextMaintenance,
    PeriodStatus,
    ServiceEngineer,
    TaskStatus,
    TaskType,
    UpcomingMaintenance,
)
from .kanban import remove_cards, sync_contract_board, sync_task_board
from .repository import Collection, EntityRepository

logger = logging.getLogger(__name__)

NO_PERIODS_LABEL = "Не вказано"
ALL_DONE_LABEL = "ТО завершено"


@dataclass
class RegenerationResult:
    tasks: List[MaintenanceTask] = field(default_factory=list)
    kanban_tasks: List[KanbanTask] = field(default_factory=list)
    created: int = 0
    updated: int = 0
    removed: int = 0


def task_duration(contract: Contract) -> float:
    return (len(contract.work_types) or 1) * 2 + 2


def task_type(index: int) -> TaskType:
    return TaskType.SEASONAL if index == 0 else TaskType.ROUTINE


def task_status_for_period(period: MaintenancePeriod) -> TaskStatus:
    if period.status == PeriodStatus.COMPLETED:
        return TaskStatus.COMPLETED
    if period.status == PeriodStatus.IN_PROGRESS:
        return TaskStatus.IN_PROGRESS
    return TaskStatus.PLANNED


def resolve_engineer(
    contract: Contract,
    period: MaintenancePeriod,
    engineers: Collection[ServiceEngineer],
) -> str:
    """Pick the engineer for a period's task.

    Order: first assigned engineer covering one of the period departments,
    first assigned engineer, any engineer covering a department, nobody.
    """
    departments = set(period.departments)
    assigned = [
        engineer
        for engineer in (engineers.get(engineer_id) for engineer_id in contract.assigned_engineer_ids)
        if engineer is not None
    ]
    for engineer in assigned:
        if departments & set(engineer.specialization):
            return engineer.id
    if assigned:
        return assigned[0].id
    for engineer in engineers.values():
        if departments & set(engineer.specialization):
            return engineer.id
    return ""


def _drop_task(repo: EntityRepository, task: MaintenanceTask) -> None:
    repo.tasks.remove(task.id)
    remove_cards(repo.kanban_tasks, "task_id", task.id)


def repair_references(repo: EntityRepository) -> int:
    """Drop tasks of missing contracts and sync both boards. Returns the dropped task count."""
    removed = 0
    for task in repo.tasks.values():
        if task.contract_id not in repo.contracts:
            _drop_task(repo, task)
            removed += 1
    if removed:
        logger.warning("Dropped %s tasks without a contract", removed)
    sync_task_board(repo.tasks, repo.kanban_tasks)
    sync_contract_board(repo.contracts, repo.contract_kanban_tasks)
    return removed


def reconcile(repo: EntityRepository, contract_ids: Optional[Iterable[str]] = None) -> RegenerationResult:
    """Bring derived tasks and both boards in line with the contracts.

    With ``contract_ids`` only tasks of those contracts are touched; the
    boards are always synced as a whole.
    """
    scope = set(contract_ids) if contract_ids is not None else None
    result = RegenerationResult()
    by_period: dict = {}

    for task in repo.tasks.values():
        if scope is not None and task.contract_id not in scope:
            continue
        contract = repo.contracts.get(task.contract_id)
        if contract is None:
            _drop_task(repo, task)
            result.removed += 1
            continue
        if task.maintenance_period_id is None:
            continue
        key = (task.contract_id, task.maintenance_period_id)
        if (
            contract.status == ContractStatus.ARCHIVED
            or contract.find_period(task.maintenance_period_id) is None
            or key in by_period
        ):
            _drop_task(repo, task)
            result.removed += 1
            continue
        by_period[key] = task

    for contract in repo.contracts.values():
        if scope is not None and contract.id not in scope:
            continue
        if contract.status == ContractStatus.ARCHIVED:
            continue
        duration = task_duration(contract)
        for index, period in enumerate(contract.maintenance_periods):
            engineer_id = resolve_engineer(contract, period, repo.engineers)
            derived = {
                "scheduled_date": period.effective_start_date,
                "object_id": contract.object_id,
                "engineer_id": engineer_id,
                "duration": duration,
                "type": task_type(index),
            }
            existing = by_period.get((contract.id, period.id))
            if existing is None:
                repo.tasks.create(
                    {
                        **derived,
                        "contract_id": contract.id,
                        "maintenance_period_id": period.id,
                        "status": task_status_for_period(period),
                    }
                )
                result.created += 1
                continue
            changes = {name: value for name, value in derived.items() if getattr(existing, name) != value}
            if changes:
                repo.tasks.update(existing.id, changes)
                result.updated += 1

    sync_task_board(repo.tasks, repo.kanban_tasks)
    sync_contract_board(repo.contracts, repo.contract_kanban_tasks)

    result.tasks = repo.tasks.list()
    result.kanban_tasks = repo.kanban_tasks.list()
    if result.created or result.updated or result.removed:
        logger.info(
            "Reconciled tasks: %s created, %s updated, %s removed",
            result.created,
            result.updated,
            result.removed,
        )
    return result


def _due_status(start: date, end: date, today: date, due_window_days: int) -> MaintenanceDueStatus:
    if end < today:
        return MaintenanceDueStatus.OVERDUE
    if start <= today + timedelta(days=due_window_days):
        return MaintenanceDueStatus.DUE
    return MaintenanceDueStatus.UPCOMING


def get_next_maintenance_date(contract: Contract, today: date, due_window_days: int = 7) -> NextMaintenance:
    if not contract.maintenance_periods:
        return NextMaintenance(display=NO_PERIODS_LABEL, status=MaintenanceDueStatus.DUE)

    pending = [period for period in contract.maintenance_periods if period.status != PeriodStatus.COMPLETED]
    if not pending:
        return NextMaintenance(display=ALL_DONE_LABEL, status=MaintenanceDueStatus.DUE)

    period = min(pending, key=lambda item: (item.effective_end_date, item.effective_start_date))
    start, end = period.effective_start_date, period.effective_end_date
    return NextMaintenance(
        display=f"{format_date_display(start)} - {format_date_display(end)}",
        status=_due_status(start, end, today, due_window_days),
        period_id=period.id,
    )


def adjusted_periods(
    contract: Contract,
    period_id: str,
    new_start: date,
    new_end: date,
    adjusted_by: str,
    today: date,
) -> List[dict]:
    """Return the contract's periods with one period moved to a new window."""
    if new_start >= new_end:
        raise ValidationError(
            MESSAGES["invalid_maintenance_dates"],
            {"startDate": new_start.isoformat(), "endDate": new_end.isoformat()},
        )
    if contract.find_period(period_id) is None:
        raise NotFoundError(MESSAGES["period_not_found"], {"contractId": contract.id, "periodId": period_id})

    periods = []
    for period in contract.maintenance_periods:
        data = period.model_dump()
        if period.id == period_id:
            data.update(
                adjusted_start_date=new_start,
                adjusted_end_date=new_end,
                adjusted_by=adjusted_by,
                adjusted_date=today,
            )
            if period.status == PeriodStatus.PLANNED:
                data["status"] = PeriodStatus.ADJUSTED
        periods.append(data)
    return periods


def upcoming_maintenance(
    contracts: Iterable[Contract],
    today: date,
    within_days: int,
    due_window_days: int = 7,
) -> List[UpcomingMaintenance]:
    horizon = today + timedelta(days=within_days)
    items = []
    for contract in contracts:
        if contract.status == ContractStatus.ARCHIVED:
            continue
        for period in contract.maintenance_periods:
            if period.status == PeriodStatus.COMPLETED:
                continue
            start, end = period.effective_start_date, period.effective_end_date
            if start > horizon:
                continue
            items.append(
                UpcomingMaintenance(
                    contract_id=contract.id,
                    contract_number=contract.contract_number,
                    object_id=contract.object_id,
                    period_id=period.id,
                    start_date=start,
                    end_date=end,
                    days_until_start=(start - today).days,
                    status=_due_status(start, end, today, due_window_days),
                    departments=list(period.departments),
                    engineer_ids=list(contract.assigned_engineer_ids),
                )
            )
    items.sort(key=lambda item: (item.start_date, item.contract_number))
    return items
