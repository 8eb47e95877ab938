from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional

from ..dates import parse_date
from ..errors import MESSAGES, ConflictError, NotFoundError, PersistenceError, ServiceError, ValidationError
from ..schemas import (
    PERIOD_STATUS_RANK,
    Contract,
    ContractCreate,
    ContractKanbanColumn,
    ContractKanbanTask,
    ContractStatus,
    ContractUpdate,
    EngineerCreate,
    EngineerUpdate,
    KanbanColumn,
    KanbanTask,
    MaintenanceReport,
    MaintenanceReportCreate,
    MaintenanceReportUpdate,
    MaintenanceTask,
    MaintenanceTaskCreate,
    MaintenanceTaskUpdate,
    NextMaintenance,
    PeriodStatus,
    ServiceEngineer,
    ServiceObject,
    ServiceObjectCreate,
    ServiceObjectUpdate,
    TaskStatus,
    UpcomingMaintenance,
    validate_payload,
)
from ..seed import default_state
from ..storage import KeyValueStore, build_store
from .history import HistoryEngine, HistoryEntry
from .kanban import (
    TASK_COLUMNS_BY_STATUS,
    TASK_STATUS_BY_COLUMN,
    board_columns,
    find_card,
    move_entry,
    remove_cards,
    sync_task_board,
)
from .repository import EntityRepository
from .scheduling import (
    RegenerationResult,
    adjusted_periods,
    get_next_maintenance_date,
    reconcile,
    repair_references,
    upcoming_maintenance,
)
from .transfer import build_export, parse_import, resolve_names

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)

# Fields of period-derived tasks owned by the schedule.
SCHEDULED_TASK_FIELDS = ("scheduled_date", "engineer_id", "duration")


@dataclass
class DataView:
    contracts: List[Contract] = field(default_factory=list)
    objects: List[ServiceObject] = field(default_factory=list)
    engineers: List[ServiceEngineer] = field(default_factory=list)
    tasks: List[MaintenanceTask] = field(default_factory=list)
    kanban_tasks: List[KanbanTask] = field(default_factory=list)
    contract_kanban_tasks: List[ContractKanbanTask] = field(default_factory=list)
    reports: List[MaintenanceReport] = field(default_factory=list)


def _as_date(value: Any) -> date:
    try:
        parsed = parse_date(value)
    except ValueError as exc:
        raise ValidationError(MESSAGES["invalid_date"], {"value": str(value)}) from exc
    if parsed is None:
        raise ValidationError(MESSAGES["invalid_date"], {"value": value})
    return parsed


def _number_key(number: str) -> str:
    return number.strip().casefold()


def _newest_first(reports: Iterable[MaintenanceReport]) -> List[MaintenanceReport]:
    return sorted(reports, key=lambda report: (report.completed_date, report.created_at), reverse=True)


class MaintenanceService:
    """Single entry point for every read and write of the business state.

    Mutations run under one re-entrant lock, apply to memory first, record a
    pre-mutation snapshot for undo and then write the changed keys through
    the store.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        history_limit: int = 50,
        due_window_days: int = 7,
        default_adjusted_by: str = "Начальник",
        clock: Optional[Callable[[], date]] = None,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.repository = EntityRepository(store)
        self.history = HistoryEngine(history_limit)
        self.due_window_days = due_window_days
        self.default_adjusted_by = default_adjusted_by
        self._clock = clock or date.today
        self._now = now or datetime.utcnow
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, settings: "Settings") -> "MaintenanceService":
        service = cls(
            build_store(settings),
            history_limit=settings.history_limit,
            due_window_days=settings.due_window_days,
            default_adjusted_by=settings.default_adjusted_by,
        )
        service.load(seed_on_empty=settings.seed_on_empty)
        return service

    def today(self) -> date:
        return self._clock()

    # === Lifecycle ==========================================================

    def load(self, *, seed_on_empty: bool = True) -> None:
        with self._lock:
            repo = self.repository
            repo.load()
            if seed_on_empty and repo.is_empty():
                repo.restore(default_state())
                reconcile(repo)
                logger.info("Storage was empty, installed default data")
            else:
                repair_references(repo)
            self._flush()

    def flush(self) -> List[str]:
        with self._lock:
            return self._flush()

    def _flush(self) -> List[str]:
        try:
            return self.repository.flush()
        except PersistenceError:
            logger.exception("Changes are kept in memory but were not saved: %s", self.repository.dirty_collections())
            raise

    @contextmanager
    def _mutation(self, description: str) -> Iterator[EntityRepository]:
        with self._lock:
            repo = self.repository
            before = repo.snapshot()
            dirty_before = repo.dirty_collections()
            try:
                yield repo
            except Exception:
                repo.rollback(before, dirty_before)
                raise
            if repo.snapshot() != before:
                entry = self.history.record(before, description)
                logger.info("%s", entry.description)
            self._flush()

    # === Contracts ==========================================================

    def _check_number_free(self, number: str, exclude_id: Optional[str] = None) -> None:
        key = _number_key(number)
        for contract in self.repository.contracts.values():
            if contract.id != exclude_id and _number_key(contract.contract_number) == key:
                raise ConflictError(
                    MESSAGES["contract_number_exists"],
                    {"contractNumber": number, "existingId": contract.id},
                    code="unique_violation",
                )

    def _check_object(self, object_id: str) -> None:
        if self.repository.objects.get(object_id) is None:
            raise ValidationError(MESSAGES["object_not_found"], {"objectId": object_id})

    def _check_engineers(self, engineer_ids: Iterable[str]) -> None:
        missing = [engineer_id for engineer_id in engineer_ids if self.repository.engineers.get(engineer_id) is None]
        if missing:
            raise ValidationError(MESSAGES["engineer_not_found"], {"engineerIds": missing})

    def add_contract(self, payload: Mapping[str, Any] | ContractCreate) -> Contract:
        data = validate_payload(ContractCreate, payload)
        with self._lock:
            self._check_number_free(data.contract_number)
            self._check_object(data.object_id)
            self._check_engineers(data.assigned_engineer_ids)
            if data.id and data.id in self.repository.contracts:
                raise ConflictError(MESSAGES["validation_failed"], {"id": data.id})
            with self._mutation(f"Додано договір №{data.contract_number}") as repo:
                contract = repo.contracts.create(data.model_dump(exclude_none=True))
                reconcile(repo, [contract.id])
            return contract.model_copy(deep=True)

    def update_contract(self, contract_id: str, patch: Mapping[str, Any] | ContractUpdate) -> Contract:
        update = validate_payload(ContractUpdate, patch)
        changes = update.model_dump(exclude_unset=True)
        with self._lock:
            current = self.repository.contracts.require(contract_id)
            number = changes.get("contract_number")
            if number and _number_key(number) != _number_key(current.contract_number):
                self._check_number_free(number, exclude_id=contract_id)
            if changes.get("object_id") and changes["object_id"] != current.object_id:
                self._check_object(changes["object_id"])
            if changes.get("assigned_engineer_ids"):
                added = [item for item in changes["assigned_engineer_ids"] if item not in current.assigned_engineer_ids]
                self._check_engineers(added)

            with self._mutation(f"Оновлено договір №{current.contract_number}") as repo:
                contract = repo.contracts.update(contract_id, changes)
                for period in contract.maintenance_periods:
                    previous = current.find_period(period.id)
                    if previous is not None and PERIOD_STATUS_RANK[period.status] < PERIOD_STATUS_RANK[previous.status]:
                        raise ValidationError(
                            MESSAGES["period_status_backwards"],
                            {"periodId": period.id, "from": previous.status.value, "to": period.status.value},
                        )
                reconcile(repo, [contract_id])
            return repo.contracts.require(contract_id).model_copy(deep=True)

    def archive_contract(self, contract_id: str) -> Contract:
        with self._lock:
            current = self.repository.contracts.require(contract_id)
            with self._mutation(f"Архівовано договір №{current.contract_number}") as repo:
                contract = repo.contracts.update(contract_id, {"status": ContractStatus.ARCHIVED})
                reconcile(repo, [contract_id])
            return contract.model_copy(deep=True)

    def _drop_contract(self, repo: EntityRepository, contract_id: str) -> None:
        repo.contracts.remove(contract_id)
        remove_cards(repo.contract_kanban_tasks, "contract_id", contract_id)

    def delete_contract(self, contract_id: str) -> None:
        with self._lock:
            current = self.repository.contracts.require(contract_id)
            with self._mutation(f"Видалено договір №{current.contract_number}") as repo:
                self._drop_contract(repo, contract_id)
                reconcile(repo, [contract_id])

    def remove_duplicate_contracts(self) -> int:
        with self._lock:
            seen = set()
            duplicates = []
            for contract in self.repository.contracts.values():
                key = _number_key(contract.contract_number)
                if key in seen:
                    duplicates.append(contract.id)
                else:
                    seen.add(key)
            if not duplicates:
                return 0
            with self._mutation(f"Видалено дублікати договорів: {len(duplicates)}") as repo:
                for contract_id in duplicates:
                    self._drop_contract(repo, contract_id)
                reconcile(repo, duplicates)
            return len(duplicates)

    # === Engineers ==========================================================

    def add_engineer(self, payload: Mapping[str, Any] | EngineerCreate) -> ServiceEngineer:
        data = validate_payload(EngineerCreate, payload)
        with self._mutation(f"Додано інженера {data.name}") as repo:
            engineer = repo.engineers.create(data.model_dump(exclude_none=True))
        return engineer.model_copy(deep=True)

    def update_engineer(self, engineer_id: str, patch: Mapping[str, Any] | EngineerUpdate) -> ServiceEngineer:
        changes = validate_payload(EngineerUpdate, patch).model_dump(exclude_unset=True)
        with self._lock:
            current = self.repository.engineers.require(engineer_id)
            with self._mutation(f"Оновлено інженера {current.name}") as repo:
                engineer = repo.engineers.update(engineer_id, changes)
                reconcile(repo)
            return engineer.model_copy(deep=True)

    def delete_engineer(self, engineer_id: str) -> None:
        with self._lock:
            current = self.repository.engineers.require(engineer_id)
            blocking = [
                contract.contract_number
                for contract in self.repository.contracts.values()
                if contract.status != ContractStatus.ARCHIVED and engineer_id in contract.assigned_engineer_ids
            ]
            if blocking:
                raise ConflictError(MESSAGES["engineer_assigned"], {"engineerId": engineer_id, "contracts": blocking})
            with self._mutation(f"Видалено інженера {current.name}") as repo:
                repo.engineers.remove(engineer_id)
                for task in repo.tasks.values():
                    if task.engineer_id == engineer_id and task.maintenance_period_id is None:
                        repo.tasks.update(task.id, {"engineer_id": ""})
                reconcile(repo)

    # === Objects ============================================================

    def add_object(self, payload: Mapping[str, Any] | ServiceObjectCreate) -> ServiceObject:
        data = validate_payload(ServiceObjectCreate, payload)
        with self._mutation(f"Додано об'єкт {data.name}") as repo:
            item = repo.objects.create(data.model_dump(exclude_none=True))
        return item.model_copy(deep=True)

    def update_object(self, object_id: str, patch: Mapping[str, Any] | ServiceObjectUpdate) -> ServiceObject:
        changes = validate_payload(ServiceObjectUpdate, patch).model_dump(exclude_unset=True)
        with self._lock:
            current = self.repository.objects.require(object_id)
            with self._mutation(f"Оновлено об'єкт {current.name}") as repo:
                item = repo.objects.update(object_id, changes)
            return item.model_copy(deep=True)

    def delete_object(self, object_id: str) -> None:
        with self._lock:
            current = self.repository.objects.require(object_id)
            users = [
                contract.contract_number
                for contract in self.repository.contracts.values()
                if contract.object_id == object_id
            ]
            if users:
                raise ConflictError(MESSAGES["object_in_use"], {"objectId": object_id, "contracts": users})
            with self._mutation(f"Видалено об'єкт {current.name}") as repo:
                repo.objects.remove(object_id)

    # === Tasks ==============================================================

    def add_task(self, payload: Mapping[str, Any] | MaintenanceTaskCreate) -> MaintenanceTask:
        data = validate_payload(MaintenanceTaskCreate, payload)
        with self._lock:
            contract = self.repository.contracts.get(data.contract_id)
            if contract is None:
                raise ValidationError(MESSAGES["contract_not_found"], {"contractId": data.contract_id})
            if data.engineer_id:
                self._check_engineers([data.engineer_id])
            record = data.model_dump(exclude_none=True)
            record.pop("maintenance_period_id", None)
            record["object_id"] = record.get("object_id") or contract.object_id
            with self._mutation(f"Додано задачу для договору №{contract.contract_number}") as repo:
                task = repo.tasks.create(record)
                sync_task_board(repo.tasks, repo.kanban_tasks)
            return task.model_copy(deep=True)

    def update_task(self, task_id: str, patch: Mapping[str, Any] | MaintenanceTaskUpdate) -> MaintenanceTask:
        changes = validate_payload(MaintenanceTaskUpdate, patch).model_dump(exclude_unset=True)
        with self._lock:
            current = self.repository.tasks.require(task_id)
            if current.maintenance_period_id is not None:
                locked = [name for name in SCHEDULED_TASK_FIELDS if name in changes and changes[name] != getattr(current, name)]
                if locked:
                    raise ValidationError(MESSAGES["task_is_derived"], {"taskId": task_id, "fields": locked})
            if changes.get("engineer_id"):
                self._check_engineers([changes["engineer_id"]])
            with self._mutation("Оновлено задачу") as repo:
                task = repo.tasks.update(task_id, changes)
                sync_task_board(repo.tasks, repo.kanban_tasks)
            return task.model_copy(deep=True)

    def delete_task(self, task_id: str) -> None:
        with self._lock:
            current = self.repository.tasks.require(task_id)
            if current.maintenance_period_id is not None:
                raise ConflictError(MESSAGES["task_is_derived"], {"taskId": task_id})
            with self._mutation("Видалено задачу") as repo:
                repo.tasks.remove(task_id)
                remove_cards(repo.kanban_tasks, "task_id", task_id)

    def regenerate_all_tasks(self) -> RegenerationResult:
        with self._mutation("Перегенеровано задачі ТО") as repo:
            result = reconcile(repo)
        logger.info(
            "Regeneration finished: %s tasks, %s created, %s updated, %s removed",
            len(result.tasks),
            result.created,
            result.updated,
            result.removed,
        )
        return result

    # === Kanban =============================================================

    def move_kanban_task(self, task_id: str, column: KanbanColumn | str, position: Optional[int] = None) -> KanbanTask:
        target = self._column(KanbanColumn, column)
        with self._lock:
            task = self.repository.tasks.require(task_id)
            card = find_card(self.repository.kanban_tasks, "task_id", task_id)
            if card is None:
                raise NotFoundError(MESSAGES["kanban_card_not_found"], {"taskId": task_id})
            with self._mutation(f"Переміщено задачу до колонки «{target.value}»") as repo:
                move_entry(repo.kanban_tasks, card, target, position)
                if target not in TASK_COLUMNS_BY_STATUS[task.status]:
                    changes: Dict[str, Any] = {"status": TASK_STATUS_BY_COLUMN[target]}
                    if target == KanbanColumn.COMPLETED and task.completed_date is None:
                        changes["completed_date"] = self.today()
                    repo.tasks.update(task_id, changes)
            return card.model_copy(deep=True)

    def move_contract_kanban_task(
        self,
        contract_id: str,
        column: ContractKanbanColumn | str,
        position: Optional[int] = None,
    ) -> ContractKanbanTask:
        target = self._column(ContractKanbanColumn, column)
        with self._lock:
            contract = self.repository.contracts.require(contract_id)
            card = find_card(self.repository.contract_kanban_tasks, "contract_id", contract_id)
            if card is None:
                raise NotFoundError(MESSAGES["kanban_card_not_found"], {"contractId": contract_id})
            description = f"Договір №{contract.contract_number} переміщено до колонки «{target.value}»"
            with self._mutation(description) as repo:
                move_entry(repo.contract_kanban_tasks, card, target, position)
                if contract.status.value != target.value:
                    repo.contracts.update(contract_id, {"status": ContractStatus(target.value)})
                    reconcile(repo, [contract_id])
            return card.model_copy(deep=True)

    @staticmethod
    def _column(columns, value):
        try:
            return columns(value)
        except ValueError as exc:
            raise ValidationError(
                MESSAGES["validation_failed"],
                {"column": str(value), "allowed": [column.value for column in columns]},
            ) from exc

    def kanban_board(self) -> Dict[str, List[KanbanTask]]:
        with self._lock:
            return board_columns(self.repository.kanban_tasks, self.repository.tasks, "task_id", KanbanColumn)

    def contract_board(self) -> Dict[str, List[ContractKanbanTask]]:
        with self._lock:
            return board_columns(
                self.repository.contract_kanban_tasks,
                self.repository.contracts,
                "contract_id",
                ContractKanbanColumn,
            )

    # === Maintenance periods ================================================

    def adjust_maintenance_period(
        self,
        contract_id: str,
        period_id: str,
        new_start: date | str,
        new_end: date | str,
        adjusted_by: Optional[str] = None,
    ) -> Contract:
        start, end = _as_date(new_start), _as_date(new_end)
        with self._lock:
            contract = self.repository.contracts.require(contract_id)
            periods = adjusted_periods(
                contract,
                period_id,
                start,
                end,
                (adjusted_by or "").strip() or self.default_adjusted_by,
                self.today(),
            )
            with self._mutation(f"Скориговано період ТО договору №{contract.contract_number}") as repo:
                updated = repo.contracts.update(contract_id, {"maintenance_periods": periods})
                reconcile(repo, [contract_id])
            return updated.model_copy(deep=True)

    def set_period_status(self, contract_id: str, period_id: str, status: PeriodStatus | str) -> Contract:
        try:
            new_status = PeriodStatus(status)
        except ValueError as exc:
            raise ValidationError(MESSAGES["validation_failed"], {"status": str(status)}) from exc
        with self._lock:
            contract = self.repository.contracts.require(contract_id)
            period = contract.find_period(period_id)
            if period is None:
                raise NotFoundError(MESSAGES["period_not_found"], {"contractId": contract_id, "periodId": period_id})
            if PERIOD_STATUS_RANK[new_status] < PERIOD_STATUS_RANK[period.status]:
                raise ValidationError(
                    MESSAGES["period_status_backwards"],
                    {"periodId": period_id, "from": period.status.value, "to": new_status.value},
                )
            if new_status == period.status:
                return contract.model_copy(deep=True)
            periods = [
                {**item.model_dump(), "status": new_status} if item.id == period_id else item.model_dump()
                for item in contract.maintenance_periods
            ]
            with self._mutation(f"Змінено статус періоду ТО договору №{contract.contract_number}") as repo:
                updated = repo.contracts.update(contract_id, {"maintenance_periods": periods})
                reconcile(repo, [contract_id])
            return updated.model_copy(deep=True)

    def get_next_maintenance_date(self, contract: Contract | str, today: Optional[date] = None) -> NextMaintenance:
        if isinstance(contract, str):
            with self._lock:
                contract = self.repository.contracts.require(contract)
        return get_next_maintenance_date(contract, today or self.today(), self.due_window_days)

    def upcoming_maintenance(
        self,
        within_days: Optional[int] = None,
        today: Optional[date] = None,
    ) -> List[UpcomingMaintenance]:
        with self._lock:
            contracts = self.repository.contracts.list()
        return upcoming_maintenance(
            contracts,
            today or self.today(),
            self.due_window_days if within_days is None else within_days,
            self.due_window_days,
        )

    # === Reports ============================================================

    def create_maintenance_report(self, payload: Mapping[str, Any] | MaintenanceReportCreate) -> MaintenanceReport:
        data = validate_payload(MaintenanceReportCreate, payload)
        with self._lock:
            repo = self.repository
            contract = repo.contracts.get(data.contract_id)
            if contract is None:
                raise ValidationError(MESSAGES["contract_not_found"], {"contractId": data.contract_id})
            self._check_engineers([data.engineer_id])
            task = repo.tasks.require(data.task_id) if data.task_id else None
            if task is not None and task.contract_id != contract.id:
                raise ValidationError(MESSAGES["invalid_report_data"], {"taskId": task.id, "contractId": contract.id})
            period_id = data.maintenance_period_id or (task.maintenance_period_id if task else None)
            if period_id is not None and contract.find_period(period_id) is None:
                raise NotFoundError(MESSAGES["period_not_found"], {"contractId": contract.id, "periodId": period_id})

            with self._mutation(f"Створено звіт ТО для договору №{contract.contract_number}") as repo:
                now = self._now()
                record = data.model_dump(exclude_none=True)
                record.update(created_at=now, updated_at=now)
                if period_id is not None:
                    record["maintenance_period_id"] = period_id
                report = repo.reports.create(record)
                if task is not None:
                    repo.tasks.update(
                        task.id,
                        {
                            "status": TaskStatus.ARCHIVED,
                            "completed_date": data.completed_date,
                            "completion_report_id": report.id,
                        },
                    )
                if period_id is not None:
                    periods = [
                        {**item.model_dump(), "status": PeriodStatus.COMPLETED} if item.id == period_id else item.model_dump()
                        for item in contract.maintenance_periods
                    ]
                    repo.contracts.update(contract.id, {"maintenance_periods": periods})
                    reconcile(repo, [contract.id])
                else:
                    sync_task_board(repo.tasks, repo.kanban_tasks)
            return report.model_copy(deep=True)

    def update_report(self, report_id: str, patch: Mapping[str, Any] | MaintenanceReportUpdate) -> MaintenanceReport:
        changes = validate_payload(MaintenanceReportUpdate, patch).model_dump(exclude_unset=True)
        with self._lock:
            self.repository.reports.require(report_id)
            if changes.get("engineer_id"):
                self._check_engineers([changes["engineer_id"]])
            with self._mutation("Оновлено звіт ТО") as repo:
                report = repo.reports.update(report_id, {**changes, "updated_at": self._now()})
            return report.model_copy(deep=True)

    def delete_report(self, report_id: str) -> None:
        with self._lock:
            self.repository.reports.require(report_id)
            with self._mutation("Видалено звіт ТО") as repo:
                repo.reports.remove(report_id)
                for task in repo.tasks.values():
                    if task.completion_report_id == report_id:
                        repo.tasks.update(task.id, {"completion_report_id": None})

    def get_reports_by_contract(self, contract_id: str) -> List[MaintenanceReport]:
        with self._lock:
            return _newest_first(report for report in self.repository.reports.list() if report.contract_id == contract_id)

    def get_last_report_by_contract(self, contract_id: str) -> Optional[MaintenanceReport]:
        reports = self.get_reports_by_contract(contract_id)
        return reports[0] if reports else None

    def get_reports_by_engineer(self, engineer_id: str) -> List[MaintenanceReport]:
        with self._lock:
            return _newest_first(report for report in self.repository.reports.list() if report.engineer_id == engineer_id)

    # === Reads ==============================================================

    def list_contracts(self) -> List[Contract]:
        with self._lock:
            return self.repository.contracts.list()

    def get_contract(self, contract_id: str) -> Contract:
        with self._lock:
            return self.repository.contracts.require(contract_id).model_copy(deep=True)

    def list_engineers(self) -> List[ServiceEngineer]:
        with self._lock:
            return self.repository.engineers.list()

    def get_engineer(self, engineer_id: str) -> ServiceEngineer:
        with self._lock:
            return self.repository.engineers.require(engineer_id).model_copy(deep=True)

    def list_objects(self) -> List[ServiceObject]:
        with self._lock:
            return self.repository.objects.list()

    def get_object(self, object_id: str) -> ServiceObject:
        with self._lock:
            return self.repository.objects.require(object_id).model_copy(deep=True)

    def list_tasks(self) -> List[MaintenanceTask]:
        with self._lock:
            return self.repository.tasks.list()

    def get_task(self, task_id: str) -> MaintenanceTask:
        with self._lock:
            return self.repository.tasks.require(task_id).model_copy(deep=True)

    def list_reports(self) -> List[MaintenanceReport]:
        with self._lock:
            return self.repository.reports.list()

    def get_report(self, report_id: str) -> MaintenanceReport:
        with self._lock:
            return self.repository.reports.require(report_id).model_copy(deep=True)

    def list_kanban_tasks(self) -> List[KanbanTask]:
        with self._lock:
            return self.repository.kanban_tasks.list()

    def list_contract_kanban_tasks(self) -> List[ContractKanbanTask]:
        with self._lock:
            return self.repository.contract_kanban_tasks.list()

    def snapshot(self) -> Dict[str, List[dict]]:
        with self._lock:
            return self.repository.snapshot()

    def filtered_view(self, include_archived: bool = False) -> DataView:
        with self._lock:
            repo = self.repository
            contracts = [
                contract
                for contract in repo.contracts.list()
                if include_archived or contract.status != ContractStatus.ARCHIVED
            ]
            contract_ids = {contract.id for contract in contracts}
            object_ids = {contract.object_id for contract in contracts}
            tasks = [task for task in repo.tasks.list() if task.contract_id in contract_ids]
            task_ids = {task.id for task in tasks}
            return DataView(
                contracts=contracts,
                objects=[item for item in repo.objects.list() if item.id in object_ids],
                engineers=repo.engineers.list(),
                tasks=tasks,
                kanban_tasks=[card for card in repo.kanban_tasks.list() if card.task_id in task_ids],
                contract_kanban_tasks=[
                    card for card in repo.contract_kanban_tasks.list() if card.contract_id in contract_ids
                ],
                reports=[report for report in repo.reports.list() if report.contract_id in contract_ids],
            )

    # === History ============================================================

    @property
    def can_undo(self) -> bool:
        return self.history.can_undo

    @property
    def can_redo(self) -> bool:
        return self.history.can_redo

    def recent_actions(self, count: int = 5) -> List[HistoryEntry]:
        return self.history.recent_actions(count)

    def clear_history(self) -> None:
        with self._lock:
            self.history.clear()

    def undo(self) -> Optional[HistoryEntry]:
        return self._travel(undo=True)

    def redo(self) -> Optional[HistoryEntry]:
        return self._travel(undo=False)

    def _travel(self, *, undo: bool) -> Optional[HistoryEntry]:
        with self._lock:
            repo = self.repository
            current = repo.snapshot()
            entry = self.history.undo(current) if undo else self.history.redo(current)
            if entry is None:
                return None
            try:
                repo.restore(entry.state)
            except ServiceError:
                self.history.revert(entry, undone=undo)
                raise
            logger.info("%s: %s", "Undo" if undo else "Redo", entry.description)
            self._flush()
            return entry

    def restore_state(self, state: Mapping[str, Any]) -> None:
        with self._mutation("Відновлено стан даних") as repo:
            repo.restore(state)

    # === Import / export ====================================================

    def export_data(self) -> Dict[str, Any]:
        with self._lock:
            payload = build_export(self.repository.snapshot(), self._now())
        logger.info("Exported all collections")
        return payload

    def export_selected_data(self, names: Iterable[str] | str) -> Dict[str, Any]:
        selected = resolve_names(names)
        with self._lock:
            payload = build_export(self.repository.snapshot(), self._now(), selected)
        logger.info("Exported collections: %s", ", ".join(selected))
        return payload

    def import_data(self, raw: str | bytes | Mapping[str, Any]) -> List[str]:
        return self._import(parse_import(raw))

    def import_selected_data(self, raw: str | bytes | Mapping[str, Any], names: Iterable[str] | str) -> List[str]:
        return self._import(parse_import(raw, names))

    def _import(self, collections: Dict[str, list]) -> List[str]:
        names = list(collections)
        with self._mutation(f"Імпортовано дані: {', '.join(names)}") as repo:
            repo.restore(collections, names)
            # Board consistency wins over leaving unselected collections untouched.
            repair_references(repo)
        logger.info(
            "Imported %s",
            ", ".join(f"{name}={len(records)}" for name, records in collections.items()),
        )
        return names

    def reset_data(self) -> None:
        with self._mutation("Дані скинуто до початкових") as repo:
            repo.restore(default_state())
            reconcile(repo)
