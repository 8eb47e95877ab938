from __future__ import annotations

import re
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .dates import parse_date
from .errors import MESSAGES, ValidationError


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# === Enumerations ===========================================================

class ContractStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FINAL_WORKS = "final_works"
    EXTENSION = "extension"
    ARCHIVED = "archived"


class PeriodStatus(str, Enum):
    PLANNED = "planned"
    ADJUSTED = "adjusted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


PERIOD_STATUS_RANK = {
    PeriodStatus.PLANNED: 0,
    PeriodStatus.ADJUSTED: 1,
    PeriodStatus.IN_PROGRESS: 2,
    PeriodStatus.COMPLETED: 3,
}


class Department(str, Enum):
    KOND = "КОНД"
    DBZH = "ДБЖ"
    DGU = "ДГУ"


class EquipmentType(str, Enum):
    KOND = "КОНД"
    DBZH = "ДБЖ"
    DGU = "ДГУ"
    COMPLEX = "КОМПЛЕКСНЕ"


class TaskType(str, Enum):
    ROUTINE = "routine"
    EMERGENCY = "emergency"
    SEASONAL = "seasonal"
    DIAGNOSTIC = "diagnostic"


class TaskStatus(str, Enum):
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    OVERDUE = "overdue"
    ARCHIVED = "archived"


class KanbanColumn(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    COMPLETED = "completed"


class ContractKanbanColumn(str, Enum):
    ACTIVE = "active"
    FINAL_WORKS = "final_works"
    EXTENSION = "extension"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class MaintenanceDueStatus(str, Enum):
    UPCOMING = "upcoming"
    DUE = "due"
    OVERDUE = "overdue"


# Old builds stored free-text specializations.
LEGACY_SPECIALIZATIONS = {
    "VRF системи": [Department.KOND.value],
    "Чилери": [Department.KOND.value],
    "Спліт-системи": [Department.KOND.value],
    "КОНД": [Department.KOND.value],
    "ДБЖ": [Department.DBZH.value],
    "ДГУ": [Department.DGU.value],
}

DEPARTMENT_VALUES = {department.value for department in Department}

_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


# === Helpers ================================================================

def _to_str_id(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def _pick(data: Dict[str, Any], camel: str, snake: str) -> Any:
    if camel in data:
        return data[camel]
    return data.get(snake)


def _strip_required(value: Any, message: str) -> Any:
    if value is None:
        raise ValueError(message)
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValueError(message)
    return value


def _unique(values: List[Any]) -> List[Any]:
    return list(dict.fromkeys(values))


def _normalize_time(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    match = _TIME_PATTERN.match(value.strip())
    if not match:
        raise ValueError("Час має бути у форматі ГГ:ХХ")
    hours, minutes = (int(part) for part in match.groups())
    if hours > 23 or minutes > 59:
        raise ValueError("Час має бути у форматі ГГ:ХХ")
    return f"{hours:02d}:{minutes:02d}"


def _error_details(exc: PydanticValidationError) -> tuple[Optional[str], dict]:
    details: dict = {}
    first_custom: Optional[str] = None
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "__root__"
        message = error["msg"]
        if error["type"] == "value_error":
            message = message.removeprefix("Value error, ")
            first_custom = first_custom or message
        details[location] = message
    return first_custom, details


ModelT = TypeVar("ModelT", bound=BaseModel)


def validate_payload(model: Type[ModelT], data: Any, *, message: str | None = None) -> ModelT:
    """Validate ``data`` against ``model`` and translate failures into ``ValidationError``."""
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        custom, details = _error_details(exc)
        raise ValidationError(message or custom or MESSAGES["validation_failed"], details) from exc


def dump_record(model: BaseModel) -> dict:
    """Plain JSON form used for storage, snapshots and exports."""
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


# === Maintenance periods ====================================================

class MaintenancePeriod(CamelModel):
    id: str = Field(min_length=1)
    start_date: date
    end_date: date
    adjusted_start_date: Optional[date] = None
    adjusted_end_date: Optional[date] = None
    status: PeriodStatus = PeriodStatus.PLANNED
    adjusted_date: Optional[date] = None
    adjusted_by: Optional[str] = None
    departments: List[Department]

    @model_validator(mode="before")
    @classmethod
    def _migrate_legacy(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        legacy_department = data.pop("department", None)
        if not data.get("departments") and legacy_department:
            data["departments"] = [legacy_department]
        if data.get("status") is None:
            data.pop("status", None)
        return data

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return _to_str_id(value)

    @field_validator("start_date", "end_date", "adjusted_start_date", "adjusted_end_date", "adjusted_date", mode="before")
    @classmethod
    def _parse_dates(cls, value: Any) -> Any:
        return parse_date(value)

    @field_validator("departments")
    @classmethod
    def _require_departments(cls, value: List[Department]) -> List[Department]:
        unique = _unique(value)
        if not unique:
            raise ValueError("Вкажіть хоча б один підрозділ для періоду ТО")
        return unique

    @model_validator(mode="after")
    def _check_ranges(self) -> "MaintenancePeriod":
        if self.start_date > self.end_date:
            raise ValueError(MESSAGES["invalid_maintenance_dates"])
        if self.effective_start_date > self.effective_end_date:
            raise ValueError(MESSAGES["invalid_maintenance_dates"])
        if (
            self.adjusted_start_date is not None
            and self.adjusted_end_date is not None
            and self.adjusted_start_date >= self.adjusted_end_date
        ):
            raise ValueError(MESSAGES["invalid_maintenance_dates"])
        return self

    @property
    def effective_start_date(self) -> date:
        return self.adjusted_start_date or self.start_date

    @property
    def effective_end_date(self) -> date:
        return self.adjusted_end_date or self.end_date


# === Contracts ==============================================================

class ContractBase(CamelModel):
    contract_number: str
    object_id: str
    client_name: str
    start_date: date
    end_date: date
    status: ContractStatus = ContractStatus.ACTIVE
    assigned_engineer_ids: List[str] = Field(default_factory=list)
    work_types: List[str] = Field(default_factory=list)
    maintenance_periods: List[MaintenancePeriod] = Field(default_factory=list)
    contract_value: Optional[float] = Field(default=None, ge=0)
    address: Optional[str] = None
    map_link: Optional[str] = None
    contact_person: Optional[str] = None
    notes: Optional[str] = None
    equipment_type: Optional[EquipmentType] = None

    @model_validator(mode="before")
    @classmethod
    def _migrate_legacy(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)

        legacy_engineer = data.pop("assignedEngineerId", None)
        if legacy_engineer and not _pick(data, "assignedEngineerIds", "assigned_engineer_ids"):
            data["assignedEngineerIds"] = [legacy_engineer]

        legacy_start = data.pop("maintenanceStartDate", None)
        legacy_end = data.pop("maintenanceEndDate", None)
        periods = _pick(data, "maintenancePeriods", "maintenance_periods")
        if not periods and legacy_start and legacy_end:
            periods = [{"id": "1", "startDate": legacy_start, "endDate": legacy_end, "status": "planned"}]

        if periods:
            work_types = _pick(data, "workTypes", "work_types") or []
            inherited = [item for item in work_types if item in DEPARTMENT_VALUES] or [Department.KOND.value]
            normalized = []
            for period in periods:
                if isinstance(period, dict) and not period.get("departments") and not period.get("department"):
                    period = {**period, "departments": list(inherited)}
                normalized.append(period)
            data.pop("maintenance_periods", None)
            data["maintenancePeriods"] = normalized

        data.pop("serviceFrequency", None)
        return data

    @field_validator("contract_number", mode="before")
    @classmethod
    def _require_number(cls, value: Any) -> Any:
        return _strip_required(value, MESSAGES["contract_number_required"])

    @field_validator("client_name", mode="before")
    @classmethod
    def _require_client(cls, value: Any) -> Any:
        return _strip_required(value, MESSAGES["client_name_required"])

    @field_validator("object_id", mode="before")
    @classmethod
    def _coerce_object_id(cls, value: Any) -> Any:
        return _to_str_id(value)

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _parse_dates(cls, value: Any) -> Any:
        return parse_date(value)

    @field_validator("assigned_engineer_ids", mode="before")
    @classmethod
    def _normalize_engineers(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return _unique([_to_str_id(item) for item in value if item not in (None, "")])
        return value

    @field_validator("work_types")
    @classmethod
    def _normalize_work_types(cls, value: List[str]) -> List[str]:
        return _unique([item.strip() for item in value if item and item.strip()])

    @model_validator(mode="after")
    def _check_contract(self) -> "ContractBase":
        if self.start_date > self.end_date:
            raise ValueError(MESSAGES["invalid_contract_dates"])
        period_ids = [period.id for period in self.maintenance_periods]
        if len(period_ids) != len(set(period_ids)):
            raise ValueError("Ідентифікатори періодів ТО мають бути унікальними")
        return self

    def find_period(self, period_id: str) -> Optional[MaintenancePeriod]:
        for period in self.maintenance_periods:
            if period.id == period_id:
                return period
        return None


class ContractCreate(ContractBase):
    id: Optional[str] = None


class Contract(ContractBase):
    id: str


class ContractUpdate(CamelModel):
    contract_number: Optional[str] = None
    object_id: Optional[str] = None
    client_name: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[ContractStatus] = None
    assigned_engineer_ids: Optional[List[str]] = None
    work_types: Optional[List[str]] = None
    maintenance_periods: Optional[List[Dict[str, Any]]] = None
    contract_value: Optional[float] = Field(default=None, ge=0)
    address: Optional[str] = None
    map_link: Optional[str] = None
    contact_person: Optional[str] = None
    notes: Optional[str] = None
    equipment_type: Optional[EquipmentType] = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _parse_dates(cls, value: Any) -> Any:
        return parse_date(value)


# === Objects ================================================================

class ServiceObjectBase(CamelModel):
    name: str
    address: str = ""
    client_name: str = ""
    client_contact: str = ""
    equipment_count: int = Field(default=0, ge=0)
    notes: Optional[str] = None
    map_link: Optional[str] = None
    contact_person_name: Optional[str] = None
    contact_person_phone: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _require_name(cls, value: Any) -> Any:
        return _strip_required(value, "Назва об'єкта є обов'язковою.")

    @field_validator("address", "client_name", "client_contact", mode="before")
    @classmethod
    def _blank_strings(cls, value: Any) -> Any:
        return "" if value is None else value


class ServiceObjectCreate(ServiceObjectBase):
    id: Optional[str] = None


class ServiceObject(ServiceObjectBase):
    id: str


class ServiceObjectUpdate(CamelModel):
    name: Optional[str] = None
    address: Optional[str] = None
    client_name: Optional[str] = None
    client_contact: Optional[str] = None
    equipment_count: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None
    map_link: Optional[str] = None
    contact_person_name: Optional[str] = None
    contact_person_phone: Optional[str] = None


# === Engineers ==============================================================

class EngineerBase(CamelModel):
    name: str
    phone: str = ""
    email: str = ""
    specialization: List[Department]
    color: str = "#3B82F6"

    @field_validator("name", mode="before")
    @classmethod
    def _require_name(cls, value: Any) -> Any:
        return _strip_required(value, MESSAGES["engineer_name_required"])

    @field_validator("phone", "email", mode="before")
    @classmethod
    def _blank_strings(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("specialization", mode="before")
    @classmethod
    def _migrate_specialization(cls, value: Any) -> Any:
        if isinstance(value, str):
            return LEGACY_SPECIALIZATIONS.get(value.strip(), [Department.KOND.value])
        return value

    @field_validator("specialization")
    @classmethod
    def _require_specialization(cls, value: List[Department]) -> List[Department]:
        unique = _unique(value)
        if not unique:
            raise ValueError(MESSAGES["specialization_required"])
        return unique


class EngineerCreate(EngineerBase):
    id: Optional[str] = None


class ServiceEngineer(EngineerBase):
    id: str


class EngineerUpdate(CamelModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    specialization: Optional[List[Department]] = None
    color: Optional[str] = None


# === Maintenance tasks ======================================================

class MaintenanceTaskBase(CamelModel):
    contract_id: str
    object_id: str = ""
    engineer_id: str = ""
    scheduled_date: date
    completed_date: Optional[date] = None
    type: TaskType = TaskType.ROUTINE
    status: TaskStatus = TaskStatus.PLANNED
    duration: float = Field(default=2, gt=0)
    notes: Optional[str] = None
    maintenance_period_id: Optional[str] = None
    completion_report_id: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _migrate_legacy(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        embedded = data.pop("completionReport", None)
        if isinstance(embedded, dict) and embedded.get("id") and not _pick(
            data, "completionReportId", "completion_report_id"
        ):
            data["completionReportId"] = embedded["id"]
        return data

    @field_validator("contract_id", "object_id", "engineer_id", "maintenance_period_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> Any:
        if value is None:
            return value
        return _to_str_id(value)

    @field_validator("scheduled_date", "completed_date", mode="before")
    @classmethod
    def _parse_dates(cls, value: Any) -> Any:
        return parse_date(value)


class MaintenanceTaskCreate(MaintenanceTaskBase):
    id: Optional[str] = None


class MaintenanceTask(MaintenanceTaskBase):
    id: str


class MaintenanceTaskUpdate(CamelModel):
    engineer_id: Optional[str] = None
    scheduled_date: Optional[date] = None
    completed_date: Optional[date] = None
    type: Optional[TaskType] = None
    status: Optional[TaskStatus] = None
    duration: Optional[float] = Field(default=None, gt=0)
    notes: Optional[str] = None

    @field_validator("scheduled_date", "completed_date", mode="before")
    @classmethod
    def _parse_dates(cls, value: Any) -> Any:
        return parse_date(value)


# === Kanban =================================================================

class KanbanTask(CamelModel):
    id: str
    task_id: str
    column: KanbanColumn
    order: int = Field(ge=0)

    @field_validator("id", "task_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> Any:
        return _to_str_id(value)


class ContractKanbanTask(CamelModel):
    id: str
    contract_id: str
    column: ContractKanbanColumn
    order: int = Field(ge=0)

    @field_validator("id", "contract_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> Any:
        return _to_str_id(value)


# === Reports ================================================================

class MaintenanceReportBase(CamelModel):
    task_id: Optional[str] = None
    contract_id: str
    engineer_id: str
    completed_date: date
    actual_start_time: str
    actual_end_time: str
    department: Department
    work_description: str = ""
    issues: str = ""
    recommendations: str = ""
    materials_used: Optional[str] = None
    photos: List[str] = Field(default_factory=list)
    next_maintenance_notes: Optional[str] = None
    equipment_type: Optional[EquipmentType] = None
    maintenance_period_id: Optional[str] = None

    @field_validator("task_id", "contract_id", "engineer_id", "maintenance_period_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> Any:
        if value in (None, ""):
            return None
        return _to_str_id(value)

    @field_validator("completed_date", mode="before")
    @classmethod
    def _parse_dates(cls, value: Any) -> Any:
        return parse_date(value)

    @field_validator("actual_start_time", "actual_end_time", mode="before")
    @classmethod
    def _normalize_times(cls, value: Any) -> Any:
        return _normalize_time(value)

    @model_validator(mode="after")
    def _check_window(self) -> "MaintenanceReportBase":
        if self.actual_start_time >= self.actual_end_time:
            raise ValueError("Час завершення робіт має бути пізніше часу початку")
        return self


class MaintenanceReportCreate(MaintenanceReportBase):
    id: Optional[str] = None


class MaintenanceReport(MaintenanceReportBase):
    id: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class MaintenanceReportUpdate(CamelModel):
    engineer_id: Optional[str] = None
    completed_date: Optional[date] = None
    actual_start_time: Optional[str] = None
    actual_end_time: Optional[str] = None
    department: Optional[Department] = None
    work_description: Optional[str] = None
    issues: Optional[str] = None
    recommendations: Optional[str] = None
    materials_used: Optional[str] = None
    photos: Optional[List[str]] = None
    next_maintenance_notes: Optional[str] = None
    equipment_type: Optional[EquipmentType] = None

    @field_validator("completed_date", mode="before")
    @classmethod
    def _parse_dates(cls, value: Any) -> Any:
        return parse_date(value)


# === Read models ============================================================

class NextMaintenance(CamelModel):
    display: str = Field(alias="date")
    status: MaintenanceDueStatus
    period_id: Optional[str] = None


class UpcomingMaintenance(CamelModel):
    contract_id: str
    contract_number: str
    object_id: str
    period_id: str
    start_date: date
    end_date: date
    days_until_start: int
    status: MaintenanceDueStatus
    departments: List[Department]
    engineer_ids: List[str]


class RegenerationSummary(CamelModel):
    created: int
    updated: int
    removed: int
    tasks: int
    kanban_tasks: int


class HistoryEntrySummary(CamelModel):
    id: str
    timestamp: datetime
    description: str


class HistoryStatus(CamelModel):
    can_undo: bool
    can_redo: bool
    undo: List[HistoryEntrySummary]
    redo: List[HistoryEntrySummary]


# === Requests ===============================================================

class PeriodAdjustmentRequest(CamelModel):
    start_date: date
    end_date: date
    adjusted_by: Optional[str] = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _parse_dates(cls, value: Any) -> Any:
        return parse_date(value)


class PeriodStatusRequest(CamelModel):
    status: PeriodStatus


class TaskKanbanMoveRequest(CamelModel):
    column: KanbanColumn
    position: Optional[int] = Field(default=None, ge=0)


class ContractKanbanMoveRequest(CamelModel):
    column: ContractKanbanColumn
    position: Optional[int] = Field(default=None, ge=0)
