from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from . import __version__
from .config import settings
from .errors import MESSAGES, ServiceError, ValidationError
from .logging_config import setup_logging
from .schemas import (
    Contract,
    ContractCreate,
    ContractKanbanMoveRequest,
    ContractKanbanTask,
    ContractUpdate,
    EngineerCreate,
    EngineerUpdate,
    HistoryEntrySummary,
    HistoryStatus,
    KanbanTask,
    MaintenanceReport,
    MaintenanceReportCreate,
    MaintenanceReportUpdate,
    MaintenanceTask,
    MaintenanceTaskCreate,
    MaintenanceTaskUpdate,
    NextMaintenance,
    PeriodAdjustmentRequest,
    PeriodStatusRequest,
    RegenerationSummary,
    ServiceEngineer,
    ServiceObject,
    ServiceObjectCreate,
    ServiceObjectUpdate,
    TaskKanbanMoveRequest,
    UpcomingMaintenance,
    dump_record,
)
from .services.engine import MaintenanceService
from .services.history import HistoryEntry
from .services.transfer import backup_filename, dumps

logger = logging.getLogger(__name__)

app = FastAPI(title="Maintenance Hub", version=__version__)

_service: Optional[MaintenanceService] = None


def get_service() -> MaintenanceService:
    global _service
    if _service is None:
        _service = MaintenanceService.from_settings(settings)
    return _service


@app.on_event("startup")
def startup_event() -> None:  # pragma: no cover - side effect
    setup_logging(settings.log_level)
    get_service()


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _raise_service_error(error: ServiceError) -> None:
    status_map = {
        "validation_failed": status.HTTP_400_BAD_REQUEST,
        "not_found": status.HTTP_404_NOT_FOUND,
        "conflict": status.HTTP_409_CONFLICT,
        "unique_violation": status.HTTP_409_CONFLICT,
        "persistence_failed": status.HTTP_503_SERVICE_UNAVAILABLE,
    }
    http_status = status_map.get(error.code, status.HTTP_400_BAD_REQUEST)
    raise HTTPException(status_code=http_status, detail=error.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details: Dict[str, str] = {}
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"])
        details[location] = str(error["msg"]).removeprefix("Value error, ")
    error = ValidationError(MESSAGES["validation_failed"], details)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": error.to_dict()})


def _history_summary(entry: HistoryEntry) -> HistoryEntrySummary:
    return HistoryEntrySummary(id=entry.id, timestamp=entry.timestamp, description=entry.description)


def _split_names(raw: Optional[str]) -> Optional[List[str]]:
    if raw is None:
        return None
    return [item.strip() for item in raw.split(",") if item.strip()]


@app.get("/health", tags=["system"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


# === Contracts ==============================================================

@app.get("/contracts", response_model=list[Contract], tags=["contracts"])
def api_list_contracts(
    include_archived: bool = Query(True, alias="includeArchived"),
    service: MaintenanceService = Depends(get_service),
) -> list[Contract]:
    if include_archived:
        return service.list_contracts()
    return service.filtered_view().contracts


@app.post("/contracts", response_model=Contract, status_code=status.HTTP_201_CREATED, tags=["contracts"])
def api_create_contract(payload: ContractCreate, service: MaintenanceService = Depends(get_service)) -> Contract:
    try:
        return service.add_contract(payload)
    except ServiceError as error:
        _raise_service_error(error)


@app.post("/contracts/deduplicate", tags=["contracts"])
def api_remove_duplicate_contracts(service: MaintenanceService = Depends(get_service)) -> dict[str, int]:
    try:
        return {"removed": service.remove_duplicate_contracts()}
    except ServiceError as error:
        _raise_service_error(error)


@app.get("/contracts/{contract_id}", response_model=Contract, tags=["contracts"])
def api_get_contract(contract_id: str, service: MaintenanceService = Depends(get_service)) -> Contract:
    try:
        return service.get_contract(contract_id)
    except ServiceError as error:
        _raise_service_error(error)


@app.patch("/contracts/{contract_id}", response_model=Contract, tags=["contracts"])
def api_update_contract(
    contract_id: str,
    payload: ContractUpdate,
    service: MaintenanceService = Depends(get_service),
) -> Contract:
    try:
        return service.update_contract(contract_id, payload)
    except ServiceError as error:
        _raise_service_error(error)


@app.delete("/contracts/{contract_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["contracts"])
def api_delete_contract(contract_id: str, service: MaintenanceService = Depends(get_service)) -> Response:
    try:
        service.delete_contract(contract_id)
    except ServiceError as error:
        _raise_service_error(error)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/contracts/{contract_id}/archive", response_model=Contract, tags=["contracts"])
def api_archive_contract(contract_id: str, service: MaintenanceService = Depends(get_service)) -> Contract:
    try:
        return service.archive_contract(contract_id)
    except ServiceError as error:
        _raise_service_error(error)


@app.get("/contracts/{contract_id}/next-maintenance", response_model=NextMaintenance, tags=["contracts"])
def api_next_maintenance(contract_id: str, service: MaintenanceService = Depends(get_service)) -> NextMaintenance:
    try:
        return service.get_next_maintenance_date(contract_id)
    except ServiceError as error:
        _raise_service_error(error)


@app.post(
    "/contracts/{contract_id}/periods/{period_id}/adjust",
    response_model=Contract,
    tags=["contracts"],
)
def api_adjust_period(
    contract_id: str,
    period_id: str,
    payload: PeriodAdjustmentRequest,
    service: MaintenanceService = Depends(get_service),
) -> Contract:
    try:
        return service.adjust_maintenance_period(
            contract_id,
            period_id,
            payload.start_date,
            payload.end_date,
            payload.adjusted_by,
        )
    except ServiceError as error:
        _raise_service_error(error)


@app.post(
    "/contracts/{contract_id}/periods/{period_id}/status",
    response_model=Contract,
    tags=["contracts"],
)
def api_set_period_status(
    contract_id: str,
    period_id: str,
    payload: PeriodStatusRequest,
    service: MaintenanceService = Depends(get_service),
) -> Contract:
    try:
        return service.set_period_status(contract_id, period_id, payload.status)
    except ServiceError as error:
        _raise_service_error(error)


@app.get("/contracts/{contract_id}/reports", response_model=list[MaintenanceReport], tags=["reports"])
def api_contract_reports(contract_id: str, service: MaintenanceService = Depends(get_service)) -> list[MaintenanceReport]:
    return service.get_reports_by_contract(contract_id)


# === Engineers ==============================================================

@app.get("/engineers", response_model=list[ServiceEngineer], tags=["engineers"])
def api_list_engineers(service: MaintenanceService = Depends(get_service)) -> list[ServiceEngineer]:
    return service.list_engineers()


@app.post("/engineers", response_model=ServiceEngineer, status_code=status.HTTP_201_CREATED, tags=["engineers"])
def api_create_engineer(payload: EngineerCreate, service: MaintenanceService = Depends(get_service)) -> ServiceEngineer:
    try:
        return service.add_engineer(payload)
    except ServiceError as error:
        _raise_service_error(error)


@app.get("/engineers/{engineer_id}", response_model=ServiceEngineer, tags=["engineers"])
def api_get_engineer(engineer_id: str, service: MaintenanceService = Depends(get_service)) -> ServiceEngineer:
    try:
        return service.get_engineer(engineer_id)
    except ServiceError as error:
        _raise_service_error(error)


@app.patch("/engineers/{engineer_id}", response_model=ServiceEngineer, tags=["engineers"])
def api_update_engineer(
    engineer_id: str,
    payload: EngineerUpdate,
    service: MaintenanceService = Depends(get_service),
) -> ServiceEngineer:
    try:
        return service.update_engineer(engineer_id, payload)
    except ServiceError as error:
        _raise_service_error(error)


@app.delete("/engineers/{engineer_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["engineers"])
def api_delete_engineer(engineer_id: str, service: MaintenanceService = Depends(get_service)) -> Response:
    try:
        service.delete_engineer(engineer_id)
    except ServiceError as error:
        _raise_service_error(error)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/engineers/{engineer_id}/reports", response_model=list[MaintenanceReport], tags=["reports"])
def api_engineer_reports(engineer_id: str, service: MaintenanceService = Depends(get_service)) -> list[MaintenanceReport]:
    return service.get_reports_by_engineer(engineer_id)


# === Objects ================================================================

@app.get("/objects", response_model=list[ServiceObject], tags=["objects"])
def api_list_objects(service: MaintenanceService = Depends(get_service)) -> list[ServiceObject]:
    return service.list_objects()


@app.post("/objects", response_model=ServiceObject, status_code=status.HTTP_201_CREATED, tags=["objects"])
def api_create_object(payload: ServiceObjectCreate, service: MaintenanceService = Depends(get_service)) -> ServiceObject:
    try:
        return service.add_object(payload)
    except ServiceError as error:
        _raise_service_error(error)


@app.get("/objects/{object_id}", response_model=ServiceObject, tags=["objects"])
def api_get_object(object_id: str, service: MaintenanceService = Depends(get_service)) -> ServiceObject:
    try:
        return service.get_object(object_id)
    except ServiceError as error:
        _raise_service_error(error)


@app.patch("/objects/{object_id}", response_model=ServiceObject, tags=["objects"])
def api_update_object(
    object_id: str,
    payload: ServiceObjectUpdate,
    service: MaintenanceService = Depends(get_service),
) -> ServiceObject:
    try:
        return service.update_object(object_id, payload)
    except ServiceError as error:
        _raise_service_error(error)


@app.delete("/objects/{object_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["objects"])
def api_delete_object(object_id: str, service: MaintenanceService = Depends(get_service)) -> Response:
    try:
        service.delete_object(object_id)
    except ServiceError as error:
        _raise_service_error(error)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# === Tasks ==================================================================

@app.get("/tasks", response_model=list[MaintenanceTask], tags=["tasks"])
def api_list_tasks(service: MaintenanceService = Depends(get_service)) -> list[MaintenanceTask]:
    return service.list_tasks()


@app.post("/tasks", response_model=MaintenanceTask, status_code=status.HTTP_201_CREATED, tags=["tasks"])
def api_create_task(payload: MaintenanceTaskCreate, service: MaintenanceService = Depends(get_service)) -> MaintenanceTask:
    try:
        return service.add_task(payload)
    except ServiceError as error:
        _raise_service_error(error)


@app.post("/tasks/regenerate", response_model=RegenerationSummary, tags=["tasks"])
def api_regenerate_tasks(service: MaintenanceService = Depends(get_service)) -> RegenerationSummary:
    try:
        result = service.regenerate_all_tasks()
    except ServiceError as error:
        _raise_service_error(error)
    return RegenerationSummary(
        created=result.created,
        updated=result.updated,
        removed=result.removed,
        tasks=len(result.tasks),
        kanban_tasks=len(result.kanban_tasks),
    )


@app.get("/tasks/{task_id}", response_model=MaintenanceTask, tags=["tasks"])
def api_get_task(task_id: str, service: MaintenanceService = Depends(get_service)) -> MaintenanceTask:
    try:
        return service.get_task(task_id)
    except ServiceError as error:
        _raise_service_error(error)


@app.patch("/tasks/{task_id}", response_model=MaintenanceTask, tags=["tasks"])
def api_update_task(
    task_id: str,
    payload: MaintenanceTaskUpdate,
    service: MaintenanceService = Depends(get_service),
) -> MaintenanceTask:
    try:
        return service.update_task(task_id, payload)
    except ServiceError as error:
        _raise_service_error(error)


@app.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["tasks"])
def api_delete_task(task_id: str, service: MaintenanceService = Depends(get_service)) -> Response:
    try:
        service.delete_task(task_id)
    except ServiceError as error:
        _raise_service_error(error)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# === Reports ================================================================

@app.get("/reports", response_model=list[MaintenanceReport], tags=["reports"])
def api_list_reports(service: MaintenanceService = Depends(get_service)) -> list[MaintenanceReport]:
    return service.list_reports()


@app.post("/reports", response_model=MaintenanceReport, status_code=status.HTTP_201_CREATED, tags=["reports"])
def api_create_report(
    payload: MaintenanceReportCreate,
    service: MaintenanceService = Depends(get_service),
) -> MaintenanceReport:
    try:
        return service.create_maintenance_report(payload)
    except ServiceError as error:
        _raise_service_error(error)


@app.get("/reports/{report_id}", response_model=MaintenanceReport, tags=["reports"])
def api_get_report(report_id: str, service: MaintenanceService = Depends(get_service)) -> MaintenanceReport:
    try:
        return service.get_report(report_id)
    except ServiceError as error:
        _raise_service_error(error)


@app.patch("/reports/{report_id}", response_model=MaintenanceReport, tags=["reports"])
def api_update_report(
    report_id: str,
    payload: MaintenanceReportUpdate,
    service: MaintenanceService = Depends(get_service),
) -> MaintenanceReport:
    try:
        return service.update_report(report_id, payload)
    except ServiceError as error:
        _raise_service_error(error)


@app.delete("/reports/{report_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["reports"])
def api_delete_report(report_id: str, service: MaintenanceService = Depends(get_service)) -> Response:
    try:
        service.delete_report(report_id)
    except ServiceError as error:
        _raise_service_error(error)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# === Kanban =================================================================

@app.get("/kanban/tasks", response_model=dict[str, list[KanbanTask]], tags=["kanban"])
def api_task_board(service: MaintenanceService = Depends(get_service)) -> dict[str, list[KanbanTask]]:
    return service.kanban_board()


@app.post("/kanban/tasks/{task_id}/move", response_model=KanbanTask, tags=["kanban"])
def api_move_task_card(
    task_id: str,
    payload: TaskKanbanMoveRequest,
    service: MaintenanceService = Depends(get_service),
) -> KanbanTask:
    try:
        return service.move_kanban_task(task_id, payload.column, payload.position)
    except ServiceError as error:
        _raise_service_error(error)


@app.get("/kanban/contracts", response_model=dict[str, list[ContractKanbanTask]], tags=["kanban"])
def api_contract_board(service: MaintenanceService = Depends(get_service)) -> dict[str, list[ContractKanbanTask]]:
    return service.contract_board()


@app.post("/kanban/contracts/{contract_id}/move", response_model=ContractKanbanTask, tags=["kanban"])
def api_move_contract_card(
    contract_id: str,
    payload: ContractKanbanMoveRequest,
    service: MaintenanceService = Depends(get_service),
) -> ContractKanbanTask:
    try:
        return service.move_contract_kanban_task(contract_id, payload.column, payload.position)
    except ServiceError as error:
        _raise_service_error(error)


# === Maintenance ============================================================

@app.get("/maintenance/upcoming", response_model=list[UpcomingMaintenance], tags=["maintenance"])
def api_upcoming_maintenance(
    within_days: Optional[int] = Query(None, alias="withinDays", ge=0),
    service: MaintenanceService = Depends(get_service),
) -> list[UpcomingMaintenance]:
    return service.upcoming_maintenance(within_days)


@app.get("/view", tags=["data"])
def api_filtered_view(
    include_archived: bool = Query(False, alias="includeArchived"),
    service: MaintenanceService = Depends(get_service),
) -> dict[str, list[dict]]:
    view = service.filtered_view(include_archived)
    return {
        "contracts": [dump_record(item) for item in view.contracts],
        "objects": [dump_record(item) for item in view.objects],
        "engineers": [dump_record(item) for item in view.engineers],
        "tasks": [dump_record(item) for item in view.tasks],
        "kanbanTasks": [dump_record(item) for item in view.kanban_tasks],
        "contractKanbanTasks": [dump_record(item) for item in view.contract_kanban_tasks],
        "reports": [dump_record(item) for item in view.reports],
    }


# === History ================================================================

@app.get("/history", response_model=HistoryStatus, tags=["history"])
def api_history(service: MaintenanceService = Depends(get_service)) -> HistoryStatus:
    return HistoryStatus(
        can_undo=service.can_undo,
        can_redo=service.can_redo,
        undo=[_history_summary(entry) for entry in service.recent_actions(service.history.limit)],
        redo=[_history_summary(entry) for entry in reversed(service.history.redo_entries)],
    )


@app.post("/history/undo", response_model=Optional[HistoryEntrySummary], tags=["history"])
def api_undo(service: MaintenanceService = Depends(get_service)) -> Optional[HistoryEntrySummary]:
    try:
        entry = service.undo()
    except ServiceError as error:
        _raise_service_error(error)
    return _history_summary(entry) if entry else None


@app.post("/history/redo", response_model=Optional[HistoryEntrySummary], tags=["history"])
def api_redo(service: MaintenanceService = Depends(get_service)) -> Optional[HistoryEntrySummary]:
    try:
        entry = service.redo()
    except ServiceError as error:
        _raise_service_error(error)
    return _history_summary(entry) if entry else None


@app.delete("/history", status_code=status.HTTP_204_NO_CONTENT, tags=["history"])
def api_clear_history(service: MaintenanceService = Depends(get_service)) -> Response:
    service.clear_history()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# === Data transfer ==========================================================

@app.get("/data/export", tags=["data"])
def api_export_data(
    collections: Optional[str] = Query(None, description="Comma separated collection names or 'all'"),
    service: MaintenanceService = Depends(get_service),
) -> Response:
    try:
        names = _split_names(collections)
        payload = service.export_data() if names is None else service.export_selected_data(names)
    except ServiceError as error:
        _raise_service_error(error)
    filename = backup_filename(service.today())
    return Response(
        content=dumps(payload),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/data/import", tags=["data"])
def api_import_data(
    payload: Dict[str, Any] = Body(...),
    collections: Optional[str] = Query(None, description="Comma separated collection names or 'all'"),
    service: MaintenanceService = Depends(get_service),
) -> dict[str, list[str]]:
    try:
        names = _split_names(collections)
        if names is None:
            imported = service.import_data(payload)
        else:
            imported = service.import_selected_data(payload, names)
    except ServiceError as error:
        _raise_service_error(error)
    return {"imported": imported}


@app.post("/data/reset", status_code=status.HTTP_204_NO_CONTENT, tags=["data"])
def api_reset_data(service: MaintenanceService = Depends(get_service)) -> Response:
    try:
        service.reset_data()
    except ServiceError as error:
        _raise_service_error(error)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/data/flush", tags=["data"])
def api_flush_data(service: MaintenanceService = Depends(get_service)) -> dict[str, list[str]]:
    try:
        return {"flushed": service.flush()}
    except ServiceError as error:
        _raise_service_error(error)
