from __future__ import annotations

from datetime import date

import pytest

from maintenance_hub.errors import NotFoundError, ValidationError
from maintenance_hub.schemas import Contract, MaintenanceDueStatus, PeriodStatus, TaskStatus, TaskType
from maintenance_hub.services.scheduling import get_next_maintenance_date

TODAY = date(2025, 1, 5)


def _periods(service, contract_id):
    return {period.id: period for period in service.get_contract(contract_id).maintenance_periods}


def _derived(service, contract_id):
    return [task for task in service.list_tasks() if task.contract_id == contract_id and task.maintenance_period_id]


def test_adjusting_a_period_moves_its_task(service, make_contract):
    contract = make_contract("C1")

    result = service.regenerate_all_tasks()
    tasks = _derived(service, contract.id)
    assert len(tasks) == 1
    assert tasks[0].scheduled_date == date(2025, 1, 1)
    assert result.created == 0

    service.adjust_maintenance_period(contract.id, "P1", "2025-01-10", "2025-02-05", "Manager")
    service.regenerate_all_tasks()

    moved = _derived(service, contract.id)
    assert len(moved) == 1
    assert moved[0].id == tasks[0].id
    assert moved[0].scheduled_date == date(2025, 1, 10)

    period = _periods(service, contract.id)["P1"]
    assert period.status == PeriodStatus.ADJUSTED
    assert period.adjusted_by == "Manager"
    assert period.adjusted_date == TODAY
    assert period.start_date == date(2025, 1, 1)


def test_regeneration_is_idempotent(seeded_service):
    first = seeded_service.regenerate_all_tasks()
    second = seeded_service.regenerate_all_tasks()

    assert [task.model_dump() for task in first.tasks] == [task.model_dump() for task in second.tasks]
    assert (second.created, second.updated, second.removed) == (0, 0, 0)
    pairs = [(task.contract_id, task.maintenance_period_id) for task in second.tasks]
    assert len(pairs) == len(set(pairs)) == 4


def test_seed_tasks_follow_derivation_rules(seeded_service):
    tasks = sorted(seeded_service.list_tasks(), key=lambda task: task.maintenance_period_id)

    assert [task.type for task in tasks] == [TaskType.SEASONAL, TaskType.ROUTINE, TaskType.ROUTINE, TaskType.ROUTINE]
    assert {task.duration for task in tasks} == {6}
    assert {task.engineer_id for task in tasks} == {"1"}
    assert {task.object_id for task in tasks} == {"1"}
    assert tasks[0].scheduled_date == date(2024, 3, 1)


def test_engineer_resolution_prefers_matching_specialization(service, site, engineer):
    ups_engineer = service.add_engineer({"name": "Олена", "specialization": ["ДБЖ"]})
    generator_engineer = service.add_engineer({"name": "Андрій", "specialization": ["ДГУ"]})

    contract = service.add_contract(
        {
            "contractNumber": "C-ENG",
            "objectId": site.id,
            "clientName": "Клієнт",
            "startDate": "2025-01-01",
            "endDate": "2025-12-31",
            "assignedEngineerIds": [engineer.id, ups_engineer.id],
            "maintenancePeriods": [
                {"id": "1", "startDate": "2025-02-01", "endDate": "2025-02-10", "departments": ["ДБЖ"]},
                {"id": "2", "startDate": "2025-05-01", "endDate": "2025-05-10", "departments": ["ДГУ"]},
            ],
        }
    )

    by_period = {task.maintenance_period_id: task for task in _derived(service, contract.id)}
    assert by_period["1"].engineer_id == ups_engineer.id
    # Nobody assigned covers ДГУ, so the first assigned engineer takes it.
    assert by_period["2"].engineer_id == engineer.id
    assert generator_engineer.id not in {task.engineer_id for task in by_period.values()}


def test_unassigned_contract_falls_back_to_any_matching_engineer(service, site, engineer):
    contract = service.add_contract(
        {
            "contractNumber": "C-FREE",
            "objectId": site.id,
            "clientName": "Клієнт",
            "startDate": "2025-01-01",
            "endDate": "2025-12-31",
            "maintenancePeriods": [
                {"id": "1", "startDate": "2025-02-01", "endDate": "2025-02-10", "departments": ["КОНД"]},
                {"id": "2", "startDate": "2025-03-01", "endDate": "2025-03-10", "departments": ["ДГУ"]},
            ],
        }
    )

    by_period = {task.maintenance_period_id: task for task in _derived(service, contract.id)}
    assert by_period["1"].engineer_id == engineer.id
    assert by_period["2"].engineer_id == ""


def test_removed_period_drops_its_task(service, make_contract):
    contract = make_contract(
        "C2",
        maintenancePeriods=[
            {"id": "P1", "startDate": "2025-01-01", "endDate": "2025-01-31"},
            {"id": "P2", "startDate": "2025-04-01", "endDate": "2025-04-15"},
        ],
    )
    assert len(_derived(service, contract.id)) == 2

    service.update_contract(
        contract.id,
        {"maintenancePeriods": [{"id": "P2", "startDate": "2025-04-01", "endDate": "2025-04-15"}]},
    )

    remaining = _derived(service, contract.id)
    assert [task.maintenance_period_id for task in remaining] == ["P2"]
    task_ids = {task.id for task in service.list_tasks()}
    assert {card.task_id for card in service.list_kanban_tasks()} == task_ids


def test_adhoc_tasks_survive_regeneration(service, make_contract):
    contract = make_contract("C3")
    adhoc = service.add_task({"contractId": contract.id, "scheduledDate": "2025-01-20", "type": "emergency"})

    service.regenerate_all_tasks()

    assert service.get_task(adhoc.id).type == TaskType.EMERGENCY
    assert service.get_task(adhoc.id).object_id == contract.object_id


def test_adjust_rejects_inverted_window(service, make_contract):
    contract = make_contract("C4")
    before = service.get_contract(contract.id)

    with pytest.raises(ValidationError):
        service.adjust_maintenance_period(contract.id, "P1", "2025-01-20", "2025-01-20")
    with pytest.raises(ValidationError):
        service.adjust_maintenance_period(contract.id, "P1", "2025-02-01", "2025-01-20")

    assert service.get_contract(contract.id) == before


def test_adjust_unknown_targets(service, make_contract):
    contract = make_contract("C5")
    with pytest.raises(NotFoundError):
        service.adjust_maintenance_period("missing", "P1", "2025-01-10", "2025-01-20")
    with pytest.raises(NotFoundError):
        service.adjust_maintenance_period(contract.id, "P9", "2025-01-10", "2025-01-20")


def test_adjust_uses_default_author_and_keeps_later_status(service, make_contract):
    contract = make_contract(
        "C6",
        maintenancePeriods=[{"id": "P1", "startDate": "2025-01-01", "endDate": "2025-01-31", "status": "in_progress"}],
    )

    service.adjust_maintenance_period(contract.id, "P1", "2025-01-03", "2025-01-25")

    period = _periods(service, contract.id)["P1"]
    assert period.adjusted_by == "Начальник"
    assert period.status == PeriodStatus.IN_PROGRESS


def test_period_status_moves_forward_only(service, make_contract):
    contract = make_contract("C7")

    service.set_period_status(contract.id, "P1", "in_progress")
    with pytest.raises(ValidationError):
        service.set_period_status(contract.id, "P1", "planned")
    with pytest.raises(ValidationError):
        service.update_contract(
            contract.id,
            {"maintenancePeriods": [{"id": "P1", "startDate": "2025-01-01", "endDate": "2025-01-31", "status": "planned"}]},
        )

    assert _periods(service, contract.id)["P1"].status == PeriodStatus.IN_PROGRESS


def test_archived_contract_loses_derived_tasks(service, make_contract):
    contract = make_contract("C8")
    assert _derived(service, contract.id)

    service.archive_contract(contract.id)
    service.regenerate_all_tasks()

    assert _derived(service, contract.id) == []


def _contract_with(periods):
    return Contract.model_validate(
        {
            "id": "c",
            "contractNumber": "N",
            "objectId": "o",
            "clientName": "Клієнт",
            "startDate": "2024-01-01",
            "endDate": "2025-12-31",
            "workTypes": ["КОНД"],
            "maintenancePeriods": periods,
        }
    )


def test_next_maintenance_without_periods():
    result = get_next_maintenance_date(_contract_with([]), TODAY)
    assert (result.display, result.status) == ("Не вказано", MaintenanceDueStatus.DUE)
    assert result.period_id is None


def test_next_maintenance_when_everything_is_done():
    contract = _contract_with([{"id": "1", "startDate": "2024-03-01", "endDate": "2024-03-15", "status": "completed"}])
    result = get_next_maintenance_date(contract, TODAY)
    assert (result.display, result.status) == ("ТО завершено", MaintenanceDueStatus.DUE)


@pytest.mark.parametrize(
    "start, end, expected",
    [
        ("2025-01-20", "2025-01-31", MaintenanceDueStatus.UPCOMING),
        ("2025-01-12", "2025-01-31", MaintenanceDueStatus.DUE),
        ("2025-01-01", "2025-01-10", MaintenanceDueStatus.DUE),
        ("2024-12-01", "2024-12-15", MaintenanceDueStatus.OVERDUE),
    ],
)
def test_next_maintenance_status(start, end, expected):
    contract = _contract_with([{"id": "1", "startDate": start, "endDate": end}])
    assert get_next_maintenance_date(contract, TODAY).status == expected


def test_next_maintenance_picks_earliest_pending_end_and_uses_adjusted_range():
    contract = _contract_with(
        [
            {"id": "1", "startDate": "2024-12-01", "endDate": "2024-12-15", "status": "completed"},
            {
                "id": "2",
                "startDate": "2025-03-01",
                "endDate": "2025-03-15",
                "adjustedStartDate": "2025-03-05",
                "adjustedEndDate": "2025-03-20",
            },
            {"id": "3", "startDate": "2025-06-01", "endDate": "2025-06-15"},
        ]
    )

    result = get_next_maintenance_date(contract, TODAY)

    assert result.display == "05.03.2025 - 20.03.2025"
    assert result.status == MaintenanceDueStatus.UPCOMING
    assert result.period_id == "2"
    assert result.model_dump(by_alias=True)["date"] == "05.03.2025 - 20.03.2025"


def test_upcoming_maintenance_window(service, make_contract):
    contract = make_contract(
        "C9",
        maintenancePeriods=[
            {"id": "P1", "startDate": "2025-01-08", "endDate": "2025-01-20"},
            {"id": "P2", "startDate": "2025-03-01", "endDate": "2025-03-10"},
        ],
    )
    archived = make_contract(
        "C10",
        maintenancePeriods=[{"id": "P1", "startDate": "2025-01-06", "endDate": "2025-01-09"}],
    )
    service.archive_contract(archived.id)

    items = service.upcoming_maintenance(within_days=7)

    assert [(item.contract_id, item.period_id) for item in items] == [(contract.id, "P1")]
    assert items[0].days_until_start == 3
    assert items[0].status == MaintenanceDueStatus.DUE
    assert len(service.upcoming_maintenance(within_days=60)) == 2


def test_completed_period_keeps_task_status_for_existing_task(service, make_contract):
    contract = make_contract("C11")
    service.set_period_status(contract.id, "P1", "completed")
    task = _derived(service, contract.id)[0]
    assert task.status == TaskStatus.PLANNED
