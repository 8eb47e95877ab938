from __future__ import annotations

from datetime import date

import pytest

from maintenance_hub.errors import ValidationError
from maintenance_hub.schemas import (
    Contract,
    Department,
    MaintenancePeriod,
    MaintenanceReportCreate,
    PeriodStatus,
    ServiceEngineer,
    dump_record,
    validate_payload,
)


def _contract(**overrides):
    payload = {
        "id": "c-1",
        "contractNumber": "АТ-001/2024",
        "objectId": "1",
        "clientName": "АТ «Антонов»",
        "startDate": "2024-01-01",
        "endDate": "2024-12-31",
        "workTypes": ["КОНД", "ДБЖ"],
    }
    payload.update(overrides)
    return payload


def test_contract_migrates_legacy_fields():
    contract = validate_payload(
        Contract,
        _contract(
            assignedEngineerId="2",
            maintenanceStartDate="01.03.2024",
            maintenanceEndDate="15.03.2024",
        ),
    )

    assert contract.assigned_engineer_ids == ["2"]
    assert len(contract.maintenance_periods) == 1
    period = contract.maintenance_periods[0]
    assert period.id == "1"
    assert period.start_date == date(2024, 3, 1)
    assert period.end_date == date(2024, 3, 15)
    assert period.status == PeriodStatus.PLANNED
    assert period.departments == [Department.KOND, Department.DBZH]


def test_period_without_departments_defaults_to_kond():
    contract = validate_payload(
        Contract,
        _contract(
            workTypes=["Вентиляція"],
            maintenancePeriods=[{"id": "1", "startDate": "2024-03-01", "endDate": "2024-03-15"}],
        ),
    )
    assert contract.maintenance_periods[0].departments == [Department.KOND]


def test_period_single_department_is_migrated():
    period = MaintenancePeriod.model_validate(
        {"id": 3, "startDate": "2024-03-01", "endDate": "2024-03-15", "department": "ДГУ", "status": None}
    )
    assert period.id == "3"
    assert period.departments == [Department.DGU]
    assert period.status == PeriodStatus.PLANNED


def test_contract_rejects_inverted_dates():
    with pytest.raises(ValidationError) as exc_info:
        validate_payload(Contract, _contract(startDate="2024-12-31", endDate="2024-01-01"))
    assert exc_info.value.code == "validation_failed"
    assert exc_info.value.message == "Невірні дати договору."


def test_contract_requires_number():
    with pytest.raises(ValidationError) as exc_info:
        validate_payload(Contract, _contract(contractNumber="   "))
    assert exc_info.value.message == "Номер договору є обов'язковим."


def test_contract_rejects_duplicate_period_ids():
    periods = [
        {"id": "1", "startDate": "2024-03-01", "endDate": "2024-03-15"},
        {"id": "1", "startDate": "2024-06-01", "endDate": "2024-06-15"},
    ]
    with pytest.raises(ValidationError):
        validate_payload(Contract, _contract(maintenancePeriods=periods))


def test_adjusted_range_must_be_increasing():
    with pytest.raises(ValidationError):
        validate_payload(
            MaintenancePeriod,
            {
                "id": "1",
                "startDate": "2024-03-01",
                "endDate": "2024-03-15",
                "adjustedStartDate": "2024-03-10",
                "adjustedEndDate": "2024-03-10",
                "departments": ["КОНД"],
            },
        )


def test_engineer_legacy_specialization_string():
    engineer = validate_payload(ServiceEngineer, {"id": "1", "name": "Інженер", "specialization": "Чилери"})
    assert engineer.specialization == [Department.KOND]
    assert engineer.phone == ""


def test_engineer_requires_specialization():
    with pytest.raises(ValidationError) as exc_info:
        validate_payload(ServiceEngineer, {"id": "1", "name": "Інженер", "specialization": []})
    assert exc_info.value.message == "Спеціалізація є обов'язковою."


def test_report_times_are_normalized_and_ordered():
    report = validate_payload(
        MaintenanceReportCreate,
        {
            "contractId": "1",
            "engineerId": "1",
            "completedDate": "15.03.2024",
            "actualStartTime": "9:05",
            "actualEndTime": "12:00",
            "department": "КОНД",
        },
    )
    assert report.actual_start_time == "09:05"

    with pytest.raises(ValidationError):
        validate_payload(
            MaintenanceReportCreate,
            {
                "contractId": "1",
                "engineerId": "1",
                "completedDate": "2024-03-15",
                "actualStartTime": "12:00",
                "actualEndTime": "09:00",
                "department": "КОНД",
            },
        )


def test_dump_record_uses_camel_case_and_iso_dates():
    contract = validate_payload(
        Contract,
        _contract(maintenancePeriods=[{"id": "1", "startDate": "2024-03-01", "endDate": "2024-03-15"}]),
    )
    record = dump_record(contract)

    assert record["contractNumber"] == "АТ-001/2024"
    assert record["startDate"] == "2024-01-01"
    assert record["maintenancePeriods"][0]["departments"] == ["КОНД", "ДБЖ"]
    assert "contractValue" not in record
    assert validate_payload(Contract, record) == contract
