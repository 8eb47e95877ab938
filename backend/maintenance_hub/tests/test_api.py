from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from maintenance_hub.main import app, get_service


@pytest.fixture()
def client(seeded_service):
    app.dependency_overrides[get_service] = lambda: seeded_service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _contract_body(**overrides):
    body = {
        "contractNumber": "API-1",
        "objectId": "1",
        "clientName": "АТ «Антонов»",
        "startDate": "2025-01-01",
        "endDate": "2025-12-31",
        "workTypes": ["КОНД"],
        "maintenancePeriods": [{"id": "1", "startDate": "2025-02-01", "endDate": "2025-02-14"}],
    }
    body.update(overrides)
    return body


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_create_contract_derives_tasks(client):
    response = client.post("/contracts", json=_contract_body())

    assert response.status_code == 201
    contract = response.json()
    assert contract["maintenancePeriods"][0]["departments"] == ["КОНД"]

    tasks = [task for task in client.get("/tasks").json() if task["contractId"] == contract["id"]]
    assert [(task["maintenancePeriodId"], task["scheduledDate"]) for task in tasks] == [("1", "2025-02-01")]


def test_invalid_body_is_a_bad_request(client):
    response = client.post("/contracts", json={"contractNumber": "API-2"})

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["code"] == "validation_failed"
    assert detail["details"]


def test_duplicate_number_conflicts(client):
    response = client.post("/contracts", json=_contract_body(contractNumber="ат-001/2024"))

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "unique_violation"


def test_missing_entities_are_not_found(client):
    assert client.get("/contracts/missing").status_code == 404
    response = client.post("/contracts/1/periods/9/adjust", json={"startDate": "2024-03-02", "endDate": "2024-03-20"})
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "not_found"


def test_adjust_period(client):
    bad = client.post("/contracts/1/periods/1/adjust", json={"startDate": "2024-03-20", "endDate": "2024-03-02"})
    assert bad.status_code == 400

    response = client.post(
        "/contracts/1/periods/1/adjust",
        json={"startDate": "04.03.2024", "endDate": "2024-03-18", "adjustedBy": "Менеджер"},
    )
    assert response.status_code == 200
    period = response.json()["maintenancePeriods"][0]
    assert (period["adjustedStartDate"], period["adjustedEndDate"]) == ("2024-03-04", "2024-03-18")
    assert period["status"] == "adjusted"
    assert period["adjustedBy"] == "Менеджер"


def test_next_maintenance_uses_date_key(client):
    response = client.get("/contracts/1/next-maintenance")

    assert response.status_code == 200
    assert response.json()["date"] == "01.03.2024 - 15.03.2024"
    assert response.json()["status"] == "overdue"
    assert response.json()["periodId"] == "1"


def test_engineer_in_use_conflicts(client):
    response = client.delete("/engineers/1")

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "conflict"


def test_move_contract_card_and_undo(client):
    response = client.post("/kanban/contracts/1/move", json={"column": "completed"})

    assert response.status_code == 200
    assert response.json()["column"] == "completed"
    assert client.get("/contracts/1").json()["status"] == "completed"
    board = client.get("/kanban/contracts").json()
    assert [card["contractId"] for card in board["completed"]] == ["1"]

    assert client.post("/kanban/contracts/1/move", json={"column": "nowhere"}).status_code == 400

    history = client.get("/history").json()
    assert history["canUndo"] is True
    undone = client.post("/history/undo").json()
    assert undone["description"].startswith("Договір №АТ-001/2024")
    assert client.get("/contracts/1").json()["status"] == "active"


def test_persistence_failure_is_service_unavailable(client, store):
    store.fail_writes = True

    response = client.post("/engineers", json={"name": "Оксана", "specialization": ["ДГУ"]})

    assert response.status_code == 503
    assert response.json()["detail"]["code"] == "persistence_failed"
    assert any(engineer["name"] == "Оксана" for engineer in client.get("/engineers").json())

    store.fail_writes = False
    assert client.post("/data/flush").json() == {"flushed": ["engineers"]}


def test_export_download(client):
    response = client.get("/data/export")

    assert response.status_code == 200
    assert response.headers["content-disposition"] == 'attachment; filename="maintenance_backup_2025-01-05.json"'
    payload = response.json()
    assert payload["version"] == "1.0"
    assert len(payload["contracts"]) == 1

    selected = client.get("/data/export", params={"collections": "engineers,objects"}).json()
    assert selected["dataTypes"] == ["objects", "engineers"]
    assert client.get("/data/export", params={"collections": "invoices"}).status_code == 400


def test_import_selected_collections(client):
    response = client.post(
        "/data/import",
        params={"collections": "engineers"},
        json={"engineers": [{"id": "9", "name": "Новий", "specialization": ["ДБЖ"]}]},
    )

    assert response.status_code == 200
    assert response.json() == {"imported": ["engineers"]}
    assert [engineer["id"] for engineer in client.get("/engineers").json()] == ["9"]

    broken = client.post("/data/import", json={"engineers": [{"id": "10"}]})
    assert broken.status_code == 400


def test_view_hides_archived(client):
    client.post("/contracts/1/archive")

    assert client.get("/view").json()["contracts"] == []
    assert len(client.get("/view", params={"includeArchived": "true"}).json()["contracts"]) == 1
