"""Default data installed on first start and by ``reset_data``."""

from __future__ import annotations

from copy import deepcopy

DEFAULT_ENGINEERS = [
    {"id": "1", "name": "Інженер 1", "phone": "", "email": "", "specialization": ["КОНД"], "color": "#3B82F6"},
    {"id": "2", "name": "Інженер 2", "phone": "", "email": "", "specialization": ["КОНД", "ДБЖ"], "color": "#10B981"},
    {"id": "3", "name": "Інженер 3", "phone": "", "email": "", "specialization": ["ДГУ"], "color": "#F59E0B"},
]

DEFAULT_OBJECTS = [
    {
        "id": "1",
        "name": "Головний офіс",
        "address": "м. Київ, вул. Академіка Туполєва, 1",
        "clientName": "АТ «Антонов»",
        "clientContact": "+380 44 206-8000",
        "equipmentCount": 15,
        "notes": "VRF система Daikin, ДБЖ APC Smart-UPS 3000VA",
        "contactPersonName": "Іванов Іван Іванович",
        "contactPersonPhone": "+380 44 206-8001",
    }
]

DEFAULT_CONTRACTS = [
    {
        "id": "1",
        "contractNumber": "АТ-001/2024",
        "clientName": "АТ «Антонов»",
        "objectId": "1",
        "address": "м. Київ, вул. Академіка Туполєва, 1",
        "startDate": "2024-01-01",
        "endDate": "2024-12-31",
        "workTypes": ["КОНД", "ДБЖ"],
        "assignedEngineerIds": ["1", "2"],
        "status": "active",
        "maintenancePeriods": [
            {"id": "1", "startDate": "2024-03-01", "endDate": "2024-03-15", "status": "planned"},
            {"id": "2", "startDate": "2024-06-01", "endDate": "2024-06-15", "status": "planned"},
            {"id": "3", "startDate": "2024-09-01", "endDate": "2024-09-15", "status": "planned"},
            {"id": "4", "startDate": "2024-12-01", "endDate": "2024-12-15", "status": "planned"},
        ],
    }
]


def default_state() -> dict:
    """Seed collections in export form. Tasks and boards are derived afterwards."""
    return {
        "contracts": deepcopy(DEFAULT_CONTRACTS),
        "objects": deepcopy(DEFAULT_OBJECTS),
        "engineers": deepcopy(DEFAULT_ENGINEERS),
        "tasks": [],
        "kanbanTasks": [],
        "contractKanbanTasks": [],
        "reports": [],
    }
