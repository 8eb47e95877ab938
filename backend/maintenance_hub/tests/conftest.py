from __future__ import annotations

from collections import Counter, defaultdict
from datetime import date, datetime

import pytest

from maintenance_hub.services.engine import MaintenanceService
from maintenance_hub.storage import MemoryStore

TODAY = date(2025, 1, 5)
NOW = datetime(2025, 1, 5, 9, 30)


def assert_board_invariants(cards, ref_attr):
    by_column = defaultdict(list)
    for card in cards:
        by_column[card.column].append(card.order)
    for orders in by_column.values():
        assert sorted(orders) == list(range(len(orders)))
    refs = Counter(getattr(card, ref_attr) for card in cards)
    assert all(count == 1 for count in refs.values())


def build_service(store: MemoryStore, *, seed: bool = False, history_limit: int = 50) -> MaintenanceService:
    service = MaintenanceService(
        store,
        history_limit=history_limit,
        clock=lambda: TODAY,
        now=lambda: NOW,
    )
    service.load(seed_on_empty=seed)
    return service


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def service(store):
    return build_service(store)


@pytest.fixture()
def seeded_service(store):
    return build_service(store, seed=True)


@pytest.fixture()
def engineer(service):
    return service.add_engineer({"name": "Петро Коваль", "specialization": ["КОНД"], "phone": "+380 67 000-0000"})


@pytest.fixture()
def site(service):
    return service.add_object(
        {
            "name": "Бізнес-центр",
            "address": "м. Львів, вул. Городоцька, 10",
            "clientName": "ТОВ «Клімат»",
            "equipmentCount": 4,
        }
    )


@pytest.fixture()
def make_contract(service, engineer, site):
    def _make(number: str = "C1", **overrides):
        payload = {
            "contractNumber": number,
            "objectId": site.id,
            "clientName": "ТОВ «Клімат»",
            "startDate": "2025-01-01",
            "endDate": "2025-12-31",
            "assignedEngineerIds": [engineer.id],
            "workTypes": ["КОНД"],
            "maintenancePeriods": [
                {"id": "P1", "startDate": "2025-01-01", "endDate": "2025-01-31", "status": "planned"},
            ],
        }
        payload.update(overrides)
        return service.add_contract(payload)

    return _make
