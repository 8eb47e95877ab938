from __future__ import annotations

from dataclasses import dataclass


MESSAGES = {
    # Договори
    "contract_not_found": "Договір не знайдено.",
    "contract_number_exists": "Договір з таким номером вже існує.",
    "contract_number_required": "Номер договору є обов'язковим.",
    "client_name_required": "Назва клієнта є обов'язковою.",
    "invalid_contract_dates": "Невірні дати договору.",
    # Об'єкти
    "object_not_found": "Об'єкт не знайдено.",
    "object_in_use": "Неможливо видалити об'єкт. Він використовується в договорах.",
    # Інженери
    "engineer_not_found": "Інженера не знайдено.",
    "engineer_name_required": "Ім'я інженера є обов'язковим.",
    "engineer_assigned": "Неможливо видалити інженера. Він призначений до активних договорів.",
    "specialization_required": "Спеціалізація є обов'язковою.",
    # Задачі
    "task_not_found": "Задачу не знайдено.",
    "task_is_derived": "Задача сформована з періоду ТО і керується графіком.",
    "invalid_task_date": "Невірна дата задачі.",
    # Звіти
    "report_not_found": "Звіт не знайдено.",
    "invalid_report_data": "Невірні дані звіту.",
    # Періоди ТО
    "period_not_found": "Період ТО не знайдено.",
    "invalid_maintenance_dates": "Невірні дати періоду ТО.",
    "period_status_backwards": "Статус періоду ТО не можна повернути назад.",
    # Канбан
    "kanban_card_not_found": "Картку канбану не знайдено.",
    # Дані
    "invalid_date": "Невірний формат дати.",
    "validation_failed": "Невірні дані.",
    "save_failed": "Не вдалося зберегти дані.",
    "load_failed": "Не вдалося завантажити дані.",
    "invalid_file_format": "Невірний формат файлу даних.",
    "import_failed": "Не вдалося імпортувати дані.",
    "unknown_collection": "Невідомий тип даних.",
    "no_collections_selected": "Не вибрано жодного типу даних.",
}


@dataclass
class ServiceError(Exception):
    code: str
    message: str
    details: dict | None = None

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict:
        payload = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ServiceError):
    """Malformed input, rejected before any state is touched."""

    def __init__(self, message: str, details: dict | None = None, *, code: str = "validation_failed") -> None:
        super().__init__(code, message, details)


class NotFoundError(ServiceError):
    def __init__(self, message: str, details: dict | None = None, *, code: str = "not_found") -> None:
        super().__init__(code, message, details)


class ConflictError(ServiceError):
    """Blocked by live references or a uniqueness rule."""

    def __init__(self, message: str, details: dict | None = None, *, code: str = "conflict") -> None:
        super().__init__(code, message, details)


class PersistenceError(ServiceError):
    """The store failed. In-memory state is already applied; retry the flush, not the operation."""

    def __init__(self, message: str, details: dict | None = None, *, code: str = "persistence_failed") -> None:
        super().__init__(code, message, details)
