#!/usr/bin/env python
from __future__ import annotations

import argparse
from datetime import date
from pathlib import Path

from maintenance_hub.config import settings
from maintenance_hub.errors import ServiceError
from maintenance_hub.logging_config import setup_logging
from maintenance_hub.services.engine import MaintenanceService
from maintenance_hub.services.transfer import backup_filename, dumps


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Export the maintenance data to a JSON backup or import it back."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    export_parser = subparsers.add_parser("export", help="Зберегти дані у файл резервної копії.")
    export_parser.add_argument(
        "--output",
        help="Шлях до файлу (за замовчуванням maintenance_backup_<дата>.json у поточній теці).",
    )
    export_parser.add_argument(
        "--collections",
        default="all",
        help="Колекції через кому, наприклад contracts,engineers (за замовчуванням all).",
    )

    import_parser = subparsers.add_parser("import", help="Відновити дані з файлу резервної копії.")
    import_parser.add_argument("path", help="Файл резервної копії у форматі JSON.")
    import_parser.add_argument(
        "--collections",
        default="all",
        help="Які колекції імпортувати з файлу (за замовчуванням all).",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    setup_logging(settings.log_level)
    service = MaintenanceService.from_settings(settings)
    names = [item.strip() for item in args.collections.split(",") if item.strip()]

    try:
        if args.command == "export":
            payload = service.export_selected_data(names) if names != ["all"] else service.export_data()
            output = Path(args.output or backup_filename(date.today()))
            output.write_text(dumps(payload), encoding="utf-8")
            print(f"Exported to {output}")
            return

        source = Path(args.path)
        if not source.exists():
            raise SystemExit(f"Файл не знайдено: {source}")
        imported = service.import_selected_data(source.read_text(encoding="utf-8"), names)
        print(f"Imported: {', '.join(imported)}")
    except ServiceError as error:
        raise SystemExit(f"{error.code}: {error.message}") from error


if __name__ == "__main__":
    main()
