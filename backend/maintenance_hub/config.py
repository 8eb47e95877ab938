from __future__ import annotations

from pathlib import Path
from typing import List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_DATA_DIR = BASE_DIR / "data"
DEFAULT_SQLITE_PATH = DEFAULT_DATA_DIR / "maintenance.db"


class Settings(BaseSettings):
    storage_backend: Literal["sqlite", "json", "memory"] = Field(default="sqlite")
    database_url: str = Field(default=f"sqlite:///{DEFAULT_SQLITE_PATH}")
    data_dir: Path = Field(default=DEFAULT_DATA_DIR)
    history_limit: int = Field(default=50, ge=1)
    due_window_days: int = Field(default=7, ge=0)
    default_adjusted_by: str = Field(default="Начальник")
    seed_on_empty: bool = Field(default=True)
    log_level: str = Field(default="INFO")
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:8081",
            "http://127.0.0.1:8081",
        ]
    )

    model_config = SettingsConfigDict(
        env_prefix="MAINTENANCE_",
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
