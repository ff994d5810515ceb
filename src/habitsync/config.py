"""Application configuration objects and helpers."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    """Interpret environment variable values as booleans."""

    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


class BaseConfig:
    """Base configuration shared across environments."""

    APP_NAME = "habitsync"
    DB_FILENAME = "habitsync.db"
    SQLITE_PRAGMAS = {"journal_mode": "wal", "foreign_keys": "on"}

    def __init__(self) -> None:
        self.API_URL = os.getenv("HABITSYNC_API_URL", "http://localhost:3001").rstrip("/")
        self.API_TOKEN = os.getenv("HABITSYNC_API_TOKEN")
        self.REQUEST_TIMEOUT = _env_float("HABITSYNC_REQUEST_TIMEOUT", 10.0)
        self.SYNC_INTERVAL = _env_float("HABITSYNC_SYNC_INTERVAL", 0.0)
        self.DEV_MODE = _env_bool("HABITSYNC_DEV_MODE", default=True)
        self.DATA_DIR = self._resolve_data_dir()
        self.DATABASE_URL = os.getenv("HABITSYNC_DATABASE_URL", self._build_sqlite_url())
        if self.REQUEST_TIMEOUT <= 0:
            raise ValueError("HABITSYNC_REQUEST_TIMEOUT must be positive.")

    def _resolve_data_dir(self) -> Path:
        """Return the directory holding the local database and logs."""

        data_root = os.getenv("HABITSYNC_DATA_DIR", "instance")
        path = Path(data_root).expanduser().resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _build_sqlite_url(self) -> str:
        db_path = self.DATA_DIR / self.DB_FILENAME
        return f"sqlite:///{db_path}"

    def sqlalchemy_engine_options(self) -> dict[str, Any]:
        """Expose engine kwargs for SQLModel to consume."""

        connect_args: dict[str, Any] = {}
        if self.DATABASE_URL.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        return {"connect_args": connect_args}

    def auth_headers(self) -> dict[str, str]:
        """Headers attached to every remote request."""

        if not self.API_TOKEN:
            return {}
        return {"Authorization": f"Bearer {self.API_TOKEN}"}


class DevConfig(BaseConfig):
    """Development configuration using local SQLite."""

    DEBUG = True
    TESTING = False


class TestConfig(BaseConfig):
    """Configuration for test runs; callers point DATA_DIR at a temp folder."""

    __test__ = False

    DEBUG = False
    TESTING = True

    def __init__(self, data_dir: Path | str | None = None) -> None:
        self._data_dir_override = Path(data_dir) if data_dir is not None else None
        super().__init__()
        if self._data_dir_override is not None:
            self.DATABASE_URL = self._build_sqlite_url()

    def _resolve_data_dir(self) -> Path:
        if self._data_dir_override is None:
            return super()._resolve_data_dir()
        self._data_dir_override.mkdir(parents=True, exist_ok=True)
        return self._data_dir_override.resolve()
