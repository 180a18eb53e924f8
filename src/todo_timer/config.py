# src/todo_timer/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- Nothing is read from disk at import time except the optional .env file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TODO_TIMER"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    db_path: Path
    owner_file: Path
    backup_dir: Path

    # ---- Views / timer ----
    page_size: int
    tick_interval: float

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "todo-timer") or "todo-timer"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/todo_timer"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "todo_timer.sqlite3")
        owner_file = _env_path(_k("OWNER_FILE"), data_dir / "owner.txt")
        backup_dir = _env_path(_k("BACKUP_DIR"), data_dir / "backups")

        page_size = max(1, _env_int(_k("PAGE_SIZE"), 10))
        tick_interval = max(0.05, _env_float(_k("TICK_INTERVAL"), 1.0))

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            db_path=db_path,
            owner_file=owner_file,
            backup_dir=backup_dir,
            page_size=page_size,
            tick_interval=tick_interval,
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    """Load .env (without overriding real env vars) and build Settings once."""
    global _SETTINGS
    if _SETTINGS is None:
        load_dotenv(override=False)
        _SETTINGS = Settings.from_env()
    return _SETTINGS
