"""Application configuration helpers."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _default_data_root() -> Path:
    """Return the platform specific directory used for persistent data."""

    if os.name == "nt":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home()))
        return base / "MedicalInventory"
    return Path.home() / ".medical_inventory"


def _default_database_path() -> Path:
    """Resolve the database path taking overrides into account."""

    override = os.environ.get("MEDINV_DB")
    if override:
        return Path(override).expanduser()
    return _default_data_root() / "database.sqlite3"


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() in {"1", "true", "yes"}


@dataclass(slots=True)
class Settings:
    """Runtime configuration loaded from environment variables."""

    app_name: str = field(default_factory=lambda: os.environ.get("MEDINV_APP_NAME", "Medical Inventory"))
    host: str = field(default_factory=lambda: os.environ.get("MEDINV_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.environ.get("MEDINV_PORT", "8000")))
    reload: bool = field(default_factory=lambda: _env_flag("MEDINV_RELOAD"))
    log_level: str = field(default_factory=lambda: os.environ.get("MEDINV_LOG_LEVEL", "info"))
    database_path: Path = field(default_factory=_default_database_path)
    # Lots are identified to users by expiry date instead of code when they are generated automatically.
    automatic_lot_in: bool = field(default_factory=lambda: _env_flag("MEDINV_AUTOMATIC_LOT_IN"))

    def ensure_storage(self) -> None:
        """Ensure that the database directory exists."""

        self.database_path.parent.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    settings = Settings()
    settings.ensure_storage()
    return settings


def configure_logging(level: str | int | None = None) -> None:
    """Install a single stream handler on the package logger."""

    if level is None:
        level = get_settings().log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    logger = logging.getLogger("medical_inventory")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(level)
