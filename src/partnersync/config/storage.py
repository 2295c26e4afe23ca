"""Contact store location helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from .env import optional_env

APP_DIR_NAME: Final[str] = "partnersync"
DEFAULT_DB_FILENAME: Final[str] = "partnersync.db"


@dataclass(frozen=True, slots=True)
class StorageConfig:
    data_dir: Path
    database_filename: str = DEFAULT_DB_FILENAME

    def ensure_data_dir(self) -> Path:
        data_dir = self.data_dir.expanduser().resolve()
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir

    def database_uri(self) -> str:
        return f"sqlite+pysqlite:///{self.ensure_data_dir() / self.database_filename}"


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str

    @property
    def account_key(self) -> str:
        """Identifies the CRM store for run serialization; never includes credentials."""

        scheme, _, rest = self.uri.partition("://")
        return f"{scheme}://{rest.rpartition('@')[2]}"


def _default_data_dir() -> Path:
    if os.name == "nt":
        base = os.getenv("LOCALAPPDATA")
        base_path = Path(base) if base else (Path.home() / "AppData" / "Local")
    else:
        base = os.getenv("XDG_DATA_HOME")
        base_path = Path(base) if base else (Path.home() / ".local" / "share")
    return base_path / APP_DIR_NAME


def get_storage_config() -> StorageConfig:
    env_dir = optional_env("PARTNERSYNC_DATA_DIR")
    return StorageConfig(data_dir=Path(env_dir) if env_dir else _default_data_dir())


def get_database_config(*, storage: StorageConfig | None = None) -> DatabaseConfig:
    env_uri = optional_env("DATABASE_URI")
    if env_uri:
        return DatabaseConfig(uri=env_uri)
    return DatabaseConfig(uri=(storage or get_storage_config()).database_uri())
