from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

DEFAULT_DB_CONNECT_TIMEOUT = 60.0
DEFAULT_LOG_LEVEL = "INFO"


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    connect_timeout: float = DEFAULT_DB_CONNECT_TIMEOUT
    schema_path: Optional[str] = None


@dataclass(frozen=True)
class LoaderConfig:
    use_returning: bool = False
    output_path: Optional[str] = None


@dataclass(frozen=True)
class IngestionConfig:
    database: DatabaseConfig
    loader: LoaderConfig
    log_level: str = DEFAULT_LOG_LEVEL
