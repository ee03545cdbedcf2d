"""Configuration loading for the record ingestor."""

from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationError
from .models import (DEFAULT_DB_CONNECT_TIMEOUT, DEFAULT_LOG_LEVEL,
                     DatabaseConfig, IngestionConfig, LoaderConfig)

_TRUTHY = {"1", "true", "yes", "on"}


def _float(value: Optional[str], default: float) -> float:
    try:
        return float(value) if value is not None else default
    except ValueError:
        return default


def _bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


def database_url_from_env() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    pg_user = os.getenv("POSTGRES_USER")
    pg_password = os.getenv("POSTGRES_PASSWORD")
    pg_db = os.getenv("POSTGRES_DB")
    pg_host = os.getenv("POSTGRES_HOST", os.getenv("PGHOST", "localhost"))
    pg_port = os.getenv("POSTGRES_PORT", os.getenv("PGPORT", "5432"))
    if not (pg_user and pg_password and pg_db):
        raise ConfigurationError(
            "Set DATABASE_URL, or POSTGRES_USER, POSTGRES_PASSWORD and POSTGRES_DB"
        )
    return f"postgresql+asyncpg://{pg_user}:{pg_password}@{pg_host}:{pg_port}/{pg_db}"


def load_config(
    schema_path: Optional[str] = None,
    output_path: Optional[str] = None,
    dotenv: bool = True,
) -> IngestionConfig:
    """Load ingestion configuration from environment variables."""
    if dotenv:
        load_dotenv()

    url = database_url_from_env()
    # PostgreSQL drivers do not report a last-row id, RETURNING is needed there.
    default_returning = url.startswith("postgresql")

    return IngestionConfig(
        database=DatabaseConfig(
            url=url,
            connect_timeout=max(
                0.0,
                _float(os.getenv("DATABASE_CONNECT_TIMEOUT"), DEFAULT_DB_CONNECT_TIMEOUT),
            ),
            schema_path=schema_path or os.getenv("DATABASE_SCHEMA_PATH") or None,
        ),
        loader=LoaderConfig(
            use_returning=_bool(os.getenv("INGEST_USE_RETURNING"), default_returning),
            output_path=output_path or os.getenv("INGEST_OUTPUT_PATH") or None,
        ),
        log_level=os.getenv("LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
    )
