from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Optional, Union

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from .models import DatabaseConfig
from .query_runner import SqlAlchemyQueryRunner

LOGGER = logging.getLogger("records.ingestor.db")


async def execute_script(driver_connection: Any, script: str) -> None:
    """Run a multi-statement DDL script through the async driver in one call.

    aiosqlite exposes ``executescript``; asyncpg runs several statements from a
    single ``execute`` without bind parameters.
    """
    if hasattr(driver_connection, "executescript"):
        await driver_connection.executescript(script)
    else:
        await driver_connection.execute(script)


class DatabaseSession:
    """Manage the SQLAlchemy engine the ingestor writes through."""

    def __init__(self, config: DatabaseConfig) -> None:
        self._config = config
        self._engine: Optional[AsyncEngine] = None

    async def open(self) -> AsyncEngine:
        if self._engine is not None:
            return self._engine

        deadline = time.time() + self._config.connect_timeout
        attempts = 0
        while True:
            attempts += 1
            async_engine = create_async_engine(self._config.url)
            try:
                LOGGER.info("Creating SQLAlchemy engine (attempt %s)", attempts)
                async with async_engine.connect() as connection:
                    await connection.execute(text("SELECT 1"))
                self._engine = async_engine
                LOGGER.info("Connected to database")
                break
            except OperationalError as exc:
                await async_engine.dispose()
                if time.time() >= deadline:
                    raise RuntimeError("Database connection timed out") from exc
                LOGGER.warning("Database not ready yet (%s), retrying...", exc)
                await asyncio.sleep(min(2 * attempts, 10))

        return self._engine

    async def apply_schema(self, sql_path: Union[str, Path]) -> None:
        """Hand the whole DDL script to the database driver."""
        ddl = Path(sql_path).read_text(encoding="utf-8")
        async with self.engine.connect() as conn:
            raw = await conn.get_raw_connection()
            await execute_script(raw.driver_connection, ddl)
        LOGGER.info("Applied schema from %s", sql_path)

    def quote_identifier(self, name: str) -> str:
        return self.engine.dialect.identifier_preparer.quote_identifier(name)

    def query_runner(self) -> SqlAlchemyQueryRunner:
        return SqlAlchemyQueryRunner(self.engine)

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Engine not initialised; call open()")
        return self._engine

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
