from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from rich.console import Console

from .batch import TableBatch, load_batch_file
from .db_connector import DatabaseSession
from .engine import InsertionEngine
from .models import IngestionConfig
from .registry import IdentifierRegistry

LOGGER = logging.getLogger("records.ingestor")


def write_registry(registry: IdentifierRegistry, path: Union[str, Path]) -> None:
    """Dump assigned identifiers as ``{table: {local_id: identifier}}`` JSON."""
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    with output.open("w", encoding="utf-8") as fh:
        json.dump(registry.as_dict(), fh, indent=2, default=str)
    LOGGER.info("Wrote %s identifier(s) to %s", len(registry), output)


def summarize(batch: Mapping[str, TableBatch], registry: IdentifierRegistry) -> Dict[str, int]:
    return {table: len(registry.table(table)) for table in batch}


async def run_ingestion(
    config: IngestionConfig,
    batch_path: Union[str, Path],
    console: Optional[Console] = None,
) -> InsertionEngine:
    """Load ``batch_path`` into the configured database and return the engine used."""
    active_console = console or Console()
    batch = load_batch_file(batch_path)
    LOGGER.info(
        "Loaded batch %s: %s table(s), %s record(s)",
        batch_path,
        len(batch),
        sum(len(table_batch.records) for table_batch in batch.values()),
    )

    session = DatabaseSession(config.database)
    await session.open()
    try:
        if config.database.schema_path:
            LOGGER.info("Applying database schema from %s", config.database.schema_path)
            await session.apply_schema(config.database.schema_path)

        engine = InsertionEngine(
            session.query_runner(),
            quote=session.quote_identifier,
            use_returning=config.loader.use_returning,
        )
        try:
            with active_console.status("Inserting records..."):
                await engine.insert(batch)
        finally:
            _log_progress(batch, engine)
            if config.loader.output_path:
                write_registry(engine.registry, config.loader.output_path)
    finally:
        await session.dispose()

    return engine


def _log_progress(batch: Mapping[str, Any], engine: InsertionEngine) -> None:
    for table, count in summarize(batch, engine.registry).items():
        LOGGER.info("%s: %s record(s) registered", table, count)
    if engine.diagnostics:
        LOGGER.warning(
            "%s reference(s) could not be resolved and were written as NULL",
            len(engine.diagnostics),
        )
