from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional, Sequence

from rich.console import Console

from .config import load_config
from .errors import (BatchDefinitionError, ConfigurationError,
                     RecordIngestorError)
from .ingest import run_ingestion
from .logging_utils import get_logger, setup_logging

console = Console(stderr=True)
LOGGER = get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="record-ingestor",
        description="Insert a batch of interrelated records into a database.",
    )
    parser.add_argument("batch", help="Batch file (.yaml, .yml or .json)")
    parser.add_argument("--schema", help="DDL script to apply before loading")
    parser.add_argument("--output", help="Write assigned identifiers to this JSON file")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        config = load_config(schema_path=args.schema, output_path=args.output)
    except ConfigurationError as exc:
        setup_logging(console=console)
        LOGGER.error("Configuration error: %s", exc)
        sys.exit(1)

    setup_logging(config.log_level, console=console)

    try:
        asyncio.run(run_ingestion(config, args.batch, console=console))
    except BatchDefinitionError as exc:
        LOGGER.error("Invalid batch: %s", exc)
        sys.exit(2)
    except RecordIngestorError as exc:
        LOGGER.error("Ingestion aborted: %s", exc)
        sys.exit(3)
    except Exception:  # pragma: no cover - guard for CLI usage
        LOGGER.exception("Ingestion failed")
        sys.exit(3)


if __name__ == "__main__":
    main()
