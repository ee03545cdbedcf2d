from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Sequence

from . import statements
from .errors import BatchDefinitionError
from .query_runner import QueryRunner
from .references import normalize_columns
from .resolver import fetch_identifier

LOGGER = logging.getLogger("records.ingestor.matcher")


class ExistingRecordMatcher:
    """Finds the row a record should update or replace instead of inserting.

    When several rows match, the first one returned by the store wins.
    """

    def __init__(
        self,
        runner: QueryRunner,
        table: str,
        match_columns: Sequence[str],
        id_columns: Sequence[str] = ("id",),
        quote: Callable[[str], str] = statements.ansi_quote,
    ) -> None:
        self._runner = runner
        self.table = table
        self.match_columns = normalize_columns(match_columns)
        self.id_columns = normalize_columns(id_columns)
        self._quote = quote
        if not self.match_columns:
            raise BatchDefinitionError(f"Existing-record matching on {table} needs columns")

    def match_values(self, record: Mapping[str, Any], local_id: str = "?") -> list:
        missing = [column for column in self.match_columns if column not in record]
        if missing:
            raise BatchDefinitionError(
                f"Record '{self.table}:{local_id}' lacks match column(s) {missing}"
            )
        return [record[column] for column in self.match_columns]

    async def find(self, record: Mapping[str, Any], local_id: str = "?") -> Any:
        """Return the matched id (scalar or composite dict) or None when nothing matches."""
        values = self.match_values(record, local_id)
        identifier = await fetch_identifier(
            self._runner, self.table, self.id_columns, self.match_columns, values, self._quote
        )
        if identifier is None:
            LOGGER.debug("No existing %s row for %s", self.table, values)
        return identifier
