from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence

from . import statements
from .errors import (QueryExecutionError, ReferenceLookupError,
                     ReferenceNotFoundError, UnresolvedLocalReferenceError)
from .query_runner import QueryRunner
from .references import DatabaseReference, LocalReference
from .registry import IdentifierRegistry

LOGGER = logging.getLogger("records.ingestor.resolver")


async def gather_or_cancel(*aws: Awaitable[Any]) -> List[Any]:
    """Like ``asyncio.gather``, but the first failure cancels and drains the rest."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


@dataclass(frozen=True)
class Diagnostic:
    """A non-fatal resolution problem; the affected field was written as NULL."""

    table: Optional[str]
    local_id: Optional[str]
    field: str
    message: str


def identifier_from_row(row: Mapping[str, Any], id_columns: Sequence[str]) -> Any:
    """Scalar for a single id column, a column->value dict for a composite id."""
    if len(id_columns) == 1:
        column = id_columns[0]
        if column in row:
            return row[column]
        # Drivers may report the column under a differently cased key.
        return next(iter(row.values()))
    return {column: row[column] for column in id_columns}


async def fetch_identifier(
    runner: QueryRunner,
    table: str,
    id_columns: Sequence[str],
    match_columns: Sequence[str],
    match_values: Sequence[Any],
    quote: Callable[[str], str] = statements.ansi_quote,
) -> Any:
    """Return the id of the first row matching all values, or None if nothing matches."""
    sql, params = statements.select_ids(table, id_columns, match_columns, match_values, quote)
    try:
        result = await runner.query(sql, params)
    except QueryExecutionError as exc:
        raise ReferenceLookupError(table, match_values, str(exc)) from exc
    if not result.rows:
        return None
    if len(result.rows) > 1:
        LOGGER.debug(
            "%s rows in %s match %s; using the first", len(result.rows), table, list(match_values)
        )
    return identifier_from_row(result.rows[0], id_columns)


class Resolver:
    """Replaces every reference inside a record value with a concrete identifier."""

    def __init__(
        self,
        registry: IdentifierRegistry,
        runner: QueryRunner,
        quote: Callable[[str], str] = statements.ansi_quote,
    ) -> None:
        self._registry = registry
        self._runner = runner
        self._quote = quote
        self.diagnostics: List[Diagnostic] = []

    async def convert_refs(
        self,
        params: Any,
        table: Optional[str] = None,
        local_id: Optional[str] = None,
    ) -> Any:
        """Return a copy of ``params`` with all references resolved.

        Unresolvable local references become ``None`` and are recorded in
        :attr:`diagnostics`. Database reference failures propagate.
        """
        return await self._convert(params, table, local_id, "")

    async def _convert(
        self, value: Any, table: Optional[str], local_id: Optional[str], path: str
    ) -> Any:
        if isinstance(value, LocalReference):
            return self._convert_local(value, table, local_id, path)
        if isinstance(value, DatabaseReference):
            return await self.resolve_db_ref(value)
        if isinstance(value, Mapping):
            resolved = {}
            for key, item in value.items():
                resolved[key] = await self._convert(item, table, local_id, _join(path, key))
            return resolved
        if isinstance(value, (list, tuple)):
            resolved_items = []
            for index, item in enumerate(value):
                resolved_items.append(
                    await self._convert(item, table, local_id, _join(path, index))
                )
            return type(value)(resolved_items)
        return value

    def _convert_local(
        self, ref: LocalReference, table: Optional[str], local_id: Optional[str], path: str
    ) -> Any:
        try:
            return self._registry.lookup(ref.table, ref.id)
        except UnresolvedLocalReferenceError as exc:
            LOGGER.warning("%s; using null value for %s", exc, path or "<value>")
            self.diagnostics.append(Diagnostic(table, local_id, path, str(exc)))
            return None

    async def resolve_db_ref(self, ref: DatabaseReference) -> Any:
        """Look up the id of the row ``ref`` points at.

        Local references among the match values must already be registered;
        nested database references are resolved concurrently first.
        """
        values = [
            self._registry.lookup(value.table, value.id)
            if isinstance(value, LocalReference)
            else value
            for value in ref.match_values
        ]
        nested = [
            (index, value)
            for index, value in enumerate(values)
            if isinstance(value, DatabaseReference)
        ]
        if nested:
            resolved = await gather_or_cancel(
                *(self.resolve_db_ref(value) for _, value in nested)
            )
            for (index, _), identifier in zip(nested, resolved):
                values[index] = identifier

        identifier = await fetch_identifier(
            self._runner, ref.table, ref.id_columns, ref.match_columns, values, self._quote
        )
        if identifier is None:
            raise ReferenceNotFoundError(ref.table, values)
        return identifier


def _join(path: str, key: Any) -> str:
    if isinstance(key, int):
        return f"{path}[{key}]"
    return f"{path}.{key}" if path else str(key)
