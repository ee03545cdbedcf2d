from __future__ import annotations

import logging
from typing import (Any, Awaitable, Callable, Dict, List, Mapping, Optional,
                    Sequence, Union)

from . import statements
from .batch import ContentBatch, ExistingMode, TableBatch, TableOptions
from .errors import DuplicateLocalIdError, QueryExecutionError, WriteFailedError
from .matcher import ExistingRecordMatcher
from .query_runner import QueryRunner
from .references import DatabaseReference, LocalReference, normalize_columns
from .registry import IdentifierRegistry
from .resolver import (Diagnostic, Resolver, gather_or_cancel,
                       identifier_from_row)

LOGGER = logging.getLogger("records.ingestor.engine")

Columns = Union[str, Sequence[str]]


class InsertionEngine:
    """Inserts a content batch table by table, record by record.

    Tables and records are processed in declaration order: a record can only
    reference records declared before it, in this batch or an earlier batch
    submitted to the same engine. The first failing statement aborts the rest
    of the batch; earlier writes are not rolled back.
    """

    def __init__(
        self,
        runner: QueryRunner,
        quote: Callable[[str], str] = statements.ansi_quote,
        use_returning: bool = False,
    ) -> None:
        self.runner = runner
        self.registry = IdentifierRegistry()
        self._quote = quote
        self._use_returning = use_returning
        self._resolver = Resolver(self.registry, runner, quote)

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return self._resolver.diagnostics

    async def insert(self, content: ContentBatch) -> None:
        for table, value in content.items():
            table_batch = TableBatch.coerce(table, value)
            await self._insert_table(table, table_batch)

    async def _insert_table(self, table: str, table_batch: TableBatch) -> None:
        options = table_batch.options
        self.registry.ensure_table(table)

        matcher: Optional[ExistingRecordMatcher] = None
        if options.matches_existing:
            matcher = ExistingRecordMatcher(
                self.runner, table, options.match_columns, options.id_columns, self._quote
            )

        for local_id, params in table_batch.records.items():
            await self._handle_record(table, local_id, params, options, matcher)

        LOGGER.info("Processed %s record(s) for %s", len(table_batch.records), table)

    async def _handle_record(
        self,
        table: str,
        local_id: str,
        params: Mapping[str, Any],
        options: TableOptions,
        matcher: Optional[ExistingRecordMatcher],
    ) -> None:
        if (table, local_id) in self.registry:
            raise DuplicateLocalIdError(table, local_id)

        record = await self._resolver.convert_refs(params, table, local_id)

        existing_id = None
        if matcher is not None:
            existing_id = await matcher.find(record, local_id)

        if existing_id is None:
            identifier = await self.database_insert(table, record, options.id_columns, local_id)
        elif options.mode is ExistingMode.UPDATE:
            await self.database_update(table, options.id_columns, existing_id, record, local_id)
            identifier = existing_id
        elif options.mode is ExistingMode.REPLACE:
            await self.database_replace(table, options.id_columns, existing_id, record, local_id)
            identifier = existing_id
        else:
            LOGGER.debug("Keeping existing %s row %s for %s", table, existing_id, local_id)
            identifier = existing_id

        self.registry.register(table, local_id, identifier)

    async def _write(self, table: str, local_id: Optional[str], sql: str, params: List[Any]):
        try:
            return await self.runner.query(sql, params)
        except QueryExecutionError as exc:
            LOGGER.error("Write to %s failed: %s", table, exc)
            raise WriteFailedError(table, local_id, str(exc)) from exc

    async def database_insert(
        self,
        table: str,
        params: Mapping[str, Any],
        id_columns: Columns = ("id",),
        local_id: Optional[str] = None,
    ) -> Any:
        """Insert a row and return the identifier the store assigned to it."""
        id_columns = normalize_columns(id_columns)
        returning = id_columns if self._use_returning else None
        sql, values = statements.insert(table, params, self._quote, returning)
        result = await self._write(table, local_id, sql, values)
        if result.rows:
            identifier = identifier_from_row(result.rows[0], id_columns)
        else:
            identifier = result.last_insert_id
        LOGGER.debug("Inserted %s:%s as %s", table, local_id, identifier)
        return identifier

    async def database_update(
        self,
        table: str,
        id_columns: Columns,
        identifier: Any,
        params: Mapping[str, Any],
        local_id: Optional[str] = None,
    ) -> None:
        if not params:
            LOGGER.debug("Nothing to update for %s:%s", table, local_id)
            return
        sql, values = statements.update(
            table, normalize_columns(id_columns), identifier, params, self._quote
        )
        await self._write(table, local_id, sql, values)
        LOGGER.debug("Updated %s row %s for %s", table, identifier, local_id)

    async def database_replace(
        self,
        table: str,
        id_columns: Columns,
        identifier: Any,
        params: Mapping[str, Any],
        local_id: Optional[str] = None,
    ) -> None:
        sql, values = statements.replace(
            table, normalize_columns(id_columns), identifier, params, self._quote
        )
        await self._write(table, local_id, sql, values)
        LOGGER.debug("Replaced %s row %s for %s", table, identifier, local_id)

    async def convert_refs(self, params: Any) -> Any:
        return await self._resolver.convert_refs(params)

    def ref(self, table: str, local_id: str) -> LocalReference:
        return LocalReference(table, local_id)

    def get_referenced(self, table: str, local_id: str) -> Any:
        return self.registry.lookup(table, local_id)

    def get_db_ref_getter(
        self,
        table: str,
        ref_columns: Optional[Columns] = None,
        id_column: Optional[Columns] = None,
    ) -> Callable[[Any], DatabaseReference]:
        """Return a factory building references into ``table`` for given match values.

        Defaults match on ``name`` and return ``id``; a list of id columns
        yields composite identifiers.
        """
        match_columns = normalize_columns(ref_columns or ("name",))
        id_columns = normalize_columns(id_column or "id")

        def getter(ref_values: Any) -> DatabaseReference:
            if not isinstance(ref_values, (list, tuple)):
                ref_values = [ref_values]
            return DatabaseReference(table, match_columns, tuple(ref_values), id_columns)

        return getter

    def get_db_ref_deleter(
        self, table: str, ref_columns: Optional[Columns] = None
    ) -> Callable[[Any], Awaitable[int]]:
        """Return a coroutine function deleting all rows that match given values."""
        match_columns = normalize_columns(ref_columns if ref_columns is not None else ("name",))
        if not match_columns:
            raise ValueError("Specify at least one column.")

        async def deleter(ref_values: Any) -> int:
            if not isinstance(ref_values, (list, tuple)):
                ref_values = [ref_values]
            if len(ref_values) != len(match_columns):
                raise ValueError(
                    f"Deleting from {table} expects {len(match_columns)} values, "
                    f"got {len(ref_values)}"
                )
            sql, values = statements.delete(table, match_columns, ref_values, self._quote)
            result = await self._write(table, None, sql, values)
            LOGGER.debug("Deleted %s row(s) from %s", result.rowcount, table)
            return result.rowcount

        return deleter

    async def get_refs(self, items: Mapping[Any, DatabaseReference]) -> Dict[Any, Any]:
        """Resolve independent database references concurrently."""
        keys = list(items)
        resolved = await gather_or_cancel(
            *(self._resolver.resolve_db_ref(items[key]) for key in keys)
        )
        return dict(zip(keys, resolved))
