"""Shared pytest fixtures for record_ingestor tests."""

from __future__ import annotations

import re
from collections.abc import AsyncIterator, Callable
from typing import Any, Dict, List, Sequence, Tuple

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from record_ingestor.errors import QueryExecutionError
from record_ingestor.query_runner import QueryResult, SqlAlchemyQueryRunner

_TABLE_RE = re.compile(r'(?:FROM|INTO|UPDATE)\s+"([^"]+)"')

# =============================================================================
# Fake Query Runner
# =============================================================================


class FakeQueryRunner:
    """In-memory query runner recording every statement it receives.

    SELECTs answer from rows registered with :meth:`add_rows`, INSERTs hand
    out increasing ids starting at :attr:`next_id`.
    """

    def __init__(self) -> None:
        self.calls: List[Tuple[str, List[Any]]] = []
        self.next_id = 1
        self._rows: Dict[Tuple[str, Tuple[Any, ...]], List[Dict[str, Any]]] = {}
        self._failures: List[Callable[[str, List[Any]], bool]] = []

    def add_rows(self, table: str, values: Sequence[Any], rows: List[Dict[str, Any]]) -> None:
        self._rows[(table, tuple(values))] = rows

    def fail_when(self, predicate: Callable[[str, List[Any]], bool]) -> None:
        self._failures.append(predicate)

    def statements(self, verb: str) -> List[Tuple[str, List[Any]]]:
        return [call for call in self.calls if call[0].startswith(verb)]

    async def query(self, statement: str, parameters: Sequence[Any]) -> QueryResult:
        params = list(parameters)
        self.calls.append((statement, params))
        for predicate in self._failures:
            if predicate(statement, params):
                raise QueryExecutionError("simulated store failure", statement)

        match = _TABLE_RE.search(statement)
        table = match.group(1) if match else ""
        if statement.startswith("SELECT"):
            return QueryResult(rows=list(self._rows.get((table, tuple(params)), [])))
        if statement.startswith("INSERT"):
            assigned = self.next_id
            self.next_id += 1
            return QueryResult(last_insert_id=assigned, rowcount=1)
        return QueryResult(rowcount=1)


@pytest.fixture
def runner() -> FakeQueryRunner:
    return FakeQueryRunner()


# =============================================================================
# SQLite Fixtures
# =============================================================================

SCHEMA = [
    'CREATE TABLE "security_context" (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT UNIQUE)',
    'CREATE TABLE "company" (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT, city TEXT)',
    (
        'CREATE TABLE "user" (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT, '
        "context_id INTEGER, company_id INTEGER, settings TEXT)"
    ),
    'CREATE TABLE "membership" (user_id INTEGER, group_name TEXT, role TEXT, '
    "PRIMARY KEY (user_id, group_name))",
]


@pytest_asyncio.fixture
async def sqlite_engine(tmp_path: Any) -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ingest.db'}")
    async with engine.begin() as conn:
        for ddl in SCHEMA:
            await conn.exec_driver_sql(ddl)
    yield engine
    await engine.dispose()


@pytest.fixture
def sqlite_runner(sqlite_engine: AsyncEngine) -> SqlAlchemyQueryRunner:
    return SqlAlchemyQueryRunner(sqlite_engine)
