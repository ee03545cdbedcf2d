from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, Union

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from .errors import QueryExecutionError

LOGGER = logging.getLogger("records.ingestor.query")

# Quoted identifiers and string literals are copied verbatim; bare "?" marks a bind.
_TOKEN_RE = re.compile(r'"(?:[^"]|"")*"|`[^`]*`|\'(?:[^\']|\'\')*\'|\?|:')


@dataclass
class QueryResult:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    last_insert_id: Any = None
    rowcount: int = -1


class QueryRunner(Protocol):
    """Executes one parameterised statement.

    ``statement`` uses ``?`` positional placeholders, ``parameters`` holds one
    bind value per placeholder in left-to-right order. Store-level failures
    must be raised as :class:`QueryExecutionError`.
    """

    async def query(self, statement: str, parameters: Sequence[Any]) -> QueryResult:
        ...


def to_named_binds(statement: str, parameters: Sequence[Any]) -> Tuple[str, Dict[str, Any]]:
    """Rewrite ``?`` placeholders into SQLAlchemy ``:pN`` binds."""
    binds: Dict[str, Any] = {}
    values = list(parameters)

    def _replace(match: "re.Match[str]") -> str:
        token = match.group(0)
        if token == ":":
            return "\\:"
        if token != "?":
            return token.replace(":", "\\:")
        index = len(binds)
        if index >= len(values):
            raise QueryExecutionError(
                f"Statement has more placeholders than the {len(values)} parameters given",
                statement,
            )
        binds[f"p{index}"] = _bind_value(values[index])
        return f":p{index}"

    converted = _TOKEN_RE.sub(_replace, statement)
    if len(binds) != len(values):
        raise QueryExecutionError(
            f"Statement has {len(binds)} placeholders but {len(values)} parameters were given",
            statement,
        )
    return converted, binds


def _bind_value(value: Any) -> Any:
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return value


class SqlAlchemyQueryRunner:
    """Query runner backed by a SQLAlchemy async engine or connection.

    With an :class:`AsyncEngine` every statement runs in its own short
    transaction that is committed immediately. With an :class:`AsyncConnection`
    the caller owns the transaction and statements are serialised.
    """

    def __init__(self, bind: Union[AsyncEngine, AsyncConnection]) -> None:
        self._bind = bind
        self._lock: Optional[asyncio.Lock] = (
            asyncio.Lock() if isinstance(bind, AsyncConnection) else None
        )

    async def query(self, statement: str, parameters: Sequence[Any]) -> QueryResult:
        sql, binds = to_named_binds(statement, parameters)
        LOGGER.debug("Executing %s with %s", statement, list(parameters))
        try:
            if self._lock is not None:
                async with self._lock:
                    return await self._execute(self._bind, sql, binds)
            async with self._bind.begin() as conn:
                return await self._execute(conn, sql, binds)
        except SQLAlchemyError as exc:
            raise QueryExecutionError(str(exc), statement) from exc

    @staticmethod
    async def _execute(conn: AsyncConnection, sql: str, binds: Dict[str, Any]) -> QueryResult:
        result = await conn.execute(text(sql), binds)
        if result.returns_rows:
            rows = [dict(row) for row in result.mappings().all()]
            return QueryResult(rows=rows, rowcount=len(rows))
        last_insert_id = None
        if sql.lstrip().upper().startswith(("INSERT", "REPLACE")):
            last_insert_id = result.lastrowid
        return QueryResult(last_insert_id=last_insert_id, rowcount=result.rowcount)
