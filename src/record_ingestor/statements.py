"""Builders for the single-table statements issued by the engine.

Every builder returns ``(sql, params)`` with ``?`` positional placeholders,
bound left to right. Identifiers are quoted with the ``quote`` callable, which
defaults to ANSI double quotes.
"""

from __future__ import annotations

from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

Quote = Callable[[str], str]
Statement = Tuple[str, List[Any]]


def ansi_quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _where(columns: Sequence[str], quote: Quote) -> str:
    if not columns:
        raise ValueError("Specify at least one column.")
    return " AND ".join(f"{quote(column)} = ?" for column in columns)


def _id_params(id_columns: Sequence[str], identifier: Any) -> List[Any]:
    if len(id_columns) == 1:
        if isinstance(identifier, Mapping):
            return [identifier[id_columns[0]]]
        return [identifier]
    if not isinstance(identifier, Mapping):
        raise ValueError(
            f"Composite id over {list(id_columns)} needs a mapping, got {identifier!r}"
        )
    return [identifier[column] for column in id_columns]


def select_ids(
    table: str,
    id_columns: Sequence[str],
    match_columns: Sequence[str],
    match_values: Sequence[Any],
    quote: Quote = ansi_quote,
) -> Statement:
    selected = ", ".join(quote(column) for column in id_columns)
    sql = f"SELECT {selected} FROM {quote(table)} WHERE {_where(match_columns, quote)}"
    return sql, list(match_values)


def insert(
    table: str,
    params: Mapping[str, Any],
    quote: Quote = ansi_quote,
    returning: Optional[Sequence[str]] = None,
) -> Statement:
    if params:
        columns = ", ".join(quote(column) for column in params)
        placeholders = ", ".join("?" for _ in params)
        sql = f"INSERT INTO {quote(table)} ({columns}) VALUES ({placeholders})"
    else:
        sql = f"INSERT INTO {quote(table)} DEFAULT VALUES"
    if returning:
        sql += " RETURNING " + ", ".join(quote(column) for column in returning)
    return sql, list(params.values())


def update(
    table: str,
    id_columns: Sequence[str],
    identifier: Any,
    params: Mapping[str, Any],
    quote: Quote = ansi_quote,
) -> Statement:
    if not params:
        raise ValueError(f"Nothing to update in {table}")
    assignments = ", ".join(f"{quote(column)} = ?" for column in params)
    sql = f"UPDATE {quote(table)} SET {assignments} WHERE {_where(id_columns, quote)}"
    return sql, list(params.values()) + _id_params(id_columns, identifier)


def replace(
    table: str,
    id_columns: Sequence[str],
    identifier: Any,
    params: Mapping[str, Any],
    quote: Quote = ansi_quote,
) -> Statement:
    row = dict(params)
    for column, value in zip(id_columns, _id_params(id_columns, identifier)):
        row[column] = value
    columns = ", ".join(quote(column) for column in row)
    placeholders = ", ".join("?" for _ in row)
    sql = f"REPLACE INTO {quote(table)} ({columns}) VALUES ({placeholders})"
    return sql, list(row.values())


def delete(
    table: str,
    match_columns: Sequence[str],
    match_values: Sequence[Any],
    quote: Quote = ansi_quote,
) -> Statement:
    sql = f"DELETE FROM {quote(table)} WHERE {_where(match_columns, quote)}"
    return sql, list(match_values)
