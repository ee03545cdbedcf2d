"""Reference values that can stand in for column values in a content batch."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Tuple, Union


@dataclass(frozen=True)
class LocalReference:
    """Points at a record of the same (or an earlier) batch by its local id."""

    table: str
    id: str


@dataclass(frozen=True)
class DatabaseReference:
    """Points at an existing row matched by equality on ``match_columns``.

    ``match_values`` may contain further database references; these are
    resolved before the lookup for this reference is issued.
    """

    table: str
    match_columns: Tuple[str, ...]
    match_values: Tuple[Any, ...]
    id_columns: Tuple[str, ...] = ("id",)

    def __post_init__(self) -> None:
        if not self.match_columns:
            raise ValueError("A database reference needs at least one match column")
        if len(self.match_columns) != len(self.match_values):
            raise ValueError(
                f"Database reference into {self.table} expects "
                f"{len(self.match_columns)} values, got {len(self.match_values)}"
            )
        if not self.id_columns:
            raise ValueError("A database reference needs at least one id column")


Reference = Union[LocalReference, DatabaseReference]


def normalize_columns(columns: Union[str, Tuple[str, ...], List[str]]) -> Tuple[str, ...]:
    """Accept a single column name or a sequence of them."""
    if isinstance(columns, str):
        return (columns,)
    return tuple(columns)

