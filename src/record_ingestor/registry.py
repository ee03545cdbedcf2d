"""Identifier registry: (table, local id) -> identifier assigned by the store."""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Tuple

from .errors import DuplicateLocalIdError, UnresolvedLocalReferenceError


class IdentifierRegistry:
    """Write-once memory of everything an engine has inserted, updated or replaced."""

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, Any]] = {}

    def ensure_table(self, table: str) -> None:
        self._data.setdefault(table, {})

    def register(self, table: str, local_id: str, identifier: Any) -> None:
        records = self._data.setdefault(table, {})
        if local_id in records:
            raise DuplicateLocalIdError(table, local_id)
        records[local_id] = identifier

    def lookup(self, table: str, local_id: str) -> Any:
        records = self._data.get(table)
        if records is None or local_id not in records:
            raise UnresolvedLocalReferenceError(table, local_id)
        return records[local_id]

    def get(self, table: str, local_id: str, default: Any = None) -> Any:
        return self._data.get(table, {}).get(local_id, default)

    def table(self, table: str) -> Mapping[str, Any]:
        return MappingProxyType(self._data.get(table, {}))

    def tables(self) -> Tuple[str, ...]:
        return tuple(self._data)

    def as_dict(self) -> Dict[str, Dict[str, Any]]:
        return {table: dict(records) for table, records in self._data.items()}

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 2:
            return False
        table, local_id = key
        return local_id in self._data.get(table, {})

    def __iter__(self) -> Iterator[Tuple[str, str, Any]]:
        for table, records in self._data.items():
            for local_id, identifier in records.items():
                yield table, local_id, identifier

    def __len__(self) -> int:
        return sum(len(records) for records in self._data.values())
