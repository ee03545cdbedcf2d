"""Content batch model and the YAML/JSON batch file format."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml
from pydantic import (BaseModel, ConfigDict, Field, ValidationError,
                      field_validator, model_validator)

from .errors import BatchDefinitionError
from .references import DatabaseReference, LocalReference, normalize_columns

OPTIONS_KEY = "__options"
LOCAL_REF_MARKER = "$ref"
DB_REF_MARKER = "$dbref"


class ExistingMode(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    REPLACE = "replace"


class TableOptions(BaseModel):
    """Per-table existing-record policy."""

    match_columns: Tuple[str, ...] = Field(default=(), alias="refColumns")
    id_column: Union[str, List[str]] = Field(default="id", alias="idColumn")
    mode: ExistingMode = ExistingMode.INSERT

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def _legacy_flags(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        data = dict(data)
        # {"existing": {...}} nesting and update/replace booleans
        if "existing" in data and isinstance(data["existing"], Mapping):
            data = {**dict(data.pop("existing")), **data}
        update = data.pop("update", False)
        replace = data.pop("replace", False)
        if update and replace:
            raise ValueError("Options cannot set both update and replace")
        if "mode" not in data:
            if update:
                data["mode"] = ExistingMode.UPDATE
            elif replace:
                data["mode"] = ExistingMode.REPLACE
        return data

    @field_validator("match_columns", mode="before")
    @classmethod
    def _columns(cls, value: Any) -> Any:
        if isinstance(value, str):
            return (value,)
        return value

    @property
    def id_columns(self) -> Tuple[str, ...]:
        return normalize_columns(self.id_column)

    @property
    def matches_existing(self) -> bool:
        return bool(self.match_columns)


@dataclass
class TableBatch:
    """Records of one table in declaration order, keyed by local id."""

    records: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    options: TableOptions = field(default_factory=TableOptions)

    @classmethod
    def coerce(cls, table: str, value: Any) -> "TableBatch":
        if isinstance(value, TableBatch):
            return value
        if not isinstance(value, Mapping):
            raise BatchDefinitionError(
                f"Table {table} must map local ids to records, got {type(value).__name__}"
            )
        records: Dict[str, Dict[str, Any]] = {}
        options = TableOptions()
        for local_id, item in value.items():
            if local_id == OPTIONS_KEY:
                options = parse_options(table, item)
                continue
            if not isinstance(item, Mapping):
                raise BatchDefinitionError(
                    f"Record '{table}:{local_id}' must be a mapping of columns"
                )
            records[str(local_id)] = dict(item)
        return cls(records=records, options=options)


ContentBatch = Mapping[str, Union[TableBatch, Mapping[str, Any]]]


def parse_options(table: str, value: Any) -> TableOptions:
    if isinstance(value, TableOptions):
        return value
    try:
        return TableOptions.model_validate(value or {})
    except ValidationError as exc:
        raise BatchDefinitionError(f"Invalid options for table {table}: {exc}") from exc


def decode_value(value: Any) -> Any:
    """Turn ``$ref`` / ``$dbref`` markers from a batch file into reference objects."""
    if isinstance(value, Mapping):
        if LOCAL_REF_MARKER in value:
            _only_marker(value, LOCAL_REF_MARKER)
            return _decode_local(value[LOCAL_REF_MARKER])
        if DB_REF_MARKER in value:
            _only_marker(value, DB_REF_MARKER)
            return _decode_db(value[DB_REF_MARKER])
        return {key: decode_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [decode_value(item) for item in value]
    return value


def _only_marker(value: Mapping[str, Any], marker: str) -> None:
    if len(value) != 1:
        raise BatchDefinitionError(f"A {marker} marker cannot carry other keys: {dict(value)}")


def _decode_local(body: Any) -> LocalReference:
    if isinstance(body, Mapping) and {"table", "id"} <= set(body):
        return LocalReference(str(body["table"]), str(body["id"]))
    if isinstance(body, (list, tuple)) and len(body) == 2:
        return LocalReference(str(body[0]), str(body[1]))
    raise BatchDefinitionError(f"Malformed {LOCAL_REF_MARKER} marker: {body!r}")


def _decode_db(body: Any) -> DatabaseReference:
    if not isinstance(body, Mapping) or "table" not in body or "values" not in body:
        raise BatchDefinitionError(f"Malformed {DB_REF_MARKER} marker: {body!r}")
    columns = normalize_columns(body.get("columns", ("name",)))
    values = body["values"]
    if not isinstance(values, list):
        values = [values]
    try:
        return DatabaseReference(
            table=str(body["table"]),
            match_columns=columns,
            match_values=tuple(decode_value(item) for item in values),
            id_columns=normalize_columns(body.get("idColumn", "id")),
        )
    except ValueError as exc:
        raise BatchDefinitionError(str(exc)) from exc


def decode_batch(raw: Any) -> Dict[str, TableBatch]:
    if not isinstance(raw, Mapping):
        raise BatchDefinitionError("A batch must map table names to records")
    batch: Dict[str, TableBatch] = {}
    for table, content in raw.items():
        table_batch = TableBatch.coerce(str(table), content)
        table_batch.records = {
            local_id: decode_value(record) for local_id, record in table_batch.records.items()
        }
        batch[str(table)] = table_batch
    return batch


def load_batch_file(path: Union[str, Path]) -> Dict[str, TableBatch]:
    """Load a batch from ``.json``, ``.yaml`` or ``.yml``."""
    batch_path = Path(path)
    with batch_path.open("r", encoding="utf-8") as fh:
        if batch_path.suffix.lower() == ".json":
            try:
                raw: Optional[Any] = json.load(fh)
            except json.JSONDecodeError as exc:
                raise BatchDefinitionError(f"Invalid JSON in {batch_path}: {exc}") from exc
        else:
            try:
                raw = yaml.safe_load(fh)
            except yaml.YAMLError as exc:
                raise BatchDefinitionError(f"Invalid YAML in {batch_path}: {exc}") from exc
    if raw is None:
        raise BatchDefinitionError(f"Batch file is empty: {batch_path}")
    return decode_batch(raw)
