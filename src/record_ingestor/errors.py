"""Exception hierarchy for the record ingestor."""

from __future__ import annotations

from typing import Any, Optional, Sequence


class RecordIngestorError(Exception):
    """Base exception for record ingestor errors."""


class ConfigurationError(RecordIngestorError):
    """Raised when the environment does not describe a usable database."""


class BatchDefinitionError(RecordIngestorError, ValueError):
    """Raised when a content batch or one of its markers is malformed."""


class DuplicateLocalIdError(BatchDefinitionError):
    """Raised when a (table, local id) pair has already been registered."""

    def __init__(self, table: str, local_id: str) -> None:
        super().__init__(f"local id '{table}:{local_id}' has already been registered")
        self.table = table
        self.local_id = local_id


class QueryExecutionError(RecordIngestorError):
    """Raised by a query runner when the store rejects a statement."""

    def __init__(self, message: str, statement: Optional[str] = None) -> None:
        super().__init__(message)
        self.statement = statement


class UnresolvedLocalReferenceError(RecordIngestorError):
    """Raised when a local reference points at a record that was not registered."""

    def __init__(self, table: str, local_id: str) -> None:
        super().__init__(f"reference '{table}:{local_id}' could not be found")
        self.table = table
        self.local_id = local_id


class ReferenceNotFoundError(RecordIngestorError):
    """Raised when a database reference matches no row."""

    def __init__(self, table: str, values: Sequence[Any]) -> None:
        joined = ",".join(str(value) for value in values)
        super().__init__(f"reference '{table}:{joined}' could not be found")
        self.table = table
        self.values = tuple(values)


class ReferenceLookupError(RecordIngestorError):
    """Raised when the lookup query for a reference or existing record fails."""

    def __init__(self, table: str, values: Sequence[Any], reason: str) -> None:
        joined = ",".join(str(value) for value in values)
        super().__init__(f"lookup of '{table}:{joined}' failed: {reason}")
        self.table = table
        self.values = tuple(values)


class WriteFailedError(RecordIngestorError):
    """Raised when an insert, update, replace or delete statement fails."""

    def __init__(self, table: str, local_id: Optional[str], reason: str) -> None:
        target = f"{table}:{local_id}" if local_id is not None else table
        super().__init__(f"write to '{target}' failed: {reason}")
        self.table = table
        self.local_id = local_id
