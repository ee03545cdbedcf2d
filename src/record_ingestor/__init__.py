"""Reference-resolving batch insertion into relational databases."""

from .batch import ExistingMode, TableBatch, TableOptions, load_batch_file
from .engine import InsertionEngine
from .errors import (BatchDefinitionError, DuplicateLocalIdError,
                     QueryExecutionError, RecordIngestorError,
                     ReferenceLookupError, ReferenceNotFoundError,
                     UnresolvedLocalReferenceError, WriteFailedError)
from .query_runner import QueryResult, QueryRunner, SqlAlchemyQueryRunner
from .references import DatabaseReference, LocalReference, Reference
from .registry import IdentifierRegistry

__all__ = [
    "BatchDefinitionError",
    "DatabaseReference",
    "DuplicateLocalIdError",
    "ExistingMode",
    "IdentifierRegistry",
    "InsertionEngine",
    "LocalReference",
    "QueryExecutionError",
    "QueryResult",
    "QueryRunner",
    "RecordIngestorError",
    "Reference",
    "ReferenceLookupError",
    "ReferenceNotFoundError",
    "SqlAlchemyQueryRunner",
    "TableBatch",
    "TableOptions",
    "UnresolvedLocalReferenceError",
    "WriteFailedError",
    "load_batch_file",
]
