"""Tests for record_ingestor.engine against the in-memory query runner."""

from __future__ import annotations

import asyncio
from typing import Any, List, Sequence

import pytest

from record_ingestor.batch import (ExistingMode, TableBatch, TableOptions,
                                   decode_batch)
from record_ingestor.engine import InsertionEngine
from record_ingestor.errors import (BatchDefinitionError, DuplicateLocalIdError,
                                    QueryExecutionError, ReferenceLookupError,
                                    ReferenceNotFoundError,
                                    UnresolvedLocalReferenceError,
                                    WriteFailedError)
from record_ingestor.query_runner import QueryResult
from record_ingestor.references import DatabaseReference, LocalReference


@pytest.fixture
def engine(runner: Any) -> InsertionEngine:
    return InsertionEngine(runner)


class TestOrdering:
    async def test_later_table_references_earlier_record(
        self, engine: InsertionEngine, runner: Any
    ) -> None:
        runner.next_id = 5
        await engine.insert(
            {
                "security_context": {"dev": {"name": "x"}},
                "user": {"u1": {"name": "Bob", "context_id": engine.ref("security_context", "dev")}},
            }
        )
        inserts = runner.statements("INSERT")
        assert inserts[1] == (
            'INSERT INTO "user" ("name", "context_id") VALUES (?, ?)',
            ["Bob", 5],
        )
        assert engine.get_referenced("security_context", "dev") == 5
        assert engine.get_referenced("user", "u1") == 6

    async def test_records_processed_in_declared_order(
        self, engine: InsertionEngine, runner: Any
    ) -> None:
        await engine.insert({"company": {"c": {"name": "C"}, "a": {"name": "A"}, "b": {"name": "B"}}})
        assert [params for _, params in runner.calls] == [["C"], ["A"], ["B"]]
        assert engine.registry.as_dict() == {"company": {"c": 1, "a": 2, "b": 3}}

    async def test_registry_survives_between_batches(
        self, engine: InsertionEngine, runner: Any
    ) -> None:
        await engine.insert({"company": {"acme": {"name": "Acme"}}})
        await engine.insert({"user": {"bob": {"company_id": LocalReference("company", "acme")}}})
        assert runner.calls[-1][1] == [1]

    async def test_forward_reference_is_not_resolved(
        self, engine: InsertionEngine, runner: Any
    ) -> None:
        await engine.insert(
            {
                "user": {"bob": {"company_id": LocalReference("company", "acme")}},
                "company": {"acme": {"name": "Acme"}},
            }
        )
        assert runner.calls[0][1] == [None]


class TestUnresolvedLocalReference:
    async def test_degrades_to_null_and_continues(
        self, engine: InsertionEngine, runner: Any
    ) -> None:
        await engine.insert(
            {"user": {"u1": {"name": "Bob", "context_id": LocalReference("security_context", "x")}}}
        )
        assert runner.calls == [
            ('INSERT INTO "user" ("name", "context_id") VALUES (?, ?)', ["Bob", None])
        ]
        assert engine.get_referenced("user", "u1") == 1
        assert len(engine.diagnostics) == 1
        assert engine.diagnostics[0].local_id == "u1"

    def test_get_referenced_raises_for_unknown(self, engine: InsertionEngine) -> None:
        with pytest.raises(UnresolvedLocalReferenceError):
            engine.get_referenced("user", "nobody")


class TestExistingRecords:
    async def test_match_with_update_mode(self, engine: InsertionEngine, runner: Any) -> None:
        runner.add_rows("company", ["Acme"], [{"id": 7}])
        await engine.insert(
            {
                "company": TableBatch(
                    records={"acme": {"name": "Acme", "city": "Berlin"}},
                    options=TableOptions(match_columns=("name",), mode=ExistingMode.UPDATE),
                )
            }
        )
        assert runner.statements("INSERT") == []
        assert runner.statements("UPDATE") == [
            ('UPDATE "company" SET "name" = ?, "city" = ? WHERE "id" = ?', ["Acme", "Berlin", 7])
        ]
        assert engine.get_referenced("company", "acme") == 7

    async def test_match_with_replace_mode(self, engine: InsertionEngine, runner: Any) -> None:
        runner.add_rows("company", ["Acme"], [{"id": 7}])
        await engine.insert(
            {
                "company": {
                    "__options": {"existing": {"refColumns": ["name"], "replace": True}},
                    "acme": {"name": "Acme", "city": "Berlin"},
                }
            }
        )
        assert runner.statements("REPLACE") == [
            ('REPLACE INTO "company" ("name", "city", "id") VALUES (?, ?, ?)', ["Acme", "Berlin", 7])
        ]
        assert engine.get_referenced("company", "acme") == 7

    async def test_no_match_inserts(self, engine: InsertionEngine, runner: Any) -> None:
        runner.next_id = 30
        await engine.insert(
            {
                "company": {
                    "__options": {"refColumns": ["name"], "mode": "update"},
                    "acme": {"name": "Acme"},
                }
            }
        )
        assert len(runner.statements("SELECT")) == 1
        assert runner.statements("UPDATE") == []
        assert len(runner.statements("INSERT")) == 1
        assert engine.get_referenced("company", "acme") == 30

    async def test_insert_mode_keeps_matched_row(
        self, engine: InsertionEngine, runner: Any
    ) -> None:
        runner.add_rows("company", ["Acme"], [{"id": 7}])
        await engine.insert(
            {"company": {"__options": {"refColumns": "name"}, "acme": {"name": "Acme"}}}
        )
        assert [sql for sql, _ in runner.calls] == ['SELECT "id" FROM "company" WHERE "name" = ?']
        assert engine.get_referenced("company", "acme") == 7

    async def test_match_uses_resolved_values(self, engine: InsertionEngine, runner: Any) -> None:
        runner.add_rows("user", [4], [{"id": 11}])
        engine.registry.register("company", "acme", 4)
        await engine.insert(
            {
                "user": {
                    "__options": {"refColumns": ["company_id"], "update": True},
                    "bob": {"company_id": LocalReference("company", "acme"), "name": "Bob"},
                }
            }
        )
        assert runner.statements("UPDATE")[0][1] == [4, "Bob", 11]

    async def test_composite_identifier_is_registered(
        self, engine: InsertionEngine, runner: Any
    ) -> None:
        runner.add_rows("membership", [3, "ops"], [{"user_id": 3, "group_name": "ops"}])
        await engine.insert(
            {
                "membership": {
                    "__options": {
                        "refColumns": ["user_id", "group_name"],
                        "idColumn": ["user_id", "group_name"],
                        "update": True,
                    },
                    "m1": {"user_id": 3, "group_name": "ops", "role": "admin"},
                }
            }
        )
        assert engine.get_referenced("membership", "m1") == {"user_id": 3, "group_name": "ops"}
        sql, params = runner.statements("UPDATE")[0]
        assert sql.endswith('WHERE "user_id" = ? AND "group_name" = ?')
        assert params == [3, "ops", "admin", 3, "ops"]

    async def test_missing_match_column_aborts(self, engine: InsertionEngine) -> None:
        with pytest.raises(BatchDefinitionError):
            await engine.insert(
                {"company": {"__options": {"refColumns": ["name"]}, "acme": {"city": "Berlin"}}}
            )


class TestFailures:
    async def test_write_failure_aborts_remaining_work(
        self, engine: InsertionEngine, runner: Any
    ) -> None:
        runner.fail_when(lambda sql, params: params == ["r3"])
        batch = {
            "company": {f"c{i}": {"name": f"r{i}"} for i in range(1, 6)},
            "user": {"u1": {"name": "Bob"}},
        }
        with pytest.raises(WriteFailedError) as exc_info:
            await engine.insert(batch)
        assert exc_info.value.table == "company"
        assert exc_info.value.local_id == "c3"
        assert [params for _, params in runner.calls] == [["r1"], ["r2"], ["r3"]]
        assert engine.registry.as_dict() == {"company": {"c1": 1, "c2": 2}}

    async def test_database_reference_not_found_aborts(
        self, engine: InsertionEngine, runner: Any
    ) -> None:
        getter = engine.get_db_ref_getter("company")
        with pytest.raises(ReferenceNotFoundError):
            await engine.insert(
                {"user": {"u1": {"company_id": getter("Ghost")}, "u2": {"name": "Eve"}}}
            )
        assert runner.statements("INSERT") == []

    async def test_duplicate_local_id_is_rejected(
        self, engine: InsertionEngine, runner: Any
    ) -> None:
        await engine.insert({"company": {"acme": {"name": "Acme"}}})
        with pytest.raises(DuplicateLocalIdError):
            await engine.insert({"company": {"acme": {"name": "Acme again"}}})
        assert len(runner.statements("INSERT")) == 1

    async def test_invalid_table_batch(self, engine: InsertionEngine) -> None:
        with pytest.raises(BatchDefinitionError):
            await engine.insert({"company": ["not", "a", "mapping"]})


class TestReferenceHelpers:
    def test_ref_builds_local_reference(self, engine: InsertionEngine) -> None:
        assert engine.ref("company", "acme") == LocalReference("company", "acme")

    def test_db_ref_getter_defaults(self, engine: InsertionEngine) -> None:
        ref = engine.get_db_ref_getter("company")("Acme")
        assert ref == DatabaseReference("company", ("name",), ("Acme",), ("id",))

    def test_db_ref_getter_validates_value_count(self, engine: InsertionEngine) -> None:
        getter = engine.get_db_ref_getter("company", ["name", "city"])
        with pytest.raises(ValueError):
            getter(["Acme"])

    async def test_db_ref_getter_composite(self, engine: InsertionEngine, runner: Any) -> None:
        runner.add_rows("membership", ["admin"], [{"user_id": 1, "group_name": "ops"}])
        getter = engine.get_db_ref_getter("membership", ["role"], ["user_id", "group_name"])
        resolved = await engine.convert_refs({"m": getter("admin")})
        assert resolved == {"m": {"user_id": 1, "group_name": "ops"}}

    async def test_deleter(self, engine: InsertionEngine, runner: Any) -> None:
        deleter = engine.get_db_ref_deleter("company", ["name", "city"])
        assert await deleter(["Acme", "Berlin"]) == 1
        assert runner.calls == [
            ('DELETE FROM "company" WHERE "name" = ? AND "city" = ?', ["Acme", "Berlin"])
        ]

    async def test_deleter_wraps_store_errors(self, engine: InsertionEngine, runner: Any) -> None:
        runner.fail_when(lambda sql, params: sql.startswith("DELETE"))
        with pytest.raises(WriteFailedError):
            await engine.get_db_ref_deleter("company")("Acme")

    def test_deleter_needs_columns(self, engine: InsertionEngine) -> None:
        with pytest.raises(ValueError, match="at least one column"):
            engine.get_db_ref_deleter("company", [])

    async def test_get_refs_resolves_every_key(self, engine: InsertionEngine, runner: Any) -> None:
        runner.add_rows("company", ["Acme"], [{"id": 1}])
        runner.add_rows("company", ["Globex"], [{"id": 2}])
        getter = engine.get_db_ref_getter("company")
        assert await engine.get_refs({"a": getter("Acme"), "g": getter("Globex")}) == {
            "a": 1,
            "g": 2,
        }

    async def test_get_refs_propagates_not_found(self, engine: InsertionEngine) -> None:
        getter = engine.get_db_ref_getter("company")
        with pytest.raises(ReferenceNotFoundError):
            await engine.get_refs({"a": getter("Ghost")})

    async def test_get_refs_failure_cancels_pending_lookups(self) -> None:
        class OneFailsOneHangs:
            def __init__(self) -> None:
                self.started = asyncio.Event()
                self.cancelled: List[List[Any]] = []

            async def query(self, statement: str, parameters: Sequence[Any]) -> QueryResult:
                if list(parameters) == ["Ghost"]:
                    await self.started.wait()
                    raise QueryExecutionError("simulated store failure", statement)
                self.started.set()
                try:
                    await asyncio.Event().wait()
                except asyncio.CancelledError:
                    self.cancelled.append(list(parameters))
                    raise
                return QueryResult()

        runner = OneFailsOneHangs()
        engine = InsertionEngine(runner)
        getter = engine.get_db_ref_getter("company")
        with pytest.raises(ReferenceLookupError):
            await engine.get_refs({"g": getter("Ghost"), "a": getter("Acme")})
        assert runner.cancelled == [["Acme"]]


class TestDecodedBatches:
    async def test_local_reference_inside_db_reference_values(
        self, engine: InsertionEngine, runner: Any
    ) -> None:
        runner.add_rows("user", [1, "Bob"], [{"id": 40}])
        batch = decode_batch(
            {
                "company": {"acme": {"name": "Acme"}},
                "membership": {
                    "m1": {
                        "user_id": {
                            "$dbref": {
                                "table": "user",
                                "columns": ["company_id", "name"],
                                "values": [{"$ref": ["company", "acme"]}, "Bob"],
                            }
                        },
                        "role": "admin",
                    }
                },
            }
        )
        await engine.insert(batch)
        assert runner.statements("SELECT") == [
            ('SELECT "id" FROM "user" WHERE "company_id" = ? AND "name" = ?', [1, "Bob"])
        ]
        assert runner.statements("INSERT")[-1][1] == [40, "admin"]

    async def test_unregistered_local_reference_inside_db_reference_aborts(
        self, engine: InsertionEngine, runner: Any
    ) -> None:
        batch = decode_batch(
            {
                "membership": {
                    "m1": {
                        "user_id": {"$dbref": {"table": "user", "values": [{"$ref": ["x", "y"]}]}}
                    }
                }
            }
        )
        with pytest.raises(UnresolvedLocalReferenceError):
            await engine.insert(batch)
        assert runner.calls == []
