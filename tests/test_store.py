"""
Unit tests for execution record stores.

The in-memory and JSON-file stores share their query and merge logic, so
most behaviour is checked against both.
"""

import json

import pytest
from pydantic import ValidationError as PydanticValidationError

from execution_engine.core.exceptions import ExecutionNotFoundError, PersistenceError, ValidationError
from execution_engine.execution.models import (
    ExecutionMetadata,
    ExecutionResult,
    ExecutionStatus,
    StepResult,
    StepStatus,
)
from execution_engine.persistence.store import (
    HistoryQuery,
    InMemoryExecutionStore,
    JsonFileExecutionStore,
    merge_results,
)


@pytest.fixture(params=["memory", "json"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryExecutionStore()
    return JsonFileExecutionStore(tmp_path / "executions")


def finished(execution, result="pass"):
    return execution.model_copy(
        update={
            "status": ExecutionStatus.COMPLETED,
            "result": ExecutionResult(result),
            "end_time": "2024-01-15T10:31:00.000Z",
            "duration": 60000,
            "steps": [StepResult(step_index=0, action="click", status=StepStatus(result), duration=5)],
            "metadata": ExecutionMetadata(triggered_by="user-1", driver_version="120.0"),
        }
    )


class TestGetPut:
    @pytest.mark.asyncio
    async def test_round_trip(self, any_store, execution_factory):
        execution = execution_factory("exec-1", result="pass")

        await any_store.put(execution)

        assert await any_store.get("exec-1") == execution

    @pytest.mark.asyncio
    async def test_missing_record(self, any_store):
        assert await any_store.get("nope") is None

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, store, execution_factory):
        await store.put(execution_factory("exec-1"))

        record = await store.get("exec-1")
        record.status = ExecutionStatus.ERROR

        assert (await store.get("exec-1")).status == ExecutionStatus.QUEUED


class TestUpdateStatus:
    @pytest.mark.asyncio
    async def test_moves_to_running(self, any_store, execution_factory):
        await any_store.put(execution_factory("exec-1"))

        await any_store.update_status("exec-1", ExecutionStatus.RUNNING)

        assert (await any_store.get("exec-1")).status == ExecutionStatus.RUNNING

    @pytest.mark.asyncio
    async def test_missing_record_raises(self, any_store):
        with pytest.raises(ExecutionNotFoundError) as exc_info:
            await any_store.update_status("exec-9", ExecutionStatus.RUNNING)

        assert exc_info.value.execution_id == "exec-9"
        assert exc_info.value.error_code == "EXECUTION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_redelivery_from_terminal_state_is_allowed(self, any_store, execution_factory):
        await any_store.put(execution_factory("exec-1", result="fail"))

        await any_store.update_status("exec-1", ExecutionStatus.RUNNING)

        assert (await any_store.get("exec-1")).status == ExecutionStatus.RUNNING


class TestUpdateResults:
    @pytest.mark.asyncio
    async def test_merges_result_fields(self, any_store, execution_factory):
        queued = execution_factory("exec-1", suite_execution_id="suite-1")
        queued.metadata.environment = "staging"
        await any_store.put(queued)

        await any_store.update_results(finished(execution_factory("exec-1")))

        saved = await any_store.get("exec-1")
        assert saved.status == ExecutionStatus.COMPLETED
        assert saved.result == ExecutionResult.PASS
        assert len(saved.steps) == 1
        assert saved.suite_execution_id == "suite-1"
        assert saved.created_at == queued.created_at
        assert saved.metadata.environment == "staging"
        assert saved.metadata.driver_version == "120.0"

    @pytest.mark.asyncio
    async def test_inserts_missing_record(self, any_store, execution_factory):
        await any_store.update_results(finished(execution_factory("exec-1"), result="fail"))

        assert (await any_store.get("exec-1")).result == ExecutionResult.FAIL

    def test_merge_keeps_existing_links(self, execution_factory):
        existing = execution_factory("exec-1", test_case_id="tc-a")
        incoming = finished(execution_factory("exec-1", test_case_id="tc-b"))

        merged = merge_results(existing, incoming)

        assert merged.test_case_id == "tc-a"
        assert merged.updated_at != existing.updated_at


class TestQueries:
    @pytest.mark.asyncio
    async def test_query_by_test_case_newest_first(self, any_store, execution_factory):
        for i in range(5):
            await any_store.put(execution_factory(f"exec-{i}", result="pass", minutes=i))
        await any_store.put(execution_factory("other", test_case_id="tc-other", minutes=9))

        records = await any_store.query_by_test_case("tc-login", 3)

        assert [r.execution_id for r in records] == ["exec-4", "exec-3", "exec-2"]

    @pytest.mark.asyncio
    async def test_query_by_suite_oldest_first_without_suite_record(self, any_store, execution_factory):
        await any_store.put(execution_factory("suite-1", suite_execution_id="suite-1", test_case_id=None))
        await any_store.put(execution_factory("b", suite_execution_id="suite-1", minutes=2))
        await any_store.put(execution_factory("a", suite_execution_id="suite-1", minutes=1))
        await any_store.put(execution_factory("c", suite_execution_id="suite-2", minutes=3))

        records = await any_store.query_by_suite("suite-1")

        assert [r.execution_id for r in records] == ["a", "b"]


class TestQueryHistory:
    async def seed(self, store, execution_factory):
        await store.put(execution_factory("a", result="pass", minutes=1))
        await store.put(execution_factory("b", result="fail", minutes=2, suite_execution_id="suite-1"))
        await store.put(execution_factory("c", result="pass", minutes=3, test_case_id="tc-search"))
        await store.put(execution_factory("d", minutes=4, project_id="proj-2"))

    @pytest.mark.asyncio
    async def test_project_history_newest_first(self, any_store, execution_factory):
        await self.seed(any_store, execution_factory)

        records = await any_store.query_history(HistoryQuery(project_id="proj-1"))

        assert [r.execution_id for r in records] == ["c", "b", "a"]

    @pytest.mark.asyncio
    async def test_filters_combine(self, any_store, execution_factory):
        await self.seed(any_store, execution_factory)

        records = await any_store.query_history(
            HistoryQuery(project_id="proj-1", test_case_id="tc-login")
        )

        assert [r.execution_id for r in records] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_suite_execution_filter_skips_suite_record(self, any_store, execution_factory):
        await self.seed(any_store, execution_factory)
        await any_store.put(execution_factory("suite-1", suite_execution_id="suite-1", test_case_id=None))

        records = await any_store.query_history(HistoryQuery(suite_execution_id="suite-1"))

        assert [r.execution_id for r in records] == ["b"]

    @pytest.mark.asyncio
    async def test_date_range_is_inclusive(self, any_store, execution_factory):
        await self.seed(any_store, execution_factory)

        records = await any_store.query_history(
            HistoryQuery(
                project_id="proj-1",
                start_date="2024-01-15T10:31:00.000Z",
                end_date="2024-01-15T10:32:00Z",
            )
        )

        assert [r.execution_id for r in records] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_limit(self, any_store, execution_factory):
        for i in range(60):
            await any_store.put(execution_factory(f"exec-{i:02d}", minutes=i))

        default = await any_store.query_history(HistoryQuery(test_case_id="tc-login"))
        limited = await any_store.query_history(HistoryQuery(test_case_id="tc-login", limit=2))

        assert len(default) == 50
        assert [r.execution_id for r in limited] == ["exec-59", "exec-58"]

    @pytest.mark.asyncio
    async def test_requires_an_id_filter(self, any_store):
        with pytest.raises(ValidationError, match="At least one filter"):
            await any_store.query_history(HistoryQuery(start_date="2024-01-15T00:00:00Z"))

    def test_invalid_date_rejected(self):
        with pytest.raises(PydanticValidationError):
            HistoryQuery(project_id="proj-1", start_date="last tuesday")


class TestJsonFileStore:
    @pytest.mark.asyncio
    async def test_writes_camel_case_documents(self, tmp_path, execution_factory):
        store = JsonFileExecutionStore(tmp_path)

        await store.put(execution_factory("exec-1", suite_execution_id="suite-1"))

        document = json.loads((tmp_path / "exec-1.json").read_text())
        assert document["executionId"] == "exec-1"
        assert document["suiteExecutionId"] == "suite-1"
        assert document["metadata"]["triggeredBy"] == "user-1"
        assert not list(tmp_path.glob("*.tmp"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("execution_id", ["../escape", "a/b", ".."])
    async def test_rejects_path_like_ids(self, tmp_path, execution_id):
        store = JsonFileExecutionStore(tmp_path)

        with pytest.raises(PersistenceError):
            await store.get(execution_id)

    @pytest.mark.asyncio
    async def test_corrupt_document_raises(self, tmp_path):
        store = JsonFileExecutionStore(tmp_path)
        (tmp_path / "exec-1.json").write_text("{not json")

        with pytest.raises(PersistenceError, match="exec-1.json"):
            await store.get("exec-1")


def test_in_memory_store_seeded_from_records(execution_factory):
    store = InMemoryExecutionStore([execution_factory("a"), execution_factory("b")])

    assert len(store) == 2
