"""
Execution record persistence.

Defines the ExecutionStore contract used by the dispatcher, failure detector
and suite aggregator, with an in-memory store for tests and embedding and a
JSON-file store holding one document per execution.
"""

import json
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Union

from pydantic import BaseModel, Field, field_validator

from ..core.exceptions import ExecutionNotFoundError, PersistenceError, ValidationError
from ..core.logging_config import get_logger
from ..execution.models import (
    Execution,
    ExecutionStatus,
    parse_timestamp,
    utc_now_iso,
)

RESULT_FIELDS = (
    "status",
    "result",
    "end_time",
    "duration",
    "steps",
    "screenshots",
    "error_message",
)
LINK_FIELDS = ("test_case_id", "test_suite_id", "suite_execution_id", "start_time")
DEFAULT_HISTORY_LIMIT = 50


class HistoryQuery(BaseModel):
    """Filters for an execution history lookup. All given filters must match."""

    project_id: Optional[str] = None
    test_case_id: Optional[str] = None
    test_suite_id: Optional[str] = None
    suite_execution_id: Optional[str] = None
    start_date: Optional[str] = Field(None, description="Inclusive lower bound on createdAt")
    end_date: Optional[str] = Field(None, description="Inclusive upper bound on createdAt")
    limit: int = Field(DEFAULT_HISTORY_LIMIT, ge=1)

    @field_validator("start_date", "end_date")
    @classmethod
    def validate_date(cls, v):
        if v is not None:
            parse_timestamp(v)
        return v

    @property
    def has_filter(self) -> bool:
        return any(
            (self.project_id, self.test_case_id, self.test_suite_id, self.suite_execution_id)
        )

    def matches(self, execution: Execution) -> bool:
        if self.project_id and execution.project_id != self.project_id:
            return False
        if self.test_case_id and execution.test_case_id != self.test_case_id:
            return False
        if self.test_suite_id and execution.test_suite_id != self.test_suite_id:
            return False
        if self.suite_execution_id and (
            execution.suite_execution_id != self.suite_execution_id
            or execution.execution_id == self.suite_execution_id
        ):
            return False

        created = parse_timestamp(execution.created_at)
        if self.start_date and created < parse_timestamp(self.start_date):
            return False
        if self.end_date and created > parse_timestamp(self.end_date):
            return False
        return True


class ExecutionStore(Protocol):
    """Read/write contract for execution records."""

    async def get(self, execution_id: str) -> Optional[Execution]: ...

    async def put(self, execution: Execution) -> None: ...

    async def update_status(self, execution_id: str, status: ExecutionStatus) -> None: ...

    async def update_results(self, execution: Execution) -> None: ...

    async def query_by_suite(self, suite_execution_id: str) -> List[Execution]: ...

    async def query_by_test_case(self, test_case_id: str, limit: int) -> List[Execution]: ...

    async def query_history(self, query: HistoryQuery) -> List[Execution]: ...


def merge_results(existing: Optional[Execution], execution: Execution) -> Execution:
    """
    Apply the result fields of execution onto an existing record.

    Identity, creation time and unrelated metadata of the existing record are
    kept; a missing record is inserted as given.
    """
    now = utc_now_iso()
    if existing is None:
        return execution.model_copy(update={"updated_at": now}, deep=True)

    update = {name: getattr(execution, name) for name in RESULT_FIELDS}
    for name in LINK_FIELDS:
        update[name] = getattr(existing, name) or getattr(execution, name)

    metadata = existing.metadata.model_dump()
    metadata.update(execution.metadata.model_dump(exclude_none=True))
    update["metadata"] = type(existing.metadata).model_validate(metadata)
    update["updated_at"] = now

    return existing.model_copy(update=update, deep=True)


class BaseExecutionStore:
    """Shared store logic over _load/_save/_all primitives."""

    def __init__(self):
        self.logger = get_logger(__name__)

    async def _load(self, execution_id: str) -> Optional[Execution]:
        raise NotImplementedError

    async def _save(self, execution: Execution) -> None:
        raise NotImplementedError

    async def _all(self) -> Iterable[Execution]:
        raise NotImplementedError

    async def get(self, execution_id: str) -> Optional[Execution]:
        execution = await self._load(execution_id)
        if execution is None:
            self.logger.debug(f"Execution not found: {execution_id}")
        return execution

    async def put(self, execution: Execution) -> None:
        """Write the full record, replacing whatever was stored."""
        await self._save(execution)

    async def update_status(self, execution_id: str, status: ExecutionStatus) -> None:
        existing = await self._load(execution_id)
        if existing is None:
            raise ExecutionNotFoundError(execution_id, operation="update_status")

        if existing.status != status and not existing.status.can_transition_to(status):
            # redelivered tasks restart from a terminal state
            self.logger.warning(
                f"Execution {execution_id} moving from {existing.status.value} to {status.value}",
                extra={"execution_id": execution_id},
            )

        await self._save(
            existing.model_copy(update={"status": status, "updated_at": utc_now_iso()})
        )

    async def update_results(self, execution: Execution) -> None:
        existing = await self._load(execution.execution_id)
        await self._save(merge_results(existing, execution))

    async def query_by_suite(self, suite_execution_id: str) -> List[Execution]:
        """Case executions belonging to a suite execution, oldest first."""
        records = [
            e
            for e in await self._all()
            if e.suite_execution_id == suite_execution_id
            and e.execution_id != suite_execution_id
        ]
        return sorted(records, key=lambda e: parse_timestamp(e.created_at))

    async def query_by_test_case(self, test_case_id: str, limit: int) -> List[Execution]:
        """Most recent executions of a test case, newest first."""
        records = [e for e in await self._all() if e.test_case_id == test_case_id]
        records.sort(key=lambda e: parse_timestamp(e.created_at), reverse=True)
        return records[:limit]

    async def query_history(self, query: HistoryQuery) -> List[Execution]:
        """
        Executions matching every filter in query, newest first.

        Raises:
            ValidationError: If no id filter is given
        """
        if not query.has_filter:
            raise ValidationError(
                "At least one filter (projectId, testCaseId, testSuiteId, or suiteExecutionId) is required",
                validation_type="history_query",
            )

        records = [e for e in await self._all() if query.matches(e)]
        records.sort(key=lambda e: parse_timestamp(e.created_at), reverse=True)
        self.logger.debug(f"Found {len(records)} executions for history query")
        return records[: query.limit]


class InMemoryExecutionStore(BaseExecutionStore):
    """Dictionary-backed store. Records are copied on every read and write."""

    def __init__(self, executions: Optional[Iterable[Execution]] = None):
        super().__init__()
        self._records: Dict[str, Execution] = {}
        for execution in executions or []:
            self._records[execution.execution_id] = execution.model_copy(deep=True)

    def __len__(self) -> int:
        return len(self._records)

    async def _load(self, execution_id):
        record = self._records.get(execution_id)
        return record.model_copy(deep=True) if record is not None else None

    async def _save(self, execution):
        self._records[execution.execution_id] = execution.model_copy(deep=True)

    async def _all(self):
        return [record.model_copy(deep=True) for record in self._records.values()]


class JsonFileExecutionStore(BaseExecutionStore):
    """Store keeping one camelCase JSON document per execution in a directory."""

    def __init__(self, store_dir: Union[str, Path]):
        super().__init__()
        self.store_dir = Path(store_dir)
        self.store_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, execution_id: str) -> Path:
        if not execution_id or "/" in execution_id or "\\" in execution_id or execution_id in (".", ".."):
            raise PersistenceError(
                f"Invalid execution id: {execution_id!r}",
                execution_id=execution_id,
                operation="resolve",
            )
        return self.store_dir / f"{execution_id}.json"

    def _read(self, path: Path) -> Execution:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return Execution.model_validate(json.load(f))
        except (OSError, ValueError) as e:
            raise PersistenceError(
                f"Failed to read execution file {path.name}: {e}",
                execution_id=path.stem,
                operation="read",
            ) from e

    async def _load(self, execution_id):
        path = self._path(execution_id)
        if not path.exists():
            return None
        return self._read(path)

    async def _save(self, execution):
        path = self._path(execution.execution_id)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(execution.to_wire(), f, indent=2, ensure_ascii=False)
            tmp_path.replace(path)
        except OSError as e:
            raise PersistenceError(
                f"Failed to write execution {execution.execution_id}: {e}",
                execution_id=execution.execution_id,
                operation="write",
            ) from e

    async def _all(self):
        return [self._read(path) for path in sorted(self.store_dir.glob("*.json"))]
