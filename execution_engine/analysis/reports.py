"""
Read-side reports over stored executions.

Progress of a single execution, its full results, and aggregate statistics
for a suite execution. Nothing here writes to the store.
"""

from datetime import datetime
from typing import List, Optional, Sequence

from pydantic import Field

from ..core.exceptions import ExecutionNotFoundError
from ..core.logging_config import get_logger
from ..execution.models import (
    Execution,
    ExecutionResult,
    ExecutionStatus,
    SuiteAggregate,
    WireModel,
    milliseconds_between,
    parse_timestamp,
    to_timestamp,
    utc_now,
)
from ..persistence.store import ExecutionStore
from .suite_aggregator import calculate_aggregate, determine_suite_status


class ExecutionStatusReport(WireModel):
    """Current status and progress of one execution."""

    execution_id: str
    status: ExecutionStatus
    result: Optional[ExecutionResult] = None
    current_step: Optional[int] = Field(None, description="Completed steps while running")
    total_steps: int = 0
    start_time: Optional[str] = None
    duration: Optional[int] = Field(None, description="Final or elapsed milliseconds")


class SuiteStats(SuiteAggregate):
    """Suite tallies plus the summed duration of its case executions."""

    duration: int = 0


class SuiteResultsReport(WireModel):
    """Aggregate statistics and member records of a suite execution."""

    suite_execution_id: str
    suite_id: str = ""
    status: ExecutionStatus
    stats: SuiteStats
    test_case_executions: List[Execution] = Field(default_factory=list)
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    duration: Optional[int] = None


def build_status_report(
    execution: Execution, now: Optional[datetime] = None
) -> ExecutionStatusReport:
    """Finished executions report their stored duration; others report time elapsed since start."""
    current_step = None
    if execution.status == ExecutionStatus.RUNNING:
        current_step = len(execution.steps)

    duration = None
    if execution.end_time:
        duration = execution.duration
    elif execution.start_time:
        elapsed = milliseconds_between(parse_timestamp(execution.start_time), now or utc_now())
        duration = max(0, elapsed)

    return ExecutionStatusReport(
        execution_id=execution.execution_id,
        status=execution.status,
        result=execution.result,
        current_step=current_step,
        total_steps=len(execution.steps),
        start_time=execution.start_time,
        duration=duration,
    )


def calculate_suite_stats(executions: Sequence[Execution]) -> SuiteStats:
    aggregate = calculate_aggregate(executions)
    return SuiteStats(
        **aggregate.model_dump(),
        duration=sum(e.duration or 0 for e in executions),
    )


def build_suite_results(
    suite_execution_id: str, executions: Sequence[Execution]
) -> SuiteResultsReport:
    """
    Summarise the case executions of a suite execution.

    The suite spans from the earliest case start to the latest case end;
    end time and duration stay unset until some case has ended.
    """
    starts = [parse_timestamp(e.start_time) for e in executions if e.start_time]
    ends = [parse_timestamp(e.end_time) for e in executions if e.end_time]

    start = min(starts) if starts else None
    end = max(ends) if ends else None
    duration = None
    if start is not None and end is not None:
        duration = max(0, milliseconds_between(start, end))

    suite_id = ""
    if executions:
        suite_id = executions[0].test_suite_id or ""

    return SuiteResultsReport(
        suite_execution_id=suite_execution_id,
        suite_id=suite_id,
        status=determine_suite_status(executions),
        stats=calculate_suite_stats(executions),
        test_case_executions=list(executions),
        start_time=to_timestamp(start) if start else None,
        end_time=to_timestamp(end) if end else None,
        duration=duration,
    )


class ExecutionReporter:
    """Looks up executions and builds reports over them."""

    def __init__(self, store: ExecutionStore):
        self.store = store
        self.logger = get_logger(__name__)

    async def results(self, execution_id: str) -> Execution:
        """
        Full execution record.

        Raises:
            ExecutionNotFoundError: If the execution does not exist
        """
        execution = await self.store.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id, operation="get")
        return execution

    async def status(
        self, execution_id: str, now: Optional[datetime] = None
    ) -> ExecutionStatusReport:
        return build_status_report(await self.results(execution_id), now)

    async def suite_results(self, suite_execution_id: str) -> Optional[SuiteResultsReport]:
        """Suite report, or None when no case executions belong to the suite."""
        executions = await self.store.query_by_suite(suite_execution_id)
        if not executions:
            self.logger.info(f"Suite execution not found: {suite_execution_id}")
            return None
        return build_suite_results(suite_execution_id, executions)
