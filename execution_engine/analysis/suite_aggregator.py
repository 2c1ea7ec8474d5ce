"""
Suite execution aggregation.

The suite record is recomputed from all of its constituent case executions
on every call and written back with a plain overwrite. Concurrent updates
for sibling cases are not guarded; the last writer wins.
"""

from typing import Optional, Sequence

from ..core.logging_config import get_logger
from ..execution.models import (
    Execution,
    ExecutionResult,
    ExecutionStatus,
    SuiteAggregate,
    milliseconds_between,
    parse_timestamp,
    to_timestamp,
    utc_now_iso,
)
from ..persistence.store import ExecutionStore


def calculate_aggregate(executions: Sequence[Execution]) -> SuiteAggregate:
    """Tally constituent executions by result."""
    aggregate = SuiteAggregate(total=len(executions))
    for execution in executions:
        if execution.result == ExecutionResult.PASS:
            aggregate.passed += 1
        elif execution.result == ExecutionResult.FAIL:
            aggregate.failed += 1
        elif execution.result == ExecutionResult.ERROR:
            aggregate.errors += 1
    return aggregate


def determine_suite_status(executions: Sequence[Execution]) -> ExecutionStatus:
    if not executions:
        return ExecutionStatus.QUEUED
    if any(not e.status.is_terminal for e in executions):
        return ExecutionStatus.RUNNING
    if all(e.status == ExecutionStatus.ERROR for e in executions):
        return ExecutionStatus.ERROR
    return ExecutionStatus.COMPLETED


def determine_suite_result(
    status: ExecutionStatus, aggregate: SuiteAggregate
) -> Optional[ExecutionResult]:
    """Result for a terminal suite status; None while still running."""
    if status == ExecutionStatus.ERROR:
        return ExecutionResult.ERROR
    if status == ExecutionStatus.COMPLETED:
        if aggregate.failed or aggregate.errors:
            return ExecutionResult.FAIL
        return ExecutionResult.PASS
    return None


class SuiteAggregator:
    """Recomputes suite execution records from their constituents."""

    def __init__(self, store: ExecutionStore):
        self.store = store
        self.logger = get_logger(__name__)

    calculate_aggregate = staticmethod(calculate_aggregate)
    determine_suite_status = staticmethod(determine_suite_status)

    async def update_suite_execution(self, suite_execution_id: str) -> Optional[Execution]:
        """
        Recompute and persist the suite record.

        Args:
            suite_execution_id: Id of the suite execution record

        Returns:
            The written suite record, or None when there was nothing to update
        """
        executions = await self.store.query_by_suite(suite_execution_id)
        if not executions:
            self.logger.info(f"No test case executions found for suite {suite_execution_id}")
            return None

        aggregate = calculate_aggregate(executions)
        status = determine_suite_status(executions)
        result = determine_suite_result(status, aggregate)

        suite = await self.store.get(suite_execution_id)
        if suite is None:
            self.logger.error(f"Suite execution {suite_execution_id} not found")
            return None

        end_time = suite.end_time
        duration = suite.duration
        if status.is_terminal:
            ended = [parse_timestamp(e.end_time) for e in executions if e.end_time]
            if ended:
                latest_end = max(ended)
                end_time = to_timestamp(latest_end)
                if suite.start_time:
                    duration = max(
                        0, milliseconds_between(parse_timestamp(suite.start_time), latest_end)
                    )

        metadata = suite.metadata.model_copy(update={"aggregate": aggregate})
        updated = suite.model_copy(
            update={
                "status": status,
                "result": result,
                "end_time": end_time,
                "duration": duration,
                "metadata": metadata,
                "updated_at": utc_now_iso(),
            }
        )
        await self.store.put(updated)

        self.logger.info(
            f"Suite {suite_execution_id} status: {status.value}, "
            f"result: {result.value if result else None}",
            extra={"metadata": aggregate.model_dump()},
        )
        return updated
