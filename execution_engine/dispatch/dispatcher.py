"""
Task dispatch for queued test executions.

The Dispatcher takes one task message at a time, checks the host time
budget, runs the test case, persists the result and then triggers event
publication, failure detection and suite aggregation as best-effort side
effects. Errors after the record is touched are stamped onto the record
and re-raised for the delivery layer.
"""

import json
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, List, Optional, Protocol, Union

from pydantic import ValidationError as PydanticValidationError

from ..core.config import Config
from ..core.exceptions import InsufficientTimeError, MalformedTaskError
from ..core.logging_config import get_logger, log_performance
from ..core.outcomes import SideEffectResult, run_side_effect
from ..execution.case_executor import TestCaseExecutor
from ..execution.models import (
    Execution,
    ExecutionResult,
    ExecutionStatus,
    TaskMessage,
    milliseconds_between,
    parse_timestamp,
    to_timestamp,
    utc_now,
)
from ..persistence.store import ExecutionStore
from .events import EventPublisher

if TYPE_CHECKING:
    from ..analysis.failure_detector import FailureDetector
    from ..analysis.suite_aggregator import SuiteAggregator

TIMEOUT_MARKER = "Execution timeout: "
TIMEOUT_HINTS = ("time remaining", "timeout", "timed out")
BODY_PREVIEW_LENGTH = 200


class TimeBudget(Protocol):
    """Remaining wall-clock allowance of the hosting invocation."""

    def remaining_ms(self) -> int: ...


class DeadlineTimeBudget:
    """Budget counting down to a monotonic-clock deadline."""

    def __init__(self, deadline: float):
        self.deadline = deadline

    @classmethod
    def from_seconds(cls, seconds: float) -> "DeadlineTimeBudget":
        return cls(time.monotonic() + seconds)

    def remaining_ms(self) -> int:
        return max(0, int((self.deadline - time.monotonic()) * 1000))


class FixedTimeBudget:
    """Budget that always reports the same remaining time."""

    def __init__(self, remaining: int):
        self.remaining = remaining

    def remaining_ms(self) -> int:
        return self.remaining


@dataclass
class DispatchResult:
    """Persisted execution plus the outcome of every side effect."""

    execution: Execution
    side_effects: List[SideEffectResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.execution.result == ExecutionResult.PASS

    @property
    def failed_side_effects(self) -> List[SideEffectResult]:
        return [s for s in self.side_effects if s.failed]


def is_timeout_message(message: str) -> bool:
    lowered = message.lower()
    return any(hint in lowered for hint in TIMEOUT_HINTS)


class Dispatcher:
    """
    Processes task messages for test case executions.

    Args:
        store: Execution record store
        case_executor: Runs the test case of each message
        publisher: Publishes completion and alert events
        failure_detector: Optional consecutive/suite failure detection
        suite_aggregator: Optional suite record recomputation
        time_buffer_ms: Time reserved for cleanup and result saving
        min_work_window_ms: Minimum time needed to run a test case
        timeout_marker_threshold_ms: Budget below which failures count as timeouts
    """

    def __init__(
        self,
        store: ExecutionStore,
        case_executor: TestCaseExecutor,
        publisher: EventPublisher,
        failure_detector: Optional["FailureDetector"] = None,
        suite_aggregator: Optional["SuiteAggregator"] = None,
        time_buffer_ms: int = 30000,
        min_work_window_ms: int = 60000,
        timeout_marker_threshold_ms: int = 5000,
    ):
        self.store = store
        self.case_executor = case_executor
        self.publisher = publisher
        self.failure_detector = failure_detector
        self.suite_aggregator = suite_aggregator
        self.time_buffer_ms = time_buffer_ms
        self.min_work_window_ms = min_work_window_ms
        self.timeout_marker_threshold_ms = timeout_marker_threshold_ms
        self.logger = get_logger(__name__)

    @classmethod
    def from_config(
        cls,
        config: Config,
        store: ExecutionStore,
        case_executor: TestCaseExecutor,
        publisher: EventPublisher,
    ) -> "Dispatcher":
        from ..analysis.failure_detector import FailureDetector
        from ..analysis.suite_aggregator import SuiteAggregator

        return cls(
            store=store,
            case_executor=case_executor,
            publisher=publisher,
            failure_detector=FailureDetector(
                store,
                suite_check_delay_ms=config.suite_check_delay_ms,
                failure_threshold=config.suite_failure_threshold,
                window_size=config.consecutive_failure_window,
            ),
            suite_aggregator=SuiteAggregator(store),
            time_buffer_ms=config.time_buffer_ms,
            min_work_window_ms=config.min_work_window_ms,
            timeout_marker_threshold_ms=config.timeout_marker_threshold_ms,
        )

    @property
    def required_budget_ms(self) -> int:
        return self.time_buffer_ms + self.min_work_window_ms

    @staticmethod
    def parse_message(body: Union[str, bytes, dict]) -> TaskMessage:
        """
        Parse a raw message body into a TaskMessage.

        Raises:
            MalformedTaskError: If the body is not JSON or lacks required fields
        """
        try:
            data = body
            if isinstance(body, (bytes, bytearray)):
                data = body.decode("utf-8")
            if isinstance(data, str):
                data = json.loads(data)
            return TaskMessage.model_validate(data)
        except (ValueError, TypeError, PydanticValidationError) as e:
            preview = body if isinstance(body, str) else repr(body)
            raise MalformedTaskError(
                f"Invalid task message format: {e}",
                body_preview=preview[:BODY_PREVIEW_LENGTH],
            ) from e

    async def process_message(
        self, body: Union[str, bytes, dict], time_budget: TimeBudget
    ) -> DispatchResult:
        """
        Process one task message end to end.

        Args:
            body: Raw message body
            time_budget: Remaining time of the hosting invocation

        Returns:
            DispatchResult with the persisted execution

        Raises:
            MalformedTaskError: The body could not be parsed; nothing was touched
            Exception: Any later error, after it was recorded on the execution
        """
        message = self.parse_message(body)
        execution_id = message.execution_id
        started = time.monotonic()

        self.logger.info(
            f"Processing execution {execution_id}",
            extra={
                "execution_id": execution_id,
                "metadata": {
                    "test_case_id": message.test_case_id or message.test_case.test_case_id,
                    "project_id": message.project_id,
                    "suite_execution_id": message.suite_execution_id,
                },
            },
        )

        try:
            await self.store.update_status(execution_id, ExecutionStatus.RUNNING)

            remaining = time_budget.remaining_ms()
            if remaining < self.required_budget_ms:
                raise InsufficientTimeError(remaining, self.required_budget_ms, execution_id)

            outcome = await self.case_executor.execute_test_case(
                execution_id=execution_id,
                test_case=message.test_case,
                project_id=message.project_id,
                triggered_by=message.metadata.triggered_by,
                environment=message.metadata.environment,
                suite_execution_id=message.suite_execution_id,
            )
            await self.store.update_results(outcome.execution)
        except Exception as error:
            self.logger.error(
                f"Execution {execution_id} failed: {error}",
                extra={"execution_id": execution_id},
            )
            await self._record_failure(message, error, time_budget)
            raise

        execution = outcome.execution
        side_effects = await self._run_side_effects(execution, message)

        log_performance(
            self.logger,
            "process_message",
            int((time.monotonic() - started) * 1000),
            execution_id=execution_id,
            result=execution.result.value if execution.result else None,
        )
        return DispatchResult(execution=execution, side_effects=side_effects)

    async def process_batch(
        self, bodies: Iterable[Union[str, bytes, dict]], time_budget: TimeBudget
    ) -> List[DispatchResult]:
        """Process messages one at a time, stopping at the first failure."""
        results = []
        for body in bodies:
            results.append(await self.process_message(body, time_budget))
        return results

    async def _record_failure(
        self, message: TaskMessage, error: BaseException, time_budget: TimeBudget
    ) -> List[SideEffectResult]:
        """Stamp the error onto the execution record, then run side effects."""
        execution_id = message.execution_id
        error_message = str(error) or type(error).__name__
        is_timeout = (
            is_timeout_message(error_message)
            or time_budget.remaining_ms() < self.timeout_marker_threshold_ms
        )

        reload = await run_side_effect(
            "reload_execution",
            lambda: self.store.get(execution_id),
            self.logger,
            execution_id=execution_id,
        )
        execution = reload.value
        if execution is None:
            if reload.succeeded:
                self.logger.error(f"Could not find execution {execution_id} to record error")
            return [reload]

        now = utc_now()
        duration = 0
        if execution.start_time:
            duration = max(0, milliseconds_between(parse_timestamp(execution.start_time), now))

        failed = execution.model_copy(
            update={
                "status": ExecutionStatus.ERROR,
                "result": ExecutionResult.ERROR,
                "end_time": to_timestamp(now),
                "duration": duration,
                "error_message": f"{TIMEOUT_MARKER}{error_message}" if is_timeout else error_message,
                "updated_at": to_timestamp(now),
            }
        )

        persisted = await run_side_effect(
            "record_failure",
            lambda: self.store.update_results(failed),
            self.logger,
            execution_id=execution_id,
        )
        if persisted.succeeded:
            self.logger.info(f"Execution {execution_id} marked as error")

        return [reload, persisted] + await self._run_side_effects(failed, message)

    async def _run_side_effects(
        self, execution: Execution, message: TaskMessage
    ) -> List[SideEffectResult]:
        execution_id = execution.execution_id
        test_case_id = (
            execution.test_case_id or message.test_case_id or message.test_case.test_case_id
        )
        suite_execution_id = message.suite_execution_id or execution.suite_execution_id

        results = [
            await run_side_effect(
                "publish_completion",
                lambda: self.publisher.publish_completion(execution),
                self.logger,
                execution_id=execution_id,
            )
        ]

        if self.failure_detector is not None:
            if test_case_id:
                results.append(
                    await run_side_effect(
                        "detect_consecutive_failures",
                        lambda: self._alert_on(
                            self.failure_detector.detect_consecutive_failures(test_case_id),
                            message,
                        ),
                        self.logger,
                        execution_id=execution_id,
                        test_case_id=test_case_id,
                    )
                )
            if suite_execution_id:
                results.append(
                    await run_side_effect(
                        "detect_suite_failure_rate",
                        lambda: self._alert_on(
                            self.failure_detector.detect_suite_failure_rate(suite_execution_id),
                            message,
                        ),
                        self.logger,
                        execution_id=execution_id,
                        suite_execution_id=suite_execution_id,
                    )
                )

        if self.suite_aggregator is not None and suite_execution_id:
            results.append(
                await run_side_effect(
                    "update_suite_execution",
                    lambda: self.suite_aggregator.update_suite_execution(suite_execution_id),
                    self.logger,
                    execution_id=execution_id,
                    suite_execution_id=suite_execution_id,
                )
            )

        failed = [r.name for r in results if r.failed]
        if failed:
            self.logger.warning(
                f"Side effects failed for execution {execution_id}: {', '.join(failed)}",
                extra={"execution_id": execution_id},
            )
        return results

    async def _alert_on(self, detection, message: TaskMessage) -> Any:
        """Await a detection coroutine and publish its alert, if any."""
        alert = await detection
        if alert is None:
            return None

        event = self.failure_detector.generate_critical_alert(
            alert, message.project_id, message.metadata.triggered_by
        )
        await self.publisher.publish_event(event)
        return alert
