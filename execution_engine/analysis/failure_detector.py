"""
Failure pattern detection over execution history.

Detects test cases that failed several times in a row and suite executions
whose failure rate crosses a threshold, and turns the resulting alerts into
critical_alert events.
"""

import asyncio
import time
import uuid
from enum import Enum
from typing import List, Optional, Sequence

from pydantic import Field

from ..core.logging_config import get_logger
from ..dispatch.events import EventType, ExecutionEvent
from ..execution.models import Execution, WireModel, parse_timestamp, utc_now_iso
from ..persistence.store import ExecutionStore


class AlertType(str, Enum):
    CONSECUTIVE_FAILURES = "consecutive_failures"
    SUITE_FAILURE_THRESHOLD = "suite_failure_threshold"


class AlertDetails(WireModel):
    failure_rate: Optional[float] = None
    consecutive_failures: Optional[int] = None
    affected_tests: Optional[List[str]] = None
    last_failure: Optional[str] = None
    error_message: Optional[str] = None


class CriticalAlert(WireModel):
    """A failure pattern that crossed its threshold."""

    alert_type: AlertType
    severity: str = "critical"
    reason: str
    details: AlertDetails = Field(default_factory=AlertDetails)
    timestamp: str = Field(default_factory=utc_now_iso)
    test_case_id: Optional[str] = None
    test_suite_id: Optional[str] = None
    suite_execution_id: Optional[str] = None


def _is_failure(execution: Execution) -> bool:
    return execution.result is not None and execution.result.is_failure


def _latest_activity(executions: Sequence[Execution]) -> Optional[str]:
    if not executions:
        return None
    return max(executions, key=lambda e: parse_timestamp(e.last_activity)).last_activity


def new_alert_id() -> str:
    return f"alert-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


class FailureDetector:
    """
    Scans execution history for critical failure patterns.

    Args:
        store: Execution store to query
        suite_check_delay_ms: Pause before reading suite constituents so that
            sibling writes have a chance to land
        failure_threshold: Suite failure rate (percent) that must be exceeded
        window_size: Number of most recent executions checked per test case
    """

    def __init__(
        self,
        store: ExecutionStore,
        suite_check_delay_ms: int = 1000,
        failure_threshold: float = 50.0,
        window_size: int = 3,
    ):
        self.store = store
        self.suite_check_delay_ms = suite_check_delay_ms
        self.failure_threshold = failure_threshold
        self.window_size = window_size
        self.logger = get_logger(__name__)

    async def detect_consecutive_failures(
        self, test_case_id: str, window_size: Optional[int] = None
    ) -> Optional[CriticalAlert]:
        window = window_size or self.window_size
        executions = await self.store.query_by_test_case(test_case_id, window)

        if len(executions) < window:
            self.logger.debug(
                f"Not enough executions to detect consecutive failures for {test_case_id}",
                extra={"metadata": {"execution_count": len(executions), "window": window}},
            )
            return None

        recent = executions[:window]
        if not all(_is_failure(e) for e in recent):
            return None

        latest = recent[0]
        self.logger.warning(
            f"Test case {test_case_id} failed {window} consecutive times",
            extra={"metadata": {"executions": [e.execution_id for e in recent]}},
        )
        return CriticalAlert(
            alert_type=AlertType.CONSECUTIVE_FAILURES,
            test_case_id=test_case_id,
            reason=f"Test case has failed {window} consecutive times",
            details=AlertDetails(
                consecutive_failures=window,
                last_failure=latest.last_activity,
                error_message=latest.error_message,
            ),
        )

    async def detect_suite_failure_rate(
        self, suite_execution_id: str
    ) -> Optional[CriticalAlert]:
        if self.suite_check_delay_ms > 0:
            await asyncio.sleep(self.suite_check_delay_ms / 1000)

        executions = await self.store.query_by_suite(suite_execution_id)
        if not executions:
            self.logger.debug(f"No executions found for suite {suite_execution_id}")
            return None

        failing = [e for e in executions if _is_failure(e)]
        failure_rate = 100 * len(failing) / len(executions)

        self.logger.info(
            f"Suite {suite_execution_id} failure rate {failure_rate:.1f}%",
            extra={
                "metadata": {
                    "total": len(executions),
                    "failed": len(failing),
                    "failure_rate": failure_rate,
                }
            },
        )

        if failure_rate <= self.failure_threshold:
            return None

        return CriticalAlert(
            alert_type=AlertType.SUITE_FAILURE_THRESHOLD,
            test_suite_id=executions[0].test_suite_id,
            suite_execution_id=suite_execution_id,
            reason=(
                f"Test suite failure rate ({failure_rate:.1f}%) exceeds "
                f"{self.failure_threshold:g}% threshold"
            ),
            details=AlertDetails(
                failure_rate=round(failure_rate, 2),
                affected_tests=[e.test_case_id for e in failing if e.test_case_id],
                last_failure=_latest_activity(executions),
            ),
        )

    def generate_critical_alert(
        self, alert: CriticalAlert, project_id: str, triggered_by: str
    ) -> ExecutionEvent:
        """Wrap an alert into a publishable critical_alert event."""
        payload = {
            "projectId": project_id,
            "testCaseId": alert.test_case_id,
            "testSuiteId": alert.test_suite_id,
            "suiteExecutionId": alert.suite_execution_id,
            "status": "error",
            "result": "error",
            "errorMessage": alert.reason,
            "alertType": alert.alert_type.value,
            "severity": alert.severity,
            "details": alert.details.to_wire(),
            "triggeredBy": triggered_by,
        }
        event = ExecutionEvent(
            event_type=EventType.CRITICAL_ALERT,
            event_id=new_alert_id(),
            timestamp=alert.timestamp,
            payload={k: v for k, v in payload.items() if v is not None},
        )

        self.logger.info(
            f"Critical alert generated: {alert.alert_type.value}",
            extra={"metadata": {"event_id": event.event_id, "test_case_id": alert.test_case_id}},
        )
        return event
