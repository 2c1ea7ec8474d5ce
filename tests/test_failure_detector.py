"""
Unit tests for failure pattern detection.
"""

from unittest.mock import AsyncMock, patch

import pytest

from execution_engine.analysis.failure_detector import (
    AlertType,
    CriticalAlert,
    FailureDetector,
)
from execution_engine.dispatch.events import EventType


@pytest.fixture
def detector(store):
    return FailureDetector(store, suite_check_delay_ms=0)


async def seed(store, executions):
    for execution in executions:
        await store.put(execution)


class TestConsecutiveFailures:
    @pytest.mark.asyncio
    async def test_three_failures_raise_alert(self, detector, store, execution_factory):
        await seed(
            store,
            [
                execution_factory("e1", result="fail", minutes=1, end_minutes=2),
                execution_factory("e2", result="error", minutes=3, end_minutes=4, error_message="boom"),
                execution_factory("e3", result="fail", minutes=5, end_minutes=6, error_message="Element not found: #x"),
            ],
        )

        alert = await detector.detect_consecutive_failures("tc-login")

        assert alert.alert_type == AlertType.CONSECUTIVE_FAILURES
        assert alert.reason == "Test case has failed 3 consecutive times"
        assert alert.details.consecutive_failures == 3
        assert alert.details.error_message == "Element not found: #x"
        assert alert.details.last_failure == "2024-01-15T10:36:00.000Z"
        assert alert.severity == "critical"

    @pytest.mark.asyncio
    async def test_recent_pass_suppresses_alert(self, detector, store, execution_factory):
        await seed(
            store,
            [
                execution_factory("e1", result="fail", minutes=1),
                execution_factory("e2", result="fail", minutes=2),
                execution_factory("e3", result="pass", minutes=3),
            ],
        )

        assert await detector.detect_consecutive_failures("tc-login") is None

    @pytest.mark.asyncio
    async def test_only_latest_window_counts(self, detector, store, execution_factory):
        await seed(
            store,
            [
                execution_factory("e0", result="pass", minutes=0),
                execution_factory("e1", result="fail", minutes=1),
                execution_factory("e2", result="fail", minutes=2),
                execution_factory("e3", result="fail", minutes=3),
            ],
        )

        assert await detector.detect_consecutive_failures("tc-login") is not None

    @pytest.mark.asyncio
    async def test_fewer_executions_than_window(self, detector, store, execution_factory):
        await seed(
            store,
            [
                execution_factory("e1", result="fail", minutes=1),
                execution_factory("e2", result="fail", minutes=2),
            ],
        )

        assert await detector.detect_consecutive_failures("tc-login") is None

    @pytest.mark.asyncio
    async def test_custom_window(self, detector, store, execution_factory):
        await seed(
            store,
            [
                execution_factory("e1", result="fail", minutes=1),
                execution_factory("e2", result="fail", minutes=2),
            ],
        )

        alert = await detector.detect_consecutive_failures("tc-login", window_size=2)

        assert alert.reason == "Test case has failed 2 consecutive times"

    @pytest.mark.asyncio
    async def test_unfinished_execution_breaks_run(self, detector, store, execution_factory):
        await seed(
            store,
            [
                execution_factory("e1", result="fail", minutes=1),
                execution_factory("e2", result="fail", minutes=2),
                execution_factory("e3", status="running", minutes=3),
            ],
        )

        assert await detector.detect_consecutive_failures("tc-login") is None


class TestSuiteFailureRate:
    @pytest.mark.asyncio
    async def test_rate_above_threshold_raises_alert(self, detector, store, execution_factory):
        await seed(
            store,
            [
                execution_factory("e1", result="pass", test_case_id="tc-a", suite_execution_id="s1", end_minutes=1),
                execution_factory("e2", result="fail", test_case_id="tc-b", suite_execution_id="s1", end_minutes=3),
                execution_factory("e3", result="error", test_case_id="tc-c", suite_execution_id="s1", end_minutes=2),
            ],
        )

        alert = await detector.detect_suite_failure_rate("s1")

        assert alert.alert_type == AlertType.SUITE_FAILURE_THRESHOLD
        assert alert.details.failure_rate == 66.67
        assert alert.details.affected_tests == ["tc-b", "tc-c"]
        assert alert.details.last_failure == "2024-01-15T10:33:00.000Z"
        assert alert.reason == "Test suite failure rate (66.7%) exceeds 50% threshold"
        assert alert.suite_execution_id == "s1"

    @pytest.mark.asyncio
    async def test_rate_equal_to_threshold_is_not_alerted(self, detector, store, execution_factory):
        await seed(
            store,
            [
                execution_factory(f"e{i}", result=result, suite_execution_id="s1", minutes=i)
                for i, result in enumerate(["pass", "fail", "pass", "fail"])
            ],
        )

        assert await detector.detect_suite_failure_rate("s1") is None

    @pytest.mark.asyncio
    async def test_empty_suite(self, detector):
        assert await detector.detect_suite_failure_rate("missing") is None

    @pytest.mark.asyncio
    async def test_waits_before_querying(self, store):
        detector = FailureDetector(store, suite_check_delay_ms=1000)

        with patch(
            "execution_engine.analysis.failure_detector.asyncio.sleep", new_callable=AsyncMock
        ) as mock_sleep:
            await detector.detect_suite_failure_rate("s1")

        mock_sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_custom_threshold(self, store, execution_factory):
        detector = FailureDetector(store, suite_check_delay_ms=0, failure_threshold=20.0)
        await seed(
            store,
            [
                execution_factory(f"e{i}", result=result, suite_execution_id="s1", minutes=i)
                for i, result in enumerate(["pass", "pass", "pass", "fail"])
            ],
        )

        alert = await detector.detect_suite_failure_rate("s1")

        assert alert.reason == "Test suite failure rate (25.0%) exceeds 20% threshold"


class TestGenerateCriticalAlert:
    def test_event_shape(self, detector):
        alert = CriticalAlert(
            alert_type=AlertType.CONSECUTIVE_FAILURES,
            test_case_id="tc-login",
            reason="Test case has failed 3 consecutive times",
        )

        event = detector.generate_critical_alert(alert, "proj-1", "user-1")

        assert event.event_type == EventType.CRITICAL_ALERT
        assert event.event_id.startswith("alert-")
        assert event.timestamp == alert.timestamp
        assert event.payload["status"] == "error"
        assert event.payload["result"] == "error"
        assert event.payload["errorMessage"] == alert.reason
        assert event.payload["projectId"] == "proj-1"
        assert event.payload["triggeredBy"] == "user-1"
        assert "testSuiteId" not in event.payload

    def test_alert_ids_are_unique(self, detector):
        alert = CriticalAlert(alert_type=AlertType.CONSECUTIVE_FAILURES, reason="x")

        ids = {detector.generate_critical_alert(alert, "p", "u").event_id for _ in range(20)}

        assert len(ids) == 20
