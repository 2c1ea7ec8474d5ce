"""
Unit tests for test case execution.

Tests step sequencing, short-circuiting, result precedence and driver
session lifecycle.
"""

from unittest.mock import AsyncMock

import pytest

from conftest import FakeDriverProvider
from execution_engine.core.exceptions import DriverSetupError
from execution_engine.execution.case_executor import (
    TestCaseExecutor,
    determine_execution_result,
)
from execution_engine.execution.models import (
    ExecutionResult,
    ExecutionStatus,
    StepResult,
    StepStatus,
    TestCase,
)


def make_case(*steps, suite_id=None):
    return TestCase(test_case_id="tc-login", suite_id=suite_id, steps=list(steps))


def result_with(*statuses):
    return [
        StepResult(step_index=i, action="click", status=status, duration=1)
        for i, status in enumerate(statuses)
    ]


@pytest.fixture
def case_executor(step_executor, driver_provider, screenshot_store):
    return TestCaseExecutor(step_executor, driver_provider, screenshot_store)


class TestDetermineExecutionResult:
    def test_all_pass(self):
        assert determine_execution_result(result_with(StepStatus.PASS, StepStatus.PASS)) == ExecutionResult.PASS

    def test_error_beats_fail(self):
        statuses = result_with(StepStatus.FAIL, StepStatus.ERROR)
        assert determine_execution_result(statuses) == ExecutionResult.ERROR

    def test_fail(self):
        assert determine_execution_result(result_with(StepStatus.PASS, StepStatus.FAIL)) == ExecutionResult.FAIL

    def test_no_steps_is_error(self):
        assert determine_execution_result([]) == ExecutionResult.ERROR


class TestExecuteTestCase:
    @pytest.mark.asyncio
    async def test_all_steps_pass(self, case_executor, driver_provider):
        case = make_case(
            {"action": "navigate", "target": "https://app.example.com"},
            {"action": "type", "target": "#email", "value": "user@example.com"},
            {"action": "assert", "target": "#welcome"},
        )

        outcome = await case_executor.execute_test_case("exec-1", case, "proj-1", "user-1", "staging")

        execution = outcome.execution
        assert outcome.success is True
        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.result == ExecutionResult.PASS
        assert [s.step_index for s in execution.steps] == [0, 1, 2]
        assert execution.metadata.driver_version == "120.0.6099.28"
        assert execution.metadata.environment == "staging"
        assert execution.start_time and execution.end_time
        assert execution.duration >= 0
        assert driver_provider.opened == 1
        assert driver_provider.closed == 1

    @pytest.mark.asyncio
    async def test_stops_at_first_failure(self, case_executor, mock_driver):
        mock_driver.click.side_effect = Exception("Element is covered by another element")
        case = make_case(
            {"action": "navigate", "target": "https://app.example.com"},
            {"action": "click", "target": "#submit"},
            {"action": "navigate", "target": "https://app.example.com/next"},
        )

        outcome = await case_executor.execute_test_case("exec-1", case, "proj-1", "user-1")

        execution = outcome.execution
        assert len(execution.steps) == 2
        assert execution.result == ExecutionResult.FAIL
        assert outcome.success is False
        assert mock_driver.navigate.await_count == 1
        assert execution.screenshots == [execution.steps[1].screenshot]

    @pytest.mark.asyncio
    async def test_error_step_gives_error_result(self, case_executor):
        case = make_case(
            {"action": "wait", "value": "10"},
            {"action": "teleport", "target": "#x"},
        )

        outcome = await case_executor.execute_test_case("exec-1", case, "proj-1", "user-1")

        assert outcome.execution.result == ExecutionResult.ERROR
        assert outcome.execution.status == ExecutionStatus.COMPLETED
        assert len(outcome.execution.steps) == 2

    @pytest.mark.asyncio
    async def test_zero_steps_is_error(self, case_executor, driver_provider):
        outcome = await case_executor.execute_test_case("exec-1", make_case(), "proj-1", "user-1")

        assert outcome.execution.result == ExecutionResult.ERROR
        assert outcome.execution.steps == []
        assert driver_provider.opened == 0

    @pytest.mark.asyncio
    async def test_api_only_case_skips_driver(self, case_executor, driver_provider):
        case = make_case({"action": "api-call", "target": "https://api.example.com/health"})

        outcome = await case_executor.execute_test_case("exec-1", case, "proj-1", "user-1")

        assert outcome.success is True
        assert driver_provider.opened == 0
        assert outcome.execution.metadata.driver_version is None

    @pytest.mark.asyncio
    async def test_unexpected_step_exception_becomes_error_result(self, case_executor, driver_provider):
        case_executor.step_executor.execute_step = AsyncMock(side_effect=RuntimeError("handler crashed"))
        case = make_case(
            {"action": "click", "target": "#a"},
            {"action": "click", "target": "#b"},
        )

        outcome = await case_executor.execute_test_case("exec-1", case, "proj-1", "user-1")

        steps = outcome.execution.steps
        assert len(steps) == 1
        assert steps[0].status == StepStatus.ERROR
        assert steps[0].error_message == "handler crashed"
        assert outcome.execution.result == ExecutionResult.ERROR
        assert driver_provider.closed == 1

    @pytest.mark.asyncio
    async def test_driver_setup_failure(self, step_executor, screenshot_store):
        provider = FakeDriverProvider(setup_error=DriverSetupError("Browser initialization failed: no chromium"))
        executor = TestCaseExecutor(step_executor, provider, screenshot_store)
        case = make_case({"action": "navigate", "target": "https://app.example.com"})

        outcome = await executor.execute_test_case("exec-1", case, "proj-1", "user-1")

        execution = outcome.execution
        assert execution.status == ExecutionStatus.ERROR
        assert execution.result == ExecutionResult.ERROR
        assert execution.error_message == "Browser initialization failed: no chromium"
        assert execution.steps == []

    @pytest.mark.asyncio
    async def test_missing_provider_is_setup_error(self, step_executor):
        executor = TestCaseExecutor(step_executor, driver_provider=None)
        case = make_case({"action": "click", "target": "#a"})

        outcome = await executor.execute_test_case("exec-1", case, "proj-1", "user-1")

        assert outcome.execution.status == ExecutionStatus.ERROR
        assert outcome.execution.error_message == "No UI driver provider configured"

    @pytest.mark.asyncio
    async def test_session_released_when_step_fails(self, case_executor, driver_provider, mock_driver):
        mock_driver.navigate.side_effect = Exception("Timeout 30000ms exceeded")
        case = make_case({"action": "navigate", "target": "https://slow.example.com"})

        outcome = await case_executor.execute_test_case("exec-1", case, "proj-1", "user-1")

        assert outcome.execution.result == ExecutionResult.FAIL
        assert mock_driver.navigate.await_count == 3
        assert driver_provider.closed == 1

    @pytest.mark.asyncio
    async def test_suite_links_recorded(self, case_executor):
        case = make_case({"action": "wait", "value": "1"}, suite_id="suite-1")

        outcome = await case_executor.execute_test_case(
            "exec-1", case, "proj-1", "user-1", suite_execution_id="suite-exec-1"
        )

        assert outcome.execution.test_suite_id == "suite-1"
        assert outcome.execution.suite_execution_id == "suite-exec-1"
        assert outcome.execution.test_case_id == "tc-login"
