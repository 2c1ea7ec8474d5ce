"""
Test case execution.

Sequences the steps of one test case, owns the UI driver session for the
duration of the case and derives the case-level result from step statuses.
"""

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Sequence

from ..core.exceptions import DriverSetupError
from ..core.logging_config import get_logger, log_performance
from ..drivers.protocols import DriverProvider, UIDriver
from .artifacts import ScreenshotStore
from .models import (
    Execution,
    ExecutionMetadata,
    ExecutionResult,
    ExecutionStatus,
    StepResult,
    StepStatus,
    TestCase,
    to_timestamp,
    utc_now,
)
from .steps import StepContext, StepExecutor


@dataclass
class CaseExecutionOutcome:
    """Execution record built for a test case, plus whether it passed."""

    execution: Execution
    success: bool


def determine_execution_result(step_results: Sequence[StepResult]) -> ExecutionResult:
    """Precedence error > fail > pass; no executed steps is an error."""
    if not step_results:
        return ExecutionResult.ERROR

    statuses = {result.status for result in step_results}
    if StepStatus.ERROR in statuses:
        return ExecutionResult.ERROR
    if StepStatus.FAIL in statuses:
        return ExecutionResult.FAIL
    return ExecutionResult.PASS


class TestCaseExecutor:
    """
    Runs all steps of a test case in order, stopping at the first fail/error.

    A driver session is acquired only when a step needs one, and is released
    on every exit path by the provider's async context manager.
    """

    __test__ = False

    def __init__(
        self,
        step_executor: StepExecutor,
        driver_provider: Optional[DriverProvider] = None,
        screenshot_store: Optional[ScreenshotStore] = None,
    ):
        self.step_executor = step_executor
        self.driver_provider = driver_provider
        self.screenshot_store = screenshot_store
        self.logger = get_logger(__name__)

    @asynccontextmanager
    async def _driver_scope(self, needs_driver: bool) -> AsyncIterator[Optional[UIDriver]]:
        if not needs_driver:
            yield None
            return

        if self.driver_provider is None:
            raise DriverSetupError("No UI driver provider configured")

        async with self.driver_provider.session() as driver:
            yield driver

    async def _run_steps(
        self,
        driver: Optional[UIDriver],
        test_case: TestCase,
        context: StepContext,
    ) -> List[StepResult]:
        results: List[StepResult] = []
        total = len(test_case.steps)

        for index, step in enumerate(test_case.steps):
            self.logger.debug(f"Executing step {index + 1}/{total}: {step.action}")
            step_started = time.monotonic()
            try:
                result = await self.step_executor.execute_step(driver, step, index, context)
            except Exception as e:
                self.logger.error(
                    f"Unexpected error in step {index + 1}: {e}",
                    exc_info=True,
                    extra={"execution_id": context.execution_id, "step_index": index},
                )
                result = StepResult(
                    step_index=index,
                    action=step.action,
                    status=StepStatus.ERROR,
                    duration=int((time.monotonic() - step_started) * 1000),
                    error_message=str(e) or type(e).__name__,
                )

            results.append(result)
            if result.halts_execution:
                self.logger.info(
                    f"Step {index + 1} {result.status.value}, stopping execution",
                    extra={"execution_id": context.execution_id},
                )
                break

        return results

    async def execute_test_case(
        self,
        execution_id: str,
        test_case: TestCase,
        project_id: str,
        triggered_by: str,
        environment: Optional[str] = None,
        suite_execution_id: Optional[str] = None,
    ) -> CaseExecutionOutcome:
        """
        Execute a complete test case.

        Args:
            execution_id: Execution record this run belongs to
            test_case: Test case to run
            project_id: Owning project
            triggered_by: User or system that requested the run
            environment: Optional environment label
            suite_execution_id: Parent suite execution, if any

        Returns:
            CaseExecutionOutcome with the built execution record
        """
        started_at = utc_now()
        started = time.monotonic()
        context = StepContext(execution_id=execution_id, screenshot_store=self.screenshot_store)
        needs_driver = self.step_executor.requires_driver(test_case.steps)

        self.logger.info(
            f"Starting execution {execution_id} for test case {test_case.test_case_id}",
            extra={
                "execution_id": execution_id,
                "metadata": {"steps": len(test_case.steps), "needs_driver": needs_driver},
            },
        )

        step_results: List[StepResult] = []
        driver_version: Optional[str] = None
        error_message: Optional[str] = None

        try:
            async with self._driver_scope(needs_driver) as driver:
                if driver is not None:
                    driver_version = await driver.version()
                step_results = await self._run_steps(driver, test_case, context)
            result = determine_execution_result(step_results)
            status = ExecutionStatus.COMPLETED
        except Exception as e:
            self.logger.error(
                f"Execution {execution_id} failed during setup: {e}",
                extra={"execution_id": execution_id},
            )
            status = ExecutionStatus.ERROR
            result = ExecutionResult.ERROR
            error_message = str(e) or type(e).__name__

        ended_at = utc_now()
        duration = int((time.monotonic() - started) * 1000)

        execution = Execution(
            execution_id=execution_id,
            project_id=project_id,
            test_case_id=test_case.test_case_id,
            test_suite_id=test_case.suite_id,
            suite_execution_id=suite_execution_id,
            status=status,
            result=result,
            start_time=to_timestamp(started_at),
            end_time=to_timestamp(ended_at),
            duration=duration,
            steps=step_results,
            screenshots=[r.screenshot for r in step_results if r.screenshot],
            error_message=error_message,
            metadata=ExecutionMetadata(
                triggered_by=triggered_by,
                environment=environment,
                driver_version=driver_version,
            ),
            created_at=to_timestamp(started_at),
            updated_at=to_timestamp(ended_at),
        )

        log_performance(
            self.logger,
            "execute_test_case",
            duration,
            execution_id=execution_id,
            result=result.value,
            steps_executed=len(step_results),
        )

        return CaseExecutionOutcome(
            execution=execution, success=result == ExecutionResult.PASS
        )
