"""
Execution triggering.

Creates the queued execution records for a single test case, or for every
case of a suite under a fresh suite execution id, and returns the task
messages a Dispatcher consumes. Delivering the messages is up to the caller.
"""

import uuid
from typing import Callable, List, Optional

from pydantic import Field

from ..core.exceptions import ValidationError
from ..core.logging_config import get_logger
from ..execution.models import (
    Execution,
    TaskMessage,
    TaskMetadata,
    TestCase,
    TestSuite,
    WireModel,
)
from ..persistence.store import ExecutionStore


class TriggerResponse(WireModel):
    """Ids of the records created by a trigger, plus their task messages."""

    execution_id: Optional[str] = None
    suite_execution_id: Optional[str] = None
    test_case_execution_ids: List[str] = Field(default_factory=list)
    status: str = "queued"
    message: str
    messages: List[TaskMessage] = Field(default_factory=list, exclude=True)


class ExecutionTrigger:
    """Creates queued execution records and their task messages."""

    def __init__(
        self,
        store: ExecutionStore,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.store = store
        self.id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self.logger = get_logger(__name__)

    @staticmethod
    def _resolve_project(test_case: TestCase, *fallbacks: Optional[str]) -> str:
        for candidate in (test_case.project_id, *fallbacks):
            if candidate:
                return candidate
        raise ValidationError(
            f"Project id is required for test case {test_case.test_case_id}",
            validation_type="trigger",
        )

    async def _queue_case(
        self,
        test_case: TestCase,
        project_id: str,
        triggered_by: str,
        environment: Optional[str],
        suite_execution_id: Optional[str] = None,
        test_suite_id: Optional[str] = None,
    ) -> TaskMessage:
        execution_id = self.id_factory()
        await self.store.put(
            Execution.queued(
                execution_id=execution_id,
                project_id=project_id,
                triggered_by=triggered_by,
                test_case_id=test_case.test_case_id,
                suite_execution_id=suite_execution_id,
                environment=environment,
                test_suite_id=test_suite_id,
            )
        )
        self.logger.info(
            f"Created execution record: {execution_id} for test case: {test_case.test_case_id}"
        )

        return TaskMessage(
            execution_id=execution_id,
            test_case_id=test_case.test_case_id,
            suite_execution_id=suite_execution_id,
            project_id=project_id,
            test_case=test_case,
            metadata=TaskMetadata(triggered_by=triggered_by, environment=environment),
        )

    async def trigger_test_case(
        self,
        test_case: TestCase,
        triggered_by: str,
        environment: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> TriggerResponse:
        """Queue a single test case execution."""
        project = self._resolve_project(test_case, project_id)
        message = await self._queue_case(test_case, project, triggered_by, environment)

        return TriggerResponse(
            execution_id=message.execution_id,
            message="Test case execution queued successfully",
            messages=[message],
        )

    async def trigger_test_suite(
        self,
        suite: TestSuite,
        triggered_by: str,
        environment: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> TriggerResponse:
        """
        Queue every case of a suite under a new suite execution.

        The suite execution record is created first so that the aggregator
        can recompute it as the case executions complete.

        Raises:
            ValidationError: If the suite has no test cases or a project id
                cannot be resolved
        """
        if not suite.test_cases:
            raise ValidationError(
                f"No test cases found in suite: {suite.test_suite_id}",
                validation_type="trigger",
            )

        projects = [
            self._resolve_project(case, suite.project_id, project_id)
            for case in suite.test_cases
        ]

        suite_execution_id = self.id_factory()
        await self.store.put(
            Execution.queued(
                execution_id=suite_execution_id,
                project_id=suite.project_id or project_id or projects[0],
                triggered_by=triggered_by,
                environment=environment,
                test_suite_id=suite.test_suite_id,
            )
        )

        messages = []
        for case, project in zip(suite.test_cases, projects):
            messages.append(
                await self._queue_case(
                    case,
                    project,
                    triggered_by,
                    environment,
                    suite_execution_id=suite_execution_id,
                    test_suite_id=suite.test_suite_id,
                )
            )

        self.logger.info(
            f"Queued {len(messages)} test cases for suite: {suite.test_suite_id}",
            extra={"metadata": {"suite_execution_id": suite_execution_id}},
        )
        return TriggerResponse(
            suite_execution_id=suite_execution_id,
            test_case_execution_ids=[m.execution_id for m in messages],
            message=f"Test suite execution queued successfully with {len(messages)} test cases",
            messages=messages,
        )
