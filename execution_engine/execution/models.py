"""
Data models for test cases, step results and execution records.

Defines Pydantic models for the inbound task message, the persisted
execution record and the per-step results recorded on it. Attributes are
snake_case in Python and camelCase on the wire.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_timestamp(value: datetime) -> str:
    """Format a datetime as an ISO-8601 UTC string with millisecond precision."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def utc_now_iso() -> str:
    return to_timestamp(utc_now())


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def milliseconds_between(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() * 1000)


class ActionType(str, Enum):
    """Known step action kinds."""

    NAVIGATE = "navigate"
    CLICK = "click"
    TYPE = "type"
    WAIT = "wait"
    ASSERT = "assert"
    API_CALL = "api-call"


class StepStatus(str, Enum):
    """Outcome of a single step."""

    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"


class ExecutionStatus(str, Enum):
    """Lifecycle status of an execution record."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.ERROR)

    def can_transition_to(self, new_status: "ExecutionStatus") -> bool:
        """Check the queued -> running -> completed/error state machine."""
        return new_status in _VALID_TRANSITIONS[self]


_VALID_TRANSITIONS = {
    ExecutionStatus.QUEUED: {ExecutionStatus.RUNNING, ExecutionStatus.ERROR},
    ExecutionStatus.RUNNING: {ExecutionStatus.COMPLETED, ExecutionStatus.ERROR},
    ExecutionStatus.COMPLETED: set(),
    ExecutionStatus.ERROR: set(),
}


class ExecutionResult(str, Enum):
    """Final verdict of an execution."""

    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"

    @property
    def is_failure(self) -> bool:
        return self in (ExecutionResult.FAIL, ExecutionResult.ERROR)


class WireModel(BaseModel):
    """Base model with camelCase aliases for JSON payloads."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dict using camelCase keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TestStep(WireModel):
    """One atomic action within a test case."""

    __test__ = False

    action: str = Field(..., description="Action kind, e.g. navigate or api-call")
    target: Optional[str] = Field(None, description="Selector or URL")
    value: Optional[str] = Field(None, description="Input text, JSON or duration")
    expected_result: Optional[str] = Field(
        None, description="Assertion kind or HTTP method"
    )

    @field_validator("action")
    @classmethod
    def validate_action(cls, v):
        if not v or not v.strip():
            raise ValueError("Step action cannot be empty")
        return v.strip()

    @property
    def action_type(self) -> Optional[ActionType]:
        """The known action kind, or None for unrecognised actions."""
        try:
            return ActionType(self.action)
        except ValueError:
            return None


class TestCase(WireModel):
    """Ordered sequence of steps with an optional parent suite."""

    __test__ = False

    model_config = ConfigDict(extra="allow")

    test_case_id: str = Field(..., description="Test case identifier")
    project_id: Optional[str] = Field(None, description="Owning project")
    name: Optional[str] = Field(None, description="Display name")
    description: Optional[str] = Field(None, description="Free-form description")
    suite_id: Optional[str] = Field(None, description="Parent test suite")
    steps: List[TestStep] = Field(..., description="Steps in execution order")


class TestSuite(WireModel):
    """A named group of test cases triggered together."""

    __test__ = False

    test_suite_id: str = Field(..., description="Test suite identifier")
    project_id: Optional[str] = Field(None, description="Owning project")
    name: Optional[str] = Field(None, description="Display name")
    test_cases: List[TestCase] = Field(default_factory=list, description="Member test cases")


class APIRequestDetails(WireModel):
    """Request recorded on an api-call step."""

    method: str
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None


class APIResponseDetails(WireModel):
    """Response recorded on an api-call step."""

    status_code: int
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None
    duration: int


class StepResult(WireModel):
    """Outcome of executing a single test step."""

    step_index: int = Field(..., ge=0)
    action: str
    status: StepStatus
    duration: int = Field(..., ge=0, description="Wall-clock duration in milliseconds")
    error_message: Optional[str] = None
    screenshot: Optional[str] = Field(None, description="Screenshot storage key")
    details: Dict[str, Any] = Field(default_factory=dict)

    @property
    def halts_execution(self) -> bool:
        return self.status in (StepStatus.FAIL, StepStatus.ERROR)


class SuiteAggregate(WireModel):
    """Plain tallies of constituent results."""

    total: int = 0
    passed: int = 0
    failed: int = 0
    errors: int = 0


class ExecutionMetadata(WireModel):
    """Metadata attached to an execution record."""

    model_config = ConfigDict(extra="allow")

    triggered_by: str
    environment: Optional[str] = None
    driver_version: Optional[str] = None
    aggregate: Optional[SuiteAggregate] = None


class Execution(WireModel):
    """One attempt to run a single test case, or a suite aggregate record."""

    execution_id: str
    project_id: str
    test_case_id: Optional[str] = None
    test_suite_id: Optional[str] = None
    suite_execution_id: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.QUEUED
    result: Optional[ExecutionResult] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    duration: Optional[int] = Field(None, ge=0, description="Duration in milliseconds")
    steps: List[StepResult] = Field(default_factory=list)
    screenshots: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None
    metadata: ExecutionMetadata
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)

    @classmethod
    def queued(
        cls,
        execution_id: str,
        project_id: str,
        triggered_by: str,
        test_case_id: Optional[str] = None,
        suite_execution_id: Optional[str] = None,
        environment: Optional[str] = None,
        test_suite_id: Optional[str] = None,
    ) -> "Execution":
        """Build a fresh queued record as the triggering side creates it."""
        now = utc_now_iso()
        return cls(
            execution_id=execution_id,
            project_id=project_id,
            test_case_id=test_case_id,
            test_suite_id=test_suite_id,
            suite_execution_id=suite_execution_id,
            status=ExecutionStatus.QUEUED,
            start_time=now,
            metadata=ExecutionMetadata(
                triggered_by=triggered_by, environment=environment
            ),
            created_at=now,
            updated_at=now,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def last_activity(self) -> str:
        """End time when finished, creation time otherwise."""
        return self.end_time or self.created_at


class TaskMetadata(WireModel):
    """Trigger context carried on a task message."""

    triggered_by: str
    environment: Optional[str] = None


class TaskMessage(WireModel):
    """Inbound queue message requesting one execution attempt."""

    execution_id: str
    test_case_id: Optional[str] = None
    suite_execution_id: Optional[str] = None
    project_id: str
    test_case: TestCase
    metadata: TaskMetadata

    @field_validator("execution_id", "project_id")
    @classmethod
    def validate_identifier(cls, v):
        if not v or not v.strip():
            raise ValueError("Identifier cannot be empty")
        return v.strip()
