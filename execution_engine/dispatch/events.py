"""
Execution event publication.

Completion and critical-alert events are handed to an EventSink. Sinks never
raise: a delivery problem is logged and reported as a missing event id.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

import aiohttp
from pydantic import Field

from ..core.logging_config import get_logger
from ..execution.models import (
    Execution,
    ExecutionResult,
    ExecutionStatus,
    WireModel,
    utc_now_iso,
)


class EventType(str, Enum):
    """Kinds of events produced by the engine."""

    TEST_COMPLETION = "test_completion"
    TEST_FAILURE = "test_failure"
    CRITICAL_ALERT = "critical_alert"


class ExecutionEvent(WireModel):
    """Event envelope delivered to sinks."""

    event_type: EventType
    event_id: str
    timestamp: str = Field(default_factory=utc_now_iso)
    payload: Dict[str, Any] = Field(default_factory=dict)


class EventSink(Protocol):
    """Destination for events. publish must never raise."""

    async def publish(self, event: ExecutionEvent) -> Optional[str]: ...


class LoggingEventSink:
    """Writes events to the log; useful when no delivery target is configured."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or get_logger(__name__)

    async def publish(self, event: ExecutionEvent) -> Optional[str]:
        self.logger.info(
            f"Event {event.event_type.value}: {event.event_id}",
            extra={"metadata": event.to_wire()},
        )
        return event.event_id


class InMemoryEventSink:
    """Collects published events in a list."""

    def __init__(self):
        self.events: List[ExecutionEvent] = []

    async def publish(self, event: ExecutionEvent) -> Optional[str]:
        self.events.append(event)
        return event.event_id

    def of_type(self, event_type: EventType) -> List[ExecutionEvent]:
        return [e for e in self.events if e.event_type == event_type]


class WebhookEventSink:
    """POSTs each event as JSON to a webhook URL."""

    def __init__(self, url: str, timeout_seconds: float = 10.0):
        self.url = url
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.logger = get_logger(__name__)

    async def publish(self, event: ExecutionEvent) -> Optional[str]:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(
                    self.url,
                    json=event.to_wire(),
                    headers={"Content-Type": "application/json"},
                ) as response:
                    if 200 <= response.status < 300:
                        self.logger.info(
                            f"Event {event.event_id} delivered",
                            extra={"metadata": {"event_type": event.event_type.value}},
                        )
                        return event.event_id
                    self.logger.warning(
                        f"Event delivery failed with status {response.status}",
                        extra={"metadata": {"event_id": event.event_id}},
                    )
                    return None
        except Exception as e:
            self.logger.error(f"Failed to deliver event {event.event_id}: {e}")
            return None


def determine_event_type(execution: Execution) -> EventType:
    """critical_alert on error, test_failure on fail, test_completion otherwise."""
    if execution.status == ExecutionStatus.ERROR or execution.result == ExecutionResult.ERROR:
        return EventType.CRITICAL_ALERT
    if execution.result == ExecutionResult.FAIL:
        return EventType.TEST_FAILURE
    return EventType.TEST_COMPLETION


def _compact(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in payload.items() if v is not None}


class EventPublisher:
    """Builds execution events and hands them to a sink."""

    def __init__(self, sink: EventSink):
        self.sink = sink
        self.logger = get_logger(__name__)

    def build_completion_event(self, execution: Execution) -> ExecutionEvent:
        return ExecutionEvent(
            event_type=determine_event_type(execution),
            event_id=execution.execution_id,
            payload=_compact(
                {
                    "executionId": execution.execution_id,
                    "testCaseId": execution.test_case_id,
                    "testSuiteId": execution.test_suite_id,
                    "suiteExecutionId": execution.suite_execution_id,
                    "projectId": execution.project_id,
                    "status": execution.status.value,
                    "result": execution.result.value if execution.result else None,
                    "duration": execution.duration,
                    "errorMessage": execution.error_message,
                    "screenshots": list(execution.screenshots),
                    "triggeredBy": execution.metadata.triggered_by,
                }
            ),
        )

    async def publish_event(self, event: ExecutionEvent) -> Optional[str]:
        """Publish an event, returning its id or None when delivery failed."""
        try:
            event_id = await self.sink.publish(event)
        except Exception as e:
            self.logger.error(
                f"Event sink raised while publishing {event.event_id}: {e}",
                extra={"metadata": {"event_type": event.event_type.value}},
            )
            return None

        if event_id is None:
            self.logger.warning(f"Event {event.event_id} was not delivered")
        return event_id

    async def publish_completion(self, execution: Execution) -> Optional[str]:
        event = self.build_completion_event(execution)
        self.logger.info(
            f"Publishing {event.event_type.value} for execution {execution.execution_id}",
            extra={"execution_id": execution.execution_id},
        )
        return await self.publish_event(event)
