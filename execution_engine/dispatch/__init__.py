"""
Task triggering, dispatch and event publication.

The events module is imported first; the analysis package depends on it.
"""

from .events import (
    EventPublisher,
    EventSink,
    EventType,
    ExecutionEvent,
    InMemoryEventSink,
    LoggingEventSink,
    WebhookEventSink,
    determine_event_type,
)
from .dispatcher import (
    DeadlineTimeBudget,
    DispatchResult,
    Dispatcher,
    FixedTimeBudget,
    TimeBudget,
)
from .trigger import ExecutionTrigger, TriggerResponse

__all__ = [
    "EventPublisher",
    "EventSink",
    "EventType",
    "ExecutionEvent",
    "InMemoryEventSink",
    "LoggingEventSink",
    "WebhookEventSink",
    "determine_event_type",
    "DeadlineTimeBudget",
    "DispatchResult",
    "Dispatcher",
    "FixedTimeBudget",
    "TimeBudget",
    "ExecutionTrigger",
    "TriggerResponse",
]
