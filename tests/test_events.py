"""
Unit tests for event types, sinks and the publisher.
"""

from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest

from execution_engine.dispatch.events import (
    EventPublisher,
    EventType,
    ExecutionEvent,
    LoggingEventSink,
    WebhookEventSink,
    determine_event_type,
)
from execution_engine.execution.models import ExecutionStatus


def mock_session(status=200, post_error=None):
    """aiohttp.ClientSession replacement whose post yields a response with status."""
    response = MagicMock()
    response.status = status

    session = MagicMock()
    session.__aenter__.return_value = session
    if post_error is not None:
        session.post.side_effect = post_error
    else:
        session.post.return_value.__aenter__.return_value = response
    return session


class TestDetermineEventType:
    def test_pass_is_completion(self, execution_factory):
        assert determine_event_type(execution_factory("e", result="pass")) == EventType.TEST_COMPLETION

    def test_fail_is_failure(self, execution_factory):
        assert determine_event_type(execution_factory("e", result="fail")) == EventType.TEST_FAILURE

    def test_error_result_is_critical(self, execution_factory):
        assert determine_event_type(execution_factory("e", result="error")) == EventType.CRITICAL_ALERT

    def test_error_status_is_critical(self, execution_factory):
        execution = execution_factory("e", status=ExecutionStatus.ERROR)
        assert determine_event_type(execution) == EventType.CRITICAL_ALERT


class TestEventPublisher:
    def test_completion_payload(self, publisher, execution_factory):
        execution = execution_factory(
            "exec-1", result="fail", suite_execution_id="suite-1", end_minutes=1, error_message="nope"
        )
        execution.screenshots = ["screenshots/exec-1/step-0.png"]

        event = publisher.build_completion_event(execution)

        assert event.event_id == "exec-1"
        assert event.payload == {
            "executionId": "exec-1",
            "testCaseId": "tc-login",
            "suiteExecutionId": "suite-1",
            "projectId": "proj-1",
            "status": "completed",
            "result": "fail",
            "errorMessage": "nope",
            "screenshots": ["screenshots/exec-1/step-0.png"],
            "triggeredBy": "user-1",
        }

    @pytest.mark.asyncio
    async def test_publish_completion_reaches_sink(self, publisher, event_sink, execution_factory):
        event_id = await publisher.publish_completion(execution_factory("exec-1", result="pass"))

        assert event_id == "exec-1"
        assert len(event_sink.events) == 1

    @pytest.mark.asyncio
    async def test_sink_exception_is_swallowed(self, execution_factory):
        sink = Mock()
        sink.publish = AsyncMock(side_effect=RuntimeError("bus down"))

        event_id = await EventPublisher(sink).publish_completion(execution_factory("exec-1", result="pass"))

        assert event_id is None

    def test_event_wire_format(self):
        event = ExecutionEvent(event_type=EventType.CRITICAL_ALERT, event_id="alert-1", payload={"a": 1})

        wire = event.to_wire()

        assert wire["eventType"] == "critical_alert"
        assert wire["eventId"] == "alert-1"
        assert wire["timestamp"].endswith("Z")


class TestSinks:
    @pytest.mark.asyncio
    async def test_logging_sink_returns_id(self):
        event = ExecutionEvent(event_type=EventType.TEST_COMPLETION, event_id="exec-1")

        assert await LoggingEventSink().publish(event) == "exec-1"

    @pytest.mark.asyncio
    async def test_in_memory_sink_filters_by_type(self, event_sink):
        await event_sink.publish(ExecutionEvent(event_type=EventType.TEST_COMPLETION, event_id="a"))
        await event_sink.publish(ExecutionEvent(event_type=EventType.CRITICAL_ALERT, event_id="b"))

        assert [e.event_id for e in event_sink.of_type(EventType.CRITICAL_ALERT)] == ["b"]

    @pytest.mark.asyncio
    async def test_webhook_posts_wire_payload(self):
        session = mock_session(status=202)
        event = ExecutionEvent(event_type=EventType.TEST_FAILURE, event_id="exec-1", payload={"result": "fail"})

        with patch("execution_engine.dispatch.events.aiohttp.ClientSession", return_value=session):
            event_id = await WebhookEventSink("https://hooks.example.com/events").publish(event)

        assert event_id == "exec-1"
        args, kwargs = session.post.call_args
        assert args == ("https://hooks.example.com/events",)
        assert kwargs["json"]["eventType"] == "test_failure"
        assert kwargs["json"]["payload"] == {"result": "fail"}

    @pytest.mark.asyncio
    async def test_webhook_non_2xx_returns_none(self):
        event = ExecutionEvent(event_type=EventType.TEST_COMPLETION, event_id="exec-1")

        with patch("execution_engine.dispatch.events.aiohttp.ClientSession", return_value=mock_session(500)):
            assert await WebhookEventSink("https://hooks.example.com").publish(event) is None

    @pytest.mark.asyncio
    async def test_webhook_connection_error_returns_none(self):
        event = ExecutionEvent(event_type=EventType.TEST_COMPLETION, event_id="exec-1")
        session = mock_session(post_error=OSError("connection refused"))

        with patch("execution_engine.dispatch.events.aiohttp.ClientSession", return_value=session):
            assert await WebhookEventSink("https://hooks.example.com").publish(event) is None
