"""
Pytest configuration and shared fixtures for execution engine tests.

Provides mock drivers and HTTP clients, in-memory stores, execution record
factories and a configuration with retry delays disabled.
"""

import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock, patch

import pytest

from execution_engine.core.config import Config
from execution_engine.dispatch.events import EventPublisher, InMemoryEventSink
from execution_engine.drivers.protocols import HTTPResponse
from execution_engine.execution.artifacts import ScreenshotStore
from execution_engine.execution.models import (
    Execution,
    ExecutionMetadata,
    ExecutionResult,
    ExecutionStatus,
    to_timestamp,
)
from execution_engine.execution.steps import StepContext, StepExecutor, StepSettings
from execution_engine.persistence.store import InMemoryExecutionStore

BASE_TIME = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def clean_environment():
    """Remove CI and EXECUTION_ENGINE_* variables for every test."""
    keys = [k for k in os.environ if k == "CI" or k.startswith("EXECUTION_ENGINE_")]
    with patch.dict(os.environ, {}, clear=False):
        for key in keys:
            del os.environ[key]
        yield


@pytest.fixture(autouse=True)
def retry_sleep():
    """Replace backoff sleeps so retries run instantly; records requested delays."""
    with patch("execution_engine.core.retry._sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


@pytest.fixture(autouse=True)
def wait_sleep():
    """Replace the wait action sleep."""
    with patch("execution_engine.execution.steps._sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


@pytest.fixture
def config(tmp_path):
    """Configuration rooted in a temporary directory."""
    return Config(
        artifacts_dir=tmp_path / "artifacts",
        logs_dir=tmp_path / "logs",
        store_dir=tmp_path / "executions",
        suite_check_delay_ms=0,
    )


@pytest.fixture
def mock_element():
    element = Mock()
    element.is_visible = AsyncMock(return_value=True)
    element.text_content = AsyncMock(return_value="Welcome back")
    element.input_value = AsyncMock(return_value="user@example.com")
    return element


@pytest.fixture
def mock_driver(mock_element):
    """UI driver mock whose actions all succeed."""
    driver = Mock()
    driver.navigate = AsyncMock(return_value=None)
    driver.click = AsyncMock(return_value=None)
    driver.fill = AsyncMock(return_value=None)
    driver.wait_for_selector = AsyncMock(return_value=mock_element)
    driver.screenshot = AsyncMock(return_value=b"\x89PNG fake image")
    driver.version = AsyncMock(return_value="120.0.6099.28")
    return driver


class FakeDriverProvider:
    """Driver provider that hands out one mock driver and counts sessions."""

    def __init__(self, driver=None, setup_error=None):
        self.driver = driver
        self.setup_error = setup_error
        self.opened = 0
        self.closed = 0

    @asynccontextmanager
    async def session(self):
        if self.setup_error is not None:
            raise self.setup_error
        self.opened += 1
        try:
            yield self.driver
        finally:
            self.closed += 1


@pytest.fixture
def driver_provider(mock_driver):
    return FakeDriverProvider(mock_driver)


@pytest.fixture
def http_client():
    client = Mock()
    client.request = AsyncMock(
        return_value=HTTPResponse(
            status=200,
            status_text="OK",
            headers={"content-type": "application/json"},
            data={"ok": True},
        )
    )
    return client


@pytest.fixture
def screenshot_store(tmp_path):
    return ScreenshotStore(tmp_path / "artifacts")


@pytest.fixture
def step_context(screenshot_store):
    return StepContext(execution_id="exec-1", screenshot_store=screenshot_store)


@pytest.fixture
def step_executor(http_client):
    return StepExecutor(http_client=http_client, settings=StepSettings(initial_delay_ms=0))


@pytest.fixture
def store():
    return InMemoryExecutionStore()


@pytest.fixture
def event_sink():
    return InMemoryEventSink()


@pytest.fixture
def publisher(event_sink):
    return EventPublisher(event_sink)


@pytest.fixture
def execution_factory():
    """
    Build execution records.

    ``minutes`` offsets created_at from a fixed base time, so larger values
    are more recent.
    """

    def make(
        execution_id,
        result=None,
        status=None,
        test_case_id="tc-login",
        suite_execution_id=None,
        minutes=0,
        end_minutes=None,
        error_message=None,
        project_id="proj-1",
    ):
        created = BASE_TIME + timedelta(minutes=minutes)
        if status is None:
            status = ExecutionStatus.COMPLETED if result else ExecutionStatus.QUEUED
        end_time = None
        if end_minutes is not None:
            end_time = to_timestamp(BASE_TIME + timedelta(minutes=end_minutes))
        return Execution(
            execution_id=execution_id,
            project_id=project_id,
            test_case_id=test_case_id,
            suite_execution_id=suite_execution_id,
            status=status,
            result=ExecutionResult(result) if result else None,
            start_time=to_timestamp(created),
            end_time=end_time,
            error_message=error_message,
            metadata=ExecutionMetadata(triggered_by="user-1"),
            created_at=to_timestamp(created),
            updated_at=to_timestamp(created),
        )

    return make


@pytest.fixture
def task_message():
    """A task message for a two-step UI test case."""
    return {
        "executionId": "exec-1",
        "testCaseId": "tc-login",
        "projectId": "proj-1",
        "testCase": {
            "testCaseId": "tc-login",
            "projectId": "proj-1",
            "name": "Login",
            "description": "User can log in",
            "steps": [
                {"action": "navigate", "target": "https://app.example.com/login"},
                {"action": "click", "target": "#submit"},
            ],
        },
        "metadata": {"triggeredBy": "user-1", "environment": "staging"},
    }
