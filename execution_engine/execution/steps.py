"""
Step execution for test cases.

Each action kind is handled by a StepAction subclass that declares whether
it needs a UI driver and which error substrings it treats as transient.
Handlers return a StepOutcome rather than raising; StepExecutor turns the
outcome into a timed StepResult and captures a screenshot where requested.
"""

import asyncio
import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple

from ..core.config import Config
from ..core.exceptions import DriverRequiredError, StepAssertionError
from ..core.logging_config import get_logger
from ..core.retry import RetryOptions, retry_with_backoff
from ..drivers.protocols import HTTPClient, HTTPRequest, UIDriver
from .artifacts import ScreenshotStore
from .models import (
    ActionType,
    APIRequestDetails,
    APIResponseDetails,
    StepResult,
    StepStatus,
    TestStep,
)

UI_RETRYABLE_ERRORS = ("timeout", "not found", "not visible", "detached")
NAVIGATION_RETRYABLE_ERRORS = ("timeout", "net::ERR", "Navigation timeout")
TRANSPORT_RETRYABLE_ERRORS = (
    "ETIMEDOUT",
    "ECONNRESET",
    "ECONNREFUSED",
    "ENOTFOUND",
    "network",
    "timeout",
)

DEFAULT_WAIT_MS = "1000"
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


async def _sleep(delay_ms: int) -> None:
    await asyncio.sleep(delay_ms / 1000)


def _describe(error: BaseException, fallback: str) -> str:
    return str(error) or f"{fallback} ({type(error).__name__})"


@dataclass
class StepContext:
    """Per-invocation context threaded through step execution."""

    execution_id: str
    screenshot_store: Optional[ScreenshotStore] = None


@dataclass
class StepSettings:
    """Retry and timeout settings shared by all action handlers."""

    max_attempts: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 8000
    navigation_timeout_ms: int = 30000
    action_timeout_ms: int = 10000
    api_timeout_ms: int = 30000

    @classmethod
    def from_config(cls, config: Config) -> "StepSettings":
        return cls(
            max_attempts=config.step_max_attempts,
            initial_delay_ms=config.step_initial_delay_ms,
            max_delay_ms=config.step_max_delay_ms,
            navigation_timeout_ms=config.navigation_timeout_ms,
            action_timeout_ms=config.action_timeout_ms,
            api_timeout_ms=config.api_timeout_ms,
        )

    def retry_options(self, retryable_errors: Iterable[str]) -> RetryOptions:
        return RetryOptions(
            max_attempts=self.max_attempts,
            initial_delay_ms=self.initial_delay_ms,
            max_delay_ms=self.max_delay_ms,
            retryable_errors=list(retryable_errors),
        )


@dataclass(frozen=True)
class StepOutcome:
    """Tagged result of an action handler: pass, fail(reason) or error(reason)."""

    status: StepStatus
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    capture_screenshot: bool = False

    @classmethod
    def passed(cls, details: Optional[Dict[str, Any]] = None) -> "StepOutcome":
        return cls(StepStatus.PASS, details=details or {})

    @classmethod
    def failed(
        cls,
        reason: str,
        details: Optional[Dict[str, Any]] = None,
        screenshot: bool = False,
    ) -> "StepOutcome":
        return cls(
            StepStatus.FAIL,
            reason=reason,
            details=details or {},
            capture_screenshot=screenshot,
        )

    @classmethod
    def errored(
        cls, reason: str, details: Optional[Dict[str, Any]] = None
    ) -> "StepOutcome":
        return cls(StepStatus.ERROR, reason=reason, details=details or {})


class StepAction:
    """Base class for action handlers."""

    action: ActionType
    requires_driver: bool = True
    retryable_errors: Tuple[str, ...] = UI_RETRYABLE_ERRORS

    def __init__(self, settings: StepSettings, http_client: Optional[HTTPClient] = None):
        self.settings = settings
        self.http_client = http_client
        self.logger = get_logger(f"{__name__}.{self.action.value}")

    @property
    def retry_options(self) -> RetryOptions:
        return self.settings.retry_options(self.retryable_errors)

    async def run(self, driver: Optional[UIDriver], step: TestStep) -> StepOutcome:
        raise NotImplementedError


class NavigateAction(StepAction):
    action = ActionType.NAVIGATE
    retryable_errors = NAVIGATION_RETRYABLE_ERRORS

    async def run(self, driver, step):
        details = {"url": step.target}
        if not step.target:
            return StepOutcome.failed(
                "Navigate action requires a target URL", details, screenshot=True
            )

        self.logger.info(f"Navigating to: {step.target}")
        try:
            await retry_with_backoff(
                lambda: driver.navigate(step.target, self.settings.navigation_timeout_ms),
                self.retry_options,
            )
        except Exception as e:
            return StepOutcome.failed(_describe(e, "Navigation failed"), details, screenshot=True)

        return StepOutcome.passed(details)


class ClickAction(StepAction):
    action = ActionType.CLICK

    async def run(self, driver, step):
        details = {"selector": step.target}
        if not step.target:
            return StepOutcome.failed(
                "Click action requires a target selector", details, screenshot=True
            )

        self.logger.info(f"Clicking element: {step.target}")
        try:
            await retry_with_backoff(
                lambda: driver.click(step.target, self.settings.action_timeout_ms),
                self.retry_options,
            )
        except Exception as e:
            return StepOutcome.failed(_describe(e, "Click action failed"), details, screenshot=True)

        return StepOutcome.passed(details)


class TypeAction(StepAction):
    action = ActionType.TYPE

    async def run(self, driver, step):
        details = {"selector": step.target, "value": step.value}
        if not step.target:
            return StepOutcome.failed(
                "Type action requires a target selector", details, screenshot=True
            )
        if step.value is None:
            return StepOutcome.failed(
                "Type action requires a value to input", details, screenshot=True
            )

        self.logger.info(f"Typing into element: {step.target}")
        try:
            await retry_with_backoff(
                lambda: driver.fill(step.target, step.value, self.settings.action_timeout_ms),
                self.retry_options,
            )
        except Exception as e:
            return StepOutcome.failed(_describe(e, "Type action failed"), details, screenshot=True)

        return StepOutcome.passed(details)


class WaitAction(StepAction):
    action = ActionType.WAIT
    requires_driver = False
    retryable_errors = ()

    @staticmethod
    def parse_duration(step: TestStep) -> Optional[int]:
        """Leading integer of value, else target, else the default; None if invalid."""
        raw = step.value or step.target or DEFAULT_WAIT_MS
        match = _LEADING_INT.match(raw)
        if not match:
            return None
        duration = int(match.group(1))
        return duration if duration >= 0 else None

    async def run(self, driver, step):
        duration_ms = self.parse_duration(step)
        if duration_ms is None:
            return StepOutcome.failed(
                "Wait action requires a valid duration in milliseconds"
            )

        self.logger.info(f"Waiting for {duration_ms}ms")
        await _sleep(duration_ms)
        return StepOutcome.passed({"duration_ms": duration_ms})


class AssertAction(StepAction):
    action = ActionType.ASSERT

    ASSERTION_KINDS = ("visible", "text", "value")

    @classmethod
    def assertion_kind(cls, step: TestStep) -> Optional[str]:
        requested = (step.expected_result or "visible").lower()
        for kind in cls.ASSERTION_KINDS:
            if kind in requested:
                return kind
        return None

    async def _check(self, driver: UIDriver, step: TestStep, kind: Optional[str]) -> None:
        # Unrecognised kinds only require the element to be attached
        element = await driver.wait_for_selector(
            step.target, self.settings.action_timeout_ms, state="attached"
        )
        if element is None:
            raise StepAssertionError(
                f"Element not found: {step.target}", selector=step.target, assertion=kind
            )

        if kind == "visible":
            if not await element.is_visible():
                raise StepAssertionError(
                    f"Element is not visible: {step.target}",
                    selector=step.target,
                    assertion=kind,
                )
        elif kind == "text":
            text = await element.text_content()
            expected = step.value or ""
            if text != expected:
                raise StepAssertionError(
                    f'Expected text "{expected}", got "{text}"',
                    selector=step.target,
                    assertion=kind,
                )
        elif kind == "value":
            value = await element.input_value()
            expected = step.value or ""
            if value != expected:
                raise StepAssertionError(
                    f'Expected value "{expected}", got "{value}"',
                    selector=step.target,
                    assertion=kind,
                )

    async def run(self, driver, step):
        kind = self.assertion_kind(step)
        details = {"selector": step.target, "assertion": kind or step.expected_result}
        if not step.target:
            return StepOutcome.failed(
                "Assert action requires a target selector", details, screenshot=True
            )

        self.logger.info(f"Asserting element: {step.target} ({kind or 'attached'})")
        try:
            await retry_with_backoff(
                lambda: self._check(driver, step, kind), self.retry_options
            )
        except Exception as e:
            return StepOutcome.failed(_describe(e, "Assert action failed"), details, screenshot=True)

        return StepOutcome.passed(details)


class ApiCallAction(StepAction):
    action = ActionType.API_CALL
    requires_driver = False
    retryable_errors = TRANSPORT_RETRYABLE_ERRORS

    @staticmethod
    def parse_payload(value: Optional[str]) -> Tuple[Dict[str, str], Any]:
        """
        Split a step value into request headers and body.

        JSON is always an envelope: "headers" and "body" are read from it and
        any other keys are ignored. Headers that are not an object are
        dropped. Non-JSON text, and a JSON null, are sent as a raw string body.
        """
        if not value:
            return {}, None
        try:
            parsed = json.loads(value)
        except ValueError:
            return {}, value
        if parsed is None:
            return {}, value
        if not isinstance(parsed, dict):
            return {}, None

        raw_headers = parsed.get("headers")
        headers = {}
        if isinstance(raw_headers, dict):
            headers = {str(k): str(v) for k, v in raw_headers.items()}
        return headers, parsed.get("body")

    async def run(self, driver, step):
        if not step.target:
            return StepOutcome.errored(
                "API call action requires a target URL", {"url": step.target}
            )
        if self.http_client is None:
            return StepOutcome.errored(
                "HTTP client is required for api-call action", {"url": step.target}
            )

        method = (step.expected_result or "GET").upper()
        headers, body = self.parse_payload(step.value)
        request = HTTPRequest(
            method=method,
            url=step.target,
            headers=headers,
            body=body,
            timeout_ms=self.settings.api_timeout_ms,
        )

        self.logger.info(f"Making {method} request to: {step.target}")
        started = time.monotonic()
        try:
            response = await retry_with_backoff(
                lambda: self.http_client.request(request), self.retry_options
            )
        except Exception as e:
            return StepOutcome.errored(_describe(e, "API call failed"), {"url": step.target})
        elapsed_ms = int((time.monotonic() - started) * 1000)

        details = {
            "api_request": APIRequestDetails(
                method=method,
                url=step.target,
                headers=headers,
                body=json.dumps(body) if body is not None else None,
            ).to_wire(),
            "api_response": APIResponseDetails(
                status_code=response.status,
                headers=response.headers,
                body=json.dumps(response.data, default=str),
                duration=elapsed_ms,
            ).to_wire(),
        }

        if 200 <= response.status < 400:
            return StepOutcome.passed(details)
        return StepOutcome.failed(f"HTTP {response.status}: {response.status_text}", details)


ACTION_HANDLERS = (
    NavigateAction,
    ClickAction,
    TypeAction,
    WaitAction,
    AssertAction,
    ApiCallAction,
)


class StepExecutor:
    """
    Executes single test steps against a UI driver or HTTP client.

    Step failures never raise: the handler's StepOutcome becomes a StepResult
    with the measured duration, and an unexpected handler exception becomes
    an error result.
    """

    def __init__(
        self,
        http_client: Optional[HTTPClient] = None,
        settings: Optional[StepSettings] = None,
    ):
        self.settings = settings or StepSettings()
        self.http_client = http_client
        self.logger = get_logger(__name__)
        self._handlers: Dict[ActionType, StepAction] = {
            handler.action: handler(self.settings, http_client)
            for handler in ACTION_HANDLERS
        }

    @classmethod
    def from_config(
        cls, config: Config, http_client: Optional[HTTPClient] = None
    ) -> "StepExecutor":
        return cls(http_client=http_client, settings=StepSettings.from_config(config))

    def handler_for(self, step: TestStep) -> Optional[StepAction]:
        action_type = step.action_type
        return self._handlers.get(action_type) if action_type else None

    def requires_driver(self, steps: Iterable[TestStep]) -> bool:
        """Whether any known step in the sequence needs a UI driver."""
        for step in steps:
            handler = self.handler_for(step)
            if handler is not None and handler.requires_driver:
                return True
        return False

    async def execute_step(
        self,
        driver: Optional[UIDriver],
        step: TestStep,
        step_index: int,
        context: StepContext,
    ) -> StepResult:
        """
        Execute one step and classify its outcome.

        Args:
            driver: UI driver session, or None when the case needs none
            step: Step to execute
            step_index: Zero-based position of the step in its test case
            context: Execution id and screenshot store for this invocation

        Returns:
            StepResult with status pass, fail or error
        """
        self.logger.info(
            f"Executing step {step_index}: {step.action}",
            extra={"execution_id": context.execution_id, "step_index": step_index},
        )
        started = time.monotonic()

        handler = self.handler_for(step)
        if handler is None:
            outcome = StepOutcome.errored(f"Unknown action type: {step.action}")
        elif handler.requires_driver and driver is None:
            outcome = StepOutcome.errored(str(DriverRequiredError(step.action)))
        else:
            try:
                outcome = await handler.run(driver, step)
            except Exception as e:
                self.logger.exception(f"Step {step_index} ({step.action}) raised unexpectedly")
                outcome = StepOutcome.errored(_describe(e, f"{step.action} action failed"))

        duration = int((time.monotonic() - started) * 1000)

        screenshot = None
        if outcome.capture_screenshot and context.screenshot_store is not None:
            screenshot = await context.screenshot_store.capture_and_store_safe(
                driver, context.execution_id, step_index
            )

        if outcome.status != StepStatus.PASS:
            self.logger.warning(
                f"Step {step_index} ({step.action}) {outcome.status.value}: {outcome.reason}",
                extra={
                    "execution_id": context.execution_id,
                    "step_index": step_index,
                    "action": step.action,
                    "duration": duration,
                    "status": outcome.status.value,
                },
            )

        return StepResult(
            step_index=step_index,
            action=step.action,
            status=outcome.status,
            duration=duration,
            error_message=outcome.reason,
            screenshot=screenshot,
            details=outcome.details,
        )
