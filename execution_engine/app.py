"""
Component wiring for the execution engine.

Builds a Dispatcher and its collaborators from a Config, with any
collaborator replaceable by the caller.
"""

from typing import Optional

from .core.config import Config
from .dispatch.dispatcher import Dispatcher
from .dispatch.events import EventPublisher, EventSink, LoggingEventSink, WebhookEventSink
from .drivers.protocols import DriverProvider, HTTPClient
from .execution.artifacts import ScreenshotStore
from .execution.case_executor import TestCaseExecutor
from .execution.steps import StepExecutor
from .persistence.store import ExecutionStore, JsonFileExecutionStore


def build_event_sink(config: Config) -> EventSink:
    if config.event_webhook_url:
        return WebhookEventSink(config.event_webhook_url)
    return LoggingEventSink()


def build_dispatcher(
    config: Config,
    store: Optional[ExecutionStore] = None,
    sink: Optional[EventSink] = None,
    driver_provider: Optional[DriverProvider] = None,
    http_client: Optional[HTTPClient] = None,
) -> Dispatcher:
    """
    Assemble a Dispatcher.

    Defaults: JSON-file store under config.store_dir, Playwright driver
    sessions, aiohttp transport, and a webhook sink when a webhook URL is
    configured (log sink otherwise).
    """
    if driver_provider is None:
        from .drivers.playwright_driver import PlaywrightDriverProvider

        driver_provider = PlaywrightDriverProvider.from_config(config)

    if http_client is None:
        from .drivers.http_client import AiohttpClient

        http_client = AiohttpClient()

    if store is None:
        store = JsonFileExecutionStore(config.store_dir)
    case_executor = TestCaseExecutor(
        StepExecutor.from_config(config, http_client),
        driver_provider=driver_provider,
        screenshot_store=ScreenshotStore.from_config(config),
    )
    publisher = EventPublisher(sink or build_event_sink(config))

    return Dispatcher.from_config(config, store, case_executor, publisher)
