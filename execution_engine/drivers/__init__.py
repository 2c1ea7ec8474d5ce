"""
Driver and transport adapters.

Protocols describe what the engine needs from a UI driver and an HTTP
client; the Playwright and aiohttp modules implement them.
"""

from .protocols import (
    DriverProvider,
    ElementHandle,
    HTTPClient,
    HTTPRequest,
    HTTPResponse,
    UIDriver,
)

__all__ = [
    "DriverProvider",
    "ElementHandle",
    "HTTPClient",
    "HTTPRequest",
    "HTTPResponse",
    "UIDriver",
]
