"""
Capability contracts the engine requires from UI drivers and HTTP clients.

Concrete adapters live beside this module; tests substitute mocks that
satisfy the same shapes.
"""

from typing import Any, AsyncContextManager, Dict, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


@runtime_checkable
class ElementHandle(Protocol):
    """An element located by a UI driver."""

    async def is_visible(self) -> bool: ...

    async def text_content(self) -> Optional[str]: ...

    async def input_value(self) -> str: ...


@runtime_checkable
class UIDriver(Protocol):
    """Browser capabilities used by UI step actions."""

    async def navigate(self, url: str, timeout_ms: int) -> None: ...

    async def click(self, selector: str, timeout_ms: int) -> None: ...

    async def fill(self, selector: str, value: str, timeout_ms: int) -> None: ...

    async def wait_for_selector(
        self, selector: str, timeout_ms: int, state: str = "attached"
    ) -> Optional[ElementHandle]: ...

    async def screenshot(self) -> bytes: ...

    async def version(self) -> str: ...


class DriverProvider(Protocol):
    """Hands out scoped driver sessions; release is guaranteed on exit."""

    def session(self) -> AsyncContextManager[UIDriver]: ...


class HTTPRequest(BaseModel):
    """Request issued by an api-call step."""

    model_config = ConfigDict(extra="forbid")

    method: str = Field("GET", description="HTTP method")
    url: str = Field(..., description="Absolute request URL")
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = Field(None, description="JSON-serialisable body or raw string")
    timeout_ms: int = Field(30000, ge=1)


class HTTPResponse(BaseModel):
    """Response returned by an HTTPClient for any status code."""

    model_config = ConfigDict(extra="forbid")

    status: int
    status_text: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    data: Any = None


class HTTPClient(Protocol):
    """Transport for api-call steps. Must not raise on HTTP error statuses."""

    async def request(self, request: HTTPRequest) -> HTTPResponse: ...
