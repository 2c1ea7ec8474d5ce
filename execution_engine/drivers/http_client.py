"""
aiohttp-backed HTTP client for api-call steps.

Any HTTP status is returned as a response. Transport failures raise
NetworkError carrying an errno-style code so that the retry policy can
classify them; a malformed URL raises InvalidRequestError, which is never
retried.
"""

import asyncio
import json
import socket
from typing import Optional

import aiohttp

from ..core.exceptions import InvalidRequestError, NetworkError
from ..core.logging_config import get_logger
from .protocols import HTTPRequest, HTTPResponse


def classify_transport_error(error: BaseException) -> str:
    """Map an aiohttp/asyncio exception to an errno-style code."""
    if isinstance(error, asyncio.TimeoutError):
        return "ETIMEDOUT"
    if isinstance(error, aiohttp.ServerDisconnectedError):
        return "ECONNRESET"
    if isinstance(error, aiohttp.ClientConnectorError):
        if isinstance(error.os_error, socket.gaierror):
            return "ENOTFOUND"
        return "ECONNREFUSED"
    if isinstance(error, (ConnectionResetError, aiohttp.ClientPayloadError)):
        return "ECONNRESET"
    return "ENETWORK"


class AiohttpClient:
    """HTTPClient implementation using a short-lived aiohttp session per request."""

    def __init__(self, default_headers: Optional[dict] = None):
        self.default_headers = default_headers or {}
        self.logger = get_logger(__name__)

    async def request(self, request: HTTPRequest) -> HTTPResponse:
        headers = {**self.default_headers, **request.headers}
        kwargs = {"headers": headers}
        if isinstance(request.body, str):
            kwargs["data"] = request.body
        elif request.body is not None:
            kwargs["json"] = request.body

        timeout = aiohttp.ClientTimeout(total=request.timeout_ms / 1000)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(request.method, request.url, **kwargs) as response:
                    text = await response.text(errors="replace")
                    status = response.status
                    reason = response.reason or ""
                    response_headers = {k: v for k, v in response.headers.items()}
        except (aiohttp.InvalidURL, ValueError) as e:
            # Not a transport failure; the message must not match a retryable substring
            self.logger.warning(
                f"{request.method} request rejected: invalid URL",
                extra={"metadata": {"url": request.url, "error": str(e)}},
            )
            raise InvalidRequestError("Invalid URL", url=request.url) from e
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            code = classify_transport_error(e)
            detail = str(e) or type(e).__name__
            self.logger.warning(
                f"{request.method} {request.url} failed: {code}",
                extra={"metadata": {"code": code, "error": detail}},
            )
            raise NetworkError(
                f"{code}: network error calling {request.url}: {detail}",
                code=code,
                url=request.url,
            ) from e

        return HTTPResponse(
            status=status,
            status_text=reason,
            headers=response_headers,
            data=self._decode_body(text),
        )

    @staticmethod
    def _decode_body(text: str):
        if not text:
            return None
        try:
            return json.loads(text)
        except ValueError:
            return text
