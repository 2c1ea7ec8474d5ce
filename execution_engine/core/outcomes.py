"""
Result types for best-effort side effects.

Event publication, failure detection and suite updates must never turn a
classified execution outcome into a task failure. Each call site runs them
through run_side_effect and receives a SideEffectResult instead of an
exception.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from .logging_config import log_side_effect


@dataclass
class SideEffectResult:
    """Outcome of one best-effort operation."""

    name: str
    succeeded: bool
    value: Any = None
    error: Optional[BaseException] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return not self.succeeded

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "succeeded": self.succeeded,
            "error": str(self.error) if self.error else None,
            "metadata": self.metadata,
        }


async def run_side_effect(
    name: str,
    operation: Callable[[], Awaitable[Any]],
    logger: logging.Logger,
    **metadata: Any,
) -> SideEffectResult:
    """
    Await operation, converting any exception into a failed SideEffectResult.

    Args:
        name: Short name used in logs
        operation: Zero-argument coroutine function
        logger: Logger receiving the failure record
        **metadata: Extra context for the log record

    Returns:
        SideEffectResult carrying the return value or the error
    """
    try:
        value = await operation()
    except Exception as e:
        log_side_effect(
            logger, name, False, {"error": str(e), "error_type": type(e).__name__, **metadata}
        )
        return SideEffectResult(name=name, succeeded=False, error=e, metadata=metadata)

    log_side_effect(logger, name, True, metadata)
    return SideEffectResult(name=name, succeeded=True, value=value, metadata=metadata)
