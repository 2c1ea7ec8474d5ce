"""Core components for the execution engine."""

from .config import Config
from .exceptions import (
    ExecutionEngineError,
    MalformedTaskError,
    InsufficientTimeError,
    DriverRequiredError,
    DriverSetupError,
    StepAssertionError,
    NetworkError,
    InvalidRequestError,
    PersistenceError,
    ExecutionNotFoundError,
    ValidationError,
)
from .logging_config import setup_logging, get_logger
from .outcomes import SideEffectResult, run_side_effect
from .retry import (
    RetryOptions,
    RetryResult,
    retry_with_backoff,
    retry_with_backoff_safe,
    make_retryable,
)

__all__ = [
    "Config",
    "ExecutionEngineError",
    "MalformedTaskError",
    "InsufficientTimeError",
    "DriverRequiredError",
    "DriverSetupError",
    "StepAssertionError",
    "NetworkError",
    "InvalidRequestError",
    "PersistenceError",
    "ExecutionNotFoundError",
    "ValidationError",
    "setup_logging",
    "get_logger",
    "SideEffectResult",
    "run_side_effect",
    "RetryOptions",
    "RetryResult",
    "retry_with_backoff",
    "retry_with_backoff_safe",
    "make_retryable",
]
