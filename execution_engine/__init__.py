"""
Execution Engine - queued browser/HTTP test execution

Runs test cases step by step with retry and backoff, enforces host time
budgets, persists execution records and detects critical failure patterns.
"""

__version__ = "0.1.0"
__author__ = "Execution Engine Team"

from .core.config import Config
from .core.exceptions import ExecutionEngineError
from .core.logging_config import setup_logging
from .dispatch.dispatcher import Dispatcher

__all__ = [
    "Config",
    "ExecutionEngineError",
    "setup_logging",
    "Dispatcher",
]
