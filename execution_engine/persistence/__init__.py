"""Execution record persistence."""

from .store import (
    DEFAULT_HISTORY_LIMIT,
    ExecutionStore,
    HistoryQuery,
    InMemoryExecutionStore,
    JsonFileExecutionStore,
    merge_results,
)

__all__ = [
    "DEFAULT_HISTORY_LIMIT",
    "ExecutionStore",
    "HistoryQuery",
    "InMemoryExecutionStore",
    "JsonFileExecutionStore",
    "merge_results",
]
