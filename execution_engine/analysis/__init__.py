"""
Execution history analysis.

Suite aggregation and failure pattern detection run after each execution
has been persisted; reports read stored executions on demand.
"""

from .failure_detector import AlertDetails, AlertType, CriticalAlert, FailureDetector
from .reports import (
    ExecutionReporter,
    ExecutionStatusReport,
    SuiteResultsReport,
    SuiteStats,
    build_status_report,
    build_suite_results,
    calculate_suite_stats,
)
from .suite_aggregator import (
    SuiteAggregator,
    calculate_aggregate,
    determine_suite_result,
    determine_suite_status,
)

__all__ = [
    "AlertDetails",
    "AlertType",
    "CriticalAlert",
    "FailureDetector",
    "ExecutionReporter",
    "ExecutionStatusReport",
    "SuiteResultsReport",
    "SuiteStats",
    "build_status_report",
    "build_suite_results",
    "calculate_suite_stats",
    "SuiteAggregator",
    "calculate_aggregate",
    "determine_suite_result",
    "determine_suite_status",
]
