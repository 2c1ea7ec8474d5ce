"""
Test execution components for the execution engine.

This module provides the data models, step execution, screenshot capture and
test case sequencing used by the dispatcher.
"""

from .artifacts import ScreenshotStore
from .case_executor import CaseExecutionOutcome, TestCaseExecutor, determine_execution_result
from .models import (
    ActionType,
    Execution,
    ExecutionMetadata,
    ExecutionResult,
    ExecutionStatus,
    StepResult,
    StepStatus,
    SuiteAggregate,
    TaskMessage,
    TestCase,
    TestStep,
    TestSuite,
)
from .steps import StepContext, StepExecutor, StepOutcome, StepSettings

__all__ = [
    "ScreenshotStore",
    "CaseExecutionOutcome",
    "TestCaseExecutor",
    "determine_execution_result",
    "ActionType",
    "Execution",
    "ExecutionMetadata",
    "ExecutionResult",
    "ExecutionStatus",
    "StepResult",
    "StepStatus",
    "SuiteAggregate",
    "TaskMessage",
    "TestCase",
    "TestStep",
    "TestSuite",
    "StepContext",
    "StepExecutor",
    "StepOutcome",
    "StepSettings",
]
