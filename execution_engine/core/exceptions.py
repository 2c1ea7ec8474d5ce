"""
Base exception classes for the execution engine.

Provides a hierarchy of exceptions for the error conditions that can occur
while dispatching and executing test cases.
"""

from typing import Optional, Dict, Any


class ExecutionEngineError(Exception):
    """Base exception class for all execution engine errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
        }


class MalformedTaskError(ExecutionEngineError):
    """Raised when an inbound task message cannot be parsed."""

    def __init__(self, message: str, body_preview: Optional[str] = None):
        super().__init__(message, "MALFORMED_TASK")
        self.body_preview = body_preview
        self.context.update({"body_preview": body_preview})


class InsufficientTimeError(ExecutionEngineError):
    """Raised when the host time budget is too low to start an execution."""

    def __init__(
        self,
        remaining_ms: int,
        required_ms: int,
        execution_id: Optional[str] = None,
    ):
        super().__init__(
            f"Insufficient time remaining: {remaining_ms}ms", "INSUFFICIENT_TIME"
        )
        self.remaining_ms = remaining_ms
        self.required_ms = required_ms
        self.execution_id = execution_id
        self.context.update(
            {
                "remaining_ms": remaining_ms,
                "required_ms": required_ms,
                "execution_id": execution_id,
            }
        )


class DriverRequiredError(ExecutionEngineError):
    """Raised when a UI action is executed without a UI driver."""

    def __init__(self, action: str):
        super().__init__(
            f"UI driver is required for {action} action", "DRIVER_REQUIRED"
        )
        self.action = action
        self.context.update({"action": action})


class DriverSetupError(ExecutionEngineError):
    """Raised when a UI driver session cannot be acquired."""

    def __init__(self, message: str, browser: Optional[str] = None):
        super().__init__(message, "DRIVER_SETUP_FAILED")
        self.browser = browser
        self.context.update({"browser": browser})


class StepAssertionError(ExecutionEngineError):
    """Raised inside an assert action when the element does not match."""

    def __init__(
        self,
        message: str,
        selector: Optional[str] = None,
        assertion: Optional[str] = None,
    ):
        super().__init__(message, "ASSERTION_FAILED")
        self.selector = selector
        self.assertion = assertion
        self.context.update({"selector": selector, "assertion": assertion})


class NetworkError(ExecutionEngineError):
    """Raised when an HTTP request fails at the transport level."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        url: Optional[str] = None,
    ):
        super().__init__(message, "NETWORK_ERROR")
        self.code = code
        self.url = url
        self.context.update({"code": code, "url": url})


class InvalidRequestError(ExecutionEngineError):
    """Raised when an HTTP request cannot be issued as built, such as a malformed URL."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message, "INVALID_REQUEST")
        self.url = url
        self.context.update({"url": url})


class PersistenceError(ExecutionEngineError):
    """Raised when an execution store operation fails."""

    def __init__(
        self,
        message: str,
        execution_id: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message, "PERSISTENCE_FAILED")
        self.execution_id = execution_id
        self.operation = operation
        self.context.update({"execution_id": execution_id, "operation": operation})


class ExecutionNotFoundError(PersistenceError):
    """Raised when an execution record does not exist."""

    def __init__(self, execution_id: str, operation: Optional[str] = None):
        super().__init__(
            f"Execution not found: {execution_id}",
            execution_id=execution_id,
            operation=operation,
        )
        self.error_code = "EXECUTION_NOT_FOUND"


class ValidationError(ExecutionEngineError):
    """Raised when validation fails."""

    def __init__(
        self,
        message: str,
        validation_type: Optional[str] = None,
        violations: Optional[list] = None,
    ):
        super().__init__(message, "VALIDATION_FAILED")
        self.validation_type = validation_type
        self.violations = violations or []
        self.context.update(
            {
                "validation_type": validation_type,
                "violations": violations,
            }
        )
