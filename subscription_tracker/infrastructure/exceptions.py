"""
Custom Exceptions for Subscription Tracker

Hierarchical exception classes for proper error handling across layers.
"""

from datetime import datetime
from typing import Optional, Dict, Any


class SubscriptionTrackerError(Exception):
    """Base exception for all Subscription Tracker errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class ValidationError(SubscriptionTrackerError):
    """Raised when input validation fails."""
    pass


class DataIntegrityError(SubscriptionTrackerError):
    """Raised when stored data cannot be interpreted (bad dates, missing fields)."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if field:
            details["field"] = field
        super().__init__(message, details, original_error)


class DatabaseError(SubscriptionTrackerError):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details, original_error)


class NotFoundError(DatabaseError):
    """Raised when a requested resource is not found."""
    pass


class DuplicateError(DatabaseError):
    """Raised when attempting to create a duplicate resource."""
    pass


class NotificationError(SubscriptionTrackerError):
    """Raised when a notification cannot be delivered."""

    def __init__(
        self,
        message: str,
        destination: Optional[str] = None,
        backend: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if destination:
            details["destination"] = destination
        if backend:
            details["backend"] = backend
        super().__init__(message, details, original_error)


class TransientDeliveryError(NotificationError):
    """Delivery failed for a recoverable reason (network, rate limit). Retryable."""
    pass


class PermanentDeliveryError(NotificationError):
    """Delivery failed for a reason retrying cannot fix (bad address, auth)."""
    pass


class WorkflowError(SubscriptionTrackerError):
    """Raised when the durable workflow runtime cannot proceed."""

    def __init__(
        self,
        message: str,
        run_id: Optional[str] = None,
        step: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if run_id:
            details["run_id"] = run_id
        if step:
            details["step"] = step
        super().__init__(message, details, original_error)


class StepFailedError(WorkflowError):
    """Raised when a durable step gave up (permanent failure or retries exhausted)."""

    def __init__(
        self,
        message: str,
        run_id: Optional[str] = None,
        step: Optional[str] = None,
        attempts: int = 0,
        error_type: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message, run_id=run_id, step=step, original_error=original_error)
        self.attempts = attempts
        self.error_type = error_type
        self.details["attempts"] = attempts
        if error_type:
            self.details["error_type"] = error_type


class LeaseLostError(WorkflowError):
    """Raised when a run was reclaimed by another worker while this pass was executing."""
    pass


class RunNotFoundError(NotFoundError):
    """Raised when a workflow run does not exist."""
    pass


class WorkflowSuspended(Exception):
    """
    Control-flow signal raised by a durable sleep that has not elapsed yet.

    Not an error: the runtime catches it, checkpoints the wake time and
    releases the run until the scheduler resumes it.
    """

    def __init__(self, wake_at: datetime, step: str):
        super().__init__(f"Suspended at {step} until {wake_at.isoformat()}")
        self.wake_at = wake_at
        self.step = step


class ConfigurationError(SubscriptionTrackerError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error)
