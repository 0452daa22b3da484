"""Custom exceptions for StoreRec.

Defines the error taxonomy of the recommendation engine. Every error carries
an HTTP status code so the API can report it without a translation table.
"""

from typing import Any, Dict, Optional


class StoreRecException(Exception):
    """Base exception for StoreRec errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize exception.

        Args:
            message: Human-readable error message
            status_code: HTTP status code for API responses
            details: Additional error details for debugging
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}


class InsufficientDataError(StoreRecException):
    """Raised when there are no usable events to train on."""

    def __init__(self, reason: str = "No events to train on", **details: Any):
        super().__init__(message=reason, status_code=409, details=details)


class UnknownUserError(StoreRecException):
    """Raised when a user has no interaction history in the current snapshot."""

    def __init__(self, user_id: str, details: Optional[Dict[str, Any]] = None):
        message = (
            f"User {user_id} has no interaction history. "
            "Cannot generate personalized recommendations."
        )
        super().__init__(
            message=message,
            status_code=404,
            details=details or {"user_id": user_id},
        )


class NoRecommendationsAvailable(StoreRecException):
    """Raised when the product catalog is empty or cannot be read."""

    def __init__(self, user_id: str, reason: str = "the product catalog is empty"):
        super().__init__(
            message=f"No recommendations available: {reason}",
            status_code=503,
            details={"user_id": user_id},
        )


class StaleModelWarning(StoreRecException, Warning):
    """Raised when a cache entry was computed against a superseded snapshot."""

    def __init__(self, user_id: str, entry_version: int, current_version: Optional[int]):
        message = (
            f"Cached recommendations for user {user_id} were computed by model "
            f"version {entry_version}, current version is {current_version}"
        )
        super().__init__(
            message=message,
            status_code=409,
            details={
                "user_id": user_id,
                "entry_version": entry_version,
                "current_version": current_version,
            },
        )


class InvalidEventError(StoreRecException, ValueError):
    """Raised when an event record cannot be normalized."""

    def __init__(self, reason: str, record: Any = None):
        super().__init__(
            message=f"Invalid event: {reason}",
            status_code=422,
            details={"record": repr(record)} if record is not None else {},
        )


class InvalidParameterError(StoreRecException, ValueError):
    """Raised when a request parameter is out of range."""

    def __init__(self, name: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid value for '{name}': {reason}",
            status_code=422,
            details={"parameter": name, "value": value},
        )


class RecomputeCancelled(StoreRecException):
    """Raised inside a recompute cycle that was cancelled before publishing."""

    def __init__(self, stage: str):
        super().__init__(
            message=f"Recompute cycle cancelled during {stage}",
            status_code=409,
            details={"stage": stage},
        )


class SnapshotNotFoundError(StoreRecException, FileNotFoundError):
    """Raised when a persisted model snapshot cannot be found."""

    def __init__(self, model_dir: str):
        message = f"Model snapshot not found at '{model_dir}'. Run a recompute first."
        super().__init__(
            message=message,
            status_code=503,
            details={"model_dir": model_dir},
        )
