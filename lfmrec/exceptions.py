"""Custom exceptions for lfmrec.

Defines specific exception types for training, scoring and serving errors.
"""

from typing import Any, Dict, Optional


class LFMRecException(Exception):
    """Base exception for lfmrec errors."""

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


class ConfigurationError(LFMRecException):
    """Raised when training settings or corpus file names are invalid."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=400, details=details)


class DivergenceError(LFMRecException):
    """Raised when a predicted score is not a finite number.

    This almost always means the learning rate is too high for the corpus.
    Callers can catch it and retry with a smaller rate.
    """

    def __init__(
        self,
        uid: int,
        item_id: int,
        score: float,
        details: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Score for user {uid} and item {item_id} is {score}; "
            "training diverged, lower the learning rate."
        )
        super().__init__(
            message=message,
            status_code=500,
            details=details or {"uid": uid, "item_id": item_id, "score": score},
        )
        self.uid = uid
        self.item_id = item_id
        self.score = score


class ModelNotFoundError(LFMRecException):
    """Raised when model files cannot be found."""

    def __init__(self, model_path: str, details: Optional[Dict[str, Any]] = None):
        message = f"Model not found at '{model_path}'. Please train a model first."
        super().__init__(
            message=message,
            status_code=503,
            details=details or {"model_path": model_path},
        )


class ModelLoadError(LFMRecException):
    """Raised when a model file is corrupt, truncated or inconsistent."""

    def __init__(self, model_path: str, error: Exception):
        message = f"Failed to load model from '{model_path}': {str(error)}"
        super().__init__(
            message=message,
            status_code=500,
            details={
                "model_path": model_path,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )


class UnknownIdError(LFMRecException):
    """Raised when a user or item id was not seen during training."""

    def __init__(self, kind: str, external_id: int):
        message = f"{kind.capitalize()} {external_id} not found in training data."
        super().__init__(
            message=message,
            status_code=404,
            details={"kind": kind, "id": external_id},
        )
