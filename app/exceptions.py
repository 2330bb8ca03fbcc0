"""Error taxonomy for the guide pipeline."""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(str, Enum):
    INVALID_VEHICLE = "INVALID_VEHICLE"
    EMPTY_TASK = "EMPTY_TASK"
    GENERATION_FAILED = "GENERATION_FAILED"
    MALFORMED_GUIDE = "MALFORMED_GUIDE"
    GENERATION_IN_PROGRESS = "GENERATION_IN_PROGRESS"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    IMAGE_FAILED = "IMAGE_FAILED"


class GuideServiceError(Exception):
    """
    Base exception for every pipeline failure.

    Carries a human-readable message, a machine-readable code and the
    HTTP status the API layer should answer with.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_code.value,
            "message": self.message,
            "details": self.details,
        }


class InvalidRequest(GuideServiceError):
    """The vehicle/task combination is impossible. Never retried."""

    def __init__(self, message: str, error_code: ErrorCode, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code, status_code=400, details=details)


class GenerationFailure(GuideServiceError):
    def __init__(
        self,
        message: str = "Guide generation temporarily failed, please try again.",
        error_code: ErrorCode = ErrorCode.GENERATION_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code, status_code=503, details=details)


class MalformedGuide(GenerationFailure):
    """Backend output did not satisfy the guide structure."""

    def __init__(self, reason: str):
        super().__init__(
            f"Generated guide was malformed: {reason}",
            ErrorCode.MALFORMED_GUIDE,
            details={"reason": reason},
        )
        self.reason = reason


class GenerationInProgress(GuideServiceError):
    def __init__(self, cache_key: str):
        super().__init__(
            "This guide is being generated by another request, try again shortly.",
            ErrorCode.GENERATION_IN_PROGRESS,
            status_code=409,
            details={"cache_key": cache_key},
        )


class StoreFailure(GuideServiceError):
    def __init__(self, operation: str, cause: Exception):
        super().__init__(
            f"Guide storage unavailable during {operation}",
            ErrorCode.STORE_UNAVAILABLE,
            status_code=500,
            details={"operation": operation, "cause": str(cause)},
        )


class ImageFailure(GuideServiceError):
    """Raised inside the illustrator for one step; never leaves it."""

    def __init__(self, step: int, reason: str):
        super().__init__(
            f"Illustration for step {step} failed: {reason}",
            ErrorCode.IMAGE_FAILED,
            details={"step": step},
        )
        self.step = step
