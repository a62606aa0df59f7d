"""
Centralized Error Types for the Fleet Activity Engine

Features:
- Error categories so the host can map failures to its own responses
- Consistent serialisable payload (to_dict)

"No data" is never an error here: empty series and devices without samples
produce empty results.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


# =============================================================================
# Error Categories
# =============================================================================


class ErrorCategory(str, Enum):
    """Categories for error classification"""

    VALIDATION = "validation"
    UNORDERED_INPUT = "unordered_input"
    EXTERNAL_SERVICE = "external_service"
    INTERNAL = "internal"


# =============================================================================
# Custom Exceptions
# =============================================================================


class FleetEngineError(Exception):
    """Base exception for the activity engine"""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.details = details or {}
        self.timestamp = utc_now().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.category.value,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp,
        }


class ValidationError(FleetEngineError):
    """Input validation errors (bad month string, bad thresholds)"""

    def __init__(self, message: str, field: str = None, details: Optional[Dict] = None):
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(
            message=message,
            category=ErrorCategory.VALIDATION,
            details=details,
        )


class UnorderedInputError(FleetEngineError):
    """Samples arrived out of chronological order"""

    def __init__(self, index: int, previous: datetime, current: datetime):
        super().__init__(
            message=(
                f"Sample {index} at {current.isoformat()} is earlier than "
                f"its predecessor at {previous.isoformat()}"
            ),
            category=ErrorCategory.UNORDERED_INPUT,
            details={
                "index": index,
                "previous": previous.isoformat(),
                "current": current.isoformat(),
            },
        )
        self.index = index


class ExternalServiceError(FleetEngineError):
    """External service (reverse geocoder) failures"""

    def __init__(self, service: str, message: str, details: Optional[Dict] = None):
        details = details or {}
        details["service"] = service
        super().__init__(
            message=f"{service}: {message}",
            category=ErrorCategory.EXTERNAL_SERVICE,
            details=details,
        )
        self.service = service
