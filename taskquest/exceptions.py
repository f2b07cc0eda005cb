"""
Standardized exception hierarchy for taskquest
Provides rich context, consistent logging, and user-friendly error messages
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
from uuid import uuid4
import logging

logger = logging.getLogger(__name__)


class TaskQuestError(Exception):
    """
    Base exception for all taskquest errors

    Provides:
    - Automatic timestamping
    - Request ID for tracing
    - User-friendly messages
    - Structured context
    - Automatic logging

    Example:
        raise TaskQuestError(
            message="Failed to save task",
            user_id="auth0|123",
            operation="save_task",
            context={"task_id": "abc-123"}
        )
    """

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.user_id = user_id
        self.request_id = request_id or str(uuid4())
        self.operation = operation
        self.context = context or {}
        self.cause = cause
        self.user_message = user_message or "An error occurred. Please try again."
        self.timestamp = datetime.now(timezone.utc)

        # Auto-log on creation
        self._log_error()

    def _log_error(self) -> None:
        """Log error with full context"""
        log_data = {
            "error_type": self.__class__.__name__,
            "error_message": self.message,  # Avoid conflict with logging's 'message' field
            "request_id": self.request_id,
            "user_id": self.user_id,
            "operation": self.operation,
            "error_context": self.context,
            "timestamp": self.timestamp.isoformat()
        }

        if self.cause:
            log_data["cause"] = str(self.cause)
            logger.error(f"{self.__class__.__name__}: {self.message}", extra=log_data, exc_info=self.cause)
        else:
            logger.error(f"{self.__class__.__name__}: {self.message}", extra=log_data)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for API responses"""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "user_message": self.user_message,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat()
        }


# ==========================================
# Validation Errors (User Input)
# ==========================================

class ValidationError(TaskQuestError):
    """
    Raised when task data or an update target fails validation

    Examples:
    - Missing title or time fields
    - End time before start time
    - Completing a task that is already completed

    Example:
        raise ValidationError(
            message="title is required",
            field="title",
            value=None,
            user_id="auth0|123"
        )
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        self.field = field
        self.value = value
        super().__init__(
            message=message,
            user_message=f"Invalid {field}: {message}" if field else message,
            context={"field": field, "value": value},
            **kwargs
        )


# ==========================================
# Database Errors
# ==========================================

class DatabaseError(TaskQuestError):
    """
    Base class for storage-related errors
    """
    pass


class PersistenceFailure(DatabaseError):
    """Underlying store unreachable or a write failed; nothing was committed"""

    def __init__(self, message: str = "Store unavailable", **kwargs):
        super().__init__(
            message=message,
            user_message="We couldn't save your progress. Please try again in a moment.",
            **kwargs
        )


class ConcurrencyConflict(DatabaseError):
    """An atomic progress write lost a race against another writer"""

    def __init__(
        self,
        message: str,
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None,
        **kwargs
    ):
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            message=message,
            user_message="Your progress was updated elsewhere. Please try again.",
            context={"expected_version": expected_version, "actual_version": actual_version},
            **kwargs
        )


class RecordNotFoundError(DatabaseError):
    """Requested record does not exist"""

    def __init__(
        self,
        message: str,
        record_type: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs
    ):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(
            message=message,
            user_message=f"{record_type or 'Record'} not found.",
            context={"record_type": record_type, "record_id": record_id},
            **kwargs
        )


# ==========================================
# External API Errors
# ==========================================

class ExternalAPIError(TaskQuestError):
    """
    Base class for external API failures
    """

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        status_code: Optional[int] = None,
        user_message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        self.service = service
        self.status_code = status_code
        super().__init__(
            message=message,
            user_message=user_message or (
                f"We're having trouble connecting to {service or 'an external service'}. Please try again later."
            ),
            context={**(context or {}), "service": service, "status_code": status_code},
            **kwargs
        )


class SyncFailure(ExternalAPIError):
    """Calendar sync failed; never fatal to a completion"""

    def __init__(self, message: str, task_id: Optional[str] = None, **kwargs):
        self.task_id = task_id
        kwargs.setdefault("service", "Google Calendar")
        kwargs.setdefault("user_message", "Your task was saved, but we couldn't update your calendar.")
        super().__init__(message=message, **kwargs)


# ==========================================
# Authentication & Authorization
# ==========================================

class AuthenticationError(TaskQuestError):
    """Authentication failed"""

    def __init__(
        self,
        message: str = "Authentication failed",
        **kwargs
    ):
        super().__init__(
            message=message,
            user_message="Authentication failed. Please check your credentials.",
            **kwargs
        )


# ==========================================
# Configuration Errors
# ==========================================

class ConfigurationError(TaskQuestError):
    """System configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        self.config_key = config_key
        super().__init__(
            message=message,
            user_message="The system is not properly configured. Please contact support.",
            context={"config_key": config_key},
            **kwargs
        )


# ==========================================
# Helper Functions
# ==========================================

def wrap_external_exception(
    error: Exception,
    operation: str,
    user_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None
) -> TaskQuestError:
    """
    Wrap external exceptions (psycopg, httpx, etc.) into our exception hierarchy

    Args:
        error: Original exception
        operation: What operation was being performed
        user_id: User ID if applicable
        context: Additional context

    Returns:
        Appropriate TaskQuestError subclass

    Example:
        try:
            await cur.execute(query)
        except psycopg.Error as e:
            raise wrap_external_exception(
                e,
                operation="save_progress",
                user_id="auth0|123",
            )
    """
    import httpx
    import psycopg

    if isinstance(error, TaskQuestError):
        return error

    # Database errors
    if isinstance(error, psycopg.Error):
        return PersistenceFailure(
            message=f"Database operation failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )

    # HTTP errors
    elif isinstance(error, httpx.TimeoutException):
        return ExternalAPIError(
            message=f"API request timed out: {str(error)}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
    elif isinstance(error, httpx.HTTPStatusError):
        return ExternalAPIError(
            message=f"API returned error: {error.response.status_code}",
            status_code=error.response.status_code,
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )

    # Generic fallback
    else:
        return TaskQuestError(
            message=f"{operation} failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
