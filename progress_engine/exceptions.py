"""
Standardized exception hierarchy for the progress engine
Provides rich context, consistent logging, and user-friendly error messages
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
from uuid import uuid4
import logging

logger = logging.getLogger(__name__)


class ProgressEngineError(Exception):
    """
    Base exception for all progress engine errors

    Provides:
    - Automatic timestamping
    - Request ID for tracing
    - User-friendly messages
    - Structured context
    - Automatic logging

    Example:
        raise ProgressEngineError(
            message="Failed to credit points",
            user_id="user-123",
            operation="credit_points",
            context={"amount": 30}
        )
    """

    log_level = logging.ERROR

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
            logger.log(
                self.log_level,
                f"{self.__class__.__name__}: {self.message}",
                extra=log_data,
                exc_info=self.cause
            )
        else:
            logger.log(self.log_level, f"{self.__class__.__name__}: {self.message}", extra=log_data)

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
# Validation Errors (Caller Input)
# ==========================================

class ValidationError(ProgressEngineError):
    """
    Raised when caller input fails validation

    Examples:
    - Unknown action type
    - Unknown leaderboard time window
    - Zero progress delta
    """

    log_level = logging.WARNING

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


class InvalidAmount(ValidationError):
    """
    Point credit amount is not a positive integer

    Programmer error: fatal to the call and never retried.
    """

    log_level = logging.ERROR

    def __init__(self, amount: Any, **kwargs):
        self.amount = amount
        super().__init__(
            message=f"Point amount must be a positive integer, got {amount!r}",
            field="amount",
            value=amount,
            **kwargs
        )


# ==========================================
# Engine Outcomes
# ==========================================

class NotEligible(ProgressEngineError):
    """Claim attempted before the achievement was earned (surfaced as a no-op)"""

    log_level = logging.INFO

    def __init__(self, achievement_id: str, **kwargs):
        self.achievement_id = achievement_id
        super().__init__(
            message=f"Achievement {achievement_id} has not been earned yet",
            user_message="Keep going! This achievement isn't unlocked yet.",
            context={"achievement_id": achievement_id},
            **kwargs
        )


class StaleEvent(ProgressEngineError):
    """Activity date is earlier than the last recorded activity (logged and dropped)"""

    log_level = logging.WARNING

    def __init__(
        self,
        streak_type: str,
        activity_date: Any,
        last_active_date: Any,
        **kwargs
    ):
        self.streak_type = streak_type
        self.activity_date = activity_date
        self.last_active_date = last_active_date
        super().__init__(
            message=(
                f"Activity on {activity_date} is older than last {streak_type} "
                f"activity on {last_active_date}"
            ),
            context={
                "streak_type": streak_type,
                "activity_date": str(activity_date),
                "last_active_date": str(last_active_date),
            },
            **kwargs
        )


# ==========================================
# Database Errors
# ==========================================

class DatabaseError(ProgressEngineError):
    """
    Base class for storage-related errors
    """
    pass


class StorageUnavailable(DatabaseError):
    """Storage is unreachable or timed out (transient, retry with backoff)"""

    def __init__(self, message: str = "Storage unavailable", **kwargs):
        super().__init__(
            message=message,
            user_message="We're having trouble saving your progress. Please try again in a moment.",
            **kwargs
        )


class QueryError(DatabaseError):
    """Database query execution failed"""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        **kwargs
    ):
        self.query = query
        super().__init__(
            message=message,
            user_message="We encountered an issue saving your progress. Please try again.",
            context={"query": query},
            **kwargs
        )


class RecordNotFoundError(DatabaseError):
    """Requested record does not exist"""

    log_level = logging.WARNING

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
# Configuration Errors
# ==========================================

class ConfigurationError(ProgressEngineError):
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
) -> ProgressEngineError:
    """
    Wrap storage driver exceptions (psycopg, pool timeouts) into our hierarchy

    Args:
        error: Original exception
        operation: What operation was being performed
        user_id: User ID if applicable
        context: Additional context

    Returns:
        Appropriate ProgressEngineError subclass

    Example:
        try:
            await cur.execute(query)
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="credit_points", user_id="user-1")
    """
    import psycopg
    from psycopg_pool import PoolTimeout

    if isinstance(error, (psycopg.OperationalError, PoolTimeout, TimeoutError)):
        return StorageUnavailable(
            message=f"Storage unavailable during {operation}: {str(error)}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
    elif isinstance(error, psycopg.Error):
        return QueryError(
            message=f"Database query failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            cause=error
        )

    return ProgressEngineError(
        message=f"{operation} failed: {str(error)}",
        user_id=user_id,
        operation=operation,
        context=context,
        cause=error
    )
