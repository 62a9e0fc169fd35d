"""Error taxonomy and classification for the distribution engine."""

from enum import Enum

from pydantic import BaseModel


class TaskDistError(Exception):
    """Base class for engine errors."""


class TemplateValidationError(TaskDistError, ValueError):
    """Template rejected at save time (inverted run/due ordering, missing payload, etc.)."""


class TemplateNotFoundError(TaskDistError, KeyError):
    """Requested template does not exist in the template store."""

    def __str__(self) -> str:
        # KeyError wraps its message in quotes
        return str(self.args[0]) if self.args else "Template not found"


class RegistryUnavailableError(TaskDistError):
    """Organization or collection-point registry lookup failed or timed out."""


class DatabaseError(TaskDistError, RuntimeError):
    """Storage operation failed."""


class RecordNotFoundError(TaskDistError, KeyError):
    """Record lookup by ID found nothing."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Record not found"


class ErrorCategory(Enum):
    """Categories of failures recorded against scheduled work."""

    REGISTRY_UNAVAILABLE = "registry_unavailable"
    TIMEOUT = "timeout"
    STORAGE = "storage"
    INVALID_TEMPLATE = "invalid_template"
    TEMPLATE_NOT_FOUND = "template_not_found"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorReport(BaseModel):
    """Classified failure suitable for job tracking and API responses."""

    category: ErrorCategory
    severity: ErrorSeverity
    retryable: bool
    message: str


_NETWORK_PHRASES = ("connection", "timeout", "timed out", "unreachable", "502", "503", "504")


def classify_error(exception: BaseException) -> ErrorReport:
    """Classify a failure raised while processing a template.

    Registry and timeout failures are transient and retried on the next tick.
    Validation failures are not retryable: the template needs to be fixed.

    Args:
        exception: The exception raised during processing

    Returns:
        ErrorReport describing the failure
    """
    message = str(exception) or type(exception).__name__

    if isinstance(exception, TimeoutError):
        return ErrorReport(
            category=ErrorCategory.TIMEOUT,
            severity=ErrorSeverity.MEDIUM,
            retryable=True,
            message=message,
        )

    if isinstance(exception, RegistryUnavailableError):
        return ErrorReport(
            category=ErrorCategory.REGISTRY_UNAVAILABLE,
            severity=ErrorSeverity.MEDIUM,
            retryable=True,
            message=message,
        )

    if isinstance(exception, TemplateValidationError):
        return ErrorReport(
            category=ErrorCategory.INVALID_TEMPLATE,
            severity=ErrorSeverity.HIGH,
            retryable=False,
            message=message,
        )

    if isinstance(exception, TemplateNotFoundError):
        return ErrorReport(
            category=ErrorCategory.TEMPLATE_NOT_FOUND,
            severity=ErrorSeverity.LOW,
            retryable=False,
            message=message,
        )

    if isinstance(exception, DatabaseError):
        return ErrorReport(
            category=ErrorCategory.STORAGE,
            severity=ErrorSeverity.HIGH,
            retryable=True,
            message=message,
        )

    if isinstance(exception, ConnectionError) or any(phrase in message.lower() for phrase in _NETWORK_PHRASES):
        return ErrorReport(
            category=ErrorCategory.REGISTRY_UNAVAILABLE,
            severity=ErrorSeverity.MEDIUM,
            retryable=True,
            message=message,
        )

    return ErrorReport(
        category=ErrorCategory.UNKNOWN,
        severity=ErrorSeverity.HIGH,
        retryable=True,
        message=message,
    )
