"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

Every exception carries a stable ``code`` so callers (HTTP layer, bulk
operations, schedulers) can react to the kind of failure without matching
on message text.
"""

from typing import Any, List, Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    code = "APPLICATION_ERROR"

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Serialize for API responses and structured logs."""
        return {"code": self.code, "message": self.message, "details": self.details}


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""

    code = "DOMAIN_ERROR"


class ValidationException(ApplicationException):
    """Exception for validation errors."""

    code = "VALIDATION_ERROR"


class QueueValidationError(ValidationException):
    """A queue item or request violated one or more validation rules."""

    def __init__(self, message: str, errors: Optional[List[str]] = None, details: Optional[dict] = None):
        self.errors = list(errors or [])
        merged = dict(details or {})
        merged.setdefault("errors", self.errors)
        super().__init__(message, merged)


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    code = "NOT_FOUND"

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class QueueItemNotFoundError(ResourceNotFoundException):
    """No queue item exists with the requested id."""

    def __init__(self, item_id: str):
        super().__init__("Queue item", item_id, {"id": item_id})


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""

    code = "PERSISTENCE_ERROR"


class DuplicateRecordError(RepositoryException):
    """A unique constraint rejected the write."""

    code = "DUPLICATE"


class RecordDecodeError(RepositoryException):
    """A stored record could not be decoded into its domain shape."""

    code = "DECODE_ERROR"

    def __init__(self, field: str, raw: Any, reason: str):
        self.field = field
        self.raw = raw
        super().__init__(
            f"Could not decode field '{field}': {reason}",
            {"field": field, "raw": repr(raw)[:200]}
        )


class RetryExhaustedError(ApplicationException):
    """Every attempt of a retried operation failed."""

    code = "RETRY_EXHAUSTED"

    def __init__(self, operation: str, attempts: int, cause: BaseException):
        self.operation = operation
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"{operation} failed after {attempts} attempts: {cause}",
            {"operation": operation, "attempts": attempts, "cause": str(cause)}
        )


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""

    code = "CONFIGURATION_ERROR"


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class LLMException(ExternalServiceException):
    """Exception for LLM API failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("LLM Service", message, details)
