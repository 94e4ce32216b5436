"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code: the exception taxonomy and
the retry policy used for primary persistence writes.
"""

from src.core.exceptions import (
    ApplicationException,
    DomainException,
    ValidationException,
    QueueValidationError,
    ResourceNotFoundException,
    QueueItemNotFoundError,
    RepositoryException,
    DuplicateRecordError,
    RecordDecodeError,
    RetryExhaustedError,
    ConfigurationException,
    ExternalServiceException,
    LLMException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "ValidationException",
    "QueueValidationError",
    "ResourceNotFoundException",
    "QueueItemNotFoundError",
    "RepositoryException",
    "DuplicateRecordError",
    "RecordDecodeError",
    "RetryExhaustedError",
    "ConfigurationException",
    "ExternalServiceException",
    "LLMException",
]
