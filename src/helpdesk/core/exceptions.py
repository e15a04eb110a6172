"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

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


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ConcurrencyException(RepositoryException):
    """Raised when a write is based on a stale version of a row."""

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        expected_version: int
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.expected_version = expected_version
        super().__init__(
            f"{resource_type} '{resource_id}' was modified concurrently",
            {"resource_id": resource_id, "expected_version": expected_version}
        )


class SlaExtensionException(DomainException):
    """Raised when an SLA extension request violates the extension policy."""

    def __init__(
        self,
        ticket_id: str,
        reason: str,
        details: Optional[dict] = None
    ):
        self.ticket_id = ticket_id
        self.reason = reason
        super().__init__(
            reason,
            details or {"ticket_id": ticket_id}
        )
