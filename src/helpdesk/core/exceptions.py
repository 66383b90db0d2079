"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

Every exception carries a stable ``code`` and an HTTP ``status_code`` so the
API boundary can render it without inspecting the type.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    code = "internal_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class BadRequestException(ApplicationException):
    """Malformed request, e.g. an illegal transition or a no-op plan change."""

    code = "bad_request"
    status_code = 400


class ValidationException(BadRequestException):
    """Exception for validation errors."""


class ForbiddenException(ApplicationException):
    """Role, ownership or state rule rejected the operation."""

    code = "forbidden"
    status_code = 403


class ConflictException(ApplicationException):
    """Operation duplicates existing state."""

    code = "conflict"
    status_code = 409


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    code = "not_found"
    status_code = 404

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


class LimitExceededException(ForbiddenException):
    """Quota for a usage dimension is exhausted."""

    code = "limit_exceeded"

    def __init__(
        self,
        dimension: str,
        current: int,
        limit: int,
        upgrade_url: Optional[str] = None
    ):
        self.dimension = dimension
        self.current = current
        self.limit = limit
        self.upgrade_url = upgrade_url
        super().__init__(
            f"You have reached your {dimension} limit ({current}/{limit}). "
            "Please upgrade your plan to continue.",
            {
                "dimension": dimension,
                "current": current,
                "limit": limit,
                "upgrade_url": upgrade_url,
            }
        )


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    code = "external_service_error"
    status_code = 502

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class NotificationDeliveryException(ExternalServiceException):
    """Exception for notification sink failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Notification Sink", message, details)
