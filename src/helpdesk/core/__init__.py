"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from helpdesk.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    BadRequestException,
    ValidationException,
    ForbiddenException,
    ConflictException,
    ResourceNotFoundException,
    LimitExceededException,
    ConfigurationException,
    ExternalServiceException,
    NotificationDeliveryException,
)
from helpdesk.core.context import ActorContext
from helpdesk.core.interfaces import IDeferredTaskQueue, IMembershipDirectory, MemberInfo
from helpdesk.core.permissions import Capability, has_capability, require_capability

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "BadRequestException",
    "ValidationException",
    "ForbiddenException",
    "ConflictException",
    "ResourceNotFoundException",
    "LimitExceededException",
    "ConfigurationException",
    "ExternalServiceException",
    "NotificationDeliveryException",
    "ActorContext",
    "IDeferredTaskQueue",
    "IMembershipDirectory",
    "MemberInfo",
    "Capability",
    "has_capability",
    "require_capability",
]
