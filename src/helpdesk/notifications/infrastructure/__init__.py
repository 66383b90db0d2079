"""
Notifications Infrastructure Layer
==================================

Outbound sinks: webhook (httpx, circuit breaker) and structured log.
"""

from helpdesk.notifications.infrastructure.external import (
    CircuitState,
    LoggingNotificationSink,
    WebhookCircuitBreaker,
    WebhookNotificationSink,
    build_notification_sink,
)

__all__ = [
    "CircuitState",
    "LoggingNotificationSink",
    "WebhookCircuitBreaker",
    "WebhookNotificationSink",
    "build_notification_sink",
]
