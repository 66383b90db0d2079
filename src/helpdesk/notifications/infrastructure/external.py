"""
Notification Sinks
==================

External delivery for notifications:
- Webhook sink posting JSON with httpx
- Logging sink for environments without a webhook
"""

import asyncio
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

import httpx

from helpdesk.config import settings
from helpdesk.core.exceptions import NotificationDeliveryException
from helpdesk.notifications.application.services import INotificationSink
from helpdesk.notifications.domain import Notification
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class WebhookCircuitBreaker:
    """
    Stops calling the notification webhook after consecutive failed deliveries.

    A delivery counts as failed once the sink's own retries are spent. While
    open, deliveries are refused without a request and the task queue retries
    them later. After ``recovery_timeout`` seconds a single trial delivery is
    let through; other deliveries are refused until it finishes, and its
    outcome closes the circuit or opens it again.
    """

    def __init__(
        self,
        failure_threshold: Optional[int] = None,
        recovery_timeout: Optional[float] = None,
        monotonic: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold or settings.notification_breaker_threshold
        self.recovery_timeout = (
            recovery_timeout if recovery_timeout is not None
            else settings.notification_breaker_recovery_seconds
        )
        self._monotonic = monotonic
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self.retry_after() == 0:
            self._state = CircuitState.HALF_OPEN
        return self._state

    def retry_after(self) -> float:
        """Seconds until a trial delivery is allowed; 0 unless open."""
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return 0.0
        return max(0.0, self.recovery_timeout - (self._monotonic() - self._opened_at))

    def acquire(self) -> bool:
        """Whether a delivery may call the webhook now."""
        state = self.state
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.HALF_OPEN and not self._trial_in_flight:
            self._trial_in_flight = True
            return True
        return False

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("Notification webhook circuit closed")
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = None
        self._trial_in_flight = False

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        trial_failed = self._trial_in_flight
        self._trial_in_flight = False

        if trial_failed or self._consecutive_failures >= self.failure_threshold:
            self._state = CircuitState.OPEN
            self._opened_at = self._monotonic()
            logger.warning(
                "Notification webhook circuit opened",
                extra={
                    "consecutive_failures": self._consecutive_failures,
                    "trial_failed": trial_failed,
                    "recovery_timeout": self.recovery_timeout,
                }
            )


class WebhookNotificationSink(INotificationSink):
    """
    Posts each notification as JSON to one webhook.

    Transport errors and 5xx answers are retried a few times in-call; when
    they are spent the delivery fails, counts against the circuit breaker
    and raises NotificationDeliveryException so the task queue retries the
    task later.
    """

    def __init__(
        self,
        webhook_url: str,
        timeout_seconds: Optional[float] = None,
        max_retries: int = 3,
        circuit_breaker: Optional[WebhookCircuitBreaker] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._webhook_url = webhook_url
        self._timeout = timeout_seconds or settings.notification_timeout_seconds
        self._max_retries = max_retries
        self._circuit_breaker = circuit_breaker or WebhookCircuitBreaker()
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def _build_message(self, notification: Notification) -> Dict[str, Any]:
        return {
            "recipientUserId": str(notification.recipient_user_id),
            "title": notification.title,
            "message": notification.message,
            "context": notification.context,
        }

    async def _post(self, body: Dict[str, Any], recipient: str) -> Optional[str]:
        """POST with in-call retries; returns the last error, None on success."""
        last_error: Optional[str] = None
        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=body)
            except httpx.HTTPError as e:
                last_error = str(e)
                logger.warning(
                    "Notification webhook unreachable",
                    extra={"error": last_error, "attempt": attempt + 1, "recipient_user_id": recipient}
                )
            else:
                if response.is_success:
                    return None
                last_error = f"HTTP {response.status_code}"
                logger.warning(
                    "Notification webhook returned error status",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
                # 4xx other than 429 is final for this payload
                if response.is_client_error and response.status_code != 429:
                    return last_error

            if attempt < self._max_retries - 1:
                await asyncio.sleep(2 ** attempt)
        return last_error

    async def send(self, notification: Notification) -> None:
        recipient = str(notification.recipient_user_id)
        if not self._circuit_breaker.acquire():
            raise NotificationDeliveryException(
                "Circuit breaker open",
                {
                    "recipient_user_id": recipient,
                    "retry_after_seconds": round(self._circuit_breaker.retry_after(), 1),
                }
            )

        try:
            error = await self._post(self._build_message(notification), recipient)
        except Exception:
            self._circuit_breaker.record_failure()
            raise

        if error is not None:
            self._circuit_breaker.record_failure()
            logger.error(
                "Notification delivery failed",
                extra={"error": error, "recipient_user_id": recipient}
            )
            raise NotificationDeliveryException(error, {"recipient_user_id": recipient})

        self._circuit_breaker.record_success()
        logger.info(
            "Notification delivered",
            extra={"recipient_user_id": recipient, "event": notification.context.get("event")}
        )

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class LoggingNotificationSink(INotificationSink):
    """Writes notifications to the structured log instead of delivering them."""

    async def send(self, notification: Notification) -> None:
        logger.info(
            "Notification",
            extra={
                "recipient_user_id": str(notification.recipient_user_id),
                "title": notification.title,
                "notification_message": notification.message,
                "context": notification.context,
            }
        )

    async def close(self) -> None:
        return None


def build_notification_sink() -> INotificationSink:
    """Webhook sink when a URL is configured, logging sink otherwise."""
    if settings.notification_webhook_url:
        return WebhookNotificationSink(settings.notification_webhook_url)
    logger.info("Notification webhook not configured, using logging sink")
    return LoggingNotificationSink()
