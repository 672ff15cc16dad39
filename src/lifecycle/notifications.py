"""
Notification gateways and the fire-and-forget dispatcher.

Gateways deliver one NotificationIntent and raise NotificationDispatchFailure
when they cannot. The dispatcher runs each delivery on a background thread
with bounded retries and exponential backoff; failures are logged and never
reach the code that committed the transition.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Optional

import httpx

from src import __version__
from .entities import NotificationIntent
from .errors import NotificationDispatchFailure


logger = logging.getLogger(__name__)

# Delivery configuration
NOTIFY_TIMEOUT_SECONDS = 30
NOTIFY_MAX_ATTEMPTS = 3
NOTIFY_RETRY_BASE_DELAY = 1.0  # seconds
NOTIFY_RETRY_MAX_DELAY = 10.0  # seconds


SMS_TEMPLATES = {
    "job_created": "RepairX: Job {job_id} created. We'll keep you posted.",
    "technician_assigned": "RepairX: You have been assigned job {job_id}.",
    "quote_ready": "RepairX: Quote ready for approval - Job {job_id}. Please review and approve.",
    "work_approved": "RepairX: Work approved for job {job_id}. Repair can begin.",
    "quality_check_requested": "RepairX: Job {job_id} is waiting for quality sign-off.",
    "job_completed": "RepairX: Job {job_id} completed! Quality score {quality_score}%.",
    "ready_for_delivery": "RepairX: Job {job_id} approved by the customer, ready for hand-over.",
    "job_delivered": "RepairX: Job {job_id} delivered. Thank you for choosing RepairX!",
    "job_cancelled": "RepairX: Job {job_id} was cancelled. Reason: {reason}",
    "job_disputed": "RepairX: Customer disputed job {job_id} while {from_state}. Reason: {reason}",
    "job_escalated": "RepairX: Job {job_id} has been {state_name} for over {timeout_hours}h.",
}

DEFAULT_TEMPLATE = "RepairX: Update on job {job_id} - {state_name}"


class _SafeVariables(dict):
    def __missing__(self, key: str) -> str:
        return ""


def render_message(intent: NotificationIntent) -> str:
    """
    Render the text of a notification.

    Unknown templates fall back to a generic status update; variables
    missing from the intent render as empty strings.
    """
    template = SMS_TEMPLATES.get(intent.template, DEFAULT_TEMPLATE)
    variables = _SafeVariables({k: "" if v is None else v for k, v in intent.variables.items()})
    return template.format_map(variables)


def build_notification_payload(intent: NotificationIntent) -> dict:
    """
    Build the JSON body posted to a webhook.

    Args:
        intent: NotificationIntent to deliver

    Returns:
        Dictionary payload for webhook POST
    """
    return {
        "event": "job.notification",
        "intent_id": intent.intent_id,
        "job_id": intent.job_id,
        "recipient_role": intent.recipient_role.value,
        "channel": intent.channel,
        "template": intent.template,
        "message": render_message(intent),
        "variables": intent.variables,
        "timestamp": datetime.now().isoformat(),
    }


# =============================================================================
# Gateways
# =============================================================================


class NotificationGateway(ABC):
    """Delivers a single notification intent."""

    @abstractmethod
    def send(self, intent: NotificationIntent) -> None:
        """
        Deliver the intent.

        Raises:
            NotificationDispatchFailure: If delivery failed
        """


class LoggingNotificationGateway(NotificationGateway):
    """Gateway that only logs the rendered message. Used when no webhook is configured."""

    def send(self, intent: NotificationIntent) -> None:
        logger.info(
            f"[{intent.channel}] to {intent.recipient_role.value} "
            f"for job {intent.job_id}: {render_message(intent)}"
        )


class WebhookNotificationGateway(NotificationGateway):
    """
    Posts intents to an HTTP endpoint that fans out SMS/email.

    Args:
        url: Webhook URL to POST to
        timeout: Request timeout in seconds
        client: Optional httpx.Client (tests inject one with a MockTransport)
    """

    def __init__(
        self,
        url: str,
        timeout: float = NOTIFY_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = client

    def send(self, intent: NotificationIntent) -> None:
        payload = build_notification_payload(intent)
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"RepairX-Lifecycle/{__version__}",
            "X-Job-ID": intent.job_id,
            "X-Notification-ID": intent.intent_id,
        }

        try:
            if self._client is not None:
                response = self._client.post(self.url, json=payload, headers=headers)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(self.url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise NotificationDispatchFailure(intent.intent_id, f"Timeout after {self.timeout}s") from e
        except httpx.RequestError as e:
            raise NotificationDispatchFailure(intent.intent_id, f"Request error: {e}") from e

        if not 200 <= response.status_code < 300:
            raise NotificationDispatchFailure(
                intent.intent_id, f"HTTP {response.status_code}: {response.text[:200]}"
            )


# =============================================================================
# Dispatcher
# =============================================================================


class NotificationDispatcher:
    """
    Fire-and-forget delivery of notification intents.

    Each intent is delivered on its own daemon thread:
        attempt 1 → fail → sleep(base) → attempt 2 → fail → sleep(base * 2) → ...
    capped at max_delay, for at most max_attempts attempts.

    Args:
        gateway: NotificationGateway that performs delivery
        max_attempts: Maximum delivery attempts per intent
        base_delay: Initial backoff delay in seconds
        max_delay: Maximum backoff delay in seconds
        sleep: Sleep function (tests pass a no-op)
    """

    def __init__(
        self,
        gateway: NotificationGateway,
        max_attempts: int = NOTIFY_MAX_ATTEMPTS,
        base_delay: float = NOTIFY_RETRY_BASE_DELAY,
        max_delay: float = NOTIFY_RETRY_MAX_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.gateway = gateway
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

        self._lock = threading.Lock()
        self._threads: set = set()
        self._stats = {"delivered": 0, "failed": 0, "retried": 0}

    def dispatch(self, intents) -> int:
        """
        Start background delivery for each intent and return immediately.

        Returns:
            Number of deliveries started
        """
        started = 0
        for intent in intents:
            thread = threading.Thread(
                target=self._run,
                args=(intent,),
                name=f"notify-{intent.intent_id[:8]}",
                daemon=True,
            )
            with self._lock:
                self._threads.add(thread)
            thread.start()
            started += 1
        return started

    def _run(self, intent: NotificationIntent) -> None:
        try:
            self.deliver(intent)
        finally:
            with self._lock:
                self._threads.discard(threading.current_thread())

    def calculate_backoff(self, attempt: int) -> float:
        """Delay before retry number `attempt + 1` (attempt is 0-based)."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def deliver(self, intent: NotificationIntent) -> bool:
        """
        Deliver one intent with retries, in the calling thread.

        Returns:
            True if the gateway accepted the intent, False after the last failure
        """
        last_error: Optional[str] = None

        for attempt in range(self.max_attempts):
            try:
                self.gateway.send(intent)
                with self._lock:
                    self._stats["delivered"] += 1
                logger.info(
                    f"Notification {intent.template} sent for job {intent.job_id} "
                    f"(attempt {attempt + 1}/{self.max_attempts})"
                )
                return True

            except NotificationDispatchFailure as e:
                last_error = e.reason
                logger.warning(
                    f"Notification {intent.intent_id} for job {intent.job_id} failed "
                    f"(attempt {attempt + 1}/{self.max_attempts}): {e.reason}"
                )

            except Exception as e:
                last_error = f"Unexpected error: {e}"
                logger.error(
                    f"Notification {intent.intent_id} for job {intent.job_id} unexpected error "
                    f"(attempt {attempt + 1}/{self.max_attempts}): {e}"
                )

            if attempt < self.max_attempts - 1:
                delay = self.calculate_backoff(attempt)
                with self._lock:
                    self._stats["retried"] += 1
                logger.debug(f"Retrying notification {intent.intent_id} in {delay}s...")
                self._sleep(delay)

        with self._lock:
            self._stats["failed"] += 1
        logger.error(
            f"Notification {intent.intent_id} for job {intent.job_id} failed after "
            f"{self.max_attempts} attempts: {last_error}"
        )
        return False

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for in-flight deliveries to finish.

        Returns:
            True if nothing is in flight when this returns
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                pending = list(self._threads)
            if not pending:
                return True
            for thread in pending:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                thread.join(remaining)
            if deadline is not None and time.monotonic() >= deadline:
                with self._lock:
                    return not self._threads

    def get_stats(self) -> dict:
        with self._lock:
            return {**self._stats, "in_flight": len(self._threads)}
