# Overview: Outbound webhook delivery with bounded retry on a background thread pool.

"""
Webhook Dispatcher

WHY: Retailers and companies react to decisions in near real time (point of
sale display, budget alerts), but a slow or broken endpoint must never delay
or fail the request that produced the event.

DELIVERY CONTRACT:
- POST JSON with X-Webhook-Event / X-Webhook-Timestamp headers
- Success is any 2xx response
- Up to WEBHOOK_MAX_ATTEMPTS attempts (1 initial + retries)
- Waits WEBHOOK_RETRY_DELAYS between attempts; the last delay repeats
- Each attempt is bounded by WEBHOOK_TIMEOUT_SECONDS
- After the final attempt the outcome is logged and dropped

NOTE: There is no durable outbox. A process restart loses queued deliveries.

This module must not import the extensions module: the dispatcher instance
lives there.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from ..time_utils import to_utc_z, utcnow
from ..validation import cents_to_amount


logger = logging.getLogger(__name__)


EVENT_PURCHASE_APPROVED = "purchase.approved"
EVENT_PURCHASE_DENIED = "purchase.denied"
EVENT_LIMIT_EXCEEDED = "limit.exceeded"
EVENT_DISCONNECT_REQUESTED = "disconnect.requested"
EVENT_DISCONNECT_APPROVED = "disconnect.approved"
EVENT_DISCONNECT_REJECTED = "disconnect.rejected"

WEBHOOK_EVENTS = frozenset({
    EVENT_PURCHASE_APPROVED,
    EVENT_PURCHASE_DENIED,
    EVENT_LIMIT_EXCEEDED,
    EVENT_DISCONNECT_REQUESTED,
    EVENT_DISCONNECT_APPROVED,
    EVENT_DISCONNECT_REJECTED,
})

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_ATTEMPTS = 4
DEFAULT_RETRY_DELAYS = (1.0, 5.0, 15.0)
DEFAULT_MAX_WORKERS = 4


@dataclass
class WebhookDeliveryResult:
    success: bool
    status_code: int | None = None
    error: str | None = None
    attempts: int = 0

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "statusCode": self.status_code,
            "error": self.error,
            "attempts": self.attempts,
        }


def transaction_data(transaction, extra: dict | None = None) -> dict:
    """
    Payload body for purchase events.

    extra may carry spentThisMonth / spendingLimit (already in currency units);
    keys with a None value are left out.
    """
    data = {
        "transactionId": transaction.id,
        "userId": transaction.user_id,
        "companyId": transaction.company_id,
        "retailerId": transaction.retailer_id,
        "amount": cents_to_amount(transaction.amount_cents),
        "status": transaction.status,
    }
    if extra:
        data.update({key: value for key, value in extra.items() if value is not None})
    if transaction.denial_reason:
        data["denialReason"] = transaction.denial_reason
    return data


def build_payload(
    event: str,
    transaction=None,
    extra: dict | None = None,
    data: dict | None = None,
) -> dict:
    """
    Build the envelope POSTed to an endpoint.

    Purchase events pass the Transaction; other events (disconnects, pings)
    pass a ready-made data dict.
    """
    if event not in WEBHOOK_EVENTS:
        raise ValueError(f"Unknown webhook event: {event}")
    if transaction is not None:
        body = transaction_data(transaction, extra)
    else:
        body = dict(data or {})
        if extra:
            body.update({key: value for key, value in extra.items() if value is not None})
    return {
        "event": event,
        "timestamp": to_utc_z(utcnow()),
        "data": body,
    }


class WebhookDispatcher:
    """
    Flask extension owning the delivery thread pool.

    Tests pass an httpx.MockTransport as transport and a recording stub as
    sleep so retries run instantly against canned responses.
    """

    def __init__(self, app=None, *, transport: httpx.BaseTransport | None = None, sleep: Callable[[float], Any] | None = None):
        self.timeout = DEFAULT_TIMEOUT_SECONDS
        self.max_attempts = DEFAULT_MAX_ATTEMPTS
        self.retry_delays: tuple[float, ...] = DEFAULT_RETRY_DELAYS
        self.max_workers = DEFAULT_MAX_WORKERS
        self.transport = transport
        self.sleep = sleep or time.sleep

        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()
        self._idle = threading.Condition()
        self._in_flight = 0

        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        self.timeout = float(app.config.get("WEBHOOK_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS))
        self.max_attempts = max(int(app.config.get("WEBHOOK_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)), 1)
        self.retry_delays = tuple(app.config.get("WEBHOOK_RETRY_DELAYS", DEFAULT_RETRY_DELAYS)) or DEFAULT_RETRY_DELAYS
        self.max_workers = int(app.config.get("WEBHOOK_MAX_WORKERS", DEFAULT_MAX_WORKERS))
        app.extensions["webhooks"] = self

    def configure(self, *, transport: httpx.BaseTransport | None = None, sleep: Callable[[float], Any] | None = None) -> None:
        self.transport = transport
        self.sleep = sleep or time.sleep

    def delay_before_retry(self, failed_attempt: int) -> float:
        """Delay after the Nth failed attempt (1-based); the last entry repeats."""
        index = min(failed_attempt - 1, len(self.retry_delays) - 1)
        return float(self.retry_delays[index])

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def deliver(self, url: str, payload: dict) -> WebhookDeliveryResult:
        """
        POST payload to url, retrying failed attempts.

        Never raises for HTTP or transport problems; they are reported in
        the returned result.
        """
        headers = {
            "X-Webhook-Event": str(payload.get("event", "")),
            "X-Webhook-Timestamp": str(payload.get("timestamp", "")),
        }
        last_status: int | None = None
        last_error: str | None = None

        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            for attempt in range(1, self.max_attempts + 1):
                if attempt > 1:
                    delay = self.delay_before_retry(attempt - 1)
                    logger.info(
                        "Webhook retry %s/%s for %s in %.1fs",
                        attempt - 1, self.max_attempts - 1, url, delay,
                    )
                    self.sleep(delay)

                try:
                    response = client.post(url, json=payload, headers=headers)
                except httpx.TimeoutException:
                    last_status = None
                    last_error = f"Timed out after {self.timeout:g}s"
                except (httpx.HTTPError, httpx.InvalidURL) as exc:
                    last_status = None
                    last_error = str(exc) or type(exc).__name__
                else:
                    last_status = response.status_code
                    if 200 <= response.status_code < 300:
                        logger.info(
                            "Webhook %s delivered to %s (attempt %s/%s)",
                            payload.get("event"), url, attempt, self.max_attempts,
                        )
                        return WebhookDeliveryResult(
                            success=True,
                            status_code=response.status_code,
                            attempts=attempt,
                        )
                    last_error = f"HTTP {response.status_code}: {response.text[:200]}"

                logger.warning(
                    "Webhook %s to %s failed (attempt %s/%s): %s",
                    payload.get("event"), url, attempt, self.max_attempts, last_error,
                )

        logger.error(
            "Webhook %s to %s dropped after %s attempts: %s",
            payload.get("event"), url, self.max_attempts, last_error,
        )
        return WebhookDeliveryResult(
            success=False,
            status_code=last_status,
            error=last_error,
            attempts=self.max_attempts,
        )

    # ------------------------------------------------------------------
    # Fire-and-forget entry points
    # ------------------------------------------------------------------

    def trigger(self, entity, event: str, transaction=None, extra: dict | None = None, data: dict | None = None) -> Future | None:
        """
        Queue a delivery to entity.webhook_url and return immediately.

        Silent no-op when the entity has no endpoint. The payload is built
        here, on the caller's thread, so no ORM object crosses threads.
        """
        url = getattr(entity, "webhook_url", None) if entity is not None else None
        if not url:
            return None

        payload = build_payload(event, transaction=transaction, extra=extra, data=data)
        with self._idle:
            self._in_flight += 1
        try:
            return self._get_executor().submit(self._run, url, payload)
        except RuntimeError:
            # Executor already shut down (interpreter exit)
            with self._idle:
                self._in_flight -= 1
                self._idle.notify_all()
            logger.error("Webhook %s to %s not queued: dispatcher is shut down", event, url)
            return None

    def trigger_sync(self, entity, event: str, transaction=None, extra: dict | None = None, data: dict | None = None) -> WebhookDeliveryResult | None:
        """Deliver on the calling thread and return the outcome (CLI probes, debugging)."""
        url = getattr(entity, "webhook_url", None) if entity is not None else None
        if not url:
            return None
        payload = build_payload(event, transaction=transaction, extra=extra, data=data)
        return self.deliver(url, payload)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every queued delivery has finished. Returns False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._idle:
            while self._in_flight > 0:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True

    def shutdown(self, wait: bool = True) -> None:
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers,
                    thread_name_prefix="webhook",
                )
            return self._executor

    def _run(self, url: str, payload: dict) -> WebhookDeliveryResult | None:
        try:
            return self.deliver(url, payload)
        except Exception:
            # Background thread: nobody is left to receive the exception
            logger.exception("Unexpected error delivering webhook %s to %s", payload.get("event"), url)
            return None
        finally:
            with self._idle:
                self._in_flight -= 1
                self._idle.notify_all()
