"""
Outbound webhook delivery for automation runs.

A ``webhook`` action creates a WebhookDelivery; the executor queues
WebhookDeliveryJob for it after the run's actions are recorded.
Each attempt POSTs (or PUTs/PATCHes) the rendered JSON body, signed with the
rule's webhook secret. Failures are retried with backoff; after the last
attempt the delivery fails for good. Either terminal outcome is reported to
the parent automation run, which finishes once all its deliveries settle.

Signature scheme (when the rule has a secret):
    X-Harmonic-Timestamp: <unix seconds>
    X-Harmonic-Signature: sha256=<hex HMAC-SHA256 of "<timestamp>.<body>">

The HTTP call goes through a transport class named by
settings.HARMONIC_WEBHOOK_TRANSPORT, so tests and deployments can swap it.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any
from urllib.parse import urlparse

from django.conf import settings
from django.utils import timezone
from django.utils.module_loading import import_string

from .models import WebhookDelivery

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5
RETRY_DELAYS = [
    timedelta(minutes=1),
    timedelta(minutes=5),
    timedelta(minutes=30),
    timedelta(hours=2),
    timedelta(hours=24),
]
TIMEOUT_SECONDS = 30
MAX_RESPONSE_BODY = 1000


@dataclass
class WebhookResponse:
    status_code: int
    body: str = ""
    reason: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class RequestsTransport:
    """Sends webhook requests with requests."""

    def send(
        self,
        *,
        method: str,
        url: str,
        body: str,
        headers: dict[str, str],
        timeout: int,
    ) -> WebhookResponse:
        import requests

        response = requests.request(
            method,
            url,
            data=body.encode("utf-8"),
            headers=headers,
            timeout=timeout,
        )
        return WebhookResponse(
            status_code=response.status_code,
            body=response.text,
            reason=response.reason or "",
        )


def get_transport():
    transport_path = getattr(
        settings, "HARMONIC_WEBHOOK_TRANSPORT", "automations.webhooks.RequestsTransport"
    )
    return import_string(transport_path)()


def sign(body: str, timestamp: int, secret: str) -> str:
    message = f"{timestamp}.{body}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signature(body: str, timestamp: str, signature: str, secret: str) -> bool:
    expected = sign(body, int(timestamp), secret)
    # Accept both raw hex and "sha256=..." forms
    if "=" in signature:
        signature = signature.split("=", 1)[1]
    return hmac.compare_digest(expected, signature.lower())


def is_deliverable_url(url: str) -> bool:
    parsed = urlparse(url or "")
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def create_webhook_delivery(
    *,
    run,
    url: str,
    body: Any,
    method: str = "POST",
    headers: dict | None = None,
    timeout: int | None = None,
) -> WebhookDelivery:
    """
    Create a pending delivery for ``run``.

    The executor queues it with enqueue_delivery() once every action of the
    run has been recorded, so the run cannot finish on an early delivery.
    """
    method = (method or "POST").upper()
    if method not in WebhookDelivery.Method.values:
        method = WebhookDelivery.Method.POST

    return WebhookDelivery.objects.create(
        tenant_id=run.tenant_id,
        automation_rule_run=run,
        event=run.triggered_by_event,
        url=url,
        method=method,
        headers={str(key): str(value) for key, value in (headers or {}).items()},
        secret=run.automation_rule.webhook_secret,
        request_body=json.dumps(body, default=str),
        timeout_seconds=int(timeout or TIMEOUT_SECONDS),
    )


def enqueue_delivery(delivery: WebhookDelivery) -> str:
    from .jobs import WebhookDeliveryJob

    task_id = WebhookDeliveryJob.perform_later(
        delivery_id=delivery.pk, tenant_id=delivery.tenant_id
    )
    logger.info(
        f"Queued webhook delivery {delivery.pk} for automation run {delivery.automation_rule_run_id}"
    )
    return task_id


class WebhookDeliveryService:
    """Runs one delivery attempt and moves the delivery through its lifecycle."""

    def __init__(self, transport=None):
        self.transport = transport or get_transport()

    def deliver(self, delivery: WebhookDelivery) -> WebhookDelivery:
        if delivery.status not in WebhookDelivery.UNSETTLED_STATUSES:
            logger.info(f"Webhook delivery {delivery.pk} is {delivery.status}; not sending")
            return delivery

        try:
            response = self.transport.send(
                method=delivery.method,
                url=delivery.url,
                body=delivery.request_body,
                headers=self.build_headers(delivery),
                timeout=delivery.timeout_seconds,
            )
        except Exception as e:
            logger.warning(f"Webhook delivery {delivery.pk} attempt failed: {e}")
            return self.handle_failure(delivery, str(e))

        if not response.ok:
            message = f"HTTP {response.status_code}"
            if response.reason:
                message = f"{message}: {response.reason}"
            return self.handle_failure(delivery, message, response=response)

        delivery.status = WebhookDelivery.Status.SUCCESS
        delivery.response_code = response.status_code
        delivery.response_body = response.body[:MAX_RESPONSE_BODY]
        delivery.delivered_at = timezone.now()
        delivery.attempt_count += 1
        delivery.next_retry_at = None
        delivery.save(
            update_fields=[
                "status",
                "response_code",
                "response_body",
                "delivered_at",
                "attempt_count",
                "next_retry_at",
                "updated_at",
            ]
        )
        logger.info(f"Webhook delivery {delivery.pk} succeeded with HTTP {response.status_code}")
        self.notify_parent_run(delivery)
        return delivery

    def build_headers(self, delivery: WebhookDelivery) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-Harmonic-Event": self.event_type_for(delivery),
            "X-Harmonic-Delivery": str(delivery.pk),
        }
        if delivery.automation_rule_run_id:
            headers["X-Harmonic-Automation-Run"] = str(delivery.automation_rule_run_id)
        if delivery.secret:
            timestamp = int(timezone.now().timestamp())
            headers["X-Harmonic-Timestamp"] = str(timestamp)
            headers["X-Harmonic-Signature"] = (
                f"sha256={sign(delivery.request_body, timestamp, delivery.secret)}"
            )
        # Custom headers from the action win over the defaults
        headers.update(delivery.headers or {})
        return headers

    def event_type_for(self, delivery: WebhookDelivery) -> str:
        if delivery.event_id and delivery.event.event_type:
            return delivery.event.event_type
        run = delivery.automation_rule_run
        if run is not None:
            return f"automation.{run.automation_rule.trigger_type}"
        return "automation"

    def handle_failure(
        self,
        delivery: WebhookDelivery,
        message: str,
        response: WebhookResponse | None = None,
    ) -> WebhookDelivery:
        attempt = delivery.attempt_count + 1
        delivery.attempt_count = attempt
        delivery.error = message
        if response is not None:
            delivery.response_code = response.status_code
            delivery.response_body = response.body[:MAX_RESPONSE_BODY]

        if attempt >= MAX_ATTEMPTS:
            delivery.status = WebhookDelivery.Status.FAILED
            delivery.next_retry_at = None
            self._save_failure(delivery)
            logger.error(
                f"Webhook delivery {delivery.pk} failed after {attempt} attempts: {message}"
            )
            self.notify_parent_run(delivery)
            return delivery

        delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS)) - 1]
        delivery.status = WebhookDelivery.Status.RETRYING
        delivery.next_retry_at = timezone.now() + delay
        self._save_failure(delivery)
        self.schedule_retry(delivery)
        return delivery

    def schedule_retry(self, delivery: WebhookDelivery) -> str:
        """Register a one-shot Django-Q2 schedule for the next attempt."""
        from django_q.models import Schedule

        from .jobs import WebhookDeliveryJob

        schedule_name = f"webhook_delivery_{delivery.pk}_attempt_{delivery.attempt_count + 1}"
        Schedule.objects.filter(name=schedule_name).delete()
        Schedule.objects.create(
            name=schedule_name,
            func=WebhookDeliveryJob.task_path(),
            kwargs=f"delivery_id={delivery.pk}, tenant_id={delivery.tenant_id}",
            schedule_type=Schedule.ONCE,
            next_run=delivery.next_retry_at,
        )
        logger.info(
            f"Webhook delivery {delivery.pk} attempt {delivery.attempt_count} failed; "
            f"retrying at {delivery.next_retry_at}"
        )
        return schedule_name

    def notify_parent_run(self, delivery: WebhookDelivery) -> None:
        run = delivery.automation_rule_run
        if run is None:
            return
        run.refresh_from_db()
        run.update_status_from_actions()

    def _save_failure(self, delivery: WebhookDelivery) -> None:
        delivery.save(
            update_fields=[
                "status",
                "attempt_count",
                "error",
                "response_code",
                "response_body",
                "next_retry_at",
                "updated_at",
            ]
        )
