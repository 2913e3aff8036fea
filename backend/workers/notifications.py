"""
Notification Workers — Outbound delivery of alert email, SMS, and webhooks.

Tasks are enqueued by alerts.notifications.queue_notifications after the alert
is committed. Each delivery is retried with exponential backoff up to
NOTIFICATION_MAX_RETRIES; outcomes are recorded on the alert (sent flags) and,
for webhooks, on the webhook's failure counter.
"""

import asyncio
import uuid
from datetime import datetime
from typing import Any

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.email import send_alert_email
from alerts.sms import send_alert_sms
from alerts.webhooks import post_webhook, record_delivery
from core.config import get_settings
from core.errors import DeliveryError
from db.models import Alert, Webhook
from db.session import worker_session
from workers.celery_app import celery_app

logger = structlog.get_logger()


def _backoff(task) -> int:
    return get_settings().notification_retry_backoff_seconds * 2**task.request.retries


def _retry(task, exc: Exception):
    return task.retry(exc=exc, countdown=_backoff(task), max_retries=get_settings().notification_max_retries)


async def _load_alert(db: AsyncSession, alert_id: str) -> Alert | None:
    return await db.get(Alert, uuid.UUID(alert_id))


# ──────────────────────────────────────────────────────────────────────────
# Delivery (one attempt each)
# ──────────────────────────────────────────────────────────────────────────


async def _deliver_email(db: AsyncSession, alert_id: str, to_email: str) -> dict[str, Any]:
    alert = await _load_alert(db, alert_id)
    if alert is None:
        return {"status": "skipped", "reason": "alert_not_found"}

    sent = await send_alert_email(
        to_email,
        alert.alert_type,
        alert.severity,
        alert.title,
        alert.message or "",
        alert.forklift_id or "",
    )
    if not sent:
        return {"status": "failed", "channel": "email", "to": to_email}

    alert.email_sent = True
    alert.email_sent_at = datetime.utcnow()
    await db.commit()
    return {"status": "delivered", "channel": "email", "to": to_email}


async def _deliver_sms(db: AsyncSession, alert_id: str, to_number: str) -> dict[str, Any]:
    alert = await _load_alert(db, alert_id)
    if alert is None:
        return {"status": "skipped", "reason": "alert_not_found"}

    sent = await send_alert_sms(to_number, alert.severity, alert.title, alert.forklift_id or "")
    if not sent:
        return {"status": "failed", "channel": "sms", "to": to_number}

    alert.sms_sent = True
    alert.sms_sent_at = datetime.utcnow()
    await db.commit()
    return {"status": "delivered", "channel": "sms", "to": to_number}


async def _deliver_webhook(db: AsyncSession, alert_id: str, webhook_id: str) -> dict[str, Any]:
    alert = await _load_alert(db, alert_id)
    webhook = await db.get(Webhook, uuid.UUID(webhook_id))
    if alert is None or webhook is None:
        return {"status": "skipped", "reason": "not_found"}
    if not webhook.is_active:
        return {"status": "skipped", "reason": "webhook_inactive"}

    try:
        status_code = await post_webhook(webhook, alert)
    except httpx.HTTPError as exc:
        logger.warning("webhooks.delivery_error", webhook_id=webhook_id, alert_id=alert_id, error=str(exc))
        status_code = None

    success = status_code is not None and 200 <= status_code < 300
    record_delivery(webhook, status_code, success)
    if success:
        alert.webhook_sent = True
        alert.webhook_sent_at = datetime.utcnow()
    await db.commit()

    logger.info(
        "webhooks.delivered" if success else "webhooks.delivery_failed",
        webhook_id=webhook_id,
        alert_id=alert_id,
        status_code=status_code,
        consecutive_failures=webhook.consecutive_failures,
    )
    return {
        "status": "delivered" if success else "failed",
        "channel": "webhook",
        "webhook_id": webhook_id,
        "status_code": status_code,
    }


def _run_delivery(task, deliver, *args) -> dict[str, Any]:
    async def _run():
        async with worker_session() as db:
            return await deliver(db, *args)

    try:
        result = asyncio.run(_run())
    except Exception as exc:  # noqa: BLE001
        logger.error("notifications.task_failed", task=task.name, args=args, error=str(exc), exc_info=True)
        raise _retry(task, exc)

    if result["status"] == "failed":
        raise _retry(task, DeliveryError(f"{result['channel']} delivery failed for alert {args[0]}"))
    return result


# ──────────────────────────────────────────────────────────────────────────
# Tasks
# ──────────────────────────────────────────────────────────────────────────


@celery_app.task(
    name="workers.notifications.deliver_alert_email",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    acks_late=True,
)
def deliver_alert_email(self, alert_id: str, to_email: str):
    logger.info("notifications.email_started", alert_id=alert_id, to_email=to_email, attempt=self.request.retries)
    return _run_delivery(self, _deliver_email, alert_id, to_email)


@celery_app.task(
    name="workers.notifications.deliver_alert_sms",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    acks_late=True,
)
def deliver_alert_sms(self, alert_id: str, to_number: str):
    logger.info("notifications.sms_started", alert_id=alert_id, to_number=to_number, attempt=self.request.retries)
    return _run_delivery(self, _deliver_sms, alert_id, to_number)


@celery_app.task(
    name="workers.notifications.deliver_webhook",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    acks_late=True,
)
def deliver_webhook(self, alert_id: str, webhook_id: str):
    logger.info("notifications.webhook_started", alert_id=alert_id, webhook_id=webhook_id, attempt=self.request.retries)
    return _run_delivery(self, _deliver_webhook, alert_id, webhook_id)
