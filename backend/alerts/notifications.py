"""
Notification fan-out for newly created alerts.

Delivery itself runs in Celery (workers.notifications) with bounded retries;
this module only decides who gets notified and enqueues the work. A failed
enqueue is logged (and counted against the webhook) but never raised, so
alert persistence is never undone by delivery problems.
"""

from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.webhooks import matching_webhooks, record_delivery
from db.models import Alert
from db.system_settings import get_bool_setting, get_list_setting
from workers.celery_app import celery_app

logger = structlog.get_logger()

NOTIFY_SEVERITIES = ("critical", "high")

EMAIL_TASK = "workers.notifications.deliver_alert_email"
SMS_TASK = "workers.notifications.deliver_alert_sms"
WEBHOOK_TASK = "workers.notifications.deliver_webhook"


def _enqueue(task_name: str, kwargs: dict[str, Any]) -> bool:
    try:
        celery_app.send_task(task_name, kwargs=kwargs)
        return True
    except Exception as exc:  # noqa: BLE001
        logger.warning("notifications.enqueue_failed", task_name=task_name, error=str(exc), **kwargs)
        return False


async def queue_notifications(db: AsyncSession, alert: Alert) -> dict[str, int]:
    """
    Queue email/SMS for critical and high alerts (subject to feature flags) and
    a delivery task per active webhook subscribed to the alert type.
    """
    alert_id = str(alert.alert_id)
    counts = {"email": 0, "sms": 0, "webhooks": 0, "webhook_failures": 0}

    if alert.severity in NOTIFY_SEVERITIES:
        if await get_bool_setting(db, "alert_email_enabled"):
            for recipient in await get_list_setting(db, "alert_email_recipients"):
                counts["email"] += _enqueue(EMAIL_TASK, {"alert_id": alert_id, "to_email": recipient})
        if await get_bool_setting(db, "alert_sms_enabled"):
            for recipient in await get_list_setting(db, "alert_sms_recipients"):
                counts["sms"] += _enqueue(SMS_TASK, {"alert_id": alert_id, "to_number": recipient})

    for webhook in await matching_webhooks(db, alert.alert_type):
        if _enqueue(WEBHOOK_TASK, {"alert_id": alert_id, "webhook_id": str(webhook.webhook_id)}):
            counts["webhooks"] += 1
        else:
            record_delivery(webhook, status_code=None, success=False)
            counts["webhook_failures"] += 1

    if counts["webhook_failures"]:
        await db.commit()

    logger.info("notifications.queued", alert_id=alert_id, **counts)
    return counts
