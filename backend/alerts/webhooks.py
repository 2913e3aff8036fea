"""
Webhook registry and delivery for alert subscribers.

Each webhook subscribes to a list of alert types ("all" matches every type).
Delivery outcomes are recorded on the webhook: a success resets
consecutive_failures, a failure increments it.
"""

import hashlib
import hmac
import json
import uuid
from datetime import datetime
from typing import Any

import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.errors import WebhookNotFoundError
from db.models import Alert, Webhook

logger = structlog.get_logger()

SIGNATURE_HEADER = "X-FleetPulse-Signature"
EVENT_HEADER = "X-FleetPulse-Event"
_UPDATABLE_FIELDS = ("name", "url", "secret", "events", "is_active")


def webhook_matches(events: list[str] | None, alert_type: str) -> bool:
    events = events or []
    return alert_type in events or "all" in events


async def matching_webhooks(db: AsyncSession, alert_type: str) -> list[Webhook]:
    result = await db.execute(select(Webhook).where(Webhook.is_active.is_(True)).order_by(Webhook.name))
    return [wh for wh in result.scalars().all() if webhook_matches(wh.events, alert_type)]


# ─── Registry ──────────────────────────────────────────────────────────────


async def create_webhook(
    db: AsyncSession,
    *,
    name: str,
    url: str,
    events: list[str] | None = None,
    secret: str | None = None,
    created_by: str | None = None,
) -> Webhook:
    webhook = Webhook(name=name, url=url, events=list(events or ["all"]), secret=secret, created_by=created_by)
    db.add(webhook)
    await db.commit()
    return webhook


async def list_webhooks(db: AsyncSession) -> list[Webhook]:
    result = await db.execute(select(Webhook).order_by(Webhook.name))
    return list(result.scalars().all())


async def get_webhook(db: AsyncSession, webhook_id: uuid.UUID | str) -> Webhook:
    try:
        key = webhook_id if isinstance(webhook_id, uuid.UUID) else uuid.UUID(str(webhook_id))
    except ValueError as exc:
        raise WebhookNotFoundError(webhook_id) from exc
    webhook = await db.get(Webhook, key)
    if webhook is None:
        raise WebhookNotFoundError(webhook_id)
    return webhook


async def update_webhook(db: AsyncSession, webhook_id: uuid.UUID | str, **changes: Any) -> Webhook:
    webhook = await get_webhook(db, webhook_id)
    for field in _UPDATABLE_FIELDS:
        if field in changes and changes[field] is not None:
            value = changes[field]
            setattr(webhook, field, list(value) if field == "events" else value)
    await db.commit()
    return webhook


async def delete_webhook(db: AsyncSession, webhook_id: uuid.UUID | str) -> bool:
    try:
        webhook = await get_webhook(db, webhook_id)
    except WebhookNotFoundError:
        return False
    await db.delete(webhook)
    await db.commit()
    return True


# ─── Delivery ──────────────────────────────────────────────────────────────


def build_payload(alert: Alert) -> dict[str, Any]:
    return {
        "type": "alert",
        "payload": {
            "alert_id": str(alert.alert_id),
            "alert_type": alert.alert_type,
            "severity": alert.severity,
            "title": alert.title,
            "message": alert.message,
            "forklift_id": alert.forklift_id,
            "context": alert.context_data or {},
            "created_at": alert.created_at.isoformat() if alert.created_at else None,
        },
    }


def sign_payload(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


async def post_webhook(webhook: Webhook, alert: Alert) -> int:
    """POST the alert to the webhook URL and return the HTTP status code."""
    settings = get_settings()
    body = json.dumps(build_payload(alert)).encode("utf-8")
    headers = {"Content-Type": "application/json", EVENT_HEADER: alert.alert_type}
    if webhook.secret:
        headers[SIGNATURE_HEADER] = sign_payload(webhook.secret, body)

    async with httpx.AsyncClient(timeout=settings.webhook_timeout_seconds) as client:
        response = await client.post(webhook.url, content=body, headers=headers)
    return response.status_code


def record_delivery(webhook: Webhook, status_code: int | None, success: bool) -> None:
    webhook.last_triggered_at = datetime.utcnow()
    webhook.last_status_code = status_code
    if success:
        webhook.consecutive_failures = 0
    else:
        webhook.consecutive_failures = (webhook.consecutive_failures or 0) + 1
