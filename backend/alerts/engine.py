"""
Alert Engine — Deduplicated alert creation and lifecycle transitions.

Alert Types:
  - high_risk: Risk score crossed the replacement threshold
  - hour_anomaly: Hour-meter reading flagged for review
  - lifecycle_alert: Predictive-maintenance finding (service, component, failure pattern)
  - maintenance_due / maintenance_overdue / downtime / custom / ...

Lifecycle:
  active ──acknowledge──▶ acknowledged ──resolve──▶ resolved
    │  ▲                                    │
  snooze └─reactivate (snooze_until elapsed) └─dismiss──▶ dismissed

Dedup: one unresolved alert per recurrence_key. Creation is an atomic
insert-or-fetch backed by the partial unique index on alerts.recurrence_key.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import AlertNotFoundError, InvalidTransitionError
from db.models import (
    ALERT_SEVERITIES,
    ALERT_TYPES,
    OPEN_ALERT_STATUSES,
    Alert,
    AlertAcknowledgment,
)

logger = structlog.get_logger()

# critical > high > medium > low
SEVERITY_RANK = {"critical": 0, "high": 1, "medium": 2, "low": 3}

ALLOWED_TRANSITIONS = {
    "acknowledge": ("active",),
    "resolve": ("active", "acknowledged", "snoozed"),
    "dismiss": ("active", "acknowledged", "snoozed"),
    "snooze": ("active", "acknowledged"),
}

_severity_order = case(SEVERITY_RANK, value=Alert.severity, else_=len(SEVERITY_RANK))


def default_recurrence_key(alert_type: str, forklift_id: str | None) -> str:
    """Implicit dedup key for alerts created without an explicit one."""
    return f"{alert_type}_{forklift_id or 'fleet'}"


# ──────────────────────────────────────────────────────────────────────────
# Creation (idempotent)
# ──────────────────────────────────────────────────────────────────────────


async def find_open_alert(db: AsyncSession, recurrence_key: str) -> Alert | None:
    result = await db.execute(
        select(Alert)
        .where(Alert.recurrence_key == recurrence_key, Alert.status.in_(OPEN_ALERT_STATUSES))
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _insert_or_fetch(db: AsyncSession, alert: Alert) -> tuple[Alert, bool]:
    """
    Insert inside a SAVEPOINT; if a concurrent writer already holds the
    recurrence key, the unique index rejects the row and the winner is returned.
    """
    existing = await find_open_alert(db, alert.recurrence_key)
    if existing is not None:
        return existing, False

    try:
        async with db.begin_nested():
            db.add(alert)
    except IntegrityError:
        existing = await find_open_alert(db, alert.recurrence_key)
        if existing is None:
            raise
        logger.info("alerts.dedup_race_resolved", recurrence_key=alert.recurrence_key)
        return existing, False
    return alert, True


async def create_alert(db: AsyncSession, **fields: Any) -> Alert:
    """
    Create an alert, or return the existing unresolved alert with the same
    recurrence key. Notifications are queued only for newly inserted alerts
    and never affect the outcome of this call.
    """
    alert, _ = await raise_alert(db, **fields)
    return alert


async def raise_alert(
    db: AsyncSession,
    *,
    alert_type: str,
    title: str,
    severity: str = "medium",
    forklift_id: str | None = None,
    message: str | None = None,
    context_data: dict[str, Any] | None = None,
    threshold_value: float | None = None,
    actual_value: float | None = None,
    recurrence_key: str | None = None,
    notify: bool = True,
) -> tuple[Alert, bool]:
    """Same as create_alert, also reporting whether a new row was inserted."""
    if alert_type not in ALERT_TYPES:
        raise ValueError(f"Invalid alert type: {alert_type}")
    if severity not in ALERT_SEVERITIES:
        raise ValueError(f"Invalid alert severity: {severity}")

    key = recurrence_key or default_recurrence_key(alert_type, forklift_id)
    candidate = Alert(
        forklift_id=forklift_id,
        alert_type=alert_type,
        severity=severity,
        title=title,
        message=message,
        context_data=context_data or {},
        threshold_value=threshold_value,
        actual_value=actual_value,
        recurrence_key=key,
        status="active",
    )

    alert, created = await _insert_or_fetch(db, candidate)
    await db.commit()

    if not created:
        logger.info("alerts.deduplicated", alert_id=str(alert.alert_id), recurrence_key=key)
        return alert, False

    logger.info(
        "alerts.created",
        alert_id=str(alert.alert_id),
        alert_type=alert_type,
        severity=severity,
        forklift_id=forklift_id,
        recurrence_key=key,
    )

    if notify:
        from alerts.notifications import queue_notifications

        try:
            await queue_notifications(db, alert)
        except Exception as exc:  # noqa: BLE001
            logger.error("alerts.notification_dispatch_failed", alert_id=str(alert.alert_id), error=str(exc))
            await db.rollback()
            await db.refresh(alert)

    return alert, True


# ──────────────────────────────────────────────────────────────────────────
# Transitions
# ──────────────────────────────────────────────────────────────────────────


async def get_alert(db: AsyncSession, alert_id: uuid.UUID | str) -> Alert:
    alert = await db.get(Alert, _as_uuid(alert_id))
    if alert is None:
        raise AlertNotFoundError(alert_id)
    return alert


def _check_transition(alert: Alert, action: str) -> None:
    allowed = ALLOWED_TRANSITIONS[action]
    if alert.status not in allowed:
        raise InvalidTransitionError(
            f"Cannot {action} alert in '{alert.status}' status. Must be one of: {', '.join(allowed)}."
        )


def _audit(db: AsyncSession, alert: Alert, action: str, user_id: str | None, **extra) -> None:
    db.add(AlertAcknowledgment(alert_id=alert.alert_id, user_id=user_id, action=action, **extra))


async def acknowledge_alert(db: AsyncSession, alert_id: uuid.UUID | str, user_id: str | None = None) -> Alert:
    alert = await get_alert(db, alert_id)
    _check_transition(alert, "acknowledge")

    alert.status = "acknowledged"
    alert.acknowledged_by = user_id
    alert.acknowledged_at = datetime.utcnow()
    _audit(db, alert, "acknowledged", user_id)
    await db.commit()
    logger.info("alerts.acknowledged", alert_id=str(alert.alert_id), user_id=user_id)
    return alert


async def resolve_alert(
    db: AsyncSession,
    alert_id: uuid.UUID | str,
    user_id: str | None = None,
    notes: str | None = None,
) -> Alert:
    alert = await get_alert(db, alert_id)
    _check_transition(alert, "resolve")

    alert.status = "resolved"
    alert.resolved_by = user_id
    alert.resolved_at = datetime.utcnow()
    alert.resolution_notes = notes
    alert.snooze_until = None
    _audit(db, alert, "resolved", user_id, notes=notes)
    await db.commit()
    logger.info("alerts.resolved", alert_id=str(alert.alert_id), user_id=user_id)
    return alert


async def dismiss_alert(
    db: AsyncSession,
    alert_id: uuid.UUID | str,
    user_id: str | None = None,
    notes: str | None = None,
) -> Alert:
    alert = await get_alert(db, alert_id)
    _check_transition(alert, "dismiss")

    alert.status = "dismissed"
    alert.resolved_by = user_id
    alert.resolved_at = datetime.utcnow()
    alert.resolution_notes = notes
    alert.snooze_until = None
    _audit(db, alert, "dismissed", user_id, notes=notes)
    await db.commit()
    logger.info("alerts.dismissed", alert_id=str(alert.alert_id), user_id=user_id)
    return alert


async def snooze_alert(
    db: AsyncSession,
    alert_id: uuid.UUID | str,
    snooze_until: datetime,
    user_id: str | None = None,
) -> Alert:
    alert = await get_alert(db, alert_id)
    _check_transition(alert, "snooze")
    if snooze_until <= datetime.utcnow():
        raise InvalidTransitionError("snooze_until must be in the future")

    alert.status = "snoozed"
    alert.snooze_until = snooze_until
    _audit(db, alert, "snoozed", user_id, snooze_until=snooze_until)
    await db.commit()
    logger.info("alerts.snoozed", alert_id=str(alert.alert_id), snooze_until=snooze_until.isoformat())
    return alert


async def reactivate_snoozed_alerts(db: AsyncSession, now: datetime | None = None) -> int:
    """Return snoozed alerts whose snooze window has elapsed to the active state."""
    now = now or datetime.utcnow()
    result = await db.execute(select(Alert).where(Alert.status == "snoozed", Alert.snooze_until <= now))
    alerts = result.scalars().all()

    for alert in alerts:
        alert.status = "active"
        alert.snooze_until = None
        _audit(db, alert, "reactivated", None)

    if alerts:
        await db.commit()
        logger.info("alerts.reactivated", count=len(alerts))
    return len(alerts)


# ──────────────────────────────────────────────────────────────────────────
# Bulk operations (per-id outcome, never abort the batch)
# ──────────────────────────────────────────────────────────────────────────


async def _bulk(db: AsyncSession, alert_ids, operation, **kwargs) -> list[dict[str, Any]]:
    results = []
    for alert_id in alert_ids:
        try:
            alert = await operation(db, alert_id, **kwargs)
            results.append({"id": str(alert_id), "success": True, "alert": alert})
        except (AlertNotFoundError, InvalidTransitionError) as exc:
            results.append({"id": str(alert_id), "success": False, "error": str(exc)})
    return results


async def bulk_acknowledge(db: AsyncSession, alert_ids, user_id: str | None = None) -> list[dict[str, Any]]:
    return await _bulk(db, alert_ids, acknowledge_alert, user_id=user_id)


async def bulk_resolve(
    db: AsyncSession,
    alert_ids,
    user_id: str | None = None,
    notes: str | None = None,
) -> list[dict[str, Any]]:
    return await _bulk(db, alert_ids, resolve_alert, user_id=user_id, notes=notes)


# ──────────────────────────────────────────────────────────────────────────
# Queries
# ──────────────────────────────────────────────────────────────────────────


async def list_alerts(
    db: AsyncSession,
    *,
    forklift_id: str | None = None,
    statuses: tuple[str, ...] | list[str] | None = None,
    severity: str | None = None,
    alert_type: str | None = None,
    skip: int = 0,
    limit: int = 50,
) -> list[Alert]:
    """List alerts ordered critical > high > medium > low, newest first."""
    query = select(Alert)
    if forklift_id:
        query = query.where(Alert.forklift_id == forklift_id)
    if statuses:
        query = query.where(Alert.status.in_(list(statuses)))
    if severity:
        query = query.where(Alert.severity == severity)
    if alert_type:
        query = query.where(Alert.alert_type == alert_type)
    query = query.order_by(_severity_order, Alert.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_active_alerts(db: AsyncSession, **filters) -> list[Alert]:
    return await list_alerts(db, statuses=("active", "acknowledged"), **filters)


async def get_alert_history(db: AsyncSession, alert_id: uuid.UUID | str) -> list[AlertAcknowledgment]:
    result = await db.execute(
        select(AlertAcknowledgment)
        .where(AlertAcknowledgment.alert_id == _as_uuid(alert_id))
        .order_by(AlertAcknowledgment.created_at.desc())
    )
    return list(result.scalars().all())


async def get_alert_summary(db: AsyncSession, now: datetime | None = None) -> dict[str, Any]:
    """Dashboard counts for active alerts plus a week-over-week creation trend."""
    now = now or datetime.utcnow()
    active = Alert.status.in_(("active", "acknowledged"))

    sev_rows = await db.execute(select(Alert.severity, func.count()).where(active).group_by(Alert.severity))
    by_severity = {sev: 0 for sev in SEVERITY_RANK}
    by_severity.update({row[0]: row[1] for row in sev_rows.all()})

    type_rows = await db.execute(select(Alert.alert_type, func.count()).where(active).group_by(Alert.alert_type))
    by_type = {row[0]: row[1] for row in type_rows.all()}

    week_ago = now - timedelta(days=7)
    two_weeks_ago = now - timedelta(days=14)
    current_week = (await db.execute(select(func.count()).where(Alert.created_at >= week_ago))).scalar() or 0
    previous_week = (
        await db.execute(
            select(func.count()).where(Alert.created_at >= two_weeks_ago, Alert.created_at < week_ago)
        )
    ).scalar() or 0
    change = ((current_week - previous_week) / previous_week) * 100 if previous_week > 0 else 0

    return {
        "total_active": sum(by_severity.values()),
        "by_severity": by_severity,
        "by_type": by_type,
        "trend_7_day": {
            "current_week": current_week,
            "previous_week": previous_week,
            "change_percent": round(change),
        },
    }


def _as_uuid(value: uuid.UUID | str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise AlertNotFoundError(value) from exc
