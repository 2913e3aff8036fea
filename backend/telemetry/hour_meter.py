"""
Hour Meter Ingestion — Reading validation, anomaly flagging, and correction.

Every reading is stored. Only unflagged readings advance the forklift's
current_hours; flagged readings wait for manual review, which either corrects
the value (correct_reading) or confirms it (validate_reading). Those review
paths are the only ways a flagged reading reaches the forklift.

Flag rules (delta = reading - previous reading, previous = 0 when none):
  - delta < 0                          → error   "went backwards"
  - delta > jump threshold, has prior  → warning "unusually large increase"
"""

import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import ForkliftNotFoundError, InvalidReadingError, ReadingNotFoundError
from db.models import Alert, Forklift, HourMeterReading
from db.system_settings import get_float_setting

logger = structlog.get_logger()

DEFAULT_JUMP_THRESHOLD = 100.0
READING_SOURCES = ("manual", "api", "iot", "import")
HIGH_HOURS_UNIT = 15000


@dataclass(frozen=True)
class ReadingClassification:
    delta: float
    is_flagged: bool
    severity: str | None = None
    reason: str | None = None


def classify_reading(
    reading: float,
    previous: float,
    has_previous: bool,
    jump_threshold: float = DEFAULT_JUMP_THRESHOLD,
) -> ReadingClassification:
    delta = reading - previous
    if delta < 0:
        return ReadingClassification(
            delta=delta,
            is_flagged=True,
            severity="error",
            reason=f"Hour meter went backwards by {abs(delta):.1f} hours",
        )
    if delta > jump_threshold and has_previous:
        return ReadingClassification(
            delta=delta,
            is_flagged=True,
            severity="warning",
            reason=f"Unusually large increase of {delta:.1f} hours",
        )
    return ReadingClassification(delta=delta, is_flagged=False)


def _validate_value(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidReadingError("Invalid reading: must be a non-negative number")
    if not math.isfinite(value) or value < 0:
        raise InvalidReadingError("Invalid reading: must be a non-negative number")
    return float(value)


async def _get_forklift(db: AsyncSession, forklift_id: str) -> Forklift:
    forklift = await db.get(Forklift, forklift_id)
    if forklift is None:
        raise ForkliftNotFoundError(forklift_id)
    return forklift


async def _get_reading(db: AsyncSession, reading_id: uuid.UUID | str) -> HourMeterReading:
    try:
        key = reading_id if isinstance(reading_id, uuid.UUID) else uuid.UUID(str(reading_id))
    except ValueError as exc:
        raise ReadingNotFoundError(reading_id) from exc
    reading = await db.get(HourMeterReading, key)
    if reading is None:
        raise ReadingNotFoundError(reading_id)
    return reading


async def latest_reading(db: AsyncSession, forklift_id: str) -> HourMeterReading | None:
    result = await db.execute(
        select(HourMeterReading)
        .where(HourMeterReading.forklift_id == forklift_id)
        .order_by(HourMeterReading.recorded_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


def _apply_hours(forklift: Forklift, value: float, at: datetime) -> None:
    forklift.current_hours = value
    forklift.last_hour_reading = value
    forklift.last_hour_reading_date = at


# ──────────────────────────────────────────────────────────────────────────
# Ingestion
# ──────────────────────────────────────────────────────────────────────────


async def record_reading(
    db: AsyncSession,
    forklift_id: str,
    reading: float,
    source: str = "manual",
    recorded_by: str | None = None,
    recorded_at: datetime | None = None,
) -> HourMeterReading:
    """Store a reading, flag anomalies, and advance hours only when unflagged."""
    value = _validate_value(reading)
    if source not in READING_SOURCES:
        raise InvalidReadingError(f"Invalid reading source: {source}")
    forklift = await _get_forklift(db, forklift_id)

    prior = await latest_reading(db, forklift_id)
    previous = prior.reading if prior else 0.0
    jump_threshold = await get_float_setting(db, "hour_anomaly_jump_threshold", DEFAULT_JUMP_THRESHOLD)
    verdict = classify_reading(value, previous, prior is not None, jump_threshold)

    now = recorded_at or datetime.utcnow()
    row = HourMeterReading(
        forklift_id=forklift_id,
        reading=value,
        previous_reading=previous,
        reading_delta=verdict.delta,
        source=source,
        recorded_by=recorded_by,
        recorded_at=now,
        is_flagged=verdict.is_flagged,
        flag_reason=verdict.reason,
        flag_severity=verdict.severity,
    )
    db.add(row)

    if not verdict.is_flagged:
        _apply_hours(forklift, value, now)
        await db.commit()
        logger.info("hour_meter.recorded", forklift_id=forklift_id, reading=value, delta=verdict.delta)
        return row

    await db.flush()
    logger.warning(
        "hour_meter.flagged",
        forklift_id=forklift_id,
        reading=value,
        previous=previous,
        delta=verdict.delta,
        severity=verdict.severity,
    )
    await _raise_anomaly_alert(db, forklift, row)
    return row


async def _raise_anomaly_alert(db: AsyncSession, forklift: Forklift, row: HourMeterReading) -> Alert:
    from alerts.engine import create_alert

    return await create_alert(
        db,
        alert_type="hour_anomaly",
        severity="high" if row.flag_severity == "error" else "medium",
        forklift_id=forklift.forklift_id,
        title=f"Hour Meter Anomaly: {forklift.forklift_id}",
        message=row.flag_reason,
        context_data={
            "reading_id": str(row.reading_id),
            "previous_reading": row.previous_reading,
            "new_reading": row.reading,
            "delta": row.reading_delta,
        },
        actual_value=row.reading,
        threshold_value=row.previous_reading,
        recurrence_key=f"hour_anomaly_{forklift.forklift_id}_{row.reading_id}",
    )


async def _resolve_anomaly_alert(db: AsyncSession, row: HourMeterReading, user: str | None, notes: str) -> None:
    from alerts.engine import find_open_alert, resolve_alert

    alert = await find_open_alert(db, f"hour_anomaly_{row.forklift_id}_{row.reading_id}")
    if alert is not None:
        await resolve_alert(db, alert.alert_id, user_id=user, notes=notes)


# ──────────────────────────────────────────────────────────────────────────
# Manual review
# ──────────────────────────────────────────────────────────────────────────


async def correct_reading(
    db: AsyncSession,
    reading_id: uuid.UUID | str,
    corrected_value: float,
    corrected_by: str | None = None,
    notes: str | None = None,
) -> HourMeterReading:
    """
    Record a corrected value for a flagged reading and force it onto the
    forklift. Correction fields are written once; a second attempt is rejected.
    """
    value = _validate_value(corrected_value)
    row = await _get_reading(db, reading_id)
    if not row.is_flagged:
        raise InvalidReadingError("Only flagged readings can be corrected")
    if row.is_corrected:
        raise InvalidReadingError("Reading has already been corrected")

    now = datetime.utcnow()
    row.is_corrected = True
    row.corrected_value = value
    row.corrected_by = corrected_by
    row.corrected_at = now
    row.correction_notes = notes
    row.is_validated = True
    row.validated_by = corrected_by
    row.validated_at = now

    forklift = await _get_forklift(db, row.forklift_id)
    _apply_hours(forklift, value, now)
    await db.commit()
    logger.info("hour_meter.corrected", reading_id=str(row.reading_id), original=row.reading, corrected=value)

    await _resolve_anomaly_alert(db, row, corrected_by, f"Corrected to {value} hours")
    return row


async def validate_reading(
    db: AsyncSession,
    reading_id: uuid.UUID | str,
    validated_by: str | None = None,
    notes: str | None = None,
) -> HourMeterReading:
    """Confirm a flagged reading as genuine and apply its value to the forklift."""
    row = await _get_reading(db, reading_id)
    if row.is_corrected:
        raise InvalidReadingError("Corrected readings cannot be re-validated")

    now = datetime.utcnow()
    row.is_validated = True
    row.validated_by = validated_by
    row.validated_at = now
    row.correction_notes = notes or "Validated as correct"

    forklift = await _get_forklift(db, row.forklift_id)
    _apply_hours(forklift, row.reading, now)
    await db.commit()
    logger.info("hour_meter.validated", reading_id=str(row.reading_id), reading=row.reading)

    await _resolve_anomaly_alert(db, row, validated_by, notes or "Reading validated as correct")
    return row


# ──────────────────────────────────────────────────────────────────────────
# Queries
# ──────────────────────────────────────────────────────────────────────────


async def get_flagged_readings(db: AsyncSession, limit: int = 50) -> list[HourMeterReading]:
    """Flagged readings still awaiting review, newest first."""
    result = await db.execute(
        select(HourMeterReading)
        .where(HourMeterReading.is_flagged.is_(True), HourMeterReading.is_validated.is_(False))
        .order_by(HourMeterReading.recorded_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_reading_history(
    db: AsyncSession,
    forklift_id: str,
    limit: int = 100,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[HourMeterReading]:
    query = select(HourMeterReading).where(HourMeterReading.forklift_id == forklift_id)
    if start:
        query = query.where(HourMeterReading.recorded_at >= start)
    if end:
        query = query.where(HourMeterReading.recorded_at <= end)
    result = await db.execute(query.order_by(HourMeterReading.recorded_at.desc()).limit(limit))
    return list(result.scalars().all())


async def get_reading_trends(db: AsyncSession, forklift_id: str, days: int = 90) -> dict[str, Any] | None:
    """Usage trend over the window; None with fewer than two readings."""
    start = datetime.utcnow() - timedelta(days=days)
    result = await db.execute(
        select(HourMeterReading)
        .where(HourMeterReading.forklift_id == forklift_id, HourMeterReading.recorded_at >= start)
        .order_by(HourMeterReading.recorded_at.asc())
    )
    readings = result.scalars().all()
    if len(readings) < 2:
        return None

    first, last = readings[0], readings[-1]
    total_added = last.reading - first.reading
    days_covered = (last.recorded_at - first.recorded_at).total_seconds() / 86400
    daily = total_added / days_covered if days_covered > 0 else 0.0

    return {
        "forklift_id": forklift_id,
        "period_days": days,
        "readings_count": len(readings),
        "first_reading": first.reading,
        "last_reading": last.reading,
        "total_hours_added": total_added,
        "average_daily_hours": daily,
        "average_weekly_hours": daily * 7,
        "projected_annual_hours": daily * 365,
        "flagged_readings": sum(1 for r in readings if r.is_flagged),
        "readings": [
            {
                "date": r.recorded_at.isoformat(),
                "reading": r.reading,
                "delta": r.reading_delta,
                "flagged": r.is_flagged,
            }
            for r in readings
        ],
    }


async def bulk_import_readings(
    db: AsyncSession,
    items: list[dict[str, Any]],
    source: str = "import",
    imported_by: str | None = None,
) -> dict[str, Any]:
    """Record each item independently; one bad row never aborts the import."""
    results: dict[str, Any] = {"successful": 0, "failed": 0, "flagged": 0, "errors": []}
    for item in items:
        try:
            row = await record_reading(db, item["forklift_id"], item["reading"], source, imported_by)
        except (KeyError, ForkliftNotFoundError, InvalidReadingError) as exc:
            results["failed"] += 1
            results["errors"].append(
                {"forklift_id": item.get("forklift_id"), "reading": item.get("reading"), "error": str(exc)}
            )
            continue
        results["successful"] += 1
        if row.is_flagged:
            results["flagged"] += 1

    logger.info(
        "hour_meter.bulk_import",
        successful=results["successful"],
        failed=results["failed"],
        flagged=results["flagged"],
    )
    return results


async def get_fleet_hour_summary(db: AsyncSession) -> dict[str, Any]:
    now = datetime.utcnow()
    total, avg_hours, high_hours = (
        await db.execute(
            select(
                func.count(Forklift.forklift_id),
                func.avg(Forklift.current_hours),
                func.count(Forklift.forklift_id).filter(Forklift.current_hours > HIGH_HOURS_UNIT),
            ).where(Forklift.status != "retired")
        )
    ).one()

    pending = (
        await db.execute(
            select(func.count()).where(HourMeterReading.is_flagged.is_(True), HourMeterReading.is_validated.is_(False))
        )
    ).scalar() or 0

    month_ago = now - timedelta(days=30)
    readings_30d = (
        await db.execute(select(func.count()).where(HourMeterReading.recorded_at >= month_ago))
    ).scalar() or 0
    corrected_30d = (
        await db.execute(
            select(func.count()).where(HourMeterReading.is_corrected.is_(True), HourMeterReading.recorded_at >= month_ago)
        )
    ).scalar() or 0
    units_reporting = (
        await db.execute(
            select(func.count(func.distinct(HourMeterReading.forklift_id))).where(
                HourMeterReading.recorded_at >= now - timedelta(days=7)
            )
        )
    ).scalar() or 0

    # Plausible single-day deltas only
    avg_daily = (
        await db.execute(
            select(func.avg(HourMeterReading.reading_delta)).where(
                HourMeterReading.reading_delta > 0, HourMeterReading.reading_delta <= 24
            )
        )
    ).scalar()

    return {
        "total_forklifts": total or 0,
        "average_hours": float(avg_hours or 0),
        "average_daily_hours": float(avg_daily or 0),
        "flagged_readings_pending": pending,
        "high_hours_units": high_hours or 0,
        "total_readings": readings_30d,
        "corrected_count": corrected_30d,
        "units_reporting": units_reporting,
    }
