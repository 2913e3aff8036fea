"""
Usage Rate Estimation — hours/day derived from hour-meter history.

Only unflagged readings inside the lookback window count. With fewer than two
such readings the estimate falls back to lifetime average since purchase
(reliability "estimated"); without a purchase date there is no estimate and
callers get None, never a fabricated zero.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import ForkliftNotFoundError
from db.models import Forklift, HourMeterReading


@dataclass(frozen=True)
class UsageRate:
    hours_per_day: float
    hours_per_week: float
    hours_per_month: float
    data_points: int
    reliability: str  # high | medium | low | estimated


def _reliability(points: int) -> str:
    if points >= 10:
        return "high"
    if points >= 5:
        return "medium"
    return "low"


def _rate(hours_per_day: float, data_points: int, reliability: str) -> UsageRate:
    return UsageRate(
        hours_per_day=round(hours_per_day, 2),
        hours_per_week=round(hours_per_day * 7, 2),
        hours_per_month=round(hours_per_day * 30, 2),
        data_points=data_points,
        reliability=reliability,
    )


def usage_rate_from_readings(
    points: Sequence[tuple[datetime, float]],
    current_hours: float,
    purchase_date: date | None,
    now: datetime,
) -> UsageRate | None:
    """
    Args:
        points: (recorded_at, reading) pairs of unflagged readings, oldest first.
        current_hours: forklift hours used by the purchase-date fallback.
        purchase_date: None disables the fallback.
        now: reference time for the fallback.
    """
    if len(points) >= 2:
        (first_at, first), (last_at, last) = points[0], points[-1]
        days = max(1.0, (last_at - first_at).total_seconds() / 86400)
        return _rate((last - first) / days, len(points), _reliability(len(points)))

    if purchase_date is None:
        return None
    purchased = datetime.combine(purchase_date, datetime.min.time())
    days_owned = max(1.0, (now - purchased).total_seconds() / 86400)
    return _rate((current_hours or 0.0) / days_owned, 0, "estimated")


async def estimate_usage_rate(
    db: AsyncSession,
    forklift_id: str,
    lookback_days: int = 90,
    now: datetime | None = None,
) -> UsageRate | None:
    forklift = await db.get(Forklift, forklift_id)
    if forklift is None:
        raise ForkliftNotFoundError(forklift_id)

    now = now or datetime.utcnow()
    result = await db.execute(
        select(HourMeterReading.recorded_at, HourMeterReading.reading)
        .where(
            HourMeterReading.forklift_id == forklift_id,
            HourMeterReading.recorded_at >= now - timedelta(days=lookback_days),
            HourMeterReading.is_flagged.is_(False),
        )
        .order_by(HourMeterReading.recorded_at.asc())
    )
    points = [(row.recorded_at, row.reading) for row in result.all()]
    return usage_rate_from_readings(points, forklift.current_hours, forklift.purchase_date, now)
