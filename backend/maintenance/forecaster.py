"""
Predictive Forecaster — per-unit and fleet maintenance outlook.

Combines three signals into one ranked finding list per forklift:
  1. Next-service prediction (usage-rate extrapolation or scheduled date)
  2. Failure patterns detected in recent maintenance history
  3. Component lifecycle wear

Urgency score (capped at 100):
  service window ≤7d +30, ≤14d +20, ≤30d +10
  failure pattern critical +40, high +25, otherwise +15
  overdue component +35 (top 3), component due soon +15 (top 2)

Status: critical ≥ 50, warning ≥ 30, else ok.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import ForkliftNotFoundError
from db.models import Alert, Forklift
from maintenance.components import ComponentHealth, assess_component_health
from maintenance.patterns import PatternMatch, detect_failure_patterns
from telemetry.usage import UsageRate, estimate_usage_rate

logger = structlog.get_logger()

RELIABILITY_CONFIDENCE = {"high": 0.90, "medium": 0.75, "low": 0.60, "estimated": 0.60}
SCHEDULED_CONFIDENCE = 0.95
URGENCY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}
PATTERN_POINTS = {"critical": 40, "high": 25}
OVERDUE_COMPONENT_POINTS = 35
DUE_SOON_COMPONENT_POINTS = 15
MAX_OVERDUE_COMPONENTS = 3
MAX_DUE_SOON_COMPONENTS = 2


@dataclass(frozen=True)
class ServicePrediction:
    type: str  # hours_based | date_based
    predicted_date: date
    days_until: int
    confidence: float
    basis: str
    hours_remaining: int | None = None


@dataclass
class ServiceForecast:
    forklift_id: str
    current_hours: float
    usage_rate: UsageRate | None
    predictions: list[ServicePrediction]
    recommended_action: str

    @property
    def soonest(self) -> ServicePrediction:
        return self.predictions[0]


@dataclass(frozen=True)
class Finding:
    type: str  # scheduled_service | failure_pattern | component_lifecycle
    title: str
    description: str
    confidence: int
    urgency: str
    days_until: int | None = None
    predicted_date: date | None = None
    component: str | None = None
    category: str | None = None
    pattern_name: str | None = None
    matched_indicators: list[str] | None = None


@dataclass
class MaintenancePrediction:
    forklift_id: str
    urgency_score: int
    overall_status: str
    findings: list[Finding]
    model: str | None = None
    location: str | None = None
    current_hours: float = 0.0
    risk_score: int | None = None
    service_forecast: ServiceForecast | None = None
    components: list[ComponentHealth] = field(default_factory=list)
    failure_patterns: list[PatternMatch] = field(default_factory=list)
    generated_at: datetime = field(default_factory=datetime.utcnow)


def service_urgency(days_until: int) -> str:
    if days_until <= 7:
        return "critical"
    if days_until <= 14:
        return "high"
    return "medium"


def recommended_action(days_until: int) -> str:
    if days_until <= 7:
        return "Schedule now"
    if days_until <= 14:
        return "Plan service"
    if days_until <= 30:
        return "Monitor"
    return "OK"


def status_for(urgency_score: int) -> str:
    if urgency_score >= 50:
        return "critical"
    if urgency_score >= 30:
        return "warning"
    return "ok"


# ──────────────────────────────────────────────────────────────────────────
# Next service
# ──────────────────────────────────────────────────────────────────────────


def service_predictions(forklift: Forklift, usage: UsageRate | None, today: date) -> list[ServicePrediction]:
    """Hours-based and date-based predictions, soonest first."""
    predictions = []

    if usage and usage.hours_per_day > 0 and forklift.next_service_hours and forklift.current_hours:
        remaining = forklift.next_service_hours - forklift.current_hours
        if remaining > 0:
            days = round(remaining / usage.hours_per_day)
            predictions.append(
                ServicePrediction(
                    type="hours_based",
                    predicted_date=today + timedelta(days=days),
                    days_until=days,
                    confidence=RELIABILITY_CONFIDENCE[usage.reliability],
                    basis=f"Based on {usage.hours_per_day:.1f} hrs/day usage rate",
                    hours_remaining=round(remaining),
                )
            )

    if forklift.next_service_date:
        predictions.append(
            ServicePrediction(
                type="date_based",
                predicted_date=forklift.next_service_date,
                days_until=(forklift.next_service_date - today).days,
                confidence=SCHEDULED_CONFIDENCE,
                basis="Scheduled service interval",
            )
        )

    predictions.sort(key=lambda p: p.predicted_date)
    return predictions


async def _get_forklift(db: AsyncSession, forklift_id: str) -> Forklift:
    forklift = await db.get(Forklift, forklift_id)
    if forklift is None:
        raise ForkliftNotFoundError(forklift_id)
    return forklift


async def predict_next_service(
    db: AsyncSession,
    forklift_id: str,
    today: date | None = None,
) -> ServiceForecast | None:
    """None when neither usage history nor a scheduled date gives a prediction."""
    forklift = await _get_forklift(db, forklift_id)
    today = today or datetime.utcnow().date()
    usage = await estimate_usage_rate(db, forklift_id)

    predictions = service_predictions(forklift, usage, today)
    if not predictions:
        return None
    return ServiceForecast(
        forklift_id=forklift_id,
        current_hours=forklift.current_hours,
        usage_rate=usage,
        predictions=predictions,
        recommended_action=recommended_action(predictions[0].days_until),
    )


# ──────────────────────────────────────────────────────────────────────────
# Composition
# ──────────────────────────────────────────────────────────────────────────


def compose_prediction(
    forklift_id: str,
    service: ServiceForecast | None,
    patterns: Sequence[PatternMatch],
    components: Sequence[ComponentHealth],
) -> MaintenancePrediction:
    score = 0
    findings: list[Finding] = []

    if service and service.predictions:
        soonest = service.soonest
        if soonest.days_until <= 7:
            score += 30
        elif soonest.days_until <= 14:
            score += 20
        elif soonest.days_until <= 30:
            score += 10
        findings.append(
            Finding(
                type="scheduled_service",
                title="Preventive Maintenance Due",
                description=f"Service predicted in {soonest.days_until} days ({soonest.predicted_date.isoformat()})",
                confidence=round(soonest.confidence * 100),
                urgency=service_urgency(soonest.days_until),
                days_until=soonest.days_until,
                predicted_date=soonest.predicted_date,
            )
        )

    for pattern in patterns:
        score += PATTERN_POINTS.get(pattern.urgency, 15)
        findings.append(
            Finding(
                type="failure_pattern",
                title=pattern.prediction,
                description=f"Detected {len(pattern.matched_indicators)}/{pattern.total_indicators} warning signs",
                confidence=pattern.confidence,
                urgency=pattern.urgency,
                pattern_name=pattern.pattern_name,
                matched_indicators=list(pattern.matched_indicators),
            )
        )

    overdue = [c for c in components if c.urgency == "critical"][:MAX_OVERDUE_COMPONENTS]
    due_soon = [c for c in components if c.urgency == "high"][:MAX_DUE_SOON_COMPONENTS]
    for comp in overdue:
        score += OVERDUE_COMPONENT_POINTS
        findings.append(
            Finding(
                type="component_lifecycle",
                title=f"{comp.component} Replacement Overdue",
                description=f"{round(comp.life_used_percent)}% of expected life used ({comp.hours_since_service} hrs)",
                confidence=85,
                urgency="critical",
                component=comp.component_key,
                category=comp.category,
            )
        )
    for comp in due_soon:
        score += DUE_SOON_COMPONENT_POINTS
        findings.append(
            Finding(
                type="component_lifecycle",
                title=f"{comp.component} Approaching End of Life",
                description=f"{comp.remaining_hours} hours remaining ({round(comp.life_used_percent)}% used)",
                confidence=75,
                urgency="high",
                component=comp.component_key,
                category=comp.category,
            )
        )

    findings.sort(key=lambda f: URGENCY_ORDER.get(f.urgency, len(URGENCY_ORDER)))
    score = min(100, score)
    return MaintenancePrediction(
        forklift_id=forklift_id,
        urgency_score=score,
        overall_status=status_for(score),
        findings=findings,
        service_forecast=service,
        components=list(components),
        failure_patterns=list(patterns),
    )


async def generate_forklift_prediction(db: AsyncSession, forklift_id: str) -> MaintenancePrediction:
    forklift = await _get_forklift(db, forklift_id)
    service = await predict_next_service(db, forklift_id)
    patterns = await detect_failure_patterns(db, forklift_id)
    health = await assess_component_health(db, forklift_id)

    prediction = compose_prediction(forklift_id, service, patterns, health["components"])
    prediction.model = forklift.model
    prediction.location = forklift.location_name
    prediction.current_hours = forklift.current_hours
    prediction.risk_score = forklift.risk_score
    return prediction


async def _active_forklift_ids(db: AsyncSession) -> list[str]:
    result = await db.execute(
        select(Forklift.forklift_id).where(Forklift.status != "retired").order_by(Forklift.forklift_id)
    )
    return list(result.scalars().all())


async def generate_fleet_predictions(db: AsyncSession) -> dict[str, Any]:
    """Predictions for every non-retired unit with findings, most urgent first."""
    forklift_ids = await _active_forklift_ids(db)
    predictions = []
    for forklift_id in forklift_ids:
        prediction = await generate_forklift_prediction(db, forklift_id)
        if prediction.findings:
            predictions.append(prediction)

    predictions.sort(key=lambda p: p.urgency_score, reverse=True)
    summary = {
        "total_units": len(forklift_ids),
        "units_with_predictions": len(predictions),
        "critical_count": sum(1 for p in predictions if p.overall_status == "critical"),
        "warning_count": sum(1 for p in predictions if p.overall_status == "warning"),
        "ok_count": sum(1 for p in predictions if p.overall_status == "ok"),
        "top_predictions": [
            {
                "forklift_id": p.forklift_id,
                "model": p.model,
                "location": p.location,
                "urgency_score": p.urgency_score,
                "status": p.overall_status,
                "top_finding": p.findings[0],
            }
            for p in predictions[:10]
        ],
    }
    logger.info(
        "predictions.fleet_generated",
        total_units=summary["total_units"],
        critical=summary["critical_count"],
        warning=summary["warning_count"],
    )
    return {"summary": summary, "predictions": predictions, "generated_at": datetime.utcnow()}


async def get_optimized_schedule(
    db: AsyncSession,
    days_ahead: int = 30,
    today: date | None = None,
) -> dict[str, Any]:
    """Service and component work within the horizon, critical and soonest first."""
    today = today or datetime.utcnow().date()
    fleet = await generate_fleet_predictions(db)
    schedule = []

    for unit in fleet["predictions"]:
        forecast = unit.service_forecast
        if forecast and forecast.soonest.days_until <= days_ahead:
            soonest = forecast.soonest
            schedule.append(
                {
                    "forklift_id": unit.forklift_id,
                    "model": unit.model,
                    "location": unit.location,
                    "service_type": "Preventive Maintenance",
                    "predicted_date": soonest.predicted_date,
                    "days_until": soonest.days_until,
                    "confidence": soonest.confidence,
                    "priority": service_urgency(soonest.days_until),
                    "component": None,
                }
            )
        for comp in unit.components:
            if comp.urgency != "critical":
                continue
            schedule.append(
                {
                    "forklift_id": unit.forklift_id,
                    "model": unit.model,
                    "location": unit.location,
                    "service_type": f"{comp.component} Replacement",
                    "predicted_date": today,
                    "days_until": 0,
                    "confidence": 0.85,
                    "priority": "critical",
                    "component": comp.component_key,
                }
            )

    schedule.sort(key=lambda item: (URGENCY_ORDER[item["priority"]], item["days_until"]))
    return {
        "schedule": schedule,
        "total_items": len(schedule),
        "critical_items": sum(1 for item in schedule if item["priority"] == "critical"),
        "days_ahead": days_ahead,
        "generated_at": datetime.utcnow(),
    }


def prediction_recurrence_key(forklift_id: str, finding: Finding) -> str:
    return f"prediction_{forklift_id}_{finding.type}_{finding.title[:30]}"


async def create_prediction_alerts(db: AsyncSession) -> list[Alert]:
    """Raise lifecycle alerts for critical/high findings on units that are not ok."""
    from alerts.engine import raise_alert

    fleet = await generate_fleet_predictions(db)
    created = []
    for unit in fleet["predictions"]:
        if unit.overall_status == "ok":
            continue
        for finding in unit.findings:
            if finding.urgency not in ("critical", "high"):
                continue
            alert, is_new = await raise_alert(
                db,
                alert_type="lifecycle_alert",
                severity=finding.urgency,
                forklift_id=unit.forklift_id,
                title=f"Predicted: {finding.title}",
                message=finding.description,
                context_data={
                    "prediction_type": finding.type,
                    "confidence": finding.confidence,
                    "predicted_date": finding.predicted_date.isoformat() if finding.predicted_date else None,
                    "component": finding.component,
                    "pattern_name": finding.pattern_name,
                },
                recurrence_key=prediction_recurrence_key(unit.forklift_id, finding),
            )
            if is_new:
                created.append(alert)

    logger.info("predictions.alerts_created", count=len(created))
    return created
