"""
Risk Assessor — scores a forklift, records the assessment, raises alerts.

Every assessment is a new immutable RiskAssessment row. The risk fields on
Forklift are a projection of the latest assessment and are only written by
project_risk_cache; rebuild_risk_cache re-derives them from the log.
"""

from datetime import date, datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.errors import FleetPulseError, ForkliftNotFoundError
from db.models import DowntimeEvent, Forklift, MaintenanceRecord, RiskAssessment
from risk.financials import determine_repair_vs_replace, project_financials
from risk.scoring import (
    ScoringPolicy,
    RiskMetrics,
    generate_recommendations,
    identify_risk_factors,
    load_policy,
    overall_score,
    risk_level,
    score_metrics,
)

logger = structlog.get_logger()

HIGH_RISK_THRESHOLD = 7
CRITICAL_RISK_THRESHOLD = 9
DEFAULT_AGE_YEARS = 5.0
REPLACEMENT_ACTIONS = ("plan_replacement", "replace_immediately")


def age_in_years(forklift: Forklift, today: date) -> float:
    if forklift.purchase_date:
        return max(0.0, (today - forklift.purchase_date).days / 365)
    if forklift.year:
        return float(max(0, today.year - forklift.year))
    return DEFAULT_AGE_YEARS


def recommended_action_for(overall: int, decision: str) -> str:
    if decision == "replace":
        return "replace_immediately" if overall >= CRITICAL_RISK_THRESHOLD else "plan_replacement"
    if decision == "monitor":
        return "monitor"
    return "continue"


async def collect_metrics(db: AsyncSession, forklift: Forklift, now: datetime) -> RiskMetrics:
    """Trailing-12-month maintenance and downtime figures for one forklift."""
    settings = get_settings()
    today = now.date()
    year_ago = today - timedelta(days=365)

    result = await db.execute(
        select(MaintenanceRecord.type, MaintenanceRecord.total_cost).where(
            MaintenanceRecord.forklift_id == forklift.forklift_id,
            MaintenanceRecord.status == "completed",
            MaintenanceRecord.service_date >= year_ago,
        )
    )
    records = result.all()
    maintenance_cost = sum(cost or 0.0 for _, cost in records)
    repairs = sum(1 for kind, _ in records if kind in ("repair", "emergency"))
    emergencies = sum(1 for kind, _ in records if kind == "emergency")

    result = await db.execute(
        select(DowntimeEvent).where(
            DowntimeEvent.forklift_id == forklift.forklift_id,
            DowntimeEvent.start_time >= now - timedelta(days=365),
        )
    )
    downtime_hours = 0.0
    downtime_cost = 0.0
    for event in result.scalars().all():
        hours = event.duration_hours
        if hours is None and event.end_time:
            hours = (event.end_time - event.start_time).total_seconds() / 3600
        hours = hours or 0.0
        downtime_hours += hours
        downtime_cost += hours * (event.cost_per_hour_down or settings.default_cost_per_hour_down)

    return RiskMetrics(
        age_years=age_in_years(forklift, today),
        current_hours=forklift.current_hours or 0.0,
        purchase_price=forklift.purchase_price or settings.default_purchase_price,
        maintenance_cost_12mo=maintenance_cost,
        repair_count_12mo=repairs,
        emergency_count_12mo=emergencies,
        downtime_hours_12mo=downtime_hours,
        downtime_cost_12mo=downtime_cost,
        next_service_date=forklift.next_service_date,
    )


def project_risk_cache(forklift: Forklift, assessment: RiskAssessment | None) -> None:
    """Overwrite the forklift's cached risk fields from an assessment (None resets them)."""
    if assessment is None:
        forklift.risk_score = 1
        forklift.risk_level = "low"
        forklift.risk_factors = []
        forklift.recommended_action = None
        forklift.last_risk_assessment = None
        return
    forklift.risk_score = assessment.overall_score
    forklift.risk_level = risk_level(assessment.overall_score)
    forklift.risk_factors = list(assessment.risk_factors or [])
    forklift.recommended_action = recommended_action_for(assessment.overall_score, assessment.repair_vs_replace)
    forklift.last_risk_assessment = assessment.assessed_at


async def latest_assessment(db: AsyncSession, forklift_id: str) -> RiskAssessment | None:
    result = await db.execute(
        select(RiskAssessment)
        .where(RiskAssessment.forklift_id == forklift_id)
        .order_by(RiskAssessment.assessed_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _get_forklift(db: AsyncSession, forklift_id: str) -> Forklift:
    forklift = await db.get(Forklift, forklift_id)
    if forklift is None:
        raise ForkliftNotFoundError(forklift_id)
    return forklift


async def assess_forklift(
    db: AsyncSession,
    forklift_id: str,
    policy: ScoringPolicy | None = None,
    assessed_by: str | None = None,
    now: datetime | None = None,
) -> RiskAssessment:
    policy = policy or load_policy()
    now = now or datetime.utcnow()
    forklift = await _get_forklift(db, forklift_id)

    metrics = await collect_metrics(db, forklift, now)
    scores = score_metrics(metrics, policy)
    overall = overall_score(scores, policy.weights)
    factors = identify_risk_factors(scores, metrics, now.date(), policy)
    recommendations = generate_recommendations(overall, factors)
    financials = project_financials(
        metrics,
        depreciation_rate=forklift.depreciation_rate if forklift.depreciation_rate is not None else 0.15,
        expected_lifespan_years=forklift.expected_lifespan_years or 10,
    )
    decision, urgency = determine_repair_vs_replace(overall, financials)

    assessment = RiskAssessment(
        forklift_id=forklift_id,
        overall_score=overall,
        age_score=scores["age"],
        hours_score=scores["hours"],
        maintenance_cost_score=scores["maintenance_cost"],
        repair_frequency_score=scores["repair_frequency"],
        downtime_score=scores["downtime"],
        risk_factors=factors,
        recommendations=recommendations,
        repair_vs_replace=decision,
        replacement_urgency=urgency,
        estimated_remaining_life_months=financials.remaining_life_months,
        estimated_remaining_value=financials.current_value,
        projected_annual_maintenance_cost=financials.projected_annual_maintenance,
        projected_downtime_cost=financials.projected_downtime_cost,
        replacement_cost_estimate=financials.replacement_cost,
        repair_cost_estimate=financials.projected_repair_cost,
        cost_savings_if_replaced=financials.savings_if_replaced,
        roi_if_replaced=financials.roi_if_replaced,
        assessment_method="automated" if assessed_by is None else "manual",
        assessed_by=assessed_by,
        assessed_at=now,
    )
    db.add(assessment)
    project_risk_cache(forklift, assessment)
    await db.commit()

    logger.info(
        "risk.assessed",
        forklift_id=forklift_id,
        overall_score=overall,
        repair_vs_replace=decision,
        factors=len(factors),
    )

    if overall >= HIGH_RISK_THRESHOLD:
        await _raise_high_risk_alert(db, forklift, assessment)
    return assessment


async def _raise_high_risk_alert(db: AsyncSession, forklift: Forklift, assessment: RiskAssessment) -> None:
    from alerts.engine import create_alert

    follow_up = "Replacement recommended." if assessment.repair_vs_replace == "replace" else "Close monitoring required."
    await create_alert(
        db,
        alert_type="high_risk",
        severity="critical" if assessment.overall_score >= CRITICAL_RISK_THRESHOLD else "high",
        forklift_id=forklift.forklift_id,
        title=f"High Risk Unit: {forklift.forklift_id}",
        message=f"Risk score {assessment.overall_score}/10. {follow_up}",
        context_data={
            "risk_score": assessment.overall_score,
            "repair_vs_replace": assessment.repair_vs_replace,
            "replacement_urgency": assessment.replacement_urgency,
            "assessment_id": str(assessment.assessment_id),
        },
        threshold_value=HIGH_RISK_THRESHOLD,
        actual_value=assessment.overall_score,
        recurrence_key=f"high_risk_{forklift.forklift_id}",
    )


async def assess_fleet(db: AsyncSession, policy: ScoringPolicy | None = None) -> list[dict[str, Any]]:
    """
    Assess every non-retired forklift in turn. A failing unit is recorded as
    {"success": False, "error": ...} and the batch moves on.
    """
    policy = policy or load_policy()
    result = await db.execute(
        select(Forklift.forklift_id).where(Forklift.status != "retired").order_by(Forklift.forklift_id)
    )
    results = []
    for forklift_id in result.scalars().all():
        try:
            assessment = await assess_forklift(db, forklift_id, policy=policy)
            results.append(
                {
                    "forklift_id": forklift_id,
                    "success": True,
                    "overall_score": assessment.overall_score,
                    "assessment": assessment,
                }
            )
        except FleetPulseError as exc:
            logger.warning("risk.assessment_failed", forklift_id=forklift_id, error=str(exc))
            results.append({"forklift_id": forklift_id, "success": False, "error": str(exc)})
        except Exception as exc:  # noqa: BLE001
            await db.rollback()
            logger.error("risk.assessment_failed", forklift_id=forklift_id, error=str(exc), exc_info=True)
            results.append({"forklift_id": forklift_id, "success": False, "error": str(exc)})

    logger.info(
        "risk.fleet_assessed",
        total=len(results),
        failed=sum(1 for r in results if not r["success"]),
    )
    return results


async def rebuild_risk_cache(db: AsyncSession, forklift_id: str) -> Forklift:
    forklift = await _get_forklift(db, forklift_id)
    project_risk_cache(forklift, await latest_assessment(db, forklift_id))
    await db.commit()
    logger.info("risk.cache_rebuilt", forklift_id=forklift_id, risk_score=forklift.risk_score)
    return forklift


# ──────────────────────────────────────────────────────────────────────────
# Fleet reporting
# ──────────────────────────────────────────────────────────────────────────


async def get_fleet_risk_summary(db: AsyncSession) -> dict[str, Any]:
    in_service = Forklift.status != "retired"
    level_rows = await db.execute(
        select(Forklift.risk_level, func.count()).where(in_service).group_by(Forklift.risk_level)
    )
    by_level = {level: 0 for level in ("critical", "high", "medium", "low")}
    by_level.update({row[0]: row[1] for row in level_rows.all()})

    avg_score = (await db.execute(select(func.avg(Forklift.risk_score)).where(in_service))).scalar()
    needing_replacement = (
        await db.execute(
            select(func.count()).where(
                in_service,
                Forklift.risk_level.in_(("high", "critical")),
                Forklift.recommended_action.in_(REPLACEMENT_ACTIONS),
            )
        )
    ).scalar() or 0

    return {
        "total_units": sum(by_level.values()),
        "critical_risk": by_level["critical"],
        "high_risk": by_level["high"],
        "medium_risk": by_level["medium"],
        "low_risk": by_level["low"],
        "average_risk_score": round(float(avg_score or 0), 1),
        "units_needing_replacement": needing_replacement,
    }


async def get_replacement_budget(db: AsyncSession, fiscal_year: int) -> dict[str, Any]:
    """Replacement candidates (high/critical risk) with payback estimates."""
    result = await db.execute(
        select(Forklift).where(Forklift.status != "retired", Forklift.risk_level.in_(("high", "critical")))
    )
    recommendations = []
    for forklift in result.scalars().all():
        assessment = await latest_assessment(db, forklift.forklift_id)
        if assessment is None:
            continue
        replacement = assessment.replacement_cost_estimate or 0.0
        trade_in = assessment.estimated_remaining_value or 0.0
        savings = assessment.cost_savings_if_replaced or 0.0
        net_cost = replacement - trade_in
        recommendations.append(
            {
                "forklift_id": forklift.forklift_id,
                "model": forklift.model,
                "location": forklift.location_name,
                "risk_score": assessment.overall_score,
                "current_hours": forklift.current_hours,
                "projected_maintenance_cost": assessment.projected_annual_maintenance_cost,
                "replacement_cost": replacement,
                "trade_in_value": trade_in,
                "net_cost": net_cost,
                "annual_savings": savings / 3,
                "payback_months": round(net_cost / (savings / 36)) if savings > 0 else None,
                "urgency": assessment.replacement_urgency,
            }
        )

    recommendations.sort(key=lambda r: r["risk_score"], reverse=True)
    total_budget = sum(r["net_cost"] for r in recommendations)
    annual_savings = sum(r["annual_savings"] for r in recommendations)
    return {
        "fiscal_year": fiscal_year,
        "recommendations": recommendations,
        "summary": {
            "total_units_recommended": len(recommendations),
            "total_budget_needed": total_budget,
            "projected_annual_savings": annual_savings,
            "fleet_payback_months": round(total_budget / (annual_savings / 12)) if annual_savings > 0 else None,
        },
    }
