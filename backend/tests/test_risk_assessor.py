"""
Tests for the Risk Assessor.

Covers:
  - Trailing-12-month metric collection
  - Assessment records and the forklift risk cache projection
  - high_risk alert creation and dedup across re-assessments
  - Fleet batch isolation and reporting
"""

from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from core.errors import FleetPulseError, ForkliftNotFoundError
from db.models import Alert, Forklift, RiskAssessment
from risk import assessor
from risk.assessor import (
    age_in_years,
    assess_fleet,
    assess_forklift,
    collect_metrics,
    get_fleet_risk_summary,
    get_replacement_budget,
    rebuild_risk_cache,
)


def _years_ago(years: int) -> date:
    return date.today() - timedelta(days=365 * years)


async def _aging_unit(make_forklift, add_maintenance, add_downtime, forklift_id="FL-001"):
    """8 years, $25k, 16,000 h, $4,000 over 5 repairs, 40 h downtime in the last year."""
    await make_forklift(forklift_id, purchase_date=_years_ago(8), current_hours=16000, purchase_price=25000)
    for i in range(5):
        await add_maintenance(forklift_id, type="repair", total_cost=800, service_date=date.today() - timedelta(days=30 + i * 40))
    await add_downtime(forklift_id, hours=40, days_ago=60)


async def _worn_out_unit(make_forklift, add_maintenance, add_downtime, forklift_id="FL-001"):
    """10 years, 7 repairs, 200 h downtime: scores 8."""
    await make_forklift(forklift_id, purchase_date=_years_ago(10), current_hours=16000, purchase_price=25000)
    for i in range(7):
        await add_maintenance(forklift_id, type="repair", total_cost=4000 / 7, service_date=date.today() - timedelta(days=20 + i * 30))
    await add_downtime(forklift_id, hours=200, days_ago=90)


async def _end_of_life_unit(make_forklift, add_maintenance, add_downtime, forklift_id="FL-001"):
    await make_forklift(forklift_id, purchase_date=_years_ago(12), current_hours=25000, purchase_price=25000)
    for i in range(10):
        await add_maintenance(forklift_id, type="emergency", total_cost=600, service_date=date.today() - timedelta(days=10 + i * 30))
    await add_downtime(forklift_id, hours=400, days_ago=45)


async def _alert_count(db, alert_type="high_risk"):
    return (await db.execute(select(func.count()).select_from(Alert).where(Alert.alert_type == alert_type))).scalar()


class TestAgeInYears:
    def test_from_purchase_date(self):
        unit = Forklift(purchase_date=date(2018, 6, 1), year=2010)
        assert age_in_years(unit, date(2026, 6, 1)) == pytest.approx(8.0, abs=0.01)

    def test_from_model_year(self):
        assert age_in_years(Forklift(year=2020), date(2026, 6, 1)) == 6.0

    def test_default(self):
        assert age_in_years(Forklift(), date(2026, 6, 1)) == 5.0


@pytest.mark.asyncio
async def test_collect_metrics_trailing_year(test_db, make_forklift, add_maintenance, add_downtime):
    unit = await make_forklift("FL-001", purchase_price=None)
    await add_maintenance(type="repair", total_cost=300)
    await add_maintenance(type="emergency", total_cost=700)
    await add_maintenance(type="preventive", total_cost=100)
    await add_maintenance(type="repair", total_cost=900, service_date=date.today() - timedelta(days=400))
    await add_maintenance(type="repair", total_cost=900, status="scheduled")
    await add_downtime(hours=10, cost_per_hour_down=200.0)
    await add_downtime(hours=5)
    await add_downtime(hours=99, days_ago=500)

    metrics = await collect_metrics(test_db, unit, datetime.utcnow())

    assert metrics.maintenance_cost_12mo == 1100
    assert metrics.repair_count_12mo == 2
    assert metrics.emergency_count_12mo == 1
    assert metrics.downtime_hours_12mo == 15
    assert metrics.downtime_cost_12mo == 10 * 200 + 5 * 150
    assert metrics.purchase_price == 25000  # settings default


@pytest.mark.asyncio
async def test_aging_unit_scores(test_db, make_forklift, add_maintenance, add_downtime):
    await _aging_unit(make_forklift, add_maintenance, add_downtime)

    assessment = await assess_forklift(test_db, "FL-001")

    assert 7 <= assessment.age_score <= 9
    assert assessment.hours_score == 8
    assert assessment.maintenance_cost_score >= 7
    assert assessment.repair_frequency_score == 6
    assert assessment.downtime_score == 2
    assert assessment.overall_score == 6
    assert assessment.repair_vs_replace == "monitor"
    assert assessment.replacement_urgency == "within_1_year"
    assert {f["category"] for f in assessment.risk_factors} >= {"hours", "maintenance_cost"}
    assert await _alert_count(test_db) == 0

    unit = await test_db.get(Forklift, "FL-001")
    assert unit.risk_score == 6
    assert unit.risk_level == "medium"
    assert unit.recommended_action == "monitor"
    assert unit.last_risk_assessment == assessment.assessed_at


@pytest.mark.asyncio
async def test_high_risk_raises_single_alert(test_db, make_forklift, add_maintenance, add_downtime):
    await _worn_out_unit(make_forklift, add_maintenance, add_downtime)

    first = await assess_forklift(test_db, "FL-001")
    assert first.overall_score == 8

    alert = (await test_db.execute(select(Alert))).scalar_one()
    assert alert.alert_type == "high_risk"
    assert alert.severity == "high"
    assert alert.recurrence_key == "high_risk_FL-001"
    assert alert.context_data["risk_score"] == 8

    await assess_forklift(test_db, "FL-001")
    count = (await test_db.execute(select(func.count()).select_from(RiskAssessment))).scalar()
    assert count == 2
    assert await _alert_count(test_db) == 1


@pytest.mark.asyncio
async def test_new_alert_after_previous_resolved(test_db, make_forklift, add_maintenance, add_downtime):
    from alerts.engine import resolve_alert

    await _worn_out_unit(make_forklift, add_maintenance, add_downtime)
    await assess_forklift(test_db, "FL-001")
    alert = (await test_db.execute(select(Alert))).scalar_one()
    await resolve_alert(test_db, alert.alert_id, user_id="manager")

    await assess_forklift(test_db, "FL-001")
    assert await _alert_count(test_db) == 2


@pytest.mark.asyncio
async def test_end_of_life_unit_is_critical(test_db, make_forklift, add_maintenance, add_downtime):
    await _end_of_life_unit(make_forklift, add_maintenance, add_downtime)

    assessment = await assess_forklift(test_db, "FL-001", assessed_by="fleet-manager")

    assert assessment.overall_score == 10
    assert assessment.repair_vs_replace == "replace"
    assert assessment.replacement_urgency == "immediate"
    assert assessment.assessment_method == "manual"
    assert "emergency_repairs" in {f["category"] for f in assessment.risk_factors}
    assert assessment.recommendations[0]["action"] == "Replace immediately"

    unit = await test_db.get(Forklift, "FL-001")
    assert unit.risk_level == "critical"
    assert unit.recommended_action == "replace_immediately"

    alert = (await test_db.execute(select(Alert))).scalar_one()
    assert alert.severity == "critical"


@pytest.mark.asyncio
async def test_assessments_are_append_only(test_db, forklift):
    assessment = await assess_forklift(test_db, "FL-001")

    assessment.overall_score = 9
    with pytest.raises(ValueError):
        await test_db.commit()
    await test_db.rollback()


@pytest.mark.asyncio
async def test_rebuild_risk_cache_from_latest(test_db, make_forklift, add_maintenance, add_downtime):
    await _worn_out_unit(make_forklift, add_maintenance, add_downtime)
    await assess_forklift(test_db, "FL-001")

    unit = await test_db.get(Forklift, "FL-001")
    unit.risk_score = 1
    unit.risk_level = "low"
    unit.risk_factors = []
    await test_db.commit()

    rebuilt = await rebuild_risk_cache(test_db, "FL-001")
    assert rebuilt.risk_score == 8
    assert rebuilt.risk_level == "high"
    assert rebuilt.risk_factors


@pytest.mark.asyncio
async def test_rebuild_without_assessments_resets(test_db, make_forklift):
    await make_forklift("FL-001", risk_score=9, risk_level="critical", recommended_action="replace_immediately")

    rebuilt = await rebuild_risk_cache(test_db, "FL-001")
    assert rebuilt.risk_score == 1
    assert rebuilt.risk_level == "low"
    assert rebuilt.recommended_action is None


@pytest.mark.asyncio
async def test_assess_unknown_forklift(test_db):
    with pytest.raises(ForkliftNotFoundError):
        await assess_forklift(test_db, "GHOST")


@pytest.mark.asyncio
async def test_assess_fleet_isolates_failures(test_db, make_forklift, monkeypatch):
    await make_forklift("FL-001")
    await make_forklift("FL-002")
    await make_forklift("FL-003")
    await make_forklift("FL-004", status="retired")

    real_collect = assessor.collect_metrics

    async def flaky_collect(db, forklift, now):
        if forklift.forklift_id == "FL-002":
            raise FleetPulseError("sensor data unavailable")
        return await real_collect(db, forklift, now)

    monkeypatch.setattr(assessor, "collect_metrics", flaky_collect)

    results = await assess_fleet(test_db)

    assert [r["forklift_id"] for r in results] == ["FL-001", "FL-002", "FL-003"]
    assert [r["success"] for r in results] == [True, False, True]
    assert results[1]["error"] == "sensor data unavailable"
    assert results[0]["overall_score"] == 1
    count = (await test_db.execute(select(func.count()).select_from(RiskAssessment))).scalar()
    assert count == 2


@pytest.mark.asyncio
async def test_assess_fleet_survives_unexpected_error(test_db, make_forklift, monkeypatch):
    await make_forklift("FL-001")
    await make_forklift("FL-002")

    real_collect = assessor.collect_metrics

    async def broken_collect(db, forklift, now):
        if forklift.forklift_id == "FL-001":
            raise TypeError("unsupported operand")
        return await real_collect(db, forklift, now)

    monkeypatch.setattr(assessor, "collect_metrics", broken_collect)

    results = await assess_fleet(test_db)

    assert [(r["forklift_id"], r["success"]) for r in results] == [("FL-001", False), ("FL-002", True)]
    assert results[0]["error"] == "unsupported operand"
    assessed = (await test_db.execute(select(RiskAssessment.forklift_id))).scalars().all()
    assert assessed == ["FL-002"]


@pytest.mark.asyncio
async def test_fleet_risk_summary_and_budget(test_db, make_forklift, add_maintenance, add_downtime):
    await _end_of_life_unit(make_forklift, add_maintenance, add_downtime, forklift_id="FL-001")
    await make_forklift("FL-002")
    await assess_fleet(test_db)

    summary = await get_fleet_risk_summary(test_db)
    assert summary["total_units"] == 2
    assert summary["critical_risk"] == 1
    assert summary["low_risk"] == 1
    assert summary["units_needing_replacement"] == 1
    assert summary["average_risk_score"] == 5.5

    budget = await get_replacement_budget(test_db, fiscal_year=2027)
    assert budget["fiscal_year"] == 2027
    assert [r["forklift_id"] for r in budget["recommendations"]] == ["FL-001"]
    rec = budget["recommendations"][0]
    assert rec["replacement_cost"] == 30000
    assert rec["net_cost"] == rec["replacement_cost"] - rec["trade_in_value"]
    assert budget["summary"]["total_units_recommended"] == 1


@pytest.mark.asyncio
async def test_depreciation_rate_outside_unit_interval_rejected(test_db, make_forklift):
    with pytest.raises(IntegrityError):
        await make_forklift("FL-001", depreciation_rate=1.5)
    await test_db.rollback()
