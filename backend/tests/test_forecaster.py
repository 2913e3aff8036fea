"""
Tests for the Predictive Forecaster.

Covers:
  - Next-service predictions (hours-based vs scheduled)
  - Urgency score composition and caps
  - Fleet predictions, schedule, and prediction alerts
"""

from datetime import date, timedelta

import pytest
from sqlalchemy import select

from db.models import Alert, Forklift
from maintenance.components import ComponentHealth
from maintenance.forecaster import (
    ServiceForecast,
    ServicePrediction,
    compose_prediction,
    create_prediction_alerts,
    generate_fleet_predictions,
    generate_forklift_prediction,
    get_optimized_schedule,
    predict_next_service,
    recommended_action,
    service_predictions,
    status_for,
)
from maintenance.patterns import PatternMatch
from telemetry.usage import UsageRate

TODAY = date(2026, 6, 1)


def _service(days_until: int) -> ServiceForecast:
    prediction = ServicePrediction(
        type="date_based",
        predicted_date=TODAY + timedelta(days=days_until),
        days_until=days_until,
        confidence=0.95,
        basis="Scheduled service interval",
    )
    return ServiceForecast("FL-001", 1000.0, None, [prediction], recommended_action(days_until))


def _pattern(urgency: str = "high") -> PatternMatch:
    return PatternMatch(
        pattern_name="hydraulic_system_failure",
        prediction="Hydraulic pump failure likely",
        confidence=57,
        urgency=urgency,
        matched_indicators=["hydraulic_leak", "hydraulic_pressure"],
        total_indicators=3,
        recommended_action="Schedule inspection within 30 days",
        estimated_time_to_failure="30 days",
    )


def _component(key: str, urgency: str, used: float = 100.0) -> ComponentHealth:
    status = {"critical": "overdue", "high": "due_soon", "medium": "monitor", "none": "good"}[urgency]
    return ComponentHealth(
        component=key.replace("_", " ").title(),
        component_key=key,
        category="hydraulic",
        expected_life_hours=1000,
        hours_since_service=used * 10,
        remaining_hours=max(0, round(1000 - used * 10)),
        life_used_percent=used,
        status=status,
        urgency=urgency,
    )


def _usage(per_day: float, reliability: str = "high") -> UsageRate:
    return UsageRate(per_day, per_day * 7, per_day * 30, 12, reliability)


# ── Pure helpers ───────────────────────────────────────────────────────


class TestServicePredictions:
    def test_hours_and_date_based_sorted(self):
        unit = Forklift(current_hours=900.0, next_service_hours=1000.0, next_service_date=TODAY + timedelta(days=5))
        predictions = service_predictions(unit, _usage(10.0), TODAY)

        assert [p.type for p in predictions] == ["date_based", "hours_based"]
        hours_based = predictions[1]
        assert hours_based.days_until == 10
        assert hours_based.hours_remaining == 100
        assert hours_based.confidence == 0.90
        assert hours_based.basis == "Based on 10.0 hrs/day usage rate"

    def test_no_hours_prediction_when_past_due_hours(self):
        unit = Forklift(current_hours=1100.0, next_service_hours=1000.0)
        assert service_predictions(unit, _usage(10.0), TODAY) == []

    def test_no_hours_prediction_without_usage(self):
        unit = Forklift(current_hours=900.0, next_service_hours=1000.0)
        assert service_predictions(unit, None, TODAY) == []

    def test_estimated_usage_confidence(self):
        unit = Forklift(current_hours=900.0, next_service_hours=1000.0)
        assert service_predictions(unit, _usage(5.0, "estimated"), TODAY)[0].confidence == 0.60

    @pytest.mark.parametrize("days,action", [(3, "Schedule now"), (10, "Plan service"), (25, "Monitor"), (60, "OK")])
    def test_recommended_action(self, days, action):
        assert recommended_action(days) == action


class TestComposePrediction:
    def test_no_signals_is_ok(self):
        prediction = compose_prediction("FL-001", None, [], [])
        assert prediction.urgency_score == 0
        assert prediction.overall_status == "ok"
        assert prediction.findings == []

    @pytest.mark.parametrize("days,points", [(5, 30), (7, 30), (10, 20), (30, 10), (45, 0)])
    def test_service_window_points(self, days, points):
        assert compose_prediction("FL-001", _service(days), [], []).urgency_score == points

    @pytest.mark.parametrize("urgency,points", [("critical", 40), ("high", 25), ("medium", 15)])
    def test_pattern_points(self, urgency, points):
        assert compose_prediction("FL-001", None, [_pattern(urgency)], []).urgency_score == points

    def test_service_plus_pattern_is_critical(self):
        prediction = compose_prediction("FL-001", _service(5), [_pattern("high")], [])
        assert prediction.urgency_score == 55
        assert prediction.overall_status == "critical"
        assert [f.type for f in prediction.findings] == ["scheduled_service", "failure_pattern"]
        assert prediction.findings[0].confidence == 95

    def test_component_limits(self):
        components = [_component(f"overdue_{i}", "critical") for i in range(4)]
        components += [_component(f"soon_{i}", "high", 85.0) for i in range(3)]
        prediction = compose_prediction("FL-001", None, [], components)

        lifecycle = [f for f in prediction.findings if f.type == "component_lifecycle"]
        assert len(lifecycle) == 5
        assert prediction.urgency_score == 100  # 3 * 35 + 2 * 15, capped

    def test_due_soon_only_is_warning(self):
        components = [_component(f"soon_{i}", "high", 85.0) for i in range(2)]
        prediction = compose_prediction("FL-001", None, [], components)
        assert prediction.urgency_score == 30
        assert prediction.overall_status == "warning"
        assert prediction.findings[0].title == "Soon 0 Approaching End of Life"

    def test_findings_sorted_by_urgency(self):
        prediction = compose_prediction(
            "FL-001",
            _service(20),
            [_pattern("high")],
            [_component("hydraulic_filter", "critical")],
        )
        assert [f.urgency for f in prediction.findings] == ["critical", "high", "medium"]

    @pytest.mark.parametrize("score,status", [(0, "ok"), (29, "ok"), (30, "warning"), (49, "warning"), (50, "critical")])
    def test_status_thresholds(self, score, status):
        assert status_for(score) == status


# ── Database-backed ────────────────────────────────────────────────────


async def _due_unit(make_forklift, forklift_id="FL-001"):
    return await make_forklift(
        forklift_id,
        current_hours=1600.0,
        last_hour_reading=1600.0,
        next_service_date=date.today() + timedelta(days=3),
        model="Crown RC5500",
        location_name="Dock 4",
    )


@pytest.mark.asyncio
async def test_predict_next_service_none_without_signals(test_db, forklift):
    assert await predict_next_service(test_db, "FL-001") is None


@pytest.mark.asyncio
async def test_predict_next_service_scheduled(test_db, make_forklift):
    await _due_unit(make_forklift)
    forecast = await predict_next_service(test_db, "FL-001")
    assert forecast.soonest.type == "date_based"
    assert forecast.recommended_action == "Schedule now"
    assert forecast.usage_rate.reliability == "estimated"


@pytest.mark.asyncio
async def test_generate_forklift_prediction(test_db, make_forklift):
    await _due_unit(make_forklift)

    prediction = await generate_forklift_prediction(test_db, "FL-001")

    # service ≤7d (30) + hydraulic filter overdue (35) + brake pads due soon (15)
    assert prediction.urgency_score == 80
    assert prediction.overall_status == "critical"
    assert prediction.model == "Crown RC5500"
    assert prediction.location == "Dock 4"
    assert {f.component for f in prediction.findings if f.component} == {"hydraulic_filter", "brake_pads"}


@pytest.mark.asyncio
async def test_fleet_predictions_skip_units_without_findings(test_db, make_forklift):
    await _due_unit(make_forklift, "FL-001")
    await make_forklift("FL-002")
    await make_forklift("FL-003", status="retired", current_hours=30000.0)

    fleet = await generate_fleet_predictions(test_db)

    assert fleet["summary"]["total_units"] == 2
    assert fleet["summary"]["units_with_predictions"] == 1
    assert fleet["summary"]["critical_count"] == 1
    assert [p.forklift_id for p in fleet["predictions"]] == ["FL-001"]
    assert fleet["summary"]["top_predictions"][0]["top_finding"].urgency == "critical"


@pytest.mark.asyncio
async def test_optimized_schedule(test_db, make_forklift):
    await _due_unit(make_forklift)

    schedule = await get_optimized_schedule(test_db, days_ahead=30)

    assert schedule["total_items"] == 2
    assert schedule["critical_items"] == 2
    assert schedule["schedule"][0]["component"] == "hydraulic_filter"
    assert schedule["schedule"][1]["service_type"] == "Preventive Maintenance"


@pytest.mark.asyncio
async def test_prediction_alerts_are_idempotent(test_db, make_forklift):
    await _due_unit(make_forklift)

    created = await create_prediction_alerts(test_db)
    assert len(created) == 3
    assert {a.severity for a in created} == {"critical", "high"}
    assert all(a.alert_type == "lifecycle_alert" for a in created)

    assert await create_prediction_alerts(test_db) == []
    alerts = (await test_db.execute(select(Alert))).scalars().all()
    assert len(alerts) == 3
