"""
Tests for the Alert Engine — Dedup and Lifecycle.

Covers:
  - Recurrence-key dedup (including a lost insert race)
  - Lifecycle transitions and audit trail
  - Snooze expiry, bulk operations, ordering, and summary counts
"""

import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from alerts import engine
from alerts.engine import (
    acknowledge_alert,
    bulk_acknowledge,
    bulk_resolve,
    create_alert,
    default_recurrence_key,
    dismiss_alert,
    get_active_alerts,
    get_alert,
    get_alert_history,
    get_alert_summary,
    list_alerts,
    raise_alert,
    reactivate_snoozed_alerts,
    resolve_alert,
    snooze_alert,
)
from core.errors import AlertNotFoundError, InvalidTransitionError
from db.models import Alert


async def _alert(db, key="maint_FL-001", severity="medium", alert_type="maintenance_due", forklift_id="FL-001", **fields):
    return await create_alert(
        db,
        alert_type=alert_type,
        severity=severity,
        forklift_id=forklift_id,
        title=f"{alert_type} {key}",
        recurrence_key=key,
        **fields,
    )


async def _count(db):
    return (await db.execute(select(func.count()).select_from(Alert))).scalar()


# ── Creation & dedup ───────────────────────────────────────────────────


class TestDefaultRecurrenceKey:
    def test_forklift_key(self):
        assert default_recurrence_key("downtime", "FL-007") == "downtime_FL-007"

    def test_fleet_key(self):
        assert default_recurrence_key("custom", None) == "custom_fleet"


@pytest.mark.asyncio
async def test_create_alert_defaults(test_db, forklift):
    alert = await create_alert(test_db, alert_type="downtime", title="Unit down", forklift_id="FL-001")

    assert alert.status == "active"
    assert alert.severity == "medium"
    assert alert.recurrence_key == "downtime_FL-001"
    assert alert.context_data == {}
    assert alert.is_active and not alert.is_resolved


@pytest.mark.asyncio
async def test_same_key_returns_existing(test_db, forklift):
    first = await _alert(test_db)
    second, created = await raise_alert(
        test_db, alert_type="maintenance_due", title="again", forklift_id="FL-001", recurrence_key="maint_FL-001"
    )

    assert not created
    assert second.alert_id == first.alert_id
    assert second.title == first.title
    assert await _count(test_db) == 1


@pytest.mark.asyncio
async def test_dedup_holds_while_acknowledged_or_snoozed(test_db, forklift):
    first = await _alert(test_db)
    await acknowledge_alert(test_db, first.alert_id, user_id="tech")
    assert (await _alert(test_db)).alert_id == first.alert_id

    await snooze_alert(test_db, first.alert_id, datetime.utcnow() + timedelta(hours=2))
    assert (await _alert(test_db)).alert_id == first.alert_id
    assert await _count(test_db) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("close", [resolve_alert, dismiss_alert])
async def test_closed_alert_frees_key(test_db, forklift, close):
    first = await _alert(test_db)
    await close(test_db, first.alert_id, user_id="manager")

    second = await _alert(test_db)
    assert second.alert_id != first.alert_id
    assert second.status == "active"
    assert await _count(test_db) == 2


@pytest.mark.asyncio
async def test_lost_insert_race_returns_winner(test_db, forklift, monkeypatch):
    winner = await _alert(test_db, key="race_key")

    real_find = engine.find_open_alert
    calls = {"n": 0}

    async def stale_find(db, recurrence_key):
        calls["n"] += 1
        if calls["n"] == 1:
            return None  # another writer inserted after our check
        return await real_find(db, recurrence_key)

    monkeypatch.setattr(engine, "find_open_alert", stale_find)

    alert, created = await raise_alert(
        test_db, alert_type="maintenance_due", title="loser", forklift_id="FL-001", recurrence_key="race_key"
    )
    assert not created
    assert alert.alert_id == winner.alert_id
    assert await _count(test_db) == 1


@pytest.mark.asyncio
async def test_invalid_type_and_severity(test_db):
    with pytest.raises(ValueError):
        await create_alert(test_db, alert_type="stockout", title="x")
    with pytest.raises(ValueError):
        await create_alert(test_db, alert_type="custom", title="x", severity="urgent")


# ── Transitions ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_acknowledge_then_resolve(test_db, forklift):
    alert = await _alert(test_db)

    acked = await acknowledge_alert(test_db, alert.alert_id, user_id="tech-1")
    assert acked.status == "acknowledged"
    assert acked.acknowledged_by == "tech-1"
    assert acked.is_acknowledged

    resolved = await resolve_alert(test_db, alert.alert_id, user_id="tech-1", notes="replaced hose")
    assert resolved.status == "resolved"
    assert resolved.resolution_notes == "replaced hose"
    assert resolved.resolved_at is not None

    history = await get_alert_history(test_db, alert.alert_id)
    assert sorted(h.action for h in history) == ["acknowledged", "resolved"]


@pytest.mark.asyncio
async def test_acknowledge_only_from_active(test_db, forklift):
    alert = await _alert(test_db)
    await acknowledge_alert(test_db, alert.alert_id)

    with pytest.raises(InvalidTransitionError):
        await acknowledge_alert(test_db, alert.alert_id)


@pytest.mark.asyncio
async def test_closed_alerts_are_terminal(test_db, forklift):
    alert = await _alert(test_db)
    await dismiss_alert(test_db, alert.alert_id, notes="false alarm")

    for action in (acknowledge_alert, resolve_alert, dismiss_alert):
        with pytest.raises(InvalidTransitionError):
            await action(test_db, alert.alert_id)
    with pytest.raises(InvalidTransitionError):
        await snooze_alert(test_db, alert.alert_id, datetime.utcnow() + timedelta(hours=1))


@pytest.mark.asyncio
async def test_snooze_requires_future_time(test_db, forklift):
    alert = await _alert(test_db)
    with pytest.raises(InvalidTransitionError):
        await snooze_alert(test_db, alert.alert_id, datetime.utcnow() - timedelta(minutes=1))
    assert (await get_alert(test_db, alert.alert_id)).status == "active"


@pytest.mark.asyncio
async def test_snoozed_alert_can_be_resolved(test_db, forklift):
    alert = await _alert(test_db)
    await snooze_alert(test_db, alert.alert_id, datetime.utcnow() + timedelta(hours=4), user_id="tech")
    with pytest.raises(InvalidTransitionError):
        await snooze_alert(test_db, alert.alert_id, datetime.utcnow() + timedelta(hours=8))

    resolved = await resolve_alert(test_db, alert.alert_id)
    assert resolved.status == "resolved"
    assert resolved.snooze_until is None


@pytest.mark.asyncio
async def test_reactivate_elapsed_snoozes(test_db, forklift):
    short = await _alert(test_db, key="a")
    long = await _alert(test_db, key="b")
    now = datetime.utcnow()
    await snooze_alert(test_db, short.alert_id, now + timedelta(minutes=5))
    await snooze_alert(test_db, long.alert_id, now + timedelta(days=2))

    count = await reactivate_snoozed_alerts(test_db, now=now + timedelta(hours=1))

    assert count == 1
    assert (await get_alert(test_db, short.alert_id)).status == "active"
    assert (await get_alert(test_db, short.alert_id)).snooze_until is None
    assert (await get_alert(test_db, long.alert_id)).status == "snoozed"
    assert await reactivate_snoozed_alerts(test_db, now=now + timedelta(hours=1)) == 0


@pytest.mark.asyncio
async def test_get_alert_not_found(test_db):
    with pytest.raises(AlertNotFoundError):
        await get_alert(test_db, uuid.uuid4())
    with pytest.raises(AlertNotFoundError):
        await get_alert(test_db, "not-a-uuid")


# ── Bulk ───────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_bulk_acknowledge_reports_per_id(test_db, forklift):
    a = await _alert(test_db, key="a")
    b = await _alert(test_db, key="b")
    await acknowledge_alert(test_db, b.alert_id)
    missing = uuid.uuid4()

    results = await bulk_acknowledge(test_db, [a.alert_id, b.alert_id, missing, "junk"], user_id="lead")

    assert [r["success"] for r in results] == [True, False, False, False]
    assert "Cannot acknowledge" in results[1]["error"]
    assert results[2]["error"] == f"Alert {missing} not found"
    assert (await get_alert(test_db, a.alert_id)).acknowledged_by == "lead"


@pytest.mark.asyncio
async def test_bulk_resolve(test_db, forklift):
    ids = [(await _alert(test_db, key=k)).alert_id for k in ("a", "b", "c")]
    results = await bulk_resolve(test_db, ids, notes="shift handover")
    assert all(r["success"] for r in results)
    assert await get_active_alerts(test_db) == []


# ── Queries ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_orders_by_severity(test_db, forklift):
    for key, severity in [("a", "low"), ("b", "critical"), ("c", "medium"), ("d", "high")]:
        await _alert(test_db, key=key, severity=severity)

    alerts = await list_alerts(test_db)
    assert [a.severity for a in alerts] == ["critical", "high", "medium", "low"]

    only_high = await list_alerts(test_db, severity="high")
    assert [a.recurrence_key for a in only_high] == ["d"]


@pytest.mark.asyncio
async def test_list_filters(test_db, make_forklift):
    await make_forklift("FL-001")
    await make_forklift("FL-002")
    a = await _alert(test_db, key="a", forklift_id="FL-001")
    await _alert(test_db, key="b", forklift_id="FL-002", alert_type="downtime")
    await resolve_alert(test_db, a.alert_id)

    assert [x.recurrence_key for x in await list_alerts(test_db, forklift_id="FL-002")] == ["b"]
    assert [x.recurrence_key for x in await list_alerts(test_db, statuses=["resolved"])] == ["a"]
    assert [x.recurrence_key for x in await list_alerts(test_db, alert_type="downtime")] == ["b"]


@pytest.mark.asyncio
async def test_alert_summary(test_db, forklift):
    await _alert(test_db, key="a", severity="critical", alert_type="high_risk")
    await _alert(test_db, key="b", severity="high")
    c = await _alert(test_db, key="c", severity="high")
    await acknowledge_alert(test_db, c.alert_id)
    d = await _alert(test_db, key="d", severity="low")
    await resolve_alert(test_db, d.alert_id)

    old = await _alert(test_db, key="e", severity="low")
    old.created_at = datetime.utcnow() - timedelta(days=10)
    old.status = "dismissed"
    await test_db.commit()

    summary = await get_alert_summary(test_db)

    assert summary["total_active"] == 3
    assert summary["by_severity"] == {"critical": 1, "high": 2, "medium": 0, "low": 0}
    assert summary["by_type"] == {"high_risk": 1, "maintenance_due": 2}
    assert summary["trend_7_day"]["current_week"] == 4
    assert summary["trend_7_day"]["previous_week"] == 1
    assert summary["trend_7_day"]["change_percent"] == 300
