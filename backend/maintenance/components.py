"""
Component Lifecycle Model — wear of each subsystem against its expected life.

Hours since service come from the most recent completed maintenance record in
the component's category; a component never serviced has used all of the
unit's current hours.

Status:
  life used ≥ 100%                    → overdue   (urgency critical)
  life used ≥ warning threshold × 100 → due_soon  (urgency high)
  life used ≥ 70%                     → monitor   (urgency medium)
  otherwise                           → good      (urgency none)
"""

from dataclasses import dataclass
from typing import Any, Mapping

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import ForkliftNotFoundError
from db.models import Forklift, MaintenanceRecord

logger = structlog.get_logger()

ELECTRIC = "electric"
MONITOR_PERCENT = 70.0
URGENCY_ORDER = {"critical": 0, "high": 1, "medium": 2, "none": 3}


@dataclass(frozen=True)
class ComponentLifecycle:
    expected_hours: int
    warning_threshold: float
    category: str
    applies_to: str = "all"  # all | electric | combustion

    def applies(self, fuel_type: str | None) -> bool:
        if self.applies_to == "all":
            return True
        is_electric = fuel_type == ELECTRIC
        return is_electric if self.applies_to == "electric" else not is_electric


COMPONENT_LIFECYCLES: dict[str, ComponentLifecycle] = {
    # Drive system
    "drive_motor": ComponentLifecycle(15000, 0.85, "electrical"),
    "drive_controller": ComponentLifecycle(12000, 0.80, "electrical"),
    "transmission": ComponentLifecycle(10000, 0.85, "transmission"),
    # Hydraulic system
    "hydraulic_pump": ComponentLifecycle(8000, 0.80, "hydraulic"),
    "hydraulic_cylinder": ComponentLifecycle(10000, 0.85, "hydraulic"),
    "hydraulic_hoses": ComponentLifecycle(5000, 0.75, "hydraulic"),
    "hydraulic_filter": ComponentLifecycle(1000, 0.90, "hydraulic"),
    # Mast and lifting
    "mast_chain": ComponentLifecycle(6000, 0.80, "mast"),
    "mast_rollers": ComponentLifecycle(5000, 0.85, "mast"),
    "fork_carriage": ComponentLifecycle(12000, 0.90, "mast"),
    # Brakes
    "brake_pads": ComponentLifecycle(2000, 0.75, "brakes"),
    "brake_master_cylinder": ComponentLifecycle(8000, 0.85, "brakes"),
    "parking_brake": ComponentLifecycle(5000, 0.80, "brakes"),
    # Tires / wheels
    "load_wheels": ComponentLifecycle(3000, 0.80, "tires"),
    "drive_tires": ComponentLifecycle(4000, 0.80, "tires"),
    "steer_tires": ComponentLifecycle(4500, 0.80, "tires"),
    # Electric units only
    "battery": ComponentLifecycle(6000, 0.85, "battery", "electric"),
    "charger": ComponentLifecycle(10000, 0.90, "battery", "electric"),
    "contactor": ComponentLifecycle(8000, 0.85, "electrical", "electric"),
    # Internal-combustion units only
    "spark_plugs": ComponentLifecycle(1000, 0.90, "engine", "combustion"),
    "fuel_filter": ComponentLifecycle(500, 0.85, "fuel_system", "combustion"),
    "air_filter": ComponentLifecycle(500, 0.85, "engine", "combustion"),
    "lpg_regulator": ComponentLifecycle(4000, 0.80, "fuel_system", "combustion"),
}


@dataclass(frozen=True)
class ComponentHealth:
    component: str
    component_key: str
    category: str
    expected_life_hours: int
    hours_since_service: float
    remaining_hours: int
    life_used_percent: float
    status: str
    urgency: str


def lifecycle_for(component_key: str) -> ComponentLifecycle | None:
    return COMPONENT_LIFECYCLES.get(component_key)


def _classify(life_used_percent: float, warning_threshold: float) -> tuple[str, str]:
    if life_used_percent >= 100:
        return "overdue", "critical"
    if life_used_percent >= warning_threshold * 100:
        return "due_soon", "high"
    if life_used_percent >= MONITOR_PERCENT:
        return "monitor", "medium"
    return "good", "none"


def component_health(
    current_hours: float,
    fuel_type: str | None,
    last_service_hours_by_category: Mapping[str, float],
) -> list[ComponentHealth]:
    """Health of every component applicable to the fuel type, most urgent first."""
    current_hours = current_hours or 0.0
    results = []
    for key, lifecycle in COMPONENT_LIFECYCLES.items():
        if not lifecycle.applies(fuel_type):
            continue
        serviced_at = last_service_hours_by_category.get(lifecycle.category)
        since = current_hours - serviced_at if serviced_at is not None else current_hours
        since = max(0.0, since)
        used = min(100.0, since / max(1, lifecycle.expected_hours) * 100)
        status, urgency = _classify(used, lifecycle.warning_threshold)
        results.append(
            ComponentHealth(
                component=key.replace("_", " ").title(),
                component_key=key,
                category=lifecycle.category,
                expected_life_hours=lifecycle.expected_hours,
                hours_since_service=round(since, 1),
                remaining_hours=round(max(0.0, lifecycle.expected_hours - since)),
                life_used_percent=used,
                status=status,
                urgency=urgency,
            )
        )
    results.sort(key=lambda c: (URGENCY_ORDER[c.urgency], -c.life_used_percent))
    return results


async def last_service_hours_by_category(db: AsyncSession, forklift_id: str) -> dict[str, float]:
    """hours_at_service of the most recent completed record per category."""
    result = await db.execute(
        select(MaintenanceRecord.category, MaintenanceRecord.hours_at_service)
        .where(
            MaintenanceRecord.forklift_id == forklift_id,
            MaintenanceRecord.status == "completed",
            MaintenanceRecord.category.is_not(None),
            MaintenanceRecord.service_date.is_not(None),
        )
        .order_by(MaintenanceRecord.service_date.asc(), MaintenanceRecord.created_at.asc())
    )
    latest: dict[str, float] = {}
    for category, hours in result.all():
        latest[category] = hours or 0.0
    return latest


async def assess_component_health(db: AsyncSession, forklift_id: str) -> dict[str, Any]:
    forklift = await db.get(Forklift, forklift_id)
    if forklift is None:
        raise ForkliftNotFoundError(forklift_id)

    serviced = await last_service_hours_by_category(db, forklift_id)
    components = component_health(forklift.current_hours, forklift.fuel_type, serviced)
    critical = sum(1 for c in components if c.urgency == "critical")
    warning = sum(1 for c in components if c.urgency == "high")

    logger.debug("components.assessed", forklift_id=forklift_id, critical=critical, warning=warning)
    return {
        "forklift_id": forklift_id,
        "current_hours": forklift.current_hours,
        "fuel_type": forklift.fuel_type,
        "components": components,
        "critical_count": critical,
        "warning_count": warning,
    }
