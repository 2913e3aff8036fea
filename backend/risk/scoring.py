"""
Risk Scoring Policy — weights and threshold bands for the 1-10 risk score.

Each factor is mapped onto the score scale by piecewise-linear interpolation
across its four bands, rounded up within the band:

  value ≤ low        → 1
  value ≤ medium     → 1..4
  value ≤ high       → 4..7
  value ≤ critical   → 7..9
  value > critical   → 10

The overall score is the weighted sum of the five sub-scores, rounded and
clamped to [1, 10]. Policies are plain frozen dataclasses so a site can
override thresholds or weights (RISK_POLICY_OVERRIDES) without code changes.
"""

import json
import math
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any

import structlog

from core.config import get_settings

logger = structlog.get_logger()

FACTORS = ("age", "hours", "maintenance_cost", "repair_frequency", "downtime")


@dataclass(frozen=True)
class ThresholdBands:
    low: float
    medium: float
    high: float
    critical: float

    def __post_init__(self):
        if not (self.low < self.medium < self.high < self.critical):
            raise ValueError(f"Threshold bands must be strictly increasing: {self}")


@dataclass(frozen=True)
class ScoringPolicy:
    age_years: ThresholdBands = ThresholdBands(3, 6, 8, 10)
    hours: ThresholdBands = ThresholdBands(5000, 10000, 15000, 20000)
    # Trailing-12-month maintenance cost as % of purchase price
    maintenance_cost_percent: ThresholdBands = ThresholdBands(5, 10, 15, 20)
    repairs_per_year: ThresholdBands = ThresholdBands(2, 4, 6, 8)
    downtime_hours_per_year: ThresholdBands = ThresholdBands(24, 72, 168, 336)
    weights: dict[str, float] = field(
        default_factory=lambda: {
            "age": 0.15,
            "hours": 0.20,
            "maintenance_cost": 0.25,
            "repair_frequency": 0.20,
            "downtime": 0.20,
        }
    )
    factor_alert_score: int = 7
    factor_critical_score: int = 9

    def __post_init__(self):
        missing = set(FACTORS) - set(self.weights)
        if missing:
            raise ValueError(f"Scoring policy is missing weights for: {', '.join(sorted(missing))}")
        if any(w < 0 for w in self.weights.values()):
            raise ValueError("Scoring weights must be non-negative")

    def bands_for(self, factor: str) -> ThresholdBands:
        return {
            "age": self.age_years,
            "hours": self.hours,
            "maintenance_cost": self.maintenance_cost_percent,
            "repair_frequency": self.repairs_per_year,
            "downtime": self.downtime_hours_per_year,
        }[factor]


DEFAULT_POLICY = ScoringPolicy()

_BAND_FIELDS = {
    "age_years",
    "hours",
    "maintenance_cost_percent",
    "repairs_per_year",
    "downtime_hours_per_year",
}


def policy_from_overrides(overrides: dict[str, Any], base: ScoringPolicy = DEFAULT_POLICY) -> ScoringPolicy:
    """
    Build a policy from a partial override mapping, e.g.
    {"hours": {"critical": 25000}, "weights": {"downtime": 0.3}}.
    """
    changes: dict[str, Any] = {}
    for key, value in overrides.items():
        if key in _BAND_FIELDS:
            changes[key] = replace(getattr(base, key), **value)
        elif key == "weights":
            changes["weights"] = {**base.weights, **value}
        elif key in ("factor_alert_score", "factor_critical_score"):
            changes[key] = int(value)
        else:
            raise ValueError(f"Unknown scoring policy field: {key}")
    return replace(base, **changes)


def load_policy() -> ScoringPolicy:
    raw = get_settings().risk_policy_overrides
    if not raw:
        return DEFAULT_POLICY
    overrides = json.loads(raw)
    logger.info("risk.policy_loaded", overrides=sorted(overrides))
    return policy_from_overrides(overrides)


# ──────────────────────────────────────────────────────────────────────────
# Scoring
# ──────────────────────────────────────────────────────────────────────────


def band_score(value: float, bands: ThresholdBands) -> int:
    if value <= bands.low:
        return 1
    if value <= bands.medium:
        return math.ceil(1 + (value - bands.low) / (bands.medium - bands.low) * 3)
    if value <= bands.high:
        return math.ceil(4 + (value - bands.medium) / (bands.high - bands.medium) * 3)
    if value <= bands.critical:
        return math.ceil(7 + (value - bands.high) / (bands.critical - bands.high) * 2)
    return 10


def overall_score(subscores: dict[str, int], weights: dict[str, float]) -> int:
    total = sum(weights[factor] * subscores[factor] for factor in FACTORS)
    # Round half up (6.5 -> 7)
    return max(1, min(10, math.floor(total + 0.5)))


@dataclass(frozen=True)
class RiskMetrics:
    """Point-in-time inputs to the risk score for one forklift."""

    age_years: float
    current_hours: float
    purchase_price: float
    maintenance_cost_12mo: float
    repair_count_12mo: int
    emergency_count_12mo: int
    downtime_hours_12mo: float
    downtime_cost_12mo: float
    next_service_date: date | None = None

    @property
    def maintenance_cost_percent(self) -> float:
        return self.maintenance_cost_12mo / max(1.0, self.purchase_price) * 100


def score_metrics(metrics: RiskMetrics, policy: ScoringPolicy = DEFAULT_POLICY) -> dict[str, int]:
    values = {
        "age": metrics.age_years,
        "hours": metrics.current_hours,
        "maintenance_cost": metrics.maintenance_cost_percent,
        "repair_frequency": metrics.repair_count_12mo,
        "downtime": metrics.downtime_hours_12mo,
    }
    return {factor: band_score(values[factor], policy.bands_for(factor)) for factor in FACTORS}


# ──────────────────────────────────────────────────────────────────────────
# Factors & recommendations
# ──────────────────────────────────────────────────────────────────────────


def _factor(category: str, score: int, description: str, policy: ScoringPolicy) -> dict[str, str]:
    severity = "critical" if score >= policy.factor_critical_score else "high"
    return {"category": category, "severity": severity, "description": description}


def identify_risk_factors(
    scores: dict[str, int],
    metrics: RiskMetrics,
    today: date,
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> list[dict[str, str]]:
    threshold = policy.factor_alert_score
    factors = []

    if scores["age"] >= threshold:
        factors.append(_factor("age", scores["age"], f"Equipment age is {metrics.age_years:.1f} years", policy))
    if scores["hours"] >= threshold:
        factors.append(
            _factor(
                "hours",
                scores["hours"],
                f"Operating hours ({metrics.current_hours:g}) approaching end of life threshold",
                policy,
            )
        )
    if scores["maintenance_cost"] >= threshold:
        factors.append(
            _factor(
                "maintenance_cost",
                scores["maintenance_cost"],
                f"Annual maintenance cost (${metrics.maintenance_cost_12mo:.0f}) exceeds threshold",
                policy,
            )
        )
    if scores["repair_frequency"] >= threshold:
        factors.append(
            _factor(
                "repair_frequency",
                scores["repair_frequency"],
                f"{metrics.repair_count_12mo} repairs in last 12 months",
                policy,
            )
        )
    if metrics.emergency_count_12mo >= 2:
        factors.append(
            {
                "category": "emergency_repairs",
                "severity": "critical" if metrics.emergency_count_12mo >= 4 else "high",
                "description": f"{metrics.emergency_count_12mo} emergency repairs in last 12 months",
            }
        )
    if scores["downtime"] >= threshold:
        factors.append(
            _factor(
                "downtime",
                scores["downtime"],
                f"{metrics.downtime_hours_12mo:.0f} hours of downtime in last 12 months",
                policy,
            )
        )
    if metrics.next_service_date and metrics.next_service_date < today:
        factors.append(
            {
                "category": "maintenance_overdue",
                "severity": "medium",
                "description": "Scheduled maintenance is overdue",
            }
        )
    return factors


def generate_recommendations(overall: int, risk_factors: list[dict[str, str]]) -> list[dict[str, str]]:
    recommendations = []
    if overall >= 9:
        recommendations.append(
            {
                "priority": "critical",
                "action": "Replace immediately",
                "description": "Unit has exceeded safe operating thresholds. Replace to avoid safety issues and excessive costs.",
            }
        )
    elif overall >= 7:
        recommendations.append(
            {
                "priority": "high",
                "action": "Plan replacement",
                "description": "Schedule replacement within the next 6-12 months and add it to the next fiscal year budget.",
            }
        )
    elif overall >= 5:
        recommendations.append(
            {
                "priority": "medium",
                "action": "Monitor closely",
                "description": "Increase inspection frequency and track maintenance costs. Re-assess in 3 months.",
            }
        )

    categories = {f["category"] for f in risk_factors}
    if "maintenance_overdue" in categories:
        recommendations.append(
            {
                "priority": "high",
                "action": "Complete overdue maintenance",
                "description": "Schedule and complete overdue preventive maintenance immediately.",
            }
        )
    if "repair_frequency" in categories:
        recommendations.append(
            {
                "priority": "medium",
                "action": "Root cause analysis",
                "description": "Investigate frequent repairs to identify systemic issues.",
            }
        )
    if "downtime" in categories:
        recommendations.append(
            {
                "priority": "medium",
                "action": "Improve reliability",
                "description": "Increase preventive maintenance or upgrade components to reduce unplanned downtime.",
            }
        )
    return recommendations


def risk_level(score: int) -> str:
    if score >= 9:
        return "critical"
    if score >= 7:
        return "high"
    if score >= 4:
        return "medium"
    return "low"
