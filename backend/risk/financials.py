"""
Financial projection and repair-vs-replace decision for a risk assessment.

  current value       = price × (1 − depreciation)^age       (declining balance)
  depreciation        clamped to [0, 1]
  trend factor        = 1 + 0.05 × age
  projected costs     = trailing-12-month cost × trend factor
  replacement cost    = price × 1.2
  remaining life      = max(0, (expected life − age) × 12) months

Over min(3, remaining life) years, continuing costs the projected maintenance
and downtime; replacing costs the new unit plus 3% of price per year, less
the trade-in value of the current unit.
"""

from dataclasses import dataclass

from risk.scoring import RiskMetrics

MAINTENANCE_TREND_PER_YEAR = 0.05
REPLACEMENT_PRICE_FACTOR = 1.2
NEW_UNIT_MAINTENANCE_RATE = 0.03
REPAIR_SHARE_OF_MAINTENANCE = 0.6
COMPARISON_YEARS = 3


@dataclass(frozen=True)
class FinancialProjection:
    current_value: int
    projected_annual_maintenance: int
    projected_downtime_cost: int
    projected_repair_cost: int
    replacement_cost: int
    remaining_life_months: int
    savings_if_replaced: int
    roi_if_replaced: int


def _round(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def project_financials(
    metrics: RiskMetrics,
    depreciation_rate: float,
    expected_lifespan_years: float,
) -> FinancialProjection:
    price = metrics.purchase_price
    age = metrics.age_years

    rate = min(max(depreciation_rate, 0.0), 1.0)
    current_value = price * (1 - rate) ** age
    trend = 1 + age * MAINTENANCE_TREND_PER_YEAR
    annual_maintenance = metrics.maintenance_cost_12mo * trend
    downtime_cost = metrics.downtime_cost_12mo * trend
    replacement_cost = price * REPLACEMENT_PRICE_FACTOR
    remaining_months = max(0.0, (expected_lifespan_years - age) * 12)

    years = min(COMPARISON_YEARS, remaining_months / 12)
    continue_cost = (annual_maintenance + downtime_cost) * years
    replace_cost = replacement_cost + price * NEW_UNIT_MAINTENANCE_RATE * years
    savings = continue_cost - replace_cost + current_value

    net_outlay = replacement_cost - current_value
    roi = savings / net_outlay * 100 if savings > 0 and net_outlay > 0 else 0.0

    return FinancialProjection(
        current_value=_round(current_value),
        projected_annual_maintenance=_round(annual_maintenance),
        projected_downtime_cost=_round(downtime_cost),
        projected_repair_cost=_round(annual_maintenance * REPAIR_SHARE_OF_MAINTENANCE),
        replacement_cost=_round(replacement_cost),
        remaining_life_months=_round(remaining_months),
        savings_if_replaced=_round(savings),
        roi_if_replaced=_round(roi),
    )


def determine_repair_vs_replace(overall: int, financials: FinancialProjection) -> tuple[str, str]:
    """Return (decision, replacement_urgency)."""
    if overall >= 9:
        return "replace", "immediate"
    if overall >= 7:
        return ("replace" if financials.savings_if_replaced > 0 else "monitor"), "within_6_months"
    if overall >= 5:
        return "monitor", "within_1_year"
    if overall >= 3:
        return "repair", "within_2_years"
    return "repair", "not_needed"
