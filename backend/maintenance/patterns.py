"""
Failure Pattern Matcher — keyword signatures in maintenance history.

Each pattern lists the indicators that tend to precede a larger failure. A
matcher decides which indicators appear in the unit's recent completed
maintenance records; the pattern fires once at least two thirds of its
indicators are present.

Two matchers are provided:
  KeywordPresenceMatcher  — indicator found anywhere in the window (default)
  OrderedSequenceMatcher  — indicators must appear in time order
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Protocol, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import ForkliftNotFoundError
from db.models import Forklift, MaintenanceRecord

logger = structlog.get_logger()

MATCH_RATIO = 0.66
MIN_RECORDS = 2


@dataclass(frozen=True)
class FailurePattern:
    name: str
    indicators: tuple[str, ...]
    prediction: str
    confidence: float
    urgency: str
    lookahead_days: int

    @property
    def required_matches(self) -> int:
        return math.ceil(len(self.indicators) * MATCH_RATIO)


FAILURE_PATTERNS: tuple[FailurePattern, ...] = (
    FailurePattern(
        name="hydraulic_system_failure",
        indicators=("hydraulic_leak", "hydraulic_pressure", "hydraulic_noise"),
        prediction="Hydraulic pump failure likely",
        confidence=0.85,
        urgency="high",
        lookahead_days=30,
    ),
    FailurePattern(
        name="transmission_failure",
        indicators=("transmission_slip", "transmission_noise", "drive_hesitation"),
        prediction="Transmission failure imminent",
        confidence=0.80,
        urgency="critical",
        lookahead_days=14,
    ),
    FailurePattern(
        name="battery_degradation",
        indicators=("reduced_runtime", "slow_charging", "capacity_loss"),
        prediction="Battery replacement needed soon",
        confidence=0.90,
        urgency="medium",
        lookahead_days=60,
    ),
    FailurePattern(
        name="brake_system_wear",
        indicators=("brake_noise", "increased_stopping_distance", "brake_pedal_soft"),
        prediction="Brake system overhaul required",
        confidence=0.88,
        urgency="high",
        lookahead_days=21,
    ),
    FailurePattern(
        name="mast_chain_failure",
        indicators=("chain_noise", "uneven_lifting", "chain_stretch"),
        prediction="Mast chain replacement needed",
        confidence=0.82,
        urgency="high",
        lookahead_days=30,
    ),
)


@dataclass(frozen=True)
class MaintenanceNote:
    """Searchable text of one completed maintenance record."""

    service_date: date | None
    text: str


@dataclass(frozen=True)
class PatternMatch:
    pattern_name: str
    prediction: str
    confidence: int
    urgency: str
    matched_indicators: list[str]
    total_indicators: int
    recommended_action: str
    estimated_time_to_failure: str


def _keyword(indicator: str) -> str:
    return indicator.lower().replace("_", " ")


class FailurePatternMatcher(Protocol):
    def match(self, pattern: FailurePattern, notes: Sequence[MaintenanceNote]) -> list[str]:
        """Return the pattern indicators found in the notes."""
        ...


class KeywordPresenceMatcher:
    """Indicator matches if it appears in any note, regardless of order."""

    def match(self, pattern: FailurePattern, notes: Sequence[MaintenanceNote]) -> list[str]:
        return [ind for ind in pattern.indicators if any(_keyword(ind) in note.text for note in notes)]


class OrderedSequenceMatcher:
    """
    Indicators must appear in chronological order: each one is searched for
    only in notes at or after the note where the previous match was found.
    An indicator that is missing is skipped without moving the cursor.
    """

    def match(self, pattern: FailurePattern, notes: Sequence[MaintenanceNote]) -> list[str]:
        ordered = sorted(notes, key=lambda n: n.service_date or date.min)
        cursor = 0
        matched = []
        for ind in pattern.indicators:
            keyword = _keyword(ind)
            for idx in range(cursor, len(ordered)):
                if keyword in ordered[idx].text:
                    matched.append(ind)
                    cursor = idx
                    break
        return matched


def match_patterns(
    notes: Sequence[MaintenanceNote],
    matcher: FailurePatternMatcher | None = None,
    patterns: Sequence[FailurePattern] = FAILURE_PATTERNS,
) -> list[PatternMatch]:
    if len(notes) < MIN_RECORDS:
        return []
    matcher = matcher or KeywordPresenceMatcher()

    found = []
    for pattern in patterns:
        matched = matcher.match(pattern, notes)
        if len(matched) < pattern.required_matches:
            continue
        total = len(pattern.indicators)
        found.append(
            PatternMatch(
                pattern_name=pattern.name,
                prediction=pattern.prediction,
                confidence=round(pattern.confidence * len(matched) / total * 100),
                urgency=pattern.urgency,
                matched_indicators=matched,
                total_indicators=total,
                recommended_action=f"Schedule inspection within {pattern.lookahead_days} days",
                estimated_time_to_failure=f"{pattern.lookahead_days} days",
            )
        )
    return found


def note_from_record(record: MaintenanceRecord) -> MaintenanceNote:
    text = f"{record.description or ''} {record.work_performed or ''} {record.category or ''}"
    return MaintenanceNote(service_date=record.service_date, text=text.lower())


async def detect_failure_patterns(
    db: AsyncSession,
    forklift_id: str,
    lookback_days: int = 180,
    matcher: FailurePatternMatcher | None = None,
    today: date | None = None,
) -> list[PatternMatch]:
    if await db.get(Forklift, forklift_id) is None:
        raise ForkliftNotFoundError(forklift_id)

    today = today or datetime.utcnow().date()
    result = await db.execute(
        select(MaintenanceRecord)
        .where(
            MaintenanceRecord.forklift_id == forklift_id,
            MaintenanceRecord.status == "completed",
            MaintenanceRecord.service_date >= today - timedelta(days=lookback_days),
        )
        .order_by(MaintenanceRecord.service_date.desc())
    )
    notes = [note_from_record(r) for r in result.scalars().all()]
    matches = match_patterns(notes, matcher)
    if matches:
        logger.info(
            "patterns.detected",
            forklift_id=forklift_id,
            patterns=[m.pattern_name for m in matches],
        )
    return matches
