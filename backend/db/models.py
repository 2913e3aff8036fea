"""
FleetPulse Database Models

Tables read and written by the fleet health engine.

Tables:
  Equipment inputs:
  1. forklifts               - Equipment snapshot (+ derived risk cache)
  2. hour_meter_readings     - Hour-meter readings with anomaly flags
  3. maintenance_records     - Completed/scheduled service history
  4. downtime_events         - Out-of-service windows

  Engine outputs:
  5. risk_assessments        - Append-only risk snapshots
  6. alerts                  - Deduplicated alert lifecycle
  7. alert_acknowledgments   - Audit trail of alert actions

  Configuration:
  8. webhooks                - Outbound alert subscribers
  9. system_settings         - Key/value feature flags and thresholds
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    event,
    text,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


from sqlalchemy.orm import relationship

from db.session import Base

ALERT_TYPES = (
    "maintenance_due",
    "maintenance_overdue",
    "hour_anomaly",
    "high_risk",
    "downtime",
    "cost_threshold",
    "service_reminder",
    "inspection_due",
    "warranty_expiring",
    "lifecycle_alert",
    "custom",
)
ALERT_SEVERITIES = ("low", "medium", "high", "critical")
# Statuses that still count as "unresolved" for recurrence-key dedup
OPEN_ALERT_STATUSES = ("active", "acknowledged", "snoozed")
CLOSED_ALERT_STATUSES = ("resolved", "dismissed")

_OPEN_STATUS_SQL = "status IN ('active', 'acknowledged', 'snoozed')"

# ─── 1. Forklifts ───────────────────────────────────────────────────────────


class Forklift(Base):
    __tablename__ = "forklifts"

    forklift_id = Column(String(50), primary_key=True)
    model = Column(String(100))
    manufacturer = Column(String(100))
    serial_number = Column(String(100), unique=True)
    year = Column(Integer)
    fuel_type = Column(String(20), nullable=False, default="electric")
    status = Column(String(30), nullable=False, default="active")
    location_name = Column(String(255))

    # Hour meter tracking
    current_hours = Column(Float, nullable=False, default=0.0)
    last_hour_reading = Column(Float, nullable=False, default=0.0)
    last_hour_reading_date = Column(DateTime)

    # Service tracking
    last_service_date = Column(Date)
    next_service_date = Column(Date)
    next_service_hours = Column(Float)
    service_interval_hours = Column(Integer, nullable=False, default=250)
    service_interval_days = Column(Integer, nullable=False, default=90)

    # Financial
    purchase_date = Column(Date)
    purchase_price = Column(Float)
    depreciation_rate = Column(Float, nullable=False, default=0.15)

    # Lifecycle
    expected_lifespan_years = Column(Integer, nullable=False, default=10)
    expected_lifespan_hours = Column(Integer, nullable=False, default=20000)

    # Derived risk cache — rebuilt from the latest RiskAssessment only
    risk_score = Column(Integer, nullable=False, default=1)
    risk_level = Column(String(20), nullable=False, default="low")
    risk_factors = Column(JSON, default=list)
    recommended_action = Column(String(30))
    last_risk_assessment = Column(DateTime)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("fuel_type IN ('electric', 'propane', 'diesel', 'gas')", name="ck_forklift_fuel_type"),
        CheckConstraint(
            "status IN ('active', 'maintenance', 'out_of_service', 'retired', 'pending_disposal')",
            name="ck_forklift_status",
        ),
        CheckConstraint("risk_score BETWEEN 1 AND 10", name="ck_forklift_risk_score"),
        CheckConstraint("depreciation_rate >= 0 AND depreciation_rate <= 1", name="ck_forklift_depreciation_rate"),
        CheckConstraint("risk_level IN ('low', 'medium', 'high', 'critical')", name="ck_forklift_risk_level"),
        CheckConstraint(
            "recommended_action IS NULL OR recommended_action IN "
            "('continue', 'monitor', 'plan_replacement', 'replace_immediately')",
            name="ck_forklift_recommended_action",
        ),
    )

    readings = relationship("HourMeterReading", back_populates="forklift", cascade="all, delete-orphan")
    maintenance_records = relationship("MaintenanceRecord", back_populates="forklift", cascade="all, delete-orphan")
    downtime_events = relationship("DowntimeEvent", back_populates="forklift", cascade="all, delete-orphan")
    risk_assessments = relationship("RiskAssessment", back_populates="forklift", cascade="all, delete-orphan")


# ─── 2. Hour Meter Readings ─────────────────────────────────────────────────


class HourMeterReading(Base):
    __tablename__ = "hour_meter_readings"

    reading_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    forklift_id = Column(String(50), ForeignKey("forklifts.forklift_id"), nullable=False)
    reading = Column(Float, nullable=False)
    previous_reading = Column(Float)
    reading_delta = Column(Float)
    source = Column(String(20), nullable=False, default="manual")
    recorded_by = Column(String(255))
    recorded_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Anomaly detection
    is_flagged = Column(Boolean, nullable=False, default=False)
    flag_reason = Column(Text)
    flag_severity = Column(String(20))

    # Correction (set exactly once by manual review)
    is_corrected = Column(Boolean, nullable=False, default=False)
    corrected_value = Column(Float)
    corrected_by = Column(String(255))
    corrected_at = Column(DateTime)
    correction_notes = Column(Text)

    # Validation
    is_validated = Column(Boolean, nullable=False, default=False)
    validated_by = Column(String(255))
    validated_at = Column(DateTime)

    __table_args__ = (
        Index("ix_readings_forklift_recorded", "forklift_id", "recorded_at"),
        Index("ix_readings_flagged", "is_flagged"),
        CheckConstraint("source IN ('manual', 'api', 'iot', 'import')", name="ck_reading_source"),
        CheckConstraint(
            "flag_severity IS NULL OR flag_severity IN ('warning', 'error', 'critical')",
            name="ck_reading_flag_severity",
        ),
    )

    forklift = relationship("Forklift", back_populates="readings")


# ─── 3. Maintenance Records ─────────────────────────────────────────────────


class MaintenanceRecord(Base):
    __tablename__ = "maintenance_records"

    record_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    forklift_id = Column(String(50), ForeignKey("forklifts.forklift_id"), nullable=False)
    type = Column(String(20), nullable=False)
    category = Column(String(30))
    description = Column(Text)
    work_performed = Column(Text)
    status = Column(String(20), nullable=False, default="completed")
    service_date = Column(Date)
    hours_at_service = Column(Float)
    labor_cost = Column(Float, nullable=False, default=0.0)
    parts_cost = Column(Float, nullable=False, default=0.0)
    total_cost = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_maintenance_forklift_date", "forklift_id", "service_date"),
        CheckConstraint(
            "type IN ('preventive', 'repair', 'emergency', 'inspection', 'warranty', 'recall')",
            name="ck_maintenance_type",
        ),
        CheckConstraint(
            "category IS NULL OR category IN ('engine', 'transmission', 'hydraulic', 'electrical', 'tires', "
            "'brakes', 'mast', 'battery', 'fuel_system', 'safety', 'general', 'other')",
            name="ck_maintenance_category",
        ),
        CheckConstraint(
            "status IN ('scheduled', 'in_progress', 'completed', 'cancelled', 'deferred')",
            name="ck_maintenance_status",
        ),
    )

    forklift = relationship("Forklift", back_populates="maintenance_records")


# ─── 4. Downtime Events ─────────────────────────────────────────────────────


class DowntimeEvent(Base):
    __tablename__ = "downtime_events"

    event_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    forklift_id = Column(String(50), ForeignKey("forklifts.forklift_id"), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime)
    duration_hours = Column(Float)
    type = Column(String(20), nullable=False, default="unplanned")
    root_cause = Column(String(30))
    cost_per_hour_down = Column(Float)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_downtime_forklift_start", "forklift_id", "start_time"),
        CheckConstraint("type IN ('unplanned', 'planned', 'emergency')", name="ck_downtime_type"),
    )

    forklift = relationship("Forklift", back_populates="downtime_events")


# ─── 5. Risk Assessments ────────────────────────────────────────────────────


class RiskAssessment(Base):
    __tablename__ = "risk_assessments"

    assessment_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    forklift_id = Column(String(50), ForeignKey("forklifts.forklift_id"), nullable=False)

    overall_score = Column(Integer, nullable=False)
    age_score = Column(Integer, nullable=False)
    hours_score = Column(Integer, nullable=False)
    maintenance_cost_score = Column(Integer, nullable=False)
    repair_frequency_score = Column(Integer, nullable=False)
    downtime_score = Column(Integer, nullable=False)

    risk_factors = Column(JSON, default=list)
    recommendations = Column(JSON, default=list)

    repair_vs_replace = Column(String(20), nullable=False)
    replacement_urgency = Column(String(30), nullable=False)
    estimated_remaining_life_months = Column(Integer)
    estimated_remaining_value = Column(Float)

    projected_annual_maintenance_cost = Column(Float)
    projected_downtime_cost = Column(Float)
    replacement_cost_estimate = Column(Float)
    repair_cost_estimate = Column(Float)
    cost_savings_if_replaced = Column(Float)
    roi_if_replaced = Column(Float)

    assessment_method = Column(String(20), nullable=False, default="automated")
    assessed_by = Column(String(255))
    assessed_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_risk_assessments_forklift_date", "forklift_id", "assessed_at"),
        CheckConstraint("overall_score BETWEEN 1 AND 10", name="ck_risk_overall_score"),
        CheckConstraint("repair_vs_replace IN ('repair', 'replace', 'monitor')", name="ck_risk_repair_vs_replace"),
        CheckConstraint(
            "replacement_urgency IN ('immediate', 'within_6_months', 'within_1_year', 'within_2_years', 'not_needed')",
            name="ck_risk_replacement_urgency",
        ),
    )

    forklift = relationship("Forklift", back_populates="risk_assessments")


@event.listens_for(RiskAssessment, "before_update")
def _reject_assessment_update(mapper, connection, target):
    raise ValueError("risk_assessments rows are append-only")


# ─── 6. Alerts ──────────────────────────────────────────────────────────────


class Alert(Base):
    __tablename__ = "alerts"

    alert_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    forklift_id = Column(String(50), ForeignKey("forklifts.forklift_id"))
    alert_type = Column(String(30), nullable=False)
    severity = Column(String(20), nullable=False, default="medium")
    title = Column(String(255), nullable=False)
    message = Column(Text)
    context_data = Column(JSON, default=dict)
    threshold_value = Column(Float)
    actual_value = Column(Float)
    recurrence_key = Column(String(255), nullable=False)

    status = Column(String(20), nullable=False, default="active")
    acknowledged_by = Column(String(255))
    acknowledged_at = Column(DateTime)
    resolved_by = Column(String(255))
    resolved_at = Column(DateTime)
    resolution_notes = Column(Text)
    snooze_until = Column(DateTime)

    # Notification tracking
    email_sent = Column(Boolean, nullable=False, default=False)
    email_sent_at = Column(DateTime)
    sms_sent = Column(Boolean, nullable=False, default=False)
    sms_sent_at = Column(DateTime)
    webhook_sent = Column(Boolean, nullable=False, default=False)
    webhook_sent_at = Column(DateTime)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_alerts_status_severity", "status", "severity"),
        Index("ix_alerts_forklift", "forklift_id"),
        # At most one unresolved alert per recurrence key
        Index(
            "uq_alerts_open_recurrence_key",
            "recurrence_key",
            unique=True,
            postgresql_where=text(_OPEN_STATUS_SQL),
            sqlite_where=text(_OPEN_STATUS_SQL),
        ),
        CheckConstraint(
            "alert_type IN (" + ", ".join(f"'{t}'" for t in ALERT_TYPES) + ")",
            name="ck_alert_type",
        ),
        CheckConstraint("severity IN ('low', 'medium', 'high', 'critical')", name="ck_alert_severity"),
        CheckConstraint(
            "status IN ('active', 'acknowledged', 'snoozed', 'resolved', 'dismissed')",
            name="ck_alert_status",
        ),
    )

    acknowledgments = relationship("AlertAcknowledgment", back_populates="alert", cascade="all, delete-orphan")

    @property
    def is_active(self) -> bool:
        return self.status in ("active", "acknowledged")

    @property
    def is_acknowledged(self) -> bool:
        return self.acknowledged_at is not None

    @property
    def is_resolved(self) -> bool:
        return self.status in CLOSED_ALERT_STATUSES


# ─── 7. Alert Acknowledgments ───────────────────────────────────────────────


class AlertAcknowledgment(Base):
    __tablename__ = "alert_acknowledgments"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    alert_id = Column(GUID(), ForeignKey("alerts.alert_id"), nullable=False)
    user_id = Column(String(255))
    action = Column(String(20), nullable=False)
    notes = Column(Text)
    snooze_until = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "action IN ('acknowledged', 'resolved', 'snoozed', 'dismissed', 'reactivated')",
            name="ck_alert_ack_action",
        ),
    )

    alert = relationship("Alert", back_populates="acknowledgments")


# ─── 8. Webhooks ────────────────────────────────────────────────────────────


class Webhook(Base):
    __tablename__ = "webhooks"

    webhook_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    url = Column(Text, nullable=False)
    secret = Column(String(255))
    events = Column(JSON, nullable=False, default=lambda: ["all"])
    is_active = Column(Boolean, nullable=False, default=True)
    last_triggered_at = Column(DateTime)
    last_status_code = Column(Integer)
    consecutive_failures = Column(Integer, nullable=False, default=0)
    created_by = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


# ─── 9. System Settings ─────────────────────────────────────────────────────


class SystemSetting(Base):
    __tablename__ = "system_settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    description = Column(Text)
    category = Column(String(50), nullable=False, default="general")
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
