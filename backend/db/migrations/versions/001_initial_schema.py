"""
Initial schema - all 9 fleet tables

Revision ID: 001
Revises: None
Create Date: 2026-10-16
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

OPEN_ALERT_STATUSES = sa.text("status IN ('active', 'acknowledged', 'snoozed')")


def upgrade() -> None:
    # 1. Forklifts
    op.create_table(
        "forklifts",
        sa.Column("forklift_id", sa.String(50), primary_key=True),
        sa.Column("model", sa.String(100)),
        sa.Column("manufacturer", sa.String(100)),
        sa.Column("serial_number", sa.String(100), unique=True),
        sa.Column("year", sa.Integer),
        sa.Column("fuel_type", sa.String(20), nullable=False, server_default="electric"),
        sa.Column("status", sa.String(30), nullable=False, server_default="active"),
        sa.Column("location_name", sa.String(255)),
        sa.Column("current_hours", sa.Float, nullable=False, server_default="0"),
        sa.Column("last_hour_reading", sa.Float, nullable=False, server_default="0"),
        sa.Column("last_hour_reading_date", sa.DateTime),
        sa.Column("last_service_date", sa.Date),
        sa.Column("next_service_date", sa.Date),
        sa.Column("next_service_hours", sa.Float),
        sa.Column("service_interval_hours", sa.Integer, nullable=False, server_default="250"),
        sa.Column("service_interval_days", sa.Integer, nullable=False, server_default="90"),
        sa.Column("purchase_date", sa.Date),
        sa.Column("purchase_price", sa.Float),
        sa.Column("depreciation_rate", sa.Float, nullable=False, server_default="0.15"),
        sa.Column("expected_lifespan_years", sa.Integer, nullable=False, server_default="10"),
        sa.Column("expected_lifespan_hours", sa.Integer, nullable=False, server_default="20000"),
        sa.Column("risk_score", sa.Integer, nullable=False, server_default="1"),
        sa.Column("risk_level", sa.String(20), nullable=False, server_default="low"),
        sa.Column("risk_factors", sa.JSON),
        sa.Column("recommended_action", sa.String(30)),
        sa.Column("last_risk_assessment", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("fuel_type IN ('electric', 'propane', 'diesel', 'gas')", name="ck_forklift_fuel_type"),
        sa.CheckConstraint(
            "status IN ('active', 'maintenance', 'out_of_service', 'retired', 'pending_disposal')",
            name="ck_forklift_status",
        ),
        sa.CheckConstraint("risk_score BETWEEN 1 AND 10", name="ck_forklift_risk_score"),
        sa.CheckConstraint("depreciation_rate >= 0 AND depreciation_rate <= 1", name="ck_forklift_depreciation_rate"),
        sa.CheckConstraint("risk_level IN ('low', 'medium', 'high', 'critical')", name="ck_forklift_risk_level"),
        sa.CheckConstraint(
            "recommended_action IS NULL OR recommended_action IN "
            "('continue', 'monitor', 'plan_replacement', 'replace_immediately')",
            name="ck_forklift_recommended_action",
        ),
    )

    # 2. Hour meter readings
    op.create_table(
        "hour_meter_readings",
        sa.Column("reading_id", sa.Uuid, primary_key=True),
        sa.Column("forklift_id", sa.String(50), sa.ForeignKey("forklifts.forklift_id"), nullable=False),
        sa.Column("reading", sa.Float, nullable=False),
        sa.Column("previous_reading", sa.Float),
        sa.Column("reading_delta", sa.Float),
        sa.Column("source", sa.String(20), nullable=False, server_default="manual"),
        sa.Column("recorded_by", sa.String(255)),
        sa.Column("recorded_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("is_flagged", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("flag_reason", sa.Text),
        sa.Column("flag_severity", sa.String(20)),
        sa.Column("is_corrected", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("corrected_value", sa.Float),
        sa.Column("corrected_by", sa.String(255)),
        sa.Column("corrected_at", sa.DateTime),
        sa.Column("correction_notes", sa.Text),
        sa.Column("is_validated", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("validated_by", sa.String(255)),
        sa.Column("validated_at", sa.DateTime),
        sa.CheckConstraint("source IN ('manual', 'api', 'iot', 'import')", name="ck_reading_source"),
        sa.CheckConstraint(
            "flag_severity IS NULL OR flag_severity IN ('warning', 'error', 'critical')",
            name="ck_reading_flag_severity",
        ),
    )
    op.create_index("ix_readings_forklift_recorded", "hour_meter_readings", ["forklift_id", "recorded_at"])
    op.create_index("ix_readings_flagged", "hour_meter_readings", ["is_flagged"])

    # 3. Maintenance records
    op.create_table(
        "maintenance_records",
        sa.Column("record_id", sa.Uuid, primary_key=True),
        sa.Column("forklift_id", sa.String(50), sa.ForeignKey("forklifts.forklift_id"), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("category", sa.String(30)),
        sa.Column("description", sa.Text),
        sa.Column("work_performed", sa.Text),
        sa.Column("status", sa.String(20), nullable=False, server_default="completed"),
        sa.Column("service_date", sa.Date),
        sa.Column("hours_at_service", sa.Float),
        sa.Column("labor_cost", sa.Float, nullable=False, server_default="0"),
        sa.Column("parts_cost", sa.Float, nullable=False, server_default="0"),
        sa.Column("total_cost", sa.Float, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "type IN ('preventive', 'repair', 'emergency', 'inspection', 'warranty', 'recall')",
            name="ck_maintenance_type",
        ),
        sa.CheckConstraint(
            "category IS NULL OR category IN ('engine', 'transmission', 'hydraulic', 'electrical', 'tires', "
            "'brakes', 'mast', 'battery', 'fuel_system', 'safety', 'general', 'other')",
            name="ck_maintenance_category",
        ),
        sa.CheckConstraint(
            "status IN ('scheduled', 'in_progress', 'completed', 'cancelled', 'deferred')",
            name="ck_maintenance_status",
        ),
    )
    op.create_index("ix_maintenance_forklift_date", "maintenance_records", ["forklift_id", "service_date"])

    # 4. Downtime events
    op.create_table(
        "downtime_events",
        sa.Column("event_id", sa.Uuid, primary_key=True),
        sa.Column("forklift_id", sa.String(50), sa.ForeignKey("forklifts.forklift_id"), nullable=False),
        sa.Column("start_time", sa.DateTime, nullable=False),
        sa.Column("end_time", sa.DateTime),
        sa.Column("duration_hours", sa.Float),
        sa.Column("type", sa.String(20), nullable=False, server_default="unplanned"),
        sa.Column("root_cause", sa.String(30)),
        sa.Column("cost_per_hour_down", sa.Float),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("type IN ('unplanned', 'planned', 'emergency')", name="ck_downtime_type"),
    )
    op.create_index("ix_downtime_forklift_start", "downtime_events", ["forklift_id", "start_time"])

    # 5. Risk assessments (append-only)
    op.create_table(
        "risk_assessments",
        sa.Column("assessment_id", sa.Uuid, primary_key=True),
        sa.Column("forklift_id", sa.String(50), sa.ForeignKey("forklifts.forklift_id"), nullable=False),
        sa.Column("overall_score", sa.Integer, nullable=False),
        sa.Column("age_score", sa.Integer, nullable=False),
        sa.Column("hours_score", sa.Integer, nullable=False),
        sa.Column("maintenance_cost_score", sa.Integer, nullable=False),
        sa.Column("repair_frequency_score", sa.Integer, nullable=False),
        sa.Column("downtime_score", sa.Integer, nullable=False),
        sa.Column("risk_factors", sa.JSON),
        sa.Column("recommendations", sa.JSON),
        sa.Column("repair_vs_replace", sa.String(20), nullable=False),
        sa.Column("replacement_urgency", sa.String(30), nullable=False),
        sa.Column("estimated_remaining_life_months", sa.Integer),
        sa.Column("estimated_remaining_value", sa.Float),
        sa.Column("projected_annual_maintenance_cost", sa.Float),
        sa.Column("projected_downtime_cost", sa.Float),
        sa.Column("replacement_cost_estimate", sa.Float),
        sa.Column("repair_cost_estimate", sa.Float),
        sa.Column("cost_savings_if_replaced", sa.Float),
        sa.Column("roi_if_replaced", sa.Float),
        sa.Column("assessment_method", sa.String(20), nullable=False, server_default="automated"),
        sa.Column("assessed_by", sa.String(255)),
        sa.Column("assessed_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("overall_score BETWEEN 1 AND 10", name="ck_risk_overall_score"),
        sa.CheckConstraint("repair_vs_replace IN ('repair', 'replace', 'monitor')", name="ck_risk_repair_vs_replace"),
        sa.CheckConstraint(
            "replacement_urgency IN ('immediate', 'within_6_months', 'within_1_year', 'within_2_years', 'not_needed')",
            name="ck_risk_replacement_urgency",
        ),
    )
    op.create_index("ix_risk_assessments_forklift_date", "risk_assessments", ["forklift_id", "assessed_at"])

    # 6. Alerts
    op.create_table(
        "alerts",
        sa.Column("alert_id", sa.Uuid, primary_key=True),
        sa.Column("forklift_id", sa.String(50), sa.ForeignKey("forklifts.forklift_id")),
        sa.Column("alert_type", sa.String(30), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False, server_default="medium"),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text),
        sa.Column("context_data", sa.JSON),
        sa.Column("threshold_value", sa.Float),
        sa.Column("actual_value", sa.Float),
        sa.Column("recurrence_key", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("acknowledged_by", sa.String(255)),
        sa.Column("acknowledged_at", sa.DateTime),
        sa.Column("resolved_by", sa.String(255)),
        sa.Column("resolved_at", sa.DateTime),
        sa.Column("resolution_notes", sa.Text),
        sa.Column("snooze_until", sa.DateTime),
        sa.Column("email_sent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("email_sent_at", sa.DateTime),
        sa.Column("sms_sent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("sms_sent_at", sa.DateTime),
        sa.Column("webhook_sent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("webhook_sent_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "alert_type IN ('maintenance_due', 'maintenance_overdue', 'hour_anomaly', 'high_risk', 'downtime', "
            "'cost_threshold', 'service_reminder', 'inspection_due', 'warranty_expiring', 'lifecycle_alert', 'custom')",
            name="ck_alert_type",
        ),
        sa.CheckConstraint("severity IN ('low', 'medium', 'high', 'critical')", name="ck_alert_severity"),
        sa.CheckConstraint(
            "status IN ('active', 'acknowledged', 'snoozed', 'resolved', 'dismissed')",
            name="ck_alert_status",
        ),
    )
    op.create_index("ix_alerts_status_severity", "alerts", ["status", "severity"])
    op.create_index("ix_alerts_forklift", "alerts", ["forklift_id"])
    op.create_index(
        "uq_alerts_open_recurrence_key",
        "alerts",
        ["recurrence_key"],
        unique=True,
        postgresql_where=OPEN_ALERT_STATUSES,
        sqlite_where=OPEN_ALERT_STATUSES,
    )

    # 7. Alert acknowledgments
    op.create_table(
        "alert_acknowledgments",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("alert_id", sa.Uuid, sa.ForeignKey("alerts.alert_id"), nullable=False),
        sa.Column("user_id", sa.String(255)),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("notes", sa.Text),
        sa.Column("snooze_until", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "action IN ('acknowledged', 'resolved', 'snoozed', 'dismissed', 'reactivated')",
            name="ck_alert_ack_action",
        ),
    )

    # 8. Webhooks
    op.create_table(
        "webhooks",
        sa.Column("webhook_id", sa.Uuid, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("url", sa.Text, nullable=False),
        sa.Column("secret", sa.String(255)),
        sa.Column("events", sa.JSON, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("last_triggered_at", sa.DateTime),
        sa.Column("last_status_code", sa.Integer),
        sa.Column("consecutive_failures", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_by", sa.String(255)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # 9. System settings
    op.create_table(
        "system_settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value", sa.Text, nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_index("uq_alerts_open_recurrence_key", table_name="alerts")
    tables = [
        "system_settings",
        "webhooks",
        "alert_acknowledgments",
        "alerts",
        "risk_assessments",
        "downtime_events",
        "maintenance_records",
        "hour_meter_readings",
        "forklifts",
    ]
    for table in tables:
        op.drop_table(table)
