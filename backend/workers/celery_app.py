"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging

from core.config import get_settings
from core.logging import configure_logging

settings = get_settings()

celery_app = Celery(
    "fleetpulse",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["workers.notifications", "workers.fleet"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.notifications.*": {"queue": "notifications"},
        "workers.fleet.*": {"queue": "fleet"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        # ── Risk ───────────────────────────────────────────────────
        "assess-fleet-risk-nightly": {
            "task": "workers.fleet.assess_fleet_risk",
            "schedule": crontab(hour=2, minute=0),
            "options": {"queue": "fleet"},
        },
        # ── Predictive Maintenance ─────────────────────────────────
        "create-prediction-alerts-daily": {
            "task": "workers.fleet.create_prediction_alerts",
            "schedule": crontab(hour=3, minute=0),  # After risk assessment
            "options": {"queue": "fleet"},
        },
        # ── Alert Lifecycle ────────────────────────────────────────
        "reactivate-snoozed-alerts-15m": {
            "task": "workers.fleet.reactivate_snoozed_alerts",
            "schedule": crontab(minute="*/15"),
            "options": {"queue": "fleet"},
        },
    },
)


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging()
