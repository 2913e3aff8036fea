"""
Fleet Workers — Scheduled risk assessment, prediction alerts, snooze expiry.

Schedule: See celery_app.py beat_schedule
"""

import asyncio

import structlog

from db.session import worker_session
from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.fleet.assess_fleet_risk",
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    acks_late=True,
)
def assess_fleet_risk(self):
    """Nightly job: score every in-service forklift and refresh its risk cache."""
    run_id = self.request.id or "manual"
    logger.info("fleet.risk_started", run_id=run_id)

    async def _assess():
        from risk.assessor import assess_fleet

        async with worker_session() as db:
            results = await assess_fleet(db)
        summary = {
            "status": "success",
            "assessed": sum(1 for r in results if r["success"]),
            "failed": sum(1 for r in results if not r["success"]),
            "high_risk": sum(1 for r in results if r["success"] and r["overall_score"] >= 7),
            "run_id": run_id,
        }
        logger.info("fleet.risk_completed", **summary)
        return summary

    try:
        return asyncio.run(_assess())
    except Exception as exc:
        logger.error("fleet.risk_failed", run_id=run_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)


@celery_app.task(
    name="workers.fleet.create_prediction_alerts",
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    acks_late=True,
)
def create_prediction_alerts(self):
    """Daily job: raise lifecycle alerts for critical/high maintenance predictions."""
    run_id = self.request.id or "manual"
    logger.info("fleet.predictions_started", run_id=run_id)

    async def _predict():
        from maintenance.forecaster import create_prediction_alerts as create_alerts

        async with worker_session() as db:
            created = await create_alerts(db)
        return {"status": "success", "alerts_created": len(created), "run_id": run_id}

    try:
        return asyncio.run(_predict())
    except Exception as exc:
        logger.error("fleet.predictions_failed", run_id=run_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)


@celery_app.task(
    name="workers.fleet.reactivate_snoozed_alerts",
    bind=True,
    max_retries=1,
    default_retry_delay=60,
    acks_late=True,
)
def reactivate_snoozed_alerts(self):
    """Return alerts whose snooze window has elapsed to the active state."""

    async def _reactivate():
        from alerts.engine import reactivate_snoozed_alerts as reactivate

        async with worker_session() as db:
            count = await reactivate(db)
        return {"status": "success", "reactivated": count}

    try:
        return asyncio.run(_reactivate())
    except Exception as exc:
        logger.error("fleet.reactivation_failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
