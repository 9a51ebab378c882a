"""Background scheduler for the daily payment reconciliation sweep."""

import logging
from typing import List

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.core.audit import write_audit_log
from app.core.config import settings
from app.db.base import SessionLocal
from app.models.payment import PaymentRecord
from app.models.user import User, UserRoleEnum
from app.services.reconciliation import reconcile_records

logger = logging.getLogger(__name__)

scheduler: AsyncIOScheduler | None = None

JOB_ID = "reconcile_payments"


def _describe_failed(db, record_ids) -> List[dict]:
    if not record_ids:
        return []
    records = db.query(PaymentRecord).filter(PaymentRecord.id.in_(record_ids)).all()
    return [
        {
            "member_name": record.member.name,
            "month": record.month,
            "year": record.year,
            "amount": float(record.amount),
        }
        for record in records
    ]


def run_reconciliation_sweep() -> dict:
    """Reconcile every payment record and email treasurers about new failures."""
    db = SessionLocal()
    try:
        result = reconcile_records(db)
        if result["failed"] or result["recovered"]:
            write_audit_log(
                None, "RECONCILIATION_SWEEP",
                f"failed={len(result['failed'])} recovered={len(result['recovered'])} errors={result['errors']}",
            )

        failed_records = _describe_failed(db, result["failed"])
        if not failed_records:
            return result

        # Collect all treasurer emails
        treasurers = db.query(User).filter(
            User.role == UserRoleEnum.TREASURER,
            User.is_active.is_(True),
        ).all()
        treasurer_emails = [t.email for t in treasurers if t.email]

        if treasurer_emails:
            from app.core.email import send_reconciliation_report
            send_reconciliation_report(to_emails=treasurer_emails, failed_records=failed_records)
        return result
    except Exception:
        db.rollback()
        logger.exception("Error in reconciliation sweep")
        return {"failed": [], "recovered": [], "errors": 1}
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Scheduler lifecycle helpers
# ---------------------------------------------------------------------------

def start_scheduler() -> None:
    """Create and start the background scheduler; also sweeps once right away."""
    global scheduler
    hour, minute = settings.RECONCILIATION_HOUR, settings.RECONCILIATION_MINUTE

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        run_reconciliation_sweep,
        trigger=CronTrigger(hour=hour, minute=minute),
        id=JOB_ID,
        name="Daily payment reconciliation",
        replace_existing=True,
    )
    # Catch up on deadlines that passed while the server was down
    scheduler.add_job(
        run_reconciliation_sweep,
        id=f"{JOB_ID}_startup",
        name="Startup payment reconciliation",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Background scheduler started; daily reconciliation at %02d:%02d", hour, minute)


def stop_scheduler() -> None:
    """Shut down the background scheduler gracefully."""
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Background scheduler stopped")
        scheduler = None


def reschedule_jobs(hour: int, minute: int = 0) -> None:
    """Move the daily sweep to a new time of day at runtime."""
    if not scheduler or not scheduler.running:
        raise RuntimeError("Scheduler is not running")
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError("Hour must be 0-23 and minute 0-59")

    scheduler.reschedule_job(JOB_ID, trigger=CronTrigger(hour=hour, minute=minute))
    logger.info("Reconciliation rescheduled to %02d:%02d", hour, minute)


def get_scheduler_status() -> dict:
    """Return current scheduler state for the status API."""
    if not scheduler or not scheduler.running:
        return {"running": False, "jobs": []}

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
        })

    return {
        "running": True,
        "jobs": jobs,
    }
