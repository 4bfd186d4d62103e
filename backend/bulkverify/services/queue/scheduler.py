"""APScheduler integration - background jobs for the verification queue."""
from datetime import datetime, timedelta, timezone
from typing import Optional
import structlog
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from bulkverify.core.config import settings
from bulkverify.core.errors import ValidationError
from bulkverify.db.base import SessionLocal
from bulkverify.db.models.rate_limit import VerificationMode
from bulkverify.db.modes import parse_mode
from bulkverify.services.adapters.email_validation import get_verification_adapter
from bulkverify.services.queue import rate_limiter
from bulkverify.services.queue.batch_creator import run_batch_creation
from bulkverify.services.queue.status_checker import StatusCheckJob, run_status_check, run_status_sweep
from bulkverify.services.queue.stuck_batch_cleanup import run_stuck_batch_cleanup

logger = structlog.get_logger()
_scheduler = None
_job_scheduler = None
_adapter = None


class JobScheduler:
    """Periodic and one-off delayed jobs on top of a BackgroundScheduler."""

    def __init__(self, scheduler: BackgroundScheduler):
        self.scheduler = scheduler

    def add_periodic(self, job_id: str, func, seconds: int, kwargs: Optional[dict] = None, name: Optional[str] = None):
        """Register (or replace) a fixed-interval job under a stable id."""
        return self.scheduler.add_job(
            func,
            IntervalTrigger(seconds=seconds),
            id=job_id,
            name=name or job_id,
            kwargs=kwargs or {},
            replace_existing=True,
        )

    def schedule_once(self, func, delay_seconds: int, kwargs: Optional[dict] = None, job_id: Optional[str] = None):
        """Run ``func`` once after ``delay_seconds``."""
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
        # A late one-off job still runs; the single worker thread may be busy.
        return self.scheduler.add_job(
            func,
            DateTrigger(run_date=run_date),
            id=job_id,
            kwargs=kwargs or {},
            replace_existing=job_id is not None,
            misfire_grace_time=None,
        )


def get_scheduler():
    global _scheduler
    return _scheduler


def get_job_scheduler() -> Optional[JobScheduler]:
    global _job_scheduler
    return _job_scheduler


def register_jobs(job_scheduler) -> None:
    """Register every periodic queue job."""
    for mode in VerificationMode:
        job_scheduler.add_periodic(
            f"batch_creator_{mode.value}",
            job_batch_creator,
            settings.BATCH_CREATOR_INTERVAL_SECONDS,
            kwargs={"check_type": mode.value},
            name=f"Batch Creator ({mode.value})",
        )
        job_scheduler.add_periodic(
            f"status_checker_{mode.value}",
            job_status_sweep,
            settings.STATUS_SWEEP_INTERVAL_SECONDS,
            kwargs={"check_type": mode.value},
            name=f"Status Sweep ({mode.value})",
        )
    job_scheduler.add_periodic(
        "stuck_batch_cleanup",
        job_stuck_batch_cleanup,
        settings.STUCK_BATCH_CLEANUP_INTERVAL_SECONDS,
        name="Stuck Batch Cleanup",
    )
    job_scheduler.add_periodic(
        "rate_limit_cleanup",
        job_rate_limit_cleanup,
        settings.RATE_LIMIT_CLEANUP_INTERVAL_SECONDS,
        name="Rate Limit Cleanup",
    )


def init_scheduler():
    global _scheduler, _job_scheduler
    try:
        _scheduler = BackgroundScheduler(
            timezone="UTC",
            executors={"default": ThreadPoolExecutor(1)},
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        _job_scheduler = JobScheduler(_scheduler)
        register_jobs(_job_scheduler)

        _scheduler.start()
        logger.info("Queue scheduler started", jobs=len(_scheduler.get_jobs()))
        return _scheduler
    except Exception as e:
        logger.error("Failed to start scheduler", error=str(e))
        _scheduler = None
        _job_scheduler = None
        return None


def shutdown_scheduler():
    global _scheduler, _job_scheduler
    if _scheduler:
        _scheduler.shutdown(wait=False)
        logger.info("Queue scheduler stopped")
        _scheduler = None
        _job_scheduler = None


def _get_db():
    return SessionLocal()


def _get_adapter():
    # One instance per process so the mock provider keeps its batches.
    global _adapter
    if _adapter is None:
        _adapter = get_verification_adapter()
    return _adapter


def job_batch_creator(check_type: str):
    mode = parse_mode(check_type)
    if mode is None:
        logger.error("Batch creator got an unknown mode", check_type=check_type)
        return
    db = _get_db()
    try:
        run_batch_creation(db, _get_adapter(), get_job_scheduler(), mode)
    except Exception as e:
        logger.error("Batch creator failed", mode=mode.value, error=str(e))
    finally:
        db.close()


def job_status_check(**payload):
    try:
        job = StatusCheckJob.from_payload(payload)
    except ValidationError as e:
        logger.error("Dropping status check job", error=e.message)
        return
    db = _get_db()
    try:
        outcome = run_status_check(db, _get_adapter(), get_job_scheduler(), job)
        logger.debug(
            "Status check finished",
            mode=job.mode.value,
            bouncer_batch_id=job.bouncer_batch_id,
            attempt=job.attempt,
            outcome=outcome.value,
        )
    except Exception as e:
        logger.error(
            "Status check failed",
            mode=job.mode.value,
            bouncer_batch_id=job.bouncer_batch_id,
            attempt=job.attempt,
            error=str(e),
        )
    finally:
        db.close()


def job_status_sweep(check_type: str):
    mode = parse_mode(check_type)
    if mode is None:
        logger.error("Status sweep got an unknown mode", check_type=check_type)
        return
    db = _get_db()
    try:
        counters = run_status_sweep(db, _get_adapter(), mode)
        logger.info("Status sweep complete", mode=mode.value, result=counters)
    except Exception as e:
        logger.error("Status sweep failed", mode=mode.value, error=str(e))
    finally:
        db.close()


def job_stuck_batch_cleanup():
    logger.info("Running stuck batch cleanup")
    db = _get_db()
    try:
        result = run_stuck_batch_cleanup(db)
        logger.info("Stuck batch cleanup complete", result=result)
    except Exception as e:
        logger.error("Stuck batch cleanup failed", error=str(e))
    finally:
        db.close()


def job_rate_limit_cleanup():
    db = _get_db()
    try:
        result = rate_limiter.prune(db)
        if result.ok:
            logger.info("Rate limit records pruned", deleted=result.value)
    except Exception as e:
        logger.error("Rate limit cleanup failed", error=str(e))
    finally:
        db.close()


def get_scheduler_status() -> dict:
    if not _scheduler:
        return {"running": False, "jobs": []}
    jobs = []
    for job in _scheduler.get_jobs():
        jobs.append({"id": job.id, "name": job.name, "next_run": str(job.next_run_time) if job.next_run_time else None})
    return {"running": _scheduler.running, "jobs": jobs}
