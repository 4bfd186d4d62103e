"""Provider batch status polling and result download.

Two entry points share one check routine:

- ``run_status_check`` handles a single batch for a self-rescheduling poller
  job whose state lives entirely in the job payload (``StatusCheckJob``).
- ``run_status_sweep`` lists every active batch of a mode and checks each
  one; it is the backstop for lost poller jobs and skipped downloads.

Both converge on the gateway's ingestion, which only ever applies a batch once.
"""
from dataclasses import dataclass, replace
from datetime import timedelta
from enum import Enum
from typing import Dict, Any, Optional
import structlog
from sqlalchemy.orm import Session

from bulkverify.core.config import settings
from bulkverify.core.errors import (
    BouncerError,
    AuthError,
    QuotaExceededError,
    RateLimitedError,
    ValidationError,
)
from bulkverify.db.base import utcnow
from bulkverify.db.models.rate_limit import VerificationMode, RequestType
from bulkverify.db.models.bouncer_batch import ACTIVE_BOUNCER_BATCH_STATUSES
from bulkverify.db.modes import parse_mode
from bulkverify.services.adapters.base import BulkVerificationAdapter
from bulkverify.services.queue import gateway, rate_limiter

logger = structlog.get_logger()


class CheckOutcome(str, Enum):
    """What one check of a provider batch ended in."""
    COMPLETED = "completed"
    IN_PROGRESS = "in_progress"
    RATE_LIMITED = "rate_limited"
    DOWNLOAD_DEFERRED = "download_deferred"
    FAILED = "failed"
    HALTED = "halted"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StatusCheckJob:
    """Poller state carried in the scheduler payload."""
    bouncer_batch_id: str
    mode: VerificationMode
    attempt: int = 1
    max_attempts: int = settings.STATUS_CHECK_MAX_ATTEMPTS

    def next_attempt(self) -> "StatusCheckJob":
        return replace(self, attempt=self.attempt + 1)

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def to_payload(self) -> Dict[str, Any]:
        return {
            "bouncer_batch_id": self.bouncer_batch_id,
            "check_type": VerificationMode(self.mode).value,
            "attempt": self.attempt,
            "max_attempts": self.max_attempts,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "StatusCheckJob":
        mode = parse_mode(payload.get("check_type"))
        if mode is None or not payload.get("bouncer_batch_id"):
            raise ValidationError(f"Invalid status check payload: {payload}")
        return cls(
            bouncer_batch_id=payload["bouncer_batch_id"],
            mode=mode,
            attempt=int(payload.get("attempt", 1)),
            max_attempts=int(payload.get("max_attempts", settings.STATUS_CHECK_MAX_ATTEMPTS)),
        )


def schedule_status_check(scheduler, job: StatusCheckJob, delay_seconds: Optional[int] = None) -> None:
    """Queue a one-off poller run for ``job``."""
    if scheduler is None:
        logger.warning("No scheduler available, relying on status sweep", bouncer_batch_id=job.bouncer_batch_id)
        return
    from bulkverify.services.queue.scheduler import job_status_check

    delay = settings.STATUS_CHECK_DELAY_SECONDS if delay_seconds is None else delay_seconds
    scheduler.schedule_once(
        job_status_check,
        delay,
        kwargs=job.to_payload(),
        job_id=f"status_check_{VerificationMode(job.mode).value}_{job.bouncer_batch_id}",
    )


def _provider_call(db: Session, mode: VerificationMode, request_type: RequestType, func, *args):
    """Call the provider and count the request against the rate limit."""
    try:
        result = func(mode, *args)
    except ValidationError:
        raise
    except BouncerError:
        rate_limiter.record(db, mode, request_type)
        raise
    rate_limiter.record(db, mode, request_type)
    return result


def check_provider_batch(
    db: Session,
    adapter: BulkVerificationAdapter,
    mode: VerificationMode,
    bouncer_batch_id: str,
) -> CheckOutcome:
    """Poll one provider batch and ingest its results once it completes."""
    log = logger.bind(mode=VerificationMode(mode).value, bouncer_batch_id=bouncer_batch_id)

    status = gateway.get_provider_batch_status(db, mode, bouncer_batch_id)
    if not status.ok:
        return CheckOutcome.SKIPPED
    if status.value not in ACTIVE_BOUNCER_BATCH_STATUSES:
        log.info("Provider batch no longer active", status=status.value)
        return CheckOutcome.SKIPPED

    allowed, _ = rate_limiter.can_proceed(db, mode, RequestType.CHECK_STATUS)
    if not allowed:
        return CheckOutcome.RATE_LIMITED

    try:
        progress = _provider_call(db, mode, RequestType.CHECK_STATUS, adapter.poll_status, bouncer_batch_id)
    except RateLimitedError as e:
        log.warning("Provider rate limited status check", error=e.message)
        return CheckOutcome.RATE_LIMITED
    except (AuthError, QuotaExceededError) as e:
        log.critical("Provider account problem, status checks halted", error=e.message, status_code=e.status_code)
        return CheckOutcome.HALTED
    except BouncerError as e:
        log.error("Status check failed", error=e.message, status_code=e.status_code)
        gateway.mark_provider_batch_failed(db, bouncer_batch_id, mode)
        return CheckOutcome.FAILED

    gateway.update_provider_batch_progress(db, mode, bouncer_batch_id, progress.processed)
    if not progress.completed:
        log.info("Provider batch still processing", processed=progress.processed)
        return CheckOutcome.IN_PROGRESS

    allowed, _ = rate_limiter.can_proceed(db, mode, RequestType.DOWNLOAD_RESULTS)
    if not allowed:
        # Batch stays active, the sweep downloads it later.
        log.warning("Download deferred by rate limit")
        return CheckOutcome.DOWNLOAD_DEFERRED

    try:
        results = _provider_call(db, mode, RequestType.DOWNLOAD_RESULTS, adapter.download_results, bouncer_batch_id)
    except RateLimitedError as e:
        log.warning("Provider rate limited download", error=e.message)
        return CheckOutcome.DOWNLOAD_DEFERRED
    except (AuthError, QuotaExceededError) as e:
        log.critical("Provider account problem, download halted", error=e.message, status_code=e.status_code)
        return CheckOutcome.HALTED
    except BouncerError as e:
        log.error("Result download failed", error=e.message, status_code=e.status_code)
        gateway.mark_provider_batch_failed(db, bouncer_batch_id, mode)
        return CheckOutcome.FAILED

    ingested = gateway.ingest_results(db, bouncer_batch_id, results, mode)
    if not ingested.ok:
        log.error("Result ingestion failed", error=ingested.error.message)
        gateway.mark_provider_batch_failed(db, bouncer_batch_id, mode)
        return CheckOutcome.FAILED

    log.info("Provider batch completed", downloaded=len(results), processed=ingested.value)
    return CheckOutcome.COMPLETED


def run_status_check(
    db: Session,
    adapter: BulkVerificationAdapter,
    scheduler,
    job: StatusCheckJob,
) -> CheckOutcome:
    """
    Run one poller step and schedule the next one.

    Transitions:
    - rate limited: same attempt again after the delay
    - in progress: next attempt, or failed once max_attempts is reached
    - completed, failed, halted, skipped, deferred download: stop
    """
    outcome = check_provider_batch(db, adapter, job.mode, job.bouncer_batch_id)

    if outcome == CheckOutcome.RATE_LIMITED:
        schedule_status_check(scheduler, job)
    elif outcome == CheckOutcome.IN_PROGRESS:
        if job.exhausted:
            logger.error(
                "Provider batch exceeded status check attempts",
                mode=VerificationMode(job.mode).value,
                bouncer_batch_id=job.bouncer_batch_id,
                attempts=job.attempt,
            )
            gateway.mark_provider_batch_failed(db, job.bouncer_batch_id, job.mode)
            return CheckOutcome.FAILED
        schedule_status_check(scheduler, job.next_attempt())

    return outcome


def run_status_sweep(db: Session, adapter: BulkVerificationAdapter, mode: VerificationMode) -> Dict[str, int]:
    """
    Check every active provider batch of a mode, oldest first.

    Poller jobs live in memory and are lost on restart, so the sweep also
    enforces the poller's lifetime: a batch older than
    PROVIDER_BATCH_MAX_AGE_SECONDS is marked failed without polling.
    """
    counters = {outcome.value: 0 for outcome in CheckOutcome}
    counters["errors"] = 0

    active = gateway.get_active_provider_batches(db, mode)
    if not active.ok:
        logger.error("Status sweep could not list batches", mode=VerificationMode(mode).value)
        counters["errors"] += 1
        return counters

    expires_before = utcnow() - timedelta(seconds=settings.PROVIDER_BATCH_MAX_AGE_SECONDS)
    batches = [(batch.bouncer_batch_id, batch.created_at) for batch in active.value]

    for bouncer_batch_id, created_at in batches:
        if created_at < expires_before:
            logger.error(
                "Provider batch exceeded its polling lifetime",
                mode=VerificationMode(mode).value,
                bouncer_batch_id=bouncer_batch_id,
                created_at=created_at.isoformat(),
            )
            expired = gateway.mark_provider_batch_failed(db, bouncer_batch_id, mode)
            counters["failed" if expired.ok else "errors"] += 1
            continue

        try:
            outcome = check_provider_batch(db, adapter, mode, bouncer_batch_id)
        except Exception as e:
            db.rollback()
            logger.error(
                "Status sweep failed for batch",
                mode=VerificationMode(mode).value,
                bouncer_batch_id=bouncer_batch_id,
                error=str(e),
            )
            counters["errors"] += 1
            continue
        counters[outcome.value] += 1
        if outcome == CheckOutcome.HALTED:
            break

    return counters
