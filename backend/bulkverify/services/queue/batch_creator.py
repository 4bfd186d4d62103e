"""Batch creator: packs backlog emails into provider batches."""
from typing import Dict, Any
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
from bulkverify.db.models.rate_limit import VerificationMode, RequestType
from bulkverify.services.adapters.base import BulkVerificationAdapter
from bulkverify.services.queue import gateway, rate_limiter
from bulkverify.services.queue.status_checker import StatusCheckJob, schedule_status_check

logger = structlog.get_logger()


def run_batch_creation(
    db: Session,
    adapter: BulkVerificationAdapter,
    scheduler,
    mode: VerificationMode,
) -> Dict[str, Any]:
    """
    Run one batch creator tick for a mode.

    Steps:
    1. Read available capacity (a failed read stops the tick)
    2. Check the create_batch rate limit
    3. For each free slot: collect up to BATCH_SIZE backlog emails (oldest
       submissions first), submit them, record the assignment and schedule
       the first status check
    4. Re-check the rate limit before each further slot
    """
    mode = VerificationMode(mode)
    log = logger.bind(mode=mode.value)
    counters = {"submitted": 0, "emails": 0, "errors": 0, "orphaned": 0}

    capacity = gateway.count_active_batches(db, mode)
    if not capacity.ok:
        log.error("Batch creator could not read capacity", error=capacity.error.message)
        counters["errors"] += 1
        return counters

    available = capacity.value.available_capacity
    if available == 0:
        log.debug("No batch capacity available", active=capacity.value.active_count)
        return counters

    for slot in range(available):
        allowed, current = rate_limiter.can_proceed(db, mode, RequestType.CREATE_BATCH)
        if not allowed:
            log.info("Batch creation paused by rate limit", current=current, slot=slot)
            break

        backlog = gateway.collect_backlog_emails(db, mode, settings.BATCH_SIZE)
        if not backlog.ok:
            counters["errors"] += 1
            break
        if not backlog.value:
            break

        # The same address can be linked from several user batches.
        emails = list(dict.fromkeys(item.email_stripped for item in backlog.value))

        try:
            bouncer_batch_id = adapter.submit_batch(mode, emails)
        except ValidationError as e:
            log.error("Batch rejected before submission", error=e.message)
            counters["errors"] += 1
            continue
        except (RateLimitedError, AuthError, QuotaExceededError) as e:
            rate_limiter.record(db, mode, RequestType.CREATE_BATCH)
            if isinstance(e, RateLimitedError):
                log.warning("Provider rate limited batch creation", error=e.message)
            else:
                log.critical("Provider account problem, batch creation halted", error=e.message, status_code=e.status_code)
            counters["errors"] += 1
            break
        except BouncerError as e:
            rate_limiter.record(db, mode, RequestType.CREATE_BATCH)
            log.error("Batch submission failed", error=e.message, status_code=e.status_code, emails=len(emails))
            counters["errors"] += 1
            continue

        rate_limiter.record(db, mode, RequestType.CREATE_BATCH)

        assignments = gateway.group_assignments(backlog.value)
        assigned = gateway.assign_provider_batch(db, bouncer_batch_id, assignments, mode)
        if not assigned.ok:
            # Submitted but untracked: nothing will ever poll this batch.
            log.critical(
                "Orphaned provider batch, assignment failed after submission",
                bouncer_batch_id=bouncer_batch_id,
                emails=len(emails),
                user_batches=[a.user_batch_id for a in assignments],
                error=assigned.error.message,
            )
            counters["orphaned"] += 1
            # The emails are still unlinked; another slot would submit them again.
            break

        schedule_status_check(scheduler, StatusCheckJob(bouncer_batch_id=bouncer_batch_id, mode=mode))
        counters["submitted"] += 1
        counters["emails"] += len(emails)

    if counters["submitted"]:
        log.info("Batch creator tick complete", **counters)
    return counters
