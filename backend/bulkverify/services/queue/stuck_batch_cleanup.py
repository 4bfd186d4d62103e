"""Stuck user batch reconciliation."""
from typing import Dict, Any, Iterable, Optional
import structlog
from sqlalchemy.orm import Session

from bulkverify.core.config import settings
from bulkverify.db.models.rate_limit import VerificationMode
from bulkverify.services.queue import gateway

logger = structlog.get_logger()


def release_failed_batches(db: Session, mode: VerificationMode) -> int:
    """Release every failed provider batch that still holds emails."""
    failed = gateway.list_releasable_failed_batches(db, mode)
    if not failed.ok:
        return 0

    released = 0
    for bouncer_batch_id in failed.value:
        result = gateway.release_failed_provider_batch(db, mode, bouncer_batch_id)
        if result.ok:
            released += result.value
    return released


def cleanup_stuck_batches(db: Session, mode: VerificationMode) -> Dict[str, Any]:
    """Complete user batches left in processing after all their emails finished."""
    mode = VerificationMode(mode)
    summary = {"mode": mode.value, "found": 0, "completed": 0, "released": 0, "errors": 0}

    if settings.RELEASE_FAILED_BATCHES:
        summary["released"] = release_failed_batches(db, mode)

    stuck = gateway.find_stuck_submissions(db, mode)
    if not stuck.ok:
        summary["errors"] += 1
        return summary

    summary["found"] = len(stuck.value)
    for user_batch_id in stuck.value:
        result = gateway.complete_submission_if_done(db, mode, user_batch_id)
        if not result.ok:
            summary["errors"] += 1
        elif result.value:
            summary["completed"] += 1
            logger.info("Stuck user batch completed", mode=mode.value, user_batch_id=user_batch_id)

    return summary


def run_stuck_batch_cleanup(db: Session, modes: Optional[Iterable[VerificationMode]] = None) -> Dict[str, Any]:
    """Run the reconciler for each mode."""
    results = {}
    for mode in modes or list(VerificationMode):
        results[VerificationMode(mode).value] = cleanup_stuck_batches(db, mode)
    return results
