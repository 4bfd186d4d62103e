"""Persistence gateway for the verification queue.

Every operation runs in its own transaction on the session it is given and
returns a ``Result``. Database errors are rolled back and reported as
``StorageError``; callers must check ``ok`` and never assume a failed
operation left partial writes behind.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Any, Optional, Iterable, Iterator
import structlog
from sqlalchemy import and_, exists, func, insert
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bulkverify.core.config import settings
from bulkverify.core.errors import StorageError, ValidationError
from bulkverify.core.result import Result
from bulkverify.db.base import utcnow
from bulkverify.db.modes import ModeSchema, get_mode_schema
from bulkverify.db.models.email import EmailGlobal, strip_email_modifiers
from bulkverify.db.models.rate_limit import RateLimitRecord, VerificationMode
from bulkverify.db.models.user_batch import UserBatchStatus, ACTIVE_USER_BATCH_STATUSES
from bulkverify.db.models.bouncer_batch import BouncerBatchStatus, ACTIVE_BOUNCER_BATCH_STATUSES

logger = structlog.get_logger()

# Keeps IN lists and multi-row statements under SQLite's bind parameter limit.
IN_CHUNK_SIZE = 1000
UPSERT_CHUNK_SIZE = 500


@dataclass(frozen=True)
class CapacitySnapshot:
    active_count: int
    available_capacity: int


@dataclass(frozen=True)
class BacklogEmail:
    """An email waiting to be placed in a provider batch."""
    email_global_id: int
    email: str
    email_stripped: str
    user_batch_id: int
    submission_created_at: datetime


@dataclass
class BatchAssignment:
    """Emails of one user batch placed in a provider batch."""
    user_batch_id: int
    email_global_ids: List[int] = field(default_factory=list)


def _chunks(items: List[Any], size: int) -> Iterator[List[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _storage_failure(db: Session, operation: str, exc: Exception, **context) -> Result:
    db.rollback()
    logger.error("Storage operation failed", operation=operation, error=str(exc), **context)
    return Result.failure(StorageError(f"{operation} failed: {exc}"))


def group_assignments(emails: Iterable[BacklogEmail]) -> List[BatchAssignment]:
    """Group collected emails by originating user batch, keeping collection order."""
    grouped: Dict[int, BatchAssignment] = {}
    for item in emails:
        assignment = grouped.setdefault(item.user_batch_id, BatchAssignment(user_batch_id=item.user_batch_id))
        assignment.email_global_ids.append(item.email_global_id)
    return list(grouped.values())


def count_active_batches(db: Session, mode: VerificationMode) -> Result[CapacitySnapshot]:
    """Count pending/processing provider batches and the capacity left."""
    schema = get_mode_schema(mode)
    try:
        active = (
            db.query(func.count(schema.bouncer_batch.id))
            .filter(schema.bouncer_batch.status.in_(ACTIVE_BOUNCER_BATCH_STATUSES))
            .scalar()
        ) or 0
    except SQLAlchemyError as e:
        return _storage_failure(db, "count_active_batches", e, mode=schema.mode.value)

    available = max(0, settings.MAX_CONCURRENT_BATCHES - active)
    return Result.success(CapacitySnapshot(active_count=active, available_capacity=available))


def collect_backlog_emails(
    db: Session,
    mode: VerificationMode,
    limit: Optional[int] = None,
) -> Result[List[BacklogEmail]]:
    """
    Collect backlog emails in strict FIFO order.

    An email qualifies when its link is neither cached nor complete, its user
    batch is queued or processing, and it has never been placed in a provider
    batch for this mode. Order is (submission created_at, email id).
    """
    schema = get_mode_schema(mode)
    link = schema.batch_email
    user_batch = schema.user_batch
    provider_link = schema.bouncer_batch_email
    limit = limit or settings.BATCH_SIZE

    try:
        rows = (
            db.query(
                link.email_global_id,
                EmailGlobal.email,
                EmailGlobal.email_stripped,
                link.batch_id,
                user_batch.created_at,
            )
            .join(EmailGlobal, EmailGlobal.global_id == link.email_global_id)
            .join(user_batch, user_batch.id == link.batch_id)
            .filter(
                user_batch.status.in_(ACTIVE_USER_BATCH_STATUSES),
                link.used_cached.is_(False),
                link.did_complete.is_(False),
                ~exists().where(provider_link.email_global_id == link.email_global_id),
            )
            .order_by(user_batch.created_at.asc(), link.email_global_id.asc())
            .limit(limit)
            .all()
        )
    except SQLAlchemyError as e:
        return _storage_failure(db, "collect_backlog_emails", e, mode=schema.mode.value)

    return Result.success([
        BacklogEmail(
            email_global_id=row[0],
            email=row[1],
            email_stripped=row[2],
            user_batch_id=row[3],
            submission_created_at=row[4],
        )
        for row in rows
    ])


def assign_provider_batch(
    db: Session,
    bouncer_batch_id: str,
    assignments: List[BatchAssignment],
    mode: VerificationMode,
) -> Result[int]:
    """
    Record a submitted provider batch and the emails placed in it.

    One transaction: the provider batch row (pending), one provider link per
    email and user batch, and every affected user batch moved to processing.
    Returns the number of user batches affected.
    """
    schema = get_mode_schema(mode)
    if not bouncer_batch_id:
        return Result.failure(ValidationError("Provider batch id is required"))

    link_rows = []
    email_ids = set()
    for assignment in assignments:
        for email_global_id in assignment.email_global_ids:
            email_ids.add(email_global_id)
            link_rows.append({
                "bouncer_batch_id": bouncer_batch_id,
                "email_global_id": email_global_id,
                "user_batch_id": assignment.user_batch_id,
            })
    if not link_rows:
        return Result.failure(ValidationError("Cannot assign an empty provider batch"))

    user_batch_ids = list(dict.fromkeys(a.user_batch_id for a in assignments))

    try:
        db.add(schema.bouncer_batch(
            bouncer_batch_id=bouncer_batch_id,
            status=BouncerBatchStatus.PENDING,
            email_count=len(email_ids),
            processed=0,
            user_batch_id=user_batch_ids[0],
        ))
        # Parent row must exist before the links reference it.
        db.flush()

        for chunk in _chunks(link_rows, UPSERT_CHUNK_SIZE):
            db.execute(insert(schema.bouncer_batch_email), chunk)

        for chunk in _chunks(user_batch_ids, IN_CHUNK_SIZE):
            db.query(schema.user_batch).filter(
                schema.user_batch.id.in_(chunk),
                schema.user_batch.status.in_(ACTIVE_USER_BATCH_STATUSES),
            ).update(
                {"status": UserBatchStatus.PROCESSING, "updated_at": utcnow()},
                synchronize_session=False,
            )

        db.commit()
    except SQLAlchemyError as e:
        return _storage_failure(db, "assign_provider_batch", e, mode=schema.mode.value, bouncer_batch_id=bouncer_batch_id)

    logger.info(
        "Provider batch assigned",
        mode=schema.mode.value,
        bouncer_batch_id=bouncer_batch_id,
        email_count=len(email_ids),
        user_batches=len(user_batch_ids),
    )
    return Result.success(len(user_batch_ids))


def get_active_provider_batches(db: Session, mode: VerificationMode) -> Result[List[Any]]:
    """Pending/processing provider batch rows, oldest first."""
    schema = get_mode_schema(mode)
    try:
        batches = (
            db.query(schema.bouncer_batch)
            .filter(schema.bouncer_batch.status.in_(ACTIVE_BOUNCER_BATCH_STATUSES))
            .order_by(schema.bouncer_batch.created_at.asc(), schema.bouncer_batch.id.asc())
            .all()
        )
    except SQLAlchemyError as e:
        return _storage_failure(db, "get_active_provider_batches", e, mode=schema.mode.value)
    return Result.success(batches)


def list_active_provider_batches(db: Session, mode: VerificationMode) -> Result[List[str]]:
    """Ids of pending/processing provider batches, oldest first."""
    batches = get_active_provider_batches(db, mode)
    if not batches.ok:
        return batches
    return Result.success([batch.bouncer_batch_id for batch in batches.value])


def get_provider_batch_status(
    db: Session,
    mode: VerificationMode,
    bouncer_batch_id: str,
) -> Result[Optional[BouncerBatchStatus]]:
    """Current status of a provider batch, None if it is not tracked."""
    schema = get_mode_schema(mode)
    try:
        status = (
            db.query(schema.bouncer_batch.status)
            .filter(schema.bouncer_batch.bouncer_batch_id == bouncer_batch_id)
            .scalar()
        )
    except SQLAlchemyError as e:
        return _storage_failure(db, "get_provider_batch_status", e, mode=schema.mode.value)
    return Result.success(status)


def mark_provider_batch_failed(db: Session, bouncer_batch_id: str, mode: VerificationMode) -> Result[bool]:
    """
    Move an active provider batch to failed.

    User batches are left untouched. Returns False when the batch was already
    terminal or unknown.
    """
    schema = get_mode_schema(mode)
    try:
        updated = db.query(schema.bouncer_batch).filter(
            schema.bouncer_batch.bouncer_batch_id == bouncer_batch_id,
            schema.bouncer_batch.status.in_(ACTIVE_BOUNCER_BATCH_STATUSES),
        ).update(
            {"status": BouncerBatchStatus.FAILED, "updated_at": utcnow()},
            synchronize_session=False,
        )
        db.commit()
    except SQLAlchemyError as e:
        return _storage_failure(db, "mark_provider_batch_failed", e, mode=schema.mode.value, bouncer_batch_id=bouncer_batch_id)

    if updated:
        logger.warning("Provider batch marked failed", mode=schema.mode.value, bouncer_batch_id=bouncer_batch_id)
    return Result.success(bool(updated))


def update_provider_batch_progress(
    db: Session,
    mode: VerificationMode,
    bouncer_batch_id: str,
    processed: int,
) -> Result[bool]:
    """Best-effort progress update; also moves a pending batch to processing."""
    schema = get_mode_schema(mode)
    try:
        updated = db.query(schema.bouncer_batch).filter(
            schema.bouncer_batch.bouncer_batch_id == bouncer_batch_id,
            schema.bouncer_batch.status.in_(ACTIVE_BOUNCER_BATCH_STATUSES),
        ).update(
            {
                "processed": processed,
                "status": BouncerBatchStatus.PROCESSING,
                "updated_at": utcnow(),
            },
            synchronize_session=False,
        )
        db.commit()
    except SQLAlchemyError as e:
        return _storage_failure(db, "update_provider_batch_progress", e, mode=schema.mode.value, bouncer_batch_id=bouncer_batch_id)
    return Result.success(bool(updated))


def _upsert_outcomes(db: Session, schema: ModeSchema, rows: List[Dict[str, Any]]) -> None:
    table = schema.result.__table__
    update_fields = list(schema.outcome_fields) + ["updated_at"]
    dialect = db.get_bind().dialect.name

    for chunk in _chunks(rows, UPSERT_CHUNK_SIZE):
        if dialect in ("sqlite", "postgresql"):
            stmt = sqlite_insert(table) if dialect == "sqlite" else pg_insert(table)
            stmt = stmt.on_conflict_do_update(
                index_elements=["email_global_id"],
                set_={name: stmt.excluded[name] for name in update_fields},
            )
            db.execute(stmt, chunk)
        elif dialect in ("mysql", "mariadb"):
            stmt = mysql_insert(table)
            stmt = stmt.on_duplicate_key_update({name: stmt.inserted[name] for name in update_fields})
            db.execute(stmt, chunk)
        else:
            for row in chunk:
                db.merge(schema.result(**row))


def _complete_if_done(db: Session, schema: ModeSchema, user_batch_id: int) -> bool:
    """Complete a user batch with no incomplete non-cached links. No commit."""
    link = schema.batch_email
    remaining = (
        db.query(func.count(link.id))
        .filter(
            link.batch_id == user_batch_id,
            link.used_cached.is_(False),
            link.did_complete.is_(False),
        )
        .scalar()
    )
    if remaining:
        return False

    now = utcnow()
    updated = db.query(schema.user_batch).filter(
        schema.user_batch.id == user_batch_id,
        schema.user_batch.status.in_(ACTIVE_USER_BATCH_STATUSES),
    ).update(
        {"status": UserBatchStatus.COMPLETED, "completed_at": now, "updated_at": now},
        synchronize_session=False,
    )
    return bool(updated)


def complete_submission_if_done(db: Session, mode: VerificationMode, user_batch_id: int) -> Result[bool]:
    """Mark a user batch completed if all of its non-cached emails are done."""
    schema = get_mode_schema(mode)
    try:
        completed = _complete_if_done(db, schema, user_batch_id)
        db.commit()
    except SQLAlchemyError as e:
        return _storage_failure(db, "complete_submission_if_done", e, mode=schema.mode.value, user_batch_id=user_batch_id)
    return Result.success(completed)


def ingest_results(
    db: Session,
    bouncer_batch_id: str,
    results: List[Dict[str, Any]],
    mode: VerificationMode,
) -> Result[int]:
    """
    Apply downloaded results for a provider batch, exactly once.

    Steps, in one transaction:
    1. Move the provider batch to completed (only from pending/processing)
    2. Map stripped emails to email ids through the provider links
    3. Build one outcome row per matched result, skipping unknown emails
    4. Upsert outcome rows
    5. Flag every submission link for those emails as complete
    6. Re-evaluate completion of every active user batch touched

    A batch that is already completed or failed is left alone and 0 is
    returned. Returns the number of results matched and written.
    """
    schema = get_mode_schema(mode)
    log = logger.bind(mode=schema.mode.value, bouncer_batch_id=bouncer_batch_id)

    try:
        claimed = db.query(schema.bouncer_batch).filter(
            schema.bouncer_batch.bouncer_batch_id == bouncer_batch_id,
            schema.bouncer_batch.status.in_(ACTIVE_BOUNCER_BATCH_STATUSES),
        ).update(
            {"status": BouncerBatchStatus.COMPLETED, "updated_at": utcnow()},
            synchronize_session=False,
        )
        if not claimed:
            known = db.query(
                exists().where(schema.bouncer_batch.bouncer_batch_id == bouncer_batch_id)
            ).scalar()
            db.rollback()
            if not known:
                return Result.failure(ValidationError(f"Unknown provider batch {bouncer_batch_id}"))
            log.info("Provider batch already finalized, skipping ingestion")
            return Result.success(0)

        provider_link = schema.bouncer_batch_email
        lookup = dict(
            db.query(EmailGlobal.email_stripped, provider_link.email_global_id)
            .join(EmailGlobal, EmailGlobal.global_id == provider_link.email_global_id)
            .filter(provider_link.bouncer_batch_id == bouncer_batch_id)
            .all()
        )

        outcomes: Dict[int, Dict[str, Any]] = {}
        unmatched = 0
        for result in results:
            email_global_id = lookup.get(strip_email_modifiers(result.get("email")))
            if email_global_id is None:
                unmatched += 1
                continue
            outcomes[email_global_id] = schema.build_outcome(email_global_id, result)

        email_ids = list(outcomes)
        if outcomes:
            _upsert_outcomes(db, schema, list(outcomes.values()))

        link = schema.batch_email
        affected = set()
        for chunk in _chunks(email_ids, IN_CHUNK_SIZE):
            db.query(link).filter(link.email_global_id.in_(chunk)).update(
                {"did_complete": True, "updated_at": utcnow()},
                synchronize_session=False,
            )
            rows = (
                db.query(link.batch_id)
                .join(schema.user_batch, schema.user_batch.id == link.batch_id)
                .filter(
                    link.email_global_id.in_(chunk),
                    schema.user_batch.status.in_(ACTIVE_USER_BATCH_STATUSES),
                )
                .distinct()
                .all()
            )
            affected.update(row[0] for row in rows)

        completed = [user_batch_id for user_batch_id in sorted(affected) if _complete_if_done(db, schema, user_batch_id)]

        db.commit()
    except SQLAlchemyError as e:
        return _storage_failure(db, "ingest_results", e, mode=schema.mode.value, bouncer_batch_id=bouncer_batch_id)

    if unmatched:
        log.warning("Results without a matching email were skipped", unmatched=unmatched)
    log.info(
        "Provider batch results ingested",
        processed=len(outcomes),
        received=len(results),
        completed_user_batches=completed,
    )
    return Result.success(len(outcomes))


def find_stuck_submissions(db: Session, mode: VerificationMode) -> Result[List[int]]:
    """
    User batches left in processing although all their emails are done.

    Matches processing, non-archived batches with at least one link and no
    non-cached incomplete link.
    """
    schema = get_mode_schema(mode)
    user_batch = schema.user_batch
    link = schema.batch_email
    try:
        rows = (
            db.query(user_batch.id)
            .filter(
                user_batch.status == UserBatchStatus.PROCESSING,
                user_batch.is_archived.is_(False),
                exists().where(link.batch_id == user_batch.id),
                ~exists().where(and_(
                    link.batch_id == user_batch.id,
                    link.used_cached.is_(False),
                    link.did_complete.is_(False),
                )),
            )
            .order_by(user_batch.created_at.asc())
            .all()
        )
    except SQLAlchemyError as e:
        return _storage_failure(db, "find_stuck_submissions", e, mode=schema.mode.value)
    return Result.success([row[0] for row in rows])


def prune_rate_limit_records(db: Session, older_than: datetime) -> Result[int]:
    """Delete rate limit records whose window started before ``older_than``."""
    try:
        deleted = db.query(RateLimitRecord).filter(
            RateLimitRecord.window_start < older_than
        ).delete(synchronize_session=False)
        db.commit()
    except SQLAlchemyError as e:
        return _storage_failure(db, "prune_rate_limit_records", e)
    return Result.success(deleted)


def list_releasable_failed_batches(db: Session, mode: VerificationMode) -> Result[List[str]]:
    """Failed provider batches that still hold provider links."""
    schema = get_mode_schema(mode)
    provider_link = schema.bouncer_batch_email
    try:
        rows = (
            db.query(schema.bouncer_batch.bouncer_batch_id)
            .filter(
                schema.bouncer_batch.status == BouncerBatchStatus.FAILED,
                exists().where(provider_link.bouncer_batch_id == schema.bouncer_batch.bouncer_batch_id),
            )
            .order_by(schema.bouncer_batch.created_at.asc())
            .all()
        )
    except SQLAlchemyError as e:
        return _storage_failure(db, "list_releasable_failed_batches", e, mode=schema.mode.value)
    return Result.success([row[0] for row in rows])


def release_failed_provider_batch(db: Session, mode: VerificationMode, bouncer_batch_id: str) -> Result[int]:
    """
    Return the emails of a failed provider batch to the backlog.

    Deletes the batch's provider links so the next collection picks the
    emails up again. The failed batch row stays as the record of the failure.
    Returns the number of links released.
    """
    schema = get_mode_schema(mode)
    try:
        status = (
            db.query(schema.bouncer_batch.status)
            .filter(schema.bouncer_batch.bouncer_batch_id == bouncer_batch_id)
            .scalar()
        )
        if status is None:
            return Result.failure(ValidationError(f"Unknown provider batch {bouncer_batch_id}"))
        if status != BouncerBatchStatus.FAILED:
            return Result.failure(ValidationError(
                f"Provider batch {bouncer_batch_id} is {status.value}, only failed batches can be released"
            ))

        released = db.query(schema.bouncer_batch_email).filter(
            schema.bouncer_batch_email.bouncer_batch_id == bouncer_batch_id
        ).delete(synchronize_session=False)
        db.commit()
    except SQLAlchemyError as e:
        return _storage_failure(db, "release_failed_provider_batch", e, mode=schema.mode.value, bouncer_batch_id=bouncer_batch_id)

    logger.info("Failed provider batch released", mode=schema.mode.value, bouncer_batch_id=bouncer_batch_id, released=released)
    return Result.success(released)
