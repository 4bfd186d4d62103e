"""Integration tests for the batch creator."""
from unittest.mock import patch

from bulkverify.core.config import settings
from bulkverify.core.errors import (
    AuthError,
    QuotaExceededError,
    RateLimitedError,
    StorageError,
    TransientProviderError,
)
from bulkverify.core.result import Result
from bulkverify.db.models import BouncerBatchStatus, RateLimitRecord, RequestType, UserBatchStatus
from bulkverify.db.modes import get_mode_schema
from bulkverify.services.adapters.email_validation import MockBulkVerificationAdapter
from bulkverify.services.queue import gateway
from bulkverify.services.queue.batch_creator import run_batch_creation
from bulkverify.services.queue.scheduler import job_status_check


class ScriptedAdapter(MockBulkVerificationAdapter):
    """Mock provider whose submissions can be made to fail in order."""

    def __init__(self, submit_errors=()):
        super().__init__()
        self.submit_errors = list(submit_errors)
        self.submitted = []

    def submit_batch(self, mode, emails):
        self.submitted.append(list(emails))
        if self.submit_errors:
            error = self.submit_errors.pop(0)
            if error is not None:
                raise error
        return super().submit_batch(mode, emails)


def create_requests(db, mode):
    return rate_limiter_count(db, mode, RequestType.CREATE_BATCH)


def rate_limiter_count(db, mode, request_type):
    return db.query(RateLimitRecord).filter(
        RateLimitRecord.verification_type == mode,
        RateLimitRecord.request_type == request_type,
    ).count()


class TestBatchCreation:

    def test_multiplexes_submissions_into_one_batch(self, db_session, deliverable, make_user_batch, recording_scheduler, monkeypatch):
        """Two queued submissions, one slot: one provider batch with all five emails, oldest first."""
        monkeypatch.setattr(settings, "MAX_CONCURRENT_BATCHES", 1)
        first = make_user_batch(deliverable, ["s1a@x.com", "s1b@x.com", "s1c@x.com"], offset=0)
        second = make_user_batch(deliverable, ["s2a@x.com", "s2b@x.com"], offset=1)
        adapter = ScriptedAdapter()

        counters = run_batch_creation(db_session, adapter, recording_scheduler, deliverable)

        assert counters["submitted"] == 1
        assert counters["emails"] == 5
        assert adapter.submitted == [["s1a@x.com", "s1b@x.com", "s1c@x.com", "s2a@x.com", "s2b@x.com"]]
        schema = get_mode_schema(deliverable)
        batches = db_session.query(schema.bouncer_batch).all()
        assert len(batches) == 1
        assert batches[0].email_count == 5
        for user_batch_id in (first.id, second.id):
            status = db_session.query(schema.user_batch).filter(schema.user_batch.id == user_batch_id).one().status
            assert status == UserBatchStatus.PROCESSING

    def test_schedules_first_status_check(self, db_session, deliverable, make_user_batch, recording_scheduler):
        """Each new provider batch gets a first status check with a fresh payload."""
        make_user_batch(deliverable, ["a@x.com"])

        run_batch_creation(db_session, ScriptedAdapter(), recording_scheduler, deliverable)

        bouncer_batch_id = gateway.list_active_provider_batches(db_session, deliverable).value[0]
        assert len(recording_scheduler.once) == 1
        scheduled = recording_scheduler.once[0]
        assert scheduled["func"] is job_status_check
        assert scheduled["delay"] == settings.STATUS_CHECK_DELAY_SECONDS
        assert scheduled["kwargs"] == {
            "bouncer_batch_id": bouncer_batch_id,
            "check_type": "deliverable",
            "attempt": 1,
            "max_attempts": settings.STATUS_CHECK_MAX_ATTEMPTS,
        }

    def test_records_rate_limit_usage(self, db_session, deliverable, make_user_batch, recording_scheduler):
        """A submission is recorded against the create-batch rate limit."""
        make_user_batch(deliverable, ["a@x.com"])

        run_batch_creation(db_session, ScriptedAdapter(), recording_scheduler, deliverable)

        assert create_requests(db_session, deliverable) == 1

    def test_splits_backlog_by_batch_size(self, db_session, deliverable, make_user_batch, recording_scheduler, monkeypatch):
        """A backlog larger than BATCH_SIZE is split across slots."""
        monkeypatch.setattr(settings, "BATCH_SIZE", 2)
        make_user_batch(deliverable, [f"e{i}@x.com" for i in range(5)])
        adapter = ScriptedAdapter()

        counters = run_batch_creation(db_session, adapter, recording_scheduler, deliverable)

        assert counters["submitted"] == 3
        assert [len(emails) for emails in adapter.submitted] == [2, 2, 1]
        assert len(recording_scheduler.once) == 3

    def test_submits_at_most_available_capacity(self, db_session, deliverable, make_user_batch, recording_scheduler, monkeypatch):
        """Only free slots are filled."""
        monkeypatch.setattr(settings, "BATCH_SIZE", 1)
        monkeypatch.setattr(settings, "MAX_CONCURRENT_BATCHES", 3)
        make_user_batch(deliverable, ["old@x.com"], offset=0)
        run_batch_creation(db_session, ScriptedAdapter(), recording_scheduler, deliverable)
        make_user_batch(deliverable, [f"e{i}@x.com" for i in range(5)], offset=1)

        counters = run_batch_creation(db_session, ScriptedAdapter(), recording_scheduler, deliverable)

        assert counters["submitted"] == 2
        assert gateway.count_active_batches(db_session, deliverable).value.available_capacity == 0

    def test_no_capacity_is_noop(self, db_session, deliverable, make_user_batch, recording_scheduler, monkeypatch):
        """Nothing is submitted when every slot is taken."""
        monkeypatch.setattr(settings, "MAX_CONCURRENT_BATCHES", 0)
        make_user_batch(deliverable, ["a@x.com"])
        adapter = ScriptedAdapter()

        counters = run_batch_creation(db_session, adapter, recording_scheduler, deliverable)

        assert counters["submitted"] == 0
        assert adapter.submitted == []

    def test_empty_backlog_is_noop(self, db_session, deliverable, recording_scheduler):
        """An empty backlog submits nothing."""
        adapter = ScriptedAdapter()

        counters = run_batch_creation(db_session, adapter, recording_scheduler, deliverable)

        assert counters == {"submitted": 0, "emails": 0, "errors": 0, "orphaned": 0}
        assert adapter.submitted == []

    def test_rate_limited_tick_is_noop(self, db_session, deliverable, make_user_batch, recording_scheduler):
        """A saturated rate limit skips the tick."""
        make_user_batch(deliverable, ["a@x.com"])
        db_session.add(RateLimitRecord(
            verification_type=deliverable, request_type=RequestType.CREATE_BATCH, request_count=180,
        ))
        db_session.commit()
        adapter = ScriptedAdapter()

        counters = run_batch_creation(db_session, adapter, recording_scheduler, deliverable)

        assert counters["submitted"] == 0
        assert adapter.submitted == []

    def test_stops_when_rate_limit_runs_out_mid_tick(self, db_session, deliverable, make_user_batch, recording_scheduler, monkeypatch):
        """Submissions stop once the window reaches the safety limit."""
        monkeypatch.setattr(settings, "BATCH_SIZE", 1)
        make_user_batch(deliverable, [f"e{i}@x.com" for i in range(5)])
        db_session.add(RateLimitRecord(
            verification_type=deliverable, request_type=RequestType.CREATE_BATCH, request_count=178,
        ))
        db_session.commit()

        counters = run_batch_creation(db_session, ScriptedAdapter(), recording_scheduler, deliverable)

        assert counters["submitted"] == 2

    def test_transient_failure_continues_to_next_slot(self, db_session, deliverable, make_user_batch, recording_scheduler):
        """A transient provider error moves on to the next slot."""
        make_user_batch(deliverable, ["a@x.com"])
        adapter = ScriptedAdapter(submit_errors=[TransientProviderError("503", 503), None])

        counters = run_batch_creation(db_session, adapter, recording_scheduler, deliverable)

        assert counters["errors"] == 1
        assert counters["submitted"] == 1
        assert len(adapter.submitted) == 2
        assert create_requests(db_session, deliverable) == 2

    def test_account_errors_stop_the_tick(self, db_session, deliverable, make_user_batch, recording_scheduler):
        """Auth, quota and provider rate-limit errors end the tick."""
        make_user_batch(deliverable, ["a@x.com"])
        for error in (AuthError("bad key", 401), QuotaExceededError("no credits", 402), RateLimitedError("slow down", 429)):
            adapter = ScriptedAdapter(submit_errors=[error])

            counters = run_batch_creation(db_session, adapter, recording_scheduler, deliverable)

            assert counters["submitted"] == 0
            assert len(adapter.submitted) == 1
        assert gateway.list_active_provider_batches(db_session, deliverable).value == []

    def test_capacity_failure_stops_the_tick(self, db_session, deliverable, make_user_batch, recording_scheduler):
        """A failed capacity read ends the tick before any submission."""
        make_user_batch(deliverable, ["a@x.com"])
        adapter = ScriptedAdapter()
        failure = Result.failure(StorageError("db down"))

        with patch.object(gateway, "count_active_batches", return_value=failure):
            counters = run_batch_creation(db_session, adapter, recording_scheduler, deliverable)

        assert counters["errors"] == 1
        assert adapter.submitted == []

    def test_assignment_failure_stops_the_tick(self, db_session, deliverable, make_user_batch, recording_scheduler, monkeypatch):
        """An orphaned provider batch ends the tick so its emails are not submitted again."""
        monkeypatch.setattr(settings, "MAX_CONCURRENT_BATCHES", 3)
        make_user_batch(deliverable, ["a@x.com"])
        adapter = ScriptedAdapter()
        failure = Result.failure(StorageError("db down"))

        with patch.object(gateway, "assign_provider_batch", return_value=failure):
            counters = run_batch_creation(db_session, adapter, recording_scheduler, deliverable)

        assert adapter.submitted == [["a@x.com"]]
        assert counters["orphaned"] == 1
        assert counters["submitted"] == 0
        assert recording_scheduler.once == []

    def test_shared_email_submitted_once(self, db_session, deliverable, make_user_batch, recording_scheduler):
        """An address queued by two submissions is sent once."""
        make_user_batch(deliverable, ["a@x.com", "b@x.com"], offset=0)
        make_user_batch(deliverable, ["A+tag@x.com"], offset=1)
        adapter = ScriptedAdapter()

        run_batch_creation(db_session, adapter, recording_scheduler, deliverable)

        assert adapter.submitted == [["a@x.com", "b@x.com"]]

    def test_catchall_mode(self, db_session, catchall, deliverable, make_user_batch, recording_scheduler):
        """Catch-all submissions use the catch-all tables only."""
        make_user_batch(catchall, ["a@x.com"])

        run_batch_creation(db_session, ScriptedAdapter(), recording_scheduler, catchall)

        assert len(gateway.list_active_provider_batches(db_session, catchall).value) == 1
        assert gateway.list_active_provider_batches(db_session, deliverable).value == []
        schema = get_mode_schema(catchall)
        assert db_session.query(schema.bouncer_batch).one().status == BouncerBatchStatus.PENDING
