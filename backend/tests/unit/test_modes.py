"""Unit tests for mode lookup, canonical emails and outcome records."""
import pytest

from bulkverify.db.models import (
    strip_email_modifiers,
    VerificationMode,
    DeliverableUserBatch,
    CatchallBatchEmail,
    CatchallBouncerBatch,
    DeliverableBouncerBatchEmail,
    EmailDeliverableResult,
    EmailCatchallResult,
)
from bulkverify.db.modes import (
    build_deliverable_outcome,
    build_catchall_outcome,
    get_mode_schema,
    parse_mode,
)


class TestStripEmailModifiers:

    def test_removes_plus_tag(self):
        """A +tag is removed from the local part."""
        assert strip_email_modifiers("john+news@example.com") == "john@example.com"

    def test_keeps_periods(self):
        """Periods in the local part are kept."""
        assert strip_email_modifiers("john.doe@gmail.com") == "john.doe@gmail.com"

    def test_lowercases_and_trims(self):
        """Addresses are trimmed and lower-cased."""
        assert strip_email_modifiers("  John.Doe+X@Example.COM ") == "john.doe@example.com"

    def test_plus_in_domain_untouched(self):
        """A plus in the domain is left alone."""
        assert strip_email_modifiers("a@b+c.com") == "a@b+c.com"

    def test_not_an_email(self):
        """Non-addresses pass through; None becomes empty."""
        assert strip_email_modifiers("garbage") == "garbage"
        assert strip_email_modifiers(None) == ""


class TestModeSchema:

    def test_deliverable_tables(self):
        """Deliverable mode resolves to the deliverable tables."""
        schema = get_mode_schema(VerificationMode.DELIVERABLE)
        assert schema.user_batch is DeliverableUserBatch
        assert schema.bouncer_batch_email is DeliverableBouncerBatchEmail
        assert schema.result is EmailDeliverableResult
        assert schema.outcome_fields == ("status", "reason", "is_catchall", "score", "provider")

    def test_catchall_tables(self):
        """Catch-all mode resolves to the catch-all tables."""
        schema = get_mode_schema(VerificationMode.CATCHALL)
        assert schema.batch_email is CatchallBatchEmail
        assert schema.bouncer_batch is CatchallBouncerBatch
        assert schema.result is EmailCatchallResult
        assert schema.outcome_fields == ("toxicity",)

    def test_accepts_string_value(self):
        """A mode string resolves like the enum."""
        assert get_mode_schema("catchall").mode == VerificationMode.CATCHALL

    def test_table_names(self):
        """Table names carry the mode suffix."""
        assert get_mode_schema(VerificationMode.CATCHALL).bouncer_batch_email.__tablename__ == "bouncer_batch_emails_catchall"
        assert get_mode_schema(VerificationMode.DELIVERABLE).user_batch.__tablename__ == "batches_deliverable"

    @pytest.mark.parametrize("value,expected", [
        ("deliverable", VerificationMode.DELIVERABLE),
        ("CATCHALL", VerificationMode.CATCHALL),
        (VerificationMode.CATCHALL, VerificationMode.CATCHALL),
        ("bogus", None),
        (None, None),
    ])
    def test_parse_mode(self, value, expected):
        """Mode parsing is case-insensitive and rejects unknowns."""
        assert parse_mode(value) == expected


class TestOutcomeRecords:

    def test_deliverable_defaults(self):
        """Missing deliverable fields get defaults."""
        row = build_deliverable_outcome(5, {"email": "a@x.com"})
        assert row == {
            "email_global_id": 5,
            "status": "unknown",
            "reason": "unknown",
            "is_catchall": False,
            "score": 0,
            "provider": None,
        }

    def test_deliverable_values(self):
        """Deliverable fields are copied and coerced."""
        row = build_deliverable_outcome(5, {
            "email": "a@x.com", "status": "risky", "reason": "accept_all",
            "is_catchall": "yes", "score": "60", "provider": "google",
        })
        assert row["status"] == "risky"
        assert row["is_catchall"] is True
        assert row["score"] == 60
        assert row["provider"] == "google"

    @pytest.mark.parametrize("flag,expected", [
        ("no", False), ("false", False), ("0", False), ("", False), (None, False),
        (False, False), (True, True), ("yes", True), ("true", True), (1, True),
    ])
    def test_catchall_flag(self, flag, expected):
        """Only truthy flags mark a result as catch-all; missing values do not."""
        assert build_deliverable_outcome(1, {"is_catchall": flag})["is_catchall"] is expected

    def test_catchall_outcome(self):
        """Catch-all outcomes store toxicity, defaulting to 0."""
        assert build_catchall_outcome(9, {"toxicity": 4}) == {"email_global_id": 9, "toxicity": 4}
        assert build_catchall_outcome(9, {"toxicity": None}) == {"email_global_id": 9, "toxicity": 0}
