"""Mock bulk verification adapter for development and testing."""
from typing import List, Dict, Any
import random
import uuid

from bulkverify.services.adapters.base import BulkVerificationAdapter, BatchProgress
from bulkverify.core.errors import ValidationError, TransientProviderError
from bulkverify.db.models.rate_limit import VerificationMode


class MockBulkVerificationAdapter(BulkVerificationAdapter):
    """In-memory provider that completes each batch after a number of polls."""

    def __init__(self, polls_to_complete: int = 1, seed: int = None):
        self.polls_to_complete = polls_to_complete
        self._random = random.Random(seed)
        self.batches: Dict[str, Dict[str, Any]] = {}

    def test_connection(self) -> bool:
        """Mock always returns successful connection."""
        return True

    def submit_batch(self, mode: VerificationMode, emails: List[str]) -> str:
        if not emails:
            raise ValidationError("Cannot submit an empty batch")
        batch_id = f"mock-{uuid.uuid4().hex[:12]}"
        self.batches[batch_id] = {
            "mode": VerificationMode(mode),
            "emails": list(emails),
            "polls": 0,
        }
        return batch_id

    def _get_batch(self, batch_id: str) -> Dict[str, Any]:
        batch = self.batches.get(batch_id)
        if batch is None:
            raise TransientProviderError(f"Unknown mock batch {batch_id}", 404)
        return batch

    def poll_status(self, mode: VerificationMode, batch_id: str) -> BatchProgress:
        batch = self._get_batch(batch_id)
        batch["polls"] += 1
        total = len(batch["emails"])
        if batch["polls"] >= self.polls_to_complete:
            return BatchProgress(completed=True, processed=total)
        processed = total * batch["polls"] // self.polls_to_complete
        return BatchProgress(completed=False, processed=processed)

    def download_results(self, mode: VerificationMode, batch_id: str) -> List[Dict[str, Any]]:
        batch = self._get_batch(batch_id)
        if VerificationMode(mode) == VerificationMode.CATCHALL:
            return [self._catchall_result(email) for email in batch["emails"]]
        return [self._deliverable_result(email) for email in batch["emails"]]

    def _deliverable_result(self, email: str) -> Dict[str, Any]:
        # ~80% deliverable, ~10% undeliverable, ~7% risky, ~3% unknown
        rand = self._random.random()
        if rand < 0.80:
            status, reason, score = "deliverable", "accepted_email", 100
        elif rand < 0.90:
            status, reason, score = "undeliverable", "rejected_email", 0
        elif rand < 0.97:
            status, reason, score = "risky", "low_deliverability", 60
        else:
            status, reason, score = "unknown", "timeout", 0

        return {
            "email": email,
            "status": status,
            "reason": reason,
            "is_catchall": "yes" if status == "risky" else "no",
            "score": score,
            "provider": "mock",
        }

    def _catchall_result(self, email: str) -> Dict[str, Any]:
        return {"email": email, "toxicity": self._random.randint(0, 5)}
