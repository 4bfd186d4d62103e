"""Base adapter interfaces for verification providers."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Dict, Any

from bulkverify.db.models.rate_limit import VerificationMode


@dataclass(frozen=True)
class BatchProgress:
    """Provider-side state of a submitted batch."""
    completed: bool
    processed: int = 0


class BaseAdapter(ABC):
    """Base class for all adapters."""

    @abstractmethod
    def test_connection(self) -> bool:
        """Test connection to the provider."""
        pass


class BulkVerificationAdapter(BaseAdapter):
    """Base adapter for providers that verify emails in asynchronous batches.

    Every method takes the verification mode, which selects the endpoint and
    the credential. Failures are raised as ``bulkverify.core.errors`` types.
    """

    @abstractmethod
    def submit_batch(self, mode: VerificationMode, emails: List[str]) -> str:
        """
        Submit emails for verification.

        Returns the provider-assigned batch id.
        """
        pass

    @abstractmethod
    def poll_status(self, mode: VerificationMode, batch_id: str) -> BatchProgress:
        """Return whether the batch is complete and how many emails are processed."""
        pass

    @abstractmethod
    def download_results(self, mode: VerificationMode, batch_id: str) -> List[Dict[str, Any]]:
        """
        Download the results of a completed batch.

        Deliverable results carry keys:
        - email, status, reason, is_catchall, score, provider
        Catchall results carry keys:
        - email, toxicity
        """
        pass
