"""Bulk verification adapters package."""
from typing import Optional

from bulkverify.core.config import settings
from bulkverify.services.adapters.email_validation.mock import MockBulkVerificationAdapter
from bulkverify.services.adapters.email_validation.bouncer import BouncerAdapter


def get_verification_adapter(provider: Optional[str] = None):
    """Get the configured bulk verification adapter."""
    provider = provider or settings.VERIFICATION_PROVIDER

    if provider == "bouncer":
        return BouncerAdapter()
    return MockBulkVerificationAdapter()


__all__ = [
    "MockBulkVerificationAdapter",
    "BouncerAdapter",
    "get_verification_adapter",
]
