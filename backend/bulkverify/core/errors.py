"""Error taxonomy for provider calls and storage operations."""
from typing import Optional


class BouncerError(Exception):
    """Base class for all errors raised or returned by the queue core."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(message='{self.message}', status_code={self.status_code})>"


class AuthError(BouncerError):
    """Provider rejected the credential. Needs an operator, never retried."""


class QuotaExceededError(BouncerError):
    """Provider account has insufficient balance."""


class RateLimitedError(BouncerError):
    """Provider answered 429 despite local limiting. Back off, the batch is fine."""


class TransientProviderError(BouncerError):
    """Network failure, timeout, 5xx or provider-side batch failure."""


class ValidationError(BouncerError):
    """Malformed input, rejected before any network call."""


class StorageError(BouncerError):
    """A database transaction failed and was rolled back."""
