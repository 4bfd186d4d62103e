"""Unit tests for the result type and error taxonomy."""
import pytest

from bulkverify.core.errors import (
    BouncerError,
    AuthError,
    QuotaExceededError,
    RateLimitedError,
    TransientProviderError,
    ValidationError,
    StorageError,
)
from bulkverify.core.result import Result


class TestResult:

    def test_success(self):
        """A success carries its value."""
        result = Result.success(3)
        assert result.ok is True
        assert result.value == 3
        assert result.error is None
        assert result.unwrap() == 3

    def test_success_with_falsy_value(self):
        """A falsy value is still a success."""
        result = Result.success(0)
        assert result.ok is True
        assert result.unwrap() == 0

    def test_failure(self):
        """A failure carries its error."""
        error = StorageError("boom")
        result = Result.failure(error)
        assert result.ok is False
        assert result.value is None
        assert result.error is error

    def test_unwrap_failure_raises_stored_error(self):
        """Unwrapping a failure raises the stored error."""
        with pytest.raises(StorageError, match="boom"):
            Result.failure(StorageError("boom")).unwrap()


class TestErrors:

    @pytest.mark.parametrize("error_class", [
        AuthError, QuotaExceededError, RateLimitedError,
        TransientProviderError, ValidationError, StorageError,
    ])
    def test_all_errors_share_base(self, error_class):
        """Every error subclasses BouncerError."""
        error = error_class("message", 418)
        assert isinstance(error, BouncerError)
        assert error.message == "message"
        assert error.status_code == 418

    def test_status_code_optional(self):
        """The status code defaults to None."""
        assert TransientProviderError("network down").status_code is None

    def test_repr(self):
        """repr shows the message and status code."""
        assert repr(AuthError("bad key", 401)) == "<AuthError(message='bad key', status_code=401)>"
