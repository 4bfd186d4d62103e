"""Result type returned by persistence operations."""
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from bulkverify.core.errors import BouncerError

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or a typed error, never both.

    Callers check ``ok`` before touching ``value``; a failed result means the
    underlying transaction was rolled back and no side effects happened.
    """
    value: Optional[T] = None
    error: Optional[BouncerError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: BouncerError) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value or raise the stored error."""
        if self.error is not None:
            raise self.error
        return self.value
