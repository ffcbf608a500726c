"""
Ok/Err values for per-unit outcomes.

Healing, similarity checks, block upserts and model calls report failure as
an ``Err`` carrying a :class:`BookBatchError`, so one bad unit never aborts
a batch. Callers that cannot continue turn it back into an exception with
``unwrap()``.
"""
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar('T')
E = TypeVar('E')


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err(Generic[E]):
    """Failed outcome. ``error`` is usually a BookBatchError subclass."""
    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self):
        """Raise the carried exception (or a ValueError wrapping a plain value)."""
        if isinstance(self.error, BaseException):
            raise self.error
        raise ValueError(f"Called unwrap on Err: {self.error}")


Result = Union[Ok[T], Err[E]]
