"""
Tagged success/failure result.
Public operations return these instead of raising.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from .errors import BCMetaError


T = TypeVar("T")
E = TypeVar("E", bound=BCMetaError)


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome."""
    value: T

    @property
    def is_ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value

    def unwrap_err(self) -> BCMetaError:
        raise ValueError("Called unwrap_err on Ok")


@dataclass(frozen=True)
class Err(Generic[E]):
    """Failed outcome carrying a typed error."""
    error: E

    @property
    def is_ok(self) -> bool:
        return False

    def unwrap(self):
        raise self.error

    def unwrap_err(self) -> E:
        return self.error


Result = Union[Ok[T], Err[BCMetaError]]
