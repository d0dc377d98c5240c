# src/pr_review_engine/results.py
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True)
class Result(Generic[T, E]):
    """
    Outcome of a fallible operation.

    Exactly one of `data` (when `success` is True) or `error` is meaningful.
    Components return these instead of raising across their boundary.
    """
    success: bool
    data: Optional[T] = None
    error: Optional[E] = None


def ok(data: Any = None) -> Result:
    return Result(success=True, data=data)


def err(error: Any) -> Result:
    return Result(success=False, error=error)
