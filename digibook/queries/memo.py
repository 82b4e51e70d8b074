"""
Identity Memoization

Ledger snapshots are immutable and replace their tuples on every change,
so "same object" means "same content". A derivation only needs to be
recomputed when one of its inputs is a different object.

Records are pydantic models and not hashable, which rules out
functools.lru_cache; this memo compares record tuples with `is` instead.
Dates, amounts and filters are compared by value.
"""

from collections.abc import Callable
from datetime import date
from decimal import Decimal
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel


R = TypeVar("R")

# Plain values (dates, amounts, filters) are compared by equality
_VALUE_TYPES = (date, Decimal, int, float, str, BaseModel)


def _same(a: Any, b: Any) -> bool:
    if a is b:
        return True
    return isinstance(a, _VALUE_TYPES) and type(a) is type(b) and a == b


class IdentityMemo(Generic[R]):
    """
    Remembers the last result of a function, keyed on input identity.

    Usage:
        memo = IdentityMemo(budget_summary)
        summary = memo(snapshot.fixed_expenses)
    """

    def __init__(self, func: Callable[..., R]):
        self._func = func
        self._args: Optional[tuple[Any, ...]] = None
        self._kwargs: Optional[dict[str, Any]] = None
        self._result: Optional[R] = None
        self.hits = 0
        self.misses = 0

    def _same_inputs(self, args: tuple[Any, ...], kwargs: dict[str, Any]) -> bool:
        if self._args is None or self._kwargs is None:
            return False
        if len(args) != len(self._args) or kwargs.keys() != self._kwargs.keys():
            return False
        if not all(_same(a, b) for a, b in zip(args, self._args)):
            return False
        return all(_same(kwargs[key], self._kwargs[key]) for key in kwargs)

    def __call__(self, *args: Any, **kwargs: Any) -> R:
        if self._same_inputs(args, kwargs):
            self.hits += 1
            return self._result

        self.misses += 1
        result = self._func(*args, **kwargs)
        self._args, self._kwargs, self._result = args, kwargs, result
        return result

    def clear(self) -> None:
        self._args = self._kwargs = self._result = None
