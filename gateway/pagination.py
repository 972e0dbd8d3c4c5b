"""Offset/limit pagination and faceted filtering."""

from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, TypeVar

from contracts.schemas.envelope import OffsetPagination

T = TypeVar("T")

Predicate = Callable[[T], bool]


@dataclass
class Page(Generic[T]):
    items: List[T]
    offset: int
    limit: int
    total: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total

    def meta(self) -> OffsetPagination:
        return OffsetPagination(offset=self.offset, limit=self.limit, total=self.total, has_more=self.has_more)


def paginate(items: List[T], offset: int, limit: int) -> Page[T]:
    return Page(items=items[offset : offset + limit], offset=offset, limit=limit, total=len(items))


class FilterSet(Generic[T]):
    """Named predicates combined with AND.

    ``facet`` counts values of one dimension over the items matching every
    *other* filter, so selecting a value never hides its siblings.
    """

    def __init__(self):
        self._filters: Dict[str, Predicate] = {}

    def add(self, name: str, predicate: Predicate, active: bool = True) -> "FilterSet[T]":
        if active:
            self._filters[name] = predicate
        return self

    @property
    def active(self) -> List[str]:
        return list(self._filters)

    def apply(self, items: Iterable[T], exclude: Optional[str] = None) -> List[T]:
        predicates = [p for name, p in self._filters.items() if name != exclude]
        return [item for item in items if all(p(item) for p in predicates)]

    def facet(self, items: Iterable[T], dimension: str, key: Callable[[T], Any]) -> Counter:
        """Count ``key(item)`` values; ``key`` may return a single value or a list."""
        counts: Counter = Counter()
        for item in self.apply(items, exclude=dimension):
            value = key(item)
            if isinstance(value, (list, tuple, set)):
                counts.update(value)
            elif value is not None:
                counts[value] += 1
        return counts


def sort_items(items: List[T], key: Callable[[T], Any], descending: bool = False) -> List[T]:
    return sorted(items, key=key, reverse=descending)
