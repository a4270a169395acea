# fleetdesk/core/query.py
"""
Query primitives shared by every DocumentStore adapter.

Filters and ordering are plain values so callers can build them without
knowing which backend is wired in.  ``apply_query`` evaluates them in
Python; adapters may push some of the work down to their backend and
use it for the remainder.
"""
from __future__ import annotations

import operator
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

_COMPARATORS = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}

SUPPORTED_OPS = frozenset(_COMPARATORS) | {"in", "array-contains"}


@dataclass(frozen=True)
class Filter:
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in SUPPORTED_OPS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, record: dict) -> bool:
        if self.field not in record:
            return False
        actual = record[self.field]

        if self.op == "in":
            return actual in self.value
        if self.op == "array-contains":
            return isinstance(actual, (list, tuple)) and self.value in actual

        try:
            return _COMPARATORS[self.op](actual, self.value)
        except TypeError:
            # Mixed types (e.g. None vs str) never match an ordering filter
            return False


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


def where(field: str, op: str, value: Any) -> Filter:
    return Filter(field, op, value)


def matches_all(record: dict, filters: Iterable[Filter]) -> bool:
    return all(f.matches(record) for f in filters)


def apply_query(
        records: Iterable[dict],
        filters: Sequence[Filter] = (),
        order_by: OrderBy | None = None,
        limit: int | None = None,
) -> list[dict]:
    """Filter, order and limit an iterable of records.

    Records missing the order field sort last regardless of direction.
    """
    result = [r for r in records if matches_all(r, filters)]

    if order_by is not None:
        present = [r for r in result if r.get(order_by.field) is not None]
        missing = [r for r in result if r.get(order_by.field) is None]
        present.sort(key=lambda r: r[order_by.field], reverse=order_by.descending)
        result = present + missing

    if limit is not None:
        result = result[:limit]
    return result
