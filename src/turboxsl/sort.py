"""Ordering of selected node sets.

Two comparators: document order, used when an instruction carries no sort
keys, and key-based order built from one or more `SortKey` specifications.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from functools import cmp_to_key
from typing import TYPE_CHECKING

from .expr import Expr, compile_expr, number_value, string_value
from .node import document_order_keys

if TYPE_CHECKING:
    from .node import Node

_DATA_TYPES = frozenset({"text", "number"})
_ORDERS = frozenset({"ascending", "descending"})
_CASE_ORDERS = frozenset({None, "upper-first", "lower-first"})


@dataclass(frozen=True, slots=True)
class SortKey:
    """One sort key: expression, data type and direction.

    `case_order` only breaks ties between strings that differ in case alone.
    """

    select: Expr
    data_type: str
    order: str
    case_order: str | None

    def __init__(
        self,
        select: Expr | str = ".",
        data_type: str = "text",
        order: str = "ascending",
        case_order: str | None = None,
    ) -> None:
        if data_type not in _DATA_TYPES:
            msg = f"Unknown sort data type: {data_type!r}"
            raise ValueError(msg)
        if order not in _ORDERS:
            msg = f"Unknown sort order: {order!r}"
            raise ValueError(msg)
        if case_order not in _CASE_ORDERS:
            msg = f"Unknown case order: {case_order!r}"
            raise ValueError(msg)
        object.__setattr__(self, "select", compile_expr(select))
        object.__setattr__(self, "data_type", data_type)
        object.__setattr__(self, "order", order)
        object.__setattr__(self, "case_order", case_order)

    @property
    def descending(self) -> bool:
        return self.order == "descending"

    def key_value(self, node: Node, position: int, size: int) -> str | float:
        value = self.select.evaluate(node, position, size)
        if self.data_type == "number":
            return number_value(value)
        return string_value(value)


# -----------------
# Document order
# -----------------


def sort_document_order(nodes) -> list[Node]:
    """Sort nodes into document order.

    Distinct nodes sharing a position can only be separate `Attr` views of
    one attribute; creation order separates them so the order stays total.
    """
    nodes = list(nodes)
    if len(nodes) < 2:
        return nodes
    keys = document_order_keys(nodes)
    order = sorted(range(len(nodes)), key=lambda i: (keys[i], nodes[i]._serial))
    return [nodes[i] for i in order]


# -----------------
# Key-based order
# -----------------


def _compare_numbers(a: float, b: float) -> int:
    # NaN precedes every number.
    a_nan = math.isnan(a)
    b_nan = math.isnan(b)
    if a_nan or b_nan:
        if a_nan and b_nan:
            return 0
        return -1 if a_nan else 1
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def _compare_text(a: str, b: str, case_order: str | None) -> int:
    if a == b:
        return 0
    if case_order is not None and a.lower() == b.lower():
        # Same letters, different case: the first differing character decides.
        for ca, cb in zip(a, b):
            if ca != cb:
                upper_first = ca.isupper()
                if case_order == "upper-first":
                    return -1 if upper_first else 1
                return 1 if upper_first else -1
    return -1 if a < b else 1


class XSLComparator:
    """Compares nodes by a sequence of sort keys.

    Keys are evaluated once per node, with the position and size of the
    instruction that is sorting. Nodes tying on every key compare equal, so a
    stable sort keeps their incoming order.
    """

    __slots__ = ("_cache", "position", "size", "sort_keys")

    def __init__(self, sort_keys, position=1, size=1):
        self.sort_keys = tuple(sort_keys)
        self.position = position
        self.size = size
        self._cache = {}

    def keys_for(self, node):
        entry = self._cache.get(id(node))
        if entry is None:
            # The node is held in the entry so its id() stays unique.
            entry = (node, [k.key_value(node, self.position, self.size) for k in self.sort_keys])
            self._cache[id(node)] = entry
        return entry[1]

    def __call__(self, a, b):
        a_values = self.keys_for(a)
        b_values = self.keys_for(b)
        for sort_key, va, vb in zip(self.sort_keys, a_values, b_values):
            if sort_key.data_type == "number":
                result = _compare_numbers(va, vb)
            else:
                result = _compare_text(va, vb, sort_key.case_order)
            if result:
                return -result if sort_key.descending else result
        return 0


def sort_by_keys(nodes, sort_keys, position=1, size=1) -> list[Node]:
    """Stable sort of ``nodes`` by ``sort_keys``; later keys break earlier ties."""
    comparator = XSLComparator(sort_keys, position, size)
    return sorted(nodes, key=cmp_to_key(comparator))
