from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .node import Node


@dataclass(frozen=True, slots=True)
class Context:
    """Where an instruction runs: the current source node, its position among
    the selected nodes, and the output insertion point.

    Contexts are values. Instructions derive new ones for nested processing and
    hand the one they received, unchanged, to their next sibling.
    """

    node: Node
    position: int
    size: int
    parent: Node
    next_sibling: Node | None = None

    def for_item(self, node: Node, position: int, size: int) -> Context:
        return replace(self, node=node, position=position, size=size)

    def with_output(self, parent: Node, next_sibling: Node | None = None) -> Context:
        return replace(self, parent=parent, next_sibling=next_sibling)

    def __repr__(self):
        return f"Context({self.node!r}, {self.position}/{self.size})"
