"""Result-tree insertion.

Instructions never touch result nodes directly; every node they produce,
text chunks and attributes included, goes through the stylesheet's sink with
the `(parent, next_sibling)` coordinates carried by their context.
"""

from __future__ import annotations

import logging
from typing import Protocol

from .node import Attr, Node

logger = logging.getLogger(__name__)


class ResultTreeSink(Protocol):
    """Receives every produced node.

    Attributes arrive as detached `Attr` nodes meant for `parent`.
    """

    def __call__(self, parent: Node, next_sibling: Node | None, node: Node) -> None: ...


def insert_node(parent: Node, next_sibling: Node | None, node: Node) -> Node:
    """Insert `node` under `parent` before `next_sibling`, or at the end.

    Text adjacent to a text node is merged into it and that node is returned.
    An `Attr` is set on `parent`, replacing an attribute of the same name.
    """
    if isinstance(node, Attr):
        if not parent.is_element:
            logger.debug("Attribute %r ignored: output parent %r is not an element", node.name, parent)
            return node
        parent.attrs[node.name] = node.value
        return node

    if next_sibling is not None and next_sibling.parent is parent:
        before = next_sibling.previous_sibling
    else:
        next_sibling = None
        before = parent.children[-1] if parent.children else None
    if node.is_text and before is not None and before.is_text:
        before.data += node.data
        return before
    parent.insert_before(node, next_sibling)
    return node
