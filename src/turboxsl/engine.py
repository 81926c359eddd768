"""Instruction execution.

`apply_chain` walks a sibling chain in declaration order. Each instruction
performs its effect through a single dispatch in `_apply_one`, and nested
chains are applied recursively with a derived `Context`. The instruction
tree is only read, never mutated, so one compiled stylesheet can serve
several transformations at once.

Failures raised while evaluating expressions propagate unchanged: an
instruction neither catches nor wraps them, and no later sibling runs. Output
already written to the result tree stays there.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import TYPE_CHECKING

from .errors import TerminateError, TransformationFailure
from .expr import boolean_value, is_node_set, string_value
from .instructions import (
    ApplyTemplates,
    Attribute,
    CallTemplate,
    Choose,
    Copy,
    CopyOf,
    ForEach,
    If,
    LiteralComment,
    LiteralElement,
    LiteralText,
    Message,
    Otherwise,
    TemplateNode,
    ValueOf,
)
from .node import Attr, Node
from .sort import sort_by_keys, sort_document_order

if TYPE_CHECKING:
    from .context import Context
    from .stylesheet import Stylesheet

logger = logging.getLogger(__name__)


_MESSAGE_SINK: ContextVar[list[str] | None] = ContextVar("turboxsl_message_sink", default=None)


def emit_message(text: str) -> None:
    """Record a message for the running transformation.

    Messages go to the list handed to `Stylesheet.transform(messages=...)`.
    Without an active list the message is dropped; logging is left to the
    caller.
    """
    sink = _MESSAGE_SINK.get()
    if sink is not None:
        sink.append(text)


# -----------------
# Output helpers
# -----------------


def _insert(stylesheet: Stylesheet, context: Context, node: Node) -> Node:
    stylesheet.sink(context.parent, context.next_sibling, node)
    return node


def _insert_text(stylesheet: Stylesheet, context: Context, data: str) -> None:
    if data:
        _insert(stylesheet, context, Node("#text", data=data))


def _set_attribute(stylesheet: Stylesheet, context: Context, name: str, value: str) -> None:
    stylesheet.sink(context.parent, None, Attr(name, value, None))


def _copy_into(stylesheet: Stylesheet, context: Context, node: Node) -> None:
    if isinstance(node, Attr):
        _set_attribute(stylesheet, context, node.name, node.value)
    elif node.is_document:
        for child in node.children:
            _copy_into(stylesheet, context, child)
    elif node.is_text:
        _insert_text(stylesheet, context, node.data)
    else:
        _insert(stylesheet, context, node.copy(deep=True))


# -----------------
# Selection
# -----------------


def _select_ordered(select, sort_keys, context: Context) -> list[Node] | None:
    """Evaluate a selection and order it; None when it yields no node collection."""
    result = select.evaluate(context.node, context.position, context.size)
    if not is_node_set(result):
        return None
    nodes = list(result)
    if sort_keys:
        return sort_by_keys(nodes, sort_keys, context.position, context.size)
    # Evaluators need not return document order, so always sort.
    return sort_document_order(nodes)


# -----------------
# Instructions
# -----------------


def _apply_for_each(instruction: ForEach, stylesheet: Stylesheet, mode, context: Context) -> None:
    if instruction.children is None:
        return
    nodes = _select_ordered(instruction.select, instruction.sort_keys, context)
    if nodes is None:
        if stylesheet.debug:
            logger.debug("%r selected a non-node value; nothing to iterate", instruction)
        return
    size = len(nodes)
    if stylesheet.debug:
        logger.debug("%r selected %d node(s)", instruction, size)
    for position, node in enumerate(nodes, 1):
        apply_chain(instruction.children, stylesheet, mode, context.for_item(node, position, size))


def _apply_templates(instruction: ApplyTemplates, stylesheet: Stylesheet, mode, context: Context) -> None:
    nodes = _select_ordered(instruction.select, instruction.sort_keys, context)
    if nodes is None:
        return
    target_mode = mode if instruction.mode == ApplyTemplates.CURRENT_MODE else instruction.mode
    size = len(nodes)
    for position, node in enumerate(nodes, 1):
        body = stylesheet.resolve_template(node, target_mode)
        if stylesheet.debug:
            logger.debug("Dispatch %r (mode=%s) -> %r", node, target_mode, body)
        if body is not None:
            apply_chain(body, stylesheet, target_mode, context.for_item(node, position, size))


def _apply_call_template(instruction: CallTemplate, stylesheet: Stylesheet, mode, context: Context) -> None:
    body = stylesheet.named_template(instruction.name)
    if body is not None:
        apply_chain(body, stylesheet, mode, context)


def _apply_literal_element(instruction: LiteralElement, stylesheet: Stylesheet, mode, context: Context) -> None:
    element = Node(instruction.name)
    for name, parts in instruction.attrs.items():
        element.attrs[name] = "".join(
            string_value(part.evaluate(context.node, context.position, context.size)) for part in parts
        )
    _insert(stylesheet, context, element)
    if instruction.children is not None:
        apply_chain(instruction.children, stylesheet, mode, context.with_output(element, None))


def _apply_copy(instruction: Copy, stylesheet: Stylesheet, mode, context: Context) -> None:
    node = context.node
    if isinstance(node, Attr):
        _set_attribute(stylesheet, context, node.name, node.value)
        return
    if node.is_text:
        _insert_text(stylesheet, context, node.data)
        return
    if node.is_comment:
        _insert(stylesheet, context, Node("#comment", data=node.data))
        return
    if node.is_document:
        target = context
    else:
        element = _insert(stylesheet, context, Node(node.name))
        target = context.with_output(element, None)
    if instruction.children is not None:
        apply_chain(instruction.children, stylesheet, mode, target)


def _apply_copy_of(instruction: CopyOf, stylesheet: Stylesheet, mode, context: Context) -> None:
    result = instruction.select.evaluate(context.node, context.position, context.size)
    if not is_node_set(result):
        _insert_text(stylesheet, context, string_value(result))
        return
    for node in sort_document_order(result):
        _copy_into(stylesheet, context, node)


def _apply_choose(instruction: Choose, stylesheet: Stylesheet, mode, context: Context) -> None:
    for branch in instruction.branches:
        if isinstance(branch, Otherwise) or boolean_value(
            branch.test.evaluate(context.node, context.position, context.size)
        ):
            if branch.children is not None:
                apply_chain(branch.children, stylesheet, mode, context)
            return


def _apply_message(instruction: Message, stylesheet: Stylesheet, mode, context: Context) -> None:
    text = string_value(instruction.select.evaluate(context.node, context.position, context.size))
    emit_message(text)
    if instruction.terminate:
        logger.warning("Transformation terminated: %s", text)
        raise TerminateError(text, "terminated")
    logger.info("%s", text)


def _apply_one(instruction: TemplateNode, stylesheet: Stylesheet, mode, context: Context) -> None:
    if isinstance(instruction, ForEach):
        _apply_for_each(instruction, stylesheet, mode, context)
    elif isinstance(instruction, ApplyTemplates):
        _apply_templates(instruction, stylesheet, mode, context)
    elif isinstance(instruction, LiteralElement):
        _apply_literal_element(instruction, stylesheet, mode, context)
    elif isinstance(instruction, LiteralText):
        _insert_text(stylesheet, context, instruction.text)
    elif isinstance(instruction, ValueOf):
        value = instruction.select.evaluate(context.node, context.position, context.size)
        _insert_text(stylesheet, context, string_value(value))
    elif isinstance(instruction, Attribute):
        value = instruction.select.evaluate(context.node, context.position, context.size)
        _set_attribute(stylesheet, context, instruction.name, string_value(value))
    elif isinstance(instruction, If):
        if instruction.children is not None and boolean_value(
            instruction.test.evaluate(context.node, context.position, context.size)
        ):
            apply_chain(instruction.children, stylesheet, mode, context)
    elif isinstance(instruction, Choose):
        _apply_choose(instruction, stylesheet, mode, context)
    elif isinstance(instruction, CallTemplate):
        _apply_call_template(instruction, stylesheet, mode, context)
    elif isinstance(instruction, Copy):
        _apply_copy(instruction, stylesheet, mode, context)
    elif isinstance(instruction, CopyOf):
        _apply_copy_of(instruction, stylesheet, mode, context)
    elif isinstance(instruction, LiteralComment):
        _insert(stylesheet, context, Node("#comment", data=instruction.text))
    elif isinstance(instruction, Message):
        _apply_message(instruction, stylesheet, mode, context)
    elif type(instruction) is TemplateNode:
        # A bare TemplateNode only groups its children.
        if instruction.children is not None:
            apply_chain(instruction.children, stylesheet, mode, context)
    else:
        msg = f"Unknown instruction type: {type(instruction).__name__}"
        raise TransformationFailure(msg, "unknown-instruction")


def apply_chain(head: TemplateNode | None, stylesheet: Stylesheet, mode: str | None, context: Context) -> None:
    """Apply ``head`` and every sibling after it, all with the same ``context``."""
    instruction = head
    while instruction is not None:
        _apply_one(instruction, stylesheet, mode, context)
        instruction = instruction.next
