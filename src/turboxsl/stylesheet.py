"""Stylesheets: template rules, dispatch, and the transform entry point."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .context import Context
from .engine import _MESSAGE_SINK, apply_chain
from .errors import TransformationFailure
from .instructions import ApplyTemplates, TemplateNode, ValueOf
from .node import Node
from .pattern import Pattern, compile_pattern
from .sink import insert_node

logger = logging.getLogger(__name__)


class TransformOpts:
    __slots__ = ("builtin_templates", "debug", "strip_whitespace")

    def __init__(self, builtin_templates=True, strip_whitespace=False, debug=False):
        self.builtin_templates = bool(builtin_templates)
        self.strip_whitespace = bool(strip_whitespace)
        self.debug = bool(debug)


@dataclass(frozen=True, slots=True)
class Template:
    """A template rule: a body plus how it is found (match pattern and/or name)."""

    body: TemplateNode | None
    match: Pattern | None
    name: str | None
    mode: str | None
    priority: float | None

    def __init__(
        self,
        body: TemplateNode | None,
        *,
        match: str | Pattern | None = None,
        name: str | None = None,
        mode: str | None = None,
        priority: float | None = None,
    ) -> None:
        if match is None and name is None:
            msg = "Template needs a match pattern or a name"
            raise ValueError(msg)
        object.__setattr__(self, "body", body)
        object.__setattr__(self, "match", compile_pattern(match) if match is not None else None)
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "mode", mode)
        object.__setattr__(self, "priority", float(priority) if priority is not None else None)


@dataclass(frozen=True, slots=True)
class _Rule:
    pattern: object
    priority: float
    index: int
    body: TemplateNode | None


# Built-in rules (XSLT 1.0, section 5.8).
_BUILTIN_APPLY = ApplyTemplates(mode=ApplyTemplates.CURRENT_MODE)
_BUILTIN_TEXT = ValueOf(".")


class Stylesheet:
    """Compiled stylesheet. Immutable after construction."""

    __slots__ = ("_named", "_rules", "opts", "sink", "templates")

    def __init__(self, templates, *, opts=None, sink=None):
        self.templates = tuple(templates)
        self.opts = opts or TransformOpts()
        self.sink = sink or insert_node

        rules: dict[str | None, list[_Rule]] = {}
        named: dict[str, TemplateNode | None] = {}
        for index, template in enumerate(self.templates):
            if not isinstance(template, Template):
                msg = f"Unsupported template type: {type(template).__name__}"
                raise TypeError(msg)
            if template.name is not None:
                # Later declarations win.
                named[template.name] = template.body
            if template.match is None:
                continue
            # Each alternative of a union is a rule of its own.
            for alternative in template.match.alternatives:
                priority = template.priority if template.priority is not None else alternative.default_priority
                rules.setdefault(template.mode, []).append(_Rule(alternative, priority, index, template.body))

        for mode_rules in rules.values():
            # Highest priority first; among equals the later declaration first.
            mode_rules.sort(key=lambda rule: (-rule.priority, -rule.index))
        self._rules = rules
        self._named = named

    @property
    def debug(self):
        return self.opts.debug

    def resolve_template(self, node: Node, mode: str | None) -> TemplateNode | None:
        """Body of the rule that applies to ``node`` in ``mode``.

        Falls back to the built-in rules when nothing matches, or to None when
        built-ins are disabled.
        """
        for rule in self._rules.get(mode, ()):
            if rule.pattern.matches(node):
                return rule.body
        if not self.opts.builtin_templates:
            return None
        if node.is_document or node.is_element:
            return _BUILTIN_APPLY
        if node.is_text or node.kind == "attribute":
            return _BUILTIN_TEXT
        return None

    def named_template(self, name: str) -> TemplateNode | None:
        try:
            return self._named[name]
        except KeyError:
            msg = f"No template named {name!r}"
            raise TransformationFailure(msg, "unknown-template") from None

    def transform(self, source: Node, *, messages: list[str] | None = None) -> Node:
        """Transform ``source`` into a new result document.

        Messages emitted while transforming are appended to ``messages``.
        """
        if self.opts.strip_whitespace:
            source = strip_whitespace(source.copy(deep=True))
        result = Node("#document")
        root = source.root()
        context = Context(root, 1, 1, result, None)

        token = _MESSAGE_SINK.set(messages)
        try:
            body = self.resolve_template(root, None)
            if self.debug:
                logger.debug("Transform root %r with %r", root, body)
            if body is not None:
                apply_chain(body, self, None, context)
        finally:
            _MESSAGE_SINK.reset(token)
        return result


def strip_whitespace(node: Node) -> Node:
    """Remove whitespace-only text nodes below ``node`` (in place)."""
    for child in list(node.children):
        if child.is_text and not child.data.strip():
            node.remove_child(child)
        else:
            strip_whitespace(child)
    return node
