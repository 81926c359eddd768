"""Match patterns for template rules.

A pattern is a restricted location path (``para``, ``chapter/title``,
``list//item[@kind='x']``, ``/``, ``text()``) or a union of them. Matching runs
right to left: the last step must match the node itself, earlier steps match
its ancestors.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import ExpressionError
from .expr import Parser, PathExpr, Step, UnionExpr, apply_predicates
from .node import Attr

_PATTERN_AXES = frozenset({"child", "attribute"})


@dataclass(frozen=True, slots=True)
class PathPattern:
    absolute: bool
    steps: tuple[Step, ...]
    source: str

    @property
    def default_priority(self) -> float:
        steps = self.steps
        if len(steps) != 1 or self.absolute:
            return 0.5 if steps else -0.5
        step = steps[0]
        if step.predicates:
            return 0.5
        if step.test == "name":
            return 0.0
        return -0.5

    def matches(self, node) -> bool:
        if not self.steps:
            return node.parent is None and node.is_document
        return _match_steps(node, self.steps, len(self.steps) - 1, self.absolute)

    def __str__(self):
        return self.source


def _step_matches(node, step: Step) -> bool:
    if not step.matches_test(node):
        return False
    if node.is_document:
        return False
    if not step.predicates:
        return True
    parent = node.parent
    if parent is None:
        siblings = [node]
    else:
        siblings = step.candidates(parent)
    return any(_same_node(n, node) for n in apply_predicates(siblings, step.predicates))


def _same_node(candidate, node) -> bool:
    if candidate is node:
        return True
    # Attribute steps build fresh Attr views on every call.
    return (
        isinstance(candidate, Attr)
        and isinstance(node, Attr)
        and candidate.parent is node.parent
        and candidate.name == node.name
    )


def _match_steps(node, steps: tuple[Step, ...], index: int, absolute: bool) -> bool:
    if index < 0:
        if absolute:
            return node is not None and node.parent is None and node.is_document
        return True
    if node is None:
        return False
    step = steps[index]
    if step.axis == "descendant-or-self":
        current = node
        while current is not None:
            if _match_steps(current, steps, index - 1, absolute):
                return True
            current = current.parent
        return False
    if not _step_matches(node, step):
        return False
    return _match_steps(node.parent, steps, index - 1, absolute)


@dataclass(frozen=True, slots=True)
class Pattern:
    alternatives: tuple[PathPattern, ...]
    source: str

    def matches(self, node) -> bool:
        return any(alt.matches(node) for alt in self.alternatives)

    @property
    def default_priority(self) -> float:
        return max(alt.default_priority for alt in self.alternatives)

    def __str__(self):
        return self.source


def _flatten_union(expr, out: list) -> None:
    if isinstance(expr, UnionExpr):
        _flatten_union(expr.left, out)
        _flatten_union(expr.right, out)
    else:
        out.append(expr)


def compile_pattern(source: str | Pattern) -> Pattern:
    if isinstance(source, Pattern):
        return source
    parser = Parser(source)
    if parser.at_end():
        raise parser.error("Empty pattern")
    union = parser.parse_union()
    if not parser.at_end():
        raise parser.error(f"Unexpected token {parser.peek()[1]!r}")

    paths: list = []
    _flatten_union(union, paths)
    alternatives = []
    for path in paths:
        if not isinstance(path, PathExpr) or path.start is not None:
            msg = f"Not a match pattern: {source!r}"
            raise ExpressionError(msg, "pattern-syntax")
        for i, step in enumerate(path.steps):
            dos_separator = step.axis == "descendant-or-self" and step.test == "node" and i < len(path.steps) - 1
            if step.axis not in _PATTERN_AXES and not dos_separator:
                msg = f"Axis {step.axis!r} is not allowed in pattern {source!r}"
                raise ExpressionError(msg, "pattern-syntax")
        alternatives.append(PathPattern(path.absolute, path.steps, str(path)))
    return Pattern(tuple(alternatives), source)
