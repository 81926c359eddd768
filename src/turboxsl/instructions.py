"""Template instructions.

An instruction is one unit of a compiled template. Instructions form two
chains: `next` links siblings that run in declaration order against the same
context, `children` is the head of a nested chain that runs against a new
context. Instructions are immutable once built and may be shared across
transformations and threads.

The behaviour of each instruction lives in `engine.py`; this module only describes
the program.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, ClassVar

from .errors import ExpressionError
from .expr import Expr, Literal, compile_expr
from .sort import SortKey

if TYPE_CHECKING:
    from .context import Context
    from .stylesheet import Stylesheet


def _compile_sort_keys(sort_keys) -> tuple[SortKey, ...] | None:
    if not sort_keys:
        return None
    compiled = []
    for key in sort_keys:
        if isinstance(key, SortKey):
            compiled.append(key)
        else:
            compiled.append(SortKey(key))
    return tuple(compiled)


_AVT_RE = re.compile(r"\{\{|\}\}|\{([^{}]*)\}|\{|\}")


def compile_avt(value: str | tuple) -> tuple[Expr, ...]:
    """Compile an attribute value template such as ``"item-{position()}"``.

    ``{{`` and ``}}`` stand for literal braces.
    """
    if isinstance(value, tuple):
        return value
    parts: list[Expr] = []
    text: list[str] = []
    cursor = 0
    for match in _AVT_RE.finditer(value):
        text.append(value[cursor : match.start()])
        cursor = match.end()
        token = match.group(0)
        if token == "{{":
            text.append("{")
        elif token == "}}":
            text.append("}")
        elif match.group(1) is not None:
            pending = "".join(text)
            if pending:
                parts.append(Literal(pending))
            text = []
            parts.append(compile_expr(match.group(1)))
        else:
            msg = f"Unbalanced brace in attribute value template {value!r}"
            raise ExpressionError(msg, "avt-syntax")
    text.append(value[cursor:])
    joined = "".join(text)
    if joined:
        parts.append(Literal(joined))
    return tuple(parts)


@dataclass(frozen=True, slots=True, eq=False, kw_only=True)
class TemplateNode:
    """Base instruction: a position in a sibling chain with an optional child chain."""

    children: TemplateNode | None = None
    next: TemplateNode | None = None

    def apply(self, stylesheet: Stylesheet, mode: str | None, context: Context) -> None:
        """Run this instruction and the siblings that follow it."""
        from .engine import apply_chain

        apply_chain(self, stylesheet, mode, context)

    def __repr__(self):
        return f"{type(self).__name__}()"


@dataclass(frozen=True, slots=True, eq=False)
class ForEach(TemplateNode):
    """Apply the child chain once per selected node, in document or sort-key order."""

    select: Expr
    sort_keys: tuple[SortKey, ...] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "select", compile_expr(self.select))
        object.__setattr__(self, "sort_keys", _compile_sort_keys(self.sort_keys))

    def __repr__(self):
        return f"ForEach[select={self.select}]"


@dataclass(frozen=True, slots=True, eq=False)
class ApplyTemplates(TemplateNode):
    """Process selected nodes (default: the context node's children) with the
    template rules the stylesheet resolves for them."""

    select: Expr | None = None
    mode: str | None = None
    sort_keys: tuple[SortKey, ...] | None = None

    CURRENT_MODE: ClassVar[str] = "#current"

    def __post_init__(self) -> None:
        object.__setattr__(self, "select", compile_expr(self.select if self.select is not None else "node()"))
        object.__setattr__(self, "sort_keys", _compile_sort_keys(self.sort_keys))

    def __repr__(self):
        return f"ApplyTemplates[select={self.select}, mode={self.mode}]"


@dataclass(frozen=True, slots=True, eq=False)
class CallTemplate(TemplateNode):
    name: str

    def __repr__(self):
        return f"CallTemplate[name={self.name}]"


@dataclass(frozen=True, slots=True, eq=False)
class LiteralElement(TemplateNode):
    """Create an element; the child chain fills it."""

    name: str
    attrs: dict[str, tuple[Expr, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        compiled = {key: compile_avt(value) for key, value in (self.attrs or {}).items()}
        object.__setattr__(self, "attrs", compiled)

    def __repr__(self):
        return f"LiteralElement[<{self.name}>]"


@dataclass(frozen=True, slots=True, eq=False)
class Attribute(TemplateNode):
    """Set an attribute on the element currently being built."""

    name: str
    select: Expr

    def __post_init__(self) -> None:
        object.__setattr__(self, "select", compile_expr(self.select))


@dataclass(frozen=True, slots=True, eq=False)
class LiteralText(TemplateNode):
    text: str

    def __repr__(self):
        return f"LiteralText[{self.text[:30]!r}]"


@dataclass(frozen=True, slots=True, eq=False)
class LiteralComment(TemplateNode):
    text: str


@dataclass(frozen=True, slots=True, eq=False)
class ValueOf(TemplateNode):
    select: Expr

    def __post_init__(self) -> None:
        object.__setattr__(self, "select", compile_expr(self.select))

    def __repr__(self):
        return f"ValueOf[select={self.select}]"


@dataclass(frozen=True, slots=True, eq=False)
class CopyOf(TemplateNode):
    select: Expr

    def __post_init__(self) -> None:
        object.__setattr__(self, "select", compile_expr(self.select))


@dataclass(frozen=True, slots=True, eq=False)
class Copy(TemplateNode):
    """Shallow copy of the context node; the child chain fills the copy."""


@dataclass(frozen=True, slots=True, eq=False)
class If(TemplateNode):
    test: Expr

    def __post_init__(self) -> None:
        object.__setattr__(self, "test", compile_expr(self.test))

    def __repr__(self):
        return f"If[test={self.test}]"


@dataclass(frozen=True, slots=True, eq=False)
class When:
    test: Expr
    children: TemplateNode | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "test", compile_expr(self.test))


@dataclass(frozen=True, slots=True, eq=False)
class Otherwise:
    children: TemplateNode | None = None


@dataclass(frozen=True, slots=True, eq=False)
class Choose(TemplateNode):
    """Run the first `When` whose test holds, else the `Otherwise` branch."""

    branches: tuple[When | Otherwise, ...] = ()

    def __post_init__(self) -> None:
        branches = tuple(self.branches)
        for i, branch in enumerate(branches):
            if isinstance(branch, Otherwise) and i != len(branches) - 1:
                msg = "Otherwise must be the last branch of Choose"
                raise ValueError(msg)
            if not isinstance(branch, (When, Otherwise)):
                msg = f"Unknown Choose branch: {branch!r}"
                raise TypeError(msg)
        object.__setattr__(self, "branches", branches)


@dataclass(frozen=True, slots=True, eq=False)
class Message(TemplateNode):
    """Report a message; with `terminate` the transformation stops."""

    select: Expr
    terminate: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "select", compile_expr(self.select))


def chain(*instructions: TemplateNode) -> TemplateNode | None:
    """Link instructions into a sibling chain and return its head.

    Each instruction is re-created with its `next` pointing at the following
    one; the originals are left untouched.
    """
    head = None
    for instruction in reversed(instructions):
        head = replace(instruction, next=head)
    return head
