"""Selection expressions.

The engine consumes expressions through one narrow contract:

    expr.evaluate(context_node, position, size) -> Value

where ``Value`` is a string, a number, a boolean or a node collection. Hosts
may bring their own evaluator (any object with that method, or a plain
callable wrapped in `FunctionExpr`). `compile_expr` provides a small XPath 1.0
subset that covers what stylesheets typically select with.

Compiled expressions are immutable and can be shared between threads.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .errors import ExpressionError
from .node import Node, document_order_keys

if TYPE_CHECKING:
    from collections.abc import Callable

    Value = str | float | bool | list[Node]


# -----------------
# Value conversions
# -----------------


def is_node_set(value: object) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def _first_in_document_order(nodes) -> Node | None:
    if not nodes:
        return None
    nodes = list(nodes)
    if len(nodes) == 1:
        return nodes[0]
    keys = document_order_keys(nodes)
    return nodes[keys.index(min(keys))]


def format_number(number: float) -> str:
    if math.isnan(number):
        return "NaN"
    if math.isinf(number):
        return "Infinity" if number > 0 else "-Infinity"
    if number == int(number):
        return str(int(number))
    return repr(float(number))


def string_value(value: object) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    if isinstance(value, Node):
        return value.text_content
    if is_node_set(value):
        first = _first_in_document_order(value)
        return first.text_content if first is not None else ""
    return str(value)


def number_value(value: object) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    text = string_value(value).strip()
    # XPath numbers: optional minus, digits with an optional fraction. No exponents.
    if not re.fullmatch(r"-?(\d+(\.\d*)?|\.\d+)", text):
        return math.nan
    return float(text)


def boolean_value(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ""
    if is_node_set(value):
        return len(value) > 0
    return bool(value)


# -----------------
# Expression types
# -----------------


class Expr:
    __slots__ = ()

    def evaluate(self, node: Node, position: int, size: int) -> Value:
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class FunctionExpr(Expr):
    """Adapt a host callable ``func(node, position, size)`` to the Expr contract."""

    func: Callable[[Node, int, int], Value]
    label: str = "<function>"

    def evaluate(self, node, position, size):
        return self.func(node, position, size)

    def __str__(self):
        return self.label


@dataclass(frozen=True, slots=True)
class Literal(Expr):
    value: str | float

    def evaluate(self, node, position, size):
        return self.value


_SELF_AXES = frozenset({"self", "ancestor-or-self", "descendant-or-self"})


@dataclass(frozen=True, slots=True)
class Step:
    axis: str
    test: str
    name: str | None = None
    predicates: tuple[Expr, ...] = ()

    def matches_test(self, node: Node) -> bool:
        test = self.test
        if self.axis == "attribute":
            if node.kind != "attribute":
                return False
            return test == "node" or test == "*" or (test == "name" and node.name == self.name)
        if node.kind == "attribute":
            # Reached through self-like axes only; name tests need an element.
            return test == "node" and self.axis in _SELF_AXES
        if test == "node":
            return True
        if test == "text":
            return node.name == "#text"
        if test == "comment":
            return node.name == "#comment"
        if not node.is_element:
            return False
        return test == "*" or node.name == self.name

    def candidates(self, node: Node) -> list[Node]:
        """Nodes on this step's axis from ``node``, in axis order, filtered by the node test."""
        axis = self.axis
        if axis == "child":
            found = list(node.children)
        elif axis == "attribute":
            found = node.attributes() if node.is_element else []
        elif axis == "self":
            found = [node]
        elif axis == "parent":
            found = [node.parent] if node.parent is not None else []
        elif axis == "descendant" or axis == "descendant-or-self":
            found = [node] if axis == "descendant-or-self" else []
            stack = list(reversed(node.children))
            while stack:
                current = stack.pop()
                found.append(current)
                stack.extend(reversed(current.children))
        elif axis == "ancestor" or axis == "ancestor-or-self":
            found = [node] if axis == "ancestor-or-self" else []
            current = node.parent
            while current is not None:
                found.append(current)
                current = current.parent
        elif axis == "following-sibling":
            found = []
            current = node.next_sibling
            while current is not None:
                found.append(current)
                current = current.next_sibling
        elif axis == "preceding-sibling":
            found = []
            current = node.previous_sibling
            while current is not None:
                found.append(current)
                current = current.previous_sibling
        else:  # pragma: no cover - rejected by the parser
            msg = f"Unsupported axis {axis!r}"
            raise ExpressionError(msg, "expr-axis")
        return [n for n in found if self.matches_test(n)]

    def select(self, node: Node) -> list[Node]:
        return apply_predicates(self.candidates(node), self.predicates)

    def __str__(self):
        if self.test == "name":
            label = self.name
        elif self.test == "*":
            label = "*"
        else:
            label = f"{self.test}()"
        preds = "".join(f"[{p}]" for p in self.predicates)
        return f"{self.axis}::{label}{preds}"


def apply_predicates(nodes: list[Node], predicates: tuple[Expr, ...]) -> list[Node]:
    for predicate in predicates:
        size = len(nodes)
        kept = []
        for position, candidate in enumerate(nodes, 1):
            result = predicate.evaluate(candidate, position, size)
            if isinstance(result, (int, float)) and not isinstance(result, bool):
                if result == position:
                    kept.append(candidate)
            elif boolean_value(result):
                kept.append(candidate)
        nodes = kept
    return nodes


def _unique_in_document_order(nodes) -> list[Node]:
    nodes = list(nodes)
    if len(nodes) < 2:
        return nodes
    seen = {}
    for key, n in zip(document_order_keys(nodes), nodes):
        seen.setdefault(key, n)
    return [seen[key] for key in sorted(seen)]


@dataclass(frozen=True, slots=True)
class PathExpr(Expr):
    absolute: bool
    steps: tuple[Step, ...]
    start: Expr | None = None

    def evaluate(self, node, position, size):
        if self.start is not None:
            initial = self.start.evaluate(node, position, size)
            if not is_node_set(initial):
                msg = f"Expression {self.start} does not select nodes"
                raise ExpressionError(msg, "expr-not-a-node-set")
            current = list(initial)
        elif self.absolute:
            current = [node.root()]
        else:
            current = [node]

        for step in self.steps:
            selected = []
            for context in current:
                selected.extend(step.select(context))
            current = _unique_in_document_order(selected)
        return current

    def __str__(self):
        prefix = f"{self.start}/" if self.start is not None else ("/" if self.absolute else "")
        return prefix + "/".join(str(s) for s in self.steps)


@dataclass(frozen=True, slots=True)
class FilterExpr(Expr):
    primary: Expr
    predicates: tuple[Expr, ...]

    def evaluate(self, node, position, size):
        value = self.primary.evaluate(node, position, size)
        if not is_node_set(value):
            msg = f"Predicate applied to non-node-set {self.primary}"
            raise ExpressionError(msg, "expr-not-a-node-set")
        return apply_predicates(_unique_in_document_order(value), self.predicates)


@dataclass(frozen=True, slots=True)
class UnionExpr(Expr):
    left: Expr
    right: Expr

    def evaluate(self, node, position, size):
        left = self.left.evaluate(node, position, size)
        right = self.right.evaluate(node, position, size)
        if not is_node_set(left) or not is_node_set(right):
            msg = "Operands of '|' must be node-sets"
            raise ExpressionError(msg, "expr-not-a-node-set")
        return _unique_in_document_order([*left, *right])

    def __str__(self):
        return f"{self.left} | {self.right}"


def _compare_atoms(op: str, left: object, right: object) -> bool:
    if op in ("=", "!="):
        if isinstance(left, bool) or isinstance(right, bool):
            equal = boolean_value(left) == boolean_value(right)
        elif isinstance(left, (int, float)) or isinstance(right, (int, float)):
            equal = number_value(left) == number_value(right)
        else:
            equal = string_value(left) == string_value(right)
        return equal if op == "=" else not equal
    a = number_value(left)
    b = number_value(right)
    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    if op == ">":
        return a > b
    return a >= b


def _compare(op: str, left: object, right: object) -> bool:
    left_set = is_node_set(left)
    right_set = is_node_set(right)
    if left_set and right_set:
        rights = [n.text_content for n in right]
        return any(_compare_atoms(op, a.text_content, b) for a in left for b in rights)
    if left_set:
        if isinstance(right, bool):
            return _compare_atoms(op, boolean_value(left), right)
        return any(_compare_atoms(op, n.text_content, right) for n in left)
    if right_set:
        if isinstance(left, bool):
            return _compare_atoms(op, left, boolean_value(right))
        return any(_compare_atoms(op, left, n.text_content) for n in right)
    return _compare_atoms(op, left, right)


def _divide(a: float, b: float) -> float:
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


@dataclass(frozen=True, slots=True)
class BinaryExpr(Expr):
    op: str
    left: Expr
    right: Expr

    def evaluate(self, node, position, size):
        op = self.op
        if op == "or":
            return boolean_value(self.left.evaluate(node, position, size)) or boolean_value(
                self.right.evaluate(node, position, size)
            )
        if op == "and":
            return boolean_value(self.left.evaluate(node, position, size)) and boolean_value(
                self.right.evaluate(node, position, size)
            )
        left = self.left.evaluate(node, position, size)
        right = self.right.evaluate(node, position, size)
        if op in ("=", "!=", "<", "<=", ">", ">="):
            return _compare(op, left, right)
        a = number_value(left)
        b = number_value(right)
        if op == "+":
            return a + b
        if op == "-":
            return a - b
        if op == "*":
            return a * b
        if op == "div":
            return _divide(a, b)
        # mod truncates toward zero
        if b == 0 or math.isnan(a) or math.isnan(b) or math.isinf(a):
            return math.nan
        return math.fmod(a, b)

    def __str__(self):
        return f"{self.left} {self.op} {self.right}"


@dataclass(frozen=True, slots=True)
class NegateExpr(Expr):
    operand: Expr

    def evaluate(self, node, position, size):
        return -number_value(self.operand.evaluate(node, position, size))


# -----------------
# Functions
# -----------------


def _context_or_arg(node, args):
    if not args:
        return node
    value = args[0]
    if not is_node_set(value):
        msg = "Argument must be a node-set"
        raise ExpressionError(msg, "expr-not-a-node-set")
    return _first_in_document_order(value)


def _fn_name(node, position, size, args):
    target = _context_or_arg(node, args)
    if target is None or target.name.startswith("#"):
        return ""
    return target.name


def _fn_local_name(node, position, size, args):
    name = _fn_name(node, position, size, args)
    if name.startswith("{"):
        return name.rsplit("}", 1)[-1]
    return name.rsplit(":", 1)[-1]


def _fn_count(node, position, size, args):
    if not is_node_set(args[0]):
        msg = "count() requires a node-set"
        raise ExpressionError(msg, "expr-not-a-node-set")
    return float(len(args[0]))


def _fn_sum(node, position, size, args):
    if not is_node_set(args[0]):
        msg = "sum() requires a node-set"
        raise ExpressionError(msg, "expr-not-a-node-set")
    return float(sum(number_value(n.text_content) for n in args[0]))


def _fn_normalize_space(node, position, size, args):
    text = string_value(args[0]) if args else node.text_content
    return " ".join(text.split())


_FUNCTIONS = {
    "position": (0, 0, lambda node, position, size, args: float(position)),
    "last": (0, 0, lambda node, position, size, args: float(size)),
    "count": (1, 1, _fn_count),
    "sum": (1, 1, _fn_sum),
    "name": (0, 1, _fn_name),
    "local-name": (0, 1, _fn_local_name),
    "string": (0, 1, lambda node, position, size, args: string_value(args[0] if args else node)),
    "number": (0, 1, lambda node, position, size, args: number_value(args[0] if args else node)),
    "boolean": (1, 1, lambda node, position, size, args: boolean_value(args[0])),
    "not": (1, 1, lambda node, position, size, args: not boolean_value(args[0])),
    "true": (0, 0, lambda node, position, size, args: True),
    "false": (0, 0, lambda node, position, size, args: False),
    "concat": (2, None, lambda node, position, size, args: "".join(string_value(a) for a in args)),
    "contains": (2, 2, lambda node, position, size, args: string_value(args[1]) in string_value(args[0])),
    "starts-with": (
        2,
        2,
        lambda node, position, size, args: string_value(args[0]).startswith(string_value(args[1])),
    ),
    "string-length": (
        0,
        1,
        lambda node, position, size, args: float(len(string_value(args[0]) if args else node.text_content)),
    ),
    "normalize-space": (0, 1, _fn_normalize_space),
}


@dataclass(frozen=True, slots=True)
class CallExpr(Expr):
    name: str
    args: tuple[Expr, ...]

    def evaluate(self, node, position, size):
        _, _, impl = _FUNCTIONS[self.name]
        values = [arg.evaluate(node, position, size) for arg in self.args]
        return impl(node, position, size, values)

    def __str__(self):
        return f"{self.name}({', '.join(str(a) for a in self.args)})"


# -----------------
# Tokenizer
# -----------------


_TOKEN_RE = re.compile(
    r"""
    \s*(?:
      (?P<number>\d+(?:\.\d*)?|\.\d+)
    | (?P<string>"[^"]*"|'[^']*')
    | (?P<op>//|::|\.\.|!=|<=|>=|[/()\[\]@,|=<>+\-*.])
    | (?P<name>[A-Za-z_][\w.\-]*(?::[A-Za-z_][\w.\-]*)?)
    )
    """,
    re.VERBOSE,
)

_OPERATOR_NAMES = frozenset({"and", "or", "div", "mod"})
_NODE_TYPES = frozenset({"node", "text", "comment"})
_AXES = frozenset(
    {
        "ancestor",
        "ancestor-or-self",
        "attribute",
        "child",
        "descendant",
        "descendant-or-self",
        "following-sibling",
        "parent",
        "preceding-sibling",
        "self",
    }
)
# After one of these, '*' and operator names are operands, not operators.
_OPERAND_FOLLOWS = frozenset({"@", "::", "(", "[", ",", "|", "/", "//", "=", "!=", "<", "<=", ">", ">=", "+", "-", "*op"})


def _tokenize(source: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos = 0
    length = len(source)
    while pos < length:
        if source[pos:].strip() == "":
            break
        match = _TOKEN_RE.match(source, pos)
        if match is None or match.end() == pos:
            msg = f"Unexpected character at offset {pos} in {source!r}"
            raise ExpressionError(msg, "expr-syntax")
        pos = match.end()
        prev = tokens[-1] if tokens else None
        operator_context = prev is not None and prev[0] not in _OPERAND_FOLLOWS and prev[0] not in ("opname",)
        if match.group("number") is not None:
            tokens.append(("number", match.group("number")))
        elif match.group("string") is not None:
            tokens.append(("string", match.group("string")[1:-1]))
        elif match.group("op") is not None:
            op = match.group("op")
            if op == "*" and operator_context:
                tokens.append(("*op", op))
            else:
                tokens.append((op, op))
        else:
            name = match.group("name")
            if name in _OPERATOR_NAMES and operator_context:
                tokens.append(("opname", name))
            else:
                tokens.append(("name", name))
    return tokens


# -----------------
# Parser
# -----------------


class Parser:
    """Recursive-descent parser for the supported XPath subset."""

    __slots__ = ("pos", "source", "tokens")

    def __init__(self, source: str):
        self.source = source
        self.tokens = _tokenize(source)
        self.pos = 0

    def error(self, message: str) -> ExpressionError:
        return ExpressionError(f"{message} in {self.source!r}", "expr-syntax")

    def peek(self, offset: int = 0) -> tuple[str, str] | None:
        index = self.pos + offset
        return self.tokens[index] if index < len(self.tokens) else None

    def peek_type(self, offset: int = 0) -> str | None:
        token = self.peek(offset)
        return token[0] if token is not None else None

    def accept(self, kind: str, value: str | None = None) -> tuple[str, str] | None:
        token = self.peek()
        if token is None or token[0] != kind or (value is not None and token[1] != value):
            return None
        self.pos += 1
        return token

    def expect(self, kind: str) -> tuple[str, str]:
        token = self.accept(kind)
        if token is None:
            found = self.peek()
            raise self.error(f"Expected {kind!r}, found {found[1] if found else 'end of expression'!r}")
        return token

    def at_end(self) -> bool:
        return self.pos >= len(self.tokens)

    def parse(self) -> Expr:
        if not self.tokens:
            raise self.error("Empty expression")
        expr = self.parse_or()
        if not self.at_end():
            raise self.error(f"Unexpected token {self.peek()[1]!r}")
        return expr

    def _binary(self, operand, operators):
        left = operand()
        while True:
            token = self.peek()
            if token is None:
                return left
            kind, value = token
            if kind == "opname" and value in operators:
                op = value
            elif kind == "*op" and "*" in operators:
                op = "*"
            elif kind in operators and kind not in _OPERATOR_NAMES and kind != "*":
                op = kind
            else:
                return left
            self.pos += 1
            left = BinaryExpr(op, left, operand())

    def parse_or(self) -> Expr:
        return self._binary(self.parse_and, ("or",))

    def parse_and(self) -> Expr:
        return self._binary(self.parse_equality, ("and",))

    def parse_equality(self) -> Expr:
        return self._binary(self.parse_relational, ("=", "!="))

    def parse_relational(self) -> Expr:
        return self._binary(self.parse_additive, ("<", "<=", ">", ">="))

    def parse_additive(self) -> Expr:
        return self._binary(self.parse_multiplicative, ("+", "-"))

    def parse_multiplicative(self) -> Expr:
        return self._binary(self.parse_unary, ("*", "div", "mod"))

    def parse_unary(self) -> Expr:
        if self.accept("-"):
            return NegateExpr(self.parse_unary())
        return self.parse_union()

    def parse_union(self) -> Expr:
        left = self.parse_path()
        while self.accept("|"):
            left = UnionExpr(left, self.parse_path())
        return left

    def _starts_step(self) -> bool:
        kind = self.peek_type()
        return kind in ("name", ".", "..", "@", "*")

    def _starts_primary(self) -> bool:
        kind = self.peek_type()
        if kind in ("number", "string", "("):
            return True
        if kind == "name" and self.peek_type(1) == "(":
            return self.peek()[1] not in _NODE_TYPES
        return False

    def parse_path(self) -> Expr:
        if self.accept("/"):
            if self._starts_step():
                return PathExpr(True, tuple(self.parse_relative_steps()))
            return PathExpr(True, ())
        if self.accept("//"):
            steps = [Step("descendant-or-self", "node"), *self.parse_relative_steps()]
            return PathExpr(True, tuple(steps))
        if self._starts_primary():
            primary = self.parse_primary()
            predicates = self.parse_predicates()
            expr = FilterExpr(primary, predicates) if predicates else primary
            if self.peek_type() in ("/", "//"):
                steps = []
                if self.accept("//"):
                    steps.append(Step("descendant-or-self", "node"))
                else:
                    self.expect("/")
                steps.extend(self.parse_relative_steps())
                return PathExpr(False, tuple(steps), start=expr)
            return expr
        if not self._starts_step():
            found = self.peek()
            raise self.error(f"Unexpected token {found[1] if found else 'end of expression'!r}")
        return PathExpr(False, tuple(self.parse_relative_steps()))

    def parse_relative_steps(self) -> list[Step]:
        steps = [self.parse_step()]
        while True:
            if self.accept("/"):
                steps.append(self.parse_step())
            elif self.accept("//"):
                steps.append(Step("descendant-or-self", "node"))
                steps.append(self.parse_step())
            else:
                return steps

    def parse_step(self) -> Step:
        if self.accept("."):
            return Step("self", "node")
        if self.accept(".."):
            return Step("parent", "node")
        axis = "child"
        if self.accept("@"):
            axis = "attribute"
        elif self.peek_type() == "name" and self.peek_type(1) == "::":
            axis = self.peek()[1]
            if axis not in _AXES:
                raise self.error(f"Unknown axis {axis!r}")
            self.pos += 2
        test, name = self.parse_node_test()
        return Step(axis, test, name, self.parse_predicates())

    def parse_node_test(self) -> tuple[str, str | None]:
        if self.accept("*"):
            return "*", None
        token = self.expect("name")
        name = token[1]
        if name in _NODE_TYPES and self.peek_type() == "(":
            self.expect("(")
            self.expect(")")
            return name, None
        return "name", name

    def parse_predicates(self) -> tuple[Expr, ...]:
        predicates = []
        while self.accept("["):
            predicates.append(self.parse_or())
            self.expect("]")
        return tuple(predicates)

    def parse_primary(self) -> Expr:
        token = self.peek()
        kind, value = token
        if kind == "number":
            self.pos += 1
            return Literal(float(value))
        if kind == "string":
            self.pos += 1
            return Literal(value)
        if kind == "(":
            self.pos += 1
            inner = self.parse_or()
            self.expect(")")
            return inner
        return self.parse_call()

    def parse_call(self) -> Expr:
        name = self.expect("name")[1]
        if name not in _FUNCTIONS:
            msg = f"Unknown function {name}() in {self.source!r}"
            raise ExpressionError(msg, "expr-unknown-function")
        self.expect("(")
        args = []
        if not self.accept(")"):
            args.append(self.parse_or())
            while self.accept(","):
                args.append(self.parse_or())
            self.expect(")")
        min_args, max_args, _ = _FUNCTIONS[name]
        if len(args) < min_args or (max_args is not None and len(args) > max_args):
            msg = f"Wrong number of arguments to {name}() in {self.source!r}"
            raise ExpressionError(msg, "expr-arity")
        return CallExpr(name, tuple(args))


def compile_expr(source: str | Expr) -> Expr:
    """Compile an expression string. Already compiled expressions pass through."""
    if isinstance(source, Expr) or (not isinstance(source, str) and hasattr(source, "evaluate")):
        return source
    return Parser(str(source)).parse()
