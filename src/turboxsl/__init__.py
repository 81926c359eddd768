from .builder import parse_xml
from .context import Context
from .errors import ExpressionError, TerminateError, TransformationFailure
from .expr import Expr, FunctionExpr, compile_expr
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
    When,
    chain,
)
from .node import Attr, Comment, Document, Element, Node, Text
from .pattern import compile_pattern
from .serialize import to_test_format, to_xml
from .sort import SortKey
from .stylesheet import Stylesheet, Template, TransformOpts

__all__ = [
    "ApplyTemplates",
    "Attr",
    "Attribute",
    "CallTemplate",
    "Choose",
    "Comment",
    "Context",
    "Copy",
    "CopyOf",
    "Document",
    "Element",
    "Expr",
    "ExpressionError",
    "ForEach",
    "FunctionExpr",
    "If",
    "LiteralComment",
    "LiteralElement",
    "LiteralText",
    "Message",
    "Node",
    "Otherwise",
    "SortKey",
    "Stylesheet",
    "Template",
    "TemplateNode",
    "TerminateError",
    "Text",
    "TransformOpts",
    "TransformationFailure",
    "ValueOf",
    "When",
    "chain",
    "compile_expr",
    "compile_pattern",
    "parse_xml",
    "to_test_format",
    "to_xml",
]
