from __future__ import annotations

import unittest

from turboxsl import (
    Context,
    Document,
    Element,
    ForEach,
    FunctionExpr,
    LiteralElement,
    Node,
    SortKey,
    Stylesheet,
    TransformationFailure,
    TransformOpts,
    ValueOf,
    to_xml,
)


class _UnscannableList(list):
    def index(self, *args):
        raise AssertionError("sibling lookup scanned the child list")


class Recorder:
    """Expression that records the context it is evaluated in."""

    def __init__(self):
        self.calls = []

    def __call__(self, node, position, size):
        self.calls.append((node, position, size))
        return ""

    def expr(self):
        return FunctionExpr(self)

    @property
    def nodes(self):
        return [call[0] for call in self.calls]


class TestForEach(unittest.TestCase):
    def setUp(self) -> None:
        self.a = Element("a")
        self.b = Element("b")
        self.c = Element("c")
        self.doc = Document(Element("root", None, self.a, self.b, self.c))
        self.stylesheet = Stylesheet([])
        self.result = Node("#document")

    def context(self, position=1, size=1) -> Context:
        return Context(self.doc, position, size, self.result, None)

    def test_no_sort_keys_iterates_in_document_order(self) -> None:
        body = Recorder()
        for_each = ForEach(FunctionExpr(lambda n, p, s: [self.c, self.a, self.b]), children=ValueOf(body.expr()))
        for_each.apply(self.stylesheet, None, self.context())
        assert body.calls == [(self.a, 1, 3), (self.b, 2, 3), (self.c, 3, 3)]

    def test_numeric_sort_key_with_ties_keeps_incoming_order(self) -> None:
        values = {"a": 2, "b": 2, "c": 1}
        key = SortKey(FunctionExpr(lambda n, p, s: float(values[n.name])), data_type="number")
        body = Recorder()
        for_each = ForEach(
            FunctionExpr(lambda n, p, s: [self.c, self.a, self.b]),
            sort_keys=[key],
            children=ValueOf(body.expr()),
        )
        for_each.apply(self.stylesheet, None, self.context())
        assert body.nodes == [self.c, self.a, self.b]
        assert [call[1] for call in body.calls] == [1, 2, 3]

    def test_sort_stability_follows_pre_sort_order_not_document_order(self) -> None:
        key = SortKey(FunctionExpr(lambda n, p, s: "same"))
        body = Recorder()
        for_each = ForEach(
            FunctionExpr(lambda n, p, s: [self.c, self.b, self.a]),
            sort_keys=[key],
            children=ValueOf(body.expr()),
        )
        for _ in range(2):
            body.calls.clear()
            for_each.apply(self.stylesheet, None, self.context())
            assert body.nodes == [self.c, self.b, self.a]

    def test_scalar_selection_skips_body_and_runs_sibling(self) -> None:
        body = Recorder()
        sibling = Recorder()
        for_each = ForEach(
            FunctionExpr(lambda n, p, s: True),
            children=ValueOf(body.expr()),
            next=ValueOf(sibling.expr()),
        )
        for_each.apply(self.stylesheet, None, self.context())
        assert body.calls == []
        assert len(sibling.calls) == 1

    def test_string_and_number_selections_are_not_collections(self) -> None:
        for value in ("abc", 3.0, ""):
            body = Recorder()
            for_each = ForEach(FunctionExpr(lambda n, p, s, v=value: v), children=ValueOf(body.expr()))
            for_each.apply(self.stylesheet, None, self.context())
            assert body.calls == []

    def test_empty_selection_still_continues_with_sibling(self) -> None:
        body = Recorder()
        sibling = Recorder()
        for_each = ForEach("root/missing", children=ValueOf(body.expr()), next=ValueOf(sibling.expr()))
        for_each.apply(self.stylesheet, None, self.context())
        assert body.calls == []
        assert sibling.calls == [(self.doc, 1, 1)]

    def test_sibling_sees_the_incoming_context(self) -> None:
        body = Recorder()
        sibling = Recorder()
        for_each = ForEach("root/*", children=ValueOf(body.expr()), next=ValueOf(sibling.expr()))
        for_each.apply(self.stylesheet, None, self.context(position=2, size=5))
        assert len(body.calls) == 3
        assert sibling.calls == [(self.doc, 2, 5)]

    def test_select_sees_the_incoming_position_and_size(self) -> None:
        seen = []

        def select(node, position, size):
            seen.append((node, position, size))
            return [self.a]

        ForEach(FunctionExpr(select), children=ValueOf(".")).apply(self.stylesheet, None, self.context(4, 7))
        assert seen == [(self.doc, 4, 7)]

    def test_without_children_select_is_not_evaluated(self) -> None:
        select = Recorder()
        sibling = Recorder()
        for_each = ForEach(select.expr(), next=ValueOf(sibling.expr()))
        for_each.apply(self.stylesheet, None, self.context())
        assert select.calls == []
        assert len(sibling.calls) == 1

    def test_evaluation_failure_propagates_and_stops_siblings(self) -> None:
        failure = TransformationFailure("boom", "test-failure")

        def select(node, position, size):
            raise failure

        sibling = Recorder()
        for_each = ForEach(FunctionExpr(select), children=ValueOf("."), next=ValueOf(sibling.expr()))
        with self.assertRaises(TransformationFailure) as cm:
            for_each.apply(self.stylesheet, None, self.context())
        assert cm.exception is failure
        assert sibling.calls == []

    def test_failure_in_body_keeps_partial_output(self) -> None:
        def body(node, position, size):
            if position == 2:
                msg = "second item"
                raise TransformationFailure(msg)
            return node.name

        for_each = ForEach("root/*", children=ValueOf(FunctionExpr(body)))
        with self.assertRaises(TransformationFailure):
            for_each.apply(self.stylesheet, None, self.context())
        assert to_xml(self.result) == "a"

    def test_iterations_share_the_output_location(self) -> None:
        marker = self.result.append_child(Element("end"))
        for_each = ForEach("root/*", children=LiteralElement("item", {"name": "{name()}"}))
        for_each.apply(self.stylesheet, None, Context(self.doc, 1, 1, self.result, marker))
        assert to_xml(self.result) == '<item name="a"/><item name="b"/><item name="c"/><end/>'

    def test_nested_for_each_restores_outer_iteration(self) -> None:
        doc = Document(Element("r", None, Element("g", None, Element("x"), Element("y")), Element("g", None, Element("z"))))
        inner = Recorder()
        outer_after = Recorder()
        for_each = ForEach(
            "r/g",
            children=ForEach("*", children=ValueOf(inner.expr()), next=ValueOf(outer_after.expr())),
        )
        for_each.apply(self.stylesheet, None, Context(doc, 1, 1, self.result, None))
        assert [(n.name, p, s) for n, p, s in inner.calls] == [("x", 1, 2), ("y", 2, 2), ("z", 1, 1)]
        assert [(n.name, p, s) for n, p, s in outer_after.calls] == [("g", 1, 2), ("g", 2, 2)]

    def test_wide_selection_is_ordered_without_scanning_siblings(self) -> None:
        items = [Element("i", {"n": str(n)}) for n in range(5000)]
        wide = Element("r", None, *items)
        doc = Document(wide)
        wide.children = _UnscannableList(wide.children)
        body = Recorder()
        for_each = ForEach("r/i", children=ValueOf(body.expr()))
        for_each.apply(self.stylesheet, None, Context(doc, 1, 1, self.result, None))
        assert body.nodes == items
        reversed_selection = ForEach(FunctionExpr(lambda n, p, s: items[::-1]), children=ValueOf("@n"))
        reversed_selection.apply(self.stylesheet, None, Context(doc, 1, 1, self.result, None))
        assert to_xml(self.result) == "".join(str(n) for n in range(5000))

    def test_debug_logging_reports_selection_size(self) -> None:
        stylesheet = Stylesheet([], opts=TransformOpts(debug=True))
        with self.assertLogs("turboxsl.engine", level="DEBUG") as logs:
            ForEach("root/*", children=ValueOf(".")).apply(stylesheet, None, self.context())
        assert any("selected 3 node(s)" in line for line in logs.output)

    def test_instruction_tree_is_reusable_across_documents(self) -> None:
        for_each = ForEach("root/*", children=ValueOf("name()"))
        other = Document(Element("root", None, Element("q")))
        first = Node("#document")
        second = Node("#document")
        for_each.apply(self.stylesheet, None, Context(self.doc, 1, 1, first, None))
        for_each.apply(self.stylesheet, None, Context(other, 1, 1, second, None))
        assert to_xml(first) == "abc"
        assert to_xml(second) == "q"


if __name__ == "__main__":
    unittest.main()
