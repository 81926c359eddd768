from __future__ import annotations

import unittest

from turboxsl import (
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
    SortKey,
    Stylesheet,
    Template,
    TemplateNode,
    TerminateError,
    TransformationFailure,
    TransformOpts,
    ValueOf,
    When,
    chain,
    parse_xml,
    to_test_format,
    to_xml,
)


def run(templates, xml, **kwargs):
    opts = kwargs.pop("opts", None)
    return to_xml(Stylesheet(templates, opts=opts).transform(parse_xml(xml), **kwargs))


class TestDispatch(unittest.TestCase):
    def test_builtin_templates_copy_text(self) -> None:
        assert run([], "<a>x<b>y</b><!--c--></a>") == "xy"

    def test_builtin_templates_can_be_disabled(self) -> None:
        assert run([], "<a>x</a>", opts=TransformOpts(builtin_templates=False)) == ""

    def test_name_beats_wildcard(self) -> None:
        templates = [
            Template(LiteralText("item"), match="item"),
            Template(LiteralText("star"), match="*"),
        ]
        assert run(templates, "<item/>") == "item"

    def test_later_template_wins_ties(self) -> None:
        templates = [
            Template(LiteralText("first"), match="item"),
            Template(LiteralText("second"), match="item"),
        ]
        assert run(templates, "<item/>") == "second"

    def test_explicit_priority(self) -> None:
        templates = [
            Template(LiteralText("star"), match="*", priority=5),
            Template(LiteralText("item"), match="item"),
        ]
        assert run(templates, "<item/>") == "star"

    def test_more_specific_pattern_wins(self) -> None:
        templates = [
            Template(LiteralText("nested"), match="list/item"),
            Template(LiteralText("plain"), match="item"),
        ]
        assert run(templates, "<r><list><item/></list><item/></r>") == "nestedplain"

    def test_modes(self) -> None:
        templates = [
            Template(ApplyTemplates(select="//item", mode="m"), match="/"),
            Template(LiteralText("default"), match="item"),
            Template(LiteralText("moded"), match="item", mode="m"),
        ]
        assert run(templates, "<r><item/><item/></r>") == "modedmoded"

    def test_builtin_templates_keep_the_current_mode(self) -> None:
        templates = [
            Template(ApplyTemplates(mode="m"), match="/"),
            Template(LiteralText("B"), match="b", mode="m"),
            Template(LiteralText("default"), match="b"),
        ]
        assert run(templates, "<a><b/><c>t</c></a>") == "Bt"

    def test_union_pattern_registers_each_alternative(self) -> None:
        templates = [Template(LiteralText("*"), match="b | c")]
        assert run(templates, "<a><b/>x<c/></a>") == "*x*"

    def test_builtin_template_for_attributes_outputs_the_value(self) -> None:
        templates = [Template(ApplyTemplates(select="a/@*", sort_keys=[SortKey(".", order="descending")]), match="/")]
        assert run(templates, '<a x="1" y="2"/>') == "21"

    def test_resolve_template_returns_rule_body(self) -> None:
        body = LiteralText("x")
        stylesheet = Stylesheet([Template(body, match="item")])
        doc = parse_xml("<item/>")
        assert stylesheet.resolve_template(doc.children[0], None) is body
        assert stylesheet.resolve_template(doc.children[0], "other") is not body

    def test_template_needs_match_or_name(self) -> None:
        with self.assertRaises(ValueError):
            Template(LiteralText("x"))

    def test_stylesheet_rejects_foreign_objects(self) -> None:
        with self.assertRaises(TypeError):
            Stylesheet([object()])


class TestInstructions(unittest.TestCase):
    def test_for_each_with_sort_and_attribute_value_templates(self) -> None:
        body = LiteralElement(
            "ul",
            children=ForEach(
                "list/item",
                sort_keys=[SortKey("@n", data_type="number")],
                children=LiteralElement("li", {"pos": "{position()}/{last()}"}, children=ValueOf(".")),
            ),
        )
        xml = "<list><item n='3'>c</item><item n='1'>a</item><item n='2'>b</item></list>"
        assert run([Template(body, match="/")], xml) == (
            '<ul><li pos="1/3">a</li><li pos="2/3">b</li><li pos="3/3">c</li></ul>'
        )

    def test_apply_templates_with_descending_sort(self) -> None:
        templates = [
            Template(ApplyTemplates(select="l/i", sort_keys=[SortKey(".", order="descending")]), match="/"),
            Template(ValueOf("."), match="i"),
        ]
        assert run(templates, "<l><i>b</i><i>a</i><i>c</i></l>") == "cba"

    def test_apply_templates_position(self) -> None:
        templates = [
            Template(ApplyTemplates(select="l/i"), match="/"),
            Template(ValueOf("concat(position(), ':', .)"), match="i"),
        ]
        assert run(templates, "<l><i>a</i><i>b</i></l>") == "1:a2:b"

    def test_call_template(self) -> None:
        templates = [
            Template(LiteralText("hi "), name="greet"),
            Template(chain(CallTemplate("greet"), ValueOf("name(*)")), match="/"),
        ]
        assert run(templates, "<world/>") == "hi world"

    def test_unknown_named_template(self) -> None:
        with self.assertRaises(TransformationFailure) as cm:
            run([Template(CallTemplate("missing"), match="/")], "<a/>")
        assert cm.exception.code == "unknown-template"

    def test_if(self) -> None:
        templates = [
            Template(ApplyTemplates(select="r/i"), match="/"),
            Template(If("@n = 2", children=ValueOf(".")), match="i"),
        ]
        assert run(templates, "<r><i n='1'>a</i><i n='2'>b</i></r>") == "b"

    def test_choose(self) -> None:
        choose = Choose(
            (
                When("@n > 2", children=LiteralText("big")),
                When("@n > 1", children=LiteralText("medium")),
                Otherwise(children=LiteralText("small")),
            )
        )
        templates = [
            Template(ApplyTemplates(select="r/i"), match="/"),
            Template(chain(choose, LiteralText(";")), match="i"),
        ]
        assert run(templates, "<r><i n='1'/><i n='2'/><i n='3'/></r>") == "small;medium;big;"

    def test_choose_rejects_misplaced_otherwise(self) -> None:
        with self.assertRaises(ValueError):
            Choose((Otherwise(), When("true()")))

    def test_identity_transform(self) -> None:
        templates = [Template(Copy(children=ApplyTemplates(select="@*|node()")), match="@*|node()")]
        xml = '<a x="1"><b>t</b><!--c--><d y="2"/></a>'
        assert run(templates, xml) == xml

    def test_copy_does_not_copy_attributes(self) -> None:
        templates = [Template(Copy(children=ApplyTemplates()), match="*")]
        assert run(templates, '<r id="1"><c k="v"/>t</r>') == "<r><c/>t</r>"

    def test_copy_of(self) -> None:
        body = LiteralElement("out", children=chain(CopyOf("//b"), CopyOf("count(//b)")))
        assert run([Template(body, match="/")], '<a><b k="v">t</b></a>') == '<out><b k="v">t</b>1</out>'

    def test_copy_of_attribute_sets_it_on_the_output_element(self) -> None:
        body = LiteralElement("out", children=CopyOf("a/@k"))
        assert run([Template(body, match="/")], '<a k="v"/>') == '<out k="v"/>'

    def test_attribute_and_comment(self) -> None:
        body = LiteralElement("e", children=chain(Attribute("id", "name(*)"), LiteralComment(" note ")))
        assert run([Template(body, match="/")], "<root/>") == '<e id="root"><!-- note --></e>'

    def test_adjacent_text_is_merged(self) -> None:
        body = LiteralElement("e", children=chain(LiteralText("a"), ValueOf("'b'"), LiteralText("c")))
        doc = Stylesheet([Template(body, match="/")]).transform(parse_xml("<r/>"))
        assert len(doc.children[0].children) == 1
        assert to_test_format(doc) == '| <e>\n|   "abc"'

    def test_bare_template_node_groups_children(self) -> None:
        body = TemplateNode(children=chain(LiteralText("a"), LiteralText("b")), next=LiteralText("c"))
        assert run([Template(body, match="/")], "<r/>") == "abc"


class TestTransform(unittest.TestCase):
    def test_messages_are_collected(self) -> None:
        messages: list[str] = []
        templates = [Template(chain(Message("concat('at ', name(*))"), LiteralText("x")), match="/")]
        assert run(templates, "<r/>", messages=messages) == "x"
        assert messages == ["at r"]

    def test_terminating_message_stops_the_transform(self) -> None:
        messages: list[str] = []
        templates = [Template(chain(Message("'stop'", terminate=True), LiteralText("x")), match="/")]
        with self.assertRaises(TerminateError):
            run(templates, "<r/>", messages=messages)
        assert messages == ["stop"]

    def test_messages_without_a_sink_are_logged(self) -> None:
        templates = [Template(Message("'hello'"), match="/")]
        with self.assertLogs("turboxsl.engine", level="INFO") as logs:
            run(templates, "<r/>")
        assert any("hello" in line for line in logs.output)

    def test_strip_whitespace(self) -> None:
        xml = "<a>\n  <b>x</b>\n</a>"
        assert run([], xml) == "\n  x\n"
        assert run([], xml, opts=TransformOpts(strip_whitespace=True)) == "x"

    def test_strip_whitespace_does_not_touch_the_source(self) -> None:
        source = parse_xml("<a> <b/> </a>")
        Stylesheet([], opts=TransformOpts(strip_whitespace=True)).transform(source)
        assert len(source.children[0].children) == 3

    def test_expression_failure_reaches_the_caller(self) -> None:
        templates = [Template(chain(LiteralText("partial"), ValueOf("count('x')")), match="/")]
        with self.assertRaises(TransformationFailure) as cm:
            run(templates, "<r/>")
        assert cm.exception.code == "expr-not-a-node-set"

    def test_stylesheet_is_reusable(self) -> None:
        stylesheet = Stylesheet([Template(ValueOf("name(*)"), match="/")])
        assert to_xml(stylesheet.transform(parse_xml("<a/>"))) == "a"
        assert to_xml(stylesheet.transform(parse_xml("<b/>"))) == "b"

    def test_custom_sink(self) -> None:
        inserted = []

        def sink(parent, next_sibling, node):
            inserted.append(node.name)
            parent.append_child(node)

        stylesheet = Stylesheet([Template(LiteralElement("x", children=LiteralText("t")), match="/")], sink=sink)
        assert to_xml(stylesheet.transform(parse_xml("<a/>"))) == "<x>t</x>"
        assert inserted == ["x", "#text"]

    def test_custom_sink_receives_every_text_chunk_and_attribute(self) -> None:
        seen = []

        def sink(parent, next_sibling, node):
            seen.append((node.name, node.data))
            if node.kind != "attribute":
                parent.append_child(node)

        body = LiteralElement("e", children=chain(LiteralText("a"), ValueOf("'b'"), Attribute("id", "'x'")))
        doc = Stylesheet([Template(body, match="/")], sink=sink).transform(parse_xml("<r/>"))
        assert seen == [("e", ""), ("#text", "a"), ("#text", "b"), ("id", "x")]
        assert to_xml(doc) == "<e>ab</e>"

    def test_attribute_on_document_output_is_ignored(self) -> None:
        assert run([Template(chain(Attribute("id", "'x'"), LiteralText("t")), match="/")], "<r/>") == "t"


if __name__ == "__main__":
    unittest.main()
