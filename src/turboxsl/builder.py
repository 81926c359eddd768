"""Build source trees from XML text."""

import xml.etree.ElementTree as ET

from .errors import TransformationFailure
from .node import Node
from .stylesheet import strip_whitespace as _strip_whitespace


def _convert(element, parent):
    node = Node(element.tag, element.attrib)
    parent.append_child(node)
    if element.text:
        node.append_child(Node("#text", data=element.text))
    for child in element:
        if child.tag is ET.Comment:
            node.append_child(Node("#comment", data=child.text or ""))
        elif child.tag is ET.ProcessingInstruction:
            pass
        else:
            _convert(child, node)
        if child.tail:
            node.append_child(Node("#text", data=child.tail))
    return node


def parse_xml(text, *, strip_whitespace=False):
    """Parse well-formed XML into a '#document' node.

    Comments inside the root element are kept; processing instructions are
    dropped. Namespaced names use Clark notation ('{uri}local').
    """
    parser = ET.XMLParser(target=ET.TreeBuilder(insert_comments=True))
    try:
        root = ET.fromstring(text, parser=parser)
    except ET.ParseError as exc:
        msg = f"Malformed XML: {exc}"
        raise TransformationFailure(msg, "malformed-xml") from exc

    document = Node("#document")
    _convert(root, document)
    if strip_whitespace:
        _strip_whitespace(document)
    return document
