"""Serialization of result trees."""

from xml.sax.saxutils import escape, quoteattr


def to_xml(node):
    """Render a node as XML text. Documents render their children."""
    parts = []
    _write(node, parts)
    return "".join(parts)


def _write(node, parts):
    name = node.name
    if name == "#document":
        for child in node.children:
            _write(child, parts)
        return
    if name == "#text":
        parts.append(escape(node.data))
        return
    if name == "#comment":
        parts.append(f"<!--{node.data}-->")
        return

    attr_str = "".join(f" {key}={quoteattr(str(value))}" for key, value in node.attrs.items())
    if not node.children:
        parts.append(f"<{name}{attr_str}/>")
        return
    parts.append(f"<{name}{attr_str}>")
    for child in node.children:
        _write(child, parts)
    parts.append(f"</{name}>")


def to_test_format(node, indent=0):
    """Indented '| ' tree format, one node per line, attributes sorted."""
    if node.name == "#document":
        return "\n".join(to_test_format(child, 0) for child in node.children)
    if node.name == "#text":
        return f'| {" " * indent}"{node.data}"'
    if node.name == "#comment":
        return f"| {' ' * indent}<!-- {node.data} -->"

    lines = [f"| {' ' * indent}<{node.name}>"]
    for key, value in sorted(node.attrs.items()):
        lines.append(f'| {" " * (indent + 2)}{key}="{value}"')
    lines.extend(to_test_format(child, indent + 2) for child in node.children)
    return "\n".join(lines)
