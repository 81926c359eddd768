import itertools

_serials = itertools.count()


class Node:
    """Represents a node of a source or result tree.
    - name: element name, or '#document', '#text', '#comment'
    - attrs: dict of attributes (insertion ordered)
    - data: character data for text and comment nodes
    - children: list of child Nodes
    - parent: reference to parent Node (or None for a root)
    - next_sibling/previous_sibling: references to adjacent nodes in the tree.
    """

    __slots__ = (
        "_serial",
        "attrs",
        "children",
        "data",
        "name",
        "next_sibling",
        "parent",
        "previous_sibling",
    )

    kind = "element"

    def __init__(self, name, attrs=None, data=None):
        if name is None or name == "":
            msg = "Empty name passed to Node constructor"
            raise ValueError(msg)

        self.name = name
        self.attrs = dict(attrs) if attrs else {}
        self.data = data if data is not None else ""
        self.children = []
        self.parent = None
        self.next_sibling = None
        self.previous_sibling = None
        # Creation sequence; orders nodes that live in different trees.
        self._serial = next(_serials)

    @property
    def is_element(self):
        return not self.name.startswith("#") and self.kind == "element"

    @property
    def is_text(self):
        return self.name == "#text"

    @property
    def is_comment(self):
        return self.name == "#comment"

    @property
    def is_document(self):
        return self.name == "#document"

    @property
    def text_content(self):
        """String value of the node.

        Text and comment nodes return their data; elements and documents
        return the concatenation of all descendant text nodes.
        """
        if self.name in ("#text", "#comment"):
            return self.data
        parts = []
        stack = list(reversed(self.children))
        while stack:
            current = stack.pop()
            if current.name == "#text":
                parts.append(current.data)
            elif current.name != "#comment":
                stack.extend(reversed(current.children))
        return "".join(parts)

    def root(self):
        current = self
        while current.parent is not None:
            current = current.parent
        return current

    def document_position(self):
        """Path of child indices from the root down to this node."""
        path = []
        current = self
        while current.parent is not None:
            path.append(current.parent.children.index(current))
            current = current.parent
        path.reverse()
        return tuple(path)

    def append_child(self, child):
        if self._would_create_circular_reference(child):
            msg = f"Adding {child.name} as child of {self.name} would create circular reference"
            raise ValueError(msg)

        if child.parent is not None:
            child.parent.remove_child(child)

        if self.children:
            self.children[-1].next_sibling = child
            child.previous_sibling = self.children[-1]
        else:
            child.previous_sibling = None

        child.parent = self
        child.next_sibling = None
        self.children.append(child)
        return child

    def _would_create_circular_reference(self, child):
        """Check if adding child would create a circular reference."""
        current = self
        while current is not None:
            if current is child:
                return True
            current = current.parent
        return False

    def insert_before(self, new_node, reference_node):
        """Insert new_node before reference_node; append when reference is None."""
        if reference_node is None:
            return self.append_child(new_node)
        if reference_node.parent is not self:
            msg = f"Reference node {reference_node!r} is not a child of {self!r}"
            raise ValueError(msg)
        if self._would_create_circular_reference(new_node):
            msg = f"Adding {new_node.name} as child of {self.name} would create circular reference"
            raise ValueError(msg)

        if new_node.parent is not None:
            new_node.parent.remove_child(new_node)

        idx = self.children.index(reference_node)
        new_node.parent = self
        self.children.insert(idx, new_node)

        new_node.next_sibling = reference_node
        new_node.previous_sibling = reference_node.previous_sibling
        reference_node.previous_sibling = new_node
        if new_node.previous_sibling is not None:
            new_node.previous_sibling.next_sibling = new_node
        return new_node

    def remove_child(self, child):
        """Remove a child node, updating all sibling links."""
        if child.parent is not self:
            return

        if child.previous_sibling is not None:
            child.previous_sibling.next_sibling = child.next_sibling
        if child.next_sibling is not None:
            child.next_sibling.previous_sibling = child.previous_sibling

        self.children.remove(child)
        child.parent = None
        child.next_sibling = None
        child.previous_sibling = None

    def attributes(self):
        """Attribute nodes of this element, in declaration order."""
        return [Attr(key, value, self) for key, value in self.attrs.items()]

    def copy(self, deep=True):
        clone = Node(self.name, self.attrs, self.data)
        if deep:
            for child in self.children:
                clone.append_child(child.copy(deep=True))
        return clone

    def __repr__(self):
        if self.name == "#text":
            return f"Node(#text='{self.data[:30]}')"
        if self.name == "#comment":
            return f"Node(#comment='{self.data[:30]}')"
        return f"Node(<{self.name}>, children={len(self.children)})"


class Attr(Node):
    """Attribute node. Owned by an element but not one of its children."""

    __slots__ = ()

    kind = "attribute"

    def __init__(self, name, value, owner):
        super().__init__(name, data=value)
        self.parent = owner

    @property
    def value(self):
        return self.data

    @property
    def text_content(self):
        return self.data

    def document_position(self):
        owner = self.parent
        if owner is None:
            return ()
        index = list(owner.attrs).index(self.name)
        # Attributes follow their owner and precede its children.
        return (*owner.document_position(), -1, index)

    def copy(self, deep=True):
        return Attr(self.name, self.data, None)

    def __repr__(self):
        return f"Attr({self.name}={self.data[:30]!r})"


def Document(*children):
    doc = Node("#document")
    for child in children:
        doc.append_child(child)
    return doc


def Element(name, attrs=None, *children):
    element = Node(name, attrs)
    for child in children:
        if isinstance(child, str):
            child = Text(child)
        element.append_child(child)
    return element


def Text(data):
    return Node("#text", data=data)


def Comment(data):
    return Node("#comment", data=data)


def document_order_key(node):
    """Sort key giving a total order consistent with document order.

    Nodes of different trees are ordered by when their roots were created.
    """
    return document_order_keys((node,))[0]


def document_order_keys(nodes):
    """`document_order_key` for many nodes at once.

    Sibling indexes are built once per parent and ancestor paths are shared,
    so keying every child of a wide element stays linear.
    """
    indexes = {}
    paths = {}

    def key_of(node):
        if isinstance(node, Attr):
            owner = node.parent
            if owner is None:
                return (node._serial, ())
            serial, path = key_of(owner)
            return (serial, (*path, -1, list(owner.attrs).index(node.name)))
        pending = []
        current = node
        while current.parent is not None and id(current) not in paths:
            pending.append(current)
            current = current.parent
        if id(current) in paths:
            serial, path = paths[id(current)]
        else:
            serial, path = current._serial, ()
            paths[id(current)] = (serial, path)
        for ancestor in reversed(pending):
            parent = ancestor.parent
            table = indexes.get(id(parent))
            if table is None:
                table = {id(child): i for i, child in enumerate(parent.children)}
                indexes[id(parent)] = table
            path = (*path, table[id(ancestor)])
            paths[id(ancestor)] = (serial, path)
        return (serial, path)

    return [key_of(node) for node in nodes]
