from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Iterator, List, Mapping, Sequence

from .exceptions import SchemaError


@dataclass(frozen=True)
class NodeSpec:
    """Catalogue entry for a node type."""

    content: str | None = None
    attrs: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_textblock(self) -> bool:
        return self.content == "inline*" or self.content == "text*"


# Content expressions follow the editor schema; only "block+", "inline*",
# "text*", "list_item+", "paragraph block*", "table_row+" and "cell+" are used.
NODE_SPECS: dict[str, NodeSpec] = {
    "doc": NodeSpec(content="block+"),
    "paragraph": NodeSpec(content="inline*"),
    "heading": NodeSpec(content="inline*", attrs={"level": 1}),
    "blockquote": NodeSpec(content="block+"),
    "code_block": NodeSpec(content="text*", attrs={"language": ""}),
    "horizontal_rule": NodeSpec(),
    "bullet_list": NodeSpec(content="list_item+"),
    "ordered_list": NodeSpec(content="list_item+", attrs={"order": 1}),
    "list_item": NodeSpec(content="paragraph block*"),
    "image": NodeSpec(
        attrs={"src": None, "alt": None, "title": None, "align": "inline", "width": 100, "relativeSrc": None},
    ),
    "hard_break": NodeSpec(),
    "text": NodeSpec(),
    "table": NodeSpec(content="table_row+"),
    "table_row": NodeSpec(content="cell+"),
    "table_cell": NodeSpec(content="block+"),
    "table_header": NodeSpec(content="block+"),
}

# Rank order: earlier marks wrap later ones when serialized.
MARK_SPECS: dict[str, Mapping[str, Any]] = {
    "comment": {"text": ""},
    "link": {"href": None, "title": None},
    "em": {},
    "strong": {},
    "strikethrough": {},
    "code": {},
}

CELL_TYPES = ("table_cell", "table_header")


@dataclass
class Mark:
    type: str
    attrs: dict[str, Any] = field(default_factory=dict)

    @property
    def rank(self) -> int:
        return list(MARK_SPECS).index(self.type)

    def is_in_set(self, marks: Sequence["Mark"]) -> bool:
        return any(self == other for other in marks)


@dataclass
class Node:
    type: str
    children: List["Node"] = field(default_factory=list)
    attrs: dict[str, Any] = field(default_factory=dict)
    text: str | None = None
    marks: List[Mark] = field(default_factory=list)

    @property
    def spec(self) -> NodeSpec:
        return NODE_SPECS[self.type]

    @property
    def is_text(self) -> bool:
        return self.type == "text"

    @property
    def is_textblock(self) -> bool:
        return self.spec.is_textblock

    @property
    def child_count(self) -> int:
        return len(self.children)

    def child(self, index: int) -> "Node":
        return self.children[index]

    @property
    def first_child(self) -> "Node | None":
        return self.children[0] if self.children else None

    @property
    def text_content(self) -> str:
        return text_content(self)

    def with_text(self, value: str) -> "Node":
        return replace(self, text=value)


def create_mark(type_name: str, **attrs: Any) -> Mark:
    if type_name not in MARK_SPECS:
        raise SchemaError(f"Unknown mark type: {type_name}")
    defaults = MARK_SPECS[type_name]
    unknown = set(attrs) - set(defaults)
    if unknown:
        raise SchemaError(f"Unknown attributes for mark {type_name}: {sorted(unknown)}")
    return Mark(type=type_name, attrs={**defaults, **attrs})


def add_mark(mark: Mark, marks: Sequence[Mark]) -> List[Mark]:
    """Return a new mark set with ``mark`` inserted by rank, replacing a mark of the same type."""
    result = [m for m in marks if m.type != mark.type]
    position = 0
    while position < len(result) and result[position].rank < mark.rank:
        position += 1
    result.insert(position, mark)
    return result


def remove_mark(type_name: str, marks: Sequence[Mark]) -> List[Mark]:
    return [m for m in marks if m.type != type_name]


def create_node(
    type_name: str,
    attrs: Mapping[str, Any] | None = None,
    children: Sequence[Node] | None = None,
    marks: Sequence[Mark] | None = None,
) -> Node:
    if type_name == "text":
        raise SchemaError("Use text_node() to create text nodes")
    if type_name not in NODE_SPECS:
        raise SchemaError(f"Unknown node type: {type_name}")
    defaults = NODE_SPECS[type_name].attrs
    attrs = dict(attrs or {})
    unknown = set(attrs) - set(defaults)
    if unknown:
        raise SchemaError(f"Unknown attributes for node {type_name}: {sorted(unknown)}")
    return Node(
        type=type_name,
        children=merge_text_runs(children or []),
        attrs={**defaults, **attrs},
        marks=list(marks or []),
    )


def text_node(value: str, marks: Sequence[Mark] | None = None) -> Node:
    if not value:
        raise SchemaError("Empty text nodes are not allowed")
    return Node(type="text", text=value, marks=list(marks or []))


def merge_text_runs(nodes: Sequence[Node]) -> List[Node]:
    """Join adjacent text nodes that carry identical mark sets."""
    merged: List[Node] = []
    for node in nodes:
        last = merged[-1] if merged else None
        if last is not None and last.is_text and node.is_text and last.marks == node.marks:
            merged[-1] = last.with_text((last.text or "") + (node.text or ""))
        else:
            merged.append(node)
    return merged


def text_content(node: Node) -> str:
    if node.is_text:
        return node.text or ""
    return "".join(text_content(child) for child in node.children)


def iter_text_leaves(node: Node) -> Iterator[Node]:
    if node.is_text:
        yield node
        return
    for child in node.children:
        yield from iter_text_leaves(child)


def empty_paragraph() -> Node:
    return create_node("paragraph")


def create_table(rows: int = 2, cols: int = 2) -> Node:
    """Build an empty table whose first row holds header cells."""
    if rows < 1 or cols < 1:
        raise SchemaError("A table needs at least one row and one column")
    header = create_node("table_row", children=[create_node("table_header", children=[empty_paragraph()]) for _ in range(cols)])
    body = [
        create_node("table_row", children=[create_node("table_cell", children=[empty_paragraph()]) for _ in range(cols)])
        for _ in range(rows - 1)
    ]
    return create_node("table", children=[header, *body])


def fill_content(type_name: str, children: Sequence[Node]) -> List[Node]:
    """Complete required content the way the editor fills freshly created nodes."""
    content = NODE_SPECS[type_name].content
    children = list(children)
    if content == "block+" and not children:
        return [empty_paragraph()]
    if content == "paragraph block*" and (not children or children[0].type != "paragraph"):
        return [empty_paragraph(), *children]
    return children
