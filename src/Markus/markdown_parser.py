from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from functools import reduce
from typing import Any, Callable, Dict, List, Sequence, Tuple

from markdown_it import MarkdownIt
from markdown_it.token import Token

from .config import DEFAULT_OPTIONS, MarkdownOptions
from .model import Mark, Node, add_mark, create_mark, create_node, fill_content, remove_mark, text_node
from .postprocessor import apply_image_attrs, resolve_comments
from .preprocessor import preprocess

logger = logging.getLogger(__name__)


@dataclass
class SourceToken:
    """A tokenizer event with its optional source line span ``[start, end)``."""

    type: str
    tag: str = ""
    attrs: Dict[str, Any] = field(default_factory=dict)
    content: str = ""
    info: str = ""
    level: int = 0
    line_span: Tuple[int, int] | None = None
    children: List["SourceToken"] | None = None

    def attr(self, name: str) -> Any:
        return self.attrs.get(name)


_md: MarkdownIt | None = None


def get_tokenizer() -> MarkdownIt:
    global _md
    if _md is None:
        _md = MarkdownIt("commonmark", {"html": True}).enable(["table", "strikethrough"])
    return _md


def _convert_token(tok: Token) -> SourceToken:
    return SourceToken(
        type=tok.type,
        tag=tok.tag,
        attrs=dict(tok.attrs or {}),
        content=tok.content or "",
        info=(tok.info or "").strip(),
        level=tok.level,
        line_span=(tok.map[0], tok.map[1]) if tok.map else None,
        children=[_convert_token(child) for child in tok.children] if tok.children is not None else None,
    )


def tokenize(text: str) -> List[SourceToken]:
    return [_convert_token(tok) for tok in get_tokenizer().parse(text)]


# ---------------------------------------------------------------------------
# Tokenizer adapter


@dataclass(frozen=True)
class TokenSpec:
    block: str | None = None
    node: str | None = None
    mark: str | None = None
    ignore: bool = False
    no_close_token: bool = False
    get_attrs: Callable[[SourceToken], Dict[str, Any]] | None = None


def _image_attrs(tok: SourceToken) -> Dict[str, Any]:
    alt = tok.children[0].content if tok.children else None
    return {"src": tok.attr("src"), "title": tok.attr("title") or None, "alt": alt or None}


TOKEN_SPECS: Dict[str, TokenSpec] = {
    "blockquote": TokenSpec(block="blockquote"),
    "paragraph": TokenSpec(block="paragraph"),
    "list_item": TokenSpec(block="list_item"),
    "bullet_list": TokenSpec(block="bullet_list"),
    "ordered_list": TokenSpec(block="ordered_list", get_attrs=lambda tok: {"order": int(tok.attr("start") or 1)}),
    "heading": TokenSpec(block="heading", get_attrs=lambda tok: {"level": int(tok.tag[1:])}),
    "code_block": TokenSpec(block="code_block", no_close_token=True),
    "fence": TokenSpec(block="code_block", no_close_token=True, get_attrs=lambda tok: {"language": tok.info or ""}),
    "hr": TokenSpec(node="horizontal_rule"),
    "image": TokenSpec(node="image", get_attrs=_image_attrs),
    "hardbreak": TokenSpec(node="hard_break"),
    "em": TokenSpec(mark="em"),
    "strong": TokenSpec(mark="strong"),
    "s": TokenSpec(mark="strikethrough"),
    "link": TokenSpec(
        mark="link", get_attrs=lambda tok: {"href": tok.attr("href"), "title": tok.attr("title") or None}
    ),
    "code_inline": TokenSpec(mark="code", no_close_token=True),
    # Tables are assembled by parse_table, never through these specs.
    "table": TokenSpec(ignore=True),
    "thead": TokenSpec(ignore=True),
    "tbody": TokenSpec(ignore=True),
    "tr": TokenSpec(ignore=True),
    "th": TokenSpec(ignore=True),
    "td": TokenSpec(ignore=True),
    "html_block": TokenSpec(ignore=True, no_close_token=True),
    "html_inline": TokenSpec(ignore=True, no_close_token=True),
}


@dataclass
class _Frame:
    type: str
    attrs: Dict[str, Any]
    children: List[Node] = field(default_factory=list)
    marks: List[Mark] = field(default_factory=list)


class _ParseState:
    def __init__(self) -> None:
        self.stack: List[_Frame] = [_Frame("doc", {})]

    def top(self) -> _Frame:
        return self.stack[-1]

    def push(self, node: Node) -> None:
        self.top().children.append(node)

    def add_text(self, text: str) -> None:
        if not text:
            return
        top = self.top()
        last = top.children[-1] if top.children else None
        if last is not None and last.is_text and last.marks == top.marks:
            top.children[-1] = last.with_text((last.text or "") + text)
        else:
            top.children.append(text_node(text, top.marks))

    def open_mark(self, mark: Mark) -> None:
        top = self.top()
        top.marks = add_mark(mark, top.marks)

    def close_mark(self, type_name: str) -> None:
        top = self.top()
        top.marks = remove_mark(type_name, top.marks)

    def add_node(self, type_name: str, attrs: Dict[str, Any], children: Sequence[Node] | None = None) -> Node:
        node = create_node(type_name, attrs, fill_content(type_name, children or []), marks=self.top().marks)
        self.push(node)
        return node

    def open_node(self, type_name: str, attrs: Dict[str, Any]) -> None:
        self.stack.append(_Frame(type_name, attrs))

    def close_node(self) -> Node:
        frame = self.stack.pop()
        if not self.stack:
            return create_node(frame.type, frame.attrs, fill_content(frame.type, frame.children))
        return self.add_node(frame.type, frame.attrs, frame.children)


Handler = Callable[[_ParseState, SourceToken], None]


def _without_trailing_newline(text: str) -> str:
    return text[:-1] if text.endswith("\n") else text


def _build_handlers(specs: Dict[str, TokenSpec]) -> Dict[str, Handler]:
    handlers: Dict[str, Handler] = {}

    def no_attrs(tok: SourceToken) -> Dict[str, Any]:
        return {}

    for name, spec in specs.items():
        get_attrs = spec.get_attrs or no_attrs
        if spec.block:
            node_type = spec.block
            if spec.no_close_token:

                def leaf_block(state, tok, node_type=node_type, get_attrs=get_attrs):
                    state.open_node(node_type, get_attrs(tok))
                    state.add_text(_without_trailing_newline(tok.content))
                    state.close_node()

                handlers[name] = leaf_block
            else:
                handlers[name + "_open"] = lambda state, tok, t=node_type, g=get_attrs: state.open_node(t, g(tok))
                handlers[name + "_close"] = lambda state, tok: state.close_node()
        elif spec.node:
            handlers[name] = lambda state, tok, t=spec.node, g=get_attrs: state.add_node(t, g(tok))
        elif spec.mark:
            mark_type = spec.mark
            if spec.no_close_token:

                def leaf_mark(state, tok, mark_type=mark_type, get_attrs=get_attrs):
                    state.open_mark(create_mark(mark_type, **get_attrs(tok)))
                    state.add_text(_without_trailing_newline(tok.content))
                    state.close_mark(mark_type)

                handlers[name] = leaf_mark
            else:
                handlers[name + "_open"] = lambda state, tok, t=mark_type, g=get_attrs: state.open_mark(
                    create_mark(t, **g(tok))
                )
                handlers[name + "_close"] = lambda state, tok, t=mark_type: state.close_mark(t)
        elif spec.ignore:
            if spec.no_close_token:
                handlers[name] = lambda state, tok: None
            else:
                handlers[name + "_open"] = lambda state, tok: None
                handlers[name + "_close"] = lambda state, tok: None

    handlers["text"] = lambda state, tok: state.add_text(tok.content)
    handlers["inline"] = lambda state, tok: _parse_tokens(state, tok.children or [])
    handlers["softbreak"] = lambda state, tok: state.add_text(" ")
    return handlers


TOKEN_HANDLERS = _build_handlers(TOKEN_SPECS)


def _matching_table_close(tokens: Sequence[SourceToken], start: int) -> int | None:
    depth = 0
    for index in range(start, len(tokens)):
        if tokens[index].type == "table_open":
            depth += 1
        elif tokens[index].type == "table_close":
            depth -= 1
            if depth == 0:
                return index
    return None


def _parse_tokens(state: _ParseState, tokens: Sequence[SourceToken]) -> None:
    i = 0
    while i < len(tokens):
        tok = tokens[i]
        if tok.type == "table_open":
            # Only tables nested in containers reach this point.
            end = _matching_table_close(tokens, i)
            if end is not None:
                table = parse_table(tokens[i : end + 1])
                if table is not None:
                    state.push(table)
                i = end + 1
                continue
        handler = TOKEN_HANDLERS.get(tok.type)
        if handler is None:
            logger.debug("Dropping unsupported token %s", tok.type)
        else:
            handler(state, tok)
        i += 1


def _build_blocks(tokens: Sequence[SourceToken]) -> List[Node]:
    state = _ParseState()
    _parse_tokens(state, tokens)
    while len(state.stack) > 1:
        state.close_node()
    return state.top().children


def build_document(tokens: Sequence[SourceToken]) -> Node:
    """Map a table-free token stream onto a document tree."""
    return create_node("doc", children=fill_content("doc", _build_blocks(tokens)))


# ---------------------------------------------------------------------------
# Table extractor


@dataclass(frozen=True)
class _TableScan:
    state: str = "outside"  # outside | in_row | in_cell
    rows: Tuple[Node, ...] = ()
    cells: Tuple[Node, ...] = ()
    cell_type: str | None = None
    runs: Tuple[Node, ...] = ()
    table: Node | None = None


def _cell_runs(tok: SourceToken) -> Tuple[Node, ...]:
    # Marks inside cells are dropped: only literal text survives.
    if tok.children is not None:
        return tuple(text_node(child.content) for child in tok.children if child.type == "text" and child.content)
    if tok.content:
        return (text_node(tok.content),)
    return ()


def _scan_table_token(scan: _TableScan, tok: SourceToken) -> _TableScan:
    if tok.type == "table_open":
        return _TableScan()
    if tok.type == "table_close":
        table = create_node("table", children=scan.rows) if scan.rows else None
        return replace(scan, state="outside", table=table)
    if tok.type == "tr_open":
        return replace(scan, state="in_row", cells=())
    if tok.type == "tr_close":
        rows = scan.rows + (create_node("table_row", children=scan.cells),) if scan.cells else scan.rows
        return replace(scan, state="outside", rows=rows, cells=())
    if tok.type in ("th_open", "td_open"):
        cell_type = "table_header" if tok.type == "th_open" else "table_cell"
        return replace(scan, state="in_cell", cell_type=cell_type, runs=())
    if tok.type in ("th_close", "td_close"):
        if scan.cell_type is None:
            return replace(scan, state="in_row", runs=())
        paragraph = create_node("paragraph", children=scan.runs)
        cell = create_node(scan.cell_type, children=[paragraph])
        return replace(scan, state="in_row", cells=scan.cells + (cell,), cell_type=None, runs=())
    if tok.type == "inline" and scan.state == "in_cell":
        return replace(scan, runs=scan.runs + _cell_runs(tok))
    return scan


def parse_table(tokens: Sequence[SourceToken]) -> Node | None:
    """Build a table node from the tokens between ``table_open`` and ``table_close``."""
    return reduce(_scan_table_token, tokens, _TableScan()).table


# ---------------------------------------------------------------------------
# Document assembler


def table_ranges(tokens: Sequence[SourceToken]) -> List[Tuple[int, int]]:
    ranges: List[Tuple[int, int]] = []
    start: int | None = None
    for index, tok in enumerate(tokens):
        if tok.level != 0:
            continue
        if tok.type == "table_open":
            start = index
        elif tok.type == "table_close" and start is not None:
            ranges.append((start, index))
            start = None
    return ranges


def source_for_tokens(lines: Sequence[str], tokens: Sequence[SourceToken], start: int, end: int) -> str:
    spans = [tok.line_span for tok in tokens[start:end] if tok.line_span is not None]
    if not spans:
        return ""
    first = min(span[0] for span in spans)
    last = max(span[1] for span in spans)
    return "\n".join(lines[first:last])


def _parse_span(text: str) -> List[Node]:
    if not text.strip():
        return []
    return _build_blocks(tokenize(text))


def assemble_document(source: str, tokens: Sequence[SourceToken]) -> Node:
    ranges = table_ranges(tokens)
    if not ranges:
        return build_document(tokens)

    lines = source.split("\n")
    children: List[Node] = []
    last_end = 0
    for start, end in ranges:
        if start > last_end:
            children.extend(_parse_span(source_for_tokens(lines, tokens, last_end, start)))
        table = parse_table(tokens[start : end + 1])
        if table is None:
            logger.debug("Skipping table tokens %d-%d without rows", start, end)
        else:
            children.append(table)
        last_end = end + 1

    if last_end < len(tokens):
        children.extend(_parse_span(source_for_tokens(lines, tokens, last_end, len(tokens))))

    return create_node("doc", children=fill_content("doc", children))


def parse_markdown(text: str, options: MarkdownOptions | None = None) -> Node:
    options = options or DEFAULT_OPTIONS
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    prepared = preprocess(text, sentinel_policy=options.sentinel_policy)
    tokens = tokenize(prepared.text)
    document = assemble_document(prepared.text, tokens)
    document = apply_image_attrs(document, prepared.images)
    return resolve_comments(document, prepared.comments)
