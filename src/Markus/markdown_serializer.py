from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

from .config import DEFAULT_OPTIONS, MarkdownOptions
from .exceptions import SerializationError
from .model import Mark, Node, text_content
from .preprocessor import DEFAULT_ALIGN, DEFAULT_WIDTH, escape_comment_text, format_destination, format_title

logger = logging.getLogger(__name__)

NodeRenderer = Callable[["MarkdownSerializerState", Node, Node, int], None]
MarkString = Union[str, Callable[["MarkdownSerializerState", Mark, Node, int], str]]


@dataclass(frozen=True)
class MarkSpec:
    open: MarkString
    close: MarkString
    mixable: bool = False
    expel_enclosing_whitespace: bool = False
    escape: bool = True


_ESCAPE_RE = re.compile(r"[`*\\~\[\]_]")
_WORD_RE = re.compile(r"\w")
_HTML_LIKE_RE = re.compile(r"<(?=[A-Za-z/!?])|&(?=#?\w+;)")
_TRAILING_WS_RE = re.compile(r"\s+$")
# Blockquote and list markers written by wrap_block; anything else on the line is content.
_LINE_PREFIX_RE = re.compile(r"(?:[ \t]*(?:[-*+>]|\d+[.)])(?=[ \t]|$))*[ \t]*$")


class MarkdownSerializerState:
    """Output buffer with block and line state for one serialize call."""

    def __init__(
        self,
        nodes: Dict[str, NodeRenderer],
        marks: Dict[str, MarkSpec],
        options: MarkdownOptions,
    ) -> None:
        self.nodes = nodes
        self.marks = marks
        self.options = options
        self.delim = ""
        self.out = ""
        self.closed: Node | None = None
        self.in_tight_list = False
        self.in_autolink = False

    def flush_close(self, size: int = 2) -> None:
        if self.closed is None:
            return
        if not self.at_blank():
            self.out += "\n"
        if size > 1:
            delim_min = _TRAILING_WS_RE.sub("", self.delim)
            for _ in range(1, size):
                self.out += delim_min + "\n"
        self.closed = None

    def wrap_block(self, delim: str, first_delim: str | None, node: Node, render: Callable[[], None]) -> None:
        old = self.delim
        self.write(first_delim if first_delim is not None else delim)
        self.delim += delim
        render()
        self.delim = old
        self.close_block(node)

    def at_blank(self) -> bool:
        return not self.out or self.out.endswith("\n")

    def at_line_start(self) -> bool:
        """True when the current line holds nothing but container prefixes."""
        return _LINE_PREFIX_RE.match(self.out[self.out.rfind("\n") + 1 :]) is not None

    def ensure_new_line(self) -> None:
        if not self.at_blank():
            self.out += "\n"

    def write(self, content: str | None = None) -> None:
        self.flush_close()
        if self.delim and self.at_blank():
            self.out += self.delim
        if content:
            self.out += content

    def close_block(self, node: Node) -> None:
        self.closed = node

    def text(self, text: str, escape: bool = True) -> None:
        lines = text.split("\n")
        for i, line in enumerate(lines):
            self.write()
            # Keep a literal "!" from turning a following link into an image.
            if not escape and line.startswith("[") and re.search(r"(^|[^\\])!$", self.out):
                self.out = self.out[:-1] + "\\!"
            self.out += self.esc(line, self.at_line_start()) if escape else line
            if i != len(lines) - 1:
                self.out += "\n"

    def render(self, node: Node, parent: Node, index: int) -> None:
        renderer = self.nodes.get(node.type)
        if renderer is None:
            raise SerializationError(f"Node type `{node.type}` not supported by Markdown serializer")
        renderer(self, node, parent, index)

    def render_content(self, parent: Node) -> None:
        for index, child in enumerate(parent.children):
            self.render(child, parent, index)

    def render_inline(self, parent: Node) -> None:
        active: List[Mark] = []
        trailing = ""

        def progress(node: Optional[Node], index: int) -> None:
            nonlocal active, trailing
            marks = list(node.marks) if node is not None else []

            # Marks on a closing hard break would leave a newline before the delimiter.
            if node is not None and node.type == "hard_break":
                marks = [m for m in marks if _continues_after(m, parent, index)]

            leading = trailing
            trailing = ""
            if (
                node is not None
                and node.is_text
                and any(self._info(m).expel_enclosing_whitespace and not m.is_in_set(active) for m in marks)
            ):
                lead, rest = re.match(r"(\s*)(.*)", node.text or "", re.DOTALL).groups()
                if lead:
                    leading += lead
                    node = node.with_text(rest) if rest else None
                    if node is None:
                        marks = active
            if (
                node is not None
                and node.is_text
                and any(
                    self._info(m).expel_enclosing_whitespace
                    and (index == parent.child_count - 1 or not m.is_in_set(parent.child(index + 1).marks))
                    for m in marks
                )
            ):
                rest, trail = re.match(r"(.*?)(\s*)\Z", node.text or "", re.DOTALL).groups()
                if trail:
                    trailing = trail
                    node = node.with_text(rest) if rest else None
                    if node is None:
                        marks = active

            inner = marks[-1] if marks else None
            no_esc = inner is not None and not self._info(inner).escape
            length = len(marks) - (1 if no_esc else 0)

            # Reorder mixable marks so they match the order already open.
            i = 0
            while i < length:
                mark = marks[i]
                if not self._info(mark).mixable:
                    break
                for j, other in enumerate(active):
                    if not self._info(other).mixable:
                        break
                    if mark == other:
                        if i > j:
                            marks = marks[:j] + [mark] + marks[j:i] + marks[i + 1 : length]
                        elif j > i:
                            marks = marks[:i] + marks[i + 1 : j] + [mark] + marks[j:length]
                        break
                i += 1

            keep = 0
            while keep < min(len(active), length) and marks[keep] == active[keep]:
                keep += 1

            while keep < len(active):
                self.text(self.mark_string(active.pop(), False, parent, index), False)

            if leading:
                self.text(leading)

            if node is not None:
                while len(active) < length:
                    add = marks[len(active)]
                    active.append(add)
                    self.text(self.mark_string(add, True, parent, index), False)

                if no_esc and node.is_text:
                    self.text(
                        self.mark_string(inner, True, parent, index)
                        + (node.text or "")
                        + self.mark_string(inner, False, parent, index + 1),
                        False,
                    )
                else:
                    self.render(node, parent, index)

        for index, child in enumerate(parent.children):
            progress(child, index)
        progress(None, parent.child_count)

    def render_list(self, node: Node, delim: str, first_delim: Callable[[int], str]) -> None:
        if self.closed is not None and self.closed.type == node.type:
            self.flush_close(3)
        elif self.in_tight_list:
            self.flush_close(1)

        is_tight = self.options.tight_lists
        prev_tight = self.in_tight_list
        self.in_tight_list = is_tight
        for index, child in enumerate(node.children):
            if index and is_tight:
                self.flush_close(1)
            self.wrap_block(delim, first_delim(index), node, lambda child=child, index=index: self.render(child, node, index))
        self.in_tight_list = prev_tight

    def esc(self, text: str, start_of_line: bool = False) -> str:
        def _escape(match: re.Match) -> str:
            ch = match.group(0)
            i = match.start()
            if (
                ch == "_"
                and 0 < i < len(text) - 1
                and _WORD_RE.match(text[i - 1])
                and _WORD_RE.match(text[i + 1])
            ):
                return ch
            return "\\" + ch

        text = _ESCAPE_RE.sub(_escape, text)
        if start_of_line:
            text = re.sub(r"^(\+[ ]|[\-*>])", r"\\\1", text)
            text = re.sub(r"^(\s*)(#{1,6})(\s|$)", r"\1\\\2\3", text)
            text = re.sub(r"^(\s*\d+)([.)])(\s)", r"\1\\\2\3", text)
        # Literal text must not re-parse as raw HTML or an entity.
        return _HTML_LIKE_RE.sub(lambda m: "\\" + m.group(0), text)

    def repeat(self, text: str, count: int) -> str:
        return text * count

    def mark_string(self, mark: Mark, open_: bool, parent: Node, index: int) -> str:
        info = self._info(mark)
        value = info.open if open_ else info.close
        return value if isinstance(value, str) else value(self, mark, parent, index)

    def _info(self, mark: Mark) -> MarkSpec:
        return self.marks[mark.type]


def _continues_after(mark: Mark, parent: Node, index: int) -> bool:
    if index + 1 == parent.child_count:
        return False
    following = parent.child(index + 1)
    return mark.is_in_set(following.marks) and (not following.is_text or bool(re.search(r"\S", following.text or "")))


# ---------------------------------------------------------------------------
# Node renderers


def _blockquote(state: MarkdownSerializerState, node: Node, parent: Node, index: int) -> None:
    state.wrap_block("> ", None, node, lambda: state.render_content(node))


def _code_block(state: MarkdownSerializerState, node: Node, parent: Node, index: int) -> None:
    state.write("```" + (node.attrs.get("language") or "") + "\n")
    state.text(text_content(node), False)
    state.ensure_new_line()
    state.write("```")
    state.close_block(node)


def _heading(state: MarkdownSerializerState, node: Node, parent: Node, index: int) -> None:
    state.write(state.repeat("#", node.attrs.get("level", 1)) + " ")
    state.render_inline(node)
    state.close_block(node)


def _horizontal_rule(state: MarkdownSerializerState, node: Node, parent: Node, index: int) -> None:
    state.write("---")
    state.close_block(node)


def _bullet_list(state: MarkdownSerializerState, node: Node, parent: Node, index: int) -> None:
    state.render_list(node, "  ", lambda _: "- ")


def _ordered_list(state: MarkdownSerializerState, node: Node, parent: Node, index: int) -> None:
    start = node.attrs.get("order") or 1
    max_width = len(str(start + node.child_count - 1))
    space = state.repeat(" ", max_width + 2)

    def marker(i: int) -> str:
        number = str(start + i)
        return state.repeat(" ", max_width - len(number)) + number + ". "

    state.render_list(node, space, marker)


def _list_item(state: MarkdownSerializerState, node: Node, parent: Node, index: int) -> None:
    state.render_content(node)


def _paragraph(state: MarkdownSerializerState, node: Node, parent: Node, index: int) -> None:
    state.render_inline(node)
    state.close_block(node)


def _html_attr(name: str, value: object) -> str:
    return f' {name}="{html.escape(str(value), quote=True)}"'


def _image(state: MarkdownSerializerState, node: Node, parent: Node, index: int) -> None:
    attrs = node.attrs
    src = attrs.get("relativeSrc") or attrs.get("src") or ""
    align = attrs.get("align") or DEFAULT_ALIGN
    width = attrs.get("width") or DEFAULT_WIDTH
    if align != DEFAULT_ALIGN or width != DEFAULT_WIDTH:
        tag = "<img" + _html_attr("src", src)
        if attrs.get("alt"):
            tag += _html_attr("alt", attrs["alt"])
        if attrs.get("title"):
            tag += _html_attr("title", attrs["title"])
        if align != DEFAULT_ALIGN:
            tag += _html_attr("align", align)
        if width != DEFAULT_WIDTH:
            tag += _html_attr("width", f"{width}%")
        state.write(tag + ">")
        return
    title = format_title(attrs["title"]) if attrs.get("title") else ""
    state.write("![" + state.esc(attrs.get("alt") or "") + "](" + format_destination(src) + title + ")")


def _hard_break(state: MarkdownSerializerState, node: Node, parent: Node, index: int) -> None:
    if index + 1 < parent.child_count and parent.child(index + 1).type != node.type:
        state.write("  \n")


def _text(state: MarkdownSerializerState, node: Node, parent: Node, index: int) -> None:
    state.text(node.text or "", not state.in_autolink)


def _table(state: MarkdownSerializerState, node: Node, parent: Node, index: int) -> None:
    rows: List[List[str]] = []
    has_header_row = False
    for row in node.children:
        cells: List[str] = []
        for cell in row.children:
            cells.append(state.esc(cell_text(cell)).replace("|", "\\|"))
            if cell.type == "table_header":
                has_header_row = True
        rows.append(cells)

    if not rows:
        logger.debug("Skipping table without rows")
        return

    col_count = max(len(row) for row in rows)
    col_widths = [max([3] + [len(row[col]) for row in rows if col < len(row)]) for col in range(col_count)]

    for i, row in enumerate(rows):
        state.write("|")
        for col in range(col_count):
            content = row[col] if col < len(row) else ""
            state.write(" " + content.ljust(col_widths[col]) + " |")
        state.write("\n")

        if i == 0 and (has_header_row or len(rows) > 1):
            state.write("|")
            for col in range(col_count):
                state.write(" " + "-" * col_widths[col] + " |")
            state.write("\n")

    state.close_block(node)


def _render_children(state: MarkdownSerializerState, node: Node, parent: Node, index: int) -> None:
    state.render_content(node)


def cell_text(cell: Node) -> str:
    """Flatten a table cell to plain text; paragraphs contribute only their text runs."""
    parts: List[str] = []
    for child in cell.children:
        if child.is_text:
            parts.append(child.text or "")
        elif child.type == "paragraph":
            parts.extend(inline.text or "" for inline in child.children if inline.is_text)
        else:
            parts.append(text_content(child))
    return "".join(parts).strip()


NODE_RENDERERS: Dict[str, NodeRenderer] = {
    "blockquote": _blockquote,
    "code_block": _code_block,
    "heading": _heading,
    "horizontal_rule": _horizontal_rule,
    "bullet_list": _bullet_list,
    "ordered_list": _ordered_list,
    "list_item": _list_item,
    "paragraph": _paragraph,
    "image": _image,
    "hard_break": _hard_break,
    "text": _text,
    "table": _table,
    "table_row": _render_children,
    "table_header": _render_children,
    "table_cell": _render_children,
}


# ---------------------------------------------------------------------------
# Mark renderers


def backticks_for(node: Node, side: int) -> str:
    longest = 0
    if node.is_text and node.text:
        longest = max((len(run) for run in re.findall(r"`+", node.text)), default=0)
    result = " `" if longest > 0 and side > 0 else "`"
    result += "`" * longest
    if longest > 0 and side < 0:
        result += " "
    return result


def is_plain_url(link: Mark, parent: Node, index: int, side: int) -> bool:
    href = link.attrs.get("href") or ""
    if link.attrs.get("title") or not re.match(r"^\w+:", href):
        return False
    content = parent.child(index + (-1 if side < 0 else 0))
    if not content.is_text or content.text != href or not content.marks or content.marks[-1] != link:
        return False
    if index == (1 if side < 0 else parent.child_count - 1):
        return True
    neighbour = parent.child(index + (-2 if side < 0 else 1))
    return not link.is_in_set(neighbour.marks)


def _link_open(state: MarkdownSerializerState, mark: Mark, parent: Node, index: int) -> str:
    state.in_autolink = is_plain_url(mark, parent, index, 1)
    return "<" if state.in_autolink else "["


def _link_close(state: MarkdownSerializerState, mark: Mark, parent: Node, index: int) -> str:
    in_autolink = state.in_autolink
    state.in_autolink = False
    if in_autolink:
        return ">"
    title = format_title(mark.attrs["title"]) if mark.attrs.get("title") else ""
    return "](" + format_destination(mark.attrs.get("href") or "") + title + ")"


def _comment_open(state: MarkdownSerializerState, mark: Mark, parent: Node, index: int) -> str:
    return f'<!-- COMMENT: "{escape_comment_text(mark.attrs.get("text") or "")}" -->'


MARK_RENDERERS: Dict[str, MarkSpec] = {
    "comment": MarkSpec(open=_comment_open, close="<!-- /COMMENT -->"),
    "link": MarkSpec(open=_link_open, close=_link_close),
    "em": MarkSpec(open="*", close="*", mixable=True, expel_enclosing_whitespace=True),
    "strong": MarkSpec(open="**", close="**", mixable=True, expel_enclosing_whitespace=True),
    "strikethrough": MarkSpec(open="~~", close="~~", mixable=True, expel_enclosing_whitespace=True),
    "code": MarkSpec(
        open=lambda state, mark, parent, index: backticks_for(parent.child(index), -1),
        close=lambda state, mark, parent, index: backticks_for(parent.child(index - 1), 1),
        escape=False,
    ),
}


def serialize_markdown(doc: Node, options: MarkdownOptions | None = None) -> str:
    state = MarkdownSerializerState(NODE_RENDERERS, MARK_RENDERERS, options or DEFAULT_OPTIONS)
    state.render_content(doc)
    return state.out
