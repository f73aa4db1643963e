from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Dict, List, Mapping, Set

from .model import Node, add_mark, create_mark, iter_text_leaves, merge_text_runs
from .preprocessor import COMMENT_END, COMMENT_START, MARKER_CLOSE, MARKER_FENCE, ImageAttrs, escape_comment_text

logger = logging.getLogger(__name__)

_MARKER_RE = re.compile(f"{MARKER_FENCE}([{COMMENT_START}{COMMENT_END}])(\\d+){MARKER_CLOSE}{MARKER_FENCE}")


def apply_image_attrs(node: Node, images: Mapping[str, ImageAttrs]) -> Node:
    """Rebuild image nodes whose ``src`` has recorded alignment or width."""
    if not images:
        return node
    if node.type == "image":
        attrs = images.get(node.attrs.get("src"))
        if attrs is None:
            return node
        return replace(node, attrs={**node.attrs, "align": attrs.align, "width": attrs.width})
    if not node.children:
        return node
    return replace(node, children=[apply_image_attrs(child, images) for child in node.children])


def resolved_comment_ids(node: Node) -> Set[int]:
    """Ids whose start marker precedes their end marker in document order."""
    opened: Set[int] = set()
    resolved: Set[int] = set()
    for leaf in iter_text_leaves(node):
        for match in _MARKER_RE.finditer(leaf.text or ""):
            comment_id = int(match.group(2))
            if match.group(1) == COMMENT_START:
                opened.add(comment_id)
            elif comment_id in opened:
                resolved.add(comment_id)
    return resolved


class _CommentResolver:
    def __init__(self, comments: Mapping[int, str], resolved: Set[int]) -> None:
        self.comments = comments
        self.resolved = resolved
        self.active: List[int] = []

    def rebuild(self, node: Node) -> Node:
        if node.type == "code_block":
            return self._restore_literal(node)
        if not node.children:
            return node
        children: List[Node] = []
        for child in node.children:
            if child.is_text:
                children.extend(self._split(child))
            else:
                children.append(self.rebuild(child))
        return replace(node, children=merge_text_runs(children))

    def _split(self, leaf: Node) -> List[Node]:
        text = leaf.text or ""
        if not self.active and COMMENT_START not in text and COMMENT_END not in text:
            return [leaf]
        pieces: List[Node] = []
        pos = 0
        for match in _MARKER_RE.finditer(text):
            self._emit(pieces, leaf, text[pos : match.start()])
            comment_id = int(match.group(2))
            if comment_id not in self.resolved:
                logger.debug("Dropping unmatched comment marker %d", comment_id)
            elif match.group(1) == COMMENT_START:
                self.active.append(comment_id)
            elif comment_id in self.active:
                self.active.remove(comment_id)
            pos = match.end()
        self._emit(pieces, leaf, text[pos:])
        return pieces

    def _emit(self, pieces: List[Node], leaf: Node, text: str) -> None:
        if not text:
            return
        marks = leaf.marks
        if self.active:
            # Nested comments: the innermost one wins.
            comment = create_mark("comment", text=self.comments.get(self.active[-1], ""))
            marks = add_mark(comment, marks)
        pieces.append(replace(leaf, text=text, marks=marks))

    def _restore_literal(self, node: Node) -> Node:
        # Code keeps the comment markup as written text.
        def _literal(match: re.Match) -> str:
            comment_id = int(match.group(2))
            if match.group(1) == COMMENT_END:
                return "<!-- /COMMENT -->"
            return f'<!-- COMMENT: "{escape_comment_text(self.comments.get(comment_id, ""))}" -->'

        children = [
            child.with_text(_MARKER_RE.sub(_literal, child.text or "")) if child.is_text else child
            for child in node.children
        ]
        return replace(node, children=children)


def resolve_comments(node: Node, comments: Dict[int, str]) -> Node:
    """Turn sentinel-delimited spans into ``comment`` marks."""
    if not comments:
        return node
    resolver = _CommentResolver(comments, resolved_comment_ids(node))
    return resolver.rebuild(node)
