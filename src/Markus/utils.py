from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional

from .model import Mark, Node, text_content


def configure_logging(verbose: bool = False) -> None:
    """Configure a simple console logger."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(message)s",
    )


def resolve_output_path(input_path: Path, output: Optional[str]) -> Path:
    if output:
        out_path = Path(output)
        if out_path.is_dir():
            out_path = out_path / input_path.name
        return out_path
    return input_path.with_name(f"{input_path.stem}.normalized.md")


def read_markdown(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def write_markdown(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@dataclass
class DocumentStats:
    words: int
    characters: int


def _textblocks(node: Node) -> Iterator[Node]:
    if node.is_textblock:
        yield node
        return
    for child in node.children:
        yield from _textblocks(child)


def document_stats(doc: Node) -> DocumentStats:
    # Words never run across block boundaries.
    texts = [text_content(block) for block in _textblocks(doc)]
    return DocumentStats(
        words=sum(len(text.split()) for text in texts),
        characters=sum(len(text) for text in texts),
    )


@dataclass
class CommentSpan:
    comment: str
    text: str


def _comment_mark(node: Node) -> Mark | None:
    return next((mark for mark in node.marks if mark.type == "comment"), None)


def collect_comments(doc: Node) -> List[CommentSpan]:
    """List each maximal run of one comment mark inside a textblock, in document order."""
    spans: List[CommentSpan] = []
    if doc.is_textblock:
        current: Mark | None = None
        for child in doc.children:
            mark = _comment_mark(child) if child.is_text else None
            if mark is not None and mark == current:
                spans[-1].text += child.text or ""
            elif mark is not None:
                spans.append(CommentSpan(comment=mark.attrs.get("text") or "", text=child.text or ""))
            current = mark
        return spans
    for child in doc.children:
        spans.extend(collect_comments(child))
    return spans
