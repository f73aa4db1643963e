"""Text passes that run before tokenizing.

Comments become sentinel-delimited spans and ``<img>`` tags become canonical
markdown images, so that the tokenizer only ever sees CommonMark. Both side
tables are returned alongside the rewritten text.
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass, field

from markdown_it.common.normalize_url import normalizeLink

from .exceptions import MarkdownInputError

logger = logging.getLogger(__name__)

COMMENT_START = "\x01"
COMMENT_END = "\x02"
MARKER_CLOSE = "\x03"
SENTINEL_CHARS = (COMMENT_START, COMMENT_END, MARKER_CLOSE)
# Markers sit between ASCII punctuation so that adjacent emphasis delimiters
# flank exactly as they do next to the comment markup.
MARKER_FENCE = "'"

DEFAULT_ALIGN = "inline"
DEFAULT_WIDTH = 100
ALIGNMENTS = ("inline", "left", "center", "right")

_SENTINEL_RE = re.compile("[" + "".join(SENTINEL_CHARS) + "]")
_COMMENT_RE = re.compile(r'<!-- COMMENT: "((?:[^"\\]|\\.)*)" -->(.*?)<!-- /COMMENT -->', re.DOTALL)
# Code fences and inline code spans are matched first so their contents stay verbatim.
_IMG_RE = re.compile(
    r"(?P<fence>^[ ]{0,3}(?P<fence_mark>`{3,}|~{3,})[^\n]*\n(?:.*?\n)?[ ]{0,3}(?P=fence_mark)[`~]*[ \t]*$)"
    r"|(?P<span>(?<![`\\])(?P<ticks>`+)(?!`)(?:(?!\n[ \t]*\n).)*?(?<!`)(?P=ticks)(?!`))"
    r"|(?P<img><img\b[^>]*?/?>)",
    re.IGNORECASE | re.MULTILINE | re.DOTALL,
)
_ATTR_RE = re.compile(r"""([A-Za-z][\w-]*)\s*=\s*(?:"([^"]*)"|'([^']*)')""")
_WIDTH_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*%?\s*$")
_UNESCAPE_RE = re.compile(r"\\(.)", re.DOTALL)

_ESCAPES = {"\\": "\\\\", '"': '\\"', "\n": "\\n", "\r": "\\r", "\t": "\\t"}
_UNESCAPES = {"\\": "\\", '"': '"', "n": "\n", "r": "\r", "t": "\t"}


@dataclass
class ImageAttrs:
    align: str = DEFAULT_ALIGN
    width: int = DEFAULT_WIDTH


@dataclass
class PreprocessResult:
    text: str
    comments: dict[int, str] = field(default_factory=dict)
    images: dict[str, ImageAttrs] = field(default_factory=dict)


def start_marker(comment_id: int) -> str:
    return f"{MARKER_FENCE}{COMMENT_START}{comment_id}{MARKER_CLOSE}{MARKER_FENCE}"


def end_marker(comment_id: int) -> str:
    return f"{MARKER_FENCE}{COMMENT_END}{comment_id}{MARKER_CLOSE}{MARKER_FENCE}"


def escape_comment_text(text: str) -> str:
    return "".join(_ESCAPES.get(ch, ch) for ch in text)


def unescape_comment_text(text: str) -> str:
    def _replace(match: re.Match) -> str:
        ch = match.group(1)
        # Unknown escapes are kept as written.
        return _UNESCAPES.get(ch, match.group(0))

    return _UNESCAPE_RE.sub(_replace, text)


def guard_sentinels(text: str, policy: str = "strip") -> str:
    positions = [m.start() for m in _SENTINEL_RE.finditer(text)]
    if not positions:
        return text
    if policy == "reject":
        raise MarkdownInputError(
            f"Input contains {len(positions)} reserved control character(s)", positions=positions
        )
    logger.warning("Stripping %d reserved control character(s) from input", len(positions))
    return _SENTINEL_RE.sub("", text)


def extract_comments(text: str) -> tuple[str, dict[int, str]]:
    comments: dict[int, str] = {}

    def _replace(match: re.Match) -> str:
        comment_id = len(comments) + 1
        comments[comment_id] = unescape_comment_text(match.group(1))
        return start_marker(comment_id) + match.group(2) + end_marker(comment_id)

    return _COMMENT_RE.sub(_replace, text), comments


def parse_width(value: str | None) -> int:
    if value is None:
        return DEFAULT_WIDTH
    match = _WIDTH_RE.match(value)
    if not match:
        return DEFAULT_WIDTH
    return max(1, min(100, int(round(float(match.group(1))))))


def parse_align(value: str | None) -> str:
    if value is None:
        return DEFAULT_ALIGN
    value = value.strip().lower()
    return value if value in ALIGNMENTS else DEFAULT_ALIGN


def format_destination(src: str) -> str:
    if re.search(r"[\s()<>]", src):
        return "<" + src.replace("<", "%3C").replace(">", "%3E") + ">"
    return src


def format_title(title: str) -> str:
    return ' "' + title.replace("\\", "\\\\").replace('"', '\\"') + '"'


def markdown_image(src: str, alt: str | None, title: str | None) -> str:
    alt_text = re.sub(r"([\\\[\]])", r"\\\1", alt or "")
    return f"![{alt_text}]({format_destination(src)}{format_title(title) if title else ''})"


def _scrape_attrs(tag: str) -> dict[str, str]:
    attrs: dict[str, str] = {}
    for match in _ATTR_RE.finditer(tag):
        value = match.group(2) if match.group(2) is not None else match.group(3)
        attrs.setdefault(match.group(1).lower(), html.unescape(value))
    return attrs


def extract_images(text: str) -> tuple[str, dict[str, ImageAttrs]]:
    images: dict[str, ImageAttrs] = {}

    def _replace(match: re.Match) -> str:
        if match.group("img") is None:
            return match.group(0)
        attrs = _scrape_attrs(match.group(0))
        src = attrs.get("src")
        if not src:
            logger.debug("Leaving <img> without src untouched: %s", match.group(0))
            return match.group(0)
        align = parse_align(attrs.get("align", attrs.get("data-align")))
        width = parse_width(attrs.get("width", attrs.get("data-width")))
        if align != DEFAULT_ALIGN or width != DEFAULT_WIDTH:
            # Keyed the way the tokenizer will normalize the image destination.
            images[normalizeLink(src)] = ImageAttrs(align=align, width=width)
        return markdown_image(src, attrs.get("alt"), attrs.get("title"))

    return _IMG_RE.sub(_replace, text), images


def preprocess(text: str, sentinel_policy: str = "strip") -> PreprocessResult:
    text = guard_sentinels(text, sentinel_policy)
    text, comments = extract_comments(text)
    text, images = extract_images(text)
    logger.debug("Preprocessed %d comment(s) and %d sized image(s)", len(comments), len(images))
    return PreprocessResult(text=text, comments=comments, images=images)
