from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from . import markdown_parser, markdown_serializer
from .config import MarkdownOptions, load_options
from .utils import (
    collect_comments,
    configure_logging,
    document_stats,
    read_markdown,
    resolve_output_path,
    write_markdown,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="markus",
        description="Parse and re-serialize editor markdown (GFM tables, sized images, inline comments).",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--config", type=str, help="YAML file with conversion options")
    commands = parser.add_subparsers(dest="command", required=True)

    normalize = commands.add_parser("normalize", help="Rewrite a file in canonical markdown")
    normalize.add_argument("input", type=str, help="Path to Markdown file")
    normalize.add_argument("-o", "--output", type=str, help="Output path, or - for stdout")

    check = commands.add_parser("check", help="Verify that a file survives a parse/serialize round trip")
    check.add_argument("input", type=str, help="Path to Markdown file")

    stats = commands.add_parser("stats", help="Print word and character counts")
    stats.add_argument("input", type=str, help="Path to Markdown file")

    comments = commands.add_parser("comments", help="List inline comments and the text they cover")
    comments.add_argument("input", type=str, help="Path to Markdown file")
    return parser


def _load_input(raw_path: str) -> tuple[Path, str]:
    input_path = Path(raw_path).expanduser()
    if not input_path.exists():
        raise FileNotFoundError(f"Input file not found: {input_path}")
    logging.info("Reading %s", input_path)
    text = read_markdown(input_path)
    logging.debug("Markdown length: %d chars", len(text))
    return input_path, text


def _normalize(args: argparse.Namespace, options: MarkdownOptions) -> int:
    input_path, text = _load_input(args.input)
    document = markdown_parser.parse_markdown(text, options)
    output = markdown_serializer.serialize_markdown(document, options).rstrip("\n") + "\n"
    if args.output == "-":
        sys.stdout.write(output)
        return 0
    output_path = resolve_output_path(input_path, args.output)
    write_markdown(output_path, output)
    logging.info("Done. Saved to %s", output_path)
    return 0


def _check(args: argparse.Namespace, options: MarkdownOptions) -> int:
    _, text = _load_input(args.input)
    first = markdown_parser.parse_markdown(text, options)
    second = markdown_parser.parse_markdown(markdown_serializer.serialize_markdown(first, options), options)
    if first != second:
        print(f"{args.input}: document changes after a round trip")
        return 1
    print(f"{args.input}: stable")
    return 0


def _stats(args: argparse.Namespace, options: MarkdownOptions) -> int:
    _, text = _load_input(args.input)
    result = document_stats(markdown_parser.parse_markdown(text, options))
    print(f"words: {result.words}")
    print(f"characters: {result.characters}")
    return 0


def _comments(args: argparse.Namespace, options: MarkdownOptions) -> int:
    _, text = _load_input(args.input)
    for span in collect_comments(markdown_parser.parse_markdown(text, options)):
        print(f"{span.comment}\t{span.text}")
    return 0


COMMANDS = {
    "normalize": _normalize,
    "check": _check,
    "stats": _stats,
    "comments": _comments,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(verbose=args.verbose)
    options = load_options(args.config)
    return COMMANDS[args.command](args, options)


if __name__ == "__main__":
    sys.exit(main())
