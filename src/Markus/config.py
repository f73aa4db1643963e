from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from .exceptions import ConfigError

SENTINEL_POLICIES = ("strip", "reject")


@dataclass(frozen=True)
class MarkdownOptions:
    """Conversion settings shared by the parser and the serializer.

    ``tight_lists`` writes list items without blank lines between them.
    ``sentinel_policy`` decides what happens to reserved control characters
    found in input text: ``"strip"`` removes them, ``"reject"`` raises.
    """

    tight_lists: bool = False
    sentinel_policy: str = "strip"


DEFAULT_OPTIONS = MarkdownOptions()


def options_from_mapping(data: Mapping[str, Any]) -> MarkdownOptions:
    known = {f.name for f in fields(MarkdownOptions)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown option(s): {', '.join(sorted(unknown))}")

    tight_lists = data.get("tight_lists", DEFAULT_OPTIONS.tight_lists)
    if not isinstance(tight_lists, bool):
        raise ConfigError("tight_lists must be true or false")

    policy = data.get("sentinel_policy", DEFAULT_OPTIONS.sentinel_policy)
    if policy not in SENTINEL_POLICIES:
        raise ConfigError(f"sentinel_policy must be one of {', '.join(SENTINEL_POLICIES)}, got {policy!r}")

    return MarkdownOptions(tight_lists=tight_lists, sentinel_policy=policy)


def load_options(path: str | Path | None) -> MarkdownOptions:
    """Load options from a YAML mapping; no path or an empty file yields defaults."""
    if path is None:
        return DEFAULT_OPTIONS
    config_path = Path(path).expanduser()
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")
    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {config_path}", original_error=exc) from exc
    if not isinstance(data, dict):
        raise ConfigError("Config root must be a mapping with defined fields.")
    return options_from_mapping(data)
