"""
Frontmatter — Flat Key/Value Header Parsing

Supports only the narrow header convention used by knowledge-base documents:

    ---
    title: Weekly sync
    date: 2026-01-14
    attendees:
      - Alice
      - Bob
    projects: [inventory-system, billing]
    ---

Rules:
  - ``key: value``     → trimmed string (matching quotes removed)
  - ``key: [a, b]``    → list split on commas
  - ``key:`` (bare)    → opens array mode; following ``- value`` lines are
                         collected until the next ``key:`` line
  - anything else      → ignored

No nesting beyond one level.  Missing markers mean "no frontmatter": the whole
input is the body.  This parser never raises.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

FrontmatterValue = Union[str, List[str]]

_BLOCK_RE = re.compile(r"\A---\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
_KEY_RE = re.compile(r"^([\w-]+):\s*(.*?)\s*$")
_ITEM_RE = re.compile(r"^\s*-\s+(.+?)\s*$")


@dataclass
class Frontmatter:
    """Parsed header block plus the remaining body.

    ``body_offset`` is the number of document lines consumed by the header
    block, so that body line ``n`` (1-based) is document line
    ``n + body_offset``.
    """
    data: Dict[str, FrontmatterValue] = field(default_factory=dict)
    body: str = ""
    body_offset: int = 0

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def get_str(self, key: str) -> Optional[str]:
        """Scalar value for key, or None when missing, empty or a list."""
        value = self.data.get(key)
        if isinstance(value, str) and value:
            return value
        return None

    def get_list(self, key: str) -> List[str]:
        """List value for key; a scalar is wrapped, missing is empty."""
        value = self.data.get(key)
        if isinstance(value, list):
            return list(value)
        if isinstance(value, str) and value:
            return [value]
        return []


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _parse_block(block: str) -> Dict[str, FrontmatterValue]:
    data: Dict[str, FrontmatterValue] = {}
    array_key: Optional[str] = None

    for raw in block.split("\n"):
        line = raw.rstrip("\r")

        item = _ITEM_RE.match(line)
        if item:
            if array_key is not None:
                data[array_key].append(_unquote(item.group(1)))  # type: ignore[union-attr]
            continue

        kv = _KEY_RE.match(line)
        if not kv:
            continue

        key, value = kv.group(1), kv.group(2)
        if value == "" or value == "[]":
            data[key] = []
            array_key = key if value == "" else None
            continue

        array_key = None
        if value.startswith("[") and value.endswith("]"):
            inner = value[1:-1]
            data[key] = [_unquote(v.strip()) for v in inner.split(",") if v.strip()]
        else:
            data[key] = _unquote(value)

    return data


def parse_frontmatter(content: str) -> Frontmatter:
    """Split a document into its frontmatter map and body.

    Args:
        content: Raw document text.

    Returns:
        Frontmatter with ``data``, ``body`` and ``body_offset``.
    """
    if not content:
        return Frontmatter(body=content or "")

    match = _BLOCK_RE.match(content)
    if not match:
        return Frontmatter(body=content)

    consumed = content[:match.end()]
    return Frontmatter(
        data=_parse_block(match.group(1)),
        body=content[match.end():],
        body_offset=consumed.count("\n") + (0 if consumed.endswith("\n") else 1),
    )
