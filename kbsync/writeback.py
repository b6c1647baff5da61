"""
Write-Back Engine — Store Status into the Source Line

Given an item's status and the source coordinate recorded at sync time, the
engine rewrites exactly one token of one line:

    checkbox        the mark between ``[`` and ``]``
    status_marker   the leading glyph of the bullet
    sub_project     the glyph in the first table cell
    meeting         the Status cell of the action-table row

The line is located through the shared TitleMatcher: the recorded line when it
still holds a task of the right kind, else the closest line whose title
contains the item's title prefix.  When nothing matches the result is a
success with an advisory message, never a failure.

Writes are conditional.  The old value is compared to the new one by
meaning (``Done`` and ``Complete`` are the same status), so a second call
with the same status changes nothing.  The engine never touches the store.

Public API:
    WriteBackTarget.from_item(item, meeting_path=None)
    WriteBackEngine(root, matcher, dry_run).write_back(target) -> WriteBackResult
    WriteBackEngine(...).inspect(target) -> LocatedLine | None
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from kbsync.errors import WriteError
from kbsync.lines import Checkbox, StatusMarker, SubProjectRow, classify_line, is_separator_row, split_row
from kbsync.matcher import Candidate, TitleMatcher
from kbsync.meeting import SOURCE_MEETING
from kbsync.paths import read_document, resolve_kb_path, write_document
from kbsync.readme import (
    SOURCE_CHECKBOX,
    SOURCE_NEXT_STEPS,
    SOURCE_STATUS_MARKER,
    SOURCE_SUB_PROJECT,
)
from kbsync.status import (
    GLYPH_CLASS,
    action_cell_for,
    checkbox_mark,
    glyph_status,
    map_action_status,
    readme_to_item_status,
    same_item_status,
    status_to_glyph,
)
from kbsync.types import ItemRecord

logger = logging.getLogger(__name__)

WRITABLE_SOURCE_TYPES = (SOURCE_CHECKBOX, SOURCE_STATUS_MARKER, SOURCE_SUB_PROJECT, SOURCE_MEETING)
REFERENCE_SOURCE_TYPES = (SOURCE_NEXT_STEPS, "readme")

_CHECKBOX_EDIT_RE = re.compile(r"^([-*]\s*\[)([ xX])(\].*)$")
_MARKER_EDIT_RE = re.compile(r"^([-*]\s*)(" + GLYPH_CLASS + r")(.*)$")
_ROW_GLYPH_EDIT_RE = re.compile(r"^(\s*\|\s*)(" + GLYPH_CLASS + r")(.*)$")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class WriteBackTarget:
    """What to write and where."""
    title: str
    status: str
    source_type: Optional[str]
    source_path: Optional[str]
    source_line: Optional[int] = None
    item_id: Optional[int] = None

    @classmethod
    def from_item(cls, item: ItemRecord, meeting_path: Optional[str] = None) -> WriteBackTarget:
        source_type = item.source_type
        if source_type is None and item.source_meeting_id is not None:
            source_type = SOURCE_MEETING
        return cls(
            title=item.title,
            status=item.status,
            source_type=source_type,
            source_path=item.source_path or meeting_path,
            source_line=item.source_line,
            item_id=item.id,
        )


@dataclass
class WriteBackResult:
    success: bool
    source_type: Optional[str]
    source_path: Optional[str]
    message: str
    changes: List[str] = field(default_factory=list)
    written: bool = False
    line: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LocatedLine:
    """The line currently holding a target, and what it says."""
    line: int           # 1-based file line
    raw: str            # without the line terminator
    title: str
    status: str         # item status vocabulary


@dataclass
class _ActionRow:
    index: int
    cells: List[str]
    action_col: int
    status_col: int


# ---------------------------------------------------------------------------
# Line rewriting
# ---------------------------------------------------------------------------

def _rewrite_checkbox(line: str, status: str) -> Optional[Tuple[str, str]]:
    m = _CHECKBOX_EDIT_RE.match(line)
    if not m:
        return None
    old, new = m.group(2), checkbox_mark(status)
    if old.lower() == new:
        return line, f"[{old}]"
    return m.group(1) + new + m.group(3), f"[{old}] → [{new}]"


def _rewrite_glyph(pattern: re.Pattern, line: str, status: str) -> Optional[Tuple[str, str]]:
    m = pattern.match(line)
    if not m:
        return None
    old = m.group(2)
    if same_item_status(readme_to_item_status(glyph_status(old)), status):
        return line, old
    new = status_to_glyph(status)
    return m.group(1) + new + m.group(3), f"{old} → {new}"


def replace_cell(line: str, col: int, text: str) -> Optional[str]:
    """Replace the content of cell ``col`` keeping its surrounding padding."""
    pipes = [i for i, ch in enumerate(line) if ch == "|"]
    if not line.lstrip().startswith("|"):
        return None
    if col + 1 >= len(pipes):
        return None
    start, end = pipes[col] + 1, pipes[col + 1]
    cell = line[start:end]
    if not cell.strip():
        return line[:start] + " " + text + " " + line[end:]
    lead = len(cell) - len(cell.lstrip())
    trail = len(cell) - len(cell.rstrip())
    return line[:start] + cell[:lead] + text + cell[len(cell) - trail:] + line[end:]


def _rewrite_action_row(row: _ActionRow, line: str, status: str) -> Optional[Tuple[str, str]]:
    old = row.cells[row.status_col] if row.status_col < len(row.cells) else ""
    if old and same_item_status(map_action_status(old), status):
        return line, old
    new = action_cell_for(status)
    rewritten = replace_cell(line, row.status_col, new)
    if rewritten is None:
        return None
    return rewritten, f'"{old}" → "{new}"'


def action_rows(lines: List[str]) -> List[_ActionRow]:
    """Data rows of every table whose header names Owner, Action and Status."""
    rows: List[_ActionRow] = []
    header: Optional[Tuple[int, int]] = None
    for idx, raw in enumerate(lines):
        line = raw.rstrip("\r")
        if not line.lstrip().startswith("|"):
            header = None
            continue
        cells = split_row(line)
        names = [c.lower() for c in cells]
        if {"owner", "action", "status"} <= set(names):
            header = (names.index("action"), names.index("status"))
            continue
        if header is None or is_separator_row(line):
            continue
        rows.append(_ActionRow(idx, cells, header[0], header[1]))
    return rows


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class WriteBackEngine:
    """Rewrites source lines under a knowledge-base root.

    With ``dry_run`` every decision is computed and reported but no file is
    written.
    """

    def __init__(
        self,
        root: Path,
        matcher: Optional[TitleMatcher] = None,
        *,
        dry_run: bool = False,
    ):
        self.root = Path(root)
        self.matcher = matcher or TitleMatcher()
        self.dry_run = dry_run

    # -- Locating ------------------------------------------------------------

    def _candidates(self, lines: List[str], source_type: str) -> List[Tuple[Candidate, Any]]:
        found: List[Tuple[Candidate, Any]] = []
        if source_type == SOURCE_MEETING:
            for row in action_rows(lines):
                title = row.cells[row.action_col] if row.action_col < len(row.cells) else ""
                found.append((Candidate(row.index, row.index + 1, None, title), row))
            return found

        wanted = {
            SOURCE_CHECKBOX: Checkbox,
            SOURCE_STATUS_MARKER: StatusMarker,
            SOURCE_SUB_PROJECT: SubProjectRow,
        }[source_type]
        for idx, raw in enumerate(lines):
            kind = classify_line(raw)
            if not isinstance(kind, wanted):
                continue
            title = kind.title if not isinstance(kind, SubProjectRow) else (
                kind.label or kind.linked_project
            )
            found.append((Candidate(idx, idx + 1, None, title), kind))
        return found

    def _locate(self, lines: List[str], target: WriteBackTarget) -> Optional[Tuple[Candidate, Any]]:
        """The recorded line while it still has the expected shape, else a title search.

        Meeting rows are always found by title inside the Actions table.
        """
        candidates = self._candidates(lines, target.source_type)
        if target.source_type != SOURCE_MEETING and target.source_line is not None:
            for cand, payload in candidates:
                if cand.line == target.source_line:
                    return cand, payload
        match = self.matcher.best(
            [c for c, _ in candidates],
            line=target.source_line, source_type=None, title=target.title,
        )
        if match is None:
            return None
        for cand, payload in candidates:
            if cand.key == match.candidate.key:
                return cand, payload
        return None

    def _read_lines(self, target: WriteBackTarget) -> List[str]:
        return read_document(resolve_kb_path(self.root, target.source_path)).split("\n")

    def inspect(self, target: WriteBackTarget) -> Optional[LocatedLine]:
        """Find the line holding ``target`` and read its current status.

        Returns None for source types without a line, or when nothing
        matches.  Raises OSError when the document cannot be read.
        """
        if target.source_type not in WRITABLE_SOURCE_TYPES or not target.source_path:
            return None
        lines = self._read_lines(target)
        located = self._locate(lines, target)
        if located is None:
            return None
        cand, payload = located
        if isinstance(payload, _ActionRow):
            cell = payload.cells[payload.status_col] if payload.status_col < len(payload.cells) else ""
            status = map_action_status(cell)
        else:
            status = readme_to_item_status(payload.status)
        return LocatedLine(
            line=cand.line, raw=lines[cand.key].rstrip("\r"),
            title=cand.title, status=status,
        )

    # -- Writing -------------------------------------------------------------

    def write_back(self, target: WriteBackTarget) -> WriteBackResult:
        """Write ``target.status`` into its source line.

        Never raises: unreadable or unwritable documents produce a failed
        result.
        """
        st, path = target.source_type, target.source_path

        if not path or not st:
            return WriteBackResult(True, st, path, "No source file to sync (task created directly)")
        if st in REFERENCE_SOURCE_TYPES:
            return WriteBackResult(
                True, st, path,
                "Task reference - status tracked in the store (no sync needed)",
            )
        if st not in WRITABLE_SOURCE_TYPES:
            return WriteBackResult(True, st, path, f'Source type "{st}" does not require sync-back')

        try:
            content = read_document(resolve_kb_path(self.root, path))
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Cannot read %s for write-back: %s", path, e)
            return WriteBackResult(False, st, path, f"Failed to read source file: {e}")

        lines = content.split("\n")
        located = self._locate(lines, target)
        if located is None:
            logger.info("Write-back: no matching line for %r in %s", target.title, path)
            return WriteBackResult(True, st, path, "No matching line found (may need manual update)")

        cand, payload = located
        raw = lines[cand.key]
        cr = "\r" if raw.endswith("\r") else ""
        line = raw[:-1] if cr else raw

        if isinstance(payload, _ActionRow):
            edit = _rewrite_action_row(payload, line, target.status)
        elif st == SOURCE_CHECKBOX:
            edit = _rewrite_checkbox(line, target.status)
        elif st == SOURCE_STATUS_MARKER:
            edit = _rewrite_glyph(_MARKER_EDIT_RE, line, target.status)
        else:
            edit = _rewrite_glyph(_ROW_GLYPH_EDIT_RE, line, target.status)

        if edit is None:
            return WriteBackResult(
                True, st, path, "No matching line found (may need manual update)",
                line=cand.line,
            )
        new_line, change = edit
        if new_line == line:
            return WriteBackResult(
                True, st, path, "No changes needed (status already matches)", line=cand.line,
            )

        changes = [f"Line {cand.line}: {change}"]
        if self.dry_run:
            return WriteBackResult(True, st, path, "Would update source file", changes, line=cand.line)

        lines[cand.key] = new_line + cr
        try:
            write_document(resolve_kb_path(self.root, path), "\n".join(lines))
        except WriteError as e:
            logger.warning("Write-back failed for %s: %s", path, e)
            return WriteBackResult(False, st, path, f"Failed to update source file: {e}", line=cand.line)

        logger.info("Write-back %s line %d: %s", path, cand.line, change)
        return WriteBackResult(True, st, path, "Updated source file", changes, True, cand.line)
