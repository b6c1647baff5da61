"""
Line Classifier — Tagged Line Kinds for Document Bodies

classify_line() is a pure function from one line of text to one of:

    Heading        ``## Title``             sets section, clears phase
    PhaseHeading   ``### Phase 2 ...``      sets phase
    StatusMarker   ``- 🟢 **Title** — text``
    Checkbox       ``- [ ] Title`` / ``- [x] Title``
    SubProjectRow  ``| 🟡 | [[path|Label]] | text |``
    TableRow       any other pipe-delimited row
    Blank / Other

Task kinds are tried in fixed priority order (status marker, checkbox,
sub-project row).  advance() folds a kind into a ScanState so the whole
section/phase/counter state machine is one pure reducer.

Public API:
    classify_line(line) -> LineKind
    advance(state, kind) -> ScanState
    scan_lines(lines) -> iterator of (line_no, kind, state)
    split_row(line) -> list[str]
    is_separator_row(line) -> bool
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Iterable, Iterator, List, Optional, Tuple, Union

from kbsync.status import GLYPH_CLASS, glyph_status

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

STATUS_LINE_RE = re.compile(
    r"^[-*]\s*(" + GLYPH_CLASS + r")\uFE0F?\s*\*{0,2}([^*—]+)\*{0,2}\s*—?\s*(.*)$"
)
CHECKBOX_RE = re.compile(r"^[-*]\s*\[([ xX])\]\s*(.+)$")
SUB_PROJECT_ROW_RE = re.compile(
    r"^\|\s*(" + GLYPH_CLASS + r")\uFE0F?\s*\|\s*\[\[([^\]|]+)(?:\|([^\]]+))?\]\]\s*\|\s*(.+?)\s*\|\s*$"
)
PHASE_RE = re.compile(r"^Phase\s+\d+", re.IGNORECASE)
SEPARATOR_RE = re.compile(r"^\s*\|?[\s:|-]*-[\s:|-]*\|?\s*$")

# ---------------------------------------------------------------------------
# Line kinds
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Heading:
    text: str


@dataclass(frozen=True)
class PhaseHeading:
    text: str


@dataclass(frozen=True)
class StatusMarker:
    glyph: str
    title: str
    description: str = ""

    @property
    def status(self) -> str:
        return glyph_status(self.glyph)


@dataclass(frozen=True)
class Checkbox:
    mark: str
    title: str

    @property
    def checked(self) -> bool:
        return self.mark.lower() == "x"

    @property
    def status(self) -> str:
        return "completed" if self.checked else "pending"


@dataclass(frozen=True)
class SubProjectRow:
    glyph: str
    link_path: str
    label: Optional[str]
    description: str = ""

    @property
    def status(self) -> str:
        return glyph_status(self.glyph)

    @property
    def linked_project(self) -> str:
        return self.link_path.rstrip("/").split("/")[-1] or self.link_path


@dataclass(frozen=True)
class TableRow:
    cells: Tuple[str, ...]
    separator: bool = False


@dataclass(frozen=True)
class Blank:
    pass


@dataclass(frozen=True)
class Other:
    pass


LineKind = Union[
    Heading, PhaseHeading, StatusMarker, Checkbox, SubProjectRow, TableRow, Blank, Other,
]

TASK_KINDS = (StatusMarker, Checkbox, SubProjectRow)

# ---------------------------------------------------------------------------
# Table helpers
# ---------------------------------------------------------------------------


def split_row(line: str) -> List[str]:
    """Split a pipe row into trimmed cells, dropping the empty outer cells."""
    cells = [c.strip() for c in line.strip().split("|")]
    if cells and cells[0] == "":
        cells = cells[1:]
    if cells and cells[-1] == "":
        cells = cells[:-1]
    return cells


def is_separator_row(line: str) -> bool:
    """True for a row made only of pipes, dashes, colons and spaces."""
    return line.strip().startswith("|") and bool(SEPARATOR_RE.match(line))


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def classify_line(line: str) -> LineKind:
    """Classify a single body line.  Never raises."""
    text = line.rstrip("\r\n")

    if not text.strip():
        return Blank()

    if text.startswith("## "):
        return Heading(text[3:].strip())
    if text.startswith("### "):
        heading = text[4:].strip()
        if PHASE_RE.match(heading):
            return PhaseHeading(heading)
        return Other()

    m = STATUS_LINE_RE.match(text)
    if m:
        return StatusMarker(m.group(1), m.group(2).strip(), (m.group(3) or "").strip())

    m = CHECKBOX_RE.match(text)
    if m:
        return Checkbox(m.group(1), m.group(2).strip())

    m = SUB_PROJECT_ROW_RE.match(text)
    if m:
        label = m.group(3).strip() if m.group(3) else None
        return SubProjectRow(m.group(1), m.group(2).strip(), label, m.group(4).strip())

    if text.lstrip().startswith("|"):
        return TableRow(tuple(split_row(text)), separator=is_separator_row(text))

    return Other()


# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScanState:
    """Accumulator threaded through a document body."""
    section: str = ""
    phase: str = ""
    counter: int = 0


def advance(state: ScanState, kind: LineKind) -> ScanState:
    """Fold one classified line into the scan state."""
    if isinstance(kind, Heading):
        return ScanState(section=kind.text, phase="", counter=state.counter)
    if isinstance(kind, PhaseHeading):
        return replace(state, phase=kind.text)
    if isinstance(kind, TASK_KINDS):
        return replace(state, counter=state.counter + 1)
    return state


def scan_lines(
    lines: Iterable[str], *, start_line: int = 1,
) -> Iterator[Tuple[int, LineKind, ScanState]]:
    """Classify and fold every line.

    Yields ``(line_no, kind, state)`` where ``state`` already includes the
    line itself (so a task's ``state.counter`` is its own ordinal).
    """
    state = ScanState()
    for offset, line in enumerate(lines):
        kind = classify_line(line)
        state = advance(state, kind)
        yield start_line + offset, kind, state
