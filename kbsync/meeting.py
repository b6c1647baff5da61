"""
Meetings — Meeting Notes and Their Actions Table

Meeting notes live under ``<org>/meetings/<YYYY>/<MM>/<file>.md``: a
frontmatter header (title, date, attendees, project/projects, status) and a
body whose ``## Actions`` section holds a pipe table:

    | Owner | Action      | Due    | Status  | Project   |
    |-------|-------------|--------|---------|-----------|
    | Alice | Ship report | 14 Jan | Pending | inventory |

The Project column is optional.  Each parsed row remembers its absolute file
line so the store can link the created task back to it.

Public API:
    extract_sections(body) -> dict[str, Section]
    parse_action_table(text, default_project, line_offset) -> list[ParsedAction]
    parse_meeting_content(content, rel_path) -> ParsedMeeting
    parse_meeting_file(path, root) -> ParsedMeeting | None
    get_all_meeting_files(root, orgs, meetings_dir) -> list[Path]
    parse_all_meetings(root, ...) -> list[ParsedMeeting]
    get_meeting_by_path(root, rel_path) -> ParsedMeeting | None
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from kbsync.frontmatter import parse_frontmatter
from kbsync.hashing import compute_content_hash
from kbsync.lines import is_separator_row, split_row
from kbsync.paths import list_org_dirs, read_document, relative_kb_path, resolve_kb_path

logger = logging.getLogger(__name__)

SOURCE_MEETING = "meeting"
ACTIONS_SECTION = "Actions"
DEFAULT_ACTION_STATUS = "Pending"
DEFAULT_MEETING_STATUS = "completed"

_H2_RE = re.compile(r"^## (.+?)\s*$")
_YEAR_RE = re.compile(r"^\d{4}$")
_MONTH_RE = re.compile(r"^\d{2}$")


@dataclass
class ParsedAction:
    owner: str
    action: str
    due: Optional[str] = None
    status: str = DEFAULT_ACTION_STATUS
    project: Optional[str] = None
    line: Optional[int] = None
    raw: str = ""

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d.pop("raw", None)
        return d


@dataclass
class ParsedMeeting:
    path: str
    title: str
    date: str = ""
    attendees: List[str] = field(default_factory=list)
    projects: List[str] = field(default_factory=list)
    primary_project: Optional[str] = None
    status: str = DEFAULT_MEETING_STATUS
    actions: List[ParsedAction] = field(default_factory=list)
    org: Optional[str] = None
    content_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d.pop("content_hash", None)
        return d


@dataclass
class Section:
    """Body of one ``## `` section and the file line of its first body line."""
    text: str
    start_line: int


# ---------------------------------------------------------------------------
# Sections and tables
# ---------------------------------------------------------------------------

def extract_sections(body: str, *, line_offset: int = 0) -> Dict[str, Section]:
    """Split a body into ``## `` sections.

    Section text is kept untrimmed so that line numbers inside it stay
    aligned with the file.
    """
    sections: Dict[str, Section] = {}
    name: Optional[str] = None
    start = 0
    buf: List[str] = []

    for idx, line in enumerate(body.split("\n")):
        m = _H2_RE.match(line.rstrip("\r"))
        if m:
            if name is not None and name not in sections:
                sections[name] = Section("\n".join(buf), start)
            name = m.group(1)
            start = line_offset + idx + 2
            buf = []
        elif name is not None:
            buf.append(line)

    if name is not None and name not in sections:
        sections[name] = Section("\n".join(buf), start)
    return sections


def _find_header(rows: List[str]) -> Optional[str]:
    for row in rows:
        if "owner" in row.lower():
            return row
    for row in rows:
        if not is_separator_row(row):
            return row
    return None


def parse_action_table(
    text: str,
    default_project: Optional[str] = None,
    line_offset: int = 0,
) -> List[ParsedAction]:
    """Parse the rows of an Actions table.

    Args:
        text: Section text containing the pipe table.
        default_project: Used when the table has no Project column, or the
            row leaves it blank.
        line_offset: File line of the first line of ``text`` minus one.

    Returns:
        Actions in row order.  Rows missing an owner or action are dropped.
    """
    lines = text.split("\n")
    pipe_rows = [l.rstrip("\r") for l in lines if l.lstrip().startswith("|")]
    header = _find_header(pipe_rows)
    has_project = bool(header) and "project" in header.lower()

    actions: List[ParsedAction] = []
    header_seen = False
    for idx, raw in enumerate(lines):
        row = raw.rstrip("\r")
        if not row.lstrip().startswith("|") or is_separator_row(row):
            continue
        if not header_seen and row == header:
            header_seen = True
            continue

        cells = split_row(row)
        cells += [""] * (5 - len(cells))
        owner, action, due, status = cells[0], cells[1], cells[2], cells[3]
        project = cells[4] if has_project and cells[4] else default_project
        if not owner or not action:
            continue
        actions.append(ParsedAction(
            owner=owner,
            action=action,
            due=due or None,
            status=status or DEFAULT_ACTION_STATUS,
            project=project or None,
            line=line_offset + idx + 1,
            raw=row,
        ))

    return actions


# ---------------------------------------------------------------------------
# Meeting documents
# ---------------------------------------------------------------------------

def parse_meeting_content(content: str, rel_path: str) -> ParsedMeeting:
    """Parse meeting text already in memory.  Never raises."""
    fm = parse_frontmatter(content)

    projects = fm.get_list("projects")
    if projects:
        primary: Optional[str] = projects[0]
    else:
        primary = fm.get_str("project")
        projects = [primary] if primary else []

    sections = extract_sections(fm.body, line_offset=fm.body_offset)
    section = sections.get(ACTIONS_SECTION)
    actions = (
        parse_action_table(section.text, primary, line_offset=section.start_line - 1)
        if section else []
    )

    parts = rel_path.split("/")
    return ParsedMeeting(
        path=rel_path,
        title=fm.get_str("title") or Path(rel_path).stem,
        date=fm.get_str("date") or "",
        attendees=fm.get_list("attendees"),
        projects=projects,
        primary_project=primary,
        status=fm.get_str("status") or DEFAULT_MEETING_STATUS,
        actions=actions,
        org=parts[0] if len(parts) > 1 else None,
        content_hash=compute_content_hash(content),
    )


def parse_meeting_file(path: Path, root: Path) -> Optional[ParsedMeeting]:
    """Read and parse a meeting file; None when it cannot be read."""
    rel_path = relative_kb_path(root, path)
    try:
        content = read_document(path)
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Error parsing meeting file %s: %s", rel_path, e)
        return None
    return parse_meeting_content(content, rel_path)


def get_all_meeting_files(
    root: Path,
    orgs: Optional[Iterable[str]] = None,
    meetings_dir: str = "meetings",
    skip_dirs: Iterable[str] = (),
) -> List[Path]:
    """Every ``<org>/<meetings_dir>/<YYYY>/<MM>/*.md`` file, sorted."""
    files: List[Path] = []
    for org in list_org_dirs(root, orgs, skip_dirs):
        base = Path(root) / org / meetings_dir
        if not base.is_dir():
            continue
        try:
            for year in sorted(p for p in base.iterdir() if p.is_dir() and _YEAR_RE.match(p.name)):
                for month in sorted(p for p in year.iterdir() if p.is_dir() and _MONTH_RE.match(p.name)):
                    files.extend(sorted(
                        p for p in month.iterdir() if p.is_file() and p.suffix == ".md"
                    ))
        except OSError as e:
            logger.warning("Cannot scan %s: %s", base, e)
    return files


def parse_all_meetings(
    root: Path,
    orgs: Optional[Iterable[str]] = None,
    meetings_dir: str = "meetings",
    skip_dirs: Iterable[str] = (),
) -> List[ParsedMeeting]:
    meetings = []
    for path in get_all_meeting_files(root, orgs, meetings_dir, skip_dirs):
        parsed = parse_meeting_file(path, root)
        if parsed is not None:
            meetings.append(parsed)
    return meetings


def get_meeting_by_path(root: Path, rel_path: str) -> Optional[ParsedMeeting]:
    """Parse one meeting by its knowledge-base relative path."""
    full = resolve_kb_path(root, rel_path)
    if not full.is_file():
        return None
    return parse_meeting_file(full, root)
