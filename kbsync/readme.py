"""
README Tasks — Status-Task Extraction from Project READMEs

Project READMEs live under ``<org>/projects/<slug>/README.md``.  Their body is
folded line by line through the line classifier; every status marker,
checkbox and sub-project table row becomes an ExtractedTask that remembers
its source coordinate (path, absolute line, source type) for write-back.

Task ids have the form ``{slug}-readme-{n}`` where ``n`` counts matches in
the file.  They shift whenever a task is inserted above, so they are only
used for listing; reconciliation keys off the source coordinate.

Public API:
    extract_tasks(body, rel_path, ...) -> list[ExtractedTask]
    parse_readme(path, root) -> ParsedReadme
    find_project_readmes(root, skip_dirs) -> list[Path]
    parse_all_readmes(root, skip_dirs) -> ReadmeScan
    filter_tasks_for_import(tasks) -> list[ExtractedTask]
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from kbsync.frontmatter import parse_frontmatter
from kbsync.hashing import compute_content_hash
from kbsync.lines import Checkbox, StatusMarker, SubProjectRow, scan_lines
from kbsync.paths import read_document, relative_kb_path

logger = logging.getLogger(__name__)

SOURCE_STATUS_MARKER = "status_marker"
SOURCE_CHECKBOX = "checkbox"
SOURCE_SUB_PROJECT = "sub_project"
SOURCE_NEXT_STEPS = "next_steps"

README_SOURCE_TYPES = (SOURCE_STATUS_MARKER, SOURCE_CHECKBOX, SOURCE_SUB_PROJECT)

DEFAULT_SKIP_DIRS: Tuple[str, ...] = (
    "node_modules", ".git", "context", "meetings", ".claude",
)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class ExtractedTask:
    """One task-like line found in a README."""
    id: str
    title: str
    status: str
    source_type: str
    source_path: str
    source_line: int
    description: Optional[str] = None
    project_slug: Optional[str] = None
    org: Optional[str] = None
    section: Optional[str] = None
    phase: Optional[str] = None
    is_sub_project: bool = False
    linked_project: Optional[str] = None
    raw: str = ""

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d.pop("raw", None)
        return d


@dataclass
class ParsedReadme:
    path: str
    project_slug: str
    org: str
    title: Optional[str] = None
    tasks: List[ExtractedTask] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    content: Optional[str] = None
    content_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "project_slug": self.project_slug,
            "org": self.org,
            "title": self.title,
            "tasks": [t.to_dict() for t in self.tasks],
            "errors": list(self.errors),
        }


@dataclass
class ReadmeSummary:
    total: int = 0
    by_status: Dict[str, int] = field(default_factory=dict)
    by_org: Dict[str, int] = field(default_factory=dict)
    by_type: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ReadmeScan:
    readmes: List[ParsedReadme] = field(default_factory=list)
    summary: ReadmeSummary = field(default_factory=ReadmeSummary)
    all_tasks: List[ExtractedTask] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

def readme_coordinates(rel_path: str) -> Tuple[str, str]:
    """(org, project_slug) from a path like ``acme/projects/inventory/README.md``."""
    parts = rel_path.split("/")
    org = parts[0] if parts and parts[0] else "unknown"
    slug = "unknown"
    if "projects" in parts:
        idx = parts.index("projects")
        if idx + 1 < len(parts) and parts[idx + 1]:
            slug = parts[idx + 1]
    return org, slug


def extract_tasks(
    body: str,
    rel_path: str,
    *,
    project_slug: str = "unknown",
    org: Optional[str] = None,
    line_offset: int = 0,
) -> List[ExtractedTask]:
    """Extract tasks from a README body.

    Args:
        body: Document body (frontmatter already removed).
        rel_path: Knowledge-base relative path, recorded on every task.
        project_slug: Used to build the synthetic task id.
        org: Organization folder, recorded on every task.
        line_offset: Lines consumed before ``body`` (the frontmatter
            block), so recorded lines are absolute file lines.
    """
    tasks: List[ExtractedTask] = []

    lines = body.split("\n")
    for line_no, kind, state in scan_lines(lines, start_line=line_offset + 1):
        common = dict(
            raw=lines[line_no - line_offset - 1].rstrip("\r"),
            id=f"{project_slug}-readme-{state.counter}",
            source_path=rel_path,
            source_line=line_no,
            project_slug=project_slug,
            org=org,
            section=state.section or None,
        )
        if isinstance(kind, StatusMarker):
            tasks.append(ExtractedTask(
                title=kind.title,
                description=kind.description or None,
                status=kind.status,
                source_type=SOURCE_STATUS_MARKER,
                phase=state.phase or None,
                **common,
            ))
        elif isinstance(kind, Checkbox):
            tasks.append(ExtractedTask(
                title=kind.title,
                status=kind.status,
                source_type=SOURCE_CHECKBOX,
                phase=state.phase or None,
                **common,
            ))
        elif isinstance(kind, SubProjectRow):
            tasks.append(ExtractedTask(
                title=kind.label or kind.linked_project,
                description=kind.description or None,
                status=kind.status,
                source_type=SOURCE_SUB_PROJECT,
                is_sub_project=True,
                linked_project=kind.linked_project,
                **common,
            ))

    return tasks


def parse_readme_content(content: str, rel_path: str) -> ParsedReadme:
    """Parse README text already in memory.  Never raises."""
    org, slug = readme_coordinates(rel_path)
    fm = parse_frontmatter(content)
    return ParsedReadme(
        path=rel_path,
        project_slug=slug,
        org=org,
        title=fm.get_str("title") or slug,
        tasks=extract_tasks(
            fm.body, rel_path, project_slug=slug, org=org,
            line_offset=fm.body_offset,
        ),
        content=content,
        content_hash=compute_content_hash(content),
    )


def parse_readme(path: Path, root: Path) -> ParsedReadme:
    """Read and parse one README.

    I/O and decoding failures are reported in ``errors``, never raised.
    """
    rel_path = relative_kb_path(root, path)
    try:
        content = read_document(path)
    except (OSError, UnicodeDecodeError) as e:
        org, slug = readme_coordinates(rel_path)
        logger.warning("Cannot read %s: %s", rel_path, e)
        return ParsedReadme(
            path=rel_path, project_slug=slug, org=org,
            errors=[f"Failed to parse {rel_path}: {e}"],
        )
    return parse_readme_content(content, rel_path)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

def find_project_readmes(
    root: Path,
    skip_dirs: Iterable[str] = DEFAULT_SKIP_DIRS,
) -> List[Path]:
    """All ``README.md`` files under a ``projects/`` folder, sorted."""
    skip = set(skip_dirs)
    found: List[Path] = []

    def _on_error(err: OSError) -> None:
        logger.debug("Skipping unreadable directory: %s", err)

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
        dirnames[:] = sorted(d for d in dirnames if d not in skip)
        if "README.md" not in filenames:
            continue
        full = Path(dirpath) / "README.md"
        if "/projects/" in relative_kb_path(root, full):
            found.append(full)

    return sorted(found)


def summarize(tasks: Sequence[ExtractedTask]) -> ReadmeSummary:
    summary = ReadmeSummary(total=len(tasks))
    for task in tasks:
        org = task.org or "unknown"
        summary.by_status[task.status] = summary.by_status.get(task.status, 0) + 1
        summary.by_org[org] = summary.by_org.get(org, 0) + 1
        summary.by_type[task.source_type] = summary.by_type.get(task.source_type, 0) + 1
    return summary


def parse_all_readmes(
    root: Path,
    skip_dirs: Iterable[str] = DEFAULT_SKIP_DIRS,
) -> ReadmeScan:
    """Parse every project README under the root."""
    scan = ReadmeScan()
    for path in find_project_readmes(root, skip_dirs):
        parsed = parse_readme(path, root)
        scan.readmes.append(parsed)
        scan.all_tasks.extend(parsed.tasks)
    scan.summary = summarize(scan.all_tasks)
    return scan


def filter_tasks_for_import(
    tasks: Iterable[ExtractedTask],
    *,
    include_completed: bool = False,
    include_sub_projects: bool = True,
) -> List[ExtractedTask]:
    """Tasks worth creating in the store.

    Completed tasks are dropped by default.  Sub-project rows are kept so
    their glyph can be written back.
    """
    kept = []
    for task in tasks:
        if task.status == "completed" and not include_completed:
            continue
        if task.is_sub_project and not include_sub_projects:
            continue
        kept.append(task)
    return kept
