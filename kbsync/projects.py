"""
Project Scan — Projects and Sub-Projects from the Folder Layout

Layout under each organization folder:

    <org>/projects/<slug>/README.md      folder project
    <org>/projects/<slug>/<child>.md     sub-project when its frontmatter says
                                         ``type: sub-project`` (parent = <slug>)
    <org>/projects/<slug>.md             standalone project

``next-steps.md`` is never a sub-project and ``*research-prompt*`` files are
never standalone projects.

Public API:
    scan_projects(root, orgs, projects_dir, skip_dirs) -> list[ProjectInfo]
    extract_project_name(content, slug) -> str
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from kbsync.frontmatter import parse_frontmatter
from kbsync.paths import list_org_dirs, read_document, relative_kb_path
from kbsync.status import normalize_priority, normalize_project_status

logger = logging.getLogger(__name__)

SUB_PROJECT_TYPE = "sub-project"
_SKIP_CHILD_FILES = {"README.md", "next-steps.md"}
_H1_RE = re.compile(r"^# (.+?)\s*$", re.MULTILINE)


@dataclass
class ProjectInfo:
    slug: str
    name: str
    org: str
    status: Optional[str] = None
    priority: Optional[int] = None
    is_sub_project: bool = False
    parent_slug: Optional[str] = None
    source_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def title_case_slug(slug: str) -> str:
    return " ".join(w[:1].upper() + w[1:] for w in slug.replace("-", " ").split(" "))


def extract_project_name(content: str, slug: str) -> str:
    """Frontmatter title, else the first H1, else the title-cased slug."""
    fm = parse_frontmatter(content)
    title = fm.get_str("title")
    if title:
        return title
    m = _H1_RE.search(fm.body)
    if m:
        return m.group(1)
    return title_case_slug(slug)


def _project_info(
    path: Path, root: Path, slug: str, org: str,
    *, parent_slug: Optional[str] = None, content: Optional[str] = None,
) -> ProjectInfo:
    text = content if content is not None else read_document(path)
    fm = parse_frontmatter(text)
    return ProjectInfo(
        slug=slug,
        name=extract_project_name(text, slug),
        org=org,
        status=normalize_project_status(fm.get_str("status")),
        priority=normalize_priority(fm.get_str("priority")),
        is_sub_project=parent_slug is not None,
        parent_slug=parent_slug,
        source_path=relative_kb_path(root, path),
    )


def _scan_children(folder: Path, root: Path, org: str) -> List[ProjectInfo]:
    children: List[ProjectInfo] = []
    for child in sorted(folder.iterdir()):
        if child.name in _SKIP_CHILD_FILES or child.suffix != ".md" or not child.is_file():
            continue
        try:
            content = read_document(child)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Cannot read %s: %s", child, e)
            continue
        if parse_frontmatter(content).get_str("type") != SUB_PROJECT_TYPE:
            continue
        children.append(_project_info(
            child, root, child.stem, org, parent_slug=folder.name, content=content,
        ))
    return children


def scan_projects(
    root: Path,
    orgs: Optional[Iterable[str]] = None,
    projects_dir: str = "projects",
    skip_dirs: Iterable[str] = (),
) -> List[ProjectInfo]:
    """Scan every organization's projects folder.

    Unreadable entries are logged and skipped.
    """
    projects: List[ProjectInfo] = []
    root = Path(root)

    for org in list_org_dirs(root, orgs, skip_dirs):
        base = root / org / projects_dir
        if not base.is_dir():
            continue
        for entry in sorted(base.iterdir()):
            try:
                if entry.is_dir():
                    readme = entry / "README.md"
                    if not readme.is_file():
                        continue
                    projects.append(_project_info(readme, root, entry.name, org))
                    projects.extend(_scan_children(entry, root, org))
                elif entry.suffix == ".md" and "research-prompt" not in entry.name:
                    projects.append(_project_info(entry, root, entry.stem, org))
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Cannot scan project %s: %s", entry, e)

    return projects
