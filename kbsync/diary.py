"""
Diary — Task Activity Notes in the Daily Diary

Appends one line per task event to ``<root>/<diary_dir>/YYYY/MM/DD-Dow.md``
under ``## Task Activity``, creating the day file from a template when it is
missing:

    - 14:05 — Completed T-42: "Ship report" (Inventory)

The diary is a sink: failures are logged and reported as None, never raised.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from kbsync.errors import WriteError
from kbsync.paths import read_document, write_document

logger = logging.getLogger(__name__)

TASK_ACTIVITY_HEADER = "## Task Activity"
ACTIVITY_COMMENT = "<!-- AUTO-GENERATED: Task status changes from the task system -->"

ACTION_VERBS = {
    "completed": "Completed",
    "started": "Started",
    "blocked": "Blocked",
    "deferred": "Deferred",
    "cancelled": "Cancelled",
}

# Item status → diary action
STATUS_ACTIONS = {
    "complete": "completed",
    "in_progress": "started",
    "blocked": "blocked",
    "deferred": "deferred",
    "cancelled": "cancelled",
}

_NEXT_SECTION_RE = re.compile(r"\n## ")


def _ordinal(day: int) -> str:
    if day in (1, 21, 31):
        return f"{day}st"
    if day in (2, 22):
        return f"{day}nd"
    if day in (3, 23):
        return f"{day}rd"
    return f"{day}th"


def day_template(when: datetime) -> str:
    return (
        f"# {when:%a} {_ordinal(when.day)} {when:%B} {when.year}\n"
        "\n"
        "## Summary\n"
        "\n"
        "<!-- Brief summary of the day -->\n"
        "\n"
        "## Work Log\n"
        "\n"
        "<!-- Key activities, decisions, progress -->\n"
        "\n"
        "## Meetings\n"
        "\n"
        "<!-- Links to meeting notes -->\n"
        "\n"
        f"{TASK_ACTIVITY_HEADER}\n"
        "\n"
        f"{ACTIVITY_COMMENT}\n"
    )


def insert_activity(content: str, line: str) -> str:
    """Insert ``line`` at the end of the Task Activity section."""
    idx = content.find(TASK_ACTIVITY_HEADER)
    if idx < 0:
        return (
            content.rstrip() + "\n\n" + TASK_ACTIVITY_HEADER + "\n\n"
            + ACTIVITY_COMMENT + "\n" + line + "\n"
        )
    after = idx + len(TASK_ACTIVITY_HEADER)
    m = _NEXT_SECTION_RE.search(content, after)
    if m is None:
        return content.rstrip() + "\n" + line + "\n"
    head = content[:m.start()].rstrip()
    return head + "\n" + line + "\n\n" + content[m.start() + 1:]


class DiaryLog:
    """Daily diary writer rooted at a knowledge base."""

    def __init__(
        self,
        root: Path,
        diary_dir: str = "diary",
        *,
        enabled: bool = True,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.root = Path(root)
        self.diary_dir = diary_dir
        self.enabled = enabled
        self._clock = clock or datetime.now

    def day_path(self, when: datetime) -> Path:
        return self.root / self.diary_dir / f"{when:%Y}" / f"{when:%m}" / f"{when:%d}-{when:%a}.md"

    def log_task_activity(
        self,
        action: str,
        display_id: str,
        title: str,
        project_name: Optional[str] = None,
    ) -> Optional[Path]:
        """Append one activity line; returns the diary path, or None."""
        if not self.enabled:
            return None
        verb = ACTION_VERBS.get(action)
        if verb is None:
            logger.debug("No diary entry for action %r", action)
            return None

        when = self._clock()
        line = f'- {when:%H:%M} — {verb} {display_id}: "{title}"'
        if project_name:
            line += f" ({project_name})"

        path = self.day_path(when)
        try:
            if path.is_file():
                content = read_document(path)
            else:
                path.parent.mkdir(parents=True, exist_ok=True)
                content = day_template(when)
                logger.info("Created diary file: %s", path)
            write_document(path, insert_activity(content, line))
        except (OSError, UnicodeDecodeError, WriteError) as e:
            logger.warning("Diary entry for %s not written: %s", display_id, e)
            return None
        return path
