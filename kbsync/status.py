"""
Status Vocabulary — Glyphs, Action Cells and Store Values

Three notations describe the same status:
  1. README glyphs   (✅ 🟢 🟡 🔴 🔵 ⏳ ❌) and checkbox marks ([ ] / [x])
  2. Action-table text in meeting notes (Pending, In Progress, Complete, ...)
  3. Store values on items (pending, in_progress, complete, blocked,
     cancelled, deferred) and on projects (active, planning, paused,
     completed, archived)

All conversions between them live here so that parsing, reconciliation and
write-back agree on one table.
"""

from __future__ import annotations

from typing import Dict, Optional

# ---------------------------------------------------------------------------
# Glyphs
# ---------------------------------------------------------------------------

# Emoji presentation selector that some editors append after a glyph.
VARIATION_SELECTOR = "\uFE0F"

GLYPH_TO_STATUS: Dict[str, str] = {
    "\u2705": "completed",      # ✅
    "\U0001F7E2": "active",     # 🟢
    "\U0001F7E1": "pending",    # 🟡 on hold / waiting
    "\U0001F534": "blocked",    # 🔴
    "\U0001F535": "planning",   # 🔵
    "\u23F3": "pending",        # ⏳ waiting
    "\u274C": "cancelled",      # ❌
}

# Regex character class of every glyph (all are single code points).
GLYPH_CLASS = "[" + "".join(GLYPH_TO_STATUS) + "]"

DEFAULT_GLYPH = "\U0001F7E1"

STATUS_TO_GLYPH: Dict[str, str] = {
    "pending": "\U0001F7E1",
    "in_progress": "\U0001F7E2",
    "active": "\U0001F7E2",
    "blocked": "\U0001F534",
    "complete": "\u2705",
    "completed": "\u2705",
    "cancelled": "\u274C",
    "planning": "\U0001F535",
}

# ---------------------------------------------------------------------------
# Meeting action cells
# ---------------------------------------------------------------------------

STATUS_TO_ACTION_STATUS: Dict[str, str] = {
    "pending": "Pending",
    "in_progress": "In Progress",
    "active": "In Progress",
    "blocked": "Blocked",
    "complete": "Complete",
    "completed": "Complete",
    "cancelled": "Cancelled",
    "deferred": "Deferred",
}

# ---------------------------------------------------------------------------
# Store values
# ---------------------------------------------------------------------------

ITEM_STATUSES = {"pending", "in_progress", "complete", "blocked", "cancelled", "deferred"}
PROJECT_STATUSES = {"active", "planning", "paused", "completed", "archived"}

# Statuses for which a checkbox is ticked.
DONE_STATUSES = {"complete", "completed", "cancelled"}

_README_TO_ITEM: Dict[str, str] = {
    "completed": "complete",
    "active": "in_progress",
    "pending": "pending",
    "planning": "pending",
    "blocked": "blocked",
    "cancelled": "cancelled",
}

_PROJECT_STATUS_MAP: Dict[str, str] = {
    "active": "active",
    "planning": "planning",
    "paused": "paused",
    "completed": "completed",
    "archived": "archived",
    "maintenance": "active",
    "done": "completed",
    "inactive": "paused",
}


def base_glyph(glyph: str) -> str:
    """Strip a trailing variation selector from a glyph."""
    return glyph.replace(VARIATION_SELECTOR, "")


def glyph_status(glyph: str) -> str:
    """README status for a glyph; unknown glyphs read as pending."""
    return GLYPH_TO_STATUS.get(base_glyph(glyph), "pending")


def status_to_glyph(status: str) -> str:
    """Glyph used when writing a store status back into a document."""
    return STATUS_TO_GLYPH.get(status, DEFAULT_GLYPH)


def is_done(status: str) -> bool:
    """True for statuses that tick a checkbox."""
    return status in DONE_STATUSES


def checkbox_mark(status: str) -> str:
    """Checkbox mark for a store status: ``x`` when done, else a space."""
    return "x" if is_done(status) else " "


def readme_to_item_status(status: str) -> str:
    """Map an extracted README status onto the item status vocabulary."""
    return _README_TO_ITEM.get(status, "pending")


def map_action_status(status: str) -> str:
    """Map a meeting action-table status cell onto an item status."""
    lower = status.strip().lower()
    if lower in ("done", "complete", "completed"):
        return "complete"
    if lower in ("cancelled", "canceled"):
        return "cancelled"
    if lower in ("in progress", "in-progress", "active"):
        return "in_progress"
    if lower == "blocked":
        return "blocked"
    if lower == "deferred":
        return "deferred"
    return "pending"


def action_cell_for(status: str) -> str:
    """Action-table text for an item status (falls back to the raw value)."""
    return STATUS_TO_ACTION_STATUS.get(status, status)


def same_item_status(a: Optional[str], b: Optional[str]) -> bool:
    """Compare two statuses after folding README values onto item values."""
    if a is None or b is None:
        return a == b
    return _fold(a) == _fold(b)


def written_status(source_type: Optional[str], status: str) -> str:
    """Item status a source line reads back as once ``status`` is written into it.

    A checkbox only knows done or not done, and a glyph or action cell may
    fold several store values into one.
    """
    if source_type == "checkbox":
        return "complete" if is_done(status) else "pending"
    if source_type in ("status_marker", "sub_project"):
        return readme_to_item_status(glyph_status(status_to_glyph(status)))
    if source_type == "meeting":
        return map_action_status(action_cell_for(status))
    return status


def converged(source_type: Optional[str], store_status: str, file_status: Optional[str]) -> bool:
    """True when writing ``store_status`` would leave the line as it reads."""
    return same_item_status(written_status(source_type, store_status), file_status)


def _fold(status: str) -> str:
    if status in ITEM_STATUSES:
        return status
    return readme_to_item_status(status)


def normalize_project_status(status: Optional[str]) -> Optional[str]:
    """Normalize a frontmatter project status into the closed project set.

    Unknown or missing values become None.
    """
    if not status or not isinstance(status, str):
        return None
    return _PROJECT_STATUS_MAP.get(status.strip().lower())


def normalize_priority(priority) -> Optional[int]:
    """Normalize a frontmatter priority into 1..4, else None."""
    if priority is None or isinstance(priority, bool):
        return None
    if isinstance(priority, str):
        priority = priority.strip()
        if not priority.isdigit():
            return None
        priority = int(priority)
    if not isinstance(priority, int):
        return None
    if 1 <= priority <= 4:
        return priority
    return None
