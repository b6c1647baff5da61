"""
Store Data Model — Projects, Meetings, People, Items

Records returned by the store.  They are plain snapshots of a row: changing
a field does not write anything back.

Items are tasks.  An item created from a document carries its source
coordinate (``source_path``, ``source_line``, ``source_type``) plus the
digest and timestamp of the last successful sync.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

ItemStatus = Literal["pending", "in_progress", "complete", "blocked", "cancelled", "deferred"]
ProjectStatus = Literal["active", "planning", "paused", "completed", "archived"]
SourceType = Literal["status_marker", "checkbox", "sub_project", "next_steps", "meeting", "readme"]

VALID_SOURCE_TYPES: set = {
    "status_marker", "checkbox", "sub_project", "next_steps", "meeting", "readme",
}


def _now_iso() -> str:
    """Current UTC time as ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def format_item_id(item_id: int) -> str:
    """Display form of an item id: ``T-42``."""
    return f"T-{item_id}"


def parse_item_id(value: Any) -> Optional[int]:
    """Accept ``42``, ``"42"`` or ``"T-42"``; None when unparseable."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text[:2].upper() == "T-":
        text = text[2:]
    return int(text) if text.isdigit() else None


def _from_row(cls, row) -> Any:
    keys = row.keys()
    return cls(**{k: row[k] for k in cls.__dataclass_fields__ if k in keys})


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class ProjectRecord:
    id: int
    slug: str
    org: str
    name: str
    status: Optional[str] = None
    priority: Optional[int] = None
    parent_id: Optional[int] = None
    source_path: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row) -> ProjectRecord:
        return _from_row(cls, row)


@dataclass
class MeetingRecord:
    id: int
    path: str
    title: str
    date: Optional[str] = None
    org: Optional[str] = None
    status: Optional[str] = None
    file_hash: Optional[str] = None
    last_synced_at: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row) -> MeetingRecord:
        return _from_row(cls, row)


@dataclass
class PersonRecord:
    id: int
    name: str
    created_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row) -> PersonRecord:
        return _from_row(cls, row)


@dataclass
class ItemRecord:
    """A task, optionally linked to the document line it came from."""

    id: int
    title: str
    status: str = "pending"
    description: Optional[str] = None
    due_date: Optional[str] = None
    project_id: Optional[int] = None
    owner_id: Optional[int] = None
    source_type: Optional[str] = None
    source_path: Optional[str] = None
    source_line: Optional[int] = None
    source_meeting_id: Optional[int] = None
    section: Optional[str] = None
    phase: Optional[str] = None
    file_hash: Optional[str] = None
    last_synced_at: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    completed_at: Optional[str] = None
    deleted_at: Optional[str] = None

    @property
    def display_id(self) -> str:
        return format_item_id(self.id)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_linked(self) -> bool:
        """True when the item still points at a document line."""
        return bool(self.source_path) and self.source_line is not None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["display_id"] = self.display_id
        return d

    @classmethod
    def from_row(cls, row) -> ItemRecord:
        return _from_row(cls, row)
