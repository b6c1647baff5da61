"""
Hashing — Content Digests and Conflict Detection

The digest is SHA-256 over the raw UTF-8 bytes of a document, hex-encoded,
with no normalization: a changed line ending or trailing space is a change.

A conflict needs evidence from both sides.  Missing timestamps mean "db not
changed", never "conflict".
"""

from __future__ import annotations

import hashlib
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

Timestamp = Union[datetime, str, None]


def compute_content_hash(content: str) -> str:
    """Hex SHA-256 of the UTF-8 encoded content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def has_content_changed(content: str, stored_hash: Optional[str]) -> bool:
    """True when no hash is stored, or the content no longer matches it."""
    if not stored_hash:
        return True
    return compute_content_hash(content) != stored_hash


def _as_datetime(value: Timestamp) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class ConflictStatus:
    """Outcome of comparing a document with its linked store record."""
    has_conflict: bool
    file_changed: bool
    db_changed: bool
    current_file_hash: str
    stored_file_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def detect_conflict(
    content: str,
    stored_hash: Optional[str],
    db_updated_at: Timestamp,
    last_synced_at: Timestamp,
) -> ConflictStatus:
    """Decide whether the document and the store record diverged.

    Args:
        content: Current document text.
        stored_hash: Digest recorded at the last successful sync.
        db_updated_at: When the store record was last modified.
        last_synced_at: When the last successful sync happened.

    Returns:
        ConflictStatus; ``has_conflict`` is ``file_changed and db_changed``.
    """
    current = compute_content_hash(content)
    file_changed = not stored_hash or current != stored_hash

    updated = _as_datetime(db_updated_at)
    synced = _as_datetime(last_synced_at)
    db_changed = updated is not None and synced is not None and updated > synced

    return ConflictStatus(
        has_conflict=bool(file_changed and db_changed),
        file_changed=bool(file_changed),
        db_changed=db_changed,
        current_file_hash=current,
        stored_file_hash=stored_hash,
    )
