"""
Errors — Sync Failure Taxonomy

Only PreconditionError is meant to escape a sync pass.  Every other class is
raised close to the failing entity and caught by the stage that owns it, which
turns it into an entry of the stage's ``errors`` list.
"""

from __future__ import annotations

from typing import Optional


class KbSyncError(Exception):
    """Base class for all kbsync errors."""

    pass


class ParseError(KbSyncError):
    """Malformed frontmatter or table row.  Always recovered by the parser."""

    pass


class NotFoundError(KbSyncError):
    """A document or store entity does not exist."""

    pass


class ConflictError(KbSyncError):
    """Document and record both changed since the last successful sync."""

    def __init__(self, message: str, item_id: Optional[int] = None):
        super().__init__(message)
        self.item_id = item_id


class WriteError(KbSyncError):
    """A document could not be written."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class ReconciliationError(KbSyncError):
    """A single entity could not be created or updated in the store."""

    pass


class PreconditionError(KbSyncError):
    """A whole-pass precondition failed; the pass cannot run at all."""

    pass


class KnowledgeBaseNotFoundError(PreconditionError):
    """The knowledge-base root is missing or is not a directory."""

    def __init__(self, root: str):
        super().__init__(f"Knowledge base root does not exist: {root}")
        self.root = root
