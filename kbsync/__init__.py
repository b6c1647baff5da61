"""
kbsync — Two-way sync between a markdown knowledge base and a task store.

Project folders, meeting notes and README status lines are the source of
truth for what exists; the SQLite store is the source of truth for status
changes made elsewhere, which are written back into the exact source line.
"""

__version__ = "0.3.0"

from kbsync.types import (
    ItemRecord,
    MeetingRecord,
    PersonRecord,
    ProjectRecord,
)
from kbsync.store import SyncStore, SCHEMA_VERSION
from kbsync.config import KbSyncConfig
from kbsync.matcher import TitleMatcher
from kbsync.readme import parse_readme, parse_all_readmes
from kbsync.meeting import parse_meeting_file, parse_all_meetings
from kbsync.sync import SyncContext, SyncOrchestrator, SyncReport
from kbsync.writeback import WriteBackEngine, WriteBackTarget

__all__ = [
    "__version__",
    "ItemRecord",
    "MeetingRecord",
    "PersonRecord",
    "ProjectRecord",
    "SyncStore",
    "SCHEMA_VERSION",
    "KbSyncConfig",
    "TitleMatcher",
    "parse_readme",
    "parse_all_readmes",
    "parse_meeting_file",
    "parse_all_meetings",
    "SyncContext",
    "SyncOrchestrator",
    "SyncReport",
    "WriteBackEngine",
    "WriteBackTarget",
]
