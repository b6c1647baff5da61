"""
Sync — Orchestrated Passes between Documents and the Store

A full pass runs four stages in order, each reported as one StageResult:

    projects   scan project folders, create/update projects and sub-projects
    meetings   meeting records, attendees and Actions-table tasks
    readmes    README status markers, checkboxes and sub-project rows
    writeback  push store statuses back into their source lines

A stage's per-entity errors never stop the following stages.  Only a
PreconditionError (missing knowledge-base root) propagates.

Preview runs the same code inside a transaction that is always rolled back,
with a dry-run write-back engine, so the reported counts are exactly those an
apply would produce and nothing is mutated.

Public API:
    SyncContext(root, store | db_path) — context manager
    SyncOrchestrator(context, config)
        preview_all() / sync_all(preview=False) -> SyncReport
        sync_projects / sync_meetings / sync_meeting / sync_readmes
        write_back_all / write_back_item / set_item_status
        list_conflicts / resolve_conflict
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from kbsync.config import KbSyncConfig
from kbsync.diary import STATUS_ACTIONS, DiaryLog
from kbsync.errors import (
    ConflictError,
    KbSyncError,
    KnowledgeBaseNotFoundError,
    NotFoundError,
    PreconditionError,
)
from kbsync.hashing import compute_content_hash, detect_conflict
from kbsync.matcher import TitleMatcher
from kbsync.meeting import get_meeting_by_path, parse_all_meetings
from kbsync.paths import resolve_kb_root
from kbsync.projects import scan_projects
from kbsync.readme import parse_all_readmes
from kbsync.reconcile import (
    NameCache,
    StageResult,
    conflict_entry,
    reconcile_meeting,
    reconcile_projects,
    reconcile_readme,
)
from kbsync.status import ITEM_STATUSES, converged, is_done
from kbsync.store import SyncStore
from kbsync.types import ItemRecord
from kbsync.writeback import LocatedLine, WriteBackEngine, WriteBackResult, WriteBackTarget

logger = logging.getLogger(__name__)

WINNERS = ("file", "database")

STALE_MESSAGE = "Document changed since last sync - run a sync before writing back"


class _Rollback(Exception):
    """Raised to discard a preview transaction."""


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

class SyncContext:
    """Knowledge-base root, open store and name cache for one session.

    The store is opened on ``__enter__`` (unless one was passed in) and
    closed on ``__exit__``.  The name cache is dropped at the start of every
    stage and whenever a transaction rolls back.
    """

    def __init__(
        self,
        root: Optional[str] = None,
        *,
        store: Optional[SyncStore] = None,
        db_path: Optional[str] = None,
        wal_mode: bool = True,
    ):
        self._root_arg = root
        self._store = store
        self._owns_store = store is None
        self._db_path = db_path or ":memory:"
        self._wal_mode = wal_mode
        self.root: Optional[Path] = None
        self.names: Optional[NameCache] = None

    @property
    def store(self) -> SyncStore:
        if self._store is None:
            raise PreconditionError("SyncContext is not open")
        return self._store

    def open(self) -> SyncContext:
        self.root = resolve_kb_root(self._root_arg)
        if self._store is None:
            self._store = SyncStore(self._db_path, wal_mode=self._wal_mode)
        self.names = NameCache(self._store)
        self._store.add_rollback_listener(self.names.invalidate)
        logger.debug("Sync context open: root=%s db=%s", self.root, self._store.db_path)
        return self

    def close(self) -> None:
        if self._store is None:
            return
        if self.names is not None:
            self._store.remove_rollback_listener(self.names.invalidate)
        if self._owns_store:
            self._store.close()
            self._store = None

    def begin_stage(self) -> None:
        if self.names is not None:
            self.names.invalidate()

    def __enter__(self) -> SyncContext:
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()


@dataclass
class SyncReport:
    """Stage results of one full pass."""
    stages: List[StageResult] = field(default_factory=list)
    preview: bool = False

    @property
    def success(self) -> bool:
        return all(s.success for s in self.stages)

    def stage(self, name: str) -> Optional[StageResult]:
        for s in self.stages:
            if s.stage == name:
                return s
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "preview": self.preview,
            "stages": {s.stage: s.to_dict() for s in self.stages},
        }


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class SyncOrchestrator:
    """Runs sync stages against an open SyncContext."""

    def __init__(
        self,
        context: SyncContext,
        config: Optional[KbSyncConfig] = None,
        *,
        today: Optional[date] = None,
        diary: Optional[DiaryLog] = None,
    ):
        if context.root is None:
            context.open()
        self.ctx = context
        self.config = config or KbSyncConfig()
        self.today = today
        self.matcher = TitleMatcher(self.config.sync.title_prefix_len)
        self.diary = diary or DiaryLog(
            context.root, self.config.kb.diary_dir, enabled=self.config.sync.diary_enabled,
        )

    @property
    def store(self) -> SyncStore:
        return self.ctx.store

    @property
    def root(self) -> Path:
        return self.ctx.root

    def _engine(self, dry_run: bool = False) -> WriteBackEngine:
        return WriteBackEngine(self.root, self.matcher, dry_run=dry_run)

    @contextmanager
    def _scope(self, preview: bool) -> Iterator[None]:
        """Apply normally, or inside a transaction that is always discarded."""
        if not preview:
            yield
            return
        try:
            with self.store.transaction():
                yield
                raise _Rollback()
        except _Rollback:
            logger.debug("Preview transaction discarded")

    def _check_root(self) -> None:
        if not self.root.is_dir():
            raise KnowledgeBaseNotFoundError(str(self.root))

    # -- Full pass -------------------------------------------------------------

    def preview_all(self) -> SyncReport:
        return self.sync_all(preview=True)

    def sync_all(self, *, preview: bool = False, write_back: Optional[bool] = None) -> SyncReport:
        """Run every stage in order."""
        self._check_root()
        if write_back is None:
            write_back = self.config.sync.write_back
        report = SyncReport(preview=preview)
        with self._scope(preview):
            report.stages.append(self._run_projects(preview))
            report.stages.append(self._run_meetings(preview))
            report.stages.append(self._run_readmes(preview))
            if write_back:
                report.stages.append(self._run_write_back(preview))
        logger.info(
            "Sync %s: %s", "preview" if preview else "apply",
            ", ".join(f"{s.stage}={s.created}c/{s.updated}u/{len(s.errors)}e" for s in report.stages),
        )
        return report

    # -- Stages --------------------------------------------------------------

    def sync_projects(self, *, preview: bool = False) -> StageResult:
        self._check_root()
        with self._scope(preview):
            return self._run_projects(preview)

    def sync_meetings(self, *, preview: bool = False) -> StageResult:
        self._check_root()
        with self._scope(preview):
            return self._run_meetings(preview)

    def sync_readmes(self, *, preview: bool = False) -> StageResult:
        self._check_root()
        with self._scope(preview):
            return self._run_readmes(preview)

    def sync_meeting(self, rel_path: str, *, preview: bool = False) -> StageResult:
        """Sync a single meeting document by its relative path."""
        self._check_root()
        meeting = get_meeting_by_path(self.root, rel_path)
        if meeting is None:
            result = StageResult(stage="meetings", preview=preview)
            result.errors.append(f"Meeting not found: {rel_path}")
            return result
        self.ctx.begin_stage()
        with self._scope(preview):
            result = reconcile_meeting(
                self.store, meeting, self.ctx.names, matcher=self.matcher, today=self.today,
            )
        result.preview = preview
        return result

    def _run_projects(self, preview: bool) -> StageResult:
        self.ctx.begin_stage()
        kb = self.config.kb
        projects = scan_projects(self.root, kb.orgs or None, kb.projects_dir, kb.skip_dirs)
        result = reconcile_projects(self.store, projects)
        result.preview = preview
        return result

    def _run_meetings(self, preview: bool) -> StageResult:
        self.ctx.begin_stage()
        kb = self.config.kb
        result = StageResult(stage="meetings", preview=preview)
        for meeting in parse_all_meetings(self.root, kb.orgs or None, kb.meetings_dir, kb.skip_dirs):
            try:
                result.merge(reconcile_meeting(
                    self.store, meeting, self.ctx.names,
                    matcher=self.matcher, today=self.today,
                ))
            except KbSyncError as e:
                if isinstance(e, PreconditionError):
                    raise
                logger.warning("Meeting %s failed: %s", meeting.path, e)
                result.errors.append(f"Failed to sync meeting {meeting.path}: {e}")
        return result

    def _run_readmes(self, preview: bool) -> StageResult:
        self.ctx.begin_stage()
        kb = self.config.kb
        result = StageResult(stage="readmes", preview=preview)
        scan = parse_all_readmes(self.root, kb.skip_dirs)
        for readme in scan.readmes:
            if kb.orgs and readme.org not in kb.orgs:
                continue
            try:
                result.merge(reconcile_readme(
                    self.store, readme, matcher=self.matcher,
                    import_completed=self.config.sync.import_completed,
                ))
            except KbSyncError as e:
                if isinstance(e, PreconditionError):
                    raise
                logger.warning("README %s failed: %s", readme.path, e)
                result.errors.append(f"Failed to sync {readme.path}: {e}")
        return result

    # -- Write-back ------------------------------------------------------------

    def _target(self, item: ItemRecord) -> WriteBackTarget:
        meeting_path = None
        if item.source_path is None and item.source_meeting_id is not None:
            meeting = self.store.get_meeting(item.source_meeting_id)
            meeting_path = meeting.path if meeting else None
        return WriteBackTarget.from_item(item, meeting_path)

    def _conflict_for(
        self, item: ItemRecord, target: WriteBackTarget, located: Optional[LocatedLine],
    ) -> Optional[Dict[str, Any]]:
        """Conflict entry when document and record diverged, else None."""
        if located is None:
            return None
        state = detect_conflict(located.raw, item.file_hash, item.updated_at, item.last_synced_at)
        if not state.has_conflict or converged(target.source_type, item.status, located.status):
            return None
        entry = conflict_entry(item, located.status, state.current_file_hash)
        entry["current_line"] = located.line
        return entry

    @staticmethod
    def _is_stale(item: ItemRecord, located: Optional[LocatedLine]) -> bool:
        """True when only the document changed since the last sync.

        Writing the store status there would overwrite the edit; the next
        sync pass reads it into the store instead.
        """
        if located is None:
            return False
        state = detect_conflict(located.raw, item.file_hash, item.updated_at, item.last_synced_at)
        return state.file_changed and not state.db_changed

    def _log_completion(self, item: ItemRecord) -> None:
        action = STATUS_ACTIONS.get(item.status)
        if action is None:
            return
        project = self.store.get_project(item.project_id) if item.project_id else None
        self.diary.log_task_activity(
            action, item.display_id, item.title, project.name if project else None,
        )

    def _after_write(self, item: ItemRecord) -> None:
        # Sync fields stay as they were; the next pass sees the rewritten
        # line as converged and refreshes them.
        if is_done(item.status):
            self._log_completion(item)

    def _write_back(self, item: ItemRecord, engine: WriteBackEngine) -> WriteBackResult:
        """Conflict-checked write-back of one item."""
        target = self._target(item)
        try:
            located = engine.inspect(target)
        except (OSError, UnicodeDecodeError) as e:
            return WriteBackResult(False, target.source_type, target.source_path,
                                   f"Failed to read source file: {e}")
        conflict = self._conflict_for(item, target, located)
        if conflict is not None:
            return WriteBackResult(
                False, target.source_type, target.source_path,
                f"Conflict: document and store both changed for {item.display_id}",
                line=conflict["current_line"],
            )
        if self._is_stale(item, located):
            logger.info("Write-back of %s skipped: %s", item.display_id, STALE_MESSAGE)
            return WriteBackResult(
                False, target.source_type, target.source_path, STALE_MESSAGE,
                line=located.line,
            )
        result = engine.write_back(target)
        if result.written:
            self._after_write(item)
        return result

    def _run_write_back(self, preview: bool) -> StageResult:
        self.ctx.begin_stage()
        engine = self._engine(dry_run=preview)
        result = StageResult(stage="writeback", preview=preview)
        documents = set()
        for item in self.store.list_linked_items():
            target = self._target(item)
            if not target.source_path or target.source_type is None:
                continue
            result.found += 1
            documents.add(target.source_path)
            try:
                located = engine.inspect(target)
            except (OSError, UnicodeDecodeError) as e:
                result.errors.append(f"Failed to read {target.source_path}: {e}")
                continue
            conflict = self._conflict_for(item, target, located)
            if conflict is not None:
                result.conflicts.append(conflict)
                continue
            if self._is_stale(item, located):
                logger.info("Write-back of %s skipped: %s", item.display_id, STALE_MESSAGE)
                result.skipped += 1
                continue
            outcome = engine.write_back(target)
            if not outcome.success:
                result.errors.append(f"{item.display_id}: {outcome.message}")
            elif outcome.changes:
                result.updated += 1
                result.entity_ids.append(item.id)
                if outcome.written:
                    self._after_write(item)
            else:
                result.skipped += 1
        result.documents = len(documents)
        return result

    def write_back_all(self, *, preview: bool = False) -> StageResult:
        self._check_root()
        with self._scope(preview):
            return self._run_write_back(preview)

    def write_back_item(self, item_id: int, *, preview: bool = False) -> WriteBackResult:
        """Write one item's status into its source line."""
        item = self.store.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Item not found: {item_id}")
        return self._write_back(item, self._engine(dry_run=preview))

    def set_item_status(
        self, item_id: int, status: str, *, write_back: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """Change an item's status in the store, then push it to its document."""
        if status not in ITEM_STATUSES:
            raise ValueError(f"Invalid item status: {status!r}")
        if self.store.get_item(item_id) is None:
            raise NotFoundError(f"Item not found: {item_id}")
        item = self.store.set_item_status(item_id, status)
        if write_back is None:
            write_back = self.config.sync.write_back
        out: Dict[str, Any] = {"item": item.to_dict(), "write_back": None}
        if write_back and item.source_type is not None:
            out["write_back"] = self._write_back(item, self._engine()).to_dict()
        return out

    # -- Conflicts -------------------------------------------------------------

    def list_conflicts(self) -> List[Dict[str, Any]]:
        """Every linked item whose line and record both changed."""
        engine = self._engine(dry_run=True)
        conflicts = []
        for item in self.store.list_linked_items():
            target = self._target(item)
            try:
                located = engine.inspect(target)
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Cannot inspect %s: %s", item.display_id, e)
                continue
            entry = self._conflict_for(item, target, located)
            if entry is not None:
                conflicts.append(entry)
        return conflicts

    def resolve_conflict(
        self, item_id: int, winner: str, *, force: bool = False,
    ) -> Dict[str, Any]:
        """Settle a conflict by keeping one side.

        ``winner="file"`` copies the document status into the store;
        ``winner="database"`` writes the store status into the document and
        leaves the sync fields alone; the next pass finds the line converged.

        Raises:
            ConflictError: unknown winner, or the item is not in conflict
                and ``force`` is not set.
            NotFoundError: unknown item, or its source line cannot be found.
        """
        if winner not in WINNERS:
            raise ConflictError(f"Invalid winner {winner!r}; expected one of {WINNERS}", item_id)
        item = self.store.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Item not found: {item_id}")

        engine = self._engine()
        target = self._target(item)
        located = engine.inspect(target)
        if located is None:
            raise NotFoundError(f"Source line not found for {item.display_id}")
        if self._conflict_for(item, target, located) is None and not force:
            raise ConflictError(f"{item.display_id} is not in conflict", item_id)

        write_result = None
        if winner == "file":
            item = self.store.update_item(
                item_id, synced_hash=compute_content_hash(located.raw),
                status=located.status, source_line=located.line,
            )
        else:
            write_result = engine.write_back(target)
            if not write_result.success:
                raise ConflictError(write_result.message, item_id)

        logger.info("Resolved conflict on %s: %s wins", item.display_id, winner)
        return {
            "item": item.to_dict(),
            "winner": winner,
            "write_back": write_result.to_dict() if write_result else None,
        }
