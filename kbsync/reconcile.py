"""
Reconciler — Extracted Records onto Store Entities

Three reconcilers share one batch primitive:

    reconcile_projects(store, projects)       two passes: parents, then children
    reconcile_meeting(store, meeting, ...)    meeting record, attendees, actions
    reconcile_readme(store, readme, ...)      README tasks as items

apply_batch() runs each entity inside its own SAVEPOINT within the caller's
transaction and returns an Ok/Err outcome per entity.  A failing entity rolls
back alone and is reported; its siblings still commit.

Linked items follow one rule.  Each item stores the digest of its source line
at the last sync (``file_hash``) and the sync instant (``last_synced_at``):

    line unchanged                → skipped (store side wins, write-back pushes it)
    line changed, store unchanged → updated from the document
    both changed, statuses agree  → converged; sync fields refreshed
    both changed, otherwise       → conflict, reported, nothing written

"Agree" is judged in the line's own notation: a ticked checkbox agrees with
a cancelled item.

Public API:
    apply_batch(store, entries, label) -> list[Ok | Err]
    StageResult
    NameCache
    reconcile_projects(store, projects) -> StageResult
    reconcile_meeting(store, meeting, names, ...) -> StageResult
    reconcile_readme(store, readme, ...) -> StageResult
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from kbsync.dates import parse_due_date
from kbsync.errors import ReconciliationError
from kbsync.hashing import compute_content_hash, detect_conflict
from kbsync.matcher import Candidate, Match, TitleMatcher
from kbsync.meeting import SOURCE_MEETING, ParsedAction, ParsedMeeting
from kbsync.projects import ProjectInfo
from kbsync.readme import ExtractedTask, ParsedReadme, filter_tasks_for_import
from kbsync.status import converged, map_action_status, readme_to_item_status
from kbsync.store import SyncStore
from kbsync.types import ItemRecord

logger = logging.getLogger(__name__)

_OWNER_SPLIT_RE = re.compile(r"[,&]|\band\b", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

@dataclass
class Ok:
    key: str
    action: str                      # created | updated | skipped | conflict
    entity_id: Optional[int] = None
    conflict: Optional[Dict[str, Any]] = None
    message: str = ""


@dataclass
class Err:
    key: str
    message: str


Outcome = Union[Ok, Err]


@dataclass
class StageResult:
    """Counters and errors of one sync stage.  Never raised, always returned."""
    stage: str
    documents: int = 0
    found: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    conflicts: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    entity_ids: List[int] = field(default_factory=list)
    preview: bool = False

    @property
    def success(self) -> bool:
        return not self.errors

    def record(self, outcomes: Iterable[Outcome]) -> StageResult:
        for outcome in outcomes:
            if isinstance(outcome, Err):
                self.errors.append(outcome.message)
                continue
            if outcome.action == "created":
                self.created += 1
            elif outcome.action == "updated":
                self.updated += 1
            elif outcome.action == "conflict":
                self.conflicts.append(outcome.conflict or {"key": outcome.key})
            else:
                self.skipped += 1
            if outcome.entity_id is not None and outcome.entity_id not in self.entity_ids:
                self.entity_ids.append(outcome.entity_id)
        return self

    def merge(self, other: StageResult) -> StageResult:
        self.documents += other.documents
        self.found += other.found
        self.created += other.created
        self.updated += other.updated
        self.skipped += other.skipped
        self.conflicts.extend(other.conflicts)
        self.errors.extend(other.errors)
        self.entity_ids.extend(i for i in other.entity_ids if i not in self.entity_ids)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "success": self.success,
            "preview": self.preview,
            "documents": self.documents,
            "found": self.found,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "conflicts": list(self.conflicts),
            "errors": list(self.errors),
            "entity_ids": list(self.entity_ids),
        }


def apply_batch(
    store: SyncStore,
    entries: Iterable[Tuple[str, Callable[[], Ok]]],
    label: str,
) -> List[Outcome]:
    """Apply each entity in its own savepoint and collect outcomes."""
    outcomes: List[Outcome] = []
    for key, fn in entries:
        try:
            with store.savepoint():
                outcomes.append(fn())
        except Exception as e:
            logger.warning("Failed to sync %s %s: %s", label, key, e)
            outcomes.append(Err(key, f"Failed to sync {label} {key}: {e}"))
    return outcomes


# ---------------------------------------------------------------------------
# Name cache
# ---------------------------------------------------------------------------

class NameCache:
    """Person name → id lookups for one sync context.

    Must be invalidated when a transaction rolls back, since cached ids may
    point at rows that no longer exist.
    """

    def __init__(self, store: SyncStore):
        self._store = store
        self._ids: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._ids)

    def invalidate(self) -> None:
        self._ids.clear()

    def person_id(self, name: str) -> int:
        """Find or create a person by case-insensitive name."""
        key = name.strip().lower()
        if not key:
            raise ValueError("empty person name")
        if key in self._ids:
            return self._ids[key]
        person = self._store.find_person(name) or self._store.create_person(name)
        self._ids[key] = person.id
        return person.id


def split_owners(owner: str) -> List[str]:
    """``"Alice, Bob & Carol and Dan"`` → four names, order kept."""
    return [n.strip() for n in _OWNER_SPLIT_RE.split(owner or "") if n.strip()]


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

def _sync_project(store: SyncStore, info: ProjectInfo) -> Ok:
    existing = store.find_project(info.slug, info.org)
    if existing is None:
        created = store.create_project(
            info.slug, info.org, info.name,
            status=info.status, priority=info.priority, source_path=info.source_path,
        )
        return Ok(info.slug, "created", created.id)
    if existing.name != info.name or existing.status != info.status:
        store.update_project(
            existing.id, name=info.name, status=info.status,
            priority=info.priority, source_path=info.source_path,
        )
        return Ok(info.slug, "updated", existing.id)
    return Ok(info.slug, "skipped", existing.id)


def _sync_sub_project(store: SyncStore, info: ProjectInfo) -> Ok:
    parent = store.find_project(info.parent_slug or "", info.org)
    if parent is None:
        raise ReconciliationError(
            f"parent project {info.org}/{info.parent_slug} is not in the store"
        )
    existing = store.find_project(info.slug, info.org)
    if existing is None:
        created = store.create_project(
            info.slug, info.org, info.name,
            status=info.status, priority=info.priority,
            parent_id=parent.id, source_path=info.source_path,
        )
        return Ok(info.slug, "created", created.id)
    if (existing.name != info.name or existing.status != info.status
            or existing.parent_id != parent.id):
        store.update_project(
            existing.id, name=info.name, status=info.status,
            priority=info.priority, parent_id=parent.id,
            source_path=info.source_path,
        )
        return Ok(info.slug, "updated", existing.id)
    return Ok(info.slug, "skipped", existing.id)


def reconcile_projects(store: SyncStore, projects: List[ProjectInfo]) -> StageResult:
    """Create or update projects, parents strictly before sub-projects.

    Both passes run in one transaction; each project in its own savepoint.
    """
    result = StageResult(stage="projects", documents=len(projects), found=len(projects))
    parents = [p for p in projects if not p.is_sub_project]
    children = [p for p in projects if p.is_sub_project]

    with store.transaction():
        result.record(apply_batch(
            store,
            [(f"{p.org}/{p.slug}", lambda p=p: _sync_project(store, p)) for p in parents],
            "project",
        ))
        result.record(apply_batch(
            store,
            [(f"{p.org}/{p.slug}", lambda p=p: _sync_sub_project(store, p)) for p in children],
            "sub-project",
        ))

    logger.info(
        "Projects: found=%d created=%d updated=%d errors=%d",
        result.found, result.created, result.updated, len(result.errors),
    )
    return result


# ---------------------------------------------------------------------------
# Linked items
# ---------------------------------------------------------------------------

def conflict_entry(
    item: ItemRecord, file_status: str, current_hash: str,
) -> Dict[str, Any]:
    return {
        "item_id": item.id,
        "display_id": item.display_id,
        "title": item.title,
        "source_type": item.source_type,
        "source_path": item.source_path,
        "source_line": item.source_line,
        "file_status": file_status,
        "db_status": item.status,
        "current_file_hash": current_hash,
        "stored_file_hash": item.file_hash,
    }


def reconcile_linked_item(
    store: SyncStore,
    item: ItemRecord,
    *,
    raw: str,
    line: int,
    file_fields: Dict[str, Any],
    key: str,
) -> Ok:
    """Apply the linked-item rule to one matched (item, line) pair."""
    if item.is_deleted:
        return Ok(key, "skipped", item.id, message="deleted")

    state = detect_conflict(raw, item.file_hash, item.updated_at, item.last_synced_at)
    file_status = file_fields.get("status", item.status)

    if not state.file_changed:
        if item.source_line != line:
            store.relink_item(item.id, line)
        return Ok(key, "skipped", item.id)

    if state.has_conflict:
        if converged(item.source_type, item.status, file_status):
            store.mark_item_synced(item.id, state.current_file_hash)
            if item.source_line != line:
                store.relink_item(item.id, line)
            return Ok(key, "skipped", item.id, message="converged")
        return Ok(
            key, "conflict", item.id,
            conflict=conflict_entry(item, file_status, state.current_file_hash),
        )

    changes = {k: v for k, v in file_fields.items() if getattr(item, k) != v}
    if item.source_line != line:
        changes["source_line"] = line
    store.update_item(item.id, synced_hash=state.current_file_hash, **changes)
    visible = set(changes) - {"source_line"}
    return Ok(key, "updated" if visible else "skipped", item.id)


def _item_candidates(items: List[ItemRecord]) -> List[Candidate]:
    return [
        Candidate(key=i.id, line=i.source_line, source_type=i.source_type, title=i.title)
        for i in items
    ]


def _detach_unmatched(
    store: SyncStore, items: List[ItemRecord], matched_ids: Iterable[int], label: str,
) -> List[Outcome]:
    """Unlink live items whose line no longer holds them."""
    matched = set(matched_ids)
    stale = [i for i in items if i.id not in matched and not i.is_deleted and i.source_line is not None]

    def _detach(item: ItemRecord) -> Ok:
        store.relink_item(item.id, None)
        logger.info("Detached %s from %s:%s", item.display_id, item.source_path, item.source_line)
        return Ok(item.display_id, "detached", item.id)

    outcomes = apply_batch(store, [(i.display_id, lambda i=i: _detach(i)) for i in stale], label)
    return [o for o in outcomes if isinstance(o, Err)]


def _resolve_project_id(
    store: SyncStore, slug: Optional[str], org: Optional[str],
) -> Optional[int]:
    if not slug:
        return None
    project = store.find_project(slug, org) if org else store.find_project_any_org(slug)
    return project.id if project else None


# ---------------------------------------------------------------------------
# Meetings
# ---------------------------------------------------------------------------

def _sync_meeting_record(store: SyncStore, meeting: ParsedMeeting, names: NameCache) -> int:
    record = store.find_meeting(meeting.path)
    if record is None:
        record = store.create_meeting(
            meeting.path, meeting.title,
            date=meeting.date or None, org=meeting.org,
            status=meeting.status, file_hash=meeting.content_hash,
        )
        for idx, slug in enumerate(meeting.projects):
            project_id = _resolve_project_id(store, slug, meeting.org)
            if project_id is not None:
                store.link_meeting_project(record.id, project_id, primary=(idx == 0))
    elif (record.file_hash != meeting.content_hash or record.title != meeting.title
          or (record.date or "") != meeting.date or record.status != meeting.status):
        store.update_meeting(
            record.id, title=meeting.title, date=meeting.date or None,
            status=meeting.status, file_hash=meeting.content_hash,
        )

    for name in meeting.attendees:
        if name.strip():
            store.link_attendee(record.id, names.person_id(name))
    return record.id


def _create_action_item(
    store: SyncStore,
    meeting: ParsedMeeting,
    meeting_id: int,
    action: ParsedAction,
    names: NameCache,
    today: Optional[date],
) -> int:
    owners = split_owners(action.owner)
    person_ids = [names.person_id(n) for n in owners]
    item = store.create_item(
        action.action,
        status=map_action_status(action.status),
        synced_hash=compute_content_hash(action.raw),
        due_date=parse_due_date(action.due, today=today),
        project_id=_resolve_project_id(store, action.project or meeting.primary_project, meeting.org),
        owner_id=person_ids[0] if person_ids else None,
        source_type=SOURCE_MEETING,
        source_path=meeting.path,
        source_line=action.line,
        source_meeting_id=meeting_id,
    )
    for person_id in person_ids[1:]:
        store.link_item_person(item.id, person_id)
    return item.id


def reconcile_meeting(
    store: SyncStore,
    meeting: ParsedMeeting,
    names: NameCache,
    *,
    matcher: Optional[TitleMatcher] = None,
    today: Optional[date] = None,
) -> StageResult:
    """Sync one meeting document: record, projects, attendees and actions.

    New actions already complete or cancelled are skipped rather than
    created.  Matches against soft-deleted tasks are skipped.
    """
    matcher = matcher or TitleMatcher()
    result = StageResult(stage="meetings", documents=1, found=len(meeting.actions))

    with store.transaction():
        try:
            with store.savepoint():
                meeting_id = _sync_meeting_record(store, meeting, names)
        except Exception as e:
            logger.warning("Failed to sync meeting %s: %s", meeting.path, e)
            result.errors.append(f"Failed to sync meeting {meeting.path}: {e}")
            return result

        existing = store.find_items_by_meeting(meeting_id)
        targets = [
            Candidate(key=idx, line=a.line, source_type=SOURCE_MEETING, title=a.action)
            for idx, a in enumerate(meeting.actions)
        ]
        matches = matcher.assign(targets, _item_candidates(existing))
        by_id = {i.id: i for i in existing}

        def _one(idx: int, action: ParsedAction) -> Ok:
            key = f"{meeting.path}:{action.line}"
            match = matches.get(idx)
            status = map_action_status(action.status)
            if match is not None:
                return reconcile_linked_item(
                    store, by_id[match.candidate.key],
                    raw=action.raw, line=action.line or 0, key=key,
                    file_fields={
                        "title": action.action,
                        "status": status,
                        "due_date": parse_due_date(action.due, today=today),
                    },
                )
            if status in ("complete", "cancelled"):
                return Ok(key, "skipped", message="already done")
            return Ok(key, "created", _create_action_item(
                store, meeting, meeting_id, action, names, today,
            ))

        result.record(apply_batch(
            store,
            [(f"{meeting.path}:{a.line}", lambda i=i, a=a: _one(i, a))
             for i, a in enumerate(meeting.actions)],
            "action",
        ))
        matched = [m.candidate.key for m in matches.values()]
        for err in _detach_unmatched(store, existing, matched, "action"):
            result.errors.append(err.message)

    return result


# ---------------------------------------------------------------------------
# READMEs
# ---------------------------------------------------------------------------

def _readme_fields(task: ExtractedTask) -> Dict[str, Any]:
    return {
        "title": task.title,
        "status": readme_to_item_status(task.status),
        "description": task.description,
        "section": task.section,
        "phase": task.phase,
    }


def reconcile_readme(
    store: SyncStore,
    readme: ParsedReadme,
    *,
    matcher: Optional[TitleMatcher] = None,
    import_completed: bool = False,
) -> StageResult:
    """Link every README task to a store item.

    Completed tasks with no existing item are not imported unless
    ``import_completed`` is set.
    """
    matcher = matcher or TitleMatcher()
    result = StageResult(stage="readmes", documents=1, found=len(readme.tasks))
    result.errors.extend(readme.errors)
    if readme.content is None:
        return result

    importable = {
        id(t) for t in filter_tasks_for_import(readme.tasks, include_completed=import_completed)
    }

    with store.transaction():
        existing = store.find_items_by_source(readme.path, include_deleted=True)
        project_id = _resolve_project_id(store, readme.project_slug, readme.org)
        targets = [
            Candidate(key=idx, line=t.source_line, source_type=t.source_type, title=t.title)
            for idx, t in enumerate(readme.tasks)
        ]
        matches = matcher.assign(targets, _item_candidates(existing))
        by_id = {i.id: i for i in existing}

        def _one(idx: int, task: ExtractedTask) -> Ok:
            key = f"{readme.path}:{task.source_line}"
            match: Optional[Match] = matches.get(idx)
            fields = _readme_fields(task)
            if match is not None:
                return reconcile_linked_item(
                    store, by_id[match.candidate.key],
                    raw=task.raw, line=task.source_line, file_fields=fields, key=key,
                )
            if id(task) not in importable:
                return Ok(key, "skipped", message="not imported")
            item = store.create_item(
                task.title,
                synced_hash=compute_content_hash(task.raw),
                project_id=project_id,
                source_type=task.source_type,
                source_path=readme.path,
                source_line=task.source_line,
                **{k: v for k, v in fields.items() if k != "title"},
            )
            return Ok(key, "created", item.id)

        result.record(apply_batch(
            store,
            [(f"{readme.path}:{t.source_line}", lambda i=i, t=t: _one(i, t))
             for i, t in enumerate(readme.tasks)],
            "task",
        ))
        matched = [m.candidate.key for m in matches.values()]
        for err in _detach_unmatched(store, existing, matched, "task"):
            result.errors.append(err.message)

    return result
