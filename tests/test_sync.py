"""
Tests for kbsync.sync — full passes, preview, write-back and conflicts.
"""

import shutil
from datetime import date, datetime

import pytest

from conftest import (
    LINE_MIGRATION,
    LINE_SHIP,
    LINE_SUPPLIER,
    MEETING,
    MEETING_PATH,
    README,
    README_PATH,
    insert_line,
    read,
    replace_line,
)

from kbsync.config import KbSyncConfig
from kbsync.diary import DiaryLog
from kbsync.errors import (
    ConflictError,
    KnowledgeBaseNotFoundError,
    NotFoundError,
    PreconditionError,
)
from kbsync.sync import SyncContext, SyncOrchestrator

CLOCK = datetime(2026, 1, 15, 16, 30)


@pytest.fixture
def ctx(kb):
    with SyncContext(kb) as c:
        yield c


@pytest.fixture
def orch(ctx, kb):
    return SyncOrchestrator(
        ctx, today=date(2026, 1, 10), diary=DiaryLog(kb, clock=lambda: CLOCK),
    )


@pytest.fixture
def synced(orch):
    orch.sync_all()
    return orch


def item_by_title(orch, title):
    return next(i for i in orch.store.list_items() if i.title == title)


def counts(report):
    return {s.stage: (s.created, s.updated, len(s.errors)) for s in report.stages}


# ---------------------------------------------------------------------------
# Full pass
# ---------------------------------------------------------------------------


class TestFullPass:
    def test_first_sync(self, orch):
        report = orch.sync_all()
        assert report.success
        assert [s.stage for s in report.stages] == ["projects", "meetings", "readmes", "writeback"]
        assert counts(report) == {
            "projects": (3, 0, 0),
            "meetings": (2, 0, 0),
            "readmes": (4, 0, 0),
            "writeback": (0, 0, 0),
        }
        wb = report.stage("writeback")
        assert (wb.found, wb.skipped, wb.documents) == (6, 6, 2)

        stats = orch.store.stats()
        assert stats["projects"] == 3
        assert stats["sub_projects"] == 1
        assert stats["meetings"] == 1
        assert stats["items"] == 6
        assert stats["people"] == 3

    def test_files_untouched_when_in_agreement(self, synced, kb):
        assert read(kb, README_PATH) == README
        assert read(kb, MEETING_PATH) == MEETING

    def test_idempotent(self, synced):
        again = synced.sync_all()
        assert all(s.created == 0 and s.updated == 0 for s in again.stages)
        assert again.success
        assert synced.store.stats()["items"] == 6

    def test_due_date_resolved_against_today(self, synced):
        assert item_by_title(synced, "Ship scanner report").due_date == "2026-01-14"

    def test_write_back_disabled(self, ctx):
        config = KbSyncConfig()
        config.sync.write_back = False
        report = SyncOrchestrator(ctx, config).sync_all()
        assert [s.stage for s in report.stages] == ["projects", "meetings", "readmes"]

    def test_org_filter(self, ctx, kb):
        config = KbSyncConfig()
        config.kb.orgs = ["other"]
        (kb / "other").mkdir()
        report = SyncOrchestrator(ctx, config).sync_all()
        assert all(s.created == 0 for s in report.stages)

    def test_report_dict(self, orch):
        d = orch.sync_all().to_dict()
        assert d["success"] is True
        assert d["preview"] is False
        assert d["stages"]["readmes"]["created"] == 4


class TestPreview:
    def test_counts_match_apply_without_mutation(self, orch, kb):
        preview = orch.preview_all()
        assert preview.preview
        assert counts(preview)["readmes"] == (4, 0, 0)
        assert counts(preview)["projects"] == (3, 0, 0)
        assert orch.store.stats()["items"] == 0
        assert orch.store.stats()["projects"] == 0
        assert read(kb, README_PATH) == README

        applied = orch.sync_all()
        assert counts(applied) == counts(preview)

    def test_preview_write_back_leaves_files(self, synced, kb):
        synced.store.set_item_status(item_by_title(synced, "Write migration guide").id, "complete")
        report = synced.preview_all()
        assert report.stage("writeback").updated == 1
        assert read(kb, README_PATH) == README
        assert item_by_title(synced, "Write migration guide").status == "complete"

    def test_single_stage_preview(self, orch):
        result = orch.sync_projects(preview=True)
        assert result.preview
        assert result.created == 3
        assert orch.store.stats()["projects"] == 0


class TestStages:
    def test_sync_meeting_by_path(self, orch):
        orch.sync_projects()
        result = orch.sync_meeting(MEETING_PATH)
        assert result.created == 2

    def test_sync_meeting_not_found(self, orch):
        result = orch.sync_meeting("acme/meetings/2026/01/missing.md")
        assert result.errors == ["Meeting not found: acme/meetings/2026/01/missing.md"]

    def test_meetings_without_projects_still_create_items(self, orch):
        result = orch.sync_meetings()
        assert result.created == 2
        assert result.errors == []


# ---------------------------------------------------------------------------
# Document → store
# ---------------------------------------------------------------------------


class TestDocumentChanges:
    def test_ticked_checkbox_updates_item(self, synced, kb):
        replace_line(kb, README_PATH, LINE_MIGRATION, "- [x] Write migration guide")
        report = synced.sync_all()
        assert report.stage("readmes").updated == 1
        assert item_by_title(synced, "Write migration guide").status == "complete"
        assert report.stage("writeback").updated == 0

    def test_inserted_line_keeps_item_identity(self, synced, kb):
        before = item_by_title(synced, "Write migration guide")
        insert_line(kb, README_PATH, LINE_MIGRATION, "- [ ] Brand new task")
        report = synced.sync_all()
        assert report.stage("readmes").created == 1
        assert report.stage("readmes").updated == 0
        after = synced.store.get_item(before.id)
        assert after.title == "Write migration guide"
        assert after.source_line == LINE_MIGRATION + 1
        assert item_by_title(synced, "Brand new task").source_line == LINE_MIGRATION


# ---------------------------------------------------------------------------
# Store → document
# ---------------------------------------------------------------------------


class TestStoreChanges:
    def test_status_pushed_by_full_pass(self, synced, kb):
        ship = item_by_title(synced, "Ship scanner report")
        synced.store.set_item_status(ship.id, "blocked")
        report = synced.sync_all()
        assert report.stage("writeback").updated == 1
        lines = read(kb, MEETING_PATH).split("\n")
        assert lines[LINE_SHIP - 1] == "| Alice | Ship scanner report | 14 Jan | Blocked |"
        assert synced.sync_all().stage("writeback").updated == 0

    def test_set_item_status_writes_and_logs(self, synced, kb):
        item = item_by_title(synced, "Write migration guide")
        out = synced.set_item_status(item.id, "complete")
        assert out["item"]["status"] == "complete"
        assert out["write_back"]["written"] is True
        assert read(kb, README_PATH).split("\n")[LINE_MIGRATION - 1] == "- [x] Write migration guide"

        diary = (kb / "diary" / "2026" / "01" / "15-Thu.md").read_text(encoding="utf-8")
        assert f'Completed {item.display_id}: "Write migration guide" (Inventory System)' in diary

    def test_written_line_converges_on_next_pass(self, synced):
        item = item_by_title(synced, "Write migration guide")
        # Cancelled ticks the box, which reads back as complete.
        synced.set_item_status(item.id, "cancelled")
        report = synced.sync_all()
        assert report.stage("readmes").conflicts == []
        assert report.stage("readmes").updated == 0
        assert synced.store.get_item(item.id).status == "cancelled"
        assert synced.list_conflicts() == []

    def test_write_back_leaves_sync_fields(self, synced, kb):
        item = item_by_title(synced, "Write migration guide")
        synced.set_item_status(item.id, "complete")
        after = synced.store.get_item(item.id)
        assert read(kb, README_PATH).split("\n")[LINE_MIGRATION - 1] == "- [x] Write migration guide"
        assert after.file_hash == item.file_hash
        assert after.last_synced_at == item.last_synced_at
        assert after.source_line == item.source_line

        synced.sync_all()
        refreshed = synced.store.get_item(item.id)
        assert refreshed.file_hash != item.file_hash
        assert refreshed.updated_at == refreshed.last_synced_at

    def test_set_item_status_without_write_back(self, synced, kb):
        item = item_by_title(synced, "Supplier API")
        out = synced.set_item_status(item.id, "complete", write_back=False)
        assert out["write_back"] is None
        assert read(kb, README_PATH) == README

    def test_set_item_status_errors(self, synced):
        with pytest.raises(ValueError):
            synced.set_item_status(item_by_title(synced, "Supplier API").id, "finished")
        with pytest.raises(NotFoundError):
            synced.set_item_status(999, "complete")

    def test_write_back_item(self, synced, kb):
        item = item_by_title(synced, "Supplier API")
        synced.store.set_item_status(item.id, "complete")
        dry = synced.write_back_item(item.id, preview=True)
        assert dry.changes and not dry.written
        assert read(kb, README_PATH) == README
        result = synced.write_back_item(item.id)
        assert result.written
        assert read(kb, README_PATH).split("\n")[LINE_SUPPLIER - 1].startswith("- \u2705 ")

    def test_document_edit_not_overwritten_by_write_back(self, orch, kb):
        orch.sync_all(write_back=False)
        replace_line(kb, README_PATH, LINE_MIGRATION, "- [x] Write migration guide")
        result = orch.write_back_all()
        assert result.updated == 0
        assert result.errors == []
        assert read(kb, README_PATH).split("\n")[LINE_MIGRATION - 1] == "- [x] Write migration guide"

        item = item_by_title(orch, "Write migration guide")
        single = orch.write_back_item(item.id)
        assert not single.success
        assert not single.written
        assert single.message.startswith("Document changed since last sync")
        assert read(kb, README_PATH).split("\n")[LINE_MIGRATION - 1] == "- [x] Write migration guide"

        orch.sync_all()
        assert orch.store.get_item(item.id).status == "complete"
        assert read(kb, README_PATH).split("\n")[LINE_MIGRATION - 1] == "- [x] Write migration guide"

    def test_write_back_item_unknown(self, synced):
        with pytest.raises(NotFoundError):
            synced.write_back_item(999)

    def test_manual_item_has_nothing_to_write(self, synced):
        manual = synced.store.create_item("Call the vendor")
        out = synced.set_item_status(manual.id, "complete")
        assert out["write_back"] is None


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


@pytest.fixture
def conflicted(synced, kb):
    item = item_by_title(synced, "Write migration guide")
    synced.store.set_item_status(item.id, "blocked")
    replace_line(kb, README_PATH, LINE_MIGRATION, "- [x] Write migration guide")
    return synced, item


class TestConflicts:
    def test_reported_by_full_pass(self, conflicted, kb):
        orch, item = conflicted
        report = orch.sync_all()
        assert [c["item_id"] for c in report.stage("readmes").conflicts] == [item.id]
        assert [c["item_id"] for c in report.stage("writeback").conflicts] == [item.id]
        assert orch.store.get_item(item.id).status == "blocked"
        assert read(kb, README_PATH).split("\n")[LINE_MIGRATION - 1] == "- [x] Write migration guide"

    def test_list_conflicts(self, conflicted):
        orch, item = conflicted
        [entry] = orch.list_conflicts()
        assert entry["item_id"] == item.id
        assert entry["file_status"] == "complete"
        assert entry["db_status"] == "blocked"
        assert entry["current_line"] == LINE_MIGRATION

    def test_set_status_refuses_to_overwrite(self, conflicted, kb):
        orch, item = conflicted
        out = orch.set_item_status(item.id, "in_progress")
        assert out["write_back"]["success"] is False
        assert out["write_back"]["message"].startswith("Conflict")
        assert read(kb, README_PATH).split("\n")[LINE_MIGRATION - 1] == "- [x] Write migration guide"

    def test_file_wins(self, conflicted):
        orch, item = conflicted
        out = orch.resolve_conflict(item.id, "file")
        assert out["winner"] == "file"
        assert out["item"]["status"] == "complete"
        assert orch.list_conflicts() == []
        assert orch.sync_all().stage("readmes").conflicts == []

    def test_database_wins(self, conflicted, kb):
        orch, item = conflicted
        out = orch.resolve_conflict(item.id, "database")
        assert out["item"]["status"] == "blocked"
        assert out["write_back"]["written"] is True
        assert read(kb, README_PATH).split("\n")[LINE_MIGRATION - 1] == "- [ ] Write migration guide"
        assert orch.list_conflicts() == []

    def test_invalid_winner(self, conflicted):
        orch, item = conflicted
        with pytest.raises(ConflictError) as exc:
            orch.resolve_conflict(item.id, "both")
        assert exc.value.item_id == item.id

    def test_not_in_conflict_requires_force(self, synced):
        item = item_by_title(synced, "Supplier API")
        with pytest.raises(ConflictError):
            synced.resolve_conflict(item.id, "file")
        out = synced.resolve_conflict(item.id, "file", force=True)
        assert out["item"]["status"] == "blocked"

    def test_unknown_item(self, synced):
        with pytest.raises(NotFoundError):
            synced.resolve_conflict(999, "file")

    def test_converged_edits_are_not_conflicts(self, synced, kb):
        item = item_by_title(synced, "Write migration guide")
        synced.store.set_item_status(item.id, "complete")
        replace_line(kb, README_PATH, LINE_MIGRATION, "- [x] Write migration guide")
        assert synced.list_conflicts() == []
        report = synced.sync_all()
        assert report.stage("readmes").conflicts == []
        assert synced.list_conflicts() == []


# ---------------------------------------------------------------------------
# Preconditions
# ---------------------------------------------------------------------------


class TestPreconditions:
    def test_missing_root_on_open(self, tmp_path):
        with pytest.raises(KnowledgeBaseNotFoundError):
            SyncContext(tmp_path / "absent").open()

    def test_root_removed_after_open(self, synced, kb):
        shutil.rmtree(kb)
        with pytest.raises(KnowledgeBaseNotFoundError):
            synced.sync_all()

    def test_closed_context_has_no_store(self, kb):
        ctx = SyncContext(kb).open()
        ctx.close()
        with pytest.raises(PreconditionError):
            ctx.store
