"""
Tests for kbsync.store — SyncStore CRUD, transactions, sync timestamps.
"""

import sqlite3

import pytest

from kbsync.errors import NotFoundError
from kbsync.hashing import detect_conflict
from kbsync.store import SCHEMA_VERSION, SyncStore


@pytest.fixture
def store():
    """Create an in-memory store for testing."""
    s = SyncStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def disk_store(tmp_path):
    """Create a disk-backed store for testing."""
    s = SyncStore(db_path=str(tmp_path / "sub" / "kbsync.db"))
    yield s
    s.close()


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


class TestSchema:
    def test_schema_version(self, store):
        row = store._conn.execute(
            "SELECT value FROM schema_meta WHERE key='schema_version'"
        ).fetchone()
        assert row["value"] == str(SCHEMA_VERSION)

    def test_disk_store_creates_parent_dirs(self, disk_store, tmp_path):
        assert (tmp_path / "sub" / "kbsync.db").exists()

    def test_reopen_is_idempotent(self, tmp_path):
        path = str(tmp_path / "k.db")
        SyncStore(path).close()
        s = SyncStore(path)
        assert s.stats()["schema_version"] == SCHEMA_VERSION
        s.close()


# ---------------------------------------------------------------------------
# Projects, meetings, people
# ---------------------------------------------------------------------------


class TestProjects:
    def test_create_and_find(self, store):
        p = store.create_project("inventory", "acme", "Inventory", status="active", priority=2)
        assert store.find_project("inventory", "acme").id == p.id
        assert store.find_project("inventory", "other") is None
        assert store.find_project_any_org("inventory").id == p.id

    def test_composite_key_unique(self, store):
        store.create_project("inventory", "acme", "Inventory")
        store.create_project("inventory", "beta", "Inventory")
        with pytest.raises(sqlite3.IntegrityError):
            store.create_project("inventory", "acme", "Again")

    def test_invalid_status(self, store):
        with pytest.raises(ValueError):
            store.create_project("x", "acme", "X", status="someday")

    def test_update(self, store):
        p = store.create_project("x", "acme", "X")
        updated = store.update_project(p.id, name="Renamed", status="paused")
        assert updated.name == "Renamed"
        assert updated.status == "paused"

    def test_update_unknown_field(self, store):
        p = store.create_project("x", "acme", "X")
        with pytest.raises(ValueError):
            store.update_project(p.id, slug="y")

    def test_update_missing(self, store):
        with pytest.raises(NotFoundError):
            store.update_project(999, name="Nope")

    def test_sub_project_parent(self, store):
        parent = store.create_project("inv", "acme", "Inv")
        child = store.create_project("scan", "acme", "Scan", parent_id=parent.id)
        assert child.parent_id == parent.id
        assert store.stats()["sub_projects"] == 1


class TestMeetingsAndPeople:
    def test_meeting_roundtrip(self, store):
        m = store.create_meeting("a/meetings/2026/01/x.md", "X", date="2026-01-14",
                                 org="a", file_hash="h1")
        assert store.find_meeting("a/meetings/2026/01/x.md").id == m.id
        assert m.last_synced_at is not None
        updated = store.update_meeting(m.id, file_hash="h2")
        assert updated.file_hash == "h2"
        assert updated.last_synced_at >= m.last_synced_at

    def test_meeting_links(self, store):
        m = store.create_meeting("p.md", "P")
        a = store.create_project("a", "o", "A")
        b = store.create_project("b", "o", "B")
        assert store.link_meeting_project(m.id, b.id, primary=True)
        assert store.link_meeting_project(m.id, a.id)
        assert not store.link_meeting_project(m.id, a.id)
        assert store.meeting_project_ids(m.id) == [b.id, a.id]

    def test_person_lookup_case_insensitive(self, store):
        alice = store.create_person("Alice")
        assert store.find_person("alice").id == alice.id
        assert store.find_person(" ALICE ").id == alice.id
        with pytest.raises(sqlite3.IntegrityError):
            store.create_person("ALICE")

    def test_attendees(self, store):
        m = store.create_meeting("p.md", "P")
        alice = store.create_person("Alice")
        assert store.link_attendee(m.id, alice.id)
        assert not store.link_attendee(m.id, alice.id)
        assert store.meeting_attendee_ids(m.id) == [alice.id]


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


class TestItems:
    def test_create_synced(self, store):
        item = store.create_item("Task", synced_hash="h", source_type="checkbox",
                                 source_path="r.md", source_line=3)
        assert item.file_hash == "h"
        assert item.last_synced_at == item.updated_at
        assert item.display_id == f"T-{item.id}"
        assert item.is_linked

    def test_create_complete_sets_completed_at(self, store):
        assert store.create_item("Done", status="complete").completed_at is not None

    def test_invalid_status(self, store):
        with pytest.raises(ValueError):
            store.create_item("Task", status="done")

    def test_unknown_field(self, store):
        with pytest.raises(ValueError):
            store.create_item("Task", color="red")

    def test_user_update_marks_db_changed(self, store):
        item = store.create_item("Task", synced_hash="h")
        after = store.set_item_status(item.id, "blocked")
        assert after.status == "blocked"
        assert after.file_hash == "h"
        assert after.last_synced_at == item.last_synced_at
        assert after.updated_at > after.last_synced_at
        assert detect_conflict("other", "h", after.updated_at, after.last_synced_at).has_conflict

    def test_sync_update_clears_db_changed(self, store):
        item = store.create_item("Task", synced_hash="h")
        store.set_item_status(item.id, "blocked")
        after = store.update_item(item.id, synced_hash="h2", status="complete")
        assert after.file_hash == "h2"
        assert after.last_synced_at == after.updated_at
        assert after.completed_at is not None

    def test_reopen_clears_completed_at(self, store):
        item = store.create_item("Task", status="complete")
        assert store.set_item_status(item.id, "pending").completed_at is None

    def test_relink_is_neutral(self, store):
        item = store.create_item("Task", synced_hash="h", source_path="r.md", source_line=3)
        moved = store.relink_item(item.id, 7)
        assert moved.source_line == 7
        assert moved.updated_at == item.updated_at
        assert moved.last_synced_at == item.last_synced_at
        assert not store.relink_item(item.id, None).is_linked

    def test_mark_synced(self, store):
        item = store.create_item("Task", synced_hash="h")
        store.set_item_status(item.id, "blocked")
        synced = store.mark_item_synced(item.id, "h3")
        assert synced.file_hash == "h3"
        assert synced.updated_at == synced.last_synced_at
        assert synced.status == "blocked"

    def test_missing_item(self, store):
        with pytest.raises(NotFoundError):
            store.update_item(999, status="blocked")
        with pytest.raises(NotFoundError):
            store.relink_item(999, 1)
        with pytest.raises(NotFoundError):
            store.mark_item_synced(999, "h")

    def test_soft_delete(self, store):
        item = store.create_item("Task", source_path="r.md", source_line=1)
        assert store.delete_item(item.id)
        assert not store.delete_item(item.id)
        assert store.get_item(item.id).is_deleted
        assert store.find_items_by_source("r.md") == []
        assert len(store.find_items_by_source("r.md", include_deleted=True)) == 1
        assert store.list_linked_items() == []

    def test_list_items_filters(self, store):
        store.create_item("A", status="pending", source_path="r.md")
        store.create_item("B", status="blocked")
        assert [i.title for i in store.list_items(status="blocked")] == ["B"]
        assert [i.title for i in store.list_items(source_path="r.md")] == ["A"]

    def test_item_people(self, store):
        item = store.create_item("Task")
        bob = store.create_person("Bob")
        assert store.link_item_person(item.id, bob.id)
        assert store.item_people(item.id) == [{"id": bob.id, "name": "Bob", "role": "assignee"}]


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TestTransactions:
    def test_transaction_rolls_back(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.create_item("Gone")
                raise RuntimeError("boom")
        assert store.list_items() == []
        assert not store.in_transaction

    def test_savepoint_isolates_one_entity(self, store):
        with store.transaction():
            store.create_item("Kept")
            with pytest.raises(RuntimeError):
                with store.savepoint():
                    store.create_item("Dropped")
                    raise RuntimeError("entity failed")
            store.create_item("Also kept")
        assert [i.title for i in store.list_items()] == ["Kept", "Also kept"]

    def test_rollback_listener_called(self, store):
        calls = []
        store.add_rollback_listener(lambda: calls.append(1))
        with pytest.raises(RuntimeError):
            with store.transaction():
                raise RuntimeError("boom")
        assert calls == [1]

    def test_removed_listener_not_called(self, store):
        calls = []
        fn = lambda: calls.append(1)  # noqa: E731
        store.add_rollback_listener(fn)
        store.remove_rollback_listener(fn)
        with pytest.raises(RuntimeError):
            with store.transaction():
                raise RuntimeError("boom")
        assert calls == []


# ---------------------------------------------------------------------------
# Events and stats
# ---------------------------------------------------------------------------


class TestEventsAndStats:
    def test_mutations_are_audited(self, store):
        item = store.create_item("Task")
        store.set_item_status(item.id, "blocked")
        events = store.read_events(entity="item", entity_id=item.id)
        assert [e["action"] for e in events] == ["update", "create"]
        assert events[0]["details"]["fields"] == ["status"]

    def test_stats(self, store):
        store.create_project("p", "o", "P")
        store.create_item("A", source_type="checkbox", source_path="r.md", source_line=1)
        store.create_item("B", status="blocked")
        stats = store.stats()
        assert stats["projects"] == 1
        assert stats["items"] == 2
        assert stats["linked_items"] == 1
        assert stats["items_by_status"] == {"pending": 1, "blocked": 1}
        assert stats["items_by_source"] == {"checkbox": 1, "manual": 1}
