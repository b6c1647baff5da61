"""
Tests for kbsync.hashing — content digests and conflict detection.
"""

import hashlib
from datetime import datetime, timedelta, timezone

from kbsync.hashing import compute_content_hash, detect_conflict, has_content_changed

T0 = datetime(2026, 1, 14, 9, 0, tzinfo=timezone.utc)


class TestContentHash:
    def test_sha256_hex(self):
        assert compute_content_hash("abc") == hashlib.sha256(b"abc").hexdigest()

    def test_no_normalization(self):
        assert compute_content_hash("a\n") != compute_content_hash("a\r\n")
        assert compute_content_hash("a") != compute_content_hash("a ")

    def test_has_content_changed(self):
        h = compute_content_hash("line")
        assert not has_content_changed("line", h)
        assert has_content_changed("line!", h)
        assert has_content_changed("line", None)
        assert has_content_changed("line", "")


class TestDetectConflict:
    def test_nothing_changed(self):
        h = compute_content_hash("x")
        state = detect_conflict("x", h, T0, T0)
        assert not state.file_changed
        assert not state.db_changed
        assert not state.has_conflict

    def test_file_changed_only(self):
        state = detect_conflict("new", compute_content_hash("old"), T0, T0)
        assert state.file_changed
        assert not state.db_changed
        assert not state.has_conflict

    def test_db_changed_only(self):
        h = compute_content_hash("x")
        state = detect_conflict("x", h, T0 + timedelta(seconds=5), T0)
        assert not state.file_changed
        assert state.db_changed
        assert not state.has_conflict

    def test_both_changed(self):
        state = detect_conflict(
            "new", compute_content_hash("old"), T0 + timedelta(seconds=5), T0,
        )
        assert state.has_conflict
        assert state.current_file_hash == compute_content_hash("new")
        assert state.stored_file_hash == compute_content_hash("old")

    def test_missing_timestamps_mean_db_unchanged(self):
        state = detect_conflict("new", compute_content_hash("old"), None, T0)
        assert not state.db_changed
        assert not state.has_conflict
        state = detect_conflict("new", compute_content_hash("old"), T0, None)
        assert not state.has_conflict

    def test_iso_strings_accepted(self):
        state = detect_conflict(
            "new", compute_content_hash("old"),
            "2026-01-14T09:00:05+00:00", "2026-01-14T09:00:00Z",
        )
        assert state.has_conflict

    def test_no_stored_hash_is_file_changed(self):
        state = detect_conflict("x", None, None, None)
        assert state.file_changed
        assert not state.has_conflict

    def test_to_dict(self):
        d = detect_conflict("x", None, None, None).to_dict()
        assert set(d) == {
            "has_conflict", "file_changed", "db_changed",
            "current_file_hash", "stored_file_hash",
        }
