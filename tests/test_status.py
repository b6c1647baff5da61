"""
Tests for kbsync.status — glyph, action-cell and store status tables.
"""

import pytest

from kbsync.status import (
    action_cell_for,
    checkbox_mark,
    converged,
    glyph_status,
    map_action_status,
    normalize_priority,
    normalize_project_status,
    readme_to_item_status,
    same_item_status,
    status_to_glyph,
    written_status,
)


class TestGlyphs:
    @pytest.mark.parametrize("glyph,status", [
        ("\u2705", "completed"),
        ("\U0001F7E2", "active"),
        ("\U0001F7E1", "pending"),
        ("\U0001F534", "blocked"),
        ("\U0001F535", "planning"),
        ("\u23F3", "pending"),
        ("\u274C", "cancelled"),
    ])
    def test_glyph_status(self, glyph, status):
        assert glyph_status(glyph) == status

    def test_variation_selector_ignored(self):
        assert glyph_status("\u2705\uFE0F") == "completed"

    def test_unknown_glyph_is_pending(self):
        assert glyph_status("?") == "pending"

    def test_status_to_glyph(self):
        assert status_to_glyph("complete") == "\u2705"
        assert status_to_glyph("in_progress") == "\U0001F7E2"
        assert status_to_glyph("deferred") == "\U0001F7E1"


class TestCheckbox:
    @pytest.mark.parametrize("status,mark", [
        ("complete", "x"), ("cancelled", "x"), ("pending", " "),
        ("in_progress", " "), ("blocked", " "), ("deferred", " "),
    ])
    def test_checkbox_mark(self, status, mark):
        assert checkbox_mark(status) == mark


class TestActionCells:
    @pytest.mark.parametrize("cell,status", [
        ("Done", "complete"), ("complete", "complete"), ("Completed", "complete"),
        ("Canceled", "cancelled"), ("In Progress", "in_progress"),
        ("in-progress", "in_progress"), ("Blocked", "blocked"),
        ("Deferred", "deferred"), ("Pending", "pending"), ("", "pending"),
        ("whatever", "pending"),
    ])
    def test_map_action_status(self, cell, status):
        assert map_action_status(cell) == status

    def test_action_cell_for(self):
        assert action_cell_for("in_progress") == "In Progress"
        assert action_cell_for("complete") == "Complete"
        assert action_cell_for("odd") == "odd"


class TestItemStatus:
    def test_readme_to_item_status(self):
        assert readme_to_item_status("completed") == "complete"
        assert readme_to_item_status("active") == "in_progress"
        assert readme_to_item_status("planning") == "pending"
        assert readme_to_item_status("unknown") == "pending"

    def test_same_item_status_folds_readme_values(self):
        assert same_item_status("complete", "completed")
        assert same_item_status("in_progress", "active")
        assert not same_item_status("complete", "cancelled")
        assert same_item_status(None, None)
        assert not same_item_status(None, "pending")


class TestWrittenStatus:
    @pytest.mark.parametrize("source_type,status,expected", [
        ("checkbox", "cancelled", "complete"),
        ("checkbox", "in_progress", "pending"),
        ("checkbox", "blocked", "pending"),
        ("status_marker", "deferred", "pending"),
        ("sub_project", "complete", "complete"),
        ("meeting", "cancelled", "cancelled"),
        ("meeting", "in_progress", "in_progress"),
        (None, "deferred", "deferred"),
    ])
    def test_reads_back_as(self, source_type, status, expected):
        assert written_status(source_type, status) == expected

    def test_converged_in_line_notation(self):
        assert converged("checkbox", "cancelled", "complete")
        assert not converged("checkbox", "blocked", "complete")
        assert converged("meeting", "complete", "complete")
        assert not converged("meeting", "blocked", "complete")


class TestProjectFields:
    @pytest.mark.parametrize("raw,normalized", [
        ("active", "active"), ("Maintenance", "active"), ("done", "completed"),
        ("inactive", "paused"), ("archived", "archived"), ("bogus", None),
        ("", None), (None, None),
    ])
    def test_normalize_project_status(self, raw, normalized):
        assert normalize_project_status(raw) == normalized

    @pytest.mark.parametrize("raw,normalized", [
        (1, 1), (4, 4), ("2", 2), (" 3 ", 3), (0, None), (5, None),
        ("high", None), (True, None), (None, None),
    ])
    def test_normalize_priority(self, raw, normalized):
        assert normalize_priority(raw) == normalized
