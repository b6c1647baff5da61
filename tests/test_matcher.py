"""
Tests for kbsync.matcher — the shared ranking rule.
"""

import pytest

from kbsync.matcher import Candidate, MatchKind, TitleMatcher, normalize_title


def cand(key, line, title, source_type="checkbox"):
    return Candidate(key=key, line=line, source_type=source_type, title=title)


class TestNormalize:
    def test_markup_case_and_spaces(self):
        assert normalize_title("  **Ship**   the `Report` ") == "ship the report"

    def test_empty(self):
        assert normalize_title(None) == ""
        assert normalize_title("") == ""


class TestBest:
    def test_exact_beats_title(self):
        m = TitleMatcher()
        cands = [cand(1, 30, "Write guide"), cand(2, 10, "Write guide")]
        match = m.best(cands, line=10, source_type="checkbox", title="Write guide")
        assert match.kind == MatchKind.EXACT
        assert match.candidate.key == 2

    def test_title_beats_bare_coordinate(self):
        m = TitleMatcher()
        cands = [cand(1, 10, "Something else"), cand(2, 11, "Write guide")]
        match = m.best(cands, line=10, source_type="checkbox", title="Write guide")
        assert match.kind == MatchKind.TITLE
        assert match.candidate.key == 2

    def test_coordinate_when_no_title_matches(self):
        m = TitleMatcher()
        match = m.best([cand(1, 10, "Renamed task")], line=10,
                       source_type="checkbox", title="Write guide")
        assert match.kind == MatchKind.COORDINATE

    def test_tie_broken_by_distance_then_order(self):
        m = TitleMatcher()
        cands = [cand(1, 20, "Write guide"), cand(2, 14, "Write guide"), cand(3, 6, "Write guide")]
        match = m.best(cands, line=10, source_type="checkbox", title="Write guide")
        assert match.distance == 4
        assert match.candidate.key == 2

    def test_source_type_mismatch_excluded(self):
        m = TitleMatcher()
        match = m.best([cand(1, 10, "Write guide", "status_marker")],
                       line=10, source_type="checkbox", title="Write guide")
        assert match is None

    def test_untyped_candidates_accepted(self):
        m = TitleMatcher()
        match = m.best([cand(1, 3, "Write guide", None)],
                       line=10, source_type="checkbox", title="Write guide")
        assert match is not None

    def test_prefix_containment_either_way(self):
        m = TitleMatcher(prefix_len=10)
        # Only the first 10 normalized characters of the shorter side must occur.
        match = m.best([cand(1, None, "Review supplier contract v2 with legal")],
                       line=None, source_type=None, title="Review supplier contract")
        assert match.kind == MatchKind.TITLE

    def test_no_match(self):
        m = TitleMatcher()
        assert m.best([cand(1, 2, "Alpha")], line=10, source_type=None, title="Beta") is None

    def test_prefix_len_validated(self):
        with pytest.raises(ValueError):
            TitleMatcher(prefix_len=0)


class TestAssign:
    def test_one_to_one(self):
        m = TitleMatcher()
        targets = [cand("a", 10, "Write guide"), cand("b", 11, "Write guide")]
        result = m.assign(targets, [cand(1, 10, "Write guide")])
        assert list(result) == ["a"]

    def test_inserted_line_does_not_steal_item(self):
        m = TitleMatcher()
        # A new task was inserted at line 18; the tracked task moved to 19.
        targets = [cand("new", 18, "New task"), cand("moved", 19, "Write migration guide")]
        result = m.assign(targets, [cand(7, 18, "Write migration guide")])
        assert "new" not in result
        assert result["moved"].candidate.key == 7
        assert result["moved"].kind == MatchKind.TITLE

    def test_strong_match_wins_over_earlier_weak_one(self):
        m = TitleMatcher()
        targets = [cand("early", 5, "Ship report"), cand("exact", 12, "Ship report")]
        result = m.assign(targets, [cand(1, 12, "Ship report")])
        assert result["exact"].kind == MatchKind.EXACT
        assert "early" not in result

    def test_each_candidate_claimed_once(self):
        m = TitleMatcher()
        targets = [cand("a", 1, "Task one"), cand("b", 2, "Task two")]
        cands = [cand(10, 1, "Task one"), cand(11, 2, "Task two")]
        result = m.assign(targets, cands)
        assert result["a"].candidate.key == 10
        assert result["b"].candidate.key == 11
