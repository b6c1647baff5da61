"""
Tests for kbsync.frontmatter — flat key/value header parsing.
"""

from kbsync.frontmatter import parse_frontmatter


class TestScalars:
    def test_key_value(self):
        fm = parse_frontmatter("---\ntitle: Weekly sync\ndate: 2026-01-14\n---\nbody\n")
        assert fm.data == {"title": "Weekly sync", "date": "2026-01-14"}
        assert fm.body == "body\n"

    def test_quotes_removed(self):
        fm = parse_frontmatter("---\ntitle: \"Quoted: yes\"\nother: 'single'\n---\n")
        assert fm.get_str("title") == "Quoted: yes"
        assert fm.get_str("other") == "single"

    def test_unparseable_lines_ignored(self):
        fm = parse_frontmatter("---\ntitle: A\nthis is not a pair\n  nested: value\n---\n")
        assert fm.data == {"title": "A"}

    def test_get_str_on_list_is_none(self):
        fm = parse_frontmatter("---\ntags: [a, b]\n---\n")
        assert fm.get_str("tags") is None
        assert fm.get_str("missing") is None


class TestLists:
    def test_inline_list(self):
        fm = parse_frontmatter("---\nprojects: [inventory, billing ,  ]\n---\n")
        assert fm.get_list("projects") == ["inventory", "billing"]

    def test_block_list(self):
        fm = parse_frontmatter("---\nattendees:\n  - Alice\n  - \"Bob\"\ntitle: X\n---\n")
        assert fm.get_list("attendees") == ["Alice", "Bob"]
        assert fm.get_str("title") == "X"

    def test_block_list_stops_at_next_key(self):
        fm = parse_frontmatter("---\na:\n  - 1\nb: 2\n  - 3\n---\n")
        assert fm.get_list("a") == ["1"]
        assert fm.get_str("b") == "2"

    def test_empty_inline_list(self):
        fm = parse_frontmatter("---\ntags: []\n  - stray\n---\n")
        assert fm.get_list("tags") == []

    def test_scalar_wrapped_by_get_list(self):
        fm = parse_frontmatter("---\nproject: inventory\n---\n")
        assert fm.get_list("project") == ["inventory"]


class TestMarkers:
    def test_no_frontmatter(self):
        text = "# Title\n\nbody\n"
        fm = parse_frontmatter(text)
        assert fm.data == {}
        assert fm.body == text
        assert fm.body_offset == 0

    def test_unclosed_block_is_body(self):
        text = "---\ntitle: A\nno closing marker\n"
        fm = parse_frontmatter(text)
        assert fm.data == {}
        assert fm.body == text

    def test_empty_input(self):
        fm = parse_frontmatter("")
        assert fm.data == {}
        assert fm.body == ""

    def test_body_offset_counts_header_lines(self):
        fm = parse_frontmatter("---\ntitle: A\nstatus: active\n---\nfirst body line\n")
        assert fm.body_offset == 4
        assert fm.body.split("\n")[0] == "first body line"

    def test_crlf_header(self):
        fm = parse_frontmatter("---\r\ntitle: A\r\n---\r\nbody\r\n")
        assert fm.get_str("title") == "A"
        assert fm.body == "body\r\n"
        assert fm.body_offset == 3
