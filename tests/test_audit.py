"""
Tests for kbsync.mcp.audit — one JSONL record per tool call.
"""

import hashlib
import io
import json

import pytest

from kbsync.mcp.audit import AUDIT_SCHEMA_VERSION, PREVIEW_MAX_CHARS, AuditLogger


@pytest.fixture
def buf():
    return io.StringIO()


@pytest.fixture
def audit(buf):
    return AuditLogger(output=buf)


def _records(buf: io.StringIO) -> list:
    buf.seek(0)
    return [json.loads(ln) for ln in buf.read().splitlines() if ln]


class TestRecord:
    def test_required_fields(self, audit, buf):
        audit.log("sync_all", "abc", "default", "/kb", "ok", {"created": 2}, 12.34)
        [rec] = _records(buf)
        assert rec["v"] == AUDIT_SCHEMA_VERSION
        assert rec["tool"] == "sync_all"
        assert rec["rid"] == "abc"
        assert rec["sid"] == "default"
        assert rec["root"] == "/kb"
        assert rec["outcome"] == "ok"
        assert rec["d"] == {"created": 2}
        assert rec["ms"] == 12.3
        assert rec["ts"].endswith("Z")

    def test_empty_detail_omitted(self, audit, buf):
        audit.log("sync_stats", "r", "default", "/kb", "ok")
        assert "d" not in _records(buf)[0]

    def test_one_line_per_call(self, audit, buf):
        for i in range(3):
            audit.log("sync_all", str(i), "default", "/kb", "ok")
        assert [r["rid"] for r in _records(buf)] == ["0", "1", "2"]

    def test_rid_unique(self, audit):
        assert len({audit.new_rid() for _ in range(50)}) == 50


class TestFireAndForget:
    def test_closed_output_never_raises(self):
        out = io.StringIO()
        out.close()
        AuditLogger(output=out).log("sync_all", "r", "default", "/kb", "ok")

    def test_unserializable_detail_never_raises(self, audit, buf):
        audit.log("sync_all", "r", "default", "/kb", "ok", {"x": object()})
        assert _records(buf) == []


class TestPayloadDetail:
    def test_short_payload(self):
        d = AuditLogger.make_payload_detail({"path": "acme/meetings/x.md"})
        text = json.dumps({"path": "acme/meetings/x.md"}, ensure_ascii=False, sort_keys=True)
        assert d["preview"] == text
        assert d["bytes"] == len(text.encode("utf-8"))
        assert d["hash"] == hashlib.sha256(text.encode("utf-8")).hexdigest()

    def test_long_payload_truncated(self):
        d = AuditLogger.make_payload_detail({"path": "a" * 500})
        assert len(d["preview"]) <= PREVIEW_MAX_CHARS + 1
        assert d["preview"].endswith("\u2026")
