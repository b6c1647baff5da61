"""
MCP Audit Trail — one JSONL record per sync tool call

Every tool call appends exactly one line, success or not:

    {"v":1,"ts":"2026-01-14T09:05:00.123Z","rid":"...","tool":"sync_all",
     "sid":"default","root":"/kb","outcome":"ok","d":{...},"ms":12.3}

Arguments that carry user text (meeting paths) are summarised, never copied:
byte size, SHA-256 and a preview capped at PREVIEW_MAX_CHARS.

A broken sink loses records silently; it never fails the tool call.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

logger = logging.getLogger(__name__)

AUDIT_SCHEMA_VERSION = 1
PREVIEW_MAX_CHARS = 120


def _utc_stamp() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


class AuditLogger:
    """Appends tool-call records to a text stream (stderr by default)."""

    def __init__(self, output: Optional[TextIO] = None):
        self._output = sys.stderr if output is None else output

    def new_rid(self) -> str:
        return uuid.uuid4().hex

    def log(
        self,
        tool: str,
        rid: str,
        session_id: str,
        root: str,
        outcome: str,
        detail: Optional[Dict[str, Any]] = None,
        latency_ms: float = 0.0,
    ) -> None:
        """Append one record.

        ``outcome`` is "ok", "error" or "rejected".  ``detail`` holds the
        tool's counters and is omitted from the record when empty.
        """
        record: Dict[str, Any] = {
            "v": AUDIT_SCHEMA_VERSION,
            "ts": _utc_stamp(),
            "rid": rid,
            "tool": tool,
            "sid": session_id,
            "root": root,
            "outcome": outcome,
        }
        if detail:
            record["d"] = detail
        record["ms"] = round(latency_ms, 1)
        try:
            self._output.write(json.dumps(record, ensure_ascii=False, separators=(",", ":")) + "\n")
            self._output.flush()
        except (TypeError, ValueError, OSError) as e:
            logger.debug("Audit record for %s dropped: %s", tool, e)

    @staticmethod
    def make_payload_detail(payload: Any) -> Dict[str, Any]:
        """Size, digest and short preview of a tool argument."""
        text = json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str)
        data = text.encode("utf-8")
        preview = text[:PREVIEW_MAX_CHARS].replace("\r", "").replace("\n", " ")
        if len(text) > PREVIEW_MAX_CHARS:
            preview = preview.rstrip() + "…"
        return {
            "bytes": len(data),
            "hash": hashlib.sha256(data).hexdigest(),
            "preview": preview,
        }
