"""
kbsync MCP Tools — sync and write-back tools for MCP integration.

Thin wrappers around SyncOrchestrator.  Each tool follows the same order:

    ① Argument validation  — rejected calls never reach the store
    ② Tool execution       — orchestrator call, result as a plain dict
    ③ Audit log            — always, including on failure (finally block)

Every result carries ``status``: "ok", "error" or "rejected".

Tool groups:
    SYNC:       sync_preview, sync_all, sync_projects, sync_meeting
    TASKS:      task_write_back, task_set_status
    CONFLICTS:  sync_conflicts, sync_resolve
    HEALTH:     sync_stats
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from kbsync.errors import ConflictError, NotFoundError
from kbsync.status import ITEM_STATUSES
from kbsync.sync import WINNERS, SyncOrchestrator
from kbsync.types import parse_item_id

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"


def _stage_detail(stage: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "created": stage["created"],
        "updated": stage["updated"],
        "conflicts": len(stage["conflicts"]),
        "errors": len(stage["errors"]),
    }


def register_sync_tools(
    mcp,
    orchestrator: SyncOrchestrator,
    *,
    audit=None,
) -> None:
    """
    Register all kbsync MCP tools on a FastMCP server instance.

    Args:
        mcp: FastMCP server instance.
        orchestrator: SyncOrchestrator bound to an open SyncContext.
        audit: AuditLogger for structured logging.
    """
    from kbsync.mcp.audit import AuditLogger

    if audit is None:
        audit = AuditLogger()

    _root = str(orchestrator.root)

    def _finish(tool: str, rid: str, outcome: str, detail: Dict[str, Any], t0: float) -> None:
        audit.log(tool, rid, DEFAULT_SESSION_ID, _root,
                  outcome, detail, (time.monotonic() - t0) * 1000)

    # =====================================================================
    # SYNC
    # =====================================================================

    @mcp.tool()
    def sync_preview() -> Dict[str, Any]:
        """Dry-run of a full sync pass: counts what would change, writes nothing.

        Returns:
            stages: projects, meetings, readmes, writeback results with
            found/created/updated/skipped counts, conflicts and errors.
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {}
        try:
            report = orchestrator.preview_all().to_dict()
            detail = {k: _stage_detail(v) for k, v in report["stages"].items()}
            return dict(report, status="ok")
        except Exception as e:
            outcome = "error"
            return {"status": "error", "message": f"Preview failed: {e}"}
        finally:
            _finish("sync_preview", rid, outcome, detail, t0)

    @mcp.tool()
    def sync_all(write_back: Optional[bool] = None) -> Dict[str, Any]:
        """Full sync pass: projects, meetings, READMEs, then write-back.

        Args:
            write_back: Push store statuses into documents (default: config).

        Returns:
            success, stages (per-stage counts, conflicts and errors).
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {}
        try:
            report = orchestrator.sync_all(write_back=write_back).to_dict()
            detail = {k: _stage_detail(v) for k, v in report["stages"].items()}
            return dict(report, status="ok")
        except Exception as e:
            outcome = "error"
            return {"status": "error", "message": f"Sync failed: {e}"}
        finally:
            _finish("sync_all", rid, outcome, detail, t0)

    @mcp.tool()
    def sync_projects(preview: bool = False) -> Dict[str, Any]:
        """Scan project folders and create/update projects and sub-projects.

        Args:
            preview: Report counts without writing.
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {}
        try:
            result = orchestrator.sync_projects(preview=preview).to_dict()
            detail = _stage_detail(result)
            return dict(result, status="ok")
        except Exception as e:
            outcome = "error"
            return {"status": "error", "message": f"Project sync failed: {e}"}
        finally:
            _finish("sync_projects", rid, outcome, detail, t0)

    @mcp.tool()
    def sync_meeting(path: str, preview: bool = False) -> Dict[str, Any]:
        """Sync one meeting document (record, attendees, action items).

        Args:
            path: Knowledge-base relative path, e.g. acme/meetings/2026/01/standup.md
            preview: Report counts without writing.
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = audit.make_payload_detail({"path": path})
        try:
            if not path or path.startswith("/") or ".." in path.split("/"):
                outcome = "rejected"
                return {"status": "rejected", "message": f"Invalid meeting path: {path!r}"}
            result = orchestrator.sync_meeting(path, preview=preview).to_dict()
            detail.update(_stage_detail(result))
            return dict(result, status="ok")
        except Exception as e:
            outcome = "error"
            return {"status": "error", "message": f"Meeting sync failed: {e}"}
        finally:
            _finish("sync_meeting", rid, outcome, detail, t0)

    # =====================================================================
    # TASKS
    # =====================================================================

    @mcp.tool()
    def task_write_back(item_id: str, preview: bool = False) -> Dict[str, Any]:
        """Write an item's current status into its source document line.

        Args:
            item_id: Item id (T-42 or 42).
            preview: Report the change without writing.

        Returns:
            success, message, changes (e.g. "Line 12: [ ] → [x]"), written.
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {"item_id": item_id}
        try:
            parsed = parse_item_id(item_id)
            if parsed is None:
                outcome = "rejected"
                return {"status": "rejected", "message": f"Invalid item id: {item_id!r}"}
            result = orchestrator.write_back_item(parsed, preview=preview).to_dict()
            detail["written"] = result["written"]
            return dict(result, status="ok" if result["success"] else "error")
        except NotFoundError as e:
            outcome = "error"
            return {"status": "error", "message": str(e)}
        except Exception as e:
            outcome = "error"
            return {"status": "error", "message": f"Write-back failed: {e}"}
        finally:
            _finish("task_write_back", rid, outcome, detail, t0)

    @mcp.tool()
    def task_set_status(item_id: str, status: str, write_back: bool = True) -> Dict[str, Any]:
        """Change an item's status, then push it to its source document.

        Completing a task also appends a line to today's diary.

        Args:
            item_id: Item id (T-42 or 42).
            status: pending | in_progress | complete | blocked | cancelled | deferred
            write_back: Also update the source document (default true).
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {"item_id": item_id, "to": status}
        try:
            parsed = parse_item_id(item_id)
            if parsed is None or status not in ITEM_STATUSES:
                outcome = "rejected"
                return {
                    "status": "rejected",
                    "message": f"Invalid item id or status: {item_id!r}, {status!r}",
                    "valid_statuses": sorted(ITEM_STATUSES),
                }
            result = orchestrator.set_item_status(parsed, status, write_back=write_back)
            return dict(result, status="ok")
        except NotFoundError as e:
            outcome = "error"
            return {"status": "error", "message": str(e)}
        except Exception as e:
            outcome = "error"
            return {"status": "error", "message": f"Status change failed: {e}"}
        finally:
            _finish("task_set_status", rid, outcome, detail, t0)

    # =====================================================================
    # CONFLICTS
    # =====================================================================

    @mcp.tool()
    def sync_conflicts() -> Dict[str, Any]:
        """List items whose document line and store record both changed.

        Returns:
            count, conflicts (item, path, line, file_status, db_status).
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {}
        try:
            conflicts = orchestrator.list_conflicts()
            detail = {"count": len(conflicts)}
            return {"status": "ok", "count": len(conflicts), "conflicts": conflicts}
        except Exception as e:
            outcome = "error"
            return {"status": "error", "message": f"Conflict scan failed: {e}"}
        finally:
            _finish("sync_conflicts", rid, outcome, detail, t0)

    @mcp.tool()
    def sync_resolve(item_id: str, winner: str, force: bool = False) -> Dict[str, Any]:
        """Resolve a conflict by keeping one side.

        Args:
            item_id: Item id (T-42 or 42).
            winner: "file" (document status wins) or "database" (store wins).
            force: Resolve even when the item is not in conflict.
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {"item_id": item_id, "winner": winner}
        try:
            parsed = parse_item_id(item_id)
            if parsed is None or winner not in WINNERS:
                outcome = "rejected"
                return {
                    "status": "rejected",
                    "message": f"Invalid item id or winner: {item_id!r}, {winner!r}",
                }
            result = orchestrator.resolve_conflict(parsed, winner, force=force)
            return dict(result, status="ok")
        except (ConflictError, NotFoundError) as e:
            outcome = "error"
            return {"status": "error", "message": str(e)}
        except Exception as e:
            outcome = "error"
            return {"status": "error", "message": f"Resolve failed: {e}"}
        finally:
            _finish("sync_resolve", rid, outcome, detail, t0)

    # =====================================================================
    # HEALTH
    # =====================================================================

    @mcp.tool()
    def sync_stats() -> Dict[str, Any]:
        """Store statistics: projects, meetings, people, items by status and source."""
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        try:
            stats = orchestrator.store.stats()
            stats["status"] = "ok"
            stats["root"] = _root
            return stats
        except Exception as e:
            outcome = "error"
            return {"status": "error", "message": f"Stats failed: {e}"}
        finally:
            _finish("sync_stats", rid, outcome, {}, t0)
