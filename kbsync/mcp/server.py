"""
kbsync MCP Server — Knowledge-Base ↔ Store Sync over MCP

Standalone MCP server exposing kbsync operations via the Model Context
Protocol.  Works with any MCP-compatible client.

Architecture: thin MCP layer delegating to SyncOrchestrator.
Zero business logic in this module — all logic lives in kbsync/*.

Usage:
    python -m kbsync.mcp.server --root ~/kb --db ~/kb/.kbsync/kbsync.db
    python -m kbsync.mcp.server --config ~/kb/.kbsync/config.json
"""

from __future__ import annotations

import argparse
import logging
import os

logger = logging.getLogger(__name__)

# Shown to every MCP client on connect.
_MCP_INSTRUCTIONS = (
    "Two-way sync between a markdown knowledge base and a task store (9 tools).\n"
    "\n"
    "READ:      Use sync_preview before sync_all to see what would change.\n"
    "SYNC:      Use sync_all for a full pass, sync_meeting after editing one\n"
    "           meeting note, sync_projects after adding project folders.\n"
    "TASKS:     Use task_set_status to change a status; the source checkbox,\n"
    "           glyph or Actions-table cell is updated in place.\n"
    "CONFLICTS: Use sync_conflicts to list items edited on both sides and\n"
    "           sync_resolve with winner=file|database to settle each one.\n"
    "\n"
    "Rules:\n"
    "- Conflicts are never merged automatically; always ask which side wins\n"
    "- Paths are relative to the knowledge-base root\n"
)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser for the kbsync MCP server."""
    p = argparse.ArgumentParser(
        prog="kbsync-mcp",
        description="kbsync MCP Server — knowledge-base ↔ store sync",
    )
    p.add_argument(
        "--db",
        default=os.environ.get("KBSYNC_DB", ".kbsync/kbsync.db"),
        help="SQLite database path (default: .kbsync/kbsync.db or $KBSYNC_DB)",
    )
    p.add_argument(
        "--root",
        default=os.environ.get("KBSYNC_ROOT"),
        help="Knowledge-base root directory (default: $KBSYNC_ROOT or config)",
    )
    p.add_argument(
        "--config",
        default=os.environ.get("KBSYNC_CONFIG"),
        help="Path to config.json (default: $KBSYNC_CONFIG)",
    )
    p.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    a = p.add_argument_group("audit")
    a.add_argument(
        "--audit-log",
        default=None,
        help="Audit log file path (default: stderr)",
    )

    return p


def create_server(args=None):
    """
    Create and configure the FastMCP server with sync tools.

    Args:
        args: Parsed argparse.Namespace, or None to parse from sys.argv.

    Returns:
        (mcp_server, orchestrator) tuple.

    Raises:
        KnowledgeBaseNotFoundError: the root is missing or not a directory.
    """
    from mcp.server.fastmcp import FastMCP

    from kbsync.config import load_config
    from kbsync.mcp.audit import AuditLogger
    from kbsync.mcp.tools import register_sync_tools
    from kbsync.sync import SyncContext, SyncOrchestrator

    if args is None:
        args = build_parser().parse_args()

    config = load_config(args.config)
    root = args.root or config.kb.root
    ctx = SyncContext(root, db_path=args.db, wal_mode=config.store.wal_mode)
    ctx.open()
    orchestrator = SyncOrchestrator(ctx, config)

    audit_output = None
    if args.audit_log:
        audit_output = open(args.audit_log, "a", encoding="utf-8")
    audit = AuditLogger(output=audit_output)

    mcp = FastMCP(
        name="kbsync",
        instructions=_MCP_INSTRUCTIONS,
    )

    register_sync_tools(mcp, orchestrator, audit=audit)

    logger.info(
        "kbsync MCP server ready: root=%s, db=%s, write_back=%s",
        ctx.root, args.db, "on" if config.sync.write_back else "off",
    )

    return mcp, orchestrator


def main():
    """CLI entry point — parse args, create server, run."""
    parser = build_parser()
    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    mcp, orchestrator = create_server(args)
    try:
        mcp.run()
    finally:
        orchestrator.ctx.close()


if __name__ == "__main__":
    main()
