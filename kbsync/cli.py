"""
kbsync CLI — Knowledge-Base ↔ Store Sync Commands

Commands:
    kbsync init      [PATH]                    — scaffold store + config + .gitignore
    kbsync preview                             — full pass, nothing written
    kbsync sync      [--stage S] [--meeting P] — full pass or a single stage
    kbsync writeback [ID] [--status S]         — push statuses into documents
    kbsync conflicts                           — list items changed on both sides
    kbsync resolve   <ID> --winner file|database
    kbsync show      <ID>                      — display one item
    kbsync stats                               — store metrics
    kbsync serve                               — start MCP server (foreground)

Environment variables:
    KBSYNC_DB      Path to SQLite database (default: .kbsync/kbsync.db)
    KBSYNC_ROOT    Knowledge-base root directory
    KBSYNC_CONFIG  Path to config.json

Precedence (invariant):
    CLI --flag  >  KBSYNC_* env var  >  config file  >  compiled default

Exit codes:
    0  Success (including idempotent no-op)
    1  Operational error (bad args, entity not found, stage errors)
    2  Internal failure (unexpected exception, missing knowledge base)
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_DB = ".kbsync/kbsync.db"
STAGES = ("all", "projects", "meetings", "readmes", "writeback")


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


def _env_str(name: str, default: str) -> str:
    """Parse string env var with fallback."""
    return os.environ.get(name, default)


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------


def _load_config(args: Optional[argparse.Namespace] = None):
    """Config file: CLI --config > KBSYNC_CONFIG > compiled defaults."""
    from kbsync.config import load_config
    path = getattr(args, "config", None) if args else None
    return load_config(path or _env_str("KBSYNC_CONFIG", "") or None)


def _resolve_db(args: Optional[argparse.Namespace] = None, config=None) -> str:
    """Resolve database path: CLI --db > KBSYNC_DB > config > .kbsync/kbsync.db."""
    if args and getattr(args, "db", None):
        return args.db
    env = _env_str("KBSYNC_DB", "")
    if env:
        return env
    if config is not None and config.store.db_path:
        return config.store.db_path
    return DEFAULT_DB


def _resolve_root(args: Optional[argparse.Namespace] = None, config=None) -> str:
    """Resolve knowledge-base root: CLI --root > KBSYNC_ROOT > config."""
    if args and getattr(args, "root", None):
        return args.root
    env = _env_str("KBSYNC_ROOT", "")
    if env:
        return env
    if config is not None and config.kb.root:
        return config.kb.root
    return ""


def _parse_id(value: str) -> int:
    from kbsync.types import parse_item_id
    item_id = parse_item_id(value)
    if item_id is None:
        _warn(f"Invalid item id: {value}")
        sys.exit(1)
    return item_id


# ---------------------------------------------------------------------------
# Store / context factories
# ---------------------------------------------------------------------------


def _open_store(db_path: str, wal_mode: bool = True):
    """Open a SyncStore. Creates the DB and parent dirs if needed."""
    from kbsync.store import SyncStore
    return SyncStore(db_path=db_path, wal_mode=wal_mode)


def _open_orchestrator(args: argparse.Namespace):
    """Open a SyncContext + SyncOrchestrator. Exits 2 if the root is missing."""
    from kbsync.errors import KnowledgeBaseNotFoundError
    from kbsync.sync import SyncContext, SyncOrchestrator

    config = _load_config(args)
    ctx = SyncContext(
        _resolve_root(args, config),
        db_path=_resolve_db(args, config),
        wal_mode=config.store.wal_mode,
    )
    try:
        ctx.open()
    except KnowledgeBaseNotFoundError as e:
        _warn(str(e))
        sys.exit(2)
    return ctx, SyncOrchestrator(ctx, config)


# ---------------------------------------------------------------------------
# Stderr helpers (respect --quiet)
# ---------------------------------------------------------------------------

_quiet = False


def _info(msg: str) -> None:
    """Print progress to stderr (suppressed by --quiet)."""
    if not _quiet:
        print(msg, file=sys.stderr)


def _warn(msg: str) -> None:
    """Print warning to stderr (always visible)."""
    print(msg, file=sys.stderr)


def _print_json(data: Dict[str, Any]) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _print_stage(stage: Dict[str, Any]) -> None:
    label = stage["stage"]
    print(
        f"  {label:10s} found={stage['found']:<4d} created={stage['created']:<4d} "
        f"updated={stage['updated']:<4d} skipped={stage['skipped']:<4d} "
        f"conflicts={len(stage['conflicts']):<3d} errors={len(stage['errors'])}"
    )
    for err in stage["errors"]:
        _warn(f"    [{label}] {err}")
    for c in stage["conflicts"]:
        _info(f"    [{label}] conflict {c.get('display_id', '?')}: "
              f"{c.get('source_path')}:{c.get('source_line')} "
              f"file={c.get('file_status')} db={c.get('db_status')}")


# ===========================================================================
# Command: init
# ===========================================================================


def cmd_init(args: argparse.Namespace) -> None:
    """Initialize a kbsync workspace directory."""
    from kbsync.config import KbSyncConfig

    target = Path(args.path).resolve()
    db_path = target / "kbsync.db"

    if db_path.exists() and not args.force:
        # Idempotent: print paths, exit 0 (not error)
        _info(f"Workspace exists: {target}")
        _info(f"  Database:  {db_path}")
        print(f'export KBSYNC_DB="{db_path}"')
        return

    if args.force and db_path.exists():
        db_path.unlink()
        for suffix in ("-wal", "-shm"):
            p = db_path.parent / (db_path.name + suffix)
            if p.exists():
                p.unlink()

    target.mkdir(parents=True, exist_ok=True)
    store = _open_store(str(db_path))
    store.close()

    config_path = target / "config.json"
    if not config_path.exists():
        cfg = KbSyncConfig()
        cfg.store.db_path = str(db_path)
        if getattr(args, "root", None):
            cfg.kb.root = str(Path(args.root).resolve())
        config_path.write_text(json.dumps(cfg.to_dict(), indent=2) + "\n", encoding="utf-8")

    gitignore_path = target / ".gitignore"
    if not gitignore_path.exists():
        gitignore_path.write_text("*.db\n*.db-wal\n*.db-shm\n", encoding="utf-8")

    _info(f"kbsync workspace initialized: {target}")
    _info(f"  Database:   {db_path}")
    _info(f"  Config:     {config_path}")
    _info(f"  .gitignore: {gitignore_path}")
    print(f'export KBSYNC_DB="{db_path}"')


# ===========================================================================
# Command: preview / sync
# ===========================================================================


def _report(args: argparse.Namespace, data: Dict[str, Any], title: str) -> None:
    if getattr(args, "json", False):
        _print_json(data)
        return
    print(title)
    print("=" * 40)
    for stage in data["stages"].values():
        _print_stage(stage)


def cmd_preview(args: argparse.Namespace) -> None:
    """Run a full pass without mutating the store or any document."""
    ctx, orch = _open_orchestrator(args)
    try:
        report = orch.preview_all()
    finally:
        ctx.close()
    _report(args, report.to_dict(), "Sync Preview (nothing written)")


def cmd_sync(args: argparse.Namespace) -> None:
    """Run a full pass, one stage, or one meeting."""
    ctx, orch = _open_orchestrator(args)
    preview = getattr(args, "dry_run", False)
    try:
        if args.meeting:
            stages = [orch.sync_meeting(args.meeting, preview=preview)]
        elif args.stage == "all":
            report = orch.sync_all(preview=preview, write_back=False if args.no_write_back else None)
            stages = report.stages
        else:
            run = {
                "projects": orch.sync_projects,
                "meetings": orch.sync_meetings,
                "readmes": orch.sync_readmes,
                "writeback": orch.write_back_all,
            }[args.stage]
            stages = [run(preview=preview)]
    finally:
        ctx.close()

    data = {
        "success": all(s.success for s in stages),
        "preview": preview,
        "stages": {s.stage: s.to_dict() for s in stages},
    }
    _report(args, data, "Sync Preview (nothing written)" if preview else "Sync Results")
    if not data["success"]:
        sys.exit(1)


# ===========================================================================
# Command: writeback
# ===========================================================================


def cmd_writeback(args: argparse.Namespace) -> None:
    """Push one item (optionally with a new status) or every item to documents."""
    from kbsync.errors import NotFoundError

    if args.status and args.dry_run:
        _warn("--dry-run cannot be combined with --status")
        sys.exit(1)
    ctx, orch = _open_orchestrator(args)
    try:
        if args.id is None:
            if args.status:
                _warn("--status requires an item id")
                sys.exit(1)
            stage = orch.write_back_all(preview=args.dry_run)
            data = stage.to_dict()
            ok = stage.success
        else:
            item_id = _parse_id(args.id)
            try:
                if args.status:
                    data = orch.set_item_status(item_id, args.status)
                    wb = data.get("write_back")
                    ok = wb is None or wb["success"]
                else:
                    data = orch.write_back_item(item_id, preview=args.dry_run).to_dict()
                    ok = data["success"]
            except (NotFoundError, ValueError) as e:
                _warn(str(e))
                sys.exit(1)
    finally:
        ctx.close()

    if getattr(args, "json", False):
        _print_json(data)
    elif "stage" in data:
        _print_stage(data)
    else:
        wb = data.get("write_back", data) or {}
        for change in wb.get("changes", []):
            print(f"  {wb.get('source_path')}: {change}")
        _info(wb.get("message", "Status updated (no source document)"))
    if not ok:
        sys.exit(1)


# ===========================================================================
# Command: conflicts / resolve
# ===========================================================================


def cmd_conflicts(args: argparse.Namespace) -> None:
    """List items whose document line and store record both changed."""
    ctx, orch = _open_orchestrator(args)
    try:
        conflicts = orch.list_conflicts()
    finally:
        ctx.close()

    if getattr(args, "json", False):
        _print_json({"status": "ok", "count": len(conflicts), "conflicts": conflicts})
        return
    if not conflicts:
        _info("No conflicts.")
        return
    for c in conflicts:
        print(f"{c['display_id']:8s} {c['source_path']}:{c.get('current_line') or c['source_line']}  "
              f"file={c['file_status']}  db={c['db_status']}  {c['title']}")


def cmd_resolve(args: argparse.Namespace) -> None:
    """Keep one side of a conflict and refresh the sync fields."""
    from kbsync.errors import ConflictError, NotFoundError

    item_id = _parse_id(args.id)
    ctx, orch = _open_orchestrator(args)
    try:
        result = orch.resolve_conflict(item_id, args.winner, force=args.force)
    except (ConflictError, NotFoundError) as e:
        _warn(str(e))
        sys.exit(1)
    finally:
        ctx.close()

    if getattr(args, "json", False):
        _print_json(dict(result, status="ok"))
    else:
        item = result["item"]
        _info(f"Resolved {item['display_id']}: {args.winner} wins (status={item['status']})")


# ===========================================================================
# Command: show / stats
# ===========================================================================


def cmd_show(args: argparse.Namespace) -> None:
    """Show an item by ID."""
    item_id = _parse_id(args.id)
    store = _open_store(_resolve_db(args, _load_config(args)))
    try:
        item = store.get_item(item_id)
        if item is None:
            _warn(f"Item not found: {args.id}")
            sys.exit(1)
        people = store.item_people(item.id)
        project = store.get_project(item.project_id) if item.project_id else None
        owner = store.get_person(item.owner_id) if item.owner_id else None
    finally:
        store.close()

    if getattr(args, "json", False):
        d = item.to_dict()
        d["assignees"] = people
        d["project"] = project.to_dict() if project else None
        d["owner"] = owner.name if owner else None
        _print_json(d)
        return

    print(f"ID:        {item.display_id}")
    print(f"Title:     {item.title}")
    print(f"Status:    {item.status}")
    if item.description:
        print(f"Details:   {item.description}")
    if item.due_date:
        print(f"Due:       {item.due_date}")
    if project:
        print(f"Project:   {project.org}/{project.slug} ({project.name})")
    if owner:
        print(f"Owner:     {owner.name}")
    if people:
        print(f"Assignees: {', '.join(p['name'] for p in people)}")
    if item.source_path:
        print(f"Source:    {item.source_path}:{item.source_line or '?'} ({item.source_type})")
    print(f"Created:   {item.created_at}")
    print(f"Updated:   {item.updated_at}")
    print(f"Synced:    {item.last_synced_at or '(never)'}")
    if item.deleted_at:
        print(f"Deleted:   {item.deleted_at}")


def cmd_stats(args: argparse.Namespace) -> None:
    """Show store statistics."""
    store = _open_store(_resolve_db(args, _load_config(args)))
    try:
        stats = store.stats()
    finally:
        store.close()

    if getattr(args, "json", False):
        stats["status"] = "ok"
        _print_json(stats)
        return
    print("Sync Store Statistics")
    print("=" * 40)
    print(f"  Projects:     {stats['projects']} ({stats['sub_projects']} sub-projects)")
    print(f"  Meetings:     {stats['meetings']}")
    print(f"  People:       {stats['people']}")
    print(f"  Items:        {stats['items']} ({stats['linked_items']} linked)")
    print(f"  By status:")
    for status, count in sorted(stats.get("items_by_status", {}).items()):
        print(f"    {status:12s}: {count}")
    print(f"  By source:")
    for source, count in sorted(stats.get("items_by_source", {}).items()):
        print(f"    {source:12s}: {count}")
    print(f"  Audit events: {stats['events_count']}")


# ===========================================================================
# Command: serve  (start MCP server)
# ===========================================================================


def cmd_serve(args: argparse.Namespace) -> None:
    """Start the kbsync MCP server in foreground."""
    try:
        from kbsync.mcp.server import build_parser as mcp_parser, create_server
    except ImportError:
        _warn("MCP dependencies not installed. Run: pip install mcp")
        sys.exit(1)

    config = _load_config(args)
    server_argv = ["--db", _resolve_db(args, config)]
    root = _resolve_root(args, config)
    if root:
        server_argv.extend(["--root", root])
    if getattr(args, "config", None):
        server_argv.extend(["--config", args.config])
    if getattr(args, "verbose", False):
        server_argv.append("--verbose")

    server_args = mcp_parser().parse_args(server_argv)

    try:
        mcp, _ = create_server(server_args)
    except ImportError:
        _warn("MCP dependencies not installed. Run: pip install mcp")
        sys.exit(1)

    _info(f"kbsync MCP server (db={server_args.db})")
    _info("Press Ctrl+C to stop.")
    mcp.run()


# ===========================================================================
# Entry point
# ===========================================================================


def main() -> None:
    """CLI entry point: kbsync <command> [args]."""
    global _quiet

    # Shared parent with flags that work on all subcommands.
    # SUPPRESS defaults prevent subparser defaults from overriding
    # values parsed at the main-parser level (argparse parents quirk).
    _db_default = _env_str("KBSYNC_DB", DEFAULT_DB)
    _common = argparse.ArgumentParser(add_help=False)
    _common.add_argument(
        "--db", default=argparse.SUPPRESS,
        help=f"Path to SQLite database (default: {_db_default})",
    )
    _common.add_argument(
        "--root", default=argparse.SUPPRESS,
        help="Knowledge-base root (default: KBSYNC_ROOT)",
    )
    _common.add_argument(
        "--config", default=argparse.SUPPRESS,
        help="Path to config.json (default: KBSYNC_CONFIG)",
    )
    _common.add_argument(
        "--quiet", "-q", action="store_true", default=argparse.SUPPRESS,
        help="Suppress stderr progress messages",
    )
    _common.add_argument(
        "--json", action="store_true", default=argparse.SUPPRESS,
        help="Machine-readable JSON output",
    )
    _common.add_argument(
        "-v", "--verbose", action="store_true", default=argparse.SUPPRESS,
        help="Enable verbose logging",
    )

    parser = argparse.ArgumentParser(
        prog="kbsync",
        description="kbsync — keep a markdown knowledge base and a task store in sync",
        parents=[_common],
    )

    sub = parser.add_subparsers(dest="command", help="Available commands")

    # -- init --------------------------------------------------------------
    p_init = sub.add_parser("init", parents=[_common], help="Initialize a kbsync workspace")
    p_init.add_argument(
        "path", nargs="?", default=".kbsync",
        help="Workspace directory (default: .kbsync)",
    )
    p_init.add_argument("--force", action="store_true", help="Reinitialize existing workspace")
    p_init.set_defaults(func=cmd_init)

    # -- preview -----------------------------------------------------------
    p_prev = sub.add_parser("preview", parents=[_common], help="Full pass without writing anything")
    p_prev.set_defaults(func=cmd_preview)

    # -- sync --------------------------------------------------------------
    p_sync = sub.add_parser("sync", parents=[_common], help="Sync documents into the store")
    p_sync.add_argument("--stage", choices=STAGES, default="all", help="Run one stage (default: all)")
    p_sync.add_argument("--meeting", default=None, help="Sync a single meeting (relative path)")
    p_sync.add_argument("--no-write-back", action="store_true", help="Skip the write-back stage")
    p_sync.add_argument("--dry-run", action="store_true", help="Compute counts but don't write")
    p_sync.set_defaults(func=cmd_sync)

    # -- writeback ---------------------------------------------------------
    p_wb = sub.add_parser("writeback", parents=[_common], help="Write store statuses into documents")
    p_wb.add_argument("id", nargs="?", default=None, help="Item ID (T-42 or 42); all items if omitted")
    p_wb.add_argument("--status", default=None, help="Set this status first (e.g. complete)")
    p_wb.add_argument("--dry-run", action="store_true", help="Report changes but don't write")
    p_wb.set_defaults(func=cmd_writeback)

    # -- conflicts ---------------------------------------------------------
    p_conf = sub.add_parser("conflicts", parents=[_common], help="List sync conflicts")
    p_conf.set_defaults(func=cmd_conflicts)

    # -- resolve -----------------------------------------------------------
    p_res = sub.add_parser("resolve", parents=[_common], help="Resolve a sync conflict")
    p_res.add_argument("id", help="Item ID (T-42 or 42)")
    p_res.add_argument("--winner", required=True, choices=("file", "database"),
                       help="Which side to keep")
    p_res.add_argument("--force", action="store_true", help="Resolve even if not in conflict")
    p_res.set_defaults(func=cmd_resolve)

    # -- show --------------------------------------------------------------
    p_show = sub.add_parser("show", parents=[_common], help="Show item details")
    p_show.add_argument("id", help="Item ID (T-42 or 42)")
    p_show.set_defaults(func=cmd_show)

    # -- stats -------------------------------------------------------------
    p_stats = sub.add_parser("stats", parents=[_common], help="Store statistics")
    p_stats.set_defaults(func=cmd_stats)

    # -- serve -------------------------------------------------------------
    p_serve = sub.add_parser("serve", parents=[_common], help="Start MCP server")
    p_serve.set_defaults(func=cmd_serve)

    # -- Parse and dispatch ------------------------------------------------
    args = parser.parse_args()

    _quiet = getattr(args, "quiet", False)

    if getattr(args, "verbose", False):
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(name)s %(levelname)s %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    from kbsync.errors import PreconditionError

    try:
        args.func(args)
    except BrokenPipeError:
        # Handle broken pipe gracefully (e.g. kbsync conflicts | head)
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        sys.exit(0)
    except KeyboardInterrupt:
        sys.exit(0)
    except PreconditionError as e:
        _warn(str(e))
        sys.exit(2)
    except Exception as e:
        _warn(f"Internal error: {e}")
        if getattr(args, "verbose", False):
            import traceback
            traceback.print_exc(file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
