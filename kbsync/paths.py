"""
Paths — Knowledge-Base Root and Whole-Document I/O

Every relative path handled by kbsync is relative to the knowledge-base root
and uses forward slashes, so the same value works as a store key on every
platform.

Documents are read and written with ``newline=""`` so that line endings are
never translated: what the hash sees and what write-back preserves are the
bytes on disk.

Public API:
    resolve_kb_root(root) -> Path
    resolve_kb_path(root, rel_path) -> Path
    relative_kb_path(root, path) -> str
    is_within_kb(root, path) -> bool
    list_org_dirs(root, orgs, skip_dirs) -> list[str]
    read_document(path) -> str
    write_document(path, content)
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, List, Optional, Union

from kbsync.errors import KnowledgeBaseNotFoundError, WriteError

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]

ENV_ROOT = "KBSYNC_ROOT"


def resolve_kb_root(root: Optional[PathLike] = None) -> Path:
    """Canonical knowledge-base root.

    Falls back to ``$KBSYNC_ROOT`` when ``root`` is not given.

    Raises:
        KnowledgeBaseNotFoundError: no root configured, or not a directory.
    """
    value = root if root not in (None, "") else os.environ.get(ENV_ROOT, "")
    if not value:
        raise KnowledgeBaseNotFoundError("(not configured)")
    canonical = Path(os.path.realpath(os.path.expanduser(str(value))))
    if not canonical.is_dir():
        raise KnowledgeBaseNotFoundError(str(canonical))
    return canonical


def resolve_kb_path(root: PathLike, rel_path: str) -> Path:
    """Absolute path of a knowledge-base relative path."""
    return Path(root) / rel_path


def relative_kb_path(root: PathLike, path: PathLike) -> str:
    """Forward-slash path of ``path`` relative to the root."""
    return Path(os.path.relpath(str(path), str(root))).as_posix()


def is_within_kb(root: PathLike, path: PathLike) -> bool:
    """True when ``path`` resolves inside the knowledge-base root."""
    base = os.path.realpath(str(root))
    target = os.path.realpath(str(path))
    try:
        return os.path.commonpath([base, target]) == base
    except ValueError:
        return False


def list_org_dirs(
    root: PathLike,
    orgs: Optional[Iterable[str]] = None,
    skip_dirs: Iterable[str] = (),
) -> List[str]:
    """Organization folder names under the root.

    An explicit ``orgs`` list is filtered to the folders that exist.  Without
    one, every visible top-level directory not in ``skip_dirs`` is an org.
    """
    base = Path(root)
    if orgs:
        return [o for o in orgs if (base / o).is_dir()]
    skip = set(skip_dirs)
    try:
        entries = sorted(os.listdir(base))
    except OSError as e:
        logger.warning("Cannot list %s: %s", base, e)
        return []
    return [
        name for name in entries
        if not name.startswith(".") and name not in skip and (base / name).is_dir()
    ]


def read_document(path: PathLike) -> str:
    """Read a whole document as UTF-8 without newline translation."""
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read()


def write_document(path: PathLike, content: str) -> None:
    """Replace a whole document atomically (temp file + rename).

    Raises:
        WriteError: the file could not be written.
    """
    target = str(path)
    directory = os.path.dirname(target) or "."
    try:
        fd, tmp = tempfile.mkstemp(prefix=".kbsync-", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(content)
            if os.path.exists(target):
                os.chmod(tmp, os.stat(target).st_mode & 0o7777)
            os.replace(tmp, target)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
    except OSError as e:
        raise WriteError(f"Cannot write {target}: {e}", path=target) from e
    logger.debug("Wrote %s (%d chars)", target, len(content))
