"""
Sync Engine Configuration

Configuration dataclasses for kbsync: store, knowledge-base layout and sync
behavior.  Includes load_config() for reading a JSON config file with silent
fallback to compiled defaults.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from kbsync.errors import PreconditionError


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(PreconditionError, ValueError):
    """Raised when config values are out of valid range."""

    pass


def _check_range(
    errors: List[str], name: str, value, lo, hi, typ=None,
) -> None:
    """Append an error message if value is out of [lo, hi] or wrong type."""
    if typ is not None and (not isinstance(value, typ) or isinstance(value, bool)):
        errors.append(f"{name}: expected {typ.__name__}, got {type(value).__name__}")
        return
    if value < lo or value > hi:
        errors.append(f"{name}: {value} not in [{lo}, {hi}]")


def _check_names(errors: List[str], name: str, values) -> None:
    if not isinstance(values, (list, tuple)):
        errors.append(f"{name}: expected list, got {type(values).__name__}")
        return
    for v in values:
        if not isinstance(v, str) or not v or "/" in v:
            errors.append(f"{name}: invalid folder name {v!r}")


@dataclass
class StoreConfig:
    """SQLite store configuration."""
    db_path: str = ".kbsync/kbsync.db"
    wal_mode: bool = True

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        if not self.db_path:
            errors.append("store.db_path: must not be empty")
        return errors


@dataclass
class KnowledgeBaseConfig:
    """Knowledge-base layout.

    ``orgs`` empty means every visible top-level folder is an organization.
    """
    root: Optional[str] = None
    orgs: List[str] = field(default_factory=list)
    skip_dirs: List[str] = field(
        default_factory=lambda: ["node_modules", ".git", "context", "meetings", ".claude"]
    )
    meetings_dir: str = "meetings"
    projects_dir: str = "projects"
    diary_dir: str = "diary"

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_names(errors, "kb.orgs", self.orgs)
        _check_names(errors, "kb.skip_dirs", self.skip_dirs)
        _check_names(errors, "kb.meetings_dir", [self.meetings_dir])
        _check_names(errors, "kb.projects_dir", [self.projects_dir])
        _check_names(errors, "kb.diary_dir", [self.diary_dir])
        return errors


@dataclass
class SyncConfig:
    """Reconciliation and write-back behavior."""
    title_prefix_len: int = 30
    write_back: bool = True
    diary_enabled: bool = True
    import_completed: bool = False

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "sync.title_prefix_len",
                     self.title_prefix_len, 5, 200, int)
        return errors


@dataclass
class KbSyncConfig:
    """Top-level kbsync configuration."""
    store: StoreConfig = field(default_factory=StoreConfig)
    kb: KnowledgeBaseConfig = field(default_factory=KnowledgeBaseConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> KbSyncConfig:
        """Build config from a nested dict (e.g. JSON)."""
        kwargs: Dict[str, Any] = {}
        if "store" in d:
            kwargs["store"] = StoreConfig(**d["store"])
        if "kb" in d:
            kwargs["kb"] = KnowledgeBaseConfig(**d["kb"])
        if "sync" in d:
            kwargs["sync"] = SyncConfig(**d["sync"])
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def validate(self) -> List[str]:
        """Validate all config sections. Returns list of error messages."""
        errors: List[str] = []
        errors.extend(self.store.validate())
        errors.extend(self.kb.validate())
        errors.extend(self.sync.validate())
        return errors


def load_config(
    path: Optional[str] = None, *, strict: bool = False,
) -> KbSyncConfig:
    """Load config from a JSON file. Returns defaults if file missing/invalid.

    Args:
        path: Path to config.json. If None, returns compiled defaults.
        strict: If True, raise ValidationError on invalid config values.

    Returns:
        KbSyncConfig with values from file or defaults.

    Raises:
        ValidationError: If strict=True and config values are out of range.
    """
    if path is None:
        cfg = KbSyncConfig()
    else:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            cfg = KbSyncConfig.from_dict(data)
        except (FileNotFoundError, IsADirectoryError, json.JSONDecodeError,
                TypeError, KeyError, AttributeError):
            cfg = KbSyncConfig()

    if strict:
        errors = cfg.validate()
        if errors:
            raise ValidationError(
                f"Config validation failed: {'; '.join(errors)}"
            )

    return cfg
