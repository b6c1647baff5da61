"""
Shared fixtures: a small knowledge base on disk.

Layout:
    acme/projects/inventory/README.md          folder project with tasks
    acme/projects/inventory/scanner.md         sub-project of inventory
    acme/projects/inventory/next-steps.md      never a sub-project
    acme/projects/billing.md                   standalone project
    acme/projects/market-research-prompt.md    ignored
    acme/meetings/2026/01/2026-01-14-standup.md
"""

from pathlib import Path

import pytest


README = """---
title: Inventory System
status: active
priority: 2
---

# Inventory System

## Current Status

- \U0001F7E2 **Barcode scanning** — rolling out to warehouse 2
- \U0001F534 **Supplier API** — waiting on credentials
- \u2705 **Initial schema** — shipped

## Tasks

### Phase 1 setup
- [ ] Write migration guide
- [x] Provision database

## Sub-projects

| Status | Project | Notes |
|--------|---------|-------|
| \U0001F7E1 | [[acme/projects/inventory/scanner|Scanner App]] | on hold |
"""

# File lines of the README tasks above.
LINE_BARCODE = 11
LINE_SUPPLIER = 12
LINE_SCHEMA = 13
LINE_MIGRATION = 18
LINE_PROVISION = 19
LINE_SCANNER = 25

SCANNER = """---
title: Scanner App
type: sub-project
status: paused
---

# Scanner App
"""

NEXT_STEPS = """---
type: sub-project
---

- [ ] Not a sub-project
"""

BILLING = """---
status: planning
---

# Billing Platform
"""

MEETING_PATH = "acme/meetings/2026/01/2026-01-14-standup.md"

MEETING = """---
title: Weekly standup
date: 2026-01-14
attendees:
  - Alice
  - Bob
projects: [inventory]
---

## Notes

Discussed rollout.

## Actions

| Owner | Action | Due | Status |
|-------|--------|-----|--------|
| Alice | Ship scanner report | 14 Jan | Pending |
| Bob & Carol | Review supplier contract | 2026-01-20 | In Progress |
| Alice | Archive old data | | Done |
"""

LINE_SHIP = 18
LINE_REVIEW = 19
LINE_ARCHIVE = 20

README_PATH = "acme/projects/inventory/README.md"


def write(root: Path, rel: str, content: str) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content.encode("utf-8"))
    return path


def read(root: Path, rel: str) -> str:
    return (root / rel).read_bytes().decode("utf-8")


def replace_line(root: Path, rel: str, line_no: int, text: str) -> None:
    lines = read(root, rel).split("\n")
    lines[line_no - 1] = text
    write(root, rel, "\n".join(lines))


def insert_line(root: Path, rel: str, line_no: int, text: str) -> None:
    lines = read(root, rel).split("\n")
    lines.insert(line_no - 1, text)
    write(root, rel, "\n".join(lines))


@pytest.fixture
def kb(tmp_path):
    """A populated knowledge-base root."""
    root = tmp_path / "kb"
    write(root, README_PATH, README)
    write(root, "acme/projects/inventory/scanner.md", SCANNER)
    write(root, "acme/projects/inventory/next-steps.md", NEXT_STEPS)
    write(root, "acme/projects/billing.md", BILLING)
    write(root, "acme/projects/market-research-prompt.md", "# Prompt\n")
    write(root, MEETING_PATH, MEETING)
    return root
