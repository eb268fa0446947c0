"""Adapter: export/import partition snapshots as JSON files."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from sbmfit.domain.models import PartitionSnapshot

log = logging.getLogger(__name__)


def export_snapshot(snapshot: PartitionSnapshot, path: str | Path) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w") as f:
        json.dump(snapshot.to_dict(), f, indent=2)
    log.info("Saved snapshot with %d rows to %s", len(snapshot), p)


def import_snapshot(path: str | Path) -> PartitionSnapshot:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Snapshot file not found: {path}")
    with open(p) as f:
        return PartitionSnapshot.from_dict(json.load(f))
