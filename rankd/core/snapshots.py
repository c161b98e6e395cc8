"""Snapshot archiver: frozen copies of computed rankings."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

from rankd.core import db
from rankd.core.errors import ValidationError
from rankd.models import RankedCompany, Snapshot, SnapshotSummary

logger = logging.getLogger(__name__)

RankingEntry = Union[RankedCompany, Dict[str, Any]]


def archive(name: str, rankings: Sequence[RankingEntry], now: Optional[datetime] = None) -> int:
    """Store ``rankings`` verbatim under ``name``; returns the snapshot id."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("comparison name is required")
    if not isinstance(rankings, (list, tuple)):
        raise ValidationError("rankings must be a list")

    payload: List[Dict[str, Any]] = []
    for entry in rankings:
        if isinstance(entry, RankedCompany):
            payload.append(entry.to_dict())
        elif isinstance(entry, dict):
            payload.append(entry)
        else:
            raise ValidationError("each ranking entry must be an object")

    created_at = now or datetime.now(timezone.utc)
    with db.transaction() as cur:
        snapshot_id = db.insert_snapshot(cur, name, payload, created_at)

    logger.info("Archived snapshot %s (%s) with %d companies", snapshot_id, name, len(payload))
    return snapshot_id


def list_snapshots() -> List[SnapshotSummary]:
    with db.transaction() as cur:
        rows = db.list_snapshots(cur)
    return [SnapshotSummary(id=r["id"], name=r["comparison_name"], created_at=r["created_at"]) for r in rows]


def retrieve(snapshot_id: int) -> Optional[Snapshot]:
    """Return the stored snapshot, or ``None`` when the id is unknown."""
    with db.transaction() as cur:
        row = db.fetch_snapshot(cur, snapshot_id)
    if row is None:
        return None
    return Snapshot(
        id=row["id"],
        name=row["comparison_name"],
        created_at=row["created_at"],
        rankings=row["rankings"],
    )
