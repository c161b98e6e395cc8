"""Data handed to the document renderer: a title plus the ranking rows."""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from rankd.core import catalog, ranking, snapshots
from rankd.core.errors import NotFoundError
from rankd.core.filters import FILTER_LABELS
from rankd.models import CompanyFilter

DEFAULT_TITLE = "Competitor Comparison"


def build_export(
    company_filter: Optional[CompanyFilter] = None,
    snapshot_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Tuple[str, List[Dict[str, Any]]]:
    """Return ``(title, rankings)`` from a snapshot, a group or a named filter."""
    if snapshot_id is not None:
        snapshot = snapshots.retrieve(snapshot_id)
        if snapshot is None:
            raise NotFoundError(f"snapshot {snapshot_id} not found")
        return f"{snapshot.name} — {snapshot.created_at.date().isoformat()}", snapshot.rankings

    company_filter = company_filter or CompanyFilter()
    if company_filter.group_id is not None:
        found = catalog.get_group(company_filter.group_id)
        if found is None:
            raise NotFoundError(f"group {company_filter.group_id} not found")
        group, _ = found
        title = f"{DEFAULT_TITLE} — {group.name}"
    else:
        title = f"{DEFAULT_TITLE} — {FILTER_LABELS.get(company_filter.name, company_filter.name)}"

    rows = [entry.to_dict() for entry in ranking.rank(company_filter, now=now)]
    return title, rows
