"""Fixed service vocabulary and the named comparison filters built on it."""

from typing import Any, Callable, Dict, Iterable, List, Optional

from rankd.core.errors import ValidationError
from rankd.models import CompanyFilter

REMOVALS = "Removals"
SELF_STORAGE = "Self-Storage"
MOBILE_STORAGE = "Mobile Storage"

SERVICE_OPTIONS = (REMOVALS, SELF_STORAGE, MOBILE_STORAGE)

ServicePredicate = Callable[[frozenset], bool]

SERVICE_FILTERS: Dict[str, ServicePredicate] = {
    "all": lambda services: True,
    "removals": lambda services: REMOVALS in services,
    "self-storage": lambda services: SELF_STORAGE in services,
    "mobile-storage": lambda services: MOBILE_STORAGE in services,
    "removals-and-storage": lambda services: REMOVALS in services and SELF_STORAGE in services,
}

FILTER_LABELS = {
    "all": "All Companies",
    "removals": "Removals",
    "self-storage": "Self-Storage",
    "mobile-storage": "Mobile Storage",
    "removals-and-storage": "Removals + Storage",
}


def parse_filter(name: Optional[str] = None, group: Any = None) -> CompanyFilter:
    """Build a filter from request parameters; a group id wins over a name."""
    if group is not None and group != "":
        try:
            group_id = int(group)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"group must be an integer id, got {group!r}") from exc
        return CompanyFilter(group_id=group_id)

    name = (name or "all").strip().lower()
    if name not in SERVICE_FILTERS:
        raise ValidationError(f"unknown filter {name!r}; expected one of {', '.join(SERVICE_FILTERS)}")
    return CompanyFilter(name=name)


def matching_place_ids(companies: Iterable[Dict[str, Any]], filter_name: str) -> List[str]:
    predicate = SERVICE_FILTERS[filter_name]
    return [c["place_id"] for c in companies if predicate(frozenset(c.get("services") or []))]


def validate_services(services: Any) -> List[str]:
    if not isinstance(services, list):
        raise ValidationError("services must be a list")
    unknown = [s for s in services if s not in SERVICE_OPTIONS]
    if unknown:
        raise ValidationError(f"unknown services: {', '.join(map(str, unknown))}")
    return list(dict.fromkeys(services))
