"""Company, group and "our company" management."""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from rankd.core import db
from rankd.core.errors import NotFoundError, ValidationError
from rankd.core.filters import validate_services
from rankd.models import Company, CompanyGroup, ReviewMetadata

logger = logging.getLogger(__name__)


def _to_company(row: Dict[str, Any]) -> Company:
    return Company(
        place_id=row["place_id"],
        name=row["name"],
        url=row.get("url"),
        is_our_company=bool(row.get("is_our_company")),
        services=list(row.get("services") or []),
        created_at=row.get("created_at"),
    )


def _to_group(row: Dict[str, Any]) -> CompanyGroup:
    return CompanyGroup(
        id=row["id"],
        name=row["name"],
        company_ids=list(row.get("company_ids") or []),
        created_at=row.get("created_at"),
    )


# ---------- Companies ----------

def list_companies() -> List[Company]:
    with db.transaction() as cur:
        rows = db.list_companies(cur)
    return [_to_company(r) for r in rows]


def get_company(place_id: str) -> Optional[Tuple[Company, Optional[ReviewMetadata]]]:
    with db.transaction() as cur:
        row = db.fetch_company(cur, place_id)
        if row is None:
            return None
        meta_row = db.fetch_metadata(cur, place_id)

    metadata = None
    if meta_row is not None:
        metadata = ReviewMetadata(
            place_id=place_id,
            total_reviews=meta_row["total_reviews"],
            scraped_reviews=meta_row["scraped_reviews"],
            calculated_avg=meta_row["calculated_avg"],
            last_scraped=meta_row["last_scraped"],
        )
    return _to_company(row), metadata


def update_company(place_id: str, changes: Dict[str, Any]) -> Company:
    """Apply a partial update; keys not present are left untouched."""
    name = changes.get("name")
    if "name" in changes and not (isinstance(name, str) and name.strip()):
        raise ValidationError("name must be a non-empty string")
    services = validate_services(changes["services"]) if "services" in changes else None
    url = changes.get("url")
    clear_url = "url" in changes and not url

    with db.transaction() as cur:
        updated = db.update_company(
            cur,
            place_id,
            name=name.strip() if name else None,
            url=url or None,
            services=services,
            clear_url=clear_url,
        )
        if not updated:
            raise NotFoundError(f"company {place_id} not found")
        row = db.fetch_company(cur, place_id)
    return _to_company(row)


def get_our_company() -> Optional[str]:
    with db.transaction() as cur:
        return db.fetch_our_company_id(cur)


def set_our_company(place_id: str) -> None:
    if not place_id:
        raise ValidationError("placeId required")
    with db.transaction() as cur:
        if db.fetch_company(cur, place_id) is None:
            raise NotFoundError(f"company {place_id} not found")
        db.set_our_company(cur, place_id)
    logger.info("Our company set to %s", place_id)


# ---------- Groups ----------

def _clean_members(company_ids: Any) -> List[str]:
    if company_ids is None:
        return []
    if not isinstance(company_ids, list) or not all(isinstance(c, str) and c for c in company_ids):
        raise ValidationError("companyIds must be a list of place ids")
    return list(dict.fromkeys(company_ids))


def list_groups() -> List[CompanyGroup]:
    with db.transaction() as cur:
        rows = db.list_groups(cur)
    return [_to_group(r) for r in rows]


def create_group(name: Any, company_ids: Optional[Iterable[str]] = None) -> CompanyGroup:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Group name required")
    members = _clean_members(company_ids)
    with db.transaction() as cur:
        row = db.insert_group(cur, name.strip(), members)
    logger.info("Created group %s with %d companies", row["id"], len(members))
    return _to_group(row)


def get_group(group_id: int) -> Optional[Tuple[CompanyGroup, List[Company]]]:
    with db.transaction() as cur:
        row = db.fetch_group(cur, group_id)
        if row is None:
            return None
        group = _to_group(row)
        members = db.list_companies(cur, group.company_ids) if group.company_ids else []
    return group, [_to_company(m) for m in members]


def update_group(group_id: int, changes: Dict[str, Any]) -> CompanyGroup:
    name = changes.get("name")
    if "name" in changes and not (isinstance(name, str) and name.strip()):
        raise ValidationError("Group name required")
    members = _clean_members(changes["companyIds"]) if "companyIds" in changes else None

    with db.transaction() as cur:
        row = db.update_group(cur, group_id, name=name.strip() if name else None, company_ids=members)
    if row is None:
        raise NotFoundError(f"group {group_id} not found")
    return _to_group(row)


def delete_group(group_id: int) -> None:
    with db.transaction() as cur:
        deleted = db.delete_group(cur, group_id)
    if not deleted:
        raise NotFoundError(f"group {group_id} not found")
    logger.info("Deleted group %s", group_id)
