"""Utilities for turning extraction payloads into import batches and database rows."""

import hashlib
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from dateutil import parser as date_parser

from rankd.core.errors import ValidationError
from rankd.models import BusinessDescriptor, ImportBatch, RawReview

logger = logging.getLogger(__name__)

# Whole counts only, e.g. "1,234 reviews"; "4.5" and "1.2k" are not counts.
_LEADING_COUNT = re.compile(r"^(\d[\d,]*)(?![.\dkKmM])")


def derive_review_id(author: Optional[str], date_text: Optional[str], text: Optional[str]) -> str:
    """Deterministic id for reviews the listing exposes without one."""
    material = f"{author or ''}{date_text or ''}{text or ''}"
    digest = hashlib.sha1(material.encode("utf-8")).hexdigest()
    return f"review-{digest[:12]}"


def parse_business(raw: Any) -> BusinessDescriptor:
    if not isinstance(raw, Mapping):
        raise ValidationError("business must be an object")

    place_id = _strip_or_none(raw.get("placeId"))
    if not place_id:
        raise ValidationError("business.placeId is required")

    return BusinessDescriptor(
        place_id=place_id,
        name=_strip_or_none(raw.get("name")),
        url=_strip_or_none(raw.get("url")),
        total_reviews=_positive_int_or_none(raw.get("totalReviews")),
    )


def parse_review(raw: Mapping[str, Any], *, derive_missing_id: bool = False) -> RawReview:
    author = _strip_or_none(raw.get("author"))
    text = _strip_or_none(raw.get("text"))
    date_text = _strip_or_none(raw.get("dateText"))
    review_id = _strip_or_none(raw.get("reviewId"))
    if review_id is None and derive_missing_id:
        review_id = derive_review_id(author, date_text, text)

    return RawReview(
        review_id=review_id,
        author=author,
        rating=_parse_rating(raw.get("rating")),
        text=text,
        date_text=date_text,
        has_business_response=bool(raw.get("hasBusinessResponse", False)),
    )


def parse_import_payload(
    payload: Any,
    *,
    derive_missing_ids: bool = False,
    now: Optional[datetime] = None,
) -> ImportBatch:
    """Validate the whole payload up front so a bad batch never reaches storage."""
    if not isinstance(payload, Mapping):
        raise ValidationError("import payload must be an object")

    business = parse_business(payload.get("business"))

    raw_reviews = payload.get("reviews")
    if not isinstance(raw_reviews, list):
        raise ValidationError("reviews must be a list")

    reviews: List[RawReview] = []
    for index, raw in enumerate(raw_reviews):
        if not isinstance(raw, Mapping):
            raise ValidationError(f"reviews[{index}] must be an object")
        try:
            reviews.append(parse_review(raw, derive_missing_id=derive_missing_ids))
        except ValidationError as exc:
            raise ValidationError(f"reviews[{index}]: {exc}") from exc

    metadata = payload.get("metadata") or {}
    if not isinstance(metadata, Mapping):
        raise ValidationError("metadata must be an object")
    captured_at = parse_timestamp(metadata.get("extractedAt")) or now or datetime.now(timezone.utc)

    logger.debug("Parsed import payload for %s with %d reviews", business.place_id, len(reviews))
    return ImportBatch(business=business, reviews=reviews, captured_at=captured_at)


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = date_parser.isoparse(str(value))
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"invalid timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_review_row(
    review: RawReview,
    place_id: str,
    review_date: Optional[datetime],
    captured_at: datetime,
) -> Dict[str, Any]:
    return {
        "review_id": review.review_id,
        "place_id": place_id,
        "author": review.author,
        "rating": review.rating,
        "review_text": review.text,
        "review_date": review_date,
        "has_response": review.has_business_response,
        "scraped_at": captured_at,
    }


def _parse_rating(value: Any) -> Optional[int]:
    """Missing ratings become ``None`` (skipped later); malformed ones reject the batch."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"rating must be an integer, got {value!r}")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"rating must be an integer, got {value!r}")
        value = int(value)
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError as exc:
            raise ValidationError(f"rating must be an integer, got {value!r}") from exc
    if not isinstance(value, int):
        raise ValidationError(f"rating must be an integer, got {value!r}")
    if not 1 <= value <= 5:
        raise ValidationError(f"rating must be between 1 and 5, got {value}")
    return value


def _strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None


def _positive_int_or_none(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value > 0 else None
    if isinstance(value, str):
        match = _LEADING_COUNT.match(value.strip())
        if match:
            parsed = int(match.group(1).replace(",", ""))
            return parsed if parsed > 0 else None
    return None
