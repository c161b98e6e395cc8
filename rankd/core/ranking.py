"""Ranking engine: per-company review metrics and the global leaderboard order."""

import logging
from collections import defaultdict
from datetime import date, datetime, time, timezone
from decimal import ROUND_HALF_UP, Decimal
from functools import cmp_to_key
from typing import Any, Dict, Iterable, List, Optional

from dateutil.relativedelta import relativedelta

from rankd.core import db
from rankd.core.config import get_settings
from rankd.core.errors import DataIntegrityError, NotFoundError
from rankd.core.filters import matching_place_ids
from rankd.models import STAR_VALUES, CompanyFilter, RankedCompany, RatingBucket

logger = logging.getLogger(__name__)

# Averages are rounded to 2 places, so anything closer than this is the same score.
TIE_TOLERANCE = 0.01 - 1e-9


def round_half_away(value: float, places: int) -> float:
    """Round like a person would: 2.345 -> 2.35, -0.125 -> -0.13."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def rank(company_filter: CompanyFilter, now: Optional[datetime] = None) -> List[RankedCompany]:
    """Resolve the filter to candidate companies and rank them from stored reviews."""
    settings = get_settings()
    with db.transaction() as cur:
        if company_filter.group_id is not None:
            group = db.fetch_group(cur, company_filter.group_id)
            if group is None:
                raise NotFoundError(f"group {company_filter.group_id} not found")
            place_ids = list(dict.fromkeys(group["company_ids"] or []))
            companies = db.list_companies(cur, place_ids) if place_ids else []
        else:
            companies = db.list_companies(cur)
            if company_filter.name != "all":
                keep = set(matching_place_ids(companies, company_filter.name))
                companies = [c for c in companies if c["place_id"] in keep]

        reviews = db.fetch_reviews(cur, [c["place_id"] for c in companies])

    rankings = compute_rankings(companies, reviews, now=now, window_months=settings.trend_window_months)
    logger.info("Ranked %d companies for filter=%s", len(rankings), company_filter.describe())
    return rankings


def compute_rankings(
    companies: Iterable[Dict[str, Any]],
    reviews: Iterable[Dict[str, Any]],
    *,
    now: Optional[datetime] = None,
    window_months: int = 3,
) -> List[RankedCompany]:
    """Pure ranking over already-fetched rows.

    ``now`` anchors the trailing window for trend and velocity; it defaults to
    the current UTC time, so callers that need stable output should pass it.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    window_start = now - relativedelta(months=window_months)

    by_company: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for review in reviews:
        by_company[review["place_id"]].append(review)

    ranked: List[RankedCompany] = []
    for company in companies:
        company_reviews = by_company.get(company["place_id"])
        if not company_reviews:
            continue
        ranked.append(_company_metrics(company, company_reviews, window_start, window_months))

    ranked.sort(key=cmp_to_key(_compare))
    for position, entry in enumerate(ranked, start=1):
        entry.rank = position
    return ranked


def _company_metrics(
    company: Dict[str, Any],
    reviews: List[Dict[str, Any]],
    window_start: datetime,
    window_months: int,
) -> RankedCompany:
    total = len(reviews)
    ratings = [_checked_rating(company["place_id"], r["rating"]) for r in reviews]
    calculated_avg = round_half_away(sum(ratings) / total, 2)

    distribution = {star: RatingBucket() for star in STAR_VALUES}
    for rating in ratings:
        distribution[rating].count += 1
    for bucket in distribution.values():
        bucket.percent = round_half_away(bucket.count / total * 100, 1)

    recent = [r["rating"] for r in reviews if _in_window(r.get("review_date"), window_start)]
    recent_trend = 0.0
    if recent:
        recent_trend = round_half_away(sum(recent) / len(recent) - calculated_avg, 2)

    responded = sum(1 for r in reviews if r.get("has_response"))

    return RankedCompany(
        place_id=company["place_id"],
        name=company["name"],
        url=company.get("url"),
        is_our_company=bool(company.get("is_our_company")),
        services=list(company.get("services") or []),
        calculated_avg=calculated_avg,
        review_count=total,
        rating_distribution=distribution,
        recent_trend=recent_trend,
        review_velocity=round_half_away(len(recent) / window_months, 1),
        response_rate=round_half_away(responded / total * 100, 1),
    )


def _compare(a: RankedCompany, b: RankedCompany) -> int:
    if abs(a.calculated_avg - b.calculated_avg) >= TIE_TOLERANCE:
        return -1 if a.calculated_avg > b.calculated_avg else 1
    return b.review_count - a.review_count


def _checked_rating(place_id: str, rating: Any) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int) or rating not in STAR_VALUES:
        logger.error("Stored rating %r for %s is outside 1-5", rating, place_id)
        raise DataIntegrityError(f"rating {rating!r} for {place_id} is outside 1-5")
    return rating


def _in_window(review_date: Any, window_start: datetime) -> bool:
    if review_date is None:
        return False
    if not isinstance(review_date, datetime) and isinstance(review_date, date):
        review_date = datetime.combine(review_date, time.min)
    if review_date.tzinfo is None:
        review_date = review_date.replace(tzinfo=timezone.utc)
    return review_date >= window_start
