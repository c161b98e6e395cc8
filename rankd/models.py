"""Core data models shared by the import pipeline and the ranking engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

STAR_VALUES = (1, 2, 3, 4, 5)


@dataclass(slots=True)
class BusinessDescriptor:
    """Business listing as reported by the extraction script or scraper."""

    place_id: str
    name: Optional[str] = None
    url: Optional[str] = None
    total_reviews: Optional[int] = None


@dataclass(slots=True)
class RawReview:
    """One review as observed on the listing, before date resolution."""

    rating: Optional[int]
    review_id: Optional[str] = None
    author: Optional[str] = None
    text: Optional[str] = None
    date_text: Optional[str] = None
    has_business_response: bool = False


@dataclass(slots=True)
class ImportBatch:
    business: BusinessDescriptor
    reviews: List[RawReview]
    captured_at: datetime


@dataclass(slots=True)
class ImportSummary:
    place_id: str
    name: Optional[str]
    imported: int = 0
    skipped: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "company": {"placeId": self.place_id, "name": self.name},
            "reviewsImported": self.imported,
            "reviewsSkipped": self.skipped,
        }


@dataclass(slots=True)
class Company:
    place_id: str
    name: str
    url: Optional[str] = None
    is_our_company: bool = False
    services: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "placeId": self.place_id,
            "name": self.name,
            "url": self.url,
            "isOurCompany": self.is_our_company,
            "services": list(self.services),
            "createdAt": _iso(self.created_at),
        }


@dataclass(slots=True)
class ReviewMetadata:
    """Cached aggregate for one company; always recomputable from reviews."""

    place_id: str
    total_reviews: Optional[int] = None
    scraped_reviews: Optional[int] = None
    calculated_avg: Optional[float] = None
    last_scraped: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalReviews": self.total_reviews,
            "scrapedReviews": self.scraped_reviews,
            "calculatedAvg": self.calculated_avg,
            "lastScraped": _iso(self.last_scraped),
        }


@dataclass(slots=True)
class RatingBucket:
    count: int = 0
    percent: float = 0.0


@dataclass(slots=True)
class RankedCompany:
    place_id: str
    name: str
    calculated_avg: float
    review_count: int
    rating_distribution: Dict[int, RatingBucket]
    recent_trend: float
    review_velocity: float
    response_rate: float
    url: Optional[str] = None
    is_our_company: bool = False
    services: List[str] = field(default_factory=list)
    rank: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Wire form used by the HTTP layer and stored verbatim in snapshots."""
        return {
            "rank": self.rank,
            "placeId": self.place_id,
            "name": self.name,
            "url": self.url,
            "isOurCompany": self.is_our_company,
            "services": list(self.services),
            "calculatedAvg": self.calculated_avg,
            "reviewCount": self.review_count,
            "ratingDistribution": {
                str(star): {"count": bucket.count, "percent": bucket.percent}
                for star, bucket in sorted(self.rating_distribution.items())
            },
            "recentTrend": self.recent_trend,
            "reviewVelocity": self.review_velocity,
            "responseRate": self.response_rate,
        }


@dataclass(slots=True)
class CompanyFilter:
    """Candidate selection: a named service predicate or a group id."""

    name: str = "all"
    group_id: Optional[int] = None

    def describe(self) -> str:
        if self.group_id is not None:
            return f"group:{self.group_id}"
        return self.name


@dataclass(slots=True)
class CompanyGroup:
    id: int
    name: str
    company_ids: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "companyIds": list(self.company_ids),
            "createdAt": _iso(self.created_at),
        }


@dataclass(slots=True)
class SnapshotSummary:
    id: int
    name: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "comparisonName": self.name, "createdAt": _iso(self.created_at)}


@dataclass(slots=True)
class Snapshot:
    """Frozen ranking. ``rankings`` holds the wire dicts exactly as archived."""

    id: int
    name: str
    created_at: datetime
    rankings: List[Dict[str, Any]] = field(default_factory=list, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "comparisonName": self.name,
            "rankings": self.rankings,
            "createdAt": _iso(self.created_at),
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None
