"""Merge observed reviews into storage without duplicates and refresh metadata."""

import logging

from rankd.core import db
from rankd.core.errors import ValidationError
from rankd.etl import dates
from rankd.etl.transform import to_review_row
from rankd.models import ImportBatch, ImportSummary

logger = logging.getLogger(__name__)


def import_reviews(batch: ImportBatch) -> ImportSummary:
    """Import one company's batch as a single transaction.

    The advisory lock taken first serializes batches for the same place id,
    so the metadata recomputed at the end always matches the stored rows.
    Stored reviews are never touched again: a known id only counts as skipped.
    """
    business = batch.business
    if not business.place_id:
        raise ValidationError("business.placeId is required")
    if not isinstance(batch.reviews, list):
        raise ValidationError("reviews must be a list")

    summary = ImportSummary(place_id=business.place_id, name=business.name)

    with db.transaction() as cur:
        db.lock_company(cur, business.place_id)

        existing = db.fetch_company(cur, business.place_id)
        if existing is None and not business.name:
            raise ValidationError(f"business.name is required for new company {business.place_id}")
        if summary.name is None and existing is not None:
            summary.name = existing["name"]

        db.upsert_company(cur, business.place_id, business.name, business.url)

        for review in batch.reviews:
            if not review.review_id:
                logger.debug("Skipping review without id for %s", business.place_id)
                summary.skipped += 1
                continue
            if review.rating is None:
                logger.debug("Skipping review %s without rating", review.review_id)
                summary.skipped += 1
                continue

            review_date = dates.resolve(review.date_text, batch.captured_at)
            row = to_review_row(review, business.place_id, review_date, batch.captured_at)
            if db.insert_review(cur, row):
                summary.imported += 1
            else:
                logger.debug("Review %s already stored", review.review_id)
                summary.skipped += 1

        refresh_metadata(cur, business.place_id, batch.captured_at, total_reviews=business.total_reviews)

    logger.info(
        "Imported reviews for %s: imported=%d skipped=%d",
        business.place_id,
        summary.imported,
        summary.skipped,
    )
    return summary


def refresh_metadata(cur, place_id, last_scraped, total_reviews=None) -> None:
    """Recompute the cached aggregate from the stored reviews.

    ``total_reviews`` is the externally reported count; without one the
    locally known count is stored.
    """
    scraped_reviews, calculated_avg = db.fetch_rating_stats(cur, place_id)
    db.upsert_metadata(
        cur,
        place_id,
        total_reviews=total_reviews or scraped_reviews,
        scraped_reviews=scraped_reviews,
        calculated_avg=calculated_avg if scraped_reviews else None,
        last_scraped=last_scraped,
    )
