from datetime import datetime, timezone

import pytest

from rankd.core.errors import ValidationError
from rankd.etl import transform


def _payload(**overrides):
    payload = {
        "business": {"placeId": "p1", "name": "Acme Removals", "url": "https://maps.example/p1", "totalReviews": 120},
        "reviews": [
            {"reviewId": "r1", "author": "Sam", "rating": 5, "text": "Great", "dateText": "2 weeks ago"},
            {"reviewId": "r2", "rating": 3, "hasBusinessResponse": True},
        ],
        "metadata": {"extractedAt": "2024-01-29T10:00:00Z"},
    }
    payload.update(overrides)
    return payload


def test_parse_import_payload_builds_batch():
    batch = transform.parse_import_payload(_payload())

    assert batch.business.place_id == "p1"
    assert batch.business.total_reviews == 120
    assert batch.captured_at == datetime(2024, 1, 29, 10, 0, tzinfo=timezone.utc)
    assert [r.review_id for r in batch.reviews] == ["r1", "r2"]
    assert batch.reviews[0].date_text == "2 weeks ago"
    assert batch.reviews[1].has_business_response is True
    assert batch.reviews[1].author is None


def test_parse_import_payload_defaults_capture_time():
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)
    batch = transform.parse_import_payload(_payload(metadata=None), now=now)
    assert batch.captured_at == now


@pytest.mark.parametrize(
    "payload",
    [
        None,
        [],
        {"reviews": []},
        {"business": {"name": "No id"}, "reviews": []},
        {"business": {"placeId": "p1"}, "reviews": "nope"},
        {"business": {"placeId": "p1"}, "reviews": ["nope"]},
        {"business": {"placeId": "p1"}, "reviews": [{"reviewId": "r1", "rating": 6}]},
        {"business": {"placeId": "p1"}, "reviews": [{"reviewId": "r1", "rating": 4.5}]},
        {"business": {"placeId": "p1"}, "reviews": [], "metadata": {"extractedAt": "not a date"}},
    ],
)
def test_parse_import_payload_rejects_malformed(payload):
    with pytest.raises(ValidationError):
        transform.parse_import_payload(payload)


def test_missing_rating_is_kept_for_skipping():
    batch = transform.parse_import_payload(_payload(reviews=[{"reviewId": "r1"}]))
    assert batch.reviews[0].rating is None


def test_missing_id_stays_missing_unless_derived():
    reviews = [{"author": "Sam", "rating": 4, "text": "Fine", "dateText": "a week ago"}]

    plain = transform.parse_import_payload(_payload(reviews=reviews))
    derived = transform.parse_import_payload(_payload(reviews=reviews), derive_missing_ids=True)

    assert plain.reviews[0].review_id is None
    assert derived.reviews[0].review_id == transform.derive_review_id("Sam", "a week ago", "Fine")
    assert derived.reviews[0].review_id.startswith("review-")


def test_total_reviews_zero_counts_as_unreported():
    batch = transform.parse_import_payload(_payload(business={"placeId": "p1", "totalReviews": 0}))
    assert batch.business.total_reviews is None
    assert batch.business.name is None


def test_to_review_row():
    review = transform.parse_review({"reviewId": "r1", "rating": "4", "author": " Kim "})
    captured = datetime(2024, 1, 29, tzinfo=timezone.utc)
    row = transform.to_review_row(review, "p1", None, captured)

    assert row["rating"] == 4
    assert row["author"] == "Kim"
    assert row["review_date"] is None
    assert row["has_response"] is False
    assert row["scraped_at"] == captured


@pytest.mark.parametrize(
    "raw, expected",
    [("1,234 reviews", 1234), ("87", 87), (42, 42), ("4.5", None), ("1.2k", None), ("12K", None), ("none", None)],
)
def test_total_reviews_counts(raw, expected):
    batch = transform.parse_import_payload(_payload(business={"placeId": "p1", "totalReviews": raw}))
    assert batch.business.total_reviews == expected
