import copy
import itertools
import json
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Ensure the `rankd` package is importable when running pytest from the repository root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from rankd.core import catalog, config, importer, ranking, snapshots  # noqa: E402


class FakeDatabase:
    """In-memory stand-in for ``rankd.core.db`` with transactional rollback."""

    def __init__(self):
        self.companies = {}
        self.reviews = {}
        self.metadata = {}
        self.groups = {}
        self.snapshots = {}
        self.our_company_id = None
        self.locked = []
        self.transactions = 0
        self._ids = itertools.count(1)
        self._clock = itertools.count()

    _STATE = ("companies", "reviews", "metadata", "groups", "snapshots", "our_company_id")

    @contextmanager
    def transaction(self):
        saved = {name: copy.deepcopy(getattr(self, name)) for name in self._STATE}
        self.transactions += 1
        try:
            yield object()
        except Exception:
            for name, value in saved.items():
                setattr(self, name, value)
            raise

    # companies
    def lock_company(self, cur, place_id):
        self.locked.append(place_id)

    def _company_row(self, row):
        return {**row, "services": list(row["services"]), "is_our_company": row["place_id"] == self.our_company_id}

    def fetch_company(self, cur, place_id):
        row = self.companies.get(place_id)
        return self._company_row(row) if row else None

    def list_companies(self, cur, place_ids=None):
        rows = [self._company_row(r) for r in self.companies.values()]
        if place_ids is not None:
            rows = [r for r in rows if r["place_id"] in set(place_ids)]
        return sorted(rows, key=lambda r: r["name"])

    def upsert_company(self, cur, place_id, name, url):
        existing = self.companies.get(place_id)
        if existing is None:
            self.companies[place_id] = {
                "place_id": place_id,
                "name": name,
                "url": url,
                "services": [],
                "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
            }
        else:
            existing["name"] = name or existing["name"]
            existing["url"] = url or existing["url"]

    def update_company(self, cur, place_id, *, name=None, url=None, services=None, clear_url=False):
        row = self.companies.get(place_id)
        if row is None:
            return False
        if name is not None:
            row["name"] = name
        if clear_url:
            row["url"] = None
        elif url is not None:
            row["url"] = url
        if services is not None:
            row["services"] = list(services)
        return True

    def fetch_our_company_id(self, cur):
        return self.our_company_id

    def set_our_company(self, cur, place_id):
        self.our_company_id = place_id

    # reviews & metadata
    def insert_review(self, cur, row):
        if row["review_id"] in self.reviews:
            return False
        self.reviews[row["review_id"]] = dict(row)
        return True

    def fetch_rating_stats(self, cur, place_id):
        ratings = [r["rating"] for r in self.reviews.values() if r["place_id"] == place_id]
        if not ratings:
            return 0, None
        return len(ratings), sum(ratings) / len(ratings)

    def fetch_reviews(self, cur, place_ids):
        wanted = set(place_ids)
        return [dict(r) for r in self.reviews.values() if r["place_id"] in wanted]

    def upsert_metadata(self, cur, place_id, *, total_reviews, scraped_reviews, calculated_avg, last_scraped):
        self.metadata[place_id] = {
            "place_id": place_id,
            "total_reviews": total_reviews,
            "scraped_reviews": scraped_reviews,
            "calculated_avg": calculated_avg,
            "last_scraped": last_scraped,
        }

    def fetch_metadata(self, cur, place_id):
        return self.metadata.get(place_id)

    # groups
    def _new_group_row(self, name, company_ids):
        group_id = next(self._ids)
        return {
            "id": group_id,
            "name": name,
            "company_ids": list(company_ids),
            "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "_order": next(self._clock),
        }

    def list_groups(self, cur):
        rows = sorted(self.groups.values(), key=lambda g: g["_order"], reverse=True)
        return [dict(r) for r in rows]

    def fetch_group(self, cur, group_id):
        row = self.groups.get(group_id)
        return dict(row) if row else None

    def insert_group(self, cur, name, company_ids):
        row = self._new_group_row(name, company_ids)
        self.groups[row["id"]] = row
        return dict(row)

    def update_group(self, cur, group_id, *, name=None, company_ids=None):
        row = self.groups.get(group_id)
        if row is None:
            return None
        if name is not None:
            row["name"] = name
        if company_ids is not None:
            row["company_ids"] = list(company_ids)
        return dict(row)

    def delete_group(self, cur, group_id):
        return self.groups.pop(group_id, None) is not None

    # snapshots
    def insert_snapshot(self, cur, name, rankings, created_at):
        snapshot_id = next(self._ids)
        self.snapshots[snapshot_id] = {
            "id": snapshot_id,
            "comparison_name": name,
            "rankings": json.dumps(rankings),
            "created_at": created_at,
        }
        return snapshot_id

    def list_snapshots(self, cur):
        rows = sorted(self.snapshots.values(), key=lambda s: (s["created_at"], s["id"]), reverse=True)
        return [{k: r[k] for k in ("id", "comparison_name", "created_at")} for r in rows]

    def fetch_snapshot(self, cur, snapshot_id):
        row = self.snapshots.get(snapshot_id)
        if row is None:
            return None
        return {**row, "rankings": json.loads(row["rankings"])}

    # helpers for tests
    def add_company(self, place_id, name, url=None, services=()):
        self.upsert_company(None, place_id, name, url)
        self.companies[place_id]["services"] = list(services)

    def add_review(self, review_id, place_id, rating, review_date=None, has_response=False):
        self.reviews[review_id] = {
            "review_id": review_id,
            "place_id": place_id,
            "rating": rating,
            "review_date": review_date,
            "has_response": has_response,
        }


@pytest.fixture
def fake_db(monkeypatch):
    fake = FakeDatabase()
    for module in (importer, ranking, snapshots, catalog):
        monkeypatch.setattr(module, "db", fake)
    return fake


@pytest.fixture(autouse=True)
def clear_settings_cache(monkeypatch):
    monkeypatch.delenv("RANKD_TREND_WINDOW_MONTHS", raising=False)
    config.get_settings.cache_clear()
    yield
    config.get_settings.cache_clear()
