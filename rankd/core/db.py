"""Database helpers for the ranking service."""

import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from psycopg2 import extras, pool

from rankd.core.config import get_settings

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.ThreadedConnectionPool] = None


def init_pool(minconn: int = 1, maxconn: Optional[int] = None) -> pool.ThreadedConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        _connection_pool = pool.ThreadedConnectionPool(
            minconn,
            maxconn or settings.db_pool_max,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    finally:
        pg_pool.putconn(conn)


@contextmanager
def transaction() -> Iterator[Any]:
    """Yield a dict cursor; commit on success, roll back on any error."""
    with get_connection() as conn:
        try:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS companies (
    place_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    url TEXT,
    services JSONB NOT NULL DEFAULT '[]'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS reviews (
    review_id TEXT PRIMARY KEY,
    place_id TEXT NOT NULL REFERENCES companies (place_id),
    author TEXT,
    rating SMALLINT NOT NULL CHECK (rating BETWEEN 1 AND 5),
    review_text TEXT,
    review_date TIMESTAMPTZ,
    has_response BOOLEAN NOT NULL DEFAULT FALSE,
    scraped_at TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_reviews_place_id ON reviews (place_id);

CREATE TABLE IF NOT EXISTS review_metadata (
    place_id TEXT PRIMARY KEY REFERENCES companies (place_id),
    total_reviews INTEGER,
    scraped_reviews INTEGER,
    calculated_avg DOUBLE PRECISION,
    last_scraped TIMESTAMPTZ
);

CREATE TABLE IF NOT EXISTS company_groups (
    id SERIAL PRIMARY KEY,
    name TEXT NOT NULL,
    company_ids JSONB NOT NULL DEFAULT '[]'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS comparison_snapshots (
    id SERIAL PRIMARY KEY,
    comparison_name TEXT NOT NULL,
    rankings TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS app_settings (
    id SMALLINT PRIMARY KEY DEFAULT 1 CHECK (id = 1),
    our_company_place_id TEXT REFERENCES companies (place_id)
);
"""


def init_schema(cur) -> None:
    cur.execute(SCHEMA_SQL)
    logger.info("Database schema ensured")


# ---------- Companies ----------

_COMPANY_COLUMNS = """
    c.place_id,
    c.name,
    c.url,
    c.services,
    c.created_at,
    COALESCE(c.place_id = s.our_company_place_id, FALSE) AS is_our_company
"""

_COMPANY_FROM = "FROM companies c LEFT JOIN app_settings s ON s.id = 1"


def lock_company(cur, place_id: str) -> None:
    """Serialize writers for one company until the transaction ends."""
    cur.execute("SELECT pg_advisory_xact_lock(hashtext(%(place_id)s))", {"place_id": place_id})


def fetch_company(cur, place_id: str) -> Optional[Dict[str, Any]]:
    cur.execute(
        f"SELECT {_COMPANY_COLUMNS} {_COMPANY_FROM} WHERE c.place_id = %(place_id)s",
        {"place_id": place_id},
    )
    return cur.fetchone()


def list_companies(cur, place_ids: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
    if place_ids is None:
        cur.execute(f"SELECT {_COMPANY_COLUMNS} {_COMPANY_FROM} ORDER BY c.name")
    else:
        cur.execute(
            f"SELECT {_COMPANY_COLUMNS} {_COMPANY_FROM} WHERE c.place_id = ANY(%(place_ids)s) ORDER BY c.name",
            {"place_ids": list(place_ids)},
        )
    return cur.fetchall()


_UPSERT_COMPANY = """
INSERT INTO companies (place_id, name, url)
VALUES (%(place_id)s, %(name)s, %(url)s)
ON CONFLICT (place_id) DO UPDATE SET
    name = COALESCE(EXCLUDED.name, companies.name),
    url = COALESCE(EXCLUDED.url, companies.url);
"""


def upsert_company(cur, place_id: str, name: Optional[str], url: Optional[str]) -> None:
    """Create or update a company without nulling out known name/url."""
    if not place_id:
        raise ValueError("place_id is required for upsert")
    cur.execute(_UPSERT_COMPANY, {"place_id": place_id, "name": name, "url": url})
    logger.debug("Upserted company %s", place_id)


def update_company(
    cur,
    place_id: str,
    *,
    name: Optional[str] = None,
    url: Optional[str] = None,
    services: Optional[List[str]] = None,
    clear_url: bool = False,
) -> bool:
    cur.execute(
        """
        UPDATE companies SET
            name = COALESCE(%(name)s, name),
            url = CASE WHEN %(clear_url)s THEN NULL ELSE COALESCE(%(url)s, url) END,
            services = COALESCE(%(services)s, services)
        WHERE place_id = %(place_id)s
        """,
        {
            "place_id": place_id,
            "name": name,
            "url": url,
            "clear_url": clear_url,
            "services": extras.Json(services) if services is not None else None,
        },
    )
    return cur.rowcount > 0


def fetch_our_company_id(cur) -> Optional[str]:
    cur.execute("SELECT our_company_place_id FROM app_settings WHERE id = 1")
    row = cur.fetchone()
    return row["our_company_place_id"] if row else None


def set_our_company(cur, place_id: str) -> None:
    """Replace the flagged company in a single statement."""
    cur.execute(
        """
        INSERT INTO app_settings (id, our_company_place_id) VALUES (1, %(place_id)s)
        ON CONFLICT (id) DO UPDATE SET our_company_place_id = EXCLUDED.our_company_place_id
        """,
        {"place_id": place_id},
    )


# ---------- Reviews & metadata ----------

_INSERT_REVIEW = """
INSERT INTO reviews (
    review_id,
    place_id,
    author,
    rating,
    review_text,
    review_date,
    has_response,
    scraped_at
) VALUES (
    %(review_id)s,
    %(place_id)s,
    %(author)s,
    %(rating)s,
    %(review_text)s,
    %(review_date)s,
    %(has_response)s,
    %(scraped_at)s
)
ON CONFLICT (review_id) DO NOTHING
RETURNING review_id;
"""


def insert_review(cur, row: Dict[str, Any]) -> bool:
    """Insert a review; returns False when the id is already stored."""
    cur.execute(_INSERT_REVIEW, row)
    return cur.fetchone() is not None


def fetch_rating_stats(cur, place_id: str) -> Tuple[int, Optional[float]]:
    cur.execute(
        "SELECT COUNT(*) AS review_count, AVG(rating)::float AS avg_rating FROM reviews WHERE place_id = %(place_id)s",
        {"place_id": place_id},
    )
    row = cur.fetchone()
    return int(row["review_count"]), row["avg_rating"]


def fetch_reviews(cur, place_ids: Sequence[str]) -> List[Dict[str, Any]]:
    """All review rows for the given companies, read in one statement."""
    if not place_ids:
        return []
    cur.execute(
        """
        SELECT place_id, rating, review_date, has_response
        FROM reviews
        WHERE place_id = ANY(%(place_ids)s)
        ORDER BY place_id, review_id
        """,
        {"place_ids": list(place_ids)},
    )
    return cur.fetchall()


_UPSERT_METADATA = """
INSERT INTO review_metadata (place_id, total_reviews, scraped_reviews, calculated_avg, last_scraped)
VALUES (%(place_id)s, %(total_reviews)s, %(scraped_reviews)s, %(calculated_avg)s, %(last_scraped)s)
ON CONFLICT (place_id) DO UPDATE SET
    total_reviews = EXCLUDED.total_reviews,
    scraped_reviews = EXCLUDED.scraped_reviews,
    calculated_avg = EXCLUDED.calculated_avg,
    last_scraped = EXCLUDED.last_scraped;
"""


def upsert_metadata(
    cur,
    place_id: str,
    *,
    total_reviews: Optional[int],
    scraped_reviews: int,
    calculated_avg: Optional[float],
    last_scraped: datetime,
) -> None:
    cur.execute(
        _UPSERT_METADATA,
        {
            "place_id": place_id,
            "total_reviews": total_reviews,
            "scraped_reviews": scraped_reviews,
            "calculated_avg": calculated_avg,
            "last_scraped": last_scraped,
        },
    )


def fetch_metadata(cur, place_id: str) -> Optional[Dict[str, Any]]:
    cur.execute(
        """
        SELECT place_id, total_reviews, scraped_reviews, calculated_avg, last_scraped
        FROM review_metadata WHERE place_id = %(place_id)s
        """,
        {"place_id": place_id},
    )
    return cur.fetchone()


# ---------- Groups ----------

def list_groups(cur) -> List[Dict[str, Any]]:
    cur.execute("SELECT id, name, company_ids, created_at FROM company_groups ORDER BY created_at DESC, id DESC")
    return cur.fetchall()


def fetch_group(cur, group_id: int) -> Optional[Dict[str, Any]]:
    cur.execute(
        "SELECT id, name, company_ids, created_at FROM company_groups WHERE id = %(id)s",
        {"id": group_id},
    )
    return cur.fetchone()


def insert_group(cur, name: str, company_ids: Iterable[str]) -> Dict[str, Any]:
    cur.execute(
        """
        INSERT INTO company_groups (name, company_ids) VALUES (%(name)s, %(company_ids)s)
        RETURNING id, name, company_ids, created_at
        """,
        {"name": name, "company_ids": extras.Json(list(company_ids))},
    )
    return cur.fetchone()


def update_group(
    cur,
    group_id: int,
    *,
    name: Optional[str] = None,
    company_ids: Optional[Iterable[str]] = None,
) -> Optional[Dict[str, Any]]:
    cur.execute(
        """
        UPDATE company_groups SET
            name = COALESCE(%(name)s, name),
            company_ids = COALESCE(%(company_ids)s, company_ids)
        WHERE id = %(id)s
        RETURNING id, name, company_ids, created_at
        """,
        {
            "id": group_id,
            "name": name,
            "company_ids": extras.Json(list(company_ids)) if company_ids is not None else None,
        },
    )
    return cur.fetchone()


def delete_group(cur, group_id: int) -> bool:
    cur.execute("DELETE FROM company_groups WHERE id = %(id)s", {"id": group_id})
    return cur.rowcount > 0


# ---------- Snapshots ----------

def insert_snapshot(cur, name: str, rankings: List[Dict[str, Any]], created_at: datetime) -> int:
    """Store the ranking as serialized text so it reads back unchanged."""
    cur.execute(
        """
        INSERT INTO comparison_snapshots (comparison_name, rankings, created_at)
        VALUES (%(name)s, %(rankings)s, %(created_at)s)
        RETURNING id
        """,
        {"name": name, "rankings": json.dumps(rankings), "created_at": created_at},
    )
    return int(cur.fetchone()["id"])


def list_snapshots(cur) -> List[Dict[str, Any]]:
    cur.execute(
        "SELECT id, comparison_name, created_at FROM comparison_snapshots ORDER BY created_at DESC, id DESC"
    )
    return cur.fetchall()


def fetch_snapshot(cur, snapshot_id: int) -> Optional[Dict[str, Any]]:
    cur.execute(
        "SELECT id, comparison_name, rankings, created_at FROM comparison_snapshots WHERE id = %(id)s",
        {"id": snapshot_id},
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {**row, "rankings": json.loads(row["rankings"])}
