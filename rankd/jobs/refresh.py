"""Periodic refresh: re-import reviews for every company that has a listing URL."""

import argparse
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from rankd.core import catalog, db
from rankd.core.config import get_settings
from rankd.core.importer import import_reviews
from rankd.etl.transform import parse_import_payload
from rankd.models import Company, ImportBatch

logger = logging.getLogger(__name__)

ReviewFetcher = Callable[[Company], Optional[ImportBatch]]


class DirectoryFetcher:
    """Reads ``<place_id>.json`` extraction files dropped by the scraper."""

    def __init__(self, source_dir: str, derive_ids: bool = False) -> None:
        self.source_dir = Path(source_dir)
        self.derive_ids = derive_ids

    def __call__(self, company: Company) -> Optional[ImportBatch]:
        path = self.source_dir / f"{company.place_id}.json"
        if not path.exists():
            logger.info("No extraction file for %s at %s", company.place_id, path)
            return None
        with path.open("r", encoding="utf-8") as fh:
            payload = json.load(fh)
        batch = parse_import_payload(payload, derive_missing_ids=self.derive_ids)
        if batch.business.place_id != company.place_id:
            raise ValueError(f"{path} describes {batch.business.place_id}, expected {company.place_id}")
        return batch


def run_refresh(fetch: ReviewFetcher, delay_seconds: Optional[float] = None) -> List[Dict[str, Any]]:
    """One logical refresh run; a failing company is recorded and skipped."""
    if delay_seconds is None:
        delay_seconds = get_settings().refresh_delay_seconds

    companies = [c for c in catalog.list_companies() if c.url]
    logger.info("Starting refresh for %d companies", len(companies))

    results: List[Dict[str, Any]] = []
    for index, company in enumerate(companies):
        logger.info("Refreshing %s (%s)", company.name, company.place_id)
        result: Dict[str, Any] = {
            "placeId": company.place_id,
            "name": company.name,
            "newReviews": 0,
            "success": True,
            "error": None,
        }
        try:
            batch = fetch(company)
            if batch is not None:
                result["newReviews"] = import_reviews(batch).imported
        except Exception as exc:  # noqa: BLE001
            logger.error("Refresh failed for %s: %s", company.place_id, exc)
            result["success"] = False
            result["error"] = str(exc)
        results.append(result)

        if delay_seconds and index < len(companies) - 1:
            time.sleep(delay_seconds)

    logger.info(
        "Completed refresh: companies=%d failed=%d",
        len(results),
        sum(1 for r in results if not r["success"]),
    )
    return results


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Refresh stored reviews from extraction files")
    parser.add_argument(
        "--source-dir",
        dest="source_dir",
        default=get_settings().refresh_source_dir,
        help="Directory holding <placeId>.json extraction files",
    )
    parser.add_argument("--derive-ids", dest="derive_ids", action="store_true", help="Derive missing review ids")
    return parser


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args()
    if not args.source_dir:
        raise SystemExit("--source-dir or RANKD_REFRESH_SOURCE_DIR is required")

    db.init_pool()
    results = run_refresh(DirectoryFetcher(args.source_dir, derive_ids=args.derive_ids))
    if any(not r["success"] for r in results):
        raise SystemExit(1)


if __name__ == "__main__":
    main()
