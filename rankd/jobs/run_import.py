"""CLI job to import review extraction files into the database."""

import argparse
import json
import logging
from pathlib import Path
from typing import List, Sequence

from rankd.core import db
from rankd.core.errors import ValidationError
from rankd.core.importer import import_reviews
from rankd.etl.transform import parse_import_payload
from rankd.models import ImportSummary

logger = logging.getLogger(__name__)


def load_batch(path: Path, *, derive_ids: bool = False):
    with path.open("r", encoding="utf-8") as fh:
        try:
            payload = json.load(fh)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"{path} is not valid JSON: {exc}") from exc
    return parse_import_payload(payload, derive_missing_ids=derive_ids)


def run_import_job(paths: Sequence[Path], *, derive_ids: bool = False) -> List[ImportSummary]:
    """Import every file; a broken file is logged and the rest still run."""
    db.init_pool()

    summaries: List[ImportSummary] = []
    for path in paths:
        try:
            batch = load_batch(path, derive_ids=derive_ids)
            summary = import_reviews(batch)
        except (OSError, ValidationError) as exc:
            logger.error("Failed to import %s: %s", path, exc)
            continue
        summaries.append(summary)
        logger.info(
            "%s: %s imported=%d skipped=%d",
            path.name,
            summary.place_id,
            summary.imported,
            summary.skipped,
        )

    logger.info("Completed import: files=%d succeeded=%d", len(paths), len(summaries))
    return summaries


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Import review extraction JSON files")
    parser.add_argument("paths", nargs="+", type=Path, help="Extraction JSON files to import")
    parser.add_argument(
        "--derive-ids",
        dest="derive_ids",
        action="store_true",
        help="Derive review ids from author, date and text when the file has none",
    )
    parser.add_argument("--init-schema", dest="init_schema", action="store_true", help="Create tables first")
    return parser


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args()

    if args.init_schema:
        with db.transaction() as cur:
            db.init_schema(cur)

    summaries = run_import_job(args.paths, derive_ids=args.derive_ids)
    if len(summaries) < len(args.paths):
        raise SystemExit(1)


if __name__ == "__main__":
    main()
