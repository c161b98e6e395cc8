"""HTTP entrypoint exposing import, ranking, snapshot and catalog operations."""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from rankd.core import catalog, export, ranking, snapshots
from rankd.core.config import get_settings
from rankd.core.errors import DataIntegrityError, NotFoundError, ValidationError
from rankd.core.filters import parse_filter
from rankd.core.importer import import_reviews
from rankd.etl.transform import parse_import_payload
from rankd.jobs.refresh import DirectoryFetcher, run_refresh

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & executor ----------
app = Flask(__name__)
_executor = ThreadPoolExecutor(max_workers=1)


@app.errorhandler(ValidationError)
def _validation_error(exc: ValidationError) -> Any:
    return jsonify({"error": str(exc)}), 400


@app.errorhandler(NotFoundError)
def _not_found(exc: NotFoundError) -> Any:
    return jsonify({"error": str(exc)}), 404


@app.errorhandler(DataIntegrityError)
def _integrity_error(exc: DataIntegrityError) -> Any:
    logger.error("Data integrity violation: %s", exc)
    return jsonify({"error": "data integrity violation"}), 500


@app.errorhandler(Exception)
def _unexpected_error(exc: Exception) -> Any:
    if isinstance(exc, HTTPException):
        return exc
    logger.exception("Unhandled error on %s %s: %s", request.method, request.path, exc)
    return jsonify({"error": "Internal server error"}), 500


def _payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object")
    return payload


def _optional_int(value: Any, field: str):
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer") from exc


# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    """Lightweight health endpoint; reads settings only, never the database."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "port_config": settings.server_port,
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.post("/reviews/import")
def import_endpoint() -> Any:
    """Import one extraction payload: {business, reviews, metadata}."""
    batch = parse_import_payload(request.get_json(silent=True))
    summary = import_reviews(batch)
    return jsonify({"data": summary.to_dict()}), 200


@app.get("/companies")
def list_companies() -> Any:
    return jsonify({"data": [c.to_dict() for c in catalog.list_companies()]}), 200


@app.get("/companies/<place_id>")
def get_company(place_id: str) -> Any:
    found = catalog.get_company(place_id)
    if found is None:
        return jsonify({"error": "Company not found"}), 404
    company, metadata = found
    return jsonify({"data": {"company": company.to_dict(), "metadata": metadata.to_dict() if metadata else None}}), 200


@app.put("/companies/<place_id>")
def update_company(place_id: str) -> Any:
    company = catalog.update_company(place_id, _payload())
    return jsonify({"data": company.to_dict()}), 200


@app.get("/settings/our-company")
def get_our_company() -> Any:
    return jsonify({"data": {"placeId": catalog.get_our_company()}}), 200


@app.put("/settings/our-company")
def set_our_company() -> Any:
    catalog.set_our_company(_payload().get("placeId"))
    return jsonify({"data": {"success": True}}), 200


@app.get("/groups")
def list_groups() -> Any:
    return jsonify({"data": [g.to_dict() for g in catalog.list_groups()]}), 200


@app.post("/groups")
def create_group() -> Any:
    payload = _payload()
    group = catalog.create_group(payload.get("name"), payload.get("companyIds"))
    return jsonify({"data": group.to_dict()}), 201


@app.get("/groups/<int:group_id>")
def get_group(group_id: int) -> Any:
    found = catalog.get_group(group_id)
    if found is None:
        return jsonify({"error": "Group not found"}), 404
    group, members = found
    data = group.to_dict()
    data["companies"] = [{"placeId": c.place_id, "name": c.name, "services": c.services} for c in members]
    return jsonify({"data": data}), 200


@app.put("/groups/<int:group_id>")
def update_group(group_id: int) -> Any:
    group = catalog.update_group(group_id, _payload())
    return jsonify({"data": group.to_dict()}), 200


@app.delete("/groups/<int:group_id>")
def delete_group(group_id: int) -> Any:
    catalog.delete_group(group_id)
    return jsonify({"data": {"success": True}}), 200


@app.get("/comparisons")
def comparisons() -> Any:
    company_filter = parse_filter(request.args.get("filter"), request.args.get("group"))
    rankings = ranking.rank(company_filter)
    return jsonify({"data": {"rankings": [r.to_dict() for r in rankings], "filter": company_filter.describe()}}), 200


@app.get("/comparisons/snapshots")
def list_snapshots() -> Any:
    return jsonify({"data": [s.to_dict() for s in snapshots.list_snapshots()]}), 200


@app.post("/comparisons/snapshots")
def create_snapshot() -> Any:
    """Archive the given rankings, or the current ranking for filter/groupId."""
    payload = _payload()
    rankings = payload.get("rankings")
    if rankings is None:
        company_filter = parse_filter(payload.get("filter"), payload.get("groupId"))
        rankings = [r.to_dict() for r in ranking.rank(company_filter)]
    snapshot_id = snapshots.archive(payload.get("name"), rankings)
    return jsonify({"data": {"id": snapshot_id}}), 201


@app.get("/comparisons/snapshots/<int:snapshot_id>")
def get_snapshot(snapshot_id: int) -> Any:
    snapshot = snapshots.retrieve(snapshot_id)
    if snapshot is None:
        return jsonify({"error": "Snapshot not found"}), 404
    return jsonify({"data": snapshot.to_dict()}), 200


@app.post("/export")
def export_data() -> Any:
    """Ranking rows and title for the document renderer."""
    payload = _payload()
    snapshot_id = _optional_int(payload.get("snapshotId"), "snapshotId")
    company_filter = None
    if snapshot_id is None:
        company_filter = parse_filter(payload.get("filter"), payload.get("groupId"))
    title, rows = export.build_export(company_filter, snapshot_id=snapshot_id)
    return jsonify({"data": {"title": title, "rankings": rows}}), 200


@app.post("/cron/weekly-refresh")
def weekly_refresh() -> Any:
    source_dir = get_settings().refresh_source_dir
    if not source_dir:
        return jsonify({"error": "RANKD_REFRESH_SOURCE_DIR is not configured"}), 503

    logger.info("Queueing refresh run from %s", source_dir)
    _executor.submit(_run_refresh_safe, source_dir)
    return jsonify({"data": {"status": "queued"}}), 202


# ---------- Internals ----------


def _run_refresh_safe(source_dir: str) -> None:
    try:
        run_refresh(DirectoryFetcher(source_dir))
    except Exception as exc:  # noqa: BLE001
        logger.exception("Refresh run failed: %s", exc)


def main() -> None:
    port = get_settings().server_port
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
