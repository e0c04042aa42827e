"""
custsync/api/routes_sync.py — HTTP shim around SyncGateway

  GET  /health        liveness + storage location
  GET  /customers     full {id: payload} map
  POST /customers     legacy whole-map upsert
  POST /sync/batch    {customers?, messages?} in one transaction
  POST /backup        on-demand SQLite snapshot
  GET  /stats         row counts

The collector runs inside the chat client's renderer, so every response
carries permissive CORS headers and preflights are answered on any path.
"""

import time
import logging

from flask import Blueprint, Response, current_app, jsonify, request

from ..core.errors import BatchError

log = logging.getLogger("custsync.api")

bp = Blueprint("sync", __name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def _gateway():
    return current_app.extensions["custsync"]["gateway"]


def _error(msg, status):
    return jsonify({"error": str(msg)}), status


def _json_body():
    """Parsed JSON body, or None when the body is missing or not JSON."""
    return request.get_json(force=True, silent=True)


# ── Request hooks ────────────────────────────────────────────────────────────
@bp.before_app_request
def _preflight_and_timer():
    request._start_time = time.time()
    if request.method == "OPTIONS":
        return Response(status=204)


@bp.after_app_request
def _cors_and_log(response):
    response.headers.update(CORS_HEADERS)
    if hasattr(request, "_start_time") and request.path != "/health":
        duration_ms = round((time.time() - request._start_time) * 1000, 1)
        log.info("%s %s → %d (%.0fms)",
                 request.method, request.path, response.status_code, duration_ms)
    return response


@bp.app_errorhandler(404)
def _not_found(e):
    return _error("Not Found", 404)


@bp.app_errorhandler(405)
def _method_not_allowed(e):
    return _error("Method Not Allowed", 405)


# ── Routes ───────────────────────────────────────────────────────────────────
@bp.route("/health", methods=["GET"])
def health():
    return jsonify(_gateway().health_check())


@bp.route("/customers", methods=["GET"])
def list_customers():
    try:
        return jsonify(_gateway().list_customers())
    except Exception as e:
        log.error("Read customers error: %s", e)
        return _error(e, 500)


@bp.route("/customers", methods=["POST"])
def save_customers():
    body = _json_body()
    if body is None:
        return _error("request body must be JSON", 400)
    try:
        _gateway().replace_all_customers(body)
    except BatchError as e:
        log.error("Save customers rejected: %s", e)
        return _error(e, 400)
    except Exception as e:
        log.error("Save customers error: %s", e)
        return _error(e, 500)
    return jsonify({"success": True})


@bp.route("/sync/batch", methods=["POST"])
def sync_batch():
    body = _json_body()
    if not isinstance(body, dict):
        return _error("request body must be a JSON object", 400)
    try:
        counts = _gateway().batch_upsert(customers=body.get("customers"),
                                         messages=body.get("messages"))
    except BatchError as e:
        log.error("Sync Batch rejected: %s", e)
        return _error(e, 400)
    except Exception as e:
        log.error("Sync Batch Error: %s", e)
        return _error(e, 500)
    return jsonify({"success": True, **counts})


@bp.route("/backup", methods=["POST"])
def backup():
    result = _gateway().trigger_snapshot_backup()
    if not result.get("success"):
        return _error(result.get("error", "backup failed"), 500)
    return jsonify({"success": True, "backup": result["backup"]})


@bp.route("/stats", methods=["GET"])
def stats():
    return jsonify(_gateway().stats())
