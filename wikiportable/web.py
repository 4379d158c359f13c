"""HTTP API for wikiportable.

Blueprint: api_bp
Prefix: /api
Routes:
    GET    /api/data                 - all wiki entries
    POST   /api/data                 - replace all entries (auto backup first)
    GET    /api/backups              - backups, newest first
    POST   /api/backups/manual       - take a manual backup
    DELETE /api/backups/<filename>   - delete one backup
    POST   /api/restore/<filename>   - restore a backup, returns the entries
    POST   /api/merge/<filename>     - merge a backup, returns merged entries (not saved)
    GET    /api/health               - liveness check
"""

from __future__ import annotations

import logging
from typing import Optional

from flask import Blueprint, Flask, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from wikiportable import __version__
from wikiportable.config import Configuration
from wikiportable.errors import WikiError
from wikiportable.logger import ErrorCode, map_exception_to_error_code
from wikiportable.service import WikiService


api_bp = Blueprint("api", __name__)
logger = logging.getLogger(__name__)

# Key under app.extensions holding the WikiService
EXTENSION_KEY = "wikiportable"


def _service() -> WikiService:
    return current_app.extensions[EXTENSION_KEY]


def _error(message: str, status: int, code: ErrorCode):
    return jsonify({"error": message, "code": code.value}), status


# ── Error mapping ──────────────────────────────────────────────────


@api_bp.errorhandler(WikiError)
def handle_wiki_error(e: WikiError):  # type: ignore[no-untyped-def]
    if e.status_code >= 500:
        logger.error(f"{request.method} {request.path} failed: {e.message}")
    else:
        logger.info(f"{request.method} {request.path} rejected: {e.message}")
    return _error(e.message, e.status_code, e.error_code)


@api_bp.errorhandler(Exception)
def handle_unexpected_error(e: Exception):  # type: ignore[no-untyped-def]
    if isinstance(e, HTTPException):
        return _error(e.description or e.name, e.code or 500, ErrorCode.UNKNOWN_ERROR)
    logger.exception(f"{request.method} {request.path} failed unexpectedly")
    return _error("Internal server error", 500, map_exception_to_error_code(e))


# ── Store ──────────────────────────────────────────────────────────


@api_bp.route("/data", methods=["GET"])
def api_get_data():  # type: ignore[no-untyped-def]
    """Return every wiki entry, or [] before the first save."""
    return jsonify(_service().load())


@api_bp.route("/data", methods=["POST"])
def api_save_data():  # type: ignore[no-untyped-def]
    """Replace every wiki entry with the posted JSON array."""
    entries = request.get_json(force=True, silent=True)
    result = _service().save(entries)
    return jsonify({
        "success": True,
        "message": "Data saved",
        "count": result.entry_count,
        "backup": result.backup.filename if result.backup else None,
        "warning": "Existing entries were replaced with an empty list" if result.suspicious else None,
    })


# ── Backups ────────────────────────────────────────────────────────


@api_bp.route("/backups", methods=["GET"])
def api_list_backups():  # type: ignore[no-untyped-def]
    return jsonify([record.to_dict() for record in _service().list_backups()])


@api_bp.route("/backups/manual", methods=["POST"])
def api_manual_backup():  # type: ignore[no-untyped-def]
    record = _service().manual_backup()
    return jsonify({
        "success": True,
        "message": "Manual backup created",
        "filename": record.filename,
    })


@api_bp.route("/backups/<filename>", methods=["DELETE"])
def api_delete_backup(filename: str):  # type: ignore[no-untyped-def]
    _service().delete_backup(filename)
    return jsonify({"success": True, "message": "Backup deleted"})


@api_bp.route("/restore/<filename>", methods=["POST"])
def api_restore(filename: str):  # type: ignore[no-untyped-def]
    """Restore a backup; the response body is the restored entry array."""
    return jsonify(_service().restore(filename))


@api_bp.route("/merge/<filename>", methods=["POST"])
def api_merge(filename: str):  # type: ignore[no-untyped-def]
    """Merge a backup into the current entries without saving.

    The client shows the merged list and saves it with POST /api/data,
    which takes the usual automatic backup.
    """
    return jsonify(_service().merge(filename).to_dict())


@api_bp.route("/health", methods=["GET"])
def api_health():  # type: ignore[no-untyped-def]
    return jsonify({"ok": True, "version": __version__})


# ── App factory ────────────────────────────────────────────────────


def create_app(
    config: Optional[Configuration] = None,
    service: Optional[WikiService] = None,
) -> Flask:
    """
    Build the Flask application.

    Args:
        config: Configuration to build a WikiService from
        service: Prebuilt service (its config is used if config is None)

    Returns:
        Flask app with the API blueprint mounted at /api
    """
    if service is None:
        service = WikiService(config or Configuration())
    if config is None:
        config = service.config

    app = Flask(__name__, static_folder=None)
    app.config["MAX_CONTENT_LENGTH"] = config.server.max_content_bytes
    # Keep entry keys in the order the client sent them, and text readable
    app.json.sort_keys = False  # type: ignore[attr-defined]
    app.json.ensure_ascii = False  # type: ignore[attr-defined]
    app.extensions[EXTENSION_KEY] = service

    allowed_origins = list(config.server.cors_origins)

    @app.after_request
    def add_cors_headers(response):  # type: ignore[no-untyped-def]
        origin = request.headers.get("Origin", "")
        if "*" in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = "*"
        elif origin and origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
        else:
            return response
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, DELETE, OPTIONS"
        return response

    @app.errorhandler(413)
    def payload_too_large(e):  # type: ignore[no-untyped-def]
        return _error(
            f"Request body exceeds {config.server.max_content_mb} MB",
            413,
            ErrorCode.STORE_INVALID_PAYLOAD,
        )

    app.register_blueprint(api_bp, url_prefix="/api")
    return app
