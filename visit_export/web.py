from __future__ import annotations

import io
import json

from flask import Blueprint, Flask, current_app, jsonify, request, send_file
from werkzeug.exceptions import HTTPException

from .backend import SupabaseBackend
from .config import Config
from .errors import (
    BadRequestError,
    ConfigurationError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    VisitExportError,
)
from .export import build_export
from .images import NORMALIZERS, select_normalizer
from .preview import preview_attachment
from .records import is_submission_id
from .workbook import XLSX_MIME

EXTENSION_KEY = "visit_export"
CORS_ALLOW_HEADERS = "authorization, x-client-info, apikey, content-type"
CORS_ALLOW_METHODS = "POST, OPTIONS"

bp = Blueprint("visit_export", __name__)


def _json_error(message, status_code=400, code="error"):
    return jsonify(status="error", error=code, message=message), status_code


def _state():
    return current_app.extensions[EXTENSION_KEY]


def get_backend():
    state = _state()
    if state["backend"] is None:
        state["backend"] = SupabaseBackend.from_config(current_app.config)
    return state["backend"]


def get_normalizer():
    state = _state()
    if state["normalizer"] is None:
        state["normalizer"] = select_normalizer(
            current_app.config["IMAGE_NORMALIZER"], get_backend(), current_app.config
        )
    return state["normalizer"]


def _bearer_token():
    header = request.headers.get("Authorization", "")
    if header[:7].lower() == "bearer ":
        return header[7:].strip()
    return header.strip()


def require_user(backend):
    token = _bearer_token()
    if not token:
        raise UnauthorizedError("missing bearer token")
    user = backend.get_user(token)
    if user is None:
        raise UnauthorizedError()
    return user


def _json_body():
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise BadRequestError("request body must be a JSON object")
    return body


@bp.after_app_request
def _add_cors_headers(response):
    allowed = current_app.config.get("ALLOWED_ORIGINS") or []
    origin = request.headers.get("Origin")
    if not allowed:
        response.headers["Access-Control-Allow-Origin"] = "*"
    elif origin in allowed:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Vary"] = "Origin"
    response.headers["Access-Control-Allow-Headers"] = CORS_ALLOW_HEADERS
    response.headers["Access-Control-Allow-Methods"] = CORS_ALLOW_METHODS
    response.headers["Access-Control-Max-Age"] = "86400"
    return response


@bp.app_errorhandler(VisitExportError)
def _handle_visit_export_error(exc):
    if exc.status >= 500:
        current_app.logger.error("%s: %s", exc.code, exc.message)
    return _json_error(exc.message, exc.status, exc.code)


@bp.app_errorhandler(Exception)
def _handle_unexpected_error(exc):
    if isinstance(exc, HTTPException):
        return exc
    current_app.logger.exception("Unhandled backend exception")
    return _json_error("Backend error while processing request: {0}".format(exc), 500)


@bp.route("/health")
def health():
    return jsonify(status="ok")


@bp.route("/submission-xlsx", methods=["POST"])
def submission_xlsx():
    backend = get_backend()
    user = require_user(backend)
    body = _json_body()
    debug = bool(body.get("debug"))

    submission_id = str(body.get("submission_id") or "").strip()
    if not submission_id:
        raise BadRequestError("submission_id required")
    if not is_submission_id(submission_id):
        raise BadRequestError("invalid submission_id", code="invalid_submission_id")

    record = backend.get_submission(submission_id)
    if record is None:
        raise NotFoundError("submission_not_found", code="submission_not_found")
    if not record.team_id:
        raise BadRequestError("submission_missing_team_id", code="submission_missing_team_id")
    if not backend.is_team_member(record.team_id, user.id):
        raise ForbiddenError()

    result = build_export(record, get_normalizer())
    response = send_file(
        io.BytesIO(result.data),
        mimetype=XLSX_MIME,
        as_attachment=True,
        download_name=result.file_name,
    )
    response.headers["Content-Disposition"] = 'attachment; filename="{0}"'.format(result.file_name)
    response.headers["Cache-Control"] = "no-store"
    if debug:
        response.headers["X-Debug"] = "1"
        response.headers["X-Photo-Diagnostics"] = json.dumps(
            [item.as_dict() for item in result.diagnostics], separators=(",", ":")
        )
    return response


@bp.route("/document-preview", methods=["POST"])
def document_preview():
    backend = get_backend()
    user = require_user(backend)
    body = _json_body()
    return jsonify(preview_attachment(backend, user, body, current_app.config))


def create_app(config=None, backend=None, normalizer=None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(Config)
    if isinstance(config, dict):
        app.config.update(config)
    elif config is not None:
        app.config.from_object(config)

    kind = (app.config.get("IMAGE_NORMALIZER") or "raster").strip().lower()
    if kind not in NORMALIZERS:
        raise ConfigurationError("unknown IMAGE_NORMALIZER {0!r}".format(kind))
    app.config["IMAGE_NORMALIZER"] = kind

    app.extensions[EXTENSION_KEY] = {"backend": backend, "normalizer": normalizer}
    app.register_blueprint(bp)
    return app
