# Overview: Shared HTTP helpers; structured error responses and actor identity.

from flask import jsonify, request

from ..errors import EngineError, ValidationFailedError


ACTOR_HEADER = "X-Actor-Id"


def error_response(exc: EngineError):
    """Render an engine error as {"error": {kind, message, details}} with the kind's status."""
    return jsonify({"error": exc.to_dict()}), exc.http_status


def internal_error_response():
    return jsonify({"error": {"kind": "InternalError", "message": "Internal server error", "details": {}}}), 500


def actor_id() -> int:
    """Acting user id supplied by the calling layer (authentication lives upstream)."""
    raw = request.headers.get(ACTOR_HEADER)
    if raw is None or not raw.strip():
        raise ValidationFailedError(f"{ACTOR_HEADER} header is required")
    try:
        value = int(raw)
    except ValueError:
        raise ValidationFailedError(f"{ACTOR_HEADER} must be an integer")
    if value <= 0:
        raise ValidationFailedError(f"{ACTOR_HEADER} must be positive")
    return value


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationFailedError("Invalid JSON payload")
    return data


def register_error_handlers(app) -> None:
    @app.errorhandler(404)
    def _not_found(_e):
        return jsonify({"error": {"kind": "NotFound", "message": "Resource not found", "details": {}}}), 404

    @app.errorhandler(405)
    def _method_not_allowed(_e):
        return jsonify({"error": {"kind": "MethodNotAllowed", "message": "Method not allowed", "details": {}}}), 405
