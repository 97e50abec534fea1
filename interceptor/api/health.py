"""Health, readiness and status endpoints."""
from flask import Blueprint, current_app, jsonify

bp = Blueprint("health", __name__)


def _service():
    return current_app.config.get("INTERCEPTOR_SERVICE")


@bp.route("/health")
def health_check():
    """Basic health check endpoint."""
    return ("ok", 200, {"Content-Type": "text/plain"})


@bp.route("/ready")
def readiness_check():
    """Ready once every worker has completed its gateway handshake."""
    service = _service()
    if service is None or not service.is_ready():
        return ("not ready", 503, {"Content-Type": "text/plain"})
    return ("ready", 200, {"Content-Type": "text/plain"})


@bp.route("/status")
def status():
    service = _service()
    if service is None:
        return jsonify({"ready": False, "workers": []})
    return jsonify(service.status())
