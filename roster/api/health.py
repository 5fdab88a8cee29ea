"""Health check endpoints."""
from flask import Blueprint, current_app, jsonify

bp = Blueprint("health", __name__)


@bp.route("/health")
def health_check():
    """Liveness: the process is serving requests."""
    return ("ok", 200, {"Content-Type": "text/plain"})


@bp.route("/ready")
def readiness_check():
    """Readiness: settings are loaded and the provisioning service is wired."""
    cfg = current_app.config.get("APP_CONFIG")
    service = current_app.config.get("PROVISIONING_SERVICE")
    if cfg is None or service is None:
        return jsonify({"status": "not ready"}), 503
    return jsonify({"status": "ready", "demo_mode": cfg.demo_mode}), 200
