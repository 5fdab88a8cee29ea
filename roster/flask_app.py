"""Flask application factory and bootstrap.

This module provides the create_app() factory function for initializing
the Flask application with all blueprints, middleware, and configuration.
"""
from __future__ import annotations
import logging
import os
from typing import Optional

from flask import Flask, request
from werkzeug.middleware.proxy_fix import ProxyFix

from roster.config import load_settings
from roster.core.provisioning_service import ProvisioningService


# ─────────────────────────────────────────────────────────────────────────────
# Application Factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(service: Optional[ProvisioningService] = None) -> Flask:
    """Create and configure Flask application.

    Args:
        service: Pre-built provisioning service (tests inject fakes here).
            Defaults to one wired to the configured backend.
    """
    cfg = load_settings()

    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    app = Flask(__name__)

    # Store config and service for easy access in routes
    app.config["APP_CONFIG"] = cfg
    app.config["PROVISIONING_SERVICE"] = service or ProvisioningService.from_config(cfg)
    app.config["MAX_CONTENT_LENGTH"] = int(os.environ.get("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))

    # Trust X-Forwarded-* headers from proxy
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)  # type: ignore

    # Register blueprints
    from roster.api import admin, errors, health, invites

    app.register_blueprint(health.bp)
    app.register_blueprint(admin.bp, url_prefix="/api/admin")
    app.register_blueprint(invites.bp, url_prefix="/api/invites")

    # Register error handlers
    errors.register_error_handlers(app)

    _register_middleware(app)

    mode_label = "DEMO" if cfg.demo_mode else "PRODUCTION"
    app.logger.info("[flask_app] Mode=%s backend=%s", mode_label, cfg.supabase_url)
    if cfg.demo_mode:
        app.logger.warning("[flask_app] Demo mode active - do not deploy with demo credentials")

    return app


def _register_middleware(app: Flask):
    """Register after_request middleware."""

    @app.after_request
    def echo_correlation_id(response):
        """Return the caller's correlation id so saga logs can be matched up."""
        correlation_id = request.headers.get("X-Correlation-Id")
        if correlation_id:
            response.headers["X-Correlation-Id"] = correlation_id
        return response

    @app.after_request
    def security_headers(response):
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Cache-Control", "no-store")
        return response


# ─────────────────────────────────────────────────────────────────────────────
# Application Instance (for Gunicorn)
# ─────────────────────────────────────────────────────────────────────────────
app = create_app()


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
