"""JSON error handlers for the application."""
from flask import jsonify
from werkzeug.exceptions import HTTPException

from roster.core.exceptions import RosterError


def register_error_handlers(app):
    """Register error handlers with the Flask app.

    Every error leaves as ``{"error": "<message>"}``; store and endpoint
    details stay in the logs.
    """

    @app.errorhandler(RosterError)
    def handle_roster_error(error: RosterError):
        if error.status >= 500:
            app.logger.error("%s: %s", type(error).__name__, error.detail)
        return jsonify(error.to_dict()), error.status

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return jsonify({"error": error.description or error.name}), error.code

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle uncaught exceptions."""
        app.logger.error(f"Unhandled exception: {error}", exc_info=True)
        return jsonify({"error": "Internal server error"}), 500
