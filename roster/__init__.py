"""Roster staff provisioning package.

To use the Flask app:
    from roster.flask_app import app

To use the provisioning sagas:
    from roster.core.provisioning_service import get_provisioning_service

To use the backend gateway directly:
    from roster.core.gateway import GatewayClient, AccountService
"""
# Note: flask_app is not imported here so the CLI can use roster.core
# without building a Flask application.
