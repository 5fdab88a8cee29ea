"""Admin provisioning routes: create, update, delete, heartbeat.

Requests arrive as JSON (or multipart form for creation, which may carry an
avatar file). Both ``location_id`` and the older ``gymId`` field name are
accepted, as are ``id`` and ``userId``.
"""
from __future__ import annotations
import logging

from flask import Blueprint, current_app, jsonify, request

from roster.api.decorators import current_operator, require_bearer_token
from roster.core.models import AvatarUpload, CreateAccountRequest, UpdateAccountRequest

bp = Blueprint("admin", __name__)

logger = logging.getLogger(__name__)


def _service():
    return current_app.config["PROVISIONING_SERVICE"]


def _payload() -> dict:
    """Merge form fields and JSON body into one dict."""
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def _correlation_id() -> str:
    return request.headers.get("X-Correlation-Id", "")


def _avatar_from_request():
    upload = request.files.get("avatar")
    if upload is None or not upload.filename:
        return None
    return AvatarUpload(
        filename=upload.filename,
        content=upload.read(),
        content_type=upload.mimetype or "application/octet-stream",
    )


@bp.route("/create-user", methods=["POST"])
@require_bearer_token()
def create_user():
    """Provision an account and its profile.

    Returns:
        201 ``{"account_id": ...}``
    """
    data = _payload()
    create_request = CreateAccountRequest(
        display_name=data.get("display_name", ""),
        email=data.get("email", ""),
        role=data.get("role", ""),
        password=data.get("password", ""),
        location_id=data.get("location_id") or data.get("gymId"),
        avatar=_avatar_from_request(),
    )
    account_id = _service().create_account(
        create_request, correlation_id=_correlation_id(), operator=current_operator()
    )
    return jsonify({"account_id": account_id}), 201


@bp.route("/update-user", methods=["POST"])
@require_bearer_token()
def update_user():
    """Apply the supplied fields; returns ``{"profile": {...}}``."""
    data = _payload()
    update_request = UpdateAccountRequest(
        id=data.get("id") or data.get("userId") or "",
        display_name=data.get("display_name"),
        email=data.get("email"),
        role=data.get("role"),
        password=data.get("password"),
    )
    profile = _service().update_account(
        update_request, correlation_id=_correlation_id(), operator=current_operator()
    )
    return jsonify({"profile": profile.to_dict()}), 200


@bp.route("/delete-user", methods=["POST"])
@require_bearer_token()
def delete_user():
    data = _payload()
    account_id = data.get("id") or data.get("userId") or ""
    result = _service().delete_account(
        account_id, correlation_id=_correlation_id(), operator=current_operator()
    )
    return jsonify(result), 200


@bp.route("/heartbeat", methods=["POST"])
@require_bearer_token()
def heartbeat():
    """Full badge counter reconciliation, triggered by the periodic heartbeat."""
    state = _service().reconcile_counters("full", operator=current_operator())
    logger.info("Heartbeat reconciliation stored %d counters", len(state.counters))
    return jsonify({"success": True}), 200
