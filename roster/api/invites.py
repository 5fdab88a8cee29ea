"""Invite issuance and decoding routes."""
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from roster.api.decorators import current_operator, require_bearer_token

bp = Blueprint("invites", __name__)


@bp.route("", methods=["POST"])
@require_bearer_token()
def create_invite():
    """Encode an invite into a token and onboarding link.

    Body: ``{"role", "location_id" | "gymId", "name"}``. Returns 201
    ``{"token", "link"}``.
    """
    data = request.get_json(silent=True) or {}
    result = current_app.config["PROVISIONING_SERVICE"].issue_invite(
        data.get("role"),
        data.get("location_id") or data.get("gymId"),
        data.get("name"),
        operator=current_operator(),
    )
    return jsonify(result), 201


@bp.route("/<token>", methods=["GET"])
def read_invite(token: str):
    """Decode a token for the onboarding form (public)."""
    return jsonify(current_app.config["PROVISIONING_SERVICE"].decode_invite(token)), 200
