"""Stateless onboarding invite tokens.

An invite token is the compact JSON payload encoded as unpadded base64url.
It is an encoding, not a signature: anyone holding the token can read it, and
there is no expiry, revocation or single-use tracking.

Wire keys (``gymId``, ``iat`` in milliseconds) are kept compatible with links
that were issued before this service existed.
"""
from __future__ import annotations
import base64
import binascii
import json
import time
from dataclasses import dataclass
from typing import Optional

from .badges import is_location_exempt
from .exceptions import MalformedTokenError, ValidationError


@dataclass(frozen=True)
class InvitePayload:
    """Decoded invite contents."""
    role: str
    location_id: Optional[str] = None
    name: Optional[str] = None
    issued_at: Optional[int] = None

    def to_wire(self) -> dict:
        return {
            "role": self.role,
            "gymId": self.location_id,
            "name": self.name,
            "iat": self.issued_at,
        }


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(token: str) -> bytes:
    padding = "=" * (-len(token) % 4)
    # validate=True rejects characters outside the urlsafe alphabet
    return base64.b64decode((token + padding).encode("ascii"), altchars=b"-_", validate=True)


def encode(payload: InvitePayload) -> str:
    """Serialize an invite payload into a URL-safe token."""
    compact = json.dumps(payload.to_wire(), separators=(",", ":"), ensure_ascii=False)
    return _b64url_encode(compact.encode("utf-8"))


def decode(token: str) -> InvitePayload:
    """Decode a token produced by :func:`encode`.

    Raises:
        MalformedTokenError: If the token is not base64url, not JSON, or does
            not have the invite structure
    """
    if not token or not isinstance(token, str):
        raise MalformedTokenError("Invite token is empty")

    try:
        raw = _b64url_decode(token)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise MalformedTokenError("Invite token is malformed") from exc

    if not isinstance(data, dict):
        raise MalformedTokenError("Invite token is malformed")

    role = data.get("role")
    if not isinstance(role, str) or not role.strip():
        raise MalformedTokenError("Invite token has no role")

    location_id = data.get("gymId")
    name = data.get("name")
    issued_at = data.get("iat")
    if location_id is not None and not isinstance(location_id, str):
        raise MalformedTokenError("Invite token has an invalid location")
    if name is not None and not isinstance(name, str):
        raise MalformedTokenError("Invite token has an invalid name")
    # bool is an int subclass; reject it explicitly
    if issued_at is not None and (isinstance(issued_at, bool) or not isinstance(issued_at, int)):
        raise MalformedTokenError("Invite token has an invalid timestamp")

    return InvitePayload(role=role, location_id=location_id, name=name, issued_at=issued_at)


def issue(role: Optional[str], location_id: Optional[str] = None, name: Optional[str] = None) -> InvitePayload:
    """Validate invite inputs and stamp the issue time.

    Raises:
        ValidationError: If role is missing, or location is missing for a role
            that requires one
    """
    role = (role or "").strip()
    if not role:
        raise ValidationError("role required")
    location_id = location_id or None
    if not is_location_exempt(role) and not location_id:
        raise ValidationError("location_id required for this role")
    return InvitePayload(
        role=role,
        location_id=location_id,
        name=name or None,
        issued_at=int(time.time() * 1000),
    )


def build_invite_link(origin: str, token: str) -> str:
    """Return the onboarding URL for a token."""
    return f"{origin.rstrip('/')}/invite/{token}"
