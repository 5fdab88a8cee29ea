"""Invite status lookup (``invites`` table)."""
from __future__ import annotations
from typing import Optional

from ..exceptions import StorageError
from .client import GatewayClient
from .exceptions import GatewayAPIError

INVITES_PATH = "/rest/v1/invites"
DEFAULT_STATUS = "pending"


class InviteLedger:
    """Read-only view of invite acceptance status.

    Tokens are stateless; the ledger only exists because the onboarding form
    records when an invite was used. An unknown token is ``pending``.
    """

    def __init__(self, client: GatewayClient):
        self.client = client

    def status_for(self, token: str) -> str:
        try:
            rows = self.client.get(INVITES_PATH, params={"select": "status", "token": f"eq.{token}"}).json()
        except GatewayAPIError as exc:
            raise StorageError(f"Failed to look up invite: {exc.message}") from exc
        status: Optional[str] = rows[0].get("status") if rows else None
        return status or DEFAULT_STATUS
