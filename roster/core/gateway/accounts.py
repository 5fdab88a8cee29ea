"""Identity provider account operations (auth admin API)."""
from __future__ import annotations
import logging
from typing import Any, Optional

from ..exceptions import IdentityProviderError
from ..models import Account
from .client import GatewayClient
from .exceptions import GatewayAPIError

logger = logging.getLogger(__name__)

ADMIN_USERS_PATH = "/auth/v1/admin/users"


def _to_account(body: dict) -> Account:
    # Some deployments wrap the user as {"user": {...}}
    user = body.get("user", body) if isinstance(body, dict) else {}
    return Account(
        id=user["id"],
        email=user.get("email", ""),
        metadata=user.get("user_metadata") or {},
        confirmed=bool(user.get("email_confirmed_at") or user.get("confirmed_at")),
    )


class AccountService:
    """Create, update and delete accounts in the identity provider."""

    def __init__(self, client: GatewayClient):
        """Initialize account service.

        Args:
            client: Gateway client authenticated with the service-role key
        """
        self.client = client

    def _fail(self, action: str, exc: GatewayAPIError) -> IdentityProviderError:
        logger.error("[accounts] %s failed: status=%s endpoint=%s message=%s",
                     action, exc.status_code, exc.endpoint, exc.message)
        return IdentityProviderError(f"Failed to {action}: {exc.message}")

    def create_account(self, email: str, password: str, display_name: str, role: str) -> Account:
        """Create an auto-confirmed account carrying display name and role metadata.

        The role is mirrored into ``app_metadata``, which bearer-token checks read.

        Raises:
            IdentityProviderError: If the provider rejects the account
        """
        payload = {
            "email": email,
            "password": password,
            "user_metadata": {"display_name": display_name, "role": role},
            "app_metadata": {"role": role},
            "email_confirm": True,
        }
        try:
            resp = self.client.post(ADMIN_USERS_PATH, json=payload)
            account = _to_account(resp.json())
        except GatewayAPIError as exc:
            raise self._fail("create account", exc) from exc
        except (KeyError, ValueError) as exc:
            logger.error("[accounts] create account returned an unexpected body: %s", exc)
            raise IdentityProviderError("Failed to create account: unexpected response") from exc
        logger.info("[accounts] created account %s", account.id)
        return account

    def update_account(
        self,
        account_id: str,
        *,
        email: Optional[str] = None,
        password: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Account:
        """Apply the supplied fields only; ``None`` leaves a field unchanged."""
        payload: dict[str, Any] = {}
        if email:
            payload["email"] = email
        if password:
            payload["password"] = password
        if metadata:
            payload["user_metadata"] = metadata
            if metadata.get("role"):
                payload["app_metadata"] = {"role": metadata["role"]}
        try:
            resp = self.client.put(f"{ADMIN_USERS_PATH}/{account_id}", json=payload)
            account = _to_account(resp.json())
        except GatewayAPIError as exc:
            raise self._fail("update account", exc) from exc
        except (KeyError, ValueError) as exc:
            raise IdentityProviderError("Failed to update account: unexpected response") from exc
        logger.info("[accounts] updated account %s fields=%s", account_id, sorted(payload))
        return account

    def delete_account(self, account_id: str) -> None:
        try:
            self.client.delete(f"{ADMIN_USERS_PATH}/{account_id}")
        except GatewayAPIError as exc:
            raise self._fail("delete account", exc) from exc
        logger.info("[accounts] deleted account %s", account_id)

