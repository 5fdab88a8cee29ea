"""Hosted backend gateway.

Architecture:
- client.py: HTTP client with service-key auth and error translation
- accounts.py: identity provider account lifecycle (auth admin API)
- profiles.py: profile rows and badge counter rows (REST tables)
- storage.py: avatar uploads (object store)
- invites.py: invite status lookup
- exceptions.py: gateway-level HTTP errors

Services translate ``GatewayAPIError`` into the provisioning error taxonomy
(``roster.core.exceptions``) before anything reaches a saga.
"""
from .client import GatewayClient, REQUEST_TIMEOUT
from .exceptions import GatewayError, GatewayAPIError
from .accounts import AccountService
from .profiles import ProfileStore, CounterStore
from .storage import AvatarStorage
from .invites import InviteLedger

__all__ = [
    "GatewayClient",
    "REQUEST_TIMEOUT",
    "GatewayError",
    "GatewayAPIError",
    "AccountService",
    "ProfileStore",
    "CounterStore",
    "AvatarStorage",
    "InviteLedger",
]
