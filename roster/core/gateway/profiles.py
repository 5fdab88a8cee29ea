"""Relational store access: ``profiles`` and ``badge_counters`` tables.

The stored schema predates this service: the badge code lives in ``badge_id``
and the location in ``gym_id``. Translation to domain names happens here and
nowhere else.
"""
from __future__ import annotations
import logging
from typing import Any, Iterable, Optional

from ..exceptions import NotFoundError, StorageError
from ..models import Profile
from .client import GatewayClient
from .exceptions import GatewayAPIError

logger = logging.getLogger(__name__)

PROFILES_PATH = "/rest/v1/profiles"
COUNTERS_PATH = "/rest/v1/badge_counters"

# domain field -> stored column
COLUMN_MAP = {
    "badge_code": "badge_id",
    "location_id": "gym_id",
}
_REVERSE_COLUMN_MAP = {column: name for name, column in COLUMN_MAP.items()}

RETURN_REPRESENTATION = {"Prefer": "return=representation"}

# Hosted PostgREST caps responses at 1000 rows by default
PAGE_SIZE = 1000


def to_row(fields: dict[str, Any]) -> dict[str, Any]:
    """Rename domain fields to stored column names."""
    return {COLUMN_MAP.get(key, key): value for key, value in fields.items()}


def from_row(row: dict[str, Any]) -> Profile:
    fields = {_REVERSE_COLUMN_MAP.get(key, key): value for key, value in row.items()}
    return Profile(
        id=fields["id"],
        display_name=fields.get("display_name") or "",
        email=fields.get("email") or "",
        role=fields.get("role") or "",
        badge_code=fields.get("badge_code") or "",
        location_id=fields.get("location_id"),
        password_length=fields.get("password_length"),
        avatar_url=fields.get("avatar_url"),
    )


def _storage_error(action: str, exc: GatewayAPIError) -> StorageError:
    logger.error("[profiles] %s failed: status=%s code=%s endpoint=%s message=%s",
                 action, exc.status_code, exc.code, exc.endpoint, exc.message)
    return StorageError(f"Failed to {action}: {exc.message}", conflict=exc.is_conflict)


class ProfileStore:
    """CRUD on profile rows keyed by account id."""

    def __init__(self, client: GatewayClient, page_size: int = PAGE_SIZE):
        self.client = client
        self.page_size = page_size

    def _select_all(self, params: dict[str, str]) -> list[dict]:
        """Read every matching row, one page at a time, until a short page."""
        rows: list[dict] = []
        offset = 0
        while True:
            page = self.client.get(
                PROFILES_PATH,
                params={**params, "order": "id", "limit": str(self.page_size), "offset": str(offset)},
            ).json()
            rows.extend(page)
            if len(page) < self.page_size:
                return rows
            offset += len(page)

    def list_badge_codes(self, prefix: str) -> list[str]:
        """Return every stored badge code starting with ``prefix-``.

        Raises:
            StorageError: If the lookup fails
        """
        params = {"select": "badge_id", "badge_id": f"like.{prefix}-*"}
        try:
            rows = self._select_all(params)
        except GatewayAPIError as exc:
            raise _storage_error("look up badge codes", exc) from exc
        return [row["badge_id"] for row in rows if row.get("badge_id")]

    def list_badges(self) -> list[tuple[str, Optional[str]]]:
        """Return ``(badge_code, location_id)`` for every profile."""
        try:
            rows = self._select_all({"select": "badge_id,gym_id"})
        except GatewayAPIError as exc:
            raise _storage_error("list badge codes", exc) from exc
        return [(row.get("badge_id") or "", row.get("gym_id")) for row in rows]

    def get(self, profile_id: str) -> Optional[Profile]:
        params = {"select": "*", "id": f"eq.{profile_id}"}
        try:
            rows = self.client.get(PROFILES_PATH, params=params).json()
        except GatewayAPIError as exc:
            raise _storage_error("fetch profile", exc) from exc
        return from_row(rows[0]) if rows else None

    def insert(self, profile: Profile) -> Profile:
        """Insert a profile row.

        Raises:
            StorageError: ``conflict`` is set when a uniqueness constraint
                rejected the row
        """
        try:
            rows = self.client.post(PROFILES_PATH, json=to_row(profile.to_dict()), headers=RETURN_REPRESENTATION).json()
        except GatewayAPIError as exc:
            raise _storage_error("insert profile", exc) from exc
        logger.info("[profiles] inserted profile %s badge=%s", profile.id, profile.badge_code)
        return from_row(rows[0]) if rows else profile

    def update(self, profile_id: str, patch: dict[str, Any]) -> Profile:
        """Apply a partial patch (domain field names) and return the updated row.

        Raises:
            NotFoundError: If no row matched the id
            StorageError: If the store rejected the patch
        """
        try:
            rows = self.client.patch(
                PROFILES_PATH,
                json=to_row(patch),
                params={"id": f"eq.{profile_id}"},
                headers=RETURN_REPRESENTATION,
            ).json()
        except GatewayAPIError as exc:
            raise _storage_error("update profile", exc) from exc
        if not rows:
            raise NotFoundError(f"Profile '{profile_id}' not found")
        logger.info("[profiles] updated profile %s fields=%s", profile_id, sorted(patch))
        return from_row(rows[0])

    def delete(self, profile_id: str) -> None:
        try:
            self.client.delete(PROFILES_PATH, params={"id": f"eq.{profile_id}"})
        except GatewayAPIError as exc:
            raise _storage_error("delete profile", exc) from exc
        logger.info("[profiles] deleted profile %s", profile_id)


class CounterStore:
    """Persisted badge counter baselines, one row per ``(prefix, scope)``."""

    def __init__(self, client: GatewayClient):
        self.client = client

    def load(self) -> dict[tuple[str, str], int]:
        try:
            rows = self.client.get(COUNTERS_PATH, params={"select": "prefix,scope,last_value"}).json()
        except GatewayAPIError as exc:
            raise _storage_error("load badge counters", exc) from exc
        return {(row["scope"], row["prefix"]): int(row.get("last_value") or 0) for row in rows}

    def upsert(self, counters: Iterable[tuple[tuple[str, str], int]]) -> None:
        rows = [
            {"prefix": prefix, "scope": scope, "last_value": value}
            for (scope, prefix), value in counters
        ]
        if not rows:
            return
        try:
            self.client.post(
                COUNTERS_PATH,
                json=rows,
                params={"on_conflict": "prefix,scope"},
                headers={"Prefer": "resolution=merge-duplicates"},
            )
        except GatewayAPIError as exc:
            raise _storage_error("store badge counters", exc) from exc
