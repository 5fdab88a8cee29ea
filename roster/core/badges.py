"""Badge code allocation.

Badge codes are human-readable, role-scoped identifiers of the form
``PREFIX-N`` (or the bare ``PREFIX`` for location-exempt roles). The counter
for a prefix is never stored authoritatively: it is the maximum numeric suffix
among the profiles that currently carry that prefix.

Allocation is read-then-compute. Two callers working from snapshots taken
before either writes back can compute the same code; the provisioning saga
retries on uniqueness conflicts and the reconciler heals drift afterwards.
"""
from __future__ import annotations
from typing import Iterable, Optional

BADGE_PREFIX: dict[str, str] = {
    "owner": "MG",
    "trainer": "ST-TR",
    "va": "VA",
    "va-training": "VA-T",
    "coach": "CS",
    "client": "CL",
    "ptsi-intern": "PTSI-INT",
    "admin": "PTSI",
    "closer": "ST-CL",
    "front_desk": "ST-FD",
}
UNKNOWN_PREFIX = "XX"

# Roles that need no location and share a fixed, non-incrementing code
LOCATION_EXEMPT_ROLES = frozenset({"admin", "ptsi-intern"})

# Longest first so "VA-T-3" resolves to VA-T rather than VA
_KNOWN_PREFIXES = sorted(set(BADGE_PREFIX.values()) | {UNKNOWN_PREFIX}, key=len, reverse=True)


def prefix_for_role(role: Optional[str]) -> str:
    """Return the badge prefix for a role (``XX`` for unknown roles)."""
    return BADGE_PREFIX.get(role or "", UNKNOWN_PREFIX)


def is_location_exempt(role: Optional[str]) -> bool:
    """Return True for roles that need no location and use the bare prefix."""
    return role in LOCATION_EXEMPT_ROLES


def parse_suffix(code: Optional[str], prefix: str) -> int:
    """Return the numeric suffix of ``code`` after ``prefix-``.

    Anything that is not a positive integer (missing, non-numeric, wrong
    prefix) counts as 0. Never raises.
    """
    if not code or not code.startswith(f"{prefix}-"):
        return 0
    raw = code[len(prefix) + 1:]
    if not raw.isdigit():
        return 0
    try:
        return int(raw)
    except ValueError:
        return 0


def parse_badge_code(code: Optional[str]) -> tuple[str, int]:
    """Split a stored badge code into ``(prefix, suffix)``.

    Known prefixes are matched first. Unknown codes fall back to splitting on
    the last dash; a bare or malformed code yields a suffix of 0.

    Examples:
        >>> parse_badge_code("VA-T-3")
        ('VA-T', 3)
        >>> parse_badge_code("PTSI")
        ('PTSI', 0)
        >>> parse_badge_code("CS-x")
        ('CS', 0)
    """
    code = (code or "").strip()
    for prefix in _KNOWN_PREFIXES:
        if code == prefix:
            return prefix, 0
        if code.startswith(f"{prefix}-"):
            return prefix, parse_suffix(code, prefix)
    head, sep, tail = code.rpartition("-")
    if sep and head and tail.isdigit():
        return head, int(tail)
    return code, 0


def next_code(role: Optional[str], existing_codes: Iterable[Optional[str]]) -> str:
    """Compute the next badge code for ``role`` from a snapshot of issued codes.

    Args:
        role: Role slug (see ``BADGE_PREFIX``)
        existing_codes: Current badge codes; codes that do not start with the
            role's ``prefix-`` are ignored

    Returns:
        ``PREFIX`` for location-exempt roles, otherwise ``PREFIX-<max+1>``
    """
    prefix = prefix_for_role(role)
    if is_location_exempt(role):
        return prefix
    highest = max((parse_suffix(code, prefix) for code in existing_codes), default=0)
    return f"{prefix}-{highest + 1}"


class BadgeAllocator:
    """Allocate badge codes from the profile store's current snapshot.

    The allocator itself is pure; ``lookup`` is the callable that fetches the
    codes already carrying a prefix (``ProfileStore.list_badge_codes``).
    """

    def __init__(self, lookup):
        self._lookup = lookup

    def snapshot(self, role: Optional[str]) -> list[str]:
        """Fetch the codes that share ``role``'s prefix (empty for exempt roles)."""
        if is_location_exempt(role):
            return []
        return list(self._lookup(prefix_for_role(role)))

    def allocate(self, role: Optional[str]) -> str:
        """Snapshot and compute in one call. The caller writes the code back."""
        return next_code(role, self.snapshot(role))
