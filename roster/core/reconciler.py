"""Badge counter reconciliation.

Counters are derived state: for each prefix, the highest numeric suffix among
profile badge codes. Reconciliation rebuilds them from the profiles and
persists the result as the new baseline. It repairs drift after the fact; it
does not prevent two requests from allocating the same code.

Modes:
    incremental: per-prefix global maxima; global counters whose prefix no
        longer has any profile are reset to 0 (run after each deletion)
    full: global and per-location maxima, and counters that no longer match
        any profile are reset to 0 (run by the periodic heartbeat)
"""
from __future__ import annotations
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Literal, Optional

from .badges import parse_badge_code
from .exceptions import ReconciliationError, RosterError

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "global"
Mode = Literal["incremental", "full"]


@dataclass
class CounterState:
    """Counter values keyed by ``(scope, prefix)``."""
    mode: str
    counters: dict[tuple[str, str], int] = field(default_factory=dict)

    def value(self, prefix: str, scope: str = GLOBAL_SCOPE) -> int:
        return self.counters.get((scope, prefix), 0)

    def to_dict(self) -> dict:
        grouped: dict[str, dict[str, int]] = defaultdict(dict)
        for (scope, prefix), value in sorted(self.counters.items()):
            grouped[scope][prefix] = value
        return {"mode": self.mode, "counters": dict(grouped)}


def compute_counters(badges: Iterable[tuple[str, Optional[str]]], per_location: bool) -> dict[tuple[str, str], int]:
    """Group badge codes by prefix and keep the maximum suffix.

    Malformed suffixes count as 0, so a prefix that only has malformed or bare
    codes still appears with value 0.
    """
    counters: dict[tuple[str, str], int] = {}
    for code, location_id in badges:
        if not code:
            continue
        prefix, suffix = parse_badge_code(code)
        key = (GLOBAL_SCOPE, prefix)
        counters[key] = max(counters.get(key, 0), suffix)
        if per_location and location_id:
            key = (location_id, prefix)
            counters[key] = max(counters.get(key, 0), suffix)
    return counters


class CounterReconciler:
    """Rebuild badge counters from the authoritative profile badge codes."""

    def __init__(self, profiles, counters):
        """
        Args:
            profiles: ProfileStore (``list_badges``)
            counters: CounterStore (``load``/``upsert``)
        """
        self.profiles = profiles
        self.counters = counters

    def reconcile(self, mode: Mode = "incremental") -> CounterState:
        """Recompute and persist counters. Idempotent.

        Raises:
            ReconciliationError: If reading profiles or writing counters fails
        """
        if mode not in ("incremental", "full"):
            raise ValueError(f"Unknown reconciliation mode: {mode}")

        try:
            computed = compute_counters(self.profiles.list_badges(), per_location=(mode == "full"))
            for key in self.counters.load():
                if mode == "full" or key[0] == GLOBAL_SCOPE:
                    computed.setdefault(key, 0)
            self.counters.upsert(sorted(computed.items()))
        except RosterError as exc:
            logger.error("[reconcile] %s reconciliation failed: %s", mode, exc)
            raise ReconciliationError(f"Counter reconciliation failed: {exc.detail}") from exc

        logger.info("[reconcile] %s reconciliation stored %d counters", mode, len(computed))
        return CounterState(mode=mode, counters=computed)
