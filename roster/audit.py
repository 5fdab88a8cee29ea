"""Audit logging for provisioning operations (signed JSONL trail)."""

from __future__ import annotations
import datetime
import hashlib
import hmac
import json
import logging
import os
from pathlib import Path
from typing import Any, Literal

logger = logging.getLogger(__name__)

AUDIT_LOG_DIR = Path(os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"))
AUDIT_LOG_FILE = AUDIT_LOG_DIR / "provisioning-events.jsonl"
_SECRET_PATHS = [
    Path("/run/secrets/audit_log_signing_key"),
    Path(".runtime/secrets/audit_log_signing_key"),
]

EventType = Literal[
    "provision",
    "provision_compensated",
    "mutate",
    "mutate_partial",
    "deprovision",
    "reconcile",
    "invite_issued",
]


def _get_signing_key() -> bytes:
    """Resolve the signing key lazily: env var first, then secret files."""
    key = os.environ.get("AUDIT_LOG_SIGNING_KEY", "").strip()
    if key:
        return key.encode("utf-8")
    for path in _SECRET_PATHS:
        if path.exists():
            try:
                return path.read_text(encoding="utf-8").strip().encode("utf-8")
            except OSError:
                continue
    return b""


def _ensure_audit_dir() -> None:
    """Create audit directory with restricted permissions."""
    AUDIT_LOG_DIR.mkdir(parents=True, exist_ok=True)
    AUDIT_LOG_DIR.chmod(0o700)


def _sign_event(event: dict[str, Any]) -> str:
    """HMAC-SHA256 over the canonical JSON form; empty when no key is configured."""
    signing_key = _get_signing_key()
    if not signing_key:
        return ""
    canonical = json.dumps(event, sort_keys=True, separators=(",", ":"))
    return hmac.new(signing_key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def log_event(
    event_type: EventType,
    subject: str,
    *,
    operator: str = "system",
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """Append a provisioning event to the audit trail.

    Args:
        event_type: Operation (provision, mutate, deprovision, ...)
        subject: Account id or email the operation targeted
        operator: Who performed it (admin account id, "cli", "scheduler")
        details: Extra context (role, badge code, stage trace); never credentials
        success: Whether the operation succeeded
    """
    _ensure_audit_dir()

    event = {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "event_type": event_type,
        "subject": subject,
        "operator": operator,
        "success": success,
        "details": details or {},
    }

    signature = _sign_event(event)
    if signature:
        event["signature"] = signature

    with AUDIT_LOG_FILE.open("a", encoding="utf-8") as f:
        f.write(json.dumps(event, ensure_ascii=False) + "\n")

    AUDIT_LOG_FILE.chmod(0o600)


def safe_log_event(
    event_type: EventType,
    subject: str,
    *,
    operator: str = "system",
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> bool:
    """Same as :func:`log_event` but never raises.

    Audit failures must not turn a completed provisioning step into an error.

    Returns:
        True if the event was written
    """
    try:
        log_event(event_type, subject, operator=operator, details=details, success=success)
        return True
    except Exception as exc:
        logger.warning("[audit] failed to log %s event for %s: %s", event_type, subject, exc)
        return False


def verify_audit_log() -> tuple[int, int]:
    """Verify all signatures in the audit log.

    Returns:
        Tuple of (total_events, valid_signatures)
    """
    if not AUDIT_LOG_FILE.exists():
        return 0, 0

    total = 0
    valid = 0

    with AUDIT_LOG_FILE.open("r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            total += 1
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                continue
            stored_sig = event.pop("signature", "")
            if not stored_sig:
                continue
            if hmac.compare_digest(stored_sig, _sign_event(event)):
                valid += 1

    return total, valid
