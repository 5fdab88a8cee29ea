"""Operator CLI for staff provisioning.

Thin wrapper around roster.core.provisioning_service; every command prints a
JSON document on success and exits 1 with the error message on failure.

Examples:
    python scripts/roster_admin.py create --display-name "Jane Doe" \\
        --email jane@example.com --role trainer --password s3cret --location-id gym-1
    python scripts/roster_admin.py reconcile --full
    python scripts/roster_admin.py invite --role coach --location-id gym-2 --name "Sam"
"""
from __future__ import annotations
import argparse
import json
import logging
import mimetypes
import os
import sys
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from roster import audit
from roster.core.exceptions import RosterError
from roster.core.models import AvatarUpload, CreateAccountRequest, UpdateAccountRequest
from roster.core.provisioning_service import get_provisioning_service


def _avatar_from_path(path: str | None) -> AvatarUpload | None:
    if not path:
        return None
    file_path = Path(path)
    content_type = mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"
    return AvatarUpload(filename=file_path.name, content=file_path.read_bytes(), content_type=content_type)


def _emit(document) -> None:
    print(json.dumps(document, indent=2, sort_keys=True))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Staff account provisioning helper")
    parser.add_argument("--operator", default=os.environ.get("ROSTER_OPERATOR", "automation"),
                        help="Operator identifier for audit logs (default: automation)")
    parser.add_argument("--correlation-id", default="", help="Correlation id for saga logs")
    parser.add_argument("-v", "--verbose", action="store_true")

    sub = parser.add_subparsers(dest="cmd")

    sc = sub.add_parser("create", help="Provision an account and profile")
    sc.add_argument("--display-name", required=True)
    sc.add_argument("--email", required=True)
    sc.add_argument("--role", required=True)
    sc.add_argument("--password", default=os.environ.get("ROSTER_INITIAL_PASSWORD"))
    sc.add_argument("--location-id")
    sc.add_argument("--avatar", help="Path to an image file")

    su = sub.add_parser("update", help="Update supplied fields of an account")
    su.add_argument("--id", required=True)
    su.add_argument("--display-name")
    su.add_argument("--email")
    su.add_argument("--role")
    su.add_argument("--password")

    sd = sub.add_parser("delete", help="Deprovision an account")
    sd.add_argument("--id", required=True)

    sr = sub.add_parser("reconcile", help="Recompute badge counters")
    sr.add_argument("--full", action="store_true", help="Include per-location counters and reset stale rows")

    si = sub.add_parser("invite", help="Issue an invite link")
    si.add_argument("--role", required=True)
    si.add_argument("--location-id")
    si.add_argument("--name")

    sdi = sub.add_parser("decode-invite", help="Decode an invite token")
    sdi.add_argument("token")

    sub.add_parser("verify-audit", help="Verify audit log signatures")

    return parser


def main(argv: list[str] | None = None) -> None:
    """Command-line entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )

    if args.cmd == "verify-audit":
        total, valid = audit.verify_audit_log()
        _emit({"total": total, "valid": valid})
        if total != valid:
            sys.exit(1)
        return

    if args.cmd == "create" and not args.password:
        parser.error("Missing --password (or ROSTER_INITIAL_PASSWORD)")

    service = get_provisioning_service()
    saga_kwargs = {"correlation_id": args.correlation_id, "operator": args.operator}

    try:
        if args.cmd == "create":
            account_id = service.create_account(
                CreateAccountRequest(
                    display_name=args.display_name,
                    email=args.email,
                    role=args.role,
                    password=args.password,
                    location_id=args.location_id,
                    avatar=_avatar_from_path(args.avatar),
                ),
                **saga_kwargs,
            )
            _emit({"account_id": account_id})
        elif args.cmd == "update":
            profile = service.update_account(
                UpdateAccountRequest(
                    id=args.id,
                    display_name=args.display_name,
                    email=args.email,
                    role=args.role,
                    password=args.password,
                ),
                **saga_kwargs,
            )
            _emit({"profile": profile.to_dict()})
        elif args.cmd == "delete":
            _emit(service.delete_account(args.id, **saga_kwargs))
        elif args.cmd == "reconcile":
            state = service.reconcile_counters("full" if args.full else "incremental", operator=args.operator)
            _emit(state.to_dict())
        elif args.cmd == "invite":
            _emit(service.issue_invite(args.role, args.location_id, args.name, operator=args.operator))
        elif args.cmd == "decode-invite":
            _emit(service.decode_invite(args.token))
    except (RosterError, OSError) as e:
        detail = e.detail if isinstance(e, RosterError) else str(e)
        print(f"[{args.cmd}] Error: {detail}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
