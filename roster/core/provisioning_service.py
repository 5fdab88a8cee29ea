"""
Provisioning Service Layer: create, update and delete staff accounts.

Each operation spans two stores that share no transaction: the identity
provider (credentials) and the relational store (business profile). The sagas
below define what happens when one side succeeds and the other fails.

Architecture:
    Admin API (/api/admin/*) ──┐
                               ├──> provisioning_service.py ──> core.gateway ──> backend
    Operator CLI (scripts/)  ──┘

Guarantees:
    - Create: no orphaned account. Any failure after the account exists rolls
      the account back (best-effort) and surfaces the original error.
    - Update: not atomic. The account may be ahead of the profile on failure;
      the caller gets PartialFailureUncompensated.
    - Delete: fail-closed on the account, best-effort afterwards.
    - Badge counters: reconciled after deletions and on the heartbeat; the
      allocation race is tolerated, not prevented.
"""

from __future__ import annotations
import logging
from dataclasses import replace
from functools import lru_cache
from typing import Optional

from roster import audit
from roster.config import AppConfig, load_settings
from roster.core import invites
from roster.core.badges import BadgeAllocator, is_location_exempt, prefix_for_role
from roster.core.exceptions import (
    AllocationLookupError,
    NotFoundError,
    ObjectStoreError,
    PartialFailureCompensated,
    PartialFailureUncompensated,
    RosterError,
    StorageError,
    ValidationError,
)
from roster.core.gateway import (
    AccountService,
    AvatarStorage,
    CounterStore,
    GatewayClient,
    InviteLedger,
    ProfileStore,
)
from roster.core.models import CreateAccountRequest, Profile, UpdateAccountRequest
from roster.core.reconciler import CounterReconciler, CounterState
from roster.core.saga import Saga
from roster.core.validators import (
    require_fields,
    validate_display_name,
    validate_email,
    validate_location,
)

logger = logging.getLogger(__name__)


def _allocator_for(profiles: ProfileStore) -> BadgeAllocator:
    """BadgeAllocator whose lookup failures surface as AllocationLookupError."""
    def lookup(prefix: str) -> list[str]:
        try:
            return profiles.list_badge_codes(prefix)
        except StorageError as exc:
            raise AllocationLookupError(f"Could not look up existing badge codes: {exc.detail}") from exc
    return BadgeAllocator(lookup)


def _unexpected(exc: Exception, saga: Saga) -> RosterError:
    logger.exception("[%s:%s] unexpected error", saga.name, saga.correlation_id)
    return RosterError("Internal server error")


# ─────────────────────────────────────────────────────────────────────────────
# Create
# ─────────────────────────────────────────────────────────────────────────────

class ProvisioningSaga:
    """Account -> badge -> optional avatar -> profile, with rollback of the account."""

    def __init__(
        self,
        accounts: AccountService,
        profiles: ProfileStore,
        storage: AvatarStorage,
        *,
        allocation_retries: int = 3,
    ):
        self.accounts = accounts
        self.profiles = profiles
        self.storage = storage
        self.allocator = _allocator_for(profiles)
        self.allocation_retries = allocation_retries

    @staticmethod
    def validate(request: CreateAccountRequest) -> CreateAccountRequest:
        """Check and normalize input. No external calls happen on this path."""
        require_fields(
            {
                "display_name": request.display_name,
                "email": request.email,
                "role": request.role,
                "password": request.password,
            },
            "display_name", "email", "role", "password",
        )
        role = request.role.strip()
        return replace(
            request,
            display_name=validate_display_name(request.display_name),
            email=validate_email(request.email),
            role=role,
            location_id=validate_location(role, request.location_id),
        )

    def execute(self, request: CreateAccountRequest, *, correlation_id: str = "", operator: str = "system") -> str:
        """Create the account/profile pair.

        Returns:
            The new account id (also the profile id)

        Raises:
            ValidationError: Bad input, nothing was created
            IdentityProviderError: Account creation failed, nothing to undo
            PartialFailureCompensated: A later stage failed and the account
                was rolled back; carries the original error
        """
        request = self.validate(request)
        saga = Saga("provision", correlation_id)

        account = saga.step(
            "create_account",
            lambda: self.accounts.create_account(request.email, request.password, request.display_name, request.role),
            compensation=lambda created: self.accounts.delete_account(created.id),
        )

        try:
            badge_code = saga.step("allocate_badge", lambda: self.allocator.allocate(request.role))

            avatar_url: Optional[str] = None
            if request.avatar is not None:
                avatar_url = saga.tolerate(
                    "upload_avatar",
                    lambda: self.storage.upload(account.id, request.avatar),
                    errors=(ObjectStoreError,),
                )

            profile = Profile(
                id=account.id,
                display_name=request.display_name,
                email=request.email,
                role=request.role,
                badge_code=badge_code,
                location_id=request.location_id,
                password_length=len(request.password),
                avatar_url=avatar_url,
            )
            profile = self._insert_profile(saga, profile)
        except Exception as exc:
            cause = exc if isinstance(exc, RosterError) else _unexpected(exc, saga)
            stage = saga.last_failure()
            failures = saga.compensate()
            audit.safe_log_event(
                "provision_compensated",
                account.id,
                operator=operator,
                details={
                    "role": request.role,
                    "failed_stage": stage,
                    "compensation_failures": failures,
                    "correlation_id": saga.correlation_id,
                    "stages": saga.trace(),
                },
                success=False,
            )
            raise PartialFailureCompensated(cause, stage, failures) from exc

        audit.safe_log_event(
            "provision",
            account.id,
            operator=operator,
            details={
                "role": profile.role,
                "badge_code": profile.badge_code,
                "location_id": profile.location_id,
                "avatar": profile.avatar_url is not None,
                "correlation_id": saga.correlation_id,
            },
        )
        return account.id

    def _insert_profile(self, saga: Saga, profile: Profile) -> Profile:
        """Insert, re-allocating the badge when a concurrent request took it."""
        attempt = 0
        while True:
            try:
                return saga.step("insert_profile", lambda: self.profiles.insert(profile))
            except StorageError as exc:
                if not exc.conflict or is_location_exempt(profile.role) or attempt >= self.allocation_retries:
                    raise
                attempt += 1
                logger.warning(
                    "[%s:%s] badge %s already taken, re-allocating (attempt %d/%d)",
                    saga.name, saga.correlation_id, profile.badge_code, attempt, self.allocation_retries,
                )
                badge_code = saga.step("allocate_badge", lambda: self.allocator.allocate(profile.role))
                profile = replace(profile, badge_code=badge_code)


# ─────────────────────────────────────────────────────────────────────────────
# Update
# ─────────────────────────────────────────────────────────────────────────────

class MutationSaga:
    """Account fields -> profile patch (with badge re-allocation on role change).

    No compensation is registered: the previous password is unknown, so the
    account side cannot be restored faithfully. A failure after the account
    changed is reported as PartialFailureUncompensated.
    """

    def __init__(self, accounts: AccountService, profiles: ProfileStore):
        self.accounts = accounts
        self.profiles = profiles
        self.allocator = _allocator_for(profiles)

    def execute(self, request: UpdateAccountRequest, *, correlation_id: str = "", operator: str = "system") -> Profile:
        """Apply only the supplied fields and return the updated profile."""
        if not request.id:
            raise ValidationError("Missing id")
        email = validate_email(request.email) if request.email else None
        display_name = validate_display_name(request.display_name) if request.display_name else None
        role = request.role.strip() if request.role and request.role.strip() else None
        password = request.password or None

        saga = Saga("mutate", correlation_id)

        metadata = {key: value for key, value in (("display_name", display_name), ("role", role)) if value}
        if email or password or metadata:
            saga.step(
                "update_account",
                lambda: self.accounts.update_account(request.id, email=email, password=password, metadata=metadata or None),
            )

        patch: dict = {}
        if display_name:
            patch["display_name"] = display_name
        if email:
            patch["email"] = email
        if password:
            patch["password_length"] = len(password)

        try:
            if role:
                patch["role"] = role
                patch["badge_code"] = saga.step("allocate_badge", lambda: self.allocator.allocate(role))
            if patch:
                profile = saga.step("update_profile", lambda: self.profiles.update(request.id, patch))
            else:
                profile = saga.step("fetch_profile", lambda: self.profiles.get(request.id))
                if profile is None:
                    raise NotFoundError(f"Profile '{request.id}' not found")
        except Exception as exc:
            cause = exc if isinstance(exc, RosterError) else _unexpected(exc, saga)
            if not saga.completed("update_account"):
                if cause is exc:
                    raise
                raise cause from exc
            stage = saga.last_failure() or "update_profile"
            logger.error(
                "[%s:%s] account %s updated but profile was not: %s",
                saga.name, saga.correlation_id, request.id, cause.detail,
            )
            audit.safe_log_event(
                "mutate_partial",
                request.id,
                operator=operator,
                details={"fields": sorted(patch), "failed_stage": stage, "correlation_id": saga.correlation_id},
                success=False,
            )
            raise PartialFailureUncompensated(cause, stage) from exc

        audit.safe_log_event(
            "mutate",
            request.id,
            operator=operator,
            details={
                "fields": sorted(patch),
                "account_updated": saga.completed("update_account"),
                "badge_code": patch.get("badge_code"),
                "correlation_id": saga.correlation_id,
            },
        )
        return profile


# ─────────────────────────────────────────────────────────────────────────────
# Delete
# ─────────────────────────────────────────────────────────────────────────────

class DeprovisioningSaga:
    """Account deletion is the only fatal stage; everything after is best-effort."""

    def __init__(self, accounts: AccountService, profiles: ProfileStore, reconciler: CounterReconciler):
        self.accounts = accounts
        self.profiles = profiles
        self.reconciler = reconciler

    def execute(self, account_id: str, *, correlation_id: str = "", operator: str = "system") -> dict:
        """Delete the account and profile, then reconcile badge counters.

        Raises:
            ValidationError: Missing id
            IdentityProviderError: Account deletion failed; profile untouched
        """
        if not account_id:
            raise ValidationError("id missing")

        saga = Saga("deprovision", correlation_id)

        profile = saga.tolerate("lookup_profile", lambda: self.profiles.get(account_id), errors=(RosterError,))
        if profile is not None:
            logger.info("[%s:%s] removing %s role=%s location=%s badge=%s",
                        saga.name, saga.correlation_id, account_id, profile.role, profile.location_id, profile.badge_code)
        else:
            logger.warning("[%s:%s] no profile found for %s", saga.name, saga.correlation_id, account_id)

        saga.step("delete_account", lambda: self.accounts.delete_account(account_id))
        saga.tolerate("delete_profile", lambda: self.profiles.delete(account_id), errors=(RosterError,))
        saga.tolerate("reconcile", lambda: self.reconciler.reconcile("incremental"), errors=(RosterError,))

        audit.safe_log_event(
            "deprovision",
            account_id,
            operator=operator,
            details={
                "role": profile.role if profile else None,
                "badge_code": profile.badge_code if profile else None,
                "correlation_id": saga.correlation_id,
                "stages": saga.trace(),
            },
        )
        return {"success": True}


# ─────────────────────────────────────────────────────────────────────────────
# Facade
# ─────────────────────────────────────────────────────────────────────────────

class ProvisioningService:
    """Entry points used by the HTTP layer and the operator CLI."""

    def __init__(
        self,
        accounts: AccountService,
        profiles: ProfileStore,
        storage: AvatarStorage,
        counters: CounterStore,
        ledger: InviteLedger,
        *,
        allocation_retries: int = 3,
        base_url: str = "http://localhost:3000",
    ):
        self.reconciler = CounterReconciler(profiles, counters)
        self.provisioning = ProvisioningSaga(accounts, profiles, storage, allocation_retries=allocation_retries)
        self.mutation = MutationSaga(accounts, profiles)
        self.deprovisioning = DeprovisioningSaga(accounts, profiles, self.reconciler)
        self.ledger = ledger
        self.base_url = base_url

    @classmethod
    def from_config(cls, cfg: AppConfig) -> "ProvisioningService":
        client = GatewayClient(cfg.supabase_url, cfg.service_role_key, timeout=cfg.request_timeout)
        return cls(
            AccountService(client),
            ProfileStore(client),
            AvatarStorage(client, cfg.avatar_bucket),
            CounterStore(client),
            InviteLedger(client),
            allocation_retries=cfg.badge_allocation_retries,
            base_url=cfg.app_base_url,
        )

    def create_account(self, request: CreateAccountRequest, **kwargs) -> str:
        return self.provisioning.execute(request, **kwargs)

    def update_account(self, request: UpdateAccountRequest, **kwargs) -> Profile:
        return self.mutation.execute(request, **kwargs)

    def delete_account(self, account_id: str, **kwargs) -> dict:
        return self.deprovisioning.execute(account_id, **kwargs)

    def reconcile_counters(self, mode: str = "full", *, operator: str = "scheduler") -> CounterState:
        """Full reconciliation trigger (heartbeat / cron)."""
        try:
            state = self.reconciler.reconcile(mode)
        except RosterError:
            audit.safe_log_event("reconcile", _reconcile_subject(mode), operator=operator, success=False)
            raise
        audit.safe_log_event("reconcile", _reconcile_subject(mode), operator=operator,
                             details={"counters": len(state.counters)})
        return state

    def issue_invite(self, role: Optional[str], location_id: Optional[str] = None, name: Optional[str] = None,
                     *, operator: str = "system") -> dict:
        """Encode an invite and build its onboarding link."""
        payload = invites.issue(role, location_id, name)
        token = invites.encode(payload)
        audit.safe_log_event(
            "invite_issued",
            payload.role,
            operator=operator,
            details={"location_id": payload.location_id, "badge_prefix": prefix_for_role(payload.role)},
        )
        return {"token": token, "link": invites.build_invite_link(self.base_url, token)}

    def decode_invite(self, token: str) -> dict:
        """Decode a token and attach the ledger status.

        ``status`` is ``pending`` for tokens the ledger has never seen and
        ``None`` when the ledger could not be reached.
        """
        payload = invites.decode(token)
        try:
            status: Optional[str] = self.ledger.status_for(token)
        except StorageError as exc:
            logger.warning("[invites] status lookup failed: %s", exc.detail)
            status = None
        return {
            "role": payload.role,
            "location_id": payload.location_id,
            "name": payload.name,
            "status": status,
        }


def _reconcile_subject(mode: str) -> str:
    """Audit subject for reconciliation events."""
    return f"badge_counters:{mode}"


@lru_cache(maxsize=1)
def get_provisioning_service() -> ProvisioningService:
    """Process-wide service built from environment settings."""
    return ProvisioningService.from_config(load_settings())
