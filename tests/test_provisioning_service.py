"""Tests for the provisioning, mutation and deprovisioning sagas."""
import json
from dataclasses import replace

import pytest

from roster.core.exceptions import (
    AllocationLookupError,
    IdentityProviderError,
    MalformedTokenError,
    NotFoundError,
    PartialFailureCompensated,
    PartialFailureUncompensated,
    StorageError,
    ValidationError,
)
from roster.core.models import AvatarUpload, CreateAccountRequest, Profile, UpdateAccountRequest
from roster.core.provisioning_service import ProvisioningSaga


def _events(audit_file):
    if not audit_file.exists():
        return []
    return [json.loads(line) for line in audit_file.read_text().splitlines() if line.strip()]


def _jane(**overrides):
    fields = dict(
        display_name="Jane Doe",
        email="Jane.Doe@Example.com",
        role="trainer",
        password="s3cret-pw",
        location_id="gym-1",
    )
    fields.update(overrides)
    return CreateAccountRequest(**fields)


@pytest.fixture
def chris(profiles):
    """An existing client profile plus two coaches."""
    profiles.add(Profile("coach-1", "Coach One", "c1@example.com", "coach", "CS-1", "gym-1"))
    profiles.add(Profile("coach-2", "Coach Two", "c2@example.com", "coach", "CS-2", "gym-2"))
    return profiles.add(Profile("acc-9", "Chris", "chris@example.com", "client", "CL-1", "gym-1", 8))


# ─────────────────────────────────────────────────────────────────────────────
# Create
# ─────────────────────────────────────────────────────────────────────────────

def test_create_first_trainer_gets_first_badge(service, accounts, profiles, audit_file):
    account_id = service.create_account(_jane(), operator="admin-1")

    profile = profiles.rows[account_id]
    assert profile.badge_code == "ST-TR-1"
    assert profile.email == "jane.doe@example.com"
    assert profile.location_id == "gym-1"
    assert profile.password_length == len("s3cret-pw")
    assert profile.avatar_url is None
    assert accounts.accounts[account_id].metadata == {"display_name": "Jane Doe", "role": "trainer"}

    event = _events(audit_file)[-1]
    assert event["event_type"] == "provision"
    assert event["operator"] == "admin-1"
    assert event["details"]["badge_code"] == "ST-TR-1"


def test_create_exempt_role_needs_no_location(service, profiles):
    account_id = service.create_account(_jane(role="admin", location_id=None))

    assert profiles.rows[account_id].badge_code == "PTSI"


@pytest.mark.critical
def test_profile_insert_failure_rolls_back_account(service, accounts, profiles, store_down, audit_file):
    profiles.insert_errors.append(store_down)

    with pytest.raises(PartialFailureCompensated) as excinfo:
        service.create_account(_jane())

    error = excinfo.value
    assert error.cause is store_down
    assert error.detail == store_down.detail
    assert error.status == 502
    assert error.stage == "insert_profile"
    assert error.compensation_failures == []
    assert accounts.deleted == ["acc-1"]
    assert accounts.accounts == {}
    assert profiles.rows == {}

    event = _events(audit_file)[-1]
    assert event["event_type"] == "provision_compensated"
    assert event["success"] is False


def test_failed_rollback_still_surfaces_original_error(service, accounts, profiles, store_down):
    profiles.insert_errors.append(store_down)
    accounts.fail_delete = IdentityProviderError("Failed to delete account: timeout")

    with pytest.raises(PartialFailureCompensated) as excinfo:
        service.create_account(_jane())

    assert excinfo.value.detail == store_down.detail
    assert excinfo.value.compensation_failures == ["create_account"]


def test_allocation_lookup_failure_rolls_back_account(service, accounts, profiles):
    profiles.fail_lookup = StorageError("Failed to look up badge codes: timeout")

    with pytest.raises(PartialFailureCompensated) as excinfo:
        service.create_account(_jane())

    assert isinstance(excinfo.value.cause, AllocationLookupError)
    assert excinfo.value.stage == "allocate_badge"
    assert accounts.deleted == ["acc-1"]


def test_account_failure_has_nothing_to_undo(service, accounts, profiles, identity_down):
    accounts.fail_create = identity_down

    with pytest.raises(IdentityProviderError) as excinfo:
        service.create_account(_jane())

    assert excinfo.value is identity_down
    assert accounts.deleted == []
    assert profiles.rows == {}


@pytest.mark.parametrize(
    "overrides,message",
    [
        ({"password": ""}, "Missing required fields: password"),
        ({"display_name": "", "email": ""}, "Missing required fields: display_name, email"),
        ({"location_id": None}, "location_id is required"),
        ({"email": "not-an-email"}, "email format is invalid"),
    ],
)
def test_invalid_input_makes_no_external_calls(service, accounts, overrides, message):
    with pytest.raises(ValidationError, match=message):
        service.create_account(_jane(**overrides))

    assert accounts.accounts == {}


def test_avatar_failure_downgrades_to_no_avatar(service, storage, profiles, upload_down):
    storage.fail_upload = upload_down

    account_id = service.create_account(_jane(avatar=AvatarUpload("me.png", b"\x89PNG", "image/png")))

    assert profiles.rows[account_id].avatar_url is None


def test_avatar_is_stored_under_account_id(service, storage, profiles):
    account_id = service.create_account(_jane(avatar=AvatarUpload("me.png", b"\x89PNG", "image/png")))

    assert storage.objects == {f"{account_id}/me.png": b"\x89PNG"}
    assert profiles.rows[account_id].avatar_url.endswith(f"/avatars/{account_id}/me.png")


def test_badge_conflict_reallocates(service, profiles):
    def concurrent_insert(profile):
        profiles.add(replace(profile, id="acc-other"))
        return StorageError("duplicate key value", conflict=True)

    profiles.insert_errors.append(concurrent_insert)

    account_id = service.create_account(_jane())

    assert profiles.rows["acc-other"].badge_code == "ST-TR-1"
    assert profiles.rows[account_id].badge_code == "ST-TR-2"


def test_badge_conflict_gives_up_after_retries(accounts, profiles, storage):
    saga = ProvisioningSaga(accounts, profiles, storage, allocation_retries=0)
    profiles.insert_errors.append(StorageError("duplicate key value", conflict=True))

    with pytest.raises(PartialFailureCompensated):
        saga.execute(_jane())

    assert accounts.deleted == ["acc-1"]


# ─────────────────────────────────────────────────────────────────────────────
# Update
# ─────────────────────────────────────────────────────────────────────────────

def test_role_change_reallocates_badge_and_refreshes_account_metadata(service, accounts, chris):
    profile = service.update_account(UpdateAccountRequest(id="acc-9", role="coach"))

    assert profile.role == "coach"
    assert profile.badge_code == "CS-3"
    assert profile.location_id == "gym-1"
    assert accounts.updates == [("acc-9", {"email": None, "password": None, "metadata": {"role": "coach"}})]


def test_name_only_change_refreshes_account_metadata(service, accounts, chris, profiles):
    service.update_account(UpdateAccountRequest(id="acc-9", display_name="Chris P"))

    assert accounts.updates == [
        ("acc-9", {"email": None, "password": None, "metadata": {"display_name": "Chris P"}})
    ]
    assert profiles.rows["acc-9"].display_name == "Chris P"


def test_email_change_updates_account_and_profile(service, accounts, chris, audit_file):
    profile = service.update_account(
        UpdateAccountRequest(id="acc-9", email="Chris.New@Example.com", display_name="Chris P")
    )

    assert accounts.updates == [
        ("acc-9", {"email": "chris.new@example.com", "password": None, "metadata": {"display_name": "Chris P"}})
    ]
    assert profile.email == "chris.new@example.com"
    assert profile.display_name == "Chris P"
    assert profile.badge_code == "CL-1"
    assert _events(audit_file)[-1]["details"]["account_updated"] is True


def test_password_change_records_length_only(service, accounts, chris, profiles):
    service.update_account(UpdateAccountRequest(id="acc-9", password="longer-password"))

    assert accounts.passwords["acc-9"] == "longer-password"
    assert profiles.rows["acc-9"].password_length == len("longer-password")


@pytest.mark.critical
def test_profile_failure_after_account_update_is_uncompensated(service, accounts, chris, profiles, audit_file):
    profiles.fail_update = StorageError("Failed to update profile: timeout")

    with pytest.raises(PartialFailureUncompensated) as excinfo:
        service.update_account(UpdateAccountRequest(id="acc-9", email="chris.new@example.com"))

    assert excinfo.value.stage == "update_profile"
    assert excinfo.value.status == 502
    # The account keeps the new email; nothing is rolled back
    assert accounts.accounts["acc-9"].email == "chris.new@example.com"
    assert profiles.rows["acc-9"].email == "chris@example.com"
    assert _events(audit_file)[-1]["event_type"] == "mutate_partial"


def test_lookup_failure_after_role_refresh_is_uncompensated(service, accounts, chris, profiles, audit_file):
    profiles.fail_lookup = StorageError("Failed to look up badge codes: timeout")

    with pytest.raises(PartialFailureUncompensated) as excinfo:
        service.update_account(UpdateAccountRequest(id="acc-9", role="coach"))

    assert excinfo.value.stage == "allocate_badge"
    assert accounts.accounts["acc-9"].metadata == {"role": "coach"}
    assert profiles.rows["acc-9"].role == "client"
    assert _events(audit_file)[-1]["event_type"] == "mutate_partial"


def test_invalid_email_fails_before_any_call(service, accounts, chris):
    with pytest.raises(ValidationError):
        service.update_account(UpdateAccountRequest(id="acc-9", email="not-an-email", role="coach"))

    assert accounts.updates == []


def test_account_update_failure_leaves_profile_untouched(service, accounts, chris, profiles, identity_down):
    accounts.fail_update = identity_down

    with pytest.raises(IdentityProviderError):
        service.update_account(UpdateAccountRequest(id="acc-9", email="chris.new@example.com"))

    assert profiles.rows["acc-9"].email == "chris@example.com"


def test_empty_update_returns_current_profile(service, chris):
    assert service.update_account(UpdateAccountRequest(id="acc-9")) == chris


def test_update_unknown_profile_is_not_found(service):
    with pytest.raises(NotFoundError) as excinfo:
        service.update_account(UpdateAccountRequest(id="ghost"))

    assert excinfo.value.status == 404


def test_update_requires_id(service):
    with pytest.raises(ValidationError):
        service.update_account(UpdateAccountRequest(id="", role="coach"))


# ─────────────────────────────────────────────────────────────────────────────
# Delete
# ─────────────────────────────────────────────────────────────────────────────

def test_delete_removes_both_sides_and_reconciles(service, accounts, profiles, counters, chris, audit_file):
    assert service.delete_account("acc-9") == {"success": True}

    assert accounts.deleted == ["acc-9"]
    assert "acc-9" not in profiles.rows
    assert counters.rows[("global", "CS")] == 2
    assert _events(audit_file)[-1]["details"]["role"] == "client"


@pytest.mark.critical
def test_deleting_last_holder_of_a_prefix_zeroes_its_counter(service, counters, chris):
    service.reconcile_counters("incremental")
    assert counters.rows[("global", "CL")] == 1

    service.delete_account("acc-9")

    assert counters.rows[("global", "CL")] == 0
    assert counters.rows[("global", "CS")] == 2


def test_profile_delete_failure_is_best_effort(service, accounts, profiles, chris):
    profiles.fail_delete = StorageError("Failed to delete profile: timeout")

    assert service.delete_account("acc-9") == {"success": True}
    assert accounts.deleted == ["acc-9"]


def test_reconcile_and_lookup_failures_are_best_effort(service, accounts, profiles, counters, chris):
    profiles.fail_get = StorageError("Failed to fetch profile: timeout")
    counters.fail_upsert = StorageError("Failed to store badge counters: timeout")

    assert service.delete_account("acc-9") == {"success": True}
    assert accounts.deleted == ["acc-9"]


@pytest.mark.critical
def test_account_delete_failure_keeps_profile(service, accounts, profiles, chris, identity_down):
    accounts.fail_delete = identity_down

    with pytest.raises(IdentityProviderError):
        service.delete_account("acc-9")

    assert "acc-9" in profiles.rows


def test_delete_requires_id(service, accounts):
    with pytest.raises(ValidationError, match="id missing"):
        service.delete_account("")

    assert accounts.deleted == []


# ─────────────────────────────────────────────────────────────────────────────
# Invites and reconciliation
# ─────────────────────────────────────────────────────────────────────────────

def test_issue_and_decode_invite(service, audit_file):
    result = service.issue_invite("coach", "gym-2", "Sam", operator="admin-1")

    assert result["link"] == f"https://app.example.com/invite/{result['token']}"
    assert service.decode_invite(result["token"]) == {
        "role": "coach",
        "location_id": "gym-2",
        "name": "Sam",
        "status": "pending",
    }
    event = _events(audit_file)[-1]
    assert event["event_type"] == "invite_issued"
    assert event["details"]["badge_prefix"] == "CS"


def test_decode_invite_reports_ledger_status(service, ledger):
    token = service.issue_invite("admin")["token"]
    ledger.statuses[token] = "accepted"

    assert service.decode_invite(token)["status"] == "accepted"


def test_decode_invite_tolerates_ledger_outage(service, ledger):
    token = service.issue_invite("admin")["token"]
    ledger.fail = StorageError("Failed to look up invite: timeout")

    assert service.decode_invite(token)["status"] is None


def test_decode_invite_rejects_garbage(service):
    with pytest.raises(MalformedTokenError):
        service.decode_invite("%%%")


def test_issue_invite_validates(service):
    with pytest.raises(ValidationError):
        service.issue_invite("trainer", None)


def test_reconcile_counters_is_audited(service, chris, audit_file):
    state = service.reconcile_counters("full", operator="scheduler")

    assert state.value("CL", "gym-1") == 1
    event = _events(audit_file)[-1]
    assert event["event_type"] == "reconcile"
    assert event["subject"] == "badge_counters:full"
