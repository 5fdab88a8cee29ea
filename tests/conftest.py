"""Pytest shared fixtures: in-memory backend fakes, Flask client, network guard."""
import os
import pathlib
import sys
from dataclasses import replace

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Configure test environment BEFORE any app imports
os.environ.setdefault("DEMO_MODE", "true")

import pytest
import requests

from roster import audit
from roster.core.exceptions import IdentityProviderError, NotFoundError, ObjectStoreError, StorageError
from roster.core.models import Account
from roster.core.provisioning_service import ProvisioningService


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch, request):
    """
    Prevent unit tests from hitting the hosted backend.

    Integration tests are explicitly marked with @pytest.mark.integration and
    are allowed to perform real HTTP calls by skipping this fixture.
    """
    if request.node.get_closest_marker("integration"):
        return

    def _refuse(method, url, *args, **kwargs):
        raise RuntimeError(f"Unexpected HTTP {method} in unit test: {url}")

    monkeypatch.setattr(requests, "request", _refuse)


@pytest.fixture(autouse=True)
def audit_file(monkeypatch, tmp_path):
    """Keep audit events out of the working tree."""
    audit_dir = tmp_path / "audit"
    monkeypatch.setattr(audit, "AUDIT_LOG_DIR", audit_dir)
    monkeypatch.setattr(audit, "AUDIT_LOG_FILE", audit_dir / "provisioning-events.jsonl")
    monkeypatch.setenv("AUDIT_LOG_SIGNING_KEY", "test-signing-key-for-audit-trail")
    return audit_dir / "provisioning-events.jsonl"


# ─────────────────────────────────────────────────────────────────────────────
# In-memory backend
# ─────────────────────────────────────────────────────────────────────────────
class FakeAccounts:
    """AccountService stand-in. Set ``fail_*`` to an exception to inject failures."""

    def __init__(self):
        self.accounts: dict[str, Account] = {}
        self.passwords: dict[str, str] = {}
        self.updates: list[tuple[str, dict]] = []
        self.deleted: list[str] = []
        self.fail_create = None
        self.fail_update = None
        self.fail_delete = None
        self._next_id = 1

    def create_account(self, email, password, display_name, role):
        if self.fail_create:
            raise self.fail_create
        account = Account(
            id=f"acc-{self._next_id}",
            email=email,
            metadata={"display_name": display_name, "role": role},
            confirmed=True,
        )
        self._next_id += 1
        self.accounts[account.id] = account
        self.passwords[account.id] = password
        return account

    def update_account(self, account_id, *, email=None, password=None, metadata=None):
        if self.fail_update:
            raise self.fail_update
        self.updates.append((account_id, {"email": email, "password": password, "metadata": metadata}))
        account = self.accounts.get(account_id) or Account(id=account_id, email=email or "")
        if email:
            account.email = email
        if password:
            self.passwords[account_id] = password
        if metadata:
            account.metadata.update(metadata)
        self.accounts[account_id] = account
        return account

    def delete_account(self, account_id):
        if self.fail_delete:
            raise self.fail_delete
        self.accounts.pop(account_id, None)
        self.deleted.append(account_id)


class FakeProfiles:
    """ProfileStore stand-in keyed by profile id.

    ``insert_errors`` is a queue: each insert pops one entry and, when it is a
    callable, calls it with the profile before raising what it returns.
    """

    def __init__(self):
        self.rows: dict = {}
        self.insert_errors: list = []
        self.fail_lookup = None
        self.fail_list = None
        self.fail_update = None
        self.fail_delete = None
        self.fail_get = None

    def add(self, profile):
        self.rows[profile.id] = profile
        return profile

    def list_badge_codes(self, prefix):
        if self.fail_lookup:
            raise self.fail_lookup
        return [p.badge_code for p in self.rows.values() if p.badge_code.startswith(f"{prefix}-")]

    def list_badges(self):
        if self.fail_list:
            raise self.fail_list
        return [(p.badge_code, p.location_id) for p in self.rows.values()]

    def get(self, profile_id):
        if self.fail_get:
            raise self.fail_get
        return self.rows.get(profile_id)

    def insert(self, profile):
        if self.insert_errors:
            error = self.insert_errors.pop(0)
            if callable(error):
                error = error(profile)
            raise error
        self.rows[profile.id] = profile
        return profile

    def update(self, profile_id, patch):
        if self.fail_update:
            raise self.fail_update
        if profile_id not in self.rows:
            raise NotFoundError(f"Profile '{profile_id}' not found")
        self.rows[profile_id] = replace(self.rows[profile_id], **patch)
        return self.rows[profile_id]

    def delete(self, profile_id):
        if self.fail_delete:
            raise self.fail_delete
        self.rows.pop(profile_id, None)


class FakeStorage:
    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.fail_upload = None

    def upload(self, account_id, avatar):
        if self.fail_upload:
            raise self.fail_upload
        path = f"{account_id}/{avatar.filename}"
        self.objects[path] = avatar.content
        return f"http://backend.test/storage/v1/object/public/avatars/{path}"


class FakeCounters:
    def __init__(self):
        self.rows: dict[tuple[str, str], int] = {}
        self.fail_upsert = None
        self.upserts = 0

    def load(self):
        return dict(self.rows)

    def upsert(self, counters):
        if self.fail_upsert:
            raise self.fail_upsert
        self.upserts += 1
        for key, value in counters:
            self.rows[key] = value


class FakeLedger:
    def __init__(self):
        self.statuses: dict[str, str] = {}
        self.fail = None

    def status_for(self, token):
        if self.fail:
            raise self.fail
        return self.statuses.get(token, "pending")


@pytest.fixture
def accounts():
    return FakeAccounts()


@pytest.fixture
def profiles():
    return FakeProfiles()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def counters():
    return FakeCounters()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def service(accounts, profiles, storage, counters, ledger):
    return ProvisioningService(
        accounts, profiles, storage, counters, ledger,
        allocation_retries=3,
        base_url="https://app.example.com",
    )


@pytest.fixture
def identity_down():
    return IdentityProviderError("Failed to create account: upstream unavailable")


@pytest.fixture
def store_down():
    return StorageError("Failed to insert profile: connection reset")


@pytest.fixture
def upload_down():
    return ObjectStoreError("Failed to upload avatar: bucket missing")


# ─────────────────────────────────────────────────────────────────────────────
# Flask Test Client
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture
def app(service):
    """Application wired to the in-memory backend."""
    from roster.flask_app import create_app

    flask_app = create_app(service)
    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture
def client(app):
    """Flask test client with bearer-token checks bypassed."""
    app.config["SKIP_AUTH_FOR_TESTS"] = True
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture
def auth_client(app):
    """Flask test client that enforces bearer tokens."""
    with app.test_client() as test_client:
        yield test_client
