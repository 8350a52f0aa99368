import dataclasses
from datetime import timedelta
from types import SimpleNamespace

import pytest
from googleapiclient.errors import HttpError

from afina.access_control import google_drive_api
from afina.access_control.service import grant_access, revoke_access


class FakeRequest:
    def __init__(self, result=None, error=None) -> None:
        self.result = result
        self.error = error

    def execute(self):
        if self.error is not None:
            raise self.error
        return self.result


class FakePermissions:
    def __init__(self, existing=(), create_error=None) -> None:
        self.existing = list(existing)
        self.create_error = create_error
        self.created = []
        self.deleted = []

    def create(self, fileId, body, **kwargs):
        self.created.append((fileId, body))
        return FakeRequest({"id": "new"}, error=self.create_error)

    def list(self, fileId, fields, pageToken=None, **kwargs):
        return FakeRequest({"permissions": self.existing})

    def delete(self, fileId, permissionId, **kwargs):
        self.deleted.append(permissionId)
        return FakeRequest({})


class FakeDrive:
    def __init__(self, permissions: FakePermissions) -> None:
        self._permissions = permissions

    def permissions(self):
        return self._permissions


def _http_error(status: int, message: str) -> HttpError:
    content = ('{"error": {"message": "%s"}}' % message).encode()
    return HttpError(SimpleNamespace(status=status, reason=message), content)


@pytest.fixture
def drive(monkeypatch):
    configured = dataclasses.replace(
        google_drive_api.settings,
        google_drive_folder_id="folder-1",
        google_service_account_json='{"type": "service_account"}',
    )
    monkeypatch.setattr(google_drive_api, "settings", configured)
    permissions = FakePermissions()
    monkeypatch.setattr(
        google_drive_api, "_drive_service", lambda: FakeDrive(permissions)
    )
    return permissions


@pytest.mark.asyncio
async def test_drive_grant_creates_reader_permission(drive):
    assert await google_drive_api.grant_access(" Member@Example.com ") is True
    assert drive.created == [
        (
            "folder-1",
            {"role": "reader", "type": "user", "emailAddress": "member@example.com"},
        )
    ]


@pytest.mark.asyncio
async def test_drive_grant_treats_existing_permission_as_granted(drive):
    drive.create_error = _http_error(409, "Permission already exists")

    assert await google_drive_api.grant_access("member@example.com") is True


@pytest.mark.asyncio
async def test_drive_grant_reports_api_failure(drive):
    drive.create_error = _http_error(403, "Insufficient permissions")

    assert await google_drive_api.grant_access("member@example.com") is False


@pytest.mark.asyncio
async def test_drive_revoke_deletes_matching_permission(drive):
    drive.existing = [
        {"id": "p-owner", "emailAddress": "owner@example.com", "role": "owner"},
        {"id": "p-member", "emailAddress": "Member@Example.com", "role": "reader"},
    ]

    assert await google_drive_api.revoke_access("member@example.com") is True
    assert drive.deleted == ["p-member"]


@pytest.mark.asyncio
async def test_drive_revoke_without_permission_counts_as_revoked(drive):
    assert await google_drive_api.revoke_access("member@example.com") is True
    assert drive.deleted == []


@pytest.mark.asyncio
async def test_drive_calls_skipped_without_configuration(monkeypatch):
    def _unexpected():
        raise AssertionError("Drive API must not be called")

    monkeypatch.setattr(google_drive_api, "_drive_service", _unexpected)

    assert await google_drive_api.grant_access("member@example.com") is False
    assert await google_drive_api.revoke_access("member@example.com") is False


@pytest.mark.asyncio
async def test_service_grants_and_revokes_drive_access(
    now, make_user, make_subscription, monkeypatch
):
    calls = []

    async def _grant(email):
        calls.append(("grant", email))
        return True

    async def _revoke(email):
        calls.append(("revoke", email))
        return True

    monkeypatch.setattr(google_drive_api, "grant_access", _grant)
    monkeypatch.setattr(google_drive_api, "revoke_access", _revoke)
    user = await make_user(google_drive_email="drive@example.com")
    subscription = await make_subscription(user, end_date=now + timedelta(days=30))

    granted = await grant_access(subscription, user)
    revoked = await revoke_access(subscription, user)

    assert granted["google_drive"] is True
    assert revoked["google_drive"] is True
    assert subscription.google_drive_access_granted is False
    assert calls == [("grant", "drive@example.com"), ("revoke", "drive@example.com")]
