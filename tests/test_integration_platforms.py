"""HTTP tests for the profile platform endpoints under /api/users/platforms."""

import uuid

import pytest
from fastapi.testclient import TestClient

from conftest import ALLOWED_REDIRECT, StubProvider
from sessionkit import app as app_module
from sessionkit.service.runtime import get_runtime
from sessionkit.storage.models import ProviderProfile

INSTAGRAM = {"platformType": "instagram", "accountUrl": "https://instagram.com/tester"}


@pytest.fixture
def client():
    return TestClient(app_module.app)


@pytest.fixture
def provider():
    stub = StubProvider("kakao")
    get_runtime().identity.providers["kakao"] = stub
    return stub


def _sign_in(client, provider) -> dict:
    code = f"code-{uuid.uuid4().hex}"
    provider.register(code, ProviderProfile(provider_uid=uuid.uuid4().hex))
    response = client.post(
        "/api/auth/kakao",
        json={"authorizationCode": code, "redirectUri": ALLOWED_REDIRECT},
    )
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['data']['access_token']}"}


@pytest.fixture
def owner(client, provider):
    return _sign_in(client, provider)


@pytest.fixture
def stranger(client, provider):
    return _sign_in(client, provider)


def _add(client, headers, body=INSTAGRAM):
    return client.post("/api/users/platforms", json=body, headers=headers)


class TestPlatformCrud:
    def test_add_and_list(self, client, owner):
        created = _add(client, owner, {**INSTAGRAM, "accountName": "tester"})

        assert created.status_code == 201
        data = created.json()["data"]
        assert data["platform_type"] == "instagram"
        assert data["account_name"] == "tester"
        assert data["verified"] is False

        listed = client.get("/api/users/platforms", headers=owner).json()["data"]
        assert [p["id"] for p in listed] == [data["id"]]

    def test_client_cannot_mark_verified(self, client, owner):
        created = _add(client, owner, {**INSTAGRAM, "verified": True}).json()["data"]
        assert created["verified"] is False

        updated = client.put(
            f"/api/users/platforms/{created['id']}",
            json={**INSTAGRAM, "accountName": "renamed", "verified": True},
            headers=owner,
        )

        assert updated.status_code == 200
        assert updated.json()["data"]["account_name"] == "renamed"
        assert updated.json()["data"]["verified"] is False

    def test_update_keeps_platform_type(self, client, owner):
        created = _add(client, owner).json()["data"]

        updated = client.put(
            f"/api/users/platforms/{created['id']}",
            json={"platformType": "youtube", "accountUrl": "https://instagram.com/other"},
            headers=owner,
        ).json()["data"]

        assert updated["platform_type"] == "instagram"
        assert updated["account_url"] == "https://instagram.com/other"

    def test_duplicate_is_validation_error(self, client, owner):
        _add(client, owner)

        response = _add(client, owner)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"

    def test_delete_then_missing(self, client, owner):
        created = _add(client, owner).json()["data"]
        path = f"/api/users/platforms/{created['id']}"

        deleted = client.delete(path, headers=owner)
        assert deleted.status_code == 200
        assert deleted.json()["data"]["deleted"] is True

        missing = client.get(path, headers=owner)
        assert missing.status_code == 404
        assert missing.json()["error"]["code"] == "not_found"
        assert client.delete(path, headers=owner).status_code == 404


class TestPlatformAccess:
    def test_requires_bearer_token(self, client):
        response = client.get("/api/users/platforms")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"

    def test_add_requires_bearer_token(self, client):
        assert _add(client, {}).status_code == 401

    def test_other_users_platform_is_not_found(self, client, owner, stranger):
        created = _add(client, owner).json()["data"]
        path = f"/api/users/platforms/{created['id']}"

        assert client.get(path, headers=stranger).status_code == 404
        assert client.put(path, json=INSTAGRAM, headers=stranger).status_code == 404
        assert client.delete(path, headers=stranger).status_code == 404
        assert client.get("/api/users/platforms", headers=stranger).json()["data"] == []
        assert client.get(path, headers=owner).status_code == 200

    def test_logged_out_token_is_rejected(self, client, owner):
        client.post("/api/auth/logout", headers=owner)

        assert client.get("/api/users/platforms", headers=owner).status_code == 401

    def test_empty_account_url_rejected(self, client, owner):
        response = _add(client, owner, {"platformType": "instagram", "accountUrl": ""})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "validation_error"
