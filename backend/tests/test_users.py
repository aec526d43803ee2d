"""
Tests for the authorization gate and the authenticated profile endpoints.
"""
from unittest.mock import AsyncMock, patch

import pytest

from conftest import API, image_file, login, register
from core.errors import NotFound, Unauthorized, UpstreamAssetError, ValidationError
from core.security import verify_password
from schemas.user_schema import ChangePasswordRequest
from services.user_service import change_password, login_user, refresh_access_token, update_account


async def _logged_in(client):
    await register(client)
    return (await login(client)).json()["data"]


@pytest.mark.api
@pytest.mark.auth
class TestAuthorizationGate:

    async def test_no_token(self, client):
        response = await client.get(f"{API}/get-current-user")
        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["message"] == "Unauthorized request"

    async def test_malformed_token(self, client):
        response = await client.get(f"{API}/get-current-user", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid access token"

    async def test_expired_token(self, client, expired_issuer):
        data = await _logged_in(client)
        client.cookies.clear()
        stale = expired_issuer.issue_access(data["user"])
        response = await client.get(f"{API}/get-current-user", headers={"Authorization": f"Bearer {stale}"})
        assert response.status_code == 401
        assert response.json()["message"] == "Access token has expired"

    async def test_refresh_token_is_not_accepted_as_access(self, client):
        data = await _logged_in(client)
        client.cookies.clear()
        response = await client.get(
            f"{API}/get-current-user", headers={"Authorization": f"Bearer {data['refreshToken']}"}
        )
        assert response.status_code == 401

    async def test_cookie_token(self, client):
        await _logged_in(client)
        response = await client.get(f"{API}/get-current-user")
        assert response.status_code == 200
        assert response.json()["data"]["username"] == "alice"

    async def test_bearer_header(self, client):
        data = await _logged_in(client)
        client.cookies.clear()
        response = await client.get(
            f"{API}/get-current-user", headers={"Authorization": f"Bearer {data['accessToken']}"}
        )
        assert response.status_code == 200
        assert response.json()["data"]["id"] == data["user"]["id"]

    async def test_deleted_user(self, client, repo):
        data = await _logged_in(client)
        repo.users.pop(data["user"]["id"])
        response = await client.get(f"{API}/get-current-user")
        assert response.status_code == 401

    async def test_current_user_hides_secrets(self, client):
        await _logged_in(client)
        user = (await client.get(f"{API}/get-current-user")).json()["data"]
        assert set(user) >= {"id", "username", "email", "fullName", "avatar", "coverImage"}
        assert "password" not in user
        assert "refreshToken" not in user


@pytest.mark.api
class TestChangePasswordEndpoint:

    async def test_change_password(self, client, repo):
        data = await _logged_in(client)
        response = await client.post(
            f"{API}/change-password",
            json={"oldPassword": "secret1", "newPassword": "secret2", "confirmPassword": "secret2"},
        )
        assert response.status_code == 200

        stored = await repo.find_by_id(data["user"]["id"], include_secrets=True)
        assert verify_password("secret2", stored["password"])
        client.cookies.clear()
        assert (await login(client, password="secret1")).status_code == 401
        assert (await login(client, password="secret2")).status_code == 200

    @pytest.mark.parametrize("payload,status", [
        ({"oldPassword": "secret1", "newPassword": "secret2"}, 400),
        ({"oldPassword": "secret1", "newPassword": "secret2", "confirmPassword": "other"}, 400),
        ({"oldPassword": "secret1", "newPassword": "secret1", "confirmPassword": "secret1"}, 400),
        ({"oldPassword": "secret1", "newPassword": "b" * 73, "confirmPassword": "b" * 73}, 400),
        ({"oldPassword": "wrong", "newPassword": "secret2", "confirmPassword": "secret2"}, 401),
    ])
    async def test_change_password_rejections(self, client, payload, status):
        await _logged_in(client)
        response = await client.post(f"{API}/change-password", json=payload)
        assert response.status_code == status
        assert response.json()["success"] is False

    async def test_change_password_requires_login(self, client):
        response = await client.post(
            f"{API}/change-password",
            json={"oldPassword": "a", "newPassword": "b", "confirmPassword": "b"},
        )
        assert response.status_code == 401


@pytest.mark.service
class TestChangePasswordService:

    async def test_sessions_survive_password_change(self, client, repo, issuer):
        await register(client)
        session = await login_user("alice", None, "secret1", repo, issuer)
        user_id = session["user"]["id"]

        await change_password(
            user_id,
            ChangePasswordRequest(old_password="secret1", new_password="secret2", confirm_password="secret2"),
            repo,
        )
        rotated = await refresh_access_token(session["refresh_token"], repo, issuer)
        assert rotated["refresh_token"]

    async def test_unknown_user(self, repo):
        with pytest.raises(NotFound):
            await change_password(
                "65f000000000000000000001",
                ChangePasswordRequest(old_password="a", new_password="b", confirm_password="b"),
                repo,
            )

    async def test_wrong_old_password_is_unauthorized(self, client, repo):
        user_id = (await register(client)).json()["data"]["id"]
        with pytest.raises(Unauthorized):
            await change_password(
                user_id,
                ChangePasswordRequest(old_password="nope", new_password="b", confirm_password="b"),
                repo,
            )


@pytest.mark.api
class TestUpdateAccount:

    async def test_update_full_name(self, client):
        await _logged_in(client)
        response = await client.patch(f"{API}/update-account", json={"fullName": "Alice L."})
        assert response.status_code == 200
        user = response.json()["data"]
        assert user["fullName"] == "Alice L."
        assert user["email"] == "alice@x.com"

    async def test_update_email_is_normalized(self, client):
        await _logged_in(client)
        response = await client.patch(f"{API}/update-account", json={"email": "New@X.com"})
        assert response.status_code == 200
        assert response.json()["data"]["email"] == "new@x.com"

    async def test_update_requires_a_field(self, client):
        await _logged_in(client)
        response = await client.patch(f"{API}/update-account", json={})
        assert response.status_code == 400

    async def test_invalid_email(self, client):
        await _logged_in(client)
        response = await client.patch(f"{API}/update-account", json={"email": "nope"})
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    async def test_email_taken_by_another_user(self, client):
        await register(client, username="bob", email="bob@x.com")
        await _logged_in(client)
        response = await client.patch(f"{API}/update-account", json={"email": "bob@x.com"})
        assert response.status_code == 409

    async def test_keeping_own_email_is_allowed(self, repo, client):
        user_id = (await register(client)).json()["data"]["id"]
        updated = await update_account(user_id, "alice@x.com", "Alice", repo)
        assert updated["email"] == "alice@x.com"

    async def test_update_account_service_validation(self, repo):
        with pytest.raises(ValidationError):
            await update_account("65f000000000000000000001", "  ", None, repo)


@pytest.mark.api
class TestImageUpdates:

    async def test_update_avatar(self, client):
        data = await _logged_in(client)
        before = data["user"]["avatar"]
        response = await client.patch(f"{API}/update-user-avatar", files={"avatarImage": image_file("new.png")})
        assert response.status_code == 200
        after = response.json()["data"]["avatar"]
        assert after != before
        assert after.startswith("http://assets.test/uploads/avatars/")

    async def test_update_cover(self, client):
        await _logged_in(client)
        response = await client.patch(f"{API}/update-user-cover", files={"coverImage": image_file("wide.png")})
        assert response.status_code == 200
        assert response.json()["data"]["coverImage"].startswith("http://assets.test/uploads/covers/")

    @pytest.mark.parametrize("path,message", [
        ("update-user-avatar", "Avatar image is missing"),
        ("update-user-cover", "Cover image is missing"),
    ])
    async def test_missing_file(self, client, path, message):
        await _logged_in(client)
        response = await client.patch(f"{API}/{path}")
        assert response.status_code == 400
        assert response.json()["message"] == message

    async def test_upload_failure_keeps_old_avatar(self, client, asset_store, repo):
        data = await _logged_in(client)
        with patch.object(asset_store, "upload", AsyncMock(side_effect=UpstreamAssetError("down"))):
            response = await client.patch(f"{API}/update-user-avatar", files={"avatarImage": image_file()})
        assert response.status_code == 502
        assert response.json()["message"] == "Avatar image upload failed. Retry"
        assert (await repo.find_by_id(data["user"]["id"]))["avatar"] == data["user"]["avatar"]

    async def test_image_update_requires_login(self, client):
        response = await client.patch(f"{API}/update-user-avatar", files={"avatarImage": image_file()})
        assert response.status_code == 401
