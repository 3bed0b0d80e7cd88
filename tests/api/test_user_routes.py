"""
API tests for user profile and health endpoints.
"""

import pytest
from fastapi import status
from httpx import AsyncClient


class TestHealthEndpoints:
    """Tests for /api/health."""

    @pytest.mark.asyncio
    async def test_health(self, test_client: AsyncClient):
        response = await test_client.get("/api/health/")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_ready(self, test_client: AsyncClient):
        response = await test_client.get("/api/health/ready")

        assert response.json() == {"status": "ready", "checks": {"api": "ready", "store": "ready"}}


class TestRegister:
    """Tests for POST /api/users/."""

    @pytest.mark.asyncio
    async def test_register_success(self, test_client: AsyncClient, headers_for):
        response = await test_client.post(
            "/api/users/",
            headers=headers_for("dave"),
            json={"name": "Dave", "handle": "dave", "email": "dave@example.com", "phone": "+1555"},
        )

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["uid"] == "dave"
        assert data["handle"] == "dave"

    @pytest.mark.asyncio
    async def test_register_taken_handle(self, test_client: AsyncClient, headers_for):
        response = await test_client.post(
            "/api/users/",
            headers=headers_for("dave"),
            json={"name": "Dave", "handle": "carol", "email": "dave@example.com", "phone": "+1555"},
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["detail"] == "Handle is already taken."

    @pytest.mark.asyncio
    async def test_register_invalid_handle(self, test_client: AsyncClient, headers_for):
        response = await test_client.post(
            "/api/users/",
            headers=headers_for("dave"),
            json={"name": "Dave", "handle": "no spaces", "email": "dave@example.com", "phone": "+1555"},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    @pytest.mark.asyncio
    async def test_register_requires_token(self, test_client: AsyncClient):
        response = await test_client.post(
            "/api/users/",
            json={"name": "Dave", "handle": "dave", "email": "dave@example.com", "phone": "+1555"},
        )

        assert response.status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN)


class TestProfileEndpoints:
    """Tests for /api/users/me and /api/users/{uid}."""

    @pytest.mark.asyncio
    async def test_get_me(self, test_client: AsyncClient, auth_headers):
        response = await test_client.get("/api/users/me", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["phone"] == "+15550100"

    @pytest.mark.asyncio
    async def test_unregistered_account_rejected(self, test_client: AsyncClient, headers_for):
        response = await test_client.get("/api/users/me", headers=headers_for("nobody"))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_invalid_token(self, test_client: AsyncClient):
        response = await test_client.get("/api/users/me", headers={"Authorization": "Bearer garbage"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_update_me(self, test_client: AsyncClient, auth_headers):
        response = await test_client.patch("/api/users/me", headers=auth_headers, json={"bio": "Curiouser"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["bio"] == "Curiouser"

    @pytest.mark.asyncio
    async def test_update_bio_too_long(self, test_client: AsyncClient, auth_headers):
        response = await test_client.patch("/api/users/me", headers=auth_headers, json={"bio": "x" * 100})

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    @pytest.mark.asyncio
    async def test_other_profile_hides_phone(self, test_client: AsyncClient, auth_headers):
        response = await test_client.get("/api/users/bob", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        assert "phone" not in response.json()

    @pytest.mark.asyncio
    async def test_unknown_profile(self, test_client: AsyncClient, auth_headers):
        response = await test_client.get("/api/users/ghost", headers=auth_headers)

        assert response.status_code == status.HTTP_404_NOT_FOUND

    @pytest.mark.asyncio
    async def test_upload_avatar(self, test_client: AsyncClient, auth_headers, mock_uploader):
        response = await test_client.post(
            "/api/users/me/avatar",
            headers=auth_headers,
            files={"file": ("me.png", b"\x89PNG", "image/png")},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"avatarUrl": "https://i.ibb.co/abc/photo.png"}
        mock_uploader.upload.assert_awaited_once()
