"""Tests for bearer-token authentication."""

import httpx
import pytest
from unittest.mock import AsyncMock

from patrulha.core import auth
from patrulha.core.auth import (
    IdentityClient,
    check_role,
    extract_bearer_token,
    fetch_caller_profile,
)
from patrulha.core.errors import APIException, ErrorCode
from patrulha.models.auth import CallerProfile


def identity_client_with(handler) -> IdentityClient:
    """IdentityClient whose HTTP calls are answered by ``handler``."""
    return IdentityClient(
        base_url="http://identity.test",
        api_key="anon-key",
        transport=httpx.MockTransport(handler),
    )


class TestExtractBearerToken:
    def test_valid_header(self):
        assert extract_bearer_token("Bearer abc.def") == "abc.def"

    @pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer ", "bearer abc"])
    def test_missing_or_malformed(self, header):
        with pytest.raises(APIException) as exc_info:
            extract_bearer_token(header)
        assert exc_info.value.code == ErrorCode.AUTH_REQUIRED
        assert exc_info.value.status_code == 401


class TestIdentityClient:
    """Tests for resolving tokens against the identity provider."""

    @pytest.mark.asyncio
    async def test_valid_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["authorization"] = request.headers["authorization"]
            seen["apikey"] = request.headers["apikey"]
            return httpx.Response(200, json={"id": "user-1", "email": "a@b.c"})

        client = identity_client_with(handler)
        user = await client.get_user("token-1")

        assert user == {"id": "user-1", "email": "a@b.c"}
        assert seen == {
            "path": "/auth/v1/user",
            "authorization": "Bearer token-1",
            "apikey": "anon-key",
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [401, 403])
    async def test_rejected_token(self, status_code):
        client = identity_client_with(lambda request: httpx.Response(status_code))
        with pytest.raises(APIException) as exc_info:
            await client.get_user("expired")
        assert exc_info.value.code == ErrorCode.AUTH_INVALID_TOKEN
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_response_without_user_id(self):
        client = identity_client_with(lambda request: httpx.Response(200, json={}))
        with pytest.raises(APIException) as exc_info:
            await client.get_user("token")
        assert exc_info.value.code == ErrorCode.AUTH_INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_provider_error(self):
        client = identity_client_with(lambda request: httpx.Response(500))
        with pytest.raises(APIException) as exc_info:
            await client.get_user("token")
        assert exc_info.value.code == ErrorCode.IDENTITY_UNAVAILABLE
        assert exc_info.value.status_code == 503
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_provider_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = identity_client_with(handler)
        with pytest.raises(APIException) as exc_info:
            await client.get_user("token")
        assert exc_info.value.code == ErrorCode.IDENTITY_UNAVAILABLE


class TestCallerProfile:
    """Tests for loading and authorizing the caller profile."""

    @pytest.mark.asyncio
    async def test_profile_loaded(self):
        db_conn = AsyncMock()
        db_conn.execute_query.return_value = [
            {"id": "user-1", "full_name": "Sgt. Silva", "role": "admin", "crpm": "4", "batalhao": "2", "cia": None}
        ]
        profile = await fetch_caller_profile(db_conn, {"id": "user-1", "email": "a@b.c"})

        assert profile.id == "user-1"
        assert profile.email == "a@b.c"
        assert profile.crpm == "4"
        assert profile.cia is None
        assert db_conn.execute_query.await_args.args[1] == {"user_id": "user-1"}

    @pytest.mark.asyncio
    async def test_profile_missing(self):
        db_conn = AsyncMock()
        db_conn.execute_query.return_value = []
        with pytest.raises(APIException) as exc_info:
            await fetch_caller_profile(db_conn, {"id": "user-1"})
        assert exc_info.value.code == ErrorCode.PROFILE_NOT_FOUND
        assert exc_info.value.status_code == 404

    def test_any_role_allowed_by_default(self, monkeypatch):
        monkeypatch.setattr(auth.settings, "import_allowed_roles", [])
        check_role(CallerProfile(id="u", role="patrol"))

    def test_role_not_allowed(self, monkeypatch):
        monkeypatch.setattr(auth.settings, "import_allowed_roles", ["admin", "team_leader"])
        check_role(CallerProfile(id="u", role="team_leader"))
        with pytest.raises(APIException) as exc_info:
            check_role(CallerProfile(id="u", role="patrol"))
        assert exc_info.value.code == ErrorCode.AUTH_FORBIDDEN
        assert exc_info.value.status_code == 403
