"""
Tests for the Firebase Authentication REST provider
"""

from urllib.parse import parse_qs

import httpx
import pytest

from cartsync.auth.firebase import FirebaseAuth, FirebaseUser
from cartsync.errors import IdentityError

from conftest import MockApi, request_json


def sign_in_response(request):
    return httpx.Response(200, json={
        "localId": "uid-1",
        "idToken": "id-token-1",
        "refreshToken": "refresh-1",
        "expiresIn": "3600",
        "email": "ana@example.com",
    })


def refresh_response(request):
    form = parse_qs(request.content.decode())
    assert form["grant_type"] == ["refresh_token"]
    return httpx.Response(200, json={
        "id_token": "id-token-2",
        "refresh_token": "refresh-2",
        "expires_in": "3600",
        "user_id": "uid-1",
    })


@pytest.fixture
def firebase_api():
    api = MockApi()
    api.add("POST", "/v1/accounts:signInWithPassword", sign_in_response)
    api.add("POST", "/v1/token", refresh_response)
    return api


@pytest.fixture
def auth(firebase_api):
    return FirebaseAuth("test-key", client=httpx.AsyncClient(transport=firebase_api.transport()))


class TestFirebaseAuth:
    """Sign-in, sign-out and listeners."""

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            FirebaseAuth("")

    def test_listener_called_immediately(self, auth):
        seen = []
        auth.on_auth_state_changed(seen.append)
        assert seen == [None]

    @pytest.mark.asyncio
    async def test_sign_in_emits_user(self, auth, firebase_api):
        seen = []
        auth.on_auth_state_changed(seen.append)

        user = await auth.sign_in_with_password("ana@example.com", "secret")

        assert user.uid == "uid-1"
        assert auth.current_user is user
        assert seen == [None, user]
        request = firebase_api.requests[0]
        assert request.url.params["key"] == "test-key"
        assert request_json(request)["returnSecureToken"] is True

    @pytest.mark.asyncio
    async def test_sign_in_failure_raises(self):
        api = MockApi()
        api.add("POST", "/v1/accounts:signInWithPassword",
                httpx.Response(400, json={"error": {"message": "INVALID_PASSWORD"}}))
        auth = FirebaseAuth("test-key", client=httpx.AsyncClient(transport=api.transport()))

        with pytest.raises(IdentityError, match="INVALID_PASSWORD"):
            await auth.sign_in_with_password("ana@example.com", "wrong")
        assert auth.current_user is None

    @pytest.mark.asyncio
    async def test_sign_out_emits_none(self, auth):
        seen = []
        await auth.sign_in_with_password("ana@example.com", "secret")
        unsubscribe = auth.on_auth_state_changed(seen.append)

        auth.sign_out()
        unsubscribe()
        auth.sign_out()

        assert auth.current_user is None
        assert seen[-1] is None
        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_restore_session(self, auth):
        user = await auth.restore_session("refresh-1")

        assert user.uid == "uid-1"
        assert await user.get_id_token() == "id-token-2"


class TestFirebaseUser:
    """ID token caching and refresh."""

    @pytest.mark.asyncio
    async def test_cached_token_until_forced(self, auth, firebase_api):
        user = await auth.sign_in_with_password("ana@example.com", "secret")

        assert await user.get_id_token() == "id-token-1"
        assert await user.get_id_token(force_refresh=True) == "id-token-2"
        assert user.refresh_token == "refresh-2"
        assert len(firebase_api.calls("POST", "/v1/token")) == 1

    @pytest.mark.asyncio
    async def test_near_expiry_refreshes(self, auth, firebase_api):
        user = FirebaseUser(auth, "uid-1", "old", "refresh-1", expires_in=60)

        assert user.token_expired is True
        assert await user.get_id_token() == "id-token-2"

    @pytest.mark.asyncio
    async def test_refresh_failure_raises(self):
        api = MockApi()
        api.add("POST", "/v1/token", httpx.Response(400, json={"error": {"message": "TOKEN_EXPIRED"}}))
        auth = FirebaseAuth("test-key", client=httpx.AsyncClient(transport=api.transport()))
        user = FirebaseUser(auth, "uid-1", "old", "refresh-1", expires_in=0)

        with pytest.raises(IdentityError, match="TOKEN_EXPIRED"):
            await user.get_id_token()
