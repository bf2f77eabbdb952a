"""Tests for the Firebase sign-in handshake."""

import json

import httpx
import pytest

from tarubaskibas.errors import AuthenticationError
from tarubaskibas.storage.auth import FirebaseAuthenticator


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_anonymous_sign_in():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"idToken": "tok", "localId": "anon-1"})

    async with _client(handler) as http:
        auth = FirebaseAuthenticator("key-1", http_client=http)
        user = await auth.sign_in()

    assert user.uid == "anon-1"
    assert user.is_anonymous is True
    assert auth.id_token == "tok"
    assert seen[0].url.path.endswith("accounts:signUp")
    assert seen[0].url.params["key"] == "key-1"


@pytest.mark.asyncio
async def test_custom_token_sign_in_looks_up_user():
    paths = []

    def handler(request):
        paths.append(request.url.path)
        if request.url.path.endswith("accounts:signInWithCustomToken"):
            assert json.loads(request.content)["token"] == "custom"
            return httpx.Response(200, json={"idToken": "tok"})
        return httpx.Response(
            200, json={"users": [{"localId": "user-9", "displayName": "Ana"}]}
        )

    async with _client(handler) as http:
        auth = FirebaseAuthenticator("key-1", custom_token="custom", http_client=http)
        user = await auth.sign_in()

    assert user.uid == "user-9"
    assert user.display_name == "Ana"
    assert user.is_anonymous is False
    assert paths[-1].endswith("accounts:lookup")


@pytest.mark.asyncio
async def test_http_error_raises():
    def handler(request):
        return httpx.Response(400, json={"error": {"message": "API_KEY_INVALID"}})

    async with _client(handler) as http:
        auth = FirebaseAuthenticator("bad", http_client=http)
        with pytest.raises(AuthenticationError):
            await auth.sign_in()
    assert auth.current_user is None


@pytest.mark.asyncio
async def test_missing_id_token_raises():
    def handler(request):
        return httpx.Response(200, json={"localId": "anon-1"})

    async with _client(handler) as http:
        auth = FirebaseAuthenticator("key-1", http_client=http)
        with pytest.raises(AuthenticationError, match="idToken"):
            await auth.sign_in()


@pytest.mark.asyncio
async def test_listeners_follow_sign_in_and_out():
    def handler(request):
        return httpx.Response(200, json={"idToken": "tok", "localId": "anon-1"})

    received = []
    async with _client(handler) as http:
        auth = FirebaseAuthenticator("key-1", http_client=http)
        remove = auth.add_listener(received.append)
        await auth.sign_in()
        auth.sign_out()
        remove()
        await auth.sign_in()

    assert [u.uid if u else None for u in received] == [None, "anon-1", None]
