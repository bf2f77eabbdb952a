"""Firebase Authentication handshake over the Identity Toolkit REST API."""

from __future__ import annotations

import logging
from typing import Any, Callable

import httpx

from ..errors import AuthenticationError
from ..models import AuthUser

logger = logging.getLogger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"

AuthCallback = Callable[[AuthUser | None], None]


class FirebaseAuthenticator:
    """Signs in with a custom token when one is injected, else anonymously.

    Listeners registered with :meth:`add_listener` are told about the
    current user straight away and again on every sign-in or sign-out.
    """

    def __init__(
        self,
        api_key: str,
        custom_token: str = "",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._api_key = api_key
        self._custom_token = custom_token
        self._http = http_client
        self._owns_http = http_client is None
        self._timeout = timeout
        self._user: AuthUser | None = None
        self._id_token: str | None = None
        self._listeners: list[AuthCallback] = []

    @property
    def current_user(self) -> AuthUser | None:
        return self._user

    @property
    def id_token(self) -> str | None:
        return self._id_token

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._timeout)
        return self._http

    async def _post(self, method: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = await self._client().post(
                f"{IDENTITY_TOOLKIT_URL}/{method}",
                params={"key": self._api_key},
                json=body,
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise AuthenticationError(f"Firebase {method} failed: {e}") from e
        if not isinstance(data, dict):
            raise AuthenticationError(f"Firebase {method} returned {data!r}")
        return data

    async def sign_in(self) -> AuthUser:
        """Run the sign-in handshake.

        Raises:
            AuthenticationError: If the request fails or the response lacks
                an ID token.
        """
        if self._custom_token:
            data = await self._post(
                "accounts:signInWithCustomToken",
                {"token": self._custom_token, "returnSecureToken": True},
            )
        else:
            data = await self._post("accounts:signUp", {"returnSecureToken": True})

        id_token = data.get("idToken")
        if not id_token:
            raise AuthenticationError("Firebase sign-in returned no idToken")

        uid = data.get("localId")
        display_name = data.get("displayName")
        if not uid:
            # signInWithCustomToken does not echo the uid back.
            lookup = await self._post("accounts:lookup", {"idToken": id_token})
            users = lookup.get("users") or [{}]
            uid = users[0].get("localId")
            display_name = users[0].get("displayName")
        if not uid:
            raise AuthenticationError("Firebase sign-in returned no user id")

        self._id_token = id_token
        self._user = AuthUser(
            uid=uid,
            is_anonymous=not self._custom_token,
            display_name=display_name or None,
            provider="firebase",
        )
        logger.info("Signed in to Firebase as %s", uid)
        self._notify()
        return self._user

    def sign_out(self) -> None:
        self._user = None
        self._id_token = None
        self._notify()

    def add_listener(self, callback: AuthCallback) -> Callable[[], None]:
        self._listeners.append(callback)
        callback(self._user)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback(self._user)
            except Exception:
                logger.exception("Auth listener raised")

    async def aclose(self) -> None:
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None
