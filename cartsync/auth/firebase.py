"""
Firebase Authentication over REST.

The Firebase client SDKs are not available for Python apps, so sign-in and
token refresh go straight to the Identity Toolkit and Secure Token APIs.
"""

import time
from typing import Callable, Optional

import httpx

from cartsync import config
from cartsync.errors import ERROR_NOT_AUTHENTICATED, ERROR_TOKEN_REFRESH, IdentityError
from cartsync.logging import get_logger, sanitize_id_for_logging

from .identity import AuthStateCallback, AuthStateListeners

logger = get_logger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
SECURE_TOKEN_URL = "https://securetoken.googleapis.com/v1/token"

# Refresh this many seconds before the token actually expires
TOKEN_EXPIRY_MARGIN = 300


def _error_message(response: httpx.Response) -> str:
    """Firebase error code (e.g. INVALID_PASSWORD) from an error response."""
    try:
        return response.json().get("error", {}).get("message", f"HTTP {response.status_code}")
    except ValueError:
        return f"HTTP {response.status_code}"


class FirebaseUser:
    """Signed-in Firebase user holding an ID token and its refresh token."""

    def __init__(
        self,
        auth: "FirebaseAuth",
        uid: str,
        id_token: str,
        refresh_token: str,
        expires_in: float,
        email: Optional[str] = None,
    ):
        self._auth = auth
        self.uid = uid
        self.email = email
        self.refresh_token = refresh_token
        self._id_token = id_token
        self._expires_at = time.time() + float(expires_in)

    @property
    def token_expired(self) -> bool:
        return time.time() >= self._expires_at - TOKEN_EXPIRY_MARGIN

    async def get_id_token(self, force_refresh: bool = False) -> str:
        """Cached ID token unless forced or close to expiry."""
        if force_refresh or self.token_expired:
            data = await self._auth.exchange_refresh_token(self.refresh_token)
            self._id_token = data["id_token"]
            self.refresh_token = data.get("refresh_token", self.refresh_token)
            self._expires_at = time.time() + float(data.get("expires_in", 3600))
            logger.debug(f"ID token refreshed for {sanitize_id_for_logging(self.uid)}")
        return self._id_token


class FirebaseAuth:
    """
    Identity provider backed by Firebase Authentication.

    Usage:
        auth = FirebaseAuth(api_key)
        unsubscribe = auth.on_auth_state_changed(lambda user: ...)
        await auth.sign_in_with_password("user@example.com", "secret")
    """

    def __init__(self, api_key: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key if api_key is not None else config.FIREBASE_API_KEY
        if not self.api_key:
            raise ValueError("FIREBASE_API_KEY must be set")
        self._client = client
        self._owns_client = client is None
        self._current_user: Optional[FirebaseUser] = None
        self._listeners = AuthStateListeners()

    @property
    def client(self) -> httpx.AsyncClient:
        """HTTP client (lazy initialization)."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=10.0)
        return self._client

    @property
    def current_user(self) -> Optional[FirebaseUser]:
        return self._current_user

    def on_auth_state_changed(self, callback: AuthStateCallback) -> Callable[[], None]:
        """Register a listener; it is called right away with the current user."""
        unsubscribe = self._listeners.add(callback)
        callback(self._current_user)
        return unsubscribe

    def _set_user(self, user: Optional[FirebaseUser]) -> None:
        self._current_user = user
        self._listeners.emit(user)

    async def sign_in_with_password(self, email: str, password: str) -> FirebaseUser:
        try:
            response = await self.client.post(
                f"{IDENTITY_TOOLKIT_URL}/accounts:signInWithPassword",
                params={"key": self.api_key},
                json={"email": email, "password": password, "returnSecureToken": True},
            )
        except httpx.HTTPError as e:
            raise IdentityError(f"Sign-in request failed: {e}") from e

        if response.status_code != 200:
            raise IdentityError(_error_message(response))

        data = response.json()
        user = FirebaseUser(
            self,
            uid=data["localId"],
            id_token=data["idToken"],
            refresh_token=data["refreshToken"],
            expires_in=data.get("expiresIn", 3600),
            email=data.get("email", email),
        )
        logger.info(f"Signed in {sanitize_id_for_logging(user.uid)}")
        self._set_user(user)
        return user

    async def restore_session(self, refresh_token: str) -> FirebaseUser:
        """Rebuild the signed-in user from a refresh token kept across restarts."""
        data = await self.exchange_refresh_token(refresh_token)
        user = FirebaseUser(
            self,
            uid=data["user_id"],
            id_token=data["id_token"],
            refresh_token=data.get("refresh_token", refresh_token),
            expires_in=data.get("expires_in", 3600),
        )
        self._set_user(user)
        return user

    def sign_out(self) -> None:
        if self._current_user is None:
            return
        logger.info(f"Signed out {sanitize_id_for_logging(self._current_user.uid)}")
        self._set_user(None)

    async def exchange_refresh_token(self, refresh_token: str) -> dict:
        """POST to the Secure Token API; returns id_token, refresh_token, expires_in, user_id."""
        if not refresh_token:
            raise IdentityError(ERROR_NOT_AUTHENTICATED)
        try:
            response = await self.client.post(
                SECURE_TOKEN_URL,
                params={"key": self.api_key},
                data={"grant_type": "refresh_token", "refresh_token": refresh_token},
            )
        except httpx.HTTPError as e:
            raise IdentityError(f"{ERROR_TOKEN_REFRESH}: {e}") from e

        if response.status_code != 200:
            raise IdentityError(f"{ERROR_TOKEN_REFRESH}: {_error_message(response)}")
        return response.json()

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
