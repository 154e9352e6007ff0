"""Access token validation and renewal."""

import asyncio
import logging
from typing import Any, Optional

import httpx

from .auth import CredentialStore, fingerprint
from .errors import AuthenticationError
from .models import User

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


class TokenManager:
    """Hands out a currently-valid access token, renewing it at most once per call."""

    def __init__(
        self,
        store: CredentialStore,
        base_url: str = "http://localhost:8000",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize the token manager.

        Args:
            store: Credential store holding the token pair
            base_url: Backend base URL (without the /api/v1 prefix)
            http_client: Optional pre-built client (tests inject a mock transport)
            timeout: Request timeout in seconds for the owned client
        """
        self.store = store
        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        # Held across probe and refresh. Refresh tokens are single-use.
        self._renew_lock = asyncio.Lock()

    async def get_valid_access_token(self) -> Optional[str]:
        """
        Return the stored access token if the backend accepts it.

        Returns:
            A valid access token, or None if the user has to sign in again
        """
        async with self._renew_lock:
            return await self._validate()

    async def _validate(self) -> Optional[str]:
        # Read under the lock so a waiter sees a pair renewed by the holder.
        access_token = self.store.get_access_token()
        if not access_token:
            return None

        try:
            response = await self.client.get(
                f"{API_PREFIX}/auth/me",
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            # Outages are reported the same way as a logged-out user.
            logger.error(f"Error validating token: {e}")
            return None

        if response.is_success:
            return access_token

        if response.status_code == 401:
            logger.info(f"Access token {fingerprint(access_token)} expired, refreshing...")
            return await self.refresh_access_token()

        logger.warning(f"Identity probe failed with status {response.status_code}")
        return None

    async def refresh_access_token(self) -> Optional[str]:
        """
        Exchange the refresh token for a new pair.

        Returns:
            The new access token, or None after clearing all credentials
        """
        refresh_token = self.store.get_refresh_token()
        if not refresh_token:
            return None

        try:
            response = await self.client.post(
                f"{API_PREFIX}/auth/refresh",
                json={"refreshToken": refresh_token},
            )
            data = _json_or_empty(response)
            tokens = data.get("data") or {}
            if response.is_success and data.get("success") and tokens.get("accessToken") and tokens.get("refreshToken"):
                self.store.set_tokens(tokens["accessToken"], tokens["refreshToken"])
                logger.info("✓ Token refresh successful")
                return tokens["accessToken"]
            logger.warning(f"Token refresh rejected: status={response.status_code}, message={data.get('message')}")
        except httpx.HTTPError as e:
            logger.error(f"Token refresh failed: {e}")

        self.clear_auth_data()
        return None

    def clear_auth_data(self) -> None:
        """Remove the token pair and cached profile."""
        self.store.clear()

    def current_user(self) -> Optional[User]:
        """Get the cached user profile."""
        return self.store.get_user()

    async def sign_in(self, email: str, password: str) -> User:
        """
        Sign in with email and password.

        Returns:
            The signed-in user

        Raises:
            AuthenticationError: If the backend rejects the credentials
        """
        logger.info(f"=== SIGN IN: email={email} ===")
        return await self._issue_credentials(
            "signin", {"email": email, "password": password}
        )

    async def sign_up(
        self,
        email: str,
        password: str,
        username: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> User:
        """
        Register a new account and sign in with it.

        Raises:
            AuthenticationError: If registration is rejected
        """
        logger.info(f"=== SIGN UP: email={email} ===")
        payload: dict[str, Any] = {"email": email, "password": password}
        if username:
            payload["username"] = username
        if phone:
            payload["phone"] = phone
        return await self._issue_credentials("signup", payload)

    async def logout(self) -> None:
        """Tell the backend to drop the refresh token, then clear local credentials."""
        access_token = self.store.get_access_token()
        if access_token:
            try:
                await self.client.post(
                    f"{API_PREFIX}/auth/logout",
                    headers={"Authorization": f"Bearer {access_token}"},
                )
            except httpx.HTTPError as e:
                logger.warning(f"Logout request failed: {e}")
        self.clear_auth_data()

    async def _issue_credentials(self, endpoint: str, payload: dict[str, Any]) -> User:
        try:
            response = await self.client.post(f"{API_PREFIX}/auth/{endpoint}", json=payload)
        except httpx.HTTPError as e:
            raise AuthenticationError(f"Could not reach the server: {e}") from e

        data = _json_or_empty(response)
        body = data.get("data") or {}
        if not (response.is_success and data.get("success") and body.get("accessToken")):
            message = data.get("message") or f"Authentication failed (HTTP {response.status_code})"
            logger.error(f"{endpoint} failed: {message}")
            raise AuthenticationError(message)

        try:
            user = User.model_validate(body.get("user") or {})
            self.store.set_tokens(body["accessToken"], body["refreshToken"], user)
        except (KeyError, ValueError) as e:
            raise AuthenticationError(f"Malformed {endpoint} response: {e}") from e
        logger.info(f"✓ Signed in as {user.email}")
        return user

    async def aclose(self) -> None:
        """Close the HTTP client if this manager created it."""
        if self._owns_client:
            await self.client.aclose()


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
