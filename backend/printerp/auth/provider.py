"""Auth provider contract and the GoTrue (hosted auth) implementation.

Token claims of interest (read without verification, the provider is the
authority):
  - sub:  user ID
  - exp:  expiry timestamp

State-change events delivered to listeners:
  SIGNED_IN, SIGNED_OUT, TOKEN_REFRESHED, USER_UPDATED
"""

import enum
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Union

import httpx
from fastapi import status
from jose import JWTError, jwt

from printerp.middleware.exceptions import AuthProviderError
from printerp.schemas.auth import Session

logger = logging.getLogger("printerp.auth")


class AuthChangeEvent(str, enum.Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


Listener = Callable[[str, Union[Session, None]], Union[Awaitable[None], None]]


def unverified_claims(token: str) -> dict:
    """Decode a JWT's claims without checking the signature. Empty dict if malformed."""
    try:
        return jwt.get_unverified_claims(token)
    except JWTError:
        return {}


class AuthProvider(ABC):
    """What the session manager and API need from the auth service."""

    def __init__(self):
        self._listeners: list[Listener] = []

    def on_auth_state_change(self, listener: Listener) -> Callable[[], None]:
        """Subscribe to state changes. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _emit(self, event: AuthChangeEvent, session: Session | None) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event.value, session)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Auth listener failed on {event.value}")

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> Session: ...

    @abstractmethod
    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any]
    ) -> Session | None:
        """Returns None when the service requires email confirmation first."""

    @abstractmethod
    async def get_session(self) -> Session | None: ...

    @abstractmethod
    async def get_user(self, access_token: str | None = None) -> dict[str, Any]: ...

    @abstractmethod
    async def update_user(
        self, metadata: dict[str, Any], access_token: str | None = None
    ) -> dict[str, Any]: ...

    @abstractmethod
    async def set_session(self, access_token: str, refresh_token: str = "") -> Session: ...

    @abstractmethod
    async def refresh_session(self, refresh_token: str) -> Session: ...

    @abstractmethod
    async def reset_password_for_email(self, email: str, redirect_to: str) -> None: ...

    @abstractmethod
    async def sign_out(self, access_token: str | None = None) -> None: ...


class GoTrueAuthProvider(AuthProvider):
    """AuthProvider over the GoTrue REST API (/auth/v1/...).

    Holds at most one current session. Pass a shared `client` to reuse
    connections; otherwise the provider owns its own and `aclose` closes it.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
    ):
        super().__init__()
        self.base_url = base_url.rstrip("/") + "/auth/v1"
        self.api_key = api_key
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._session: Session | None = None

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    # ── HTTP ────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        json: dict | None = None,
        params: dict | None = None,
        token: str | None = None,
    ) -> dict[str, Any]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {token or self.api_key}",
        }
        try:
            response = await self.client.request(
                method, f"{self.base_url}{path}", json=json, params=params, headers=headers
            )
        except httpx.HTTPError as e:
            logger.error(f"Auth service unreachable ({method} {path}): {e}")
            raise AuthProviderError(
                "Authentication service unavailable. Please try again.",
                status_code=status.HTTP_502_BAD_GATEWAY,
                error_code="AUTH_UNAVAILABLE",
            ) from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            message = (
                body.get("error_description")
                or body.get("msg")
                or body.get("message")
                or "Authentication failed"
            )
            logger.info(f"Auth service refused {method} {path}: {response.status_code} {message}")
            if response.status_code >= 500:
                raise AuthProviderError(
                    message,
                    status_code=status.HTTP_502_BAD_GATEWAY,
                    error_code="AUTH_UNAVAILABLE",
                )
            raise AuthProviderError(message)

        return response.json() if response.content else {}

    @staticmethod
    def _to_session(data: dict[str, Any]) -> Session:
        session = Session.model_validate(data)
        if session.expires_at is None:
            exp = unverified_claims(session.access_token).get("exp")
            if exp:
                session.expires_at = int(exp)
        return session

    def _current_token(self, access_token: str | None) -> str:
        token = access_token or (self._session.access_token if self._session else None)
        if not token:
            raise AuthProviderError("Not signed in")
        return token

    # ── Operations ──────────────────────────────────────────

    async def sign_in_with_password(self, email, password):
        data = await self._request(
            "POST", "/token", params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        self._session = self._to_session(data)
        await self._emit(AuthChangeEvent.SIGNED_IN, self._session)
        return self._session

    async def sign_up(self, email, password, metadata):
        data = await self._request(
            "POST", "/signup", json={"email": email, "password": password, "data": metadata},
        )
        if not data.get("access_token"):
            return None
        self._session = self._to_session(data)
        await self._emit(AuthChangeEvent.SIGNED_IN, self._session)
        return self._session

    async def get_session(self):
        if self._session and self._session.is_expired():
            if not self._session.refresh_token:
                self._session = None
                return None
            return await self.refresh_session(self._session.refresh_token)
        return self._session

    async def get_user(self, access_token=None):
        return await self._request("GET", "/user", token=self._current_token(access_token))

    async def update_user(self, metadata, access_token=None):
        user = await self._request(
            "PUT", "/user", json={"data": metadata}, token=self._current_token(access_token),
        )
        if self._session and access_token in (None, self._session.access_token):
            self._session.user = user
            await self._emit(AuthChangeEvent.USER_UPDATED, self._session)
        return user

    async def refresh_session(self, refresh_token):
        data = await self._request(
            "POST", "/token", params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        self._session = self._to_session(data)
        await self._emit(AuthChangeEvent.TOKEN_REFRESHED, self._session)
        return self._session

    async def set_session(self, access_token, refresh_token=""):
        """Adopt externally held tokens, refreshing them if the access token is stale."""
        try:
            user = await self.get_user(access_token)
        except AuthProviderError:
            if not refresh_token:
                raise
            return await self.refresh_session(refresh_token)

        self._session = self._to_session(
            {"access_token": access_token, "refresh_token": refresh_token, "user": user}
        )
        await self._emit(AuthChangeEvent.SIGNED_IN, self._session)
        return self._session

    async def reset_password_for_email(self, email, redirect_to):
        await self._request(
            "POST", "/recover", json={"email": email}, params={"redirect_to": redirect_to},
        )

    async def sign_out(self, access_token=None):
        token = access_token or (self._session.access_token if self._session else None)
        self._session = None
        try:
            if token:
                await self._request("POST", "/logout", token=token)
        finally:
            await self._emit(AuthChangeEvent.SIGNED_OUT, None)
