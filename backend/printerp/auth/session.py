"""Client-side session state: resolve, cache, and recover the signed-in session.

Resolution order (first hit wins):
  1. the provider's live session
  2. the cached access token, re-validated through the provider
  3. the cached serialized session

Cache layout (Redis, one namespace per client):
  {namespace}:token     raw access token
  {namespace}:session   Session as JSON
  {namespace}:settings  UserSettings as JSON

Anything unreadable in the cache is deleted on sight.
"""

import logging

import redis.asyncio as redis
from pydantic import ValidationError

from printerp.auth.provider import AuthChangeEvent, AuthProvider, unverified_claims
from printerp.middleware.exceptions import AuthProviderError
from printerp.schemas.auth import Session, UserProfile, UserSettings
from printerp.services.settings_store import SettingsStore

logger = logging.getLogger("printerp.auth")

# Values a broken client has been seen writing instead of a real token
PLACEHOLDER_VALUES = frozenset({"[object Object]", "undefined", "null", ""})


class SessionCache:
    TOKEN = "token"
    SESSION = "session"
    SETTINGS = "settings"

    def __init__(self, client: redis.Redis, namespace: str = "printerp:auth"):
        self.redis = client
        self.namespace = namespace

    def key(self, name: str) -> str:
        return f"{self.namespace}:{name}"

    async def evict(self, name: str, reason: str) -> None:
        logger.warning(f"Evicting corrupted cache entry {self.key(name)}: {reason}")
        await self.delete(name)

    async def delete(self, *names: str) -> None:
        try:
            await self.redis.delete(*(self.key(n) for n in names))
        except redis.RedisError as e:
            logger.warning(f"Session cache delete failed: {e}")

    async def purge(self) -> None:
        await self.delete(self.TOKEN, self.SESSION, self.SETTINGS)

    async def forget_credentials(self) -> None:
        """Drop the token and session but keep the local settings."""
        await self.delete(self.TOKEN, self.SESSION)

    async def _read(self, name: str) -> str | None:
        try:
            raw = await self.redis.get(self.key(name))
        except redis.RedisError as e:
            logger.warning(f"Session cache read failed: {e}")
            return None
        if raw is None:
            return None
        if raw.strip() in PLACEHOLDER_VALUES:
            await self.evict(name, f"placeholder value {raw!r}")
            return None
        return raw

    async def _write(self, name: str, value: str) -> None:
        try:
            await self.redis.set(self.key(name), value)
        except redis.RedisError as e:
            logger.warning(f"Session cache write failed: {e}")

    async def get_token(self) -> str | None:
        raw = await self._read(self.TOKEN)
        if raw is None:
            return None
        if not unverified_claims(raw):
            await self.evict(self.TOKEN, "not a JWT")
            return None
        return raw

    async def get_session(self) -> Session | None:
        raw = await self._read(self.SESSION)
        if raw is None:
            return None
        try:
            return Session.model_validate_json(raw)
        except ValidationError:
            await self.evict(self.SESSION, "not a valid session")
            return None

    async def get_settings(self) -> UserSettings | None:
        raw = await self._read(self.SETTINGS)
        if raw is None:
            return None
        try:
            return UserSettings.model_validate_json(raw)
        except ValidationError:
            await self.evict(self.SETTINGS, "not valid settings")
            return None

    async def set_session(self, session: Session) -> None:
        await self._write(self.TOKEN, session.access_token)
        await self._write(self.SESSION, session.model_dump_json())

    async def set_settings(self, settings: UserSettings) -> None:
        await self._write(self.SETTINGS, settings.model_dump_json())


class SessionManager:
    """Owns the current session for one client (the CLI, a worker, ...)."""

    def __init__(
        self,
        provider: AuthProvider,
        cache: SessionCache,
        settings_store: SettingsStore | None = None,
        max_reauth_attempts: int = 3,
        password_reset_redirect_url: str = "",
    ):
        self.provider = provider
        self.cache = cache
        self.settings = settings_store or SettingsStore()
        self.max_reauth_attempts = max_reauth_attempts
        self.password_reset_redirect_url = password_reset_redirect_url
        self.session: Session | None = None
        self.reauth_attempts = 0
        self._alive = True
        self._unsubscribe = provider.on_auth_state_change(self.on_provider_event)

    @property
    def alive(self) -> bool:
        return self._alive

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None

    def close(self) -> None:
        """Stop applying results. Anything still in flight is discarded."""
        self._alive = False
        self._unsubscribe()

    # ── Resolution ──────────────────────────────────────────

    async def resolve_session(self) -> Session | None:
        try:
            live = await self.provider.get_session()
        except AuthProviderError as e:
            logger.info(f"Live session unavailable: {e.message}")
            live = None
        if live is not None:
            return await self._adopt(live)

        token = await self.cache.get_token()
        stored = await self.cache.get_session()

        candidates: list[tuple[str, str]] = []
        if token:
            refresh = stored.refresh_token if stored and stored.access_token == token else ""
            candidates.append((token, refresh))
        if stored and stored.access_token != token:
            candidates.append((stored.access_token, stored.refresh_token))

        for access_token, refresh_token in candidates:
            session = await self._reauthenticate(access_token, refresh_token)
            if session is not None:
                return session

        if self._alive:
            self.session = None
            # Signed out, but keep the last local preferences
            cached = await self.cache.get_settings()
            if cached is not None:
                self.settings.replace(cached)
        return None

    async def _reauthenticate(self, access_token: str, refresh_token: str) -> Session | None:
        if self.reauth_attempts >= self.max_reauth_attempts:
            logger.warning(
                f"Giving up on cached credentials after {self.reauth_attempts} attempts"
            )
            await self.cache.forget_credentials()
            return None

        self.reauth_attempts += 1
        try:
            session = await self.provider.set_session(access_token, refresh_token)
        except AuthProviderError as e:
            logger.info(
                f"Reauthentication attempt {self.reauth_attempts}/"
                f"{self.max_reauth_attempts} failed: {e.message}"
            )
            if self.reauth_attempts >= self.max_reauth_attempts:
                await self.cache.forget_credentials()
            return None
        return await self._adopt(session)

    async def _adopt(self, session: Session) -> Session:
        if not self._alive:
            logger.debug("Discarding session result after close")
            return session
        self.session = session
        self.reauth_attempts = 0
        await self.cache.set_session(session)
        profile = UserProfile.from_provider_user(session.user)
        self.settings.replace(profile.settings)
        await self.cache.set_settings(profile.settings)
        return session

    async def _clear(self) -> None:
        self.session = None
        await self.cache.purge()
        self.settings.reset()

    # ── Provider events ─────────────────────────────────────

    async def on_provider_event(self, event: str, session: Session | None) -> None:
        try:
            kind = AuthChangeEvent(event)
        except ValueError:
            logger.debug(f"Ignoring unknown auth event {event!r}")
            return
        if not self._alive:
            return

        if kind in (
            AuthChangeEvent.SIGNED_IN,
            AuthChangeEvent.TOKEN_REFRESHED,
            AuthChangeEvent.USER_UPDATED,
        ):
            if session is not None:
                await self._adopt(session)
        elif kind == AuthChangeEvent.SIGNED_OUT:
            await self._clear()

    # ── User actions ────────────────────────────────────────

    async def sign_in(self, email: str, password: str) -> Session:
        """Raises AuthProviderError with a user-facing message on failure."""
        session = await self.provider.sign_in_with_password(email, password)
        return await self._adopt(session)

    async def sign_up(self, email: str, password: str, profile: dict) -> Session | None:
        session = await self.provider.sign_up(email, password, profile)
        if session is not None:
            return await self._adopt(session)
        return None

    async def sign_out(self) -> None:
        try:
            await self.provider.sign_out()
        except AuthProviderError as e:
            logger.warning(f"Provider sign-out failed, clearing locally: {e.message}")
        finally:
            if self._alive:
                await self._clear()

    async def request_password_reset(self, email: str) -> None:
        await self.provider.reset_password_for_email(email, self.password_reset_redirect_url)

    def current_user(self) -> UserProfile | None:
        if self.session is None:
            return None
        return UserProfile.from_provider_user(self.session.user)

    async def update_profile(self, **metadata) -> UserProfile:
        """Write user_metadata fields (firstName, jobTitle, ...) through the provider."""
        if self.session is None:
            raise AuthProviderError("Not signed in")
        user = await self.provider.update_user(metadata, self.session.access_token)
        if self._alive and self.session is not None:
            await self._adopt(self.session.model_copy(update={"user": user}))
        return UserProfile.from_provider_user(user)

    async def update_settings(self, **changes) -> UserSettings:
        """Validate, persist to the user's metadata, then apply locally.

        A failed provider write leaves the local settings untouched.
        """
        updated = UserSettings.model_validate(self.settings.get().model_dump() | changes)
        if self.session is not None:
            await self.update_profile(settings=updated.model_dump())
        else:
            await self.cache.set_settings(updated)
        return self.settings.replace(updated)
