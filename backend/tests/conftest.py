"""Pytest configuration and fixtures for PrintERP tests.

Nothing here talks to Postgres, Redis, or the hosted auth service: the
table store, the Redis client, and the auth provider are replaced with the
in-memory doubles below. The one exception is `redis_client`, used by
`integration` tests, which skips when no Redis is reachable.
"""

import itertools
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt

from printerp.auth.dispatch import CodeDispatcher
from printerp.auth.provider import AuthChangeEvent, AuthProvider
from printerp.auth.session import SessionCache, SessionManager
from printerp.auth.verification import InMemoryCodeStore, VerificationService
from printerp.config import settings
from printerp.dependencies import (
    get_auth_provider,
    get_supplier_service,
    get_verification_service,
)
from printerp.main import app
from printerp.middleware.exceptions import AuthProviderError, DispatchError
from printerp.schemas.auth import Session
from printerp.services.supplier_codec import SchemaMapping, SupplierCodec
from printerp.services.suppliers import SupplierService
from printerp.services.table_store import TableStore

SUPPLIER_COLUMNS = [
    "id", "name", "contactPerson", "email", "phone",
    "status", "address", "notes", "created_at", "updated_at",
]


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "api: API endpoint tests")
    config.addinivalue_line("markers", "auth: Authentication tests")
    config.addinivalue_line("markers", "integration: Integration tests")


# ── Test doubles ─────────────────────────────────────────────────


class InMemoryTableStore(TableStore):
    """Dict-backed stand-in for SqlTableStore."""

    def __init__(self, columns: list[str] | None = None):
        self._columns = list(columns or SUPPLIER_COLUMNS)
        self.tables: dict[str, dict[int, dict[str, Any]]] = {}
        self._ids = itertools.count(1)
        self.update_calls = 0

    def _rows(self, table):
        return self.tables.setdefault(table, {})

    @staticmethod
    def _matches(row, filters):
        return all(row.get(k) == v for k, v in (filters or {}).items())

    async def select(self, table, filters=None, order_by=None, search=None):
        rows = [dict(r) for r in self._rows(table).values() if self._matches(r, filters)]
        if search:
            term, columns = search
            term = term.lower()
            rows = [
                r for r in rows
                if any(term in str(r.get(c) or "").lower() for c in columns)
            ]
        if order_by:
            key = order_by.lstrip("-")
            rows.sort(key=lambda r: str(r.get(key) or ""), reverse=order_by.startswith("-"))
        return rows

    async def insert(self, table, row):
        now = datetime.now(timezone.utc)
        record = {c: None for c in self._columns}
        record.update(row, id=next(self._ids), created_at=now, updated_at=now)
        self._rows(table)[record["id"]] = record
        return dict(record)

    async def update(self, table, filters, patch):
        self.update_calls += 1
        for row in self._rows(table).values():
            if self._matches(row, filters):
                row.update(patch, updated_at=datetime.now(timezone.utc))
                return dict(row)
        return None

    async def delete(self, table, filters):
        rows = self._rows(table)
        doomed = [k for k, r in rows.items() if self._matches(r, filters)]
        for k in doomed:
            del rows[k]
        return len(doomed)

    async def columns(self, table):
        return list(self._columns)


class FakeRedis:
    """The slice of redis.asyncio.Redis the session cache uses."""

    def __init__(self):
        self.data: dict[str, str] = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    async def ping(self):
        return True


def make_token(user_id: str, expires_in: int = 3600) -> str:
    claims = {"sub": user_id, "exp": int(time.time()) + expires_in, "jti": uuid.uuid4().hex}
    return jwt.encode(claims, "test-secret", algorithm="HS256")


class FakeAuthProvider(AuthProvider):
    """In-memory auth service: users by email, live tokens by value."""

    def __init__(self):
        super().__init__()
        self.users: dict[str, dict[str, Any]] = {}
        self.passwords: dict[str, str] = {}
        self.tokens: dict[str, str] = {}    # access token -> email
        self.refresh: dict[str, str] = {}   # refresh token -> email
        self.set_session_calls = 0
        self.reset_requests: list[tuple[str, str]] = []
        self.require_confirmation = False
        self._session: Session | None = None

    def add_user(self, email, password, **metadata) -> dict:
        user = {"id": uuid.uuid4().hex, "email": email, "user_metadata": dict(metadata)}
        self.users[email] = user
        self.passwords[email] = password
        return user

    def issue(self, email) -> Session:
        user = self.users[email]
        access, refresh = make_token(user["id"]), uuid.uuid4().hex
        self.tokens[access] = email
        self.refresh[refresh] = email
        return Session(access_token=access, refresh_token=refresh, user=user)

    async def sign_in_with_password(self, email, password):
        if self.passwords.get(email) != password:
            raise AuthProviderError("Invalid login credentials")
        self._session = self.issue(email)
        await self._emit(AuthChangeEvent.SIGNED_IN, self._session)
        return self._session

    async def sign_up(self, email, password, metadata):
        if email in self.users:
            raise AuthProviderError("User already registered", status_code=422)
        self.add_user(email, password, **metadata)
        if self.require_confirmation:
            return None
        self._session = self.issue(email)
        await self._emit(AuthChangeEvent.SIGNED_IN, self._session)
        return self._session

    async def get_session(self):
        return self._session

    async def get_user(self, access_token=None):
        token = access_token or (self._session.access_token if self._session else None)
        if token not in self.tokens:
            raise AuthProviderError("Invalid JWT")
        return self.users[self.tokens[token]]

    async def update_user(self, metadata, access_token=None):
        user = await self.get_user(access_token)
        user["user_metadata"].update(metadata)
        if self._session is not None:
            self._session = self._session.model_copy(update={"user": user})
            await self._emit(AuthChangeEvent.USER_UPDATED, self._session)
        return user

    async def set_session(self, access_token, refresh_token=""):
        self.set_session_calls += 1
        if access_token in self.tokens:
            self._session = Session(
                access_token=access_token,
                refresh_token=refresh_token,
                user=self.users[self.tokens[access_token]],
            )
            await self._emit(AuthChangeEvent.SIGNED_IN, self._session)
            return self._session
        if refresh_token:
            return await self.refresh_session(refresh_token)
        raise AuthProviderError("Invalid JWT")

    async def refresh_session(self, refresh_token):
        email = self.refresh.pop(refresh_token, None)
        if email is None:
            raise AuthProviderError("Invalid Refresh Token")
        self._session = self.issue(email)
        await self._emit(AuthChangeEvent.TOKEN_REFRESHED, self._session)
        return self._session

    async def reset_password_for_email(self, email, redirect_to):
        self.reset_requests.append((email, redirect_to))

    async def sign_out(self, access_token=None):
        token = access_token or (self._session.access_token if self._session else None)
        self.tokens.pop(token, None)
        self._session = None
        await self._emit(AuthChangeEvent.SIGNED_OUT, None)


class RecordingDispatcher(CodeDispatcher):
    dev_mode = True

    def __init__(self):
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    async def send(self, target, purpose, code, expires_in):
        if self.fail:
            raise DispatchError()
        self.sent.append((target, purpose.value, code))

    def last_code(self, target: str) -> str:
        return next(code for t, _, code in reversed(self.sent) if t == target)


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


# ── Fixtures ─────────────────────────────────────────────────────


@pytest.fixture
def make_table_store():
    """Factory for stores with a custom column list."""
    return InMemoryTableStore


@pytest.fixture
def table_store() -> InMemoryTableStore:
    return InMemoryTableStore()


@pytest.fixture
def codec() -> SupplierCodec:
    return SupplierCodec(SchemaMapping())


@pytest.fixture
def supplier_service(table_store, codec) -> SupplierService:
    return SupplierService(table_store, codec)


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def verification_service(dispatcher, clock) -> VerificationService:
    return VerificationService(
        InMemoryCodeStore(),
        dispatcher,
        ttl_seconds=600,
        max_attempts=5,
        verified_window_seconds=1800,
        clock=clock,
    )


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def session_cache(fake_redis) -> SessionCache:
    return SessionCache(fake_redis, namespace="test:auth")


@pytest.fixture
def auth_provider() -> FakeAuthProvider:
    provider = FakeAuthProvider()
    provider.add_user("staff@example.com", "correct-horse", firstName="Ana", lastName="Cruz")
    return provider


@pytest.fixture
def session_manager(auth_provider, session_cache) -> SessionManager:
    manager = SessionManager(auth_provider, session_cache, max_reauth_attempts=3)
    yield manager
    manager.close()


@pytest_asyncio.fixture
async def client(
    supplier_service, verification_service, auth_provider
) -> AsyncGenerator[AsyncClient, None]:
    """Test client with every service dependency overridden."""
    app.dependency_overrides[get_supplier_service] = lambda: supplier_service
    app.dependency_overrides[get_verification_service] = lambda: verification_service
    app.dependency_overrides[get_auth_provider] = lambda: auth_provider

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(auth_provider) -> dict:
    """Authorization headers for the seeded staff user."""
    session = auth_provider.issue("staff@example.com")
    return {"Authorization": f"Bearer {session.access_token}"}


# ── Redis Fixtures ───────────────────────────────────────────────

REDIS_TEST_PREFIX = "test-verify"


@pytest_asyncio.fixture
async def redis_client():
    """Real Redis at settings.redis_url for integration tests."""
    import redis.asyncio as redis

    client = redis.from_url(settings.redis_url, decode_responses=True)
    try:
        await client.ping()
    except redis.ConnectionError:
        await client.aclose()
        pytest.skip("Redis is not reachable")

    yield client

    # Cleanup: only the keys these tests wrote
    async for key in client.scan_iter(match=f"{REDIS_TEST_PREFIX}:*"):
        await client.delete(key)
    await client.aclose()
