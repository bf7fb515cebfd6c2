"""Tests for the GoTrue auth provider against a stubbed HTTP transport."""

import json
import time

import httpx
import pytest
import pytest_asyncio

from printerp.auth.provider import GoTrueAuthProvider
from printerp.middleware.exceptions import AuthProviderError

from conftest import make_token

USER = {"id": "u1", "email": "staff@example.com", "user_metadata": {"firstName": "Ana"}}


def session_payload(**overrides) -> dict:
    payload = {
        "access_token": make_token("u1"),
        "refresh_token": "refresh-1",
        "token_type": "bearer",
        "expires_in": 3600,
        "user": USER,
    }
    payload.update(overrides)
    return payload


class GoTrueStub:
    """Answers requests by (method, path, grant_type) and records them."""

    def __init__(self):
        self.routes: dict[tuple, object] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, response, grant_type: str | None = None):
        self.routes[(method, f"/auth/v1{path}", grant_type)] = response

    def sent(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == f"/auth/v1{path}"]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path, request.url.params.get("grant_type"))
        response = self.routes.get(key)
        if response is None:
            return httpx.Response(404, json={"msg": "No route"})
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def gotrue() -> GoTrueStub:
    return GoTrueStub()


@pytest_asyncio.fixture
async def provider(gotrue):
    async with httpx.AsyncClient(transport=httpx.MockTransport(gotrue)) as client:
        yield GoTrueAuthProvider("https://auth.example.test/", "anon-key", client=client)


@pytest.fixture
def events(provider) -> list:
    seen = []

    async def listener(event, session):
        seen.append(event)

    provider.on_auth_state_change(listener)
    return seen


@pytest.mark.auth
@pytest.mark.asyncio
class TestRequests:
    async def test_sign_in(self, provider, gotrue, events):
        gotrue.on("POST", "/token", httpx.Response(200, json=session_payload()), "password")

        session = await provider.sign_in_with_password("staff@example.com", "correct-horse")

        assert session.user["email"] == "staff@example.com"
        assert session.expires_at is not None  # taken from the token's exp
        assert events == ["SIGNED_IN"]
        request = gotrue.requests[0]
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["Authorization"] == "Bearer anon-key"
        assert json.loads(request.content) == {"email": "staff@example.com", "password": "correct-horse"}

    @pytest.mark.parametrize("key", ["error_description", "msg", "message"])
    async def test_refusal_message_passed_through(self, provider, gotrue, key):
        gotrue.on("POST", "/token", httpx.Response(400, json={key: "Invalid login credentials"}), "password")

        with pytest.raises(AuthProviderError) as exc_info:
            await provider.sign_in_with_password("staff@example.com", "wrong")

        assert exc_info.value.status_code == 401
        assert exc_info.value.error_code == "AUTH_FAILED"
        assert exc_info.value.message == "Invalid login credentials"

    async def test_refusal_without_body(self, provider, gotrue):
        gotrue.on("GET", "/user", httpx.Response(403, text="forbidden"))

        with pytest.raises(AuthProviderError, match="Authentication failed"):
            await provider.get_user("some-token")

    async def test_server_error_is_unavailable(self, provider, gotrue):
        gotrue.on("POST", "/token", httpx.Response(503, json={"msg": "Upstream down"}), "password")

        with pytest.raises(AuthProviderError) as exc_info:
            await provider.sign_in_with_password("staff@example.com", "correct-horse")

        assert exc_info.value.status_code == 502
        assert exc_info.value.error_code == "AUTH_UNAVAILABLE"
        assert exc_info.value.message == "Upstream down"

    async def test_unreachable_service(self, provider, gotrue):
        gotrue.on("POST", "/token", httpx.ConnectError("connection refused"), "password")

        with pytest.raises(AuthProviderError) as exc_info:
            await provider.sign_in_with_password("staff@example.com", "correct-horse")

        assert exc_info.value.status_code == 502
        assert exc_info.value.message == "Authentication service unavailable. Please try again."

    async def test_sign_up_pending_confirmation(self, provider, gotrue, events):
        gotrue.on("POST", "/signup", httpx.Response(200, json=USER))

        assert await provider.sign_up("staff@example.com", "longenough", {"firstName": "Ana"}) is None
        assert events == []
        body = json.loads(gotrue.requests[0].content)
        assert body["data"] == {"firstName": "Ana"}

    async def test_password_reset_redirect(self, provider, gotrue):
        gotrue.on("POST", "/recover", httpx.Response(200, json={}))

        await provider.reset_password_for_email("staff@example.com", "http://app/reset")

        assert gotrue.requests[0].url.params["redirect_to"] == "http://app/reset"


@pytest.mark.auth
@pytest.mark.asyncio
class TestSessionHandling:
    async def test_set_session_with_live_token(self, provider, gotrue, events):
        token = make_token("u1")
        gotrue.on("GET", "/user", httpx.Response(200, json=USER))

        session = await provider.set_session(token, "refresh-1")

        assert session.access_token == token
        assert session.user == USER
        assert gotrue.requests[0].headers["Authorization"] == f"Bearer {token}"
        assert events == ["SIGNED_IN"]

    async def test_set_session_falls_back_to_refresh(self, provider, gotrue, events):
        fresh = session_payload(access_token=make_token("u1"), refresh_token="refresh-2")
        gotrue.on("GET", "/user", httpx.Response(401, json={"msg": "Invalid JWT"}))
        gotrue.on("POST", "/token", httpx.Response(200, json=fresh), "refresh_token")

        session = await provider.set_session(make_token("u1", expires_in=-60), "refresh-1")

        assert session.refresh_token == "refresh-2"
        assert events == ["TOKEN_REFRESHED"]
        refresh = gotrue.sent("POST", "/token")[0]
        assert json.loads(refresh.content) == {"refresh_token": "refresh-1"}

    async def test_set_session_without_refresh_token_raises(self, provider, gotrue, events):
        gotrue.on("GET", "/user", httpx.Response(401, json={"msg": "Invalid JWT"}))

        with pytest.raises(AuthProviderError, match="Invalid JWT"):
            await provider.set_session(make_token("u1"))
        assert events == []

    async def test_expired_session_is_refreshed(self, provider, gotrue, events):
        stale = session_payload(expires_at=int(time.time()) - 60)
        gotrue.on("POST", "/token", httpx.Response(200, json=stale), "password")
        gotrue.on("POST", "/token", httpx.Response(200, json=session_payload(refresh_token="refresh-2")), "refresh_token")
        await provider.sign_in_with_password("staff@example.com", "correct-horse")

        session = await provider.get_session()

        assert session.refresh_token == "refresh-2"
        assert events == ["SIGNED_IN", "TOKEN_REFRESHED"]

    async def test_expired_session_without_refresh_token_dropped(self, provider, gotrue):
        stale = session_payload(expires_at=int(time.time()) - 60, refresh_token="")
        gotrue.on("POST", "/token", httpx.Response(200, json=stale), "password")
        await provider.sign_in_with_password("staff@example.com", "correct-horse")

        assert await provider.get_session() is None
        assert len(gotrue.requests) == 1

    async def test_update_user_on_own_session(self, provider, gotrue, events):
        updated = {**USER, "user_metadata": {"firstName": "Ana", "jobTitle": "Buyer"}}
        gotrue.on("POST", "/token", httpx.Response(200, json=session_payload()), "password")
        gotrue.on("PUT", "/user", httpx.Response(200, json=updated))
        await provider.sign_in_with_password("staff@example.com", "correct-horse")

        await provider.update_user({"jobTitle": "Buyer"})

        assert json.loads(gotrue.sent("PUT", "/user")[0].content) == {"data": {"jobTitle": "Buyer"}}
        assert (await provider.get_session()).user == updated
        assert events == ["SIGNED_IN", "USER_UPDATED"]

    async def test_update_user_requires_token(self, provider):
        with pytest.raises(AuthProviderError, match="Not signed in"):
            await provider.update_user({"jobTitle": "Buyer"})

    async def test_sign_out_emits_even_when_logout_fails(self, provider, gotrue, events):
        gotrue.on("POST", "/token", httpx.Response(200, json=session_payload()), "password")
        gotrue.on("POST", "/logout", httpx.Response(500, json={"msg": "boom"}))
        await provider.sign_in_with_password("staff@example.com", "correct-horse")

        with pytest.raises(AuthProviderError):
            await provider.sign_out()

        assert events == ["SIGNED_IN", "SIGNED_OUT"]
        assert await provider.get_session() is None

    async def test_shared_client_left_open(self, provider):
        await provider.aclose()
        assert not provider.client.is_closed
