"""AuthClient tests — session lifecycle against a mocked API.

Learn: httpx.MockTransport routes every request to a plain function, so
these tests control exactly what the "server" answers and can count how
many requests were actually made. Wallet flows use a real
LocalAccountProvider, so signatures are genuine.
"""

import asyncio
import json
import time
import uuid

import httpx
import jwt
import pytest
import pytest_asyncio

from peerhire.client import (
    ApiError,
    AuthCache,
    AuthClient,
    FileStore,
    LocalAccountProvider,
    TokenStore,
    WalletError,
    WalletNotRegistered,
)
from peerhire.client.session import DASHBOARD_TTL, PLACEHOLDER_TTL, dashboard_key


def _token(role: str = "client", ttl: int = 3600) -> str:
    now = int(time.time())
    return jwt.encode(
        {"sub": "1", "role": role, "iat": now, "exp": now + ttl, "type": "access"},
        "server-secret-the-client-never-sees-0000",
        algorithm="HS256",
    )


def _user(role: str = "client", **extra) -> dict:
    return {
        "id": str(uuid.uuid4()),
        "email": "a@b.com",
        "name": "Alice",
        "role": role,
        "walletAddress": None,
        **extra,
    }


class FakeApi:
    """Minimal stand-in for the server, recording every request."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.user = _user()
        self.me_status = 200
        self.me_unreachable = False
        self.dashboard_status = 200
        self.gate: asyncio.Event | None = None

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/auth/login":
            return httpx.Response(200, json={"token": _token(self.user["role"]), "user": self.user})
        if path == "/auth/challenge":
            return httpx.Response(200, json={"message": "Sign this message\nNonce: 9"})
        if path == "/auth/wallet":
            return httpx.Response(
                404,
                json={"error": "Wallet not registered", "needsRegistration": True},
            )
        if path == "/auth/wallet/signup":
            body = json.loads(request.content)
            self.user = _user("freelancer", walletAddress=body["address"].lower(), email=None)
            return httpx.Response(201, json={"token": _token("freelancer"), "user": self.user})
        if path == "/auth/me":
            if self.me_unreachable:
                raise httpx.ConnectError("connection refused", request=request)
            if self.gate is not None:
                await self.gate.wait()
            if self.me_status != 200:
                return httpx.Response(self.me_status, json={"error": "Invalid token"})
            return httpx.Response(200, json={"user": self.user})
        if path == "/auth/dashboard":
            if self.gate is not None:
                await self.gate.wait()
            if self.dashboard_status != 200:
                return httpx.Response(self.dashboard_status, json={"error": "down"})
            role = request.url.params["role"]
            return httpx.Response(200, json={role: {"activeJobs": 7}})
        if path == "/auth/users/role":
            role = json.loads(request.content)["role"]
            self.user = {**self.user, "role": role}
            return httpx.Response(200, json={"token": _token(role), "user": self.user})
        return httpx.Response(404, json={"error": "Not found"})

    def count(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path == path)


class FakeClock:
    def __init__(self):
        self.now = time.time()

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def api():
    return FakeApi()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest_asyncio.fixture()
async def make_client(api, clock):
    clients = []

    def build(**kwargs) -> AuthClient:
        kwargs.setdefault("clock", clock)
        c = AuthClient("http://api.test", transport=httpx.MockTransport(api), **kwargs)
        clients.append(c)
        return c

    yield build
    for c in clients:
        await c.aclose()


# ═══════════════════════════════════════════════════════════
# Login and session
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_login_stores_token_and_user(make_client):
    client = make_client()
    user = await client.login("a@b.com", "Abcdef12")
    assert user["email"] == "a@b.com"
    assert client.token is not None
    assert client.is_authenticated
    assert client.cache.get("user") == user
    assert client.current_role == "client"


@pytest.mark.asyncio
async def test_requests_carry_bearer_token(make_client, api):
    client = make_client()
    await client.login("a@b.com", "Abcdef12")
    await client.load_user()
    me = [r for r in api.requests if r.url.path == "/auth/me"][0]
    assert me.headers["Authorization"] == f"Bearer {client.token}"


@pytest.mark.asyncio
async def test_load_user_failure_clears_session(make_client, api):
    client = make_client()
    await client.login("a@b.com", "Abcdef12")
    api.me_status = 401

    assert await client.load_user() is None
    assert client.token is None
    assert client.user is None
    assert client.cache.get("user") is None


@pytest.mark.asyncio
async def test_load_user_network_error_clears_session(make_client, api):
    client = make_client()
    await client.login("a@b.com", "Abcdef12")

    api.me_unreachable = True
    assert await client.load_user() is None
    assert client.token is None


@pytest.mark.asyncio
async def test_concurrent_load_user_one_request(make_client, api):
    client = make_client()
    await client.login("a@b.com", "Abcdef12")
    api.gate = asyncio.Event()

    tasks = [asyncio.create_task(client.load_user()) for _ in range(4)]
    await asyncio.sleep(0.01)
    api.gate.set()
    users = await asyncio.gather(*tasks)

    assert api.count("/auth/me") == 1
    assert all(u["id"] == api.user["id"] for u in users)


@pytest.mark.asyncio
async def test_load_user_without_token(make_client, api):
    client = make_client()
    assert await client.load_user() is None
    assert api.count("/auth/me") == 0


@pytest.mark.asyncio
async def test_logout_keeps_preferred_role(make_client):
    client = make_client()
    await client.login("a@b.com", "Abcdef12")
    await client.logout()
    assert client.token is None
    assert client.user is None
    assert client.cache.get("preferredRole") == "client"


@pytest.mark.asyncio
async def test_api_error_carries_body(make_client, api):
    client = make_client()
    api.me_status = 500
    await client.login("a@b.com", "Abcdef12")
    with pytest.raises(ApiError) as exc:
        await client._request("GET", "/auth/me")
    assert exc.value.status_code == 500
    assert exc.value.message == "Invalid token"


# ═══════════════════════════════════════════════════════════
# Role coherence
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_role_follows_user(make_client, api):
    api.user = _user("freelancer")
    client = make_client()
    assert client.current_role == "client"
    await client.login("a@b.com", "Abcdef12")
    assert client.current_role == "freelancer"
    assert client.cache.get("preferredRole") == "freelancer"


@pytest.mark.asyncio
async def test_role_restored_after_restart(tmp_path, api, clock):
    cache_path = tmp_path / "cache.json"
    first = AuthClient(
        "http://api.test",
        cache=AuthCache(FileStore(cache_path), clock=clock),
        transport=httpx.MockTransport(api),
        clock=clock,
    )
    api.user = _user("freelancer")
    await first.login("a@b.com", "Abcdef12")
    await first.aclose()

    second = AuthClient(
        "http://api.test",
        cache=AuthCache(FileStore(cache_path), clock=clock),
        transport=httpx.MockTransport(api),
        clock=clock,
    )
    assert second.current_role == "freelancer"
    assert second.user["role"] == "freelancer"
    await second.aclose()


@pytest.mark.asyncio
async def test_role_falls_back_to_cached_user(api, clock):
    cache = AuthCache(clock=clock)
    cache.set("user", _user("freelancer"), ttl=60)
    client = AuthClient("http://api.test", cache=cache, transport=httpx.MockTransport(api), clock=clock)
    assert client.current_role == "freelancer"
    await client.aclose()


@pytest.mark.asyncio
async def test_set_preferred_role_updates_account(make_client, api):
    client = make_client()
    await client.login("a@b.com", "Abcdef12")
    assert await client.set_preferred_role("freelancer") == "freelancer"
    assert api.count("/auth/users/role") == 1
    assert client.user["role"] == "freelancer"
    assert jwt.decode(client.token, options={"verify_signature": False})["role"] == "freelancer"


@pytest.mark.asyncio
async def test_set_preferred_role_logged_out_is_local(make_client, api):
    client = make_client()
    await client.set_preferred_role("freelancer")
    assert client.current_role == "freelancer"
    assert api.count("/auth/users/role") == 0
    with pytest.raises(ValueError):
        await client.set_preferred_role("admin")


# ═══════════════════════════════════════════════════════════
# Dashboard
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_simultaneous_dashboard_fetches_one_request(make_client, api):
    """Two fetches issued before the first resolves → one HTTP call."""
    client = make_client()
    await client.login("a@b.com", "Abcdef12")
    api.gate = asyncio.Event()

    first = asyncio.create_task(client.fetch_dashboard_data())
    second = asyncio.create_task(client.fetch_dashboard_data())
    await asyncio.sleep(0.01)
    api.gate.set()
    a, b = await asyncio.gather(first, second)

    assert api.count("/auth/dashboard") == 1
    assert a == b == {"client": {"activeJobs": 7}}


@pytest.mark.asyncio
async def test_dashboard_cached_for_five_minutes(make_client, api, clock):
    client = make_client()
    await client.login("a@b.com", "Abcdef12")
    await client.fetch_dashboard_data()
    clock.now += DASHBOARD_TTL - 1
    await client.fetch_dashboard_data()
    assert api.count("/auth/dashboard") == 1

    clock.now += 1
    await client.fetch_dashboard_data()
    assert api.count("/auth/dashboard") == 2


@pytest.mark.asyncio
async def test_dashboard_failure_falls_back_to_placeholder(make_client, api, clock):
    client = make_client()
    await client.login("a@b.com", "Abcdef12")
    api.dashboard_status = 503

    data = await client.fetch_dashboard_data()
    assert data["placeholder"] is True
    assert "client" in data
    entry = client.cache.entry(dashboard_key("client"))
    assert entry.expires_at - entry.stored_at == PLACEHOLDER_TTL

    # A later successful fetch replaces the placeholder
    api.dashboard_status = 200
    clock.now += PLACEHOLDER_TTL
    data = await client.fetch_dashboard_data()
    assert data == {"client": {"activeJobs": 7}}


@pytest.mark.asyncio
async def test_role_switch_during_dashboard_fetch(make_client, api):
    """A fetch started as client never answers the freelancer view."""
    client = make_client()
    await client.login("a@b.com", "Abcdef12")
    api.gate = asyncio.Event()

    as_client = asyncio.create_task(client.fetch_dashboard_data())
    await asyncio.sleep(0.01)
    await client.set_preferred_role("freelancer")
    as_freelancer = asyncio.create_task(client.fetch_dashboard_data())
    await asyncio.sleep(0.01)
    api.gate.set()

    assert await as_client == {"client": {"activeJobs": 7}}
    assert await as_freelancer == {"freelancer": {"activeJobs": 7}}
    assert api.count("/auth/dashboard") == 2
    # The freelancer snapshot is what a later read sees
    assert await client.fetch_dashboard_data() == {"freelancer": {"activeJobs": 7}}
    assert api.count("/auth/dashboard") == 2


@pytest.mark.asyncio
async def test_dashboard_placeholder_matches_role(make_client, api):
    api.user = _user("freelancer")
    client = make_client()
    await client.login("a@b.com", "Abcdef12")
    api.dashboard_status = 500
    data = await client.fetch_dashboard_data()
    assert set(data["freelancer"]) >= {"ongoingProjects", "totalEarnings"}


# ═══════════════════════════════════════════════════════════
# Wallet flows
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_wallet_login_unregistered_then_signup(make_client, api):
    provider = LocalAccountProvider()
    client = make_client(wallet=provider)

    with pytest.raises(WalletNotRegistered) as exc:
        await client.wallet_login()
    assert exc.value.address == provider.address

    user = await client.wallet_signup(name=None)
    assert user["walletAddress"] == provider.address.lower()
    assert client.current_role == "freelancer"


@pytest.mark.asyncio
async def test_wallet_login_without_provider(make_client):
    with pytest.raises(WalletError):
        await make_client().wallet_login()


@pytest.mark.asyncio
async def test_local_provider_signature_verifies():
    """The provider's signatures are what the server's verifier expects."""
    from peerhire.auth.wallet import verify_wallet_signature

    provider = LocalAccountProvider()
    [address] = await provider.request_accounts()
    signature = await provider.personal_sign("hello", address)
    assert verify_wallet_signature(address, signature, "hello")

    with pytest.raises(WalletError):
        await provider.personal_sign("hello", LocalAccountProvider().address)


@pytest.mark.asyncio
async def test_persisted_token_store(tmp_path, api, clock):
    tokens = TokenStore("http://api.test", tmp_path / "session.json", clock=clock)
    client = AuthClient(
        "http://api.test", tokens=tokens, transport=httpx.MockTransport(api), clock=clock
    )
    await client.login("a@b.com", "Abcdef12")
    await client.aclose()

    reopened = TokenStore("http://api.test", tmp_path / "session.json", clock=clock)
    assert reopened.load() == client.tokens.load()
