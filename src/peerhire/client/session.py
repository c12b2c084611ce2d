"""AuthClient: session state for an API consumer.

Learn: This is the client-side half of the identity subsystem. It holds
the session token (TokenStore), a snapshot of the current user and the
dashboard (AuthCache), and the app-wide role the user is viewing as.

Two failure policies:
- `/auth/me` is session-critical. If it fails for any reason the local
  session is cleared and the caller has to log in again.
- The dashboard is best-effort. If it fails, a placeholder is cached
  for a minute and returned instead of an error.

Both go through AuthCache.deduplicate, so any number of concurrent
callers cause at most one request per key.

Role coherence: whenever the user snapshot changes, current_role is
re-derived from it and persisted as preferredRole. With no user loaded
(e.g. right after a restart) current_role falls back to preferredRole,
then to the cached user's role, then to "client".
"""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlsplit

import httpx
import structlog

from peerhire.client.cache import AuthCache
from peerhire.client.placeholders import placeholder_dashboard
from peerhire.client.storage import Clock, FileStore, TokenStore
from peerhire.client.wallet import WalletError, WalletProvider

logger = structlog.get_logger()

DEFAULT_API_URL = "http://localhost:8000"
ROLES = ("client", "freelancer")

USER_KEY = "user"
DASHBOARD_KEY = "dashboard"
ROLE_KEY = "preferredRole"

USER_TTL = 30 * 60
DASHBOARD_TTL = 5 * 60
PLACEHOLDER_TTL = 60
ROLE_TTL = 365 * 24 * 60 * 60


def dashboard_key(role: str) -> str:
    # snapshots and in-flight fetches are per role
    return f"{DASHBOARD_KEY}:{role}"


class ApiError(Exception):
    """A non-2xx answer from the API. `body` is the parsed error document."""

    def __init__(self, status_code: int, message: str, body: Optional[dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.body = body or {}


class WalletNotRegistered(ApiError):
    """The wallet signed correctly but has no account yet: sign up instead."""

    def __init__(self, address: str, body: Optional[dict] = None):
        super().__init__(404, "Wallet not registered", body)
        self.address = address


def _host_of(base_url: str) -> str:
    parts = urlsplit(base_url)
    return f"{parts.scheme}://{parts.netloc}"


class AuthClient:
    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        *,
        cache: Optional[AuthCache] = None,
        tokens: Optional[TokenStore] = None,
        wallet: Optional[WalletProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
        clock: Clock = time.time,
    ):
        self.base_url = base_url.rstrip("/")
        self.cache = cache if cache is not None else AuthCache(clock=clock)
        self.tokens = tokens if tokens is not None else TokenStore(_host_of(self.base_url), clock=clock)
        self.wallet = wallet
        self._http = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

        self.user: Optional[dict] = self.cache.get(USER_KEY)
        self._role = self._initial_role()

    @classmethod
    def from_env(cls, wallet: Optional[WalletProvider] = None, **kwargs) -> "AuthClient":
        """Build a client persisting under PEERHIRE_HOME (default ~/.peerhire)."""
        base_url = os.environ.get("PEERHIRE_API_URL", DEFAULT_API_URL)
        home = Path(os.environ.get("PEERHIRE_HOME", Path.home() / ".peerhire"))
        clock = kwargs.pop("clock", time.time)
        return cls(
            base_url,
            cache=AuthCache(FileStore(home / "cache.json"), clock=clock),
            tokens=TokenStore(_host_of(base_url), home / "session.json", clock=clock),
            wallet=wallet,
            clock=clock,
            **kwargs,
        )

    async def aclose(self) -> None:
        self.cache.close()
        await self._http.aclose()

    async def __aenter__(self) -> "AuthClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    # ─── State ───────────────────────────────────────────

    @property
    def token(self) -> Optional[str]:
        return self.tokens.load()

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None and self.token is not None

    @property
    def current_role(self) -> str:
        return self._role

    def _initial_role(self) -> str:
        preferred = self.cache.get(ROLE_KEY)
        if preferred in ROLES:
            return preferred
        if self.user and self.user.get("role") in ROLES:
            return self.user["role"]
        return "client"

    def _persist_role(self, role: str) -> None:
        self._role = role
        self.cache.set(ROLE_KEY, role, ROLE_TTL)

    def _set_user(self, user: Optional[dict]) -> None:
        self.user = user
        if user is None:
            self.cache.invalidate(USER_KEY)
            return
        self.cache.set(USER_KEY, user, USER_TTL)
        if user.get("role") in ROLES:
            self._persist_role(user["role"])

    def _start_session(self, body: dict) -> dict:
        self.tokens.save(body["token"])
        self._drop_dashboards()
        self._set_user(body["user"])
        return body["user"]

    def _drop_dashboards(self, cancel: bool = False) -> None:
        for role in ROLES:
            if cancel:
                self.cache.cancel(dashboard_key(role))
            self.cache.invalidate(dashboard_key(role))

    def _clear_session(self) -> None:
        # preferredRole is kept across logouts
        self.cache.cancel("me")
        self._drop_dashboards(cancel=True)
        self.tokens.clear()
        self._set_user(None)

    # ─── Transport ───────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        auth: bool = True,
    ) -> dict:
        headers = {}
        if auth:
            token = self.tokens.load()
            if token is None:
                raise ApiError(401, "No token provided")
            headers["Authorization"] = f"Bearer {token}"

        response = await self._http.request(method, path, json=json, params=params, headers=headers)
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}
        if response.is_error:
            raise ApiError(
                response.status_code,
                body.get("error") or response.reason_phrase,
                body,
            )
        return body

    async def _sign_challenge(self) -> dict:
        if self.wallet is None:
            raise WalletError("No wallet provider configured")
        accounts = await self.wallet.request_accounts()
        if not accounts:
            raise WalletError("Wallet exposed no accounts")
        address = accounts[0]
        challenge = await self._request("GET", "/auth/challenge", auth=False)
        message = challenge["message"]
        signature = await self.wallet.personal_sign(message, address)
        return {"address": address, "signature": signature, "message": message}

    # ─── Password accounts ───────────────────────────────

    async def login(self, email: str, password: str) -> dict:
        body = await self._request(
            "POST", "/auth/login", json={"email": email, "password": password}, auth=False
        )
        logger.info("client.logged_in", role=body["user"]["role"])
        return self._start_session(body)

    async def signup(
        self,
        email: str,
        password: str,
        name: str,
        role: str,
        profile: Optional[dict] = None,
        connect_wallet: bool = False,
    ) -> dict:
        payload: dict[str, Any] = {
            "email": email, "password": password, "name": name, "role": role,
        }
        if profile is not None:
            payload["profile"] = profile
        if connect_wallet:
            payload["walletData"] = await self._sign_challenge()
        body = await self._request("POST", "/auth/signup", json=payload, auth=False)
        return self._start_session(body)

    async def signup_client(
        self, email: str, password: str, name: str, profile: Optional[dict] = None
    ) -> dict:
        payload: dict[str, Any] = {"email": email, "password": password, "name": name}
        if profile is not None:
            payload["profile"] = profile
        body = await self._request("POST", "/auth/client/signup", json=payload, auth=False)
        return self._start_session(body)

    # ─── Wallet accounts ─────────────────────────────────

    async def wallet_login(self) -> dict:
        """Log in with the provider's first account.

        Raises WalletNotRegistered if the signature is good but no account
        owns the address; call wallet_signup() then.
        """
        signed = await self._sign_challenge()
        try:
            body = await self._request("POST", "/auth/wallet", json=signed, auth=False)
        except ApiError as e:
            if e.status_code == 404 and e.body.get("needsRegistration"):
                raise WalletNotRegistered(signed["address"], e.body) from e
            raise
        return self._start_session(body)

    async def wallet_signup(
        self,
        name: Optional[str] = None,
        email: Optional[str] = None,
        role: str = "freelancer",
        profile: Optional[dict] = None,
    ) -> dict:
        payload: dict[str, Any] = {**await self._sign_challenge(), "role": role}
        if name is not None:
            payload["name"] = name
        if email is not None:
            payload["email"] = email
        if profile is not None:
            payload["profile"] = profile
        body = await self._request("POST", "/auth/wallet/signup", json=payload, auth=False)
        return self._start_session(body)

    async def link_wallet(self) -> dict:
        signed = await self._sign_challenge()
        body = await self._request("POST", "/auth/users/wallet", json=signed)
        self._set_user(body["user"])
        return body["user"]

    async def unlink_wallet(self) -> dict:
        body = await self._request("DELETE", "/auth/users/wallet")
        self._set_user(body["user"])
        return body["user"]

    # ─── Session ─────────────────────────────────────────

    async def logout(self) -> None:
        self._clear_session()
        logger.info("client.logged_out")

    async def load_user(self) -> Optional[dict]:
        """Refresh the user from /auth/me. Any failure ends the session."""
        if self.tokens.load() is None:
            if self.user is not None:
                self._clear_session()
            return None

        async def fetch() -> dict:
            body = await self._request("GET", "/auth/me")
            return body["user"]

        try:
            user = await self.cache.deduplicate("me", fetch)
        except (ApiError, httpx.HTTPError, KeyError) as e:
            logger.info("client.session_cleared", error=str(e))
            self._clear_session()
            return None
        self._set_user(user)
        return user

    async def update_profile(self, **fields: Any) -> dict:
        """PATCH name / email / avatar / wallet_address / profile."""
        payload = {}
        for field, value in fields.items():
            if value is None:
                continue
            payload["walletAddress" if field == "wallet_address" else field] = value
        body = await self._request("PATCH", "/auth/users/profile", json=payload)
        self._set_user(body["user"])
        return body["user"]

    async def set_preferred_role(self, role: str) -> str:
        """Switch the app-wide role, and the account's role when logged in.

        If the account can't be switched (demo session, network error) the
        local view still switches.
        """
        if role not in ROLES:
            raise ValueError(f"Unknown role: {role}")
        self._persist_role(role)
        if self.user is not None and self.user.get("role") != role and self.token:
            try:
                body = await self._request("PATCH", "/auth/users/role", json={"role": role})
            except (ApiError, httpx.HTTPError) as e:
                logger.warning("client.role_change_failed", role=role, error=str(e))
            else:
                self._start_session(body)
        return self._role

    # ─── Dashboard ───────────────────────────────────────

    async def fetch_dashboard_data(self, force: bool = False) -> dict:
        """Dashboard snapshot for the current role.

        Cached for 5 minutes. On failure a placeholder is cached for one
        minute instead, and the next successful fetch replaces it.
        """
        role = self._role
        key = dashboard_key(role)
        if not force:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        async def fetch() -> dict:
            try:
                data = await self._request("GET", "/auth/dashboard", params={"role": role})
            except (ApiError, httpx.HTTPError) as e:
                logger.warning("client.dashboard_fallback", role=role, error=str(e))
                data = placeholder_dashboard(role)
                self.cache.set(key, data, PLACEHOLDER_TTL)
                return data
            self.cache.set(key, data, DASHBOARD_TTL)
            return data

        return await self.cache.deduplicate(key, fetch)
