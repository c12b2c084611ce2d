"""PeerHire CLI: log in, inspect the session, switch roles.

Usage:
    peerhire login alice@example.com                 # Prompts for the password
    peerhire signup alice@example.com --name Alice --role freelancer
    peerhire wallet-login                            # Signs with PEERHIRE_WALLET_KEY
    peerhire whoami                                  # Current user (refreshed from /auth/me)
    peerhire role client                             # Switch the app-wide role
    peerhire dashboard                               # Cached dashboard snapshot
    peerhire logout

State (token, cached user, preferred role) lives under PEERHIRE_HOME,
default ~/.peerhire. The API is PEERHIRE_API_URL, default localhost:8000.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
from typing import Optional

import click

from peerhire import __version__
from peerhire.client import (
    ApiError,
    AuthClient,
    LocalAccountProvider,
    WalletError,
    WalletNotRegistered,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _auth_client() -> AuthClient:
    """Build a client persisting under PEERHIRE_HOME."""
    key = os.environ.get("PEERHIRE_WALLET_KEY")
    wallet = LocalAccountProvider(key) if key else None
    return AuthClient.from_env(wallet=wallet)


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _fail(message: str) -> None:
    raise click.ClickException(message)


def _print_user(user: dict) -> None:
    click.secho(user.get("name", "?"), bold=True)
    click.echo(f"  id:      {user.get('id')}")
    click.echo(f"  role:    {user.get('role')}")
    click.echo(f"  email:   {user.get('email') or '—'}")
    click.echo(f"  wallet:  {user.get('walletAddress') or '—'}")


async def _with_client(fn):
    client = _auth_client()
    try:
        return await fn(client)
    except ApiError as e:
        _fail(f"{e.message} (HTTP {e.status_code})")
    except WalletError as e:
        _fail(str(e))
    finally:
        await client.aclose()


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="peerhire")
def main():
    """PeerHire — accounts, sessions and roles from the terminal."""


@main.command()
@click.argument("email")
@click.password_option("--password", "-p", confirmation_prompt=False)
def login(email: str, password: str):
    """Log in with email and password."""

    async def go(client: AuthClient):
        user = await client.login(email, password)
        click.secho(f"Logged in as {user['name']} ({user['role']})", fg="green")

    _run(_with_client(go))


@main.command()
@click.argument("email")
@click.option("--name", "-n", required=True, help="Display name")
@click.option("--role", "-r", type=click.Choice(["client", "freelancer"]), default="freelancer")
@click.option("--with-wallet", is_flag=True, help="Link the PEERHIRE_WALLET_KEY wallet too")
@click.password_option("--password", "-p")
def signup(email: str, name: str, role: str, with_wallet: bool, password: str):
    """Create a password account."""

    async def go(client: AuthClient):
        user = await client.signup(email, password, name, role, connect_wallet=with_wallet)
        click.secho(f"Created {user['role']} account for {user['email']}", fg="green")

    _run(_with_client(go))


@main.command("wallet-login")
@click.option("--register", is_flag=True, help="Create an account if the wallet has none")
@click.option("--name", "-n", help="Display name for a new account")
@click.option("--role", "-r", type=click.Choice(["client", "freelancer"]), default="freelancer")
def wallet_login(register: bool, name: Optional[str], role: str):
    """Log in by signing a challenge with PEERHIRE_WALLET_KEY."""

    async def go(client: AuthClient):
        try:
            user = await client.wallet_login()
        except WalletNotRegistered as e:
            if not register:
                _fail(f"Wallet {e.address} is not registered (use --register)")
            user = await client.wallet_signup(name=name, role=role)
            click.secho(f"Registered {user['walletAddress']}", fg="green")
        click.secho(f"Logged in as {user['name']} ({user['role']})", fg="green")

    _run(_with_client(go))


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
def whoami(as_json: bool):
    """Show the current user."""

    async def go(client: AuthClient):
        user = await client.load_user()
        if user is None:
            _fail("Not logged in")
        if as_json:
            click.echo(_pretty_json(user))
        else:
            _print_user(user)
            click.echo(f"  viewing as: {client.current_role}")

    _run(_with_client(go))


@main.command()
@click.argument("role", type=click.Choice(["client", "freelancer"]), required=False)
def role(role: Optional[str]):
    """Show or switch the app-wide role."""

    async def go(client: AuthClient):
        if role is None:
            click.echo(client.current_role)
            return
        current = await client.set_preferred_role(role)
        click.secho(f"Now viewing as {current}", fg="green")

    _run(_with_client(go))


@main.command()
@click.option("--refresh", is_flag=True, help="Ignore the cached snapshot")
def dashboard(refresh: bool):
    """Print the dashboard snapshot for the current role."""

    async def go(client: AuthClient):
        data = await client.fetch_dashboard_data(force=refresh)
        if data.get("placeholder"):
            click.secho("(dashboard unavailable, showing placeholder)", fg="yellow", err=True)
        click.echo(_pretty_json(data))

    _run(_with_client(go))


@main.command()
def logout():
    """Forget the session token and cached user."""

    async def go(client: AuthClient):
        await client.logout()
        click.echo("Logged out")

    _run(_with_client(go))


if __name__ == "__main__":
    main()
