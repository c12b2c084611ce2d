"""Wallet access for the client.

Learn: The client never talks to a wallet directly. Whatever holds the
keys (a browser extension bridge, a hardware signer, a local key for
scripts) is handed in as a WalletProvider, so tests can swap it out.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from eth_account import Account
from eth_account.messages import encode_defunct


class WalletError(Exception):
    """The wallet refused, or has no account to offer."""


@runtime_checkable
class WalletProvider(Protocol):
    async def request_accounts(self) -> list[str]:
        """Addresses the user agreed to expose, preferred first."""
        ...

    async def personal_sign(self, message: str, address: str) -> str:
        """EIP-191 signature of `message` by `address`, 0x-prefixed hex."""
        ...


class LocalAccountProvider:
    """A WalletProvider backed by a private key held in memory."""

    def __init__(self, private_key: Optional[str | bytes] = None):
        self._account = Account.from_key(private_key) if private_key else Account.create()

    @property
    def address(self) -> str:
        return self._account.address

    async def request_accounts(self) -> list[str]:
        return [self._account.address]

    async def personal_sign(self, message: str, address: str) -> str:
        if address.lower() != self._account.address.lower():
            raise WalletError(f"No key for {address}")
        signed = self._account.sign_message(encode_defunct(text=message))
        return "0x" + bytes(signed.signature).hex()
