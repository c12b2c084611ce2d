"""Client library: session token, cached identity and dashboard, wallet signing."""

from peerhire.client.cache import AuthCache
from peerhire.client.session import ApiError, AuthClient, WalletNotRegistered
from peerhire.client.storage import CacheEntry, FileStore, MemoryStore, TokenStore
from peerhire.client.wallet import LocalAccountProvider, WalletError, WalletProvider

__all__ = [
    "ApiError",
    "AuthCache",
    "AuthClient",
    "CacheEntry",
    "FileStore",
    "LocalAccountProvider",
    "MemoryStore",
    "TokenStore",
    "WalletError",
    "WalletNotRegistered",
    "WalletProvider",
]
