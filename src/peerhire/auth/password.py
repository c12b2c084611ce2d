"""Password hashing utilities.

Learn: Uses bcrypt for secure password hashing. bcrypt automatically
handles salting and is resistant to rainbow table attacks.
The work factor (PEERHIRE_BCRYPT_ROUNDS, default 12) takes ~100ms per
hash on modern hardware.

Hashes created with a lower cost factor (the original service used 10)
still verify, and are re-hashed at the configured cost on the next
successful login.
"""

import asyncio
import functools
from typing import Optional

import bcrypt

from peerhire.config import settings
from peerhire.errors import bounded


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    """Hash a password with bcrypt.

    Learn: bcrypt includes a random salt automatically and produces
    hashes starting with "$2b$". Passwords are truncated to 72 bytes
    (bcrypt's limit).
    """
    pw_bytes = password.encode("utf-8")[:72]
    salt = bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds)
    return bcrypt.hashpw(pw_bytes, salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash. Malformed hashes verify as False."""
    if not password_hash:
        return False
    try:
        pw_bytes = password.encode("utf-8")[:72]
        hash_bytes = password_hash.encode("utf-8")
        return bcrypt.checkpw(pw_bytes, hash_bytes)
    except (ValueError, TypeError):
        return False


def needs_rehash(password_hash: str) -> bool:
    """Check if a bcrypt hash was made with fewer rounds than configured."""
    cost = _cost_factor(password_hash)
    return cost is not None and cost < settings.bcrypt_rounds


async def verify_password_async(password: str, password_hash: str) -> bool:
    """verify_password off the event loop, under the external-call timeout."""
    return await bounded(
        asyncio.to_thread(verify_password, password, password_hash),
        settings.external_call_timeout_seconds,
        "password.verify",
    )


@functools.lru_cache(maxsize=None)
def _decoy_hash(rounds: int) -> str:
    return hash_password("peerhire-decoy-password", rounds=rounds)


async def burn_password_check(password: str) -> None:
    """One full bcrypt comparison against a decoy hash, result discarded.

    Learn: Called when the email is unknown. Without it a miss returns
    in microseconds and a wrong password in ~100ms, which tells an
    attacker which emails have accounts.
    """
    decoy = await bounded(
        asyncio.to_thread(_decoy_hash, settings.bcrypt_rounds),
        settings.external_call_timeout_seconds,
        "password.decoy",
    )
    await verify_password_async(password, decoy)


async def hash_password_async(password: str) -> str:
    return await bounded(
        asyncio.to_thread(hash_password, password),
        settings.external_call_timeout_seconds,
        "password.hash",
    )


def _cost_factor(password_hash: str) -> Optional[int]:
    # Format: $2b$12$<53 chars of salt+digest>
    parts = password_hash.split("$")
    if len(parts) < 4 or not parts[1].startswith("2"):
        return None
    try:
        return int(parts[2])
    except ValueError:
        return None
