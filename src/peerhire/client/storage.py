"""Persistence tiers for the client auth cache.

Learn: Two kinds of state survive a restart, and they are stored differently:

- Snapshots (cached user, dashboard data, preferred role) are not secret.
  They live in a MemoryStore (process lifetime) or a FileStore (one JSON
  document, each entry carrying its own storedAt/expiresAt).
- The session token is a bearer credential. TokenStore keeps it in its
  own file, readable by the owner only (0600), scoped to the API host it
  was issued by, and expiring when the token itself does.

None of these modules import the server package: the client must work
without server settings (PEERHIRE_JWT_SECRET) in its environment.
"""

from __future__ import annotations

import json
import os
import time
from pathlib import Path
from typing import Any, Callable, Optional

import jwt
import structlog
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

logger = structlog.get_logger()

Clock = Callable[[], float]


class CacheEntry(BaseModel):
    """One TTL-tagged snapshot. Times are epoch seconds."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    key: str
    data: Any = None
    stored_at: float
    expires_at: float

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


# ─── Snapshot stores ─────────────────────────────────────


class MemoryStore:
    """Entries held in a dict. Gone when the process exits."""

    def __init__(self):
        self._entries: dict[str, CacheEntry] = {}

    def load(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def save(self, entry: CacheEntry) -> None:
        self._entries[entry.key] = entry

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[str]:
        return list(self._entries)


class FileStore(MemoryStore):
    """Entries mirrored to a JSON file so they survive a restart.

    Learn: The whole document is rewritten on every change, through a
    temp file and os.replace, so a crash mid-write never leaves a
    half-written cache behind. A corrupt file is logged and treated as
    empty rather than failing the client.
    """

    def __init__(self, path: Path | str):
        super().__init__()
        self.path = Path(path)
        self._entries = self._read()

    def _read(self) -> dict[str, CacheEntry]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return {k: CacheEntry.model_validate(v) for k, v in raw.items()}
        except (OSError, ValueError, AttributeError, ValidationError) as e:
            logger.warning("client.cache_file_unreadable", path=str(self.path), error=str(e))
            return {}

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        doc = {k: e.model_dump(by_alias=True, mode="json") for k, e in self._entries.items()}
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(doc, indent=2, default=str), encoding="utf-8")
        os.replace(tmp, self.path)

    def save(self, entry: CacheEntry) -> None:
        super().save(entry)
        self._write()

    def delete(self, key: str) -> None:
        if key in self._entries:
            super().delete(key)
            self._write()

    def clear(self) -> None:
        super().clear()
        self._write()


# ─── Session token ───────────────────────────────────────


def token_expiry(token: str) -> Optional[float]:
    """The `exp` claim of a session token, read without verifying it.

    Learn: The client can't verify the signature (it doesn't hold the
    secret) and doesn't need to: the server checks every request. The
    expiry is only used to drop a token the server would refuse anyway.
    """
    try:
        payload = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    exp = payload.get("exp")
    return float(exp) if isinstance(exp, (int, float)) else None


class TokenStore:
    """Holds the bearer token for one API host.

    With `path=None` the token is kept in memory only.
    """

    def __init__(self, host: str, path: Path | str | None = None, clock: Clock = time.time):
        self.host = host.rstrip("/")
        self.path = Path(path) if path is not None else None
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: Optional[float] = None
        if self.path is not None:
            self._read()

    def _read(self) -> None:
        if not self.path.exists():
            return
        try:
            doc = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("client.token_file_unreadable", path=str(self.path), error=str(e))
            return
        entry = doc.get(self.host) if isinstance(doc, dict) else None
        if isinstance(entry, dict) and isinstance(entry.get("token"), str):
            self._token = entry["token"]
            self._expires_at = entry.get("expiresAt")

    def _write(self) -> None:
        if self.path is None:
            return
        doc: dict[str, Any] = {}
        if self.path.exists():
            try:
                doc = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                doc = {}
            if not isinstance(doc, dict):
                doc = {}
        if self._token is None:
            doc.pop(self.host, None)
        else:
            doc[self.host] = {"token": self._token, "expiresAt": self._expires_at}

        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Created 0600 up front so the token is never world-readable, even briefly
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(doc, f, indent=2)
        self.path.chmod(0o600)

    def save(self, token: str) -> None:
        self._token = token
        self._expires_at = token_expiry(token)
        self._write()

    def load(self) -> Optional[str]:
        """The stored token, or None if there is none or it has expired."""
        if self._token is None:
            return None
        if self._expires_at is not None and self._clock() >= self._expires_at:
            logger.info("client.token_expired", host=self.host)
            self.clear()
            return None
        return self._token

    def clear(self) -> None:
        self._token = None
        self._expires_at = None
        self._write()
