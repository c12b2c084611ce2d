"""Session token issuance and verification.

Learn: JWT (JSON Web Token) provides stateless authentication. Nothing
is stored server-side; a session is valid iff its signature checks out
and it has not expired. Claims:

    sub   identity id           role   role at issuance time
    iat   issued at (unix s)    exp    expires at (unix s)
    email / wallet              optional login identifiers
    type  always "access"       demo   only on demo-mode sessions

A session carries the role it was issued with. If the identity's role
changes later, the holder must obtain a new token to see it.

verify() does not raise for bad tokens. A missing, malformed or expired
token is an expected outcome, returned as a TokenResult the caller
branches on.
"""

import enum
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import jwt

from peerhire.config import settings
from peerhire.db.models import ROLES


class TokenErrorKind(str, enum.Enum):
    MISSING = "TokenMissing"
    MALFORMED = "TokenMalformed"
    EXPIRED = "TokenExpired"


@dataclass(frozen=True)
class SessionClaims:
    subject_id: str
    role: str
    issued_at: int
    expires_at: int
    email: Optional[str] = None
    wallet_address: Optional[str] = None
    demo: bool = False

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "SessionClaims":
        return cls(
            subject_id=str(payload["sub"]),
            role=payload["role"],
            issued_at=int(payload["iat"]),
            expires_at=int(payload["exp"]),
            email=payload.get("email"),
            wallet_address=payload.get("wallet"),
            demo=bool(payload.get("demo", False)),
        )


@dataclass(frozen=True)
class TokenResult:
    claims: Optional[SessionClaims] = None
    error: Optional[TokenErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.claims is not None


class SessionIssuer:
    """Mints and checks signed session tokens with a server-held secret."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        ttl_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ValueError("SessionIssuer requires a signing secret")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._secret = secret
        self.algorithm = algorithm
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def issue(self, identity, ttl: Optional[int] = None, demo: bool = False) -> str:
        """Sign a session for `identity` (anything with id/role/email/wallet_address)."""
        ttl = ttl if ttl is not None else self.ttl_seconds
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        now = int(self.clock())
        payload: dict[str, Any] = {
            "sub": str(identity.id),
            "role": identity.role,
            "type": "access",
            "iat": now,
            "exp": now + ttl,
        }
        if getattr(identity, "email", None):
            payload["email"] = identity.email
        if getattr(identity, "wallet_address", None):
            payload["wallet"] = identity.wallet_address
        if demo:
            payload["demo"] = True
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: Optional[str]) -> TokenResult:
        """Check signature, shape and expiry. Expired iff now >= exp."""
        if not token:
            return TokenResult(error=TokenErrorKind.MISSING)
        try:
            # Expiry is checked below against our own clock
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": ["sub", "role", "iat", "exp"],
                },
            )
            claims = SessionClaims.from_payload(payload)
        except (jwt.InvalidTokenError, KeyError, TypeError, ValueError):
            return TokenResult(error=TokenErrorKind.MALFORMED)

        if (
            payload.get("type") != "access"
            or claims.role not in ROLES
            or claims.expires_at <= claims.issued_at
        ):
            return TokenResult(error=TokenErrorKind.MALFORMED)
        if self.clock() >= claims.expires_at:
            return TokenResult(error=TokenErrorKind.EXPIRED)
        return TokenResult(claims=claims)


_issuer: Optional[SessionIssuer] = None


def get_session_issuer() -> SessionIssuer:
    """Process-wide issuer built from settings. FastAPI dependency."""
    global _issuer
    if _issuer is None:
        _issuer = SessionIssuer(
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            ttl_seconds=settings.access_token_expire_minutes * 60,
        )
    return _issuer
