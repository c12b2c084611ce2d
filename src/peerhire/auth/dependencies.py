"""FastAPI auth dependencies — the per-request access gate.

Learn: Every protected request walks the same state machine:

    Received --bearer header?--> TokenPresent   | Rejected(NoToken)
    TokenPresent --verify-->     TokenValid     | Rejected(InvalidToken / ExpiredToken)
    TokenValid --load identity-> IdentityLoaded | Rejected(UserNotFound)
    IdentityLoaded --role ok?--> Authorized     | Rejected(Forbidden)

evaluate_access() runs it and returns an AccessDecision without raising.
The FastAPI dependencies built by require_roles() turn a rejection into
the matching HTTP error and, on success, attach the identity to
request.state.identity for downstream handlers.

A route without one of these dependencies is public.
"""

import enum
from dataclasses import dataclass
from typing import Collection, Optional

import structlog
from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from peerhire.auth.demo import demo_identity_for_subject
from peerhire.auth.jwt import SessionClaims, SessionIssuer, TokenErrorKind, get_session_issuer
from peerhire.db.engine import get_db
from peerhire.db.models import ROLES, User
from peerhire.errors import AppError, AuthenticationError, AuthorizationError, NotFound
from peerhire.services.identity_service import IdentityService

logger = structlog.get_logger()


class AccessState(str, enum.Enum):
    RECEIVED = "Received"
    TOKEN_PRESENT = "TokenPresent"
    TOKEN_VALID = "TokenValid"
    IDENTITY_LOADED = "IdentityLoaded"
    AUTHORIZED = "Authorized"
    REJECTED = "Rejected"


class Rejection(str, enum.Enum):
    NO_TOKEN = "NoToken"
    INVALID_TOKEN = "InvalidToken"
    EXPIRED_TOKEN = "ExpiredToken"
    USER_NOT_FOUND = "UserNotFound"
    FORBIDDEN = "Forbidden"


@dataclass
class AccessDecision:
    state: AccessState
    identity: Optional[User] = None
    claims: Optional[SessionClaims] = None
    rejection: Optional[Rejection] = None

    @property
    def authorized(self) -> bool:
        return self.state is AccessState.AUTHORIZED


def _rejected(rejection: Rejection, claims: Optional[SessionClaims] = None) -> AccessDecision:
    return AccessDecision(AccessState.REJECTED, claims=claims, rejection=rejection)


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    """The token from an `Authorization: Bearer <token>` header, if any."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None
    return token


async def evaluate_access(
    authorization: Optional[str],
    allowed_roles: Optional[Collection[str]],
    issuer: SessionIssuer,
    resolver: IdentityService,
) -> AccessDecision:
    """Run the gate for one request. `allowed_roles=None` admits any role."""
    token = extract_bearer(authorization)
    if token is None:
        return _rejected(Rejection.NO_TOKEN)

    result = issuer.verify(token)
    if not result.ok:
        if result.error is TokenErrorKind.EXPIRED:
            return _rejected(Rejection.EXPIRED_TOKEN)
        return _rejected(Rejection.INVALID_TOKEN)
    claims = result.claims

    if claims.demo:
        identity = demo_identity_for_subject(claims.subject_id)
    else:
        identity = await resolver.get(claims.subject_id)
    if identity is None:
        return _rejected(Rejection.USER_NOT_FOUND, claims)

    if allowed_roles is not None and identity.role not in allowed_roles:
        return AccessDecision(
            AccessState.REJECTED, identity=identity, claims=claims,
            rejection=Rejection.FORBIDDEN,
        )
    return AccessDecision(AccessState.AUTHORIZED, identity=identity, claims=claims)


def rejection_error(rejection: Rejection) -> AppError:
    """The HTTP error a rejected request is answered with."""
    if rejection is Rejection.NO_TOKEN:
        return AuthenticationError("No token provided")
    if rejection is Rejection.EXPIRED_TOKEN:
        return AuthenticationError("Token has expired")
    if rejection is Rejection.INVALID_TOKEN:
        return AuthenticationError("Invalid token")
    if rejection is Rejection.USER_NOT_FOUND:
        return NotFound("User not found")
    return AuthorizationError("Unauthorized access")


def require_roles(*roles: str):
    """Build a dependency admitting only identities whose role is in `roles`.

    Learn: Used either per route (`Depends(require_client)`) or for a
    whole router via include_router(dependencies=[...]). With no roles
    given, any authenticated identity passes.
    """
    unknown = set(roles) - set(ROLES)
    if unknown:
        raise ValueError(f"Unknown roles: {sorted(unknown)}")
    allowed = frozenset(roles or ROLES)

    async def dependency(
        request: Request,
        authorization: Optional[str] = Header(None),
        db: AsyncSession = Depends(get_db),
        issuer: SessionIssuer = Depends(get_session_issuer),
    ) -> User:
        decision = await evaluate_access(
            authorization, allowed, issuer, IdentityService(db)
        )
        if not decision.authorized:
            logger.info(
                "auth.rejected",
                path=request.url.path,
                rejection=decision.rejection.value,
                subject=decision.claims.subject_id if decision.claims else None,
            )
            raise rejection_error(decision.rejection)
        request.state.identity = decision.identity
        request.state.claims = decision.claims
        return decision.identity

    dependency.__name__ = f"require_roles_{'_'.join(sorted(allowed))}"
    return dependency


get_current_identity = require_roles()
require_client = require_roles("client")
require_freelancer = require_roles("freelancer")
require_any = require_roles("client", "freelancer")
