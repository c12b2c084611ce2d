"""Account API — profile, role and wallet management for the current user.

Learn: Every route here acts on the caller's own identity, taken from
the session by get_current_identity. Demo sessions are read-only: their
identities don't exist in the store.

- PATCH  /auth/users/profile → name/email/avatar and role-shaped profile fields
- PATCH  /auth/users/role    → switch role (re-issues profile and token)
- POST   /auth/users/wallet  → link a wallet (signed challenge required)
- DELETE /auth/users/wallet  → unlink the wallet
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from peerhire.auth.dependencies import get_current_identity
from peerhire.auth.jwt import SessionIssuer, get_session_issuer
from peerhire.auth.wallet import (
    get_contract_verifier,
    is_address,
    verify_signed_challenge,
)
from peerhire.db.engine import get_db
from peerhire.db.models import User
from peerhire.errors import AuthenticationError, AuthorizationError, ValidationFailed
from peerhire.schemas.identity import (
    AuthResponse,
    ProfileUpdateRequest,
    RoleChangeRequest,
    UserRead,
    UserResponse,
    WalletData,
)
from peerhire.services.identity_service import IdentityService

router = APIRouter(prefix="/auth/users")


def _svc(db: AsyncSession = Depends(get_db)) -> IdentityService:
    return IdentityService(db)


def _writable(request: Request) -> None:
    claims = getattr(request.state, "claims", None)
    if claims is not None and claims.demo:
        raise AuthorizationError("Demo accounts cannot be modified")


@router.patch("/profile", response_model=UserResponse)
async def update_profile(
    body: ProfileUpdateRequest,
    request: Request,
    identity: User = Depends(get_current_identity),
    svc: IdentityService = Depends(_svc),
):
    """Update account fields and role-appropriate profile fields.

    Fields that don't belong to the caller's role are silently dropped.
    walletAddress may only restate the linked address: changing it needs
    proof of control, see POST /auth/users/wallet.
    """
    _writable(request)
    if body.wallet_address is not None and (
        not is_address(body.wallet_address)
        or body.wallet_address.lower() != identity.wallet_address
    ):
        raise ValidationFailed.on(
            "walletAddress",
            "Link a wallet with POST /auth/users/wallet and a signed challenge",
        )

    user = identity
    if body.profile is not None:
        user = await svc.update_profile(identity.id, body.profile)
    user = await svc.update_account(
        user.id, name=body.name, email=body.email, avatar=body.avatar
    )
    await svc.db.commit()
    return UserResponse(user=UserRead.model_validate(user))


@router.patch("/role", response_model=AuthResponse)
async def change_role(
    body: RoleChangeRequest,
    request: Request,
    identity: User = Depends(get_current_identity),
    svc: IdentityService = Depends(_svc),
    issuer: SessionIssuer = Depends(get_session_issuer),
):
    """Switch between client and freelancer.

    Learn: Sessions carry the role they were issued with, so a role
    change returns a fresh token alongside the updated user.
    """
    _writable(request)
    user = await svc.change_role(identity.id, body.role, body.profile)
    await svc.db.commit()
    return AuthResponse(token=issuer.issue(user), user=UserRead.model_validate(user))


@router.post("/wallet", response_model=UserResponse)
async def link_wallet(
    body: WalletData,
    request: Request,
    identity: User = Depends(get_current_identity),
    svc: IdentityService = Depends(_svc),
):
    """Link the wallet that signed `message` to the current user."""
    _writable(request)
    ok = await verify_signed_challenge(
        body.address, body.signature, body.message, get_contract_verifier()
    )
    if not ok:
        raise AuthenticationError()
    user = await svc.link_wallet(identity.id, body.address)
    await svc.db.commit()
    return UserResponse(user=UserRead.model_validate(user))


@router.delete("/wallet", response_model=UserResponse)
async def unlink_wallet(
    request: Request,
    identity: User = Depends(get_current_identity),
    svc: IdentityService = Depends(_svc),
):
    """Unlink the current user's wallet. Succeeds if none is linked."""
    _writable(request)
    user = await svc.unlink_wallet(identity.id)
    await svc.db.commit()
    return UserResponse(user=UserRead.model_validate(user))
