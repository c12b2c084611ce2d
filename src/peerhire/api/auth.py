"""Auth API — signup, login (password and wallet), current user.

Learn: Routes for both kinds of principals:
- POST /auth/signup          → password account (any role), optional wallet
- POST /auth/client/signup   → password account, role fixed to client
- POST /auth/login           → email/password → session token
- GET  /auth/challenge       → message for a wallet to sign
- POST /auth/wallet          → signed challenge → session token
- POST /auth/wallet/signup   → signed challenge → new wallet account
- GET  /auth/me              → current user

Every credential failure answers the same "Invalid credentials" 401, so
a caller can't tell a wrong password from an unknown email.
Request validation runs before any write.
"""

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from peerhire.auth.demo import demo_identity, match_demo_account
from peerhire.auth.dependencies import get_current_identity
from peerhire.auth.jwt import SessionIssuer, get_session_issuer
from peerhire.auth.password import (
    burn_password_check,
    hash_password_async,
    needs_rehash,
    verify_password_async,
)
from peerhire.auth.wallet import (
    get_contract_verifier,
    issue_challenge,
    verify_signed_challenge,
)
from peerhire.config import settings
from peerhire.db.engine import get_db
from peerhire.db.models import User
from peerhire.errors import AuthenticationError, DuplicateWallet, NotFound
from peerhire.schemas.identity import (
    AuthResponse,
    ChallengeResponse,
    ClientSignupRequest,
    LoginRequest,
    SignupRequest,
    UserRead,
    UserResponse,
    WalletAuthRequest,
    WalletData,
    WalletSignupRequest,
    build_profile,
)
from peerhire.services.identity_service import IdentityService

logger = structlog.get_logger()

router = APIRouter(prefix="/auth")


def _svc(db: AsyncSession = Depends(get_db)) -> IdentityService:
    return IdentityService(db)


def _session(issuer: SessionIssuer, user: User, demo: bool = False) -> AuthResponse:
    return AuthResponse(
        token=issuer.issue(user, demo=demo), user=UserRead.model_validate(user)
    )


async def _check_wallet(wallet: WalletData) -> None:
    ok = await verify_signed_challenge(
        wallet.address, wallet.signature, wallet.message, get_contract_verifier()
    )
    if not ok:
        logger.info("auth.wallet_signature_rejected", address=wallet.address)
        raise AuthenticationError()


# ─── Password signup ─────────────────────────────────────


async def _password_signup(
    svc: IdentityService,
    issuer: SessionIssuer,
    *,
    email: str,
    password: str,
    name: str,
    role: str,
    profile: dict | None,
    avatar: str | None = None,
    wallet: WalletData | None = None,
) -> AuthResponse:
    # Everything that can be rejected is checked before the first write
    built = build_profile(role, profile)
    if wallet is not None:
        await _check_wallet(wallet)
        if await svc.resolve_by_wallet(wallet.address):
            raise DuplicateWallet()

    user = await svc.create_from_password(
        email=email,
        password_hash=await hash_password_async(password),
        role=role,
        profile=built,
        name=name,
        avatar=avatar,
    )
    if wallet is not None:
        await svc.link_wallet(user.id, wallet.address)
    await svc.db.commit()
    logger.info("auth.signup", identity_id=str(user.id), role=role, wallet=wallet is not None)
    return _session(issuer, user)


@router.post("/signup", response_model=AuthResponse, status_code=201)
async def signup(
    body: SignupRequest,
    svc: IdentityService = Depends(_svc),
    issuer: SessionIssuer = Depends(get_session_issuer),
):
    """Create a password account for either role."""
    return await _password_signup(
        svc,
        issuer,
        email=body.email,
        password=body.password,
        name=body.name,
        role=body.role,
        profile=body.profile,
        avatar=body.avatar,
        wallet=body.wallet_data,
    )


@router.post("/client/signup", response_model=AuthResponse, status_code=201)
async def client_signup(
    body: ClientSignupRequest,
    svc: IdentityService = Depends(_svc),
    issuer: SessionIssuer = Depends(get_session_issuer),
):
    """Create a client account."""
    return await _password_signup(
        svc,
        issuer,
        email=body.email,
        password=body.password,
        name=body.name,
        role="client",
        profile=body.profile,
        avatar=body.avatar,
    )


# ─── Login ───────────────────────────────────────────────


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    svc: IdentityService = Depends(_svc),
    issuer: SessionIssuer = Depends(get_session_issuer),
):
    """Login with email and password → session token."""
    demo = match_demo_account(body.email, body.password)
    if demo is not None:
        logger.info("auth.demo_login", role=demo.role)
        return _session(issuer, demo_identity(demo), demo=True)

    user = await svc.resolve_by_email(body.email)
    if user is None or not user.password_hash:
        # Same bcrypt cost as a wrong password, so timing says nothing
        await burn_password_check(body.password)
        logger.info("auth.login_failed", reason="unknown_email")
        raise AuthenticationError()

    if not await verify_password_async(body.password, user.password_hash):
        logger.info("auth.login_failed", reason="bad_password", identity_id=str(user.id))
        raise AuthenticationError()

    # Upgrade hashes made at a lower bcrypt cost on successful login
    if needs_rehash(user.password_hash):
        user.password_hash = await hash_password_async(body.password)
        await svc.db.commit()

    return _session(issuer, user)


# ─── Wallet ──────────────────────────────────────────────


@router.get("/challenge", response_model=ChallengeResponse)
async def challenge():
    """A fresh message for the wallet to sign, valid for a few minutes."""
    return ChallengeResponse(message=issue_challenge(settings.jwt_secret))


@router.post("/wallet", response_model=AuthResponse)
async def wallet_login(
    body: WalletAuthRequest,
    svc: IdentityService = Depends(_svc),
    issuer: SessionIssuer = Depends(get_session_issuer),
):
    """Login with a signed challenge.

    Learn: A valid signature from an address we've never seen is not an
    error the client should show, it means "go register". The 404 body
    says so explicitly with needsRegistration.
    """
    await _check_wallet(body)
    user = await svc.resolve_by_wallet(body.address)
    if user is None:
        raise NotFound(
            "Wallet not registered",
            extra={"walletAddress": body.address, "needsRegistration": True},
        )
    return _session(issuer, user)


@router.post("/wallet/signup", response_model=AuthResponse, status_code=201)
async def wallet_signup(
    body: WalletSignupRequest,
    svc: IdentityService = Depends(_svc),
    issuer: SessionIssuer = Depends(get_session_issuer),
):
    """Create a wallet account from a signed challenge."""
    built = build_profile(body.role, body.profile)
    await _check_wallet(body)
    user = await svc.create_from_wallet(
        address=body.address,
        role=body.role,
        profile=built,
        email=body.email,
        name=body.name,
    )
    await svc.db.commit()
    logger.info("auth.signup", identity_id=str(user.id), role=body.role, wallet=True)
    return _session(issuer, user)


# ─── Current user ───────────────────────────────────────


@router.get("/me", response_model=UserResponse)
async def get_me(identity: User = Depends(get_current_identity)):
    """Get the current authenticated user's info."""
    return UserResponse(user=UserRead.model_validate(identity))
