"""Identity service — lookup, creation and linking of identities.

Learn: Service layer separates business logic from HTTP routing.
API routes call services, services call the database. Services flush
but never commit; the route owns the transaction.

An identity can be reached through two disjoint namespaces: email and
wallet address. Both must stay unique. We pre-check for a friendly
error, but the pre-check alone is racy: two concurrent signups with the
same email both see "no such user" and both insert. The unique
constraints on users.email / users.wallet_address close that race, and
an IntegrityError on flush is reported as the same conflict the
pre-check would have raised.
"""

import uuid
from typing import Any, Optional, Union

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from peerhire.auth.wallet import is_address, normalize_address
from peerhire.db.models import User, utcnow
from peerhire.errors import (
    DuplicateEmail,
    DuplicateWallet,
    NotFound,
    ValidationFailed,
    WalletAlreadyLinked,
)
from peerhire.events.store import EventStore, identity_stream
from peerhire.events.types import (
    IDENTITY_ACCOUNT_UPDATED,
    IDENTITY_CREATED,
    IDENTITY_PROFILE_UPDATED,
    IDENTITY_ROLE_CHANGED,
    IDENTITY_WALLET_LINKED,
    IDENTITY_WALLET_UNLINKED,
)
from peerhire.schemas.identity import (
    CamelModel,
    build_profile,
    merge_profile,
    profile_document,
)

logger = structlog.get_logger()

AVATAR_URL = "https://api.dicebear.com/7.x/avataaars/svg?seed={seed}"


def normalize_email(email: str) -> str:
    return email.strip().lower()


def default_wallet_name(address: str) -> str:
    return f"Wallet {address[:6]}...{address[-4:]}"


class IdentityService:
    """Resolves, creates and links identities in the user store."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.events = EventStore(db)

    # ─── Lookups ────────────────────────────────────────

    async def get(self, identity_id: Union[uuid.UUID, str]) -> Optional[User]:
        if not isinstance(identity_id, uuid.UUID):
            try:
                identity_id = uuid.UUID(str(identity_id))
            except ValueError:
                return None
        return await self.db.get(User, identity_id)

    async def resolve_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.email == normalize_email(email))
        )
        return result.scalars().first()

    async def resolve_by_wallet(self, address: str) -> Optional[User]:
        """Case-insensitive wallet lookup. Malformed addresses match nothing."""
        if not is_address(address):
            return None
        result = await self.db.execute(
            select(User).where(User.wallet_address == address.lower())
        )
        return result.scalars().first()

    # ─── Creation ───────────────────────────────────────

    async def create_from_password(
        self,
        email: str,
        password_hash: str,
        role: str,
        profile: CamelModel,
        name: str,
        avatar: Optional[str] = None,
    ) -> User:
        """Create a password account. Raises DuplicateEmail."""
        email = normalize_email(email)
        _check_profile_kind(role, profile)
        if await self.resolve_by_email(email):
            raise DuplicateEmail()

        user = User(
            email=email,
            password_hash=password_hash,
            name=name,
            role=role,
            profile=profile_document(profile),
            avatar=avatar or AVATAR_URL.format(seed=email),
        )
        self.db.add(user)
        await self._flush_unique()
        await self.events.append(
            stream_id=identity_stream(user.id),
            event_type=IDENTITY_CREATED,
            data={"method": "password", "role": role, "email": email},
        )
        logger.info("identity.created", identity_id=str(user.id), method="password")
        return user

    async def create_from_wallet(
        self,
        address: str,
        role: str,
        profile: CamelModel,
        email: Optional[str] = None,
        name: Optional[str] = None,
        avatar: Optional[str] = None,
    ) -> User:
        """Create a wallet account. Raises DuplicateWallet / DuplicateEmail."""
        address = _wallet_or_invalid(address)
        email = normalize_email(email) if email else None
        _check_profile_kind(role, profile)
        if await self.resolve_by_wallet(address):
            raise DuplicateWallet()
        if email and await self.resolve_by_email(email):
            raise DuplicateEmail()

        user = User(
            email=email,
            wallet_address=address,
            name=name or default_wallet_name(address),
            role=role,
            profile=profile_document(profile),
            avatar=avatar or AVATAR_URL.format(seed=address),
        )
        self.db.add(user)
        await self._flush_unique()
        await self.events.append(
            stream_id=identity_stream(user.id),
            event_type=IDENTITY_CREATED,
            data={
                "method": "wallet",
                "role": role,
                "email": email,
                "wallet_address": address,
            },
        )
        logger.info("identity.created", identity_id=str(user.id), method="wallet")
        return user

    # ─── Wallet linking ─────────────────────────────────

    async def link_wallet(self, identity_id: Union[uuid.UUID, str], address: str) -> User:
        """Bind `address` to the identity, replacing any previous wallet.

        Linking an address the identity already holds is a no-op.
        Raises WalletAlreadyLinked if another identity holds it.
        """
        user = await self._require(identity_id)
        address = _wallet_or_invalid(address)

        owner = await self.resolve_by_wallet(address)
        if owner is not None and owner.id != user.id:
            raise WalletAlreadyLinked()
        if user.wallet_address == address:
            return user

        previous = user.wallet_address
        user.wallet_address = address
        user.updated_at = utcnow()
        await self._flush_unique(on_wallet=WalletAlreadyLinked)
        await self.events.append(
            stream_id=identity_stream(user.id),
            event_type=IDENTITY_WALLET_LINKED,
            data={"wallet_address": address, "previous": previous},
        )
        logger.info("identity.wallet_linked", identity_id=str(user.id))
        return user

    async def unlink_wallet(self, identity_id: Union[uuid.UUID, str]) -> User:
        """Remove the identity's wallet. Idempotent."""
        user = await self._require(identity_id)
        if user.wallet_address is None:
            return user
        if user.email is None:
            raise ValidationFailed.on(
                "walletAddress",
                "Cannot unlink the only login method; add an email first",
            )

        previous = user.wallet_address
        user.wallet_address = None
        user.updated_at = utcnow()
        await self.db.flush()
        await self.events.append(
            stream_id=identity_stream(user.id),
            event_type=IDENTITY_WALLET_UNLINKED,
            data={"wallet_address": previous},
        )
        logger.info("identity.wallet_unlinked", identity_id=str(user.id))
        return user

    # ─── Profile and account ────────────────────────────

    async def update_profile(
        self, identity_id: Union[uuid.UUID, str], patch: dict[str, Any]
    ) -> User:
        """Merge role-appropriate fields from `patch`; others are dropped."""
        user = await self._require(identity_id)
        merged = profile_document(merge_profile(user.role, user.profile or {}, patch))
        changed = sorted(k for k, v in merged.items() if (user.profile or {}).get(k) != v)
        if not changed:
            return user

        # JSON columns don't track in-place mutation, always assign a new dict
        user.profile = merged
        user.updated_at = utcnow()
        await self.db.flush()
        await self.events.append(
            stream_id=identity_stream(user.id),
            event_type=IDENTITY_PROFILE_UPDATED,
            data={"fields": changed},
        )
        return user

    async def update_account(
        self,
        identity_id: Union[uuid.UUID, str],
        name: Optional[str] = None,
        email: Optional[str] = None,
        avatar: Optional[str] = None,
    ) -> User:
        """Change name/email/avatar. Raises DuplicateEmail."""
        user = await self._require(identity_id)
        changed = {}
        if email is not None:
            email = normalize_email(email)
            if email != user.email:
                owner = await self.resolve_by_email(email)
                if owner is not None and owner.id != user.id:
                    raise DuplicateEmail()
                user.email = email
                changed["email"] = email
        if name is not None and name != user.name:
            user.name = name
            changed["name"] = name
        if avatar is not None and avatar != user.avatar:
            user.avatar = avatar
            changed["avatar"] = avatar
        if not changed:
            return user

        user.updated_at = utcnow()
        await self._flush_unique()
        await self.events.append(
            stream_id=identity_stream(user.id),
            event_type=IDENTITY_ACCOUNT_UPDATED,
            data={"fields": sorted(changed)},
        )
        return user

    async def change_role(
        self,
        identity_id: Union[uuid.UUID, str],
        role: str,
        profile: Optional[dict[str, Any]] = None,
    ) -> User:
        """Switch role. The profile is always re-issued in the new shape.

        Nothing from the old role's profile carries over, because the two
        shapes share no meaning (a client's bio is a company blurb).
        """
        user = await self._require(identity_id)
        if role == user.role:
            if profile is not None:
                return await self.update_profile(user.id, profile)
            return user

        previous = user.role
        user.role = role
        user.profile = profile_document(build_profile(role, profile))
        user.updated_at = utcnow()
        await self.db.flush()
        await self.events.append(
            stream_id=identity_stream(user.id),
            event_type=IDENTITY_ROLE_CHANGED,
            data={"from": previous, "to": role},
        )
        logger.info("identity.role_changed", identity_id=str(user.id), to=role)
        return user

    # ─── Helpers ────────────────────────────────────────

    async def _require(self, identity_id: Union[uuid.UUID, str]) -> User:
        user = await self.get(identity_id)
        if user is None:
            raise NotFound("User not found")
        return user

    async def _flush_unique(
        self,
        on_email: type[Exception] = DuplicateEmail,
        on_wallet: type[Exception] = DuplicateWallet,
    ) -> None:
        """Flush, translating unique-constraint violations into conflicts."""
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            # PostgreSQL names the constraint, SQLite names the column
            detail = str(e.orig).lower()
            if "uq_users_wallet_address" in detail or "users.wallet_address" in detail:
                raise on_wallet() from None
            if "uq_users_email" in detail or "users.email" in detail:
                raise on_email() from None
            raise


def _check_profile_kind(role: str, profile: CamelModel) -> None:
    if getattr(profile, "kind", None) != role:
        raise ValidationFailed.on("profile", f"Profile must be a {role} profile")


def _wallet_or_invalid(address: str) -> str:
    try:
        return normalize_address(address)
    except ValueError:
        raise ValidationFailed.on("walletAddress", "Malformed wallet address") from None
