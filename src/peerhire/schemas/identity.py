"""Pydantic schemas for identities, profiles, and auth requests.

Learn: Pydantic v2 models validate request/response data. Separate
request schemas (input) from "Read" schemas (output) for clean APIs.
The wire format is camelCase (hourlyRate, walletAddress), so every model
uses a camelCase alias generator while Python code keeps snake_case.

Profiles are a tagged union on "kind". A freelancer profile and a client
profile share almost nothing, and code that touches a profile always
dispatches on the tag instead of guessing which fields exist.
"""

import uuid
from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from peerhire.auth.wallet import is_address
from peerhire.errors import ValidationFailed

Role = Literal["client", "freelancer"]

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─── Profiles ────────────────────────────────────────────


class FreelancerProfile(CamelModel):
    kind: Literal["freelancer"] = "freelancer"
    skills: list[str] = Field(default_factory=list)
    bio: Optional[str] = Field(None, max_length=2000)
    hourly_rate: Optional[float] = Field(None, ge=0)
    location: Optional[str] = Field(None, max_length=200)


class ClientProfile(CamelModel):
    kind: Literal["client"] = "client"
    company_size: Optional[str] = Field(None, max_length=50)
    industry: Optional[str] = Field(None, max_length=100)
    company_location: Optional[str] = Field(None, max_length=200)
    bio: Optional[str] = Field(None, max_length=2000)


Profile = Annotated[Union[FreelancerProfile, ClientProfile], Field(discriminator="kind")]

PROFILE_TYPES: dict[str, type[CamelModel]] = {
    "freelancer": FreelancerProfile,
    "client": ClientProfile,
}


def _role_fields(role: str, data: dict[str, Any]) -> dict[str, Any]:
    """Keep only the keys that belong to `role`'s profile shape, camelCased."""
    cls = PROFILE_TYPES[role]
    kept = {}
    for name, field in cls.model_fields.items():
        alias = field.alias or name
        if name == "kind":
            continue
        if alias in data:
            kept[alias] = data[alias]
        elif name in data:
            kept[alias] = data[name]
    return kept


def build_profile(role: str, data: Optional[dict[str, Any]] = None) -> CamelModel:
    """Build `role`'s profile from loose input, dropping foreign fields.

    A client signup that sends hourlyRate gets a client profile without
    it; nothing from the other shape is ever stored.
    """
    cls = PROFILE_TYPES[role]
    try:
        return cls.model_validate(_role_fields(role, data or {}))
    except ValidationError as e:
        raise ValidationFailed(
            details=[
                {
                    "path": ".".join(["profile", *(str(p) for p in err["loc"])]),
                    "message": err["msg"],
                }
                for err in e.errors()
            ]
        ) from None


def merge_profile(role: str, current: dict[str, Any], patch: dict[str, Any]) -> CamelModel:
    """Apply `patch` onto the stored profile, role-appropriate fields only."""
    existing = {}
    if current.get("kind") == role:
        existing = _role_fields(role, current)
    return build_profile(role, {**existing, **_role_fields(role, patch)})


def profile_document(profile: CamelModel) -> dict[str, Any]:
    """The JSON document stored in users.profile."""
    return profile.model_dump(mode="json", by_alias=True)


# ─── Requests ────────────────────────────────────────────


class WalletData(CamelModel):
    address: str
    signature: str = Field(..., min_length=2)
    message: str = Field(..., min_length=1, max_length=2000)

    @field_validator("address")
    @classmethod
    def _check_address(cls, v: str) -> str:
        if not is_address(v):
            raise ValueError("must be a 0x-prefixed 20-byte hex address")
        return v


class SignupRequest(CamelModel):
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=8, max_length=128)
    name: str = Field(..., min_length=2, max_length=100)
    role: Role
    profile: Optional[dict[str, Any]] = None
    avatar: Optional[str] = Field(None, max_length=500)
    wallet_data: Optional[WalletData] = None


class ClientSignupRequest(CamelModel):
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=8, max_length=128)
    name: str = Field(..., min_length=2, max_length=100)
    profile: Optional[dict[str, Any]] = None
    avatar: Optional[str] = Field(None, max_length=500)


class LoginRequest(CamelModel):
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class WalletAuthRequest(WalletData):
    pass


class WalletSignupRequest(WalletData):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    email: Optional[str] = Field(None, max_length=255, pattern=EMAIL_PATTERN)
    role: Role = "freelancer"
    profile: Optional[dict[str, Any]] = None


class ProfileUpdateRequest(CamelModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    email: Optional[str] = Field(None, max_length=255, pattern=EMAIL_PATTERN)
    wallet_address: Optional[str] = None
    avatar: Optional[str] = Field(None, max_length=500)
    profile: Optional[dict[str, Any]] = None


class RoleChangeRequest(CamelModel):
    role: Role
    profile: Optional[dict[str, Any]] = None


# ─── Responses ───────────────────────────────────────────


class UserRead(CamelModel):
    id: uuid.UUID
    email: Optional[str] = None
    name: str
    role: Role
    wallet_address: Optional[str] = None
    avatar: Optional[str] = None
    profile: Profile
    created_at: Optional[datetime] = None

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class AuthResponse(CamelModel):
    token: str
    user: UserRead


class UserResponse(CamelModel):
    user: UserRead


class ChallengeResponse(CamelModel):
    message: str
