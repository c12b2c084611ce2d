"""Session token tests — issuance, verification and the expiry boundary.

Learn: SessionIssuer takes a clock, so expiry is tested by moving a fake
clock rather than sleeping. A token issued at t with ttl is valid at
t + ttl - 1 and expired at exactly t + ttl.
"""

import uuid
from types import SimpleNamespace

import jwt
import pytest

from peerhire.auth.jwt import SessionIssuer, TokenErrorKind

SECRET = "unit-test-secret-0123456789abcdefghij"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _identity(role="freelancer", email="a@b.com", wallet=None):
    return SimpleNamespace(id=uuid.uuid4(), role=role, email=email, wallet_address=wallet)


def test_issue_and_verify():
    clock = FakeClock()
    issuer = SessionIssuer(SECRET, ttl_seconds=3600, clock=clock)
    who = _identity(role="client", wallet="0x" + "ab" * 20)

    result = issuer.verify(issuer.issue(who))
    assert result.ok
    assert result.error is None
    assert result.claims.subject_id == str(who.id)
    assert result.claims.role == "client"
    assert result.claims.email == "a@b.com"
    assert result.claims.wallet_address == "0x" + "ab" * 20
    assert result.claims.issued_at == int(clock.now)
    assert result.claims.expires_at == int(clock.now) + 3600
    assert result.claims.demo is False


def test_expiry_boundary():
    """Valid at iat + ttl - 1, expired at iat + ttl."""
    clock = FakeClock()
    issuer = SessionIssuer(SECRET, ttl_seconds=600, clock=clock)
    token = issuer.issue(_identity())
    issued_at = clock.now

    clock.now = issued_at + 600 - 1
    assert issuer.verify(token).ok

    clock.now = issued_at + 600
    result = issuer.verify(token)
    assert not result.ok
    assert result.error is TokenErrorKind.EXPIRED


def test_per_call_ttl_overrides_default():
    clock = FakeClock()
    issuer = SessionIssuer(SECRET, ttl_seconds=3600, clock=clock)
    token = issuer.issue(_identity(), ttl=10)
    clock.now += 10
    assert issuer.verify(token).error is TokenErrorKind.EXPIRED


def test_missing_token():
    issuer = SessionIssuer(SECRET)
    assert issuer.verify(None).error is TokenErrorKind.MISSING
    assert issuer.verify("").error is TokenErrorKind.MISSING


@pytest.mark.parametrize("token", ["garbage", "a.b.c", "eyJhbGciOiJIUzI1NiJ9.e30.x"])
def test_malformed_token(token):
    assert SessionIssuer(SECRET).verify(token).error is TokenErrorKind.MALFORMED


def test_wrong_secret_is_malformed():
    token = SessionIssuer(SECRET).issue(_identity())
    other = SessionIssuer("another-secret-0123456789abcdefghijkl")
    assert other.verify(token).error is TokenErrorKind.MALFORMED


def test_tampered_role_is_malformed():
    """Re-signing isn't possible without the secret; edited claims fail."""
    issuer = SessionIssuer(SECRET)
    token = issuer.issue(_identity(role="freelancer"))
    header, payload, signature = token.split(".")
    forged_payload = jwt.encode(
        {"sub": "x", "role": "client", "iat": 1, "exp": 9_999_999_999, "type": "access"},
        "attacker-secret-0000000000000000000000",
        algorithm="HS256",
    ).split(".")[1]
    assert issuer.verify(f"{header}.{forged_payload}.{signature}").error is TokenErrorKind.MALFORMED


def test_missing_claims_is_malformed():
    token = jwt.encode({"sub": "x", "type": "access"}, SECRET, algorithm="HS256")
    assert SessionIssuer(SECRET).verify(token).error is TokenErrorKind.MALFORMED


def test_unknown_role_is_malformed():
    token = jwt.encode(
        {"sub": "x", "role": "admin", "type": "access", "iat": 1, "exp": 9_999_999_999},
        SECRET,
        algorithm="HS256",
    )
    assert SessionIssuer(SECRET).verify(token).error is TokenErrorKind.MALFORMED


def test_demo_claim():
    issuer = SessionIssuer(SECRET)
    result = issuer.verify(issuer.issue(_identity(), demo=True))
    assert result.claims.demo is True


def test_empty_secret_refused():
    with pytest.raises(ValueError):
        SessionIssuer("")


def test_non_positive_ttl_refused():
    with pytest.raises(ValueError):
        SessionIssuer(SECRET, ttl_seconds=0)
    with pytest.raises(ValueError):
        SessionIssuer(SECRET).issue(_identity(), ttl=-1)


def test_settings_require_secret(monkeypatch):
    """Without PEERHIRE_JWT_SECRET the settings refuse to load."""
    from pydantic import ValidationError

    from peerhire.config import Settings

    monkeypatch.delenv("PEERHIRE_JWT_SECRET", raising=False)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)
