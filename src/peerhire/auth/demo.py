"""Demo-mode accounts.

Learn: Demo environments need working logins without seeding a
database. When PEERHIRE_DEMO_MODE is on, the configured demo
email/password pairs (one per role) log in as synthetic identities
that never touch the identity store. Their sessions carry a
`demo: true` claim and are only honored while demo mode is still on.

Off by default, and refused outright in production (see config.py).
"""

import secrets
import uuid
from dataclasses import dataclass
from typing import Optional

from peerhire.config import settings
from peerhire.db.models import User
from peerhire.schemas.identity import build_profile, profile_document

_DEMO_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "https://peerhire.app/demo")


@dataclass(frozen=True)
class DemoAccount:
    role: str
    email: str
    password: str
    name: str

    @property
    def id(self) -> uuid.UUID:
        # Deterministic so a demo token stays valid across restarts
        return uuid.uuid5(_DEMO_NAMESPACE, self.role)


def demo_accounts() -> list[DemoAccount]:
    if not settings.demo_mode:
        return []
    candidates = [
        DemoAccount(
            "client",
            settings.demo_client_email,
            settings.demo_client_password,
            settings.demo_client_name,
        ),
        DemoAccount(
            "freelancer",
            settings.demo_freelancer_email,
            settings.demo_freelancer_password,
            settings.demo_freelancer_name,
        ),
    ]
    return [a for a in candidates if a.email and a.password]


def match_demo_account(email: str, password: str) -> Optional[DemoAccount]:
    """The demo account these credentials belong to, if demo mode is on."""
    email = email.strip().lower()
    for account in demo_accounts():
        email_ok = secrets.compare_digest(email.encode(), account.email.lower().encode())
        password_ok = secrets.compare_digest(password.encode(), account.password.encode())
        if email_ok and password_ok:
            return account
    return None


def demo_identity(account: DemoAccount) -> User:
    """A transient, never-persisted identity for a demo account."""
    return User(
        id=account.id,
        email=account.email.lower(),
        name=account.name,
        role=account.role,
        profile=profile_document(build_profile(account.role)),
        avatar=f"https://api.dicebear.com/7.x/avataaars/svg?seed={account.email}",
    )


def demo_identity_for_subject(subject_id: str) -> Optional[User]:
    """Rebuild the demo identity behind a demo session's subject id."""
    for account in demo_accounts():
        if str(account.id) == subject_id:
            return demo_identity(account)
    return None
