"""Event type constants.

Learn: Centralizing event types as constants prevents typos and
makes it easy to discover all event types in the system.
"""

# ─── Identity lifecycle ──────────────────────────────────

IDENTITY_CREATED = "identity.created"
IDENTITY_ACCOUNT_UPDATED = "identity.account_updated"
IDENTITY_PROFILE_UPDATED = "identity.profile_updated"
IDENTITY_ROLE_CHANGED = "identity.role_changed"

# ─── Wallet linking ──────────────────────────────────────

IDENTITY_WALLET_LINKED = "identity.wallet_linked"
IDENTITY_WALLET_UNLINKED = "identity.wallet_unlinked"
