"""Authentication and authorization.

Two authentication paths resolve to the same identity store:
1. Email/password → bcrypt verification
2. Wallet → signed challenge, ECDSA recovery (or ERC-1271 for contract wallets)

Both end in a signed session token, which the access gate in
dependencies.py checks against each route's allowed roles.
"""
