"""PeerHire identity & session service.

Password and wallet accounts, signed sessions, role-gated routes, and
the client-side auth cache that talks to them.
"""

__version__ = "0.1.0"
