"""Wallet signature verification.

Learn: A wallet proves control of an address by signing a challenge
message. For ordinary accounts (EOAs) the signature is a 65-byte ECDSA
signature (r, s, v) over the EIP-191 "personal sign" digest:

    keccak256("\\x19Ethereum Signed Message:\\n" + len(message) + message)

We recover the signer's address from the signature and compare it to the
claimed address, case-insensitively.

Smart-contract wallets produce longer, contract-specific signatures that
cannot be recovered. Those are checked by asking the wallet contract
itself via ERC-1271 `isValidSignature(hash, signature)`. If no RPC
endpoint is configured they are rejected. A signature we cannot
validate is never accepted.

The signed message must be a challenge this server issued: its nonce
carries the issue time and an HMAC under the session secret, so a
stale or invented message is refused without any lookup. With Redis
available each nonce is also single-use.
"""

import hashlib
import hmac
import re
import secrets
import time
from typing import Optional, Union

import structlog
from eth_account import Account
from eth_account.messages import defunct_hash_message, encode_defunct
from web3 import AsyncWeb3

from peerhire.config import settings
from peerhire.db.redis import claim_once
from peerhire.errors import bounded

logger = structlog.get_logger()

ECDSA_SIGNATURE_LENGTH = 65
ERC1271_MAGIC_VALUE = bytes.fromhex("1626ba7e")

ERC1271_ABI = [
    {
        "inputs": [
            {"name": "hash", "type": "bytes32"},
            {"name": "signature", "type": "bytes"},
        ],
        "name": "isValidSignature",
        "outputs": [{"name": "magicValue", "type": "bytes4"}],
        "stateMutability": "view",
        "type": "function",
    }
]

CHALLENGE_PREFIX = "Sign this message to authenticate with PeerHire"

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


# ─── Addresses and challenges ────────────────────────────


def is_address(address: str) -> bool:
    return isinstance(address, str) and bool(_ADDRESS_RE.match(address))


def normalize_address(address: str) -> str:
    """Validate a 0x-prefixed hex address and return it lower-cased."""
    if not is_address(address):
        raise ValueError(f"Malformed wallet address: {address!r}")
    return address.lower()


def build_challenge(nonce: Optional[str] = None) -> str:
    """The message a wallet signs to log in."""
    nonce = nonce or str(int(time.time() * 1000))
    return f"{CHALLENGE_PREFIX}\nNonce: {nonce}"


def _nonce_mac(secret: str, body: str) -> str:
    return hmac.new(
        secret.encode("utf-8"), f"challenge:{body}".encode("utf-8"), hashlib.sha256
    ).hexdigest()[:32]


def issue_challenge(secret: str, now: Optional[float] = None) -> str:
    """A challenge stamped with its issue time, for /auth/challenge."""
    issued = int(time.time() if now is None else now)
    body = f"{issued}.{secrets.token_hex(8)}"
    return build_challenge(f"{body}.{_nonce_mac(secret, body)}")


def challenge_nonce(
    message: str, secret: str, ttl: float, now: Optional[float] = None
) -> Optional[str]:
    """The nonce of a fresh challenge issued with `secret`, else None."""
    head = f"{CHALLENGE_PREFIX}\nNonce: "
    if not isinstance(message, str) or not message.startswith(head):
        return None
    nonce = message[len(head):]
    parts = nonce.split(".")
    if len(parts) != 3 or not parts[0].isdecimal():
        return None
    issued, rand, mac = parts
    if not hmac.compare_digest(
        mac.encode("utf-8"), _nonce_mac(secret, f"{issued}.{rand}").encode("utf-8")
    ):
        return None
    age = (time.time() if now is None else now) - int(issued)
    if not 0 <= age < ttl:
        return None
    return nonce


# ─── Signature decoding ──────────────────────────────────


def _signature_bytes(signature: Union[str, bytes]) -> Optional[bytes]:
    if isinstance(signature, bytes):
        return signature
    if not isinstance(signature, str):
        return None
    hex_part = signature[2:] if signature.startswith("0x") else signature
    try:
        return bytes.fromhex(hex_part)
    except ValueError:
        return None


def recover_signer(signature: Union[str, bytes], message: str) -> Optional[str]:
    """Recover the signing address of a 65-byte personal_sign signature."""
    sig = _signature_bytes(signature)
    if sig is None or len(sig) != ECDSA_SIGNATURE_LENGTH:
        return None
    try:
        return Account.recover_message(encode_defunct(text=message), signature=sig)
    except Exception:
        # eth_account/eth_keys raise assorted errors for bad r/s/v values
        return None


def verify_wallet_signature(
    address: str, signature: Union[str, bytes], message: str
) -> bool:
    """True iff `signature` is address's ECDSA signature over `message`.

    Fails closed: malformed address, malformed or non-ECDSA signature,
    and recovery errors all return False.
    """
    if not is_address(address) or not isinstance(message, str):
        return False
    recovered = recover_signer(signature, message)
    if recovered is None:
        return False
    return recovered.lower() == address.lower()


# ─── ERC-1271 contract wallets ───────────────────────────


class Erc1271Verifier:
    """Asks a wallet contract whether it considers a signature valid."""

    def __init__(self, rpc_url: str, timeout: float = 10.0):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))

    async def is_valid_signature(
        self, address: str, message: str, signature: bytes
    ) -> bool:
        """Call isValidSignature on `address`. Timeouts raise ServiceUnavailable."""
        return await bounded(
            self._call(address, message, signature),
            self.timeout,
            "wallet.erc1271",
        )

    async def _call(self, address: str, message: str, signature: bytes) -> bool:
        try:
            contract = self._w3.eth.contract(
                address=AsyncWeb3.to_checksum_address(address), abi=ERC1271_ABI
            )
            digest = defunct_hash_message(text=message)
            result = await contract.functions.isValidSignature(
                bytes(digest), signature
            ).call()
        except Exception as e:
            # Reverts, non-contract addresses and RPC errors all mean "not valid"
            logger.info("wallet.erc1271_rejected", address=address, error=str(e))
            return False
        return bytes(result)[:4] == ERC1271_MAGIC_VALUE


_contract_verifier: Optional[Erc1271Verifier] = None


def get_contract_verifier() -> Optional[Erc1271Verifier]:
    """Shared ERC-1271 verifier, or None if no RPC endpoint is configured."""
    global _contract_verifier
    if not settings.eth_rpc_url:
        return None
    if _contract_verifier is None or _contract_verifier.rpc_url != settings.eth_rpc_url:
        _contract_verifier = Erc1271Verifier(
            settings.eth_rpc_url, timeout=settings.external_call_timeout_seconds
        )
    return _contract_verifier


async def verify_wallet_credentials(
    address: str,
    signature: Union[str, bytes],
    message: str,
    contract_verifier: Optional[Erc1271Verifier] = None,
) -> bool:
    """Verify a wallet login for either an EOA or a contract wallet.

    65-byte signatures go through ECDSA recovery first. Anything that
    does not recover to `address` is only accepted if the contract at
    `address` validates it via ERC-1271.
    """
    if not is_address(address) or not isinstance(message, str):
        return False
    sig = _signature_bytes(signature)
    if not sig:
        return False
    if len(sig) == ECDSA_SIGNATURE_LENGTH and verify_wallet_signature(
        address, sig, message
    ):
        return True
    if contract_verifier is None:
        if len(sig) != ECDSA_SIGNATURE_LENGTH:
            logger.info(
                "wallet.contract_signature_rejected",
                address=address,
                signature_length=len(sig),
                reason="no_rpc_configured",
            )
        return False
    return await contract_verifier.is_valid_signature(address, message, sig)


async def verify_signed_challenge(
    address: str,
    signature: Union[str, bytes],
    message: str,
    contract_verifier: Optional[Erc1271Verifier] = None,
) -> bool:
    """Wallet proof for the HTTP routes: fresh challenge, valid signature, first use."""
    ttl = settings.wallet_challenge_ttl_seconds
    nonce = challenge_nonce(message, settings.jwt_secret, ttl)
    if nonce is None:
        logger.info("wallet.challenge_rejected", address=address)
        return False
    if not await verify_wallet_credentials(address, signature, message, contract_verifier):
        return False
    if not await claim_once(f"peerhire:challenge:{nonce}", ttl):
        logger.info("wallet.challenge_replayed", address=address)
        return False
    return True
