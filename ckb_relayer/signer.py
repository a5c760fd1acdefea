"""
secp256k1 signing of relay payloads.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_keys import keys
from eth_keys.constants import SECPK1_N
from eth_keys.exceptions import BadSignature, ValidationError
from web3 import Web3

from .errors import SigningError

logger = structlog.get_logger()


@dataclass(frozen=True)
class SignedMessage:
    """Payload plus signature, as sent to ckb_handler.submit_message."""

    payload: bytes
    signature: bytes  # 65 bytes: r || s || v (v in {0, 1})

    @property
    def digest(self) -> bytes:
        return payload_digest(self.payload)

    def to_service_payload(self) -> dict[str, str]:
        return {
            "payload": "0x" + self.payload.hex(),
            "signature": "0x" + self.signature.hex(),
        }


def payload_digest(payload: bytes) -> bytes:
    """keccak-256 of the payload; this is what gets signed."""
    return bytes(Web3.keccak(payload))


def load_account(private_key: Optional[str]) -> LocalAccount:
    """
    Parse a hex private key.

    Raises:
        SigningError: key missing, not hex, wrong length or out of range
    """
    if not private_key:
        raise SigningError("relayer private key is not configured")

    body = private_key[2:] if private_key.startswith("0x") else private_key
    try:
        key_bytes = bytes.fromhex(body)
    except ValueError as e:
        raise SigningError("relayer private key is not valid hex") from e

    if len(key_bytes) != 32:
        raise SigningError(f"relayer private key must be 32 bytes, got {len(key_bytes)}")
    if not 0 < int.from_bytes(key_bytes, "big") < SECPK1_N:
        raise SigningError("relayer private key is outside the secp256k1 range")

    return Account.from_key(key_bytes)


class MessageSigner:
    """
    Holds the relayer key and signs payloads with it.

    Passed explicitly to the relayer and the Muta client; nothing in the
    package keeps a global account.
    """

    def __init__(self, private_key: Optional[str]):
        self.account = load_account(private_key)
        self._key = keys.PrivateKey(bytes(self.account.key))

    @property
    def public_key(self) -> keys.PublicKey:
        return self._key.public_key

    @property
    def compressed_public_key(self) -> bytes:
        return self._key.public_key.to_compressed_bytes()

    @property
    def address(self) -> str:
        return self.account.address

    def sign_digest(self, digest: bytes) -> bytes:
        """Recoverable signature over a 32-byte digest (65 bytes)."""
        if len(digest) != 32:
            raise SigningError(f"digest must be 32 bytes, got {len(digest)}")
        return self._key.sign_msg_hash(digest).to_bytes()

    def sign(self, payload: bytes) -> SignedMessage:
        """Sign keccak(payload)."""
        digest = payload_digest(payload)
        signature = self.sign_digest(digest)

        logger.info(
            "payload_signed",
            digest="0x" + digest.hex(),
            payload_size=len(payload),
            signer=self.address,
        )

        return SignedMessage(payload=payload, signature=signature)


def recover_public_key(message: SignedMessage) -> keys.PublicKey:
    """Recover the signer's public key from a signed message."""
    try:
        signature = keys.Signature(signature_bytes=message.signature)
        return signature.recover_public_key_from_msg_hash(message.digest)
    except (BadSignature, ValidationError) as e:
        raise SigningError(f"cannot recover public key: {e}") from e


def verify_signed_message(message: SignedMessage, public_key: keys.PublicKey) -> bool:
    """Check the signature against an expected public key."""
    try:
        signature = keys.Signature(signature_bytes=message.signature)
    except (BadSignature, ValidationError):
        return False
    return public_key.verify_msg_hash(message.digest, signature)
