"""
Ed25519 signing for withdrawal messages and REST requests.

MessageSigner holds a depositor/withdrawer keypair and produces detached
signatures over message digests. Only public identifiers are ever logged.
"""

import base64
import json
import logging
from enum import Enum
from pathlib import Path

import base58
from solders.errors import SignerError
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from .errors import SigningUnavailable
from .message_encoder import keccak
from .models import SignedMessage

logger = logging.getLogger(__name__)


class DigestEncoding(Enum):
    """How a message digest is presented to the signing key."""

    RAW = "raw"    # the 32 digest bytes
    HEX = "hex"    # lowercase hex text of the digest, 64 ASCII bytes


def _keypair_from_bytes(secret: bytes | bytearray) -> Keypair:
    match len(secret):
        case 64:
            return Keypair.from_bytes(bytes(secret))
        case 32:
            return Keypair.from_seed(bytes(secret))
        case length:
            raise SigningUnavailable(
                f"Key material must be a 32-byte seed or 64-byte keypair, got {length} bytes"
            )


class MessageSigner:
    """Detached-signature capability backed by a Solana keypair.

    Args:
        keypair: Loaded keypair
        encoding: Whether the digest is signed raw or as hex text
    """

    def __init__(self, keypair: Keypair, encoding: DigestEncoding = DigestEncoding.RAW):
        self._keypair: Keypair | None = keypair
        self.encoding = encoding
        logger.debug(f"Signer ready for {keypair.pubkey()} ({encoding.value} digest)")

    @classmethod
    def from_secret_bytes(
        cls,
        secret: bytes | bytearray,
        encoding: DigestEncoding = DigestEncoding.RAW
    ) -> "MessageSigner":
        """
        Load a signer from a 64-byte keypair or a 32-byte seed.

        A ``bytearray`` argument is zeroed once the keypair has been built.

        Raises:
            SigningUnavailable: If the key material is malformed
        """
        try:
            keypair = _keypair_from_bytes(secret)
        except (ValueError, SignerError) as exc:
            raise SigningUnavailable("Key material could not be loaded") from exc
        finally:
            if isinstance(secret, bytearray):
                secret[:] = bytes(len(secret))
        return cls(keypair, encoding)

    @classmethod
    def from_base58(
        cls,
        secret: str,
        encoding: DigestEncoding = DigestEncoding.RAW
    ) -> "MessageSigner":
        try:
            decoded = bytearray(base58.b58decode(secret.removeprefix("ed25519:")))
        except ValueError as exc:
            raise SigningUnavailable("Key material is not valid base58") from exc
        return cls.from_secret_bytes(decoded, encoding)

    @classmethod
    def from_json_file(
        cls,
        path: str | Path,
        encoding: DigestEncoding = DigestEncoding.RAW
    ) -> "MessageSigner":
        """Load a Solana CLI keypair file (a JSON array of 64 byte values)."""
        try:
            values = json.loads(Path(path).read_text())
            secret = bytearray(values)
        except (OSError, ValueError, TypeError) as exc:
            raise SigningUnavailable(f"Cannot read keypair file {path}") from exc
        return cls.from_secret_bytes(secret, encoding)

    @property
    def keypair(self) -> Keypair:
        if self._keypair is None:
            raise SigningUnavailable("Signer has been closed")
        return self._keypair

    @property
    def public_key(self) -> Pubkey:
        return self.keypair.pubkey()

    def close(self) -> None:
        """Drop the reference to the key material."""
        self._keypair = None

    def __enter__(self) -> "MessageSigner":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._keypair is None else str(self._keypair.pubkey())
        return f"MessageSigner({state}, encoding={self.encoding.value})"

    def signing_bytes(self, digest: bytes) -> bytes:
        """Bytes handed to the key for a given digest."""
        if self.encoding is DigestEncoding.HEX:
            return digest.hex().encode("ascii")
        return digest

    def sign(self, payload: bytes) -> SignedMessage:
        """
        Sign the keccak-256 digest of an encoded message.

        Args:
            payload: Canonically encoded message bytes

        Returns:
            SignedMessage with the 64-byte signature and the public key

        Raises:
            SigningUnavailable: If the signer has been closed
        """
        keypair = self.keypair
        digest = keccak(payload)
        to_sign = self.signing_bytes(digest)
        signature = keypair.sign_message(to_sign)
        logger.debug(f"Signed digest 0x{digest.hex()} with {keypair.pubkey()}")
        return SignedMessage(
            signature=bytes(signature),
            public_key=keypair.pubkey(),
            digest=digest,
            signed_bytes=to_sign,
        )

    @staticmethod
    def verify(signed: SignedMessage, payload: bytes | None = None) -> bool:
        """Check a signature, and optionally that it covers ``payload``."""
        if payload is not None and keccak(payload) != signed.digest:
            return False
        return Signature.from_bytes(signed.signature).verify(
            signed.public_key, signed.signed_bytes
        )


def sign_request(secret: str, message: str) -> str:
    """
    Sign a REST request string with an Orderly API secret.

    Args:
        secret: ed25519 private key, base58 with optional ``ed25519:`` prefix
        message: ``timestamp + METHOD + path + body``

    Returns:
        Base64 signature for the ``orderly-signature`` header
    """
    try:
        seed = bytearray(base58.b58decode(secret.removeprefix("ed25519:")))
    except ValueError as exc:
        raise SigningUnavailable("API secret is not valid base58") from exc

    if len(seed) != 32:
        raise SigningUnavailable(f"API secret must be 32 bytes, got {len(seed)}")

    try:
        keypair = Keypair.from_seed(bytes(seed))
    finally:
        seed[:] = bytes(len(seed))

    signature = keypair.sign_message(message.encode("utf-8"))
    return base64.b64encode(bytes(signature)).decode()
