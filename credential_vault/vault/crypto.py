"""
Vault Crypto Core: Key derivation, envelope encryption and serialization.

Every stored credential secret is sealed into an envelope:
    scrypt(server_secret, salt) → AES-256-GCM → "<nonce>:<ciphertext>:<tag>"

Each segment is lowercase hex, so the ':' separator can never appear inside
a segment.

Security Note:
    Never log plaintext, envelopes or key material.
    Nonces are random 128-bit; a fresh one is drawn for every encryption.
"""
import os
import logging
import binascii
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import (
    DecryptionError,
    KeyDerivationError,
    MalformedEnvelopeError,
)
from .config import DEFAULT_KDF_SALT, VaultConfig

logger = logging.getLogger("credential_vault.vault")

NONCE_SIZE = 16  # IV length of envelopes already at rest
TAG_SIZE = 16  # GCM authentication tag
KEY_LENGTH = 32  # AES-256
SEPARATOR = ":"

# scrypt cost parameters; must not change while envelopes exist at rest.
SCRYPT_N = 2 ** 14
SCRYPT_R = 8
SCRYPT_P = 1


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(server_secret: str, salt: bytes = DEFAULT_KDF_SALT) -> bytes:
    """Derive the 32-byte envelope key from the server secret using scrypt.

    Args:
        server_secret: Long-lived server secret.
        salt: Application-level salt.

    Returns:
        32-byte derived key.

    Raises:
        KeyDerivationError: If the secret is missing or empty.
    """
    if not server_secret:
        raise KeyDerivationError("Server secret is missing or empty")
    kdf = Scrypt(
        salt=salt,
        length=KEY_LENGTH,
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
    )
    return kdf.derive(server_secret.encode("utf-8"))


# ---------------------------------------------------------------------------
# Envelope serialization
# ---------------------------------------------------------------------------

def pack_envelope(nonce: bytes, ciphertext: bytes, tag: bytes) -> str:
    """Serialize envelope parts as ``nonce:ciphertext:tag`` lowercase hex."""
    return SEPARATOR.join((nonce.hex(), ciphertext.hex(), tag.hex()))


def unpack_envelope(envelope: str) -> tuple[bytes, bytes, bytes]:
    """Split an envelope into its (nonce, ciphertext, tag) bytes.

    Raises:
        MalformedEnvelopeError: If the envelope does not have exactly three
            hex segments, or the nonce or tag has an impossible length.
    """
    if not isinstance(envelope, str):
        raise MalformedEnvelopeError("Envelope must be a string")
    segments = envelope.split(SEPARATOR)
    if len(segments) != 3:
        raise MalformedEnvelopeError(
            f"Envelope must have 3 segments, got {len(segments)}"
        )
    try:
        nonce, ciphertext, tag = (binascii.unhexlify(s) for s in segments)
    except (binascii.Error, ValueError) as err:
        raise MalformedEnvelopeError("Envelope segments must be hex") from err
    if not 8 <= len(nonce) <= 128:
        raise MalformedEnvelopeError(
            f"Envelope nonce has invalid length: {len(nonce)} bytes"
        )
    if len(tag) != TAG_SIZE:
        raise MalformedEnvelopeError(
            f"Envelope tag must be {TAG_SIZE} bytes, got {len(tag)}"
        )
    return nonce, ciphertext, tag


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------

class EnvelopeCodec:
    """Seal and open credential secrets with a fixed derived key.

    The key is handed over already derived; build instances with
    :meth:`from_secret` or :func:`get_codec` so the slow KDF runs once.
    """

    __slots__ = ("_cipher",)

    def __init__(self, key: bytes):
        if len(key) != KEY_LENGTH:
            raise KeyDerivationError(
                f"Envelope key must be {KEY_LENGTH} bytes, got {len(key)}"
            )
        self._cipher = AESGCM(key)

    def __repr__(self) -> str:
        return "<EnvelopeCodec aes-256-gcm>"

    @classmethod
    def from_secret(
        cls, server_secret: str, salt: bytes = DEFAULT_KDF_SALT
    ) -> "EnvelopeCodec":
        """Derive the key from the server secret and build a codec."""
        return cls(derive_key(server_secret, salt))

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a secret string into an envelope.

        Args:
            plaintext: Secret to protect. May be empty.

        Returns:
            Envelope string ``nonce_hex:ciphertext_hex:tag_hex``.
        """
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._cipher.encrypt(nonce, plaintext.encode("utf-8"), None)
        return pack_envelope(nonce, sealed[:-TAG_SIZE], sealed[-TAG_SIZE:])

    def decrypt(self, envelope: str) -> str:
        """Decrypt an envelope back into the secret string.

        Raises:
            MalformedEnvelopeError: If the envelope cannot be parsed.
            DecryptionError: If the tag does not authenticate the ciphertext.
        """
        nonce, ciphertext, tag = unpack_envelope(envelope)
        try:
            plaintext = self._cipher.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as err:
            raise DecryptionError("Envelope failed authentication") from err
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as err:
            raise DecryptionError("Envelope plaintext is not valid UTF-8") from err


# Process-wide codec, set once and never mutated afterwards.
_codec: Optional[EnvelopeCodec] = None


def get_codec(config: Optional[VaultConfig] = None) -> EnvelopeCodec:
    """Return the process-wide codec, deriving its key on first use.

    Args:
        config: Settings to derive the key from. Loaded from the
            environment when omitted on first use.

    Raises:
        KeyDerivationError: If no server secret is configured.
    """
    global _codec
    if _codec is None:
        if config is None:
            config = VaultConfig.from_env()
        _codec = EnvelopeCodec.from_secret(
            config.server_secret.get_secret_value(), config.kdf_salt,
        )
        logger.info("Envelope key derived")
    return _codec
