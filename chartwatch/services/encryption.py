"""Versioned credential envelopes.

Stored credentials take one of three shapes:

* ``enc$v1$<fernet token>`` - current format, Fernet symmetric encryption.
* ``<32 hex iv>:<hex ciphertext>`` - v0, AES-256-CBC records written before the
  envelope existed. Only recognised when both halves are well-formed hex.
* anything else - legacy plaintext.

A value that parses as an envelope but fails to decrypt is treated as legacy
plaintext by :func:`reveal`, so pre-encryption records keep working.
"""

import logging
import re
from dataclasses import dataclass

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from chartwatch.config import settings

logger = logging.getLogger(__name__)

ENVELOPE_TAG = "enc"
CURRENT_VERSION = "v1"
_V0_RE = re.compile(r"^([0-9a-fA-F]{32}):((?:[0-9a-fA-F]{32})+)$")

_fernet: Fernet | None = None


class CredentialDecryptError(Exception):
    pass


@dataclass(frozen=True)
class CredentialEnvelope:
    version: str
    ciphertext: str
    iv: str | None = None

    def serialize(self) -> str:
        if self.version == "v0":
            return f"{self.iv}:{self.ciphertext}"
        return f"{ENVELOPE_TAG}${self.version}${self.ciphertext}"


def _get_fernet() -> Fernet:
    global _fernet
    if _fernet is None:
        key = settings.encryption_key
        if not key:
            raise RuntimeError(
                "CW_ENCRYPTION_KEY not set. Generate one with: "
                "python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
            )
        _fernet = Fernet(key.encode() if isinstance(key, str) else key)
    return _fernet


def parse_envelope(stored: str) -> CredentialEnvelope | None:
    """Return the envelope a stored value carries, or None for plaintext."""
    if not stored:
        return None
    parts = stored.split("$", 2)
    if len(parts) == 3 and parts[0] == ENVELOPE_TAG and parts[1] == CURRENT_VERSION and parts[2]:
        return CredentialEnvelope(version=parts[1], ciphertext=parts[2])
    match = _V0_RE.fullmatch(stored)
    if match:
        return CredentialEnvelope(version="v0", iv=match.group(1), ciphertext=match.group(2))
    return None


def encrypt(plaintext: str) -> str:
    """Seal a credential in the current envelope format."""
    if not plaintext:
        return ""
    token = _get_fernet().encrypt(plaintext.encode()).decode()
    return CredentialEnvelope(version=CURRENT_VERSION, ciphertext=token).serialize()


def _decrypt_v0(envelope: CredentialEnvelope) -> str:
    key_hex = settings.legacy_encryption_key
    if len(key_hex) != 64:
        raise CredentialDecryptError("CW_LEGACY_ENCRYPTION_KEY must be 64 hex characters")
    try:
        key = bytes.fromhex(key_hex)
        decryptor = Cipher(algorithms.AES(key), modes.CBC(bytes.fromhex(envelope.iv))).decryptor()
        padded = decryptor.update(bytes.fromhex(envelope.ciphertext)) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")
    except (ValueError, UnicodeDecodeError) as e:
        raise CredentialDecryptError(f"v0 envelope did not decrypt: {e}") from e


def decrypt(envelope: CredentialEnvelope) -> str:
    """Open an envelope. Raises CredentialDecryptError on any failure."""
    if envelope.version == "v0":
        return _decrypt_v0(envelope)
    if envelope.version == CURRENT_VERSION:
        try:
            return _get_fernet().decrypt(envelope.ciphertext.encode()).decode()
        except InvalidToken as e:
            raise CredentialDecryptError("v1 envelope did not decrypt") from e
    raise CredentialDecryptError(f"Unknown envelope version: {envelope.version}")


def reveal(stored: str | None) -> str | None:
    """Return the plaintext credential, downgrading to legacy plaintext on failure."""
    if not stored:
        return None
    envelope = parse_envelope(stored)
    if envelope is None:
        return stored
    try:
        return decrypt(envelope)
    except (CredentialDecryptError, RuntimeError, ValueError) as e:
        logger.warning(f"Credential envelope {envelope.version} unreadable, using stored value as plaintext: {e}")
        return stored


def needs_reencryption(stored: str | None) -> bool:
    """True for anything not already in the current envelope format."""
    if not stored:
        return False
    envelope = parse_envelope(stored)
    return envelope is None or envelope.version != CURRENT_VERSION
