"""Cipher engine behind encrypted attributes and the EncryptedString column type.

Four modes are supported, see ``EncryptionMode``.  The AES modes use
AES-256-GCM with a random IV per write, ``single_iv_and_salt`` uses AES-SIV so
equal plaintexts produce equal ciphertexts (which is what makes those
attributes searchable), and ``fernet`` produces self-contained Fernet tokens.

The default key is loaded from the FIELD_ENCRYPTION_KEY environment
variable.  Generate a key with:

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

import base64
import binascii
import enum
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, AESSIV
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from attr_encrypted.config import get_settings
from attr_encrypted.errors import DecryptionError, EncryptionError, EncryptionKeyError

logger = logging.getLogger(__name__)

AES_KEY_BYTES = 32
SIV_KEY_BYTES = 64
IV_BYTES = 12
SALT_BYTES = 16
PBKDF2_ITERATIONS = 2000
HKDF_INFO = b"attr_encrypted"


class EncryptionMode(str, enum.Enum):
    PER_ATTRIBUTE_IV = "per_attribute_iv"
    PER_ATTRIBUTE_IV_AND_SALT = "per_attribute_iv_and_salt"
    SINGLE_IV_AND_SALT = "single_iv_and_salt"
    FERNET = "fernet"

    @property
    def uses_iv(self) -> bool:
        return self in (EncryptionMode.PER_ATTRIBUTE_IV, EncryptionMode.PER_ATTRIBUTE_IV_AND_SALT)

    @property
    def uses_salt(self) -> bool:
        return self is EncryptionMode.PER_ATTRIBUTE_IV_AND_SALT

    @property
    def deterministic(self) -> bool:
        return self is EncryptionMode.SINGLE_IV_AND_SALT


_fernet: Fernet | None = None


def _get_fernet() -> Fernet | None:
    """Lazily initialize the default Fernet cipher from the configured key."""
    global _fernet
    if _fernet is not None:
        return _fernet

    settings = get_settings()
    key = settings.field_encryption_key
    if not key:
        logger.warning(
            "FIELD_ENCRYPTION_KEY is not set, EncryptedString columns will NOT be encrypted. "
            "Generate a key with: python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
        )
        return None

    try:
        _fernet = Fernet(key.encode() if isinstance(key, str) else key)
        return _fernet
    except (ValueError, binascii.Error) as exc:
        logger.error("Invalid FIELD_ENCRYPTION_KEY: %s", exc)
        return None


def is_encryption_enabled() -> bool:
    """Return True if the default key is configured and valid."""
    return _get_fernet() is not None


# ─── Column-level string encryption (EncryptedString) ─────────────────────────


def encrypt_value(plaintext: str | None) -> str | None:
    """Encrypt a string value with the default key.  Returns None if input is None."""
    if plaintext is None:
        return None
    fernet = _get_fernet()
    if fernet is None:
        return plaintext  # Graceful degradation: no key = no encryption
    return fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")


def decrypt_value(ciphertext: str | None) -> str | None:
    """Decrypt a string value with the default key.  Returns None if input is None.

    If decryption fails (e.g. the value was stored before encryption was
    enabled), returns the original value unchanged so existing data remains
    readable during migration.
    """
    if ciphertext is None:
        return None
    fernet = _get_fernet()
    if fernet is None:
        return ciphertext
    try:
        return fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
    except (InvalidToken, ValueError):
        # Value was likely stored before encryption was enabled, return as-is
        return ciphertext


# ─── Keys ─────────────────────────────────────────────────────────────────────


def _as_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


def resolve_default_key(mode: EncryptionMode) -> str | bytes:
    """Return key material for ``mode`` derived from FIELD_ENCRYPTION_KEY.

    Fernet takes the key string as configured; the AES modes take the 32
    decoded bytes.
    """
    key = get_settings().field_encryption_key
    if not key:
        raise EncryptionKeyError(
            "No key given for the encrypted attribute and FIELD_ENCRYPTION_KEY is not set"
        )
    if mode is EncryptionMode.FERNET:
        return key
    try:
        raw = base64.urlsafe_b64decode(_as_bytes(key))
    except (binascii.Error, ValueError) as exc:
        raise EncryptionKeyError("FIELD_ENCRYPTION_KEY is not valid url-safe base64") from exc
    if len(raw) != AES_KEY_BYTES:
        raise EncryptionKeyError(f"FIELD_ENCRYPTION_KEY must decode to {AES_KEY_BYTES} bytes")
    return raw


def _fernet_for(key: str | bytes) -> Fernet:
    try:
        return Fernet(_as_bytes(key))
    except (ValueError, binascii.Error) as exc:
        raise EncryptionKeyError(
            "fernet mode needs a url-safe base64 encoded 32-byte key"
        ) from exc


def _cipher_key(key: str | bytes, mode: EncryptionMode, salt: bytes | None) -> bytes:
    key_bytes = _as_bytes(key)
    if not key_bytes:
        raise EncryptionKeyError("encryption key must not be empty")

    if mode is EncryptionMode.PER_ATTRIBUTE_IV:
        if len(key_bytes) < AES_KEY_BYTES:
            raise EncryptionKeyError(f"key must be {AES_KEY_BYTES} bytes or longer")
        return key_bytes[:AES_KEY_BYTES]

    if mode is EncryptionMode.PER_ATTRIBUTE_IV_AND_SALT:
        if not salt:
            raise DecryptionError("per_attribute_iv_and_salt requires a salt")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=AES_KEY_BYTES,
            salt=salt,
            iterations=PBKDF2_ITERATIONS,
        )
        return kdf.derive(key_bytes)

    kdf = HKDF(
        algorithm=hashes.SHA256(),
        length=SIV_KEY_BYTES,
        salt=salt or None,
        info=HKDF_INFO,
    )
    return kdf.derive(key_bytes)


# ─── Attribute encryption ─────────────────────────────────────────────────────


def generate_iv(mode: EncryptionMode) -> bytes | None:
    """Return a fresh IV for modes that store one, else None."""
    return os.urandom(IV_BYTES) if EncryptionMode(mode).uses_iv else None


def generate_salt(mode: EncryptionMode) -> bytes | None:
    """Return a fresh salt for modes that store one, else None."""
    return os.urandom(SALT_BYTES) if EncryptionMode(mode).uses_salt else None


def encrypt(
    data: bytes,
    *,
    key: str | bytes,
    mode: EncryptionMode,
    iv: bytes | None = None,
    salt: bytes | None = None,
) -> bytes:
    """Encrypt ``data`` under ``mode``.

    ``salt`` is the per-record salt for ``per_attribute_iv_and_salt`` and the
    static attribute salt for ``single_iv_and_salt``.
    """
    mode = EncryptionMode(mode)
    if mode is EncryptionMode.FERNET:
        return _fernet_for(key).encrypt(data)

    if mode.uses_iv and not iv:
        raise EncryptionError(f"{mode.value} requires an IV")
    if mode.uses_salt and not salt:
        raise EncryptionError(f"{mode.value} requires a salt")

    cipher_key = _cipher_key(key, mode, salt)
    try:
        if mode.deterministic:
            return AESSIV(cipher_key).encrypt(data, None)
        return AESGCM(cipher_key).encrypt(iv, data, None)
    except ValueError as exc:
        raise EncryptionError(str(exc)) from exc


def decrypt(
    data: bytes,
    *,
    key: str | bytes,
    mode: EncryptionMode,
    iv: bytes | None = None,
    salt: bytes | None = None,
) -> bytes:
    """Inverse of ``encrypt``.  Raises DecryptionError on any cipher failure."""
    mode = EncryptionMode(mode)
    if mode is EncryptionMode.FERNET:
        try:
            return _fernet_for(key).decrypt(data)
        except InvalidToken as exc:
            raise DecryptionError("invalid Fernet token") from exc

    if mode.uses_iv and not iv:
        raise DecryptionError(f"{mode.value} value stored without an IV")

    cipher_key = _cipher_key(key, mode, salt)
    try:
        if mode.deterministic:
            return AESSIV(cipher_key).decrypt(data, None)
        return AESGCM(cipher_key).decrypt(iv, data, None)
    except (InvalidTag, ValueError) as exc:
        raise DecryptionError(f"could not decrypt {mode.value} value") from exc
