"""Encrypt and decrypt attribute values according to their resolved options.

This layer knows nothing about the ORM: it turns a plaintext value into the
values written to the storage columns (ciphertext, IV, salt) and back.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any

from attr_encrypted import crypto
from attr_encrypted.config import get_settings
from attr_encrypted.errors import DecryptionError, EncryptionKeyError
from attr_encrypted.options import EncryptionOptions

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EncryptedValue:
    """Values held by an attribute's storage columns."""
    value: Any
    iv: str | bytes | None = None
    salt: str | bytes | None = None


def is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, (str, bytes)) and len(value) == 0)


def _evaluate(condition, record) -> bool:
    if callable(condition):
        return bool(condition(record))
    if isinstance(condition, str):
        return bool(getattr(record, condition)())
    return bool(condition)


def should_encrypt(options: EncryptionOptions, record=None) -> bool:
    """Evaluate the if_/unless conditions.  Class-level calls always encrypt."""
    if record is None:
        return True
    return _evaluate(options.if_, record) and not _evaluate(options.unless, record)


def resolve_key(options: EncryptionOptions, record=None) -> str | bytes:
    key = options.key
    if callable(key):
        if record is None:
            raise EncryptionKeyError(
                f"'{options.name}' has a per-record key and cannot be encrypted at class level"
            )
        key = key(record)
    if key is None:
        return crypto.resolve_default_key(options.mode)
    if not key:
        raise EncryptionKeyError(f"key for '{options.name}' must not be empty")
    return key


def _static_salt(options: EncryptionOptions) -> bytes | None:
    if options.salt is None:
        return None
    return options.salt.encode("utf-8") if isinstance(options.salt, str) else options.salt


def _encode(raw: bytes | None, enabled: bool) -> str | bytes | None:
    if raw is None:
        return None
    return base64.b64encode(raw).decode("ascii") if enabled else raw


def _decode(stored: str | bytes | None, enabled: bool) -> bytes | None:
    if stored is None:
        return None
    if not enabled:
        return stored.encode("utf-8") if isinstance(stored, str) else stored
    try:
        return base64.b64decode(stored, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError("stored value is not valid base64") from exc


def _plaintext(data: bytes, binary: bool) -> str | bytes:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        # binary marshalers (pickle) load from raw bytes
        if binary:
            return data
        raise DecryptionError("decrypted value is not valid UTF-8") from exc


def encrypt_attribute(options: EncryptionOptions, value: Any, record=None) -> EncryptedValue:
    """Encrypt ``value`` for storage.

    Values that are not encrypted (``None``, empty strings unless
    ``allow_empty_value``, or a false ``if_``/true ``unless`` condition) are
    returned unchanged with no IV or salt.
    """
    if not should_encrypt(options, record):
        return EncryptedValue(value)
    if value is None or (is_empty(value) and not options.allow_empty_value):
        return EncryptedValue(value)

    plaintext = options.marshaler.dumps(value) if options.marshal else str(value)
    data = plaintext if isinstance(plaintext, bytes) else plaintext.encode("utf-8")

    mode = options.mode
    key = resolve_key(options, record)
    iv = crypto.generate_iv(mode)
    salt = crypto.generate_salt(mode) if mode.uses_salt else _static_salt(options)
    ciphertext = crypto.encrypt(data, key=key, mode=mode, iv=iv, salt=salt)

    if mode is crypto.EncryptionMode.FERNET:
        # Fernet tokens are already url-safe base64
        stored = ciphertext.decode("ascii") if options.encode else ciphertext
    else:
        stored = _encode(ciphertext, options.encode)

    return EncryptedValue(
        value=stored,
        iv=_encode(iv, options.encode_iv),
        salt=_encode(salt, options.encode_salt) if mode.uses_salt else None,
    )


def decrypt_attribute(options: EncryptionOptions, stored: EncryptedValue, record=None) -> Any:
    """Decrypt the values read from the storage columns."""
    if not should_encrypt(options, record) or is_empty(stored.value):
        return stored.value

    mode = options.mode
    try:
        if mode is crypto.EncryptionMode.FERNET:
            ciphertext = _decode(stored.value, False)
        else:
            ciphertext = _decode(stored.value, options.encode)
        iv = _decode(stored.iv, options.encode_iv)
        salt = _decode(stored.salt, options.encode_salt) if mode.uses_salt else _static_salt(options)
        data = crypto.decrypt(ciphertext, key=resolve_key(options, record), mode=mode, iv=iv, salt=salt)
        plaintext = _plaintext(data, binary=options.marshal)
    except DecryptionError:
        if get_settings().plaintext_fallback:
            logger.warning(
                "Could not decrypt '%s', returning the stored value (plaintext_fallback is on)",
                options.name,
                extra={"attribute": options.name},
            )
            return stored.value
        raise

    return options.marshaler.loads(plaintext) if options.marshal else plaintext
