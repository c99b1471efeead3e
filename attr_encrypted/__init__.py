"""Transparent attribute-level encryption for SQLAlchemy models."""

from attr_encrypted.core import EncryptedValue, decrypt_attribute, encrypt_attribute
from attr_encrypted.crypto import EncryptionMode
from attr_encrypted.db import AttrEncryptedMixin, EncryptedAttribute, attr_encrypted
from attr_encrypted.errors import (
    AttrEncryptedError,
    ConfigurationError,
    DecryptionError,
    EncryptionError,
    EncryptionKeyError,
    UnknownAttributeError,
    UnsearchableAttributeError,
)
from attr_encrypted.options import EncryptionOptions

__version__ = "0.1.0"

__all__ = [
    "AttrEncryptedError",
    "AttrEncryptedMixin",
    "ConfigurationError",
    "DecryptionError",
    "EncryptedAttribute",
    "EncryptedValue",
    "EncryptionError",
    "EncryptionKeyError",
    "EncryptionMode",
    "EncryptionOptions",
    "UnknownAttributeError",
    "UnsearchableAttributeError",
    "attr_encrypted",
    "decrypt_attribute",
    "encrypt_attribute",
]
