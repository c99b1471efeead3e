from attr_encrypted.db.attribute import AttrEncryptedMixin, EncryptedAttribute, attr_encrypted
from attr_encrypted.db import events  # noqa: F401  registers mapper listeners
from attr_encrypted.db.encrypted_type import EncryptedJSON, EncryptedString

__all__ = [
    "AttrEncryptedMixin",
    "EncryptedAttribute",
    "EncryptedJSON",
    "EncryptedString",
    "attr_encrypted",
]
