"""SQLAlchemy column types that encrypt the whole column with the default key.

A lighter alternative to ``attr_encrypted()`` when a model does not need a
separate storage column, per-record keys, or searchable values:

    class Note(Base):
        body = mapped_column(EncryptedString())
        meta = mapped_column(EncryptedJSON())
"""

import json

from sqlalchemy import Text, TypeDecorator

from attr_encrypted.crypto import decrypt_value, encrypt_value


class EncryptedString(TypeDecorator):
    """A String column encrypted at rest with the FIELD_ENCRYPTION_KEY Fernet key.

    Encrypted ciphertext is longer than plaintext, so the underlying DB
    column is stored as Text to avoid truncation.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return encrypt_value(str(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return decrypt_value(value)


class EncryptedJSON(TypeDecorator):
    """JSON-serializable values encrypted at rest as a single Text column."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return encrypt_value(json.dumps(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return json.loads(decrypt_value(value))
