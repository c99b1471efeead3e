"""Exceptions raised by attribute encryption."""


class AttrEncryptedError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(AttrEncryptedError):
    """An encrypted attribute was declared with invalid options."""


class EncryptionKeyError(AttrEncryptedError):
    """No usable key could be resolved for an encrypted attribute."""


class EncryptionError(AttrEncryptedError):
    """The cipher failed while encrypting a value."""


class DecryptionError(AttrEncryptedError):
    """A stored value could not be decoded or authenticated."""


class UnknownAttributeError(AttrEncryptedError, AttributeError):
    """Bulk assignment named an attribute the model does not define."""

    def __init__(self, model_name: str, attribute: str):
        self.model_name = model_name
        self.attribute = attribute
        super().__init__(f"unknown attribute '{attribute}' for {model_name}")


class UnsearchableAttributeError(AttrEncryptedError):
    """A finder was asked to match an attribute with non-deterministic encryption."""
