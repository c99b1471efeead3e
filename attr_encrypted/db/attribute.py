"""Transparent encrypted attributes for SQLAlchemy declarative models.

Usage:
    class User(AttrEncryptedMixin, Base):
        __tablename__ = "users"

        id = mapped_column(Integer, primary_key=True)
        encrypted_email = mapped_column(Text)
        encrypted_email_iv = mapped_column(Text)
        email = attr_encrypted(key=lambda user: user.tenant_key)

    user = User(email="jane@example.com")   # encrypted_email / _iv are populated
    user.email                              # "jane@example.com", decrypted lazily

The plaintext never reaches a mapped column.  It is cached in the instance
``__dict__`` after the first read and dropped whenever SQLAlchemy refreshes or
expires the storage columns (see ``attr_encrypted.db.events``).
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import object_session

from attr_encrypted import core
from attr_encrypted.config import get_settings
from attr_encrypted.core import EncryptedValue
from attr_encrypted.db import finders
from attr_encrypted.errors import AttrEncryptedError, UnknownAttributeError
from attr_encrypted.options import EncryptionOptions, resolve_options, validate_option_names

_MISSING = object()


def _is_deferred(state, key: str) -> bool:
    """True when a persistent record was loaded without ``key`` (load_only, defer).

    Expired columns are not deferred: reading them reloads from the database.
    """
    return (
        state.has_identity
        and key in state.unloaded
        and key not in state.expired_attributes
    )


def _committed_value(state, key: str) -> Any:
    history = state.attrs[key].load_history()
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


class EncryptedAttribute:
    """Descriptor that encrypts on assignment and decrypts lazily on read."""

    def __init__(self, **options):
        validate_option_names(options)
        self.declared = options
        self.name: str | None = None
        self.owner: type | None = None
        self.cache_key: str | None = None
        self._resolved = None

    def __set_name__(self, owner, name):
        self.name = name
        self.owner = owner
        self.cache_key = f"_attr_encrypted_{name}"

    def __repr__(self):
        owner = self.owner.__name__ if self.owner else "?"
        return f"<EncryptedAttribute {owner}.{self.name}>"

    @property
    def options(self) -> EncryptionOptions:
        """Resolved options, rebuilt when the settings or class defaults change."""
        settings = get_settings()
        class_defaults = dict(getattr(self.owner, "attr_encrypted_options", None) or {})
        if self._resolved is not None:
            cached_settings, cached_defaults, options = self._resolved
            if cached_settings is settings and cached_defaults == class_defaults:
                return options
        options = resolve_options(self.name, self.declared, class_defaults)
        self._resolved = (settings, class_defaults, options)
        return options

    def stored_value(self, instance, options: EncryptionOptions | None = None) -> EncryptedValue:
        """Read the storage columns of ``instance``."""
        options = options or self.options
        return EncryptedValue(
            value=getattr(instance, options.attribute),
            iv=getattr(instance, options.iv_attribute) if options.mode.uses_iv else None,
            salt=getattr(instance, options.salt_attribute) if options.mode.uses_salt else None,
        )

    def write_stored_value(self, instance, stored: EncryptedValue, options: EncryptionOptions | None = None):
        options = options or self.options
        setattr(instance, options.attribute, stored.value)
        if options.mode.uses_iv:
            setattr(instance, options.iv_attribute, stored.iv)
        if options.mode.uses_salt:
            setattr(instance, options.salt_attribute, stored.salt)

    def drop_cache(self, instance):
        instance.__dict__.pop(self.cache_key, None)

    def __get__(self, instance, owner=None):
        if instance is None:
            return self

        cached = instance.__dict__.get(self.cache_key, _MISSING)
        if cached is not _MISSING:
            return cached

        options = self.options
        state = inspect(instance)
        # partial SELECT: the ciphertext was never loaded, so there is nothing to decrypt
        if _is_deferred(state, options.attribute):
            return None

        value = core.decrypt_attribute(options, self.stored_value(instance, options), instance)
        if not state.was_deleted:
            instance.__dict__[self.cache_key] = value
        return value

    def __set__(self, instance, value):
        if self.__get__(instance, type(instance)) == value:
            return

        options = self.options
        self.write_stored_value(instance, core.encrypt_attribute(options, value, instance), options)
        # the storage "set" listener dropped the cache above
        instance.__dict__[self.cache_key] = value


def attr_encrypted(**options) -> EncryptedAttribute:
    """Declare an encrypted attribute on a model using ``AttrEncryptedMixin``.

    Options: ``attribute``, ``prefix``, ``suffix``, ``key``, ``mode``,
    ``encode``, ``encode_iv``, ``encode_salt``, ``marshal``, ``marshaler``,
    ``if_``, ``unless``, ``allow_empty_value``, ``salt``.
    """
    return EncryptedAttribute(**options)


class AttrEncryptedMixin:
    """Adds encrypted attribute support to a declarative model.

    Place it before the declarative base so its constructor is used:
    ``class User(AttrEncryptedMixin, Base)``.
    """

    # Class-level defaults merged under every attr_encrypted() declaration
    attr_encrypted_options = {}

    def __init_subclass__(cls, **kwargs):
        # every class owns a copy, merged over its parent's defaults
        declared = cls.__dict__.get("attr_encrypted_options", {})
        inherited = next(
            (
                vars(base)["attr_encrypted_options"]
                for base in cls.__mro__[1:]
                if "attr_encrypted_options" in vars(base)
            ),
            {},
        )
        cls.attr_encrypted_options = {**inherited, **declared}
        super().__init_subclass__(**kwargs)

    def __init__(self, **kwargs):
        self.assign_attributes(kwargs)

    # ─── Introspection ────────────────────────────────────────────────────

    @classmethod
    def encrypted_attributes(cls) -> dict[str, EncryptedAttribute]:
        """Encrypted attributes declared on this class and its bases."""
        found: dict[str, EncryptedAttribute] = {}
        for klass in reversed(cls.__mro__):
            for name, value in vars(klass).items():
                if isinstance(value, EncryptedAttribute):
                    found[name] = value
        return found

    @classmethod
    def is_encrypted_attribute(cls, name: str) -> bool:
        return name in cls.encrypted_attributes()

    @classmethod
    def _encrypted_attribute(cls, name: str) -> EncryptedAttribute:
        try:
            return cls.encrypted_attributes()[name]
        except KeyError:
            raise UnknownAttributeError(cls.__name__, name) from None

    @classmethod
    def encrypted_attribute_options(cls, name: str) -> EncryptionOptions:
        return cls._encrypted_attribute(name).options

    # ─── Class-level encryption ───────────────────────────────────────────

    @classmethod
    def encrypt_attribute(cls, name: str, value: Any) -> EncryptedValue:
        """Encrypt ``value`` without a record (static keys only)."""
        return core.encrypt_attribute(cls.encrypted_attribute_options(name), value)

    @classmethod
    def decrypt_attribute(cls, name: str, value: EncryptedValue | Any) -> Any:
        stored = value if isinstance(value, EncryptedValue) else EncryptedValue(value)
        return core.decrypt_attribute(cls.encrypted_attribute_options(name), stored)

    # ─── Instance-level encryption ────────────────────────────────────────

    def encrypt(self, name: str, value: Any) -> EncryptedValue:
        return core.encrypt_attribute(self.encrypted_attribute_options(name), value, self)

    def decrypt(self, name: str, value: EncryptedValue | Any) -> Any:
        """Decrypt ``value``; a bare ciphertext is paired with this record's IV and salt."""
        attribute = self._encrypted_attribute(name)
        options = attribute.options
        if isinstance(value, EncryptedValue):
            stored = value
        else:
            current = attribute.stored_value(self, options)
            stored = EncryptedValue(value, iv=current.iv, salt=current.salt)
        return core.decrypt_attribute(options, stored, self)

    # ─── Dirty tracking ───────────────────────────────────────────────────

    def attribute_in_database(self, name: str) -> Any:
        """Plaintext of the value last flushed to the database (None when pending)."""
        attribute = self._encrypted_attribute(name)
        options = attribute.options
        # make sure the storage columns are loaded so history has a baseline
        getattr(self, name)
        state = inspect(self)
        stored = EncryptedValue(*(_committed_value(state, key) for key in options.storage_attributes))
        return core.decrypt_attribute(options, stored, self)

    attribute_was = attribute_in_database

    def attribute_changed(self, name: str) -> bool:
        options = self.encrypted_attribute_options(name)
        return inspect(self).attrs[options.attribute].history.has_changes()

    def restore_attribute(self, name: str) -> None:
        """Discard an unflushed change to encrypted attribute ``name``."""
        attribute = self._encrypted_attribute(name)
        options = attribute.options
        state = inspect(self)
        for key in options.storage_attributes:
            setattr(self, key, _committed_value(state, key))
        attribute.drop_cache(self)

    def encrypted_attribute_present(self, name: str) -> bool:
        options = self.encrypted_attribute_options(name)
        return not core.is_empty(getattr(self, options.attribute))

    # ─── Bulk access ──────────────────────────────────────────────────────

    @property
    def attributes(self) -> dict[str, Any]:
        """Loaded column values, with every encrypted attribute decrypted first.

        Plaintext attribute names are never part of the result, so the dict is
        safe to serialize.
        """
        encrypted = self.encrypted_attributes()
        for name in encrypted:
            getattr(self, name)
        state = inspect(self)
        return {
            prop.key: getattr(self, prop.key)
            for prop in state.mapper.column_attrs
            if prop.key not in encrypted and not _is_deferred(state, prop.key)
        }

    @attributes.setter
    def attributes(self, values: dict[str, Any]) -> None:
        self.assign_attributes(values)

    def assign_attributes(self, values: dict[str, Any] | None) -> None:
        """Assign plain attributes first, then encrypted ones.

        Callable keys and conditions of encrypted attributes may read other
        attributes of the record, so those have to be in place first.
        """
        if not values:
            return
        encrypted = self.encrypted_attributes()
        self._assign({k: v for k, v in values.items() if str(k) not in encrypted})
        self._assign({k: v for k, v in values.items() if str(k) in encrypted})

    @classmethod
    def _is_assignable(cls, key: str) -> bool:
        """Mapped attributes, encrypted attributes and properties with a setter."""
        if key in cls.encrypted_attributes():
            return True
        mapper = inspect(cls, raiseerr=False)
        if mapper is not None and key in mapper.all_orm_descriptors:
            return True
        for klass in cls.__mro__:
            if key in vars(klass):
                descriptor = vars(klass)[key]
                return isinstance(descriptor, property) and descriptor.fset is not None
        return False

    def _assign(self, values: dict[str, Any]) -> None:
        cls = type(self)
        for key, value in values.items():
            key = str(key)
            if not self._is_assignable(key):
                raise UnknownAttributeError(cls.__name__, key)
            setattr(self, key, value)

    # ─── Session helpers ──────────────────────────────────────────────────

    def reload(self, session=None):
        """Refresh from the database, dropping every cached plaintext."""
        if isinstance(session, AsyncSession):
            raise AttrEncryptedError(
                "reload() needs a synchronous Session; with an AsyncSession use "
                "`await session.refresh(obj)`"
            )
        session = session or object_session(self)
        if session is None:
            raise AttrEncryptedError(f"{type(self).__name__} instance is not attached to a session")
        session.refresh(self)
        return self

    # ─── Finders ──────────────────────────────────────────────────────────

    @classmethod
    def scoped_by(cls, **criteria):
        return finders.scoped_by(cls, **criteria)

    @classmethod
    def find_by(cls, session, **criteria):
        return finders.find_by(session, cls, **criteria)

    @classmethod
    def find_all_by(cls, session, **criteria):
        return finders.find_all_by(session, cls, **criteria)
