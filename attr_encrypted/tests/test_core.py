"""Tests for option resolution (options.py) and attribute-value encryption (core.py)."""

import base64
import pickle
from types import SimpleNamespace

import pytest

from attr_encrypted import (
    ConfigurationError,
    DecryptionError,
    EncryptedValue,
    EncryptionKeyError,
    EncryptionMode,
)
from attr_encrypted import crypto
from attr_encrypted.config import get_settings
from attr_encrypted.core import decrypt_attribute, encrypt_attribute, should_encrypt
from attr_encrypted.options import resolve_options

KEY = "k" * 32


def _options(name="secret", **declared):
    declared.setdefault("key", KEY)
    return resolve_options(name, declared)


# ─── Option Resolution ────────────────────────────────────────────────────────


class TestResolveOptions:
    def test_defaults(self):
        options = resolve_options("email", {})

        assert options.attribute == "encrypted_email"
        assert options.mode is EncryptionMode.PER_ATTRIBUTE_IV
        assert options.encode is True
        assert options.marshal is False
        assert options.storage_attributes == ("encrypted_email", "encrypted_email_iv")

    def test_prefix_and_suffix(self):
        options = resolve_options("email", {"prefix": "", "suffix": "_crypt"})

        assert options.attribute == "email_crypt"

    def test_explicit_attribute_wins(self):
        options = resolve_options("email", {"attribute": "mail_blob", "prefix": "x_"})

        assert options.attribute == "mail_blob"

    def test_declared_options_override_class_defaults(self):
        options = resolve_options(
            "email",
            {"mode": "fernet"},
            {"mode": "single_iv_and_salt", "prefix": "crypt_"},
        )

        assert options.mode is EncryptionMode.FERNET
        assert options.attribute == "crypt_email"

    def test_default_mode_from_settings(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_MODE", "single_iv_and_salt")
        get_settings.cache_clear()

        assert resolve_options("email", {}).mode is EncryptionMode.SINGLE_IV_AND_SALT

    @pytest.mark.parametrize(
        "mode, columns",
        [
            ("per_attribute_iv", ("encrypted_x", "encrypted_x_iv")),
            ("per_attribute_iv_and_salt", ("encrypted_x", "encrypted_x_iv", "encrypted_x_salt")),
            ("single_iv_and_salt", ("encrypted_x",)),
            ("fernet", ("encrypted_x",)),
        ],
    )
    def test_storage_attributes_per_mode(self, mode, columns):
        assert resolve_options("x", {"mode": mode}).storage_attributes == columns

    def test_unknown_option(self):
        with pytest.raises(ConfigurationError, match="algorithm"):
            resolve_options("email", {"algorithm": "aes-256-gcm"})

    def test_unknown_mode(self):
        with pytest.raises(ConfigurationError):
            resolve_options("email", {"mode": "rot13"})

    def test_storage_column_cannot_shadow_attribute(self):
        with pytest.raises(ConfigurationError):
            resolve_options("email", {"attribute": "email"})

    def test_static_salt_requires_deterministic_mode(self):
        with pytest.raises(ConfigurationError):
            resolve_options("email", {"salt": "pepper"})


# ─── Encryption ───────────────────────────────────────────────────────────────


class TestEncryptAttribute:
    def test_round_trip(self):
        options = _options()
        stored = encrypt_attribute(options, "Jane Doe")

        assert stored.value != "Jane Doe"
        assert decrypt_attribute(options, stored) == "Jane Doe"

    def test_encoded_storage_is_base64_text(self):
        stored = encrypt_attribute(_options(), "Jane Doe")

        assert isinstance(stored.value, str)
        assert len(base64.b64decode(stored.iv)) == 12

    def test_unencoded_storage_is_bytes(self):
        options = _options(encode=False, encode_iv=False)
        stored = encrypt_attribute(options, "Jane Doe")

        assert isinstance(stored.value, bytes)
        assert isinstance(stored.iv, bytes)
        assert decrypt_attribute(options, stored) == "Jane Doe"

    def test_non_string_values_are_stringified(self):
        options = _options()

        assert decrypt_attribute(options, encrypt_attribute(options, 42)) == "42"

    def test_none_passthrough(self):
        options = _options()

        assert encrypt_attribute(options, None) == EncryptedValue(None)
        assert decrypt_attribute(options, EncryptedValue(None)) is None

    def test_empty_string_passthrough(self):
        assert encrypt_attribute(_options(), "") == EncryptedValue("")

    def test_allow_empty_value(self):
        options = _options(allow_empty_value=True)
        stored = encrypt_attribute(options, "")

        assert stored.value != ""
        assert decrypt_attribute(options, stored) == ""

    def test_marshal(self):
        options = _options(marshal=True)
        value = {"street": "1 Main St", "unit": None}

        assert decrypt_attribute(options, encrypt_attribute(options, value)) == value

    def test_binary_marshaler(self):
        options = _options(marshal=True, marshaler=pickle)
        value = {"street": "1 Main St", "floors": (1, 2)}

        assert decrypt_attribute(options, encrypt_attribute(options, value)) == value

    def test_non_utf8_plaintext_fails(self):
        mode = EncryptionMode.PER_ATTRIBUTE_IV
        iv = crypto.generate_iv(mode)
        ciphertext = crypto.encrypt(b"\xff\xfe", key=KEY, mode=mode, iv=iv)
        stored = EncryptedValue(
            base64.b64encode(ciphertext).decode(), iv=base64.b64encode(iv).decode()
        )

        with pytest.raises(DecryptionError):
            decrypt_attribute(_options(), stored)

    def test_salted_mode(self):
        options = _options(mode="per_attribute_iv_and_salt", key="short")
        stored = encrypt_attribute(options, "Jane Doe")

        assert stored.salt is not None
        assert decrypt_attribute(options, stored) == "Jane Doe"

    def test_deterministic_mode_honours_static_salt(self):
        peppered = _options(mode="single_iv_and_salt", salt="pepper")
        plain = _options(mode="single_iv_and_salt")

        assert encrypt_attribute(peppered, "x") == encrypt_attribute(peppered, "x")
        assert encrypt_attribute(peppered, "x") != encrypt_attribute(plain, "x")

    def test_wrong_key_fails(self):
        stored = encrypt_attribute(_options(), "Jane Doe")

        with pytest.raises(DecryptionError):
            decrypt_attribute(_options(key="x" * 32), stored)

    def test_corrupted_base64_fails(self):
        with pytest.raises(DecryptionError):
            decrypt_attribute(_options(), EncryptedValue("not base64!!", iv="AAAA"))

    def test_plaintext_fallback(self, monkeypatch):
        monkeypatch.setenv("PLAINTEXT_FALLBACK", "true")
        get_settings.cache_clear()

        stored = EncryptedValue("stored before encryption was enabled", iv=None)
        assert decrypt_attribute(_options(), stored) == "stored before encryption was enabled"


class TestKeys:
    def test_short_key_rejected(self):
        with pytest.raises(EncryptionKeyError):
            encrypt_attribute(_options(key="too short"), "x")

    def test_empty_key_rejected(self):
        with pytest.raises(EncryptionKeyError):
            encrypt_attribute(_options(key=""), "x")

    def test_missing_default_key(self):
        with pytest.raises(EncryptionKeyError):
            encrypt_attribute(_options(key=None), "x")

    def test_default_key_from_settings(self, configured_key):
        options = _options(key=None)

        assert decrypt_attribute(options, encrypt_attribute(options, "x")) == "x"

    def test_callable_key_receives_record(self):
        options = _options(key=lambda record: record.key)
        record = SimpleNamespace(key=KEY)

        stored = encrypt_attribute(options, "x", record)
        assert decrypt_attribute(options, stored, record) == "x"

    def test_callable_key_needs_a_record(self):
        with pytest.raises(EncryptionKeyError):
            encrypt_attribute(_options(key=lambda record: KEY), "x")


class TestConditions:
    def test_if_callable(self):
        options = _options(if_=lambda record: record.enabled)

        assert should_encrypt(options, SimpleNamespace(enabled=True)) is True
        assert should_encrypt(options, SimpleNamespace(enabled=False)) is False

    def test_unless_method_name(self):
        options = _options(unless="is_legacy")
        legacy = SimpleNamespace(is_legacy=lambda: True)

        assert should_encrypt(options, legacy) is False
        assert encrypt_attribute(options, "x", legacy) == EncryptedValue("x")

    def test_conditions_ignored_without_record(self):
        assert should_encrypt(_options(if_=False)) is True
