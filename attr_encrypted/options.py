"""Resolution of encrypted attribute declarations.

Defaults come from settings, then from the model's ``attr_encrypted_options``
class dict, then from the keywords given to ``attr_encrypted()``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable

from attr_encrypted.config import get_settings
from attr_encrypted.crypto import EncryptionMode
from attr_encrypted.errors import ConfigurationError

Key = str | bytes | Callable[[Any], str | bytes]
Condition = bool | str | Callable[[Any], bool]

OPTION_NAMES = frozenset({
    "attribute",
    "prefix",
    "suffix",
    "key",
    "mode",
    "encode",
    "encode_iv",
    "encode_salt",
    "marshal",
    "marshaler",
    "if_",
    "unless",
    "allow_empty_value",
    "salt",
})


@dataclass(frozen=True)
class EncryptionOptions:
    """Fully resolved options for one encrypted attribute."""

    name: str
    attribute: str
    mode: EncryptionMode
    key: Key | None = None
    encode: bool = True
    encode_iv: bool = True
    encode_salt: bool = True
    marshal: bool = False
    marshaler: Any = json
    if_: Condition = True
    unless: Condition = False
    allow_empty_value: bool = False
    salt: str | bytes | None = None

    @property
    def iv_attribute(self) -> str:
        return f"{self.attribute}_iv"

    @property
    def salt_attribute(self) -> str:
        return f"{self.attribute}_salt"

    @property
    def storage_attributes(self) -> tuple[str, ...]:
        """Mapped columns this attribute writes to, ciphertext first."""
        names = [self.attribute]
        if self.mode.uses_iv:
            names.append(self.iv_attribute)
        if self.mode.uses_salt:
            names.append(self.salt_attribute)
        return tuple(names)

    @property
    def searchable(self) -> bool:
        return self.mode.deterministic


def validate_option_names(options: dict) -> None:
    unknown = set(options) - OPTION_NAMES
    if unknown:
        raise ConfigurationError(f"unknown attr_encrypted option(s): {', '.join(sorted(unknown))}")


def resolve_options(name: str, declared: dict, class_defaults: dict | None = None) -> EncryptionOptions:
    """Merge settings, class-level and declared options for attribute ``name``."""
    class_defaults = class_defaults or {}
    validate_option_names(class_defaults)
    validate_option_names(declared)

    settings = get_settings()
    merged: dict[str, Any] = {
        "prefix": "encrypted_",
        "suffix": "",
        "mode": settings.default_mode,
        "encode": settings.encode,
        "allow_empty_value": settings.allow_empty_value,
    }
    merged.update(class_defaults)
    merged.update(declared)

    try:
        mode = EncryptionMode(merged.pop("mode"))
    except ValueError as exc:
        raise ConfigurationError(f"unknown encryption mode for '{name}': {exc}") from exc

    prefix = merged.pop("prefix")
    suffix = merged.pop("suffix")
    attribute = merged.pop("attribute", None) or f"{prefix}{name}{suffix}"
    if attribute == name:
        raise ConfigurationError(
            f"encrypted attribute '{name}' cannot be stored in a column of the same name"
        )
    if merged.get("salt") is not None and not mode.deterministic:
        raise ConfigurationError("a static salt is only used by single_iv_and_salt")

    return EncryptionOptions(name=name, attribute=attribute, mode=mode, **merged)
