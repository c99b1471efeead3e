from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Library configuration loaded from environment variables."""

    # Logging / SQL echo
    debug: bool = False

    # Database used by attr_encrypted.db.connection (async driver URL)
    database_url: str = ""

    # Default key for encrypted attributes and the EncryptedString column type.
    # Url-safe base64 of 32 bytes (Fernet key format).
    # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    field_encryption_key: str = ""

    # Attribute defaults, overridable per model (attr_encrypted_options) and per attribute
    default_mode: str = "per_attribute_iv"
    encode: bool = True
    allow_empty_value: bool = False

    # Return the stored value instead of raising when it cannot be decrypted.
    # Useful while migrating plaintext columns to encrypted ones.
    plaintext_fallback: bool = False

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    return Settings()
