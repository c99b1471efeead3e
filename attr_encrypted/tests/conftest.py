import pytest
from cryptography.fernet import Fernet
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from attr_encrypted import crypto
from attr_encrypted.config import get_settings
from sample_models import Base

SETTINGS_ENV = (
    "DEBUG",
    "DATABASE_URL",
    "FIELD_ENCRYPTION_KEY",
    "DEFAULT_MODE",
    "ENCODE",
    "ALLOW_EMPTY_VALUE",
    "PLAINTEXT_FALLBACK",
)


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    """Start every test from default settings and an empty Fernet cache."""
    for name in SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    crypto._fernet = None
    yield
    get_settings.cache_clear()
    crypto._fernet = None


@pytest.fixture()
def valid_key():
    """Generate a fresh Fernet key for testing."""
    return Fernet.generate_key().decode()


@pytest.fixture()
def configured_key(monkeypatch, valid_key):
    """Set FIELD_ENCRYPTION_KEY for the duration of the test."""
    monkeypatch.setenv("FIELD_ENCRYPTION_KEY", valid_key)
    get_settings.cache_clear()
    return valid_key


@pytest.fixture()
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session(engine):
    with Session(engine) as session:
        yield session
