import io
import json
import logging

import pytest

from attr_encrypted.config import get_settings
from attr_encrypted.logging_config import JSONFormatter, setup_logging


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    levels = {name: logging.getLogger(name).level for name in ("sqlalchemy.engine", "attr_encrypted")}
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    for name, saved in levels.items():
        logging.getLogger(name).setLevel(saved)


def test_json_output_in_production():
    stream = io.StringIO()
    handler = setup_logging(stream)

    assert isinstance(handler.formatter, JSONFormatter)
    logging.getLogger("attr_encrypted.core").warning(
        "Could not decrypt '%s'", "ssn", extra={"attribute": "ssn"}
    )

    payload = json.loads(stream.getvalue().splitlines()[-1])
    assert payload["level"] == "WARNING"
    assert payload["logger"] == "attr_encrypted.core"
    assert payload["message"] == "Could not decrypt 'ssn'"
    assert payload["attribute"] == "ssn"
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING


def test_plain_output_in_debug(monkeypatch):
    monkeypatch.setenv("DEBUG", "true")
    get_settings.cache_clear()

    stream = io.StringIO()
    handler = setup_logging(stream)

    assert not isinstance(handler.formatter, JSONFormatter)
    assert logging.getLogger().level == logging.DEBUG
    logging.getLogger("attr_encrypted").debug("configured")
    assert "[attr_encrypted] configured" in stream.getvalue()
