"""Logging setup for applications and scripts that use attr_encrypted.

The library itself only creates module loggers under ``attr_encrypted``;
call ``setup_logging()`` from an entry point to get output.

When DEBUG=true, logs in human-readable format for local development.
When DEBUG=false, logs as single-line JSON for production log aggregators.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from attr_encrypted.config import get_settings

LIBRARY_LOGGER = "attr_encrypted"


class JSONFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = self.formatException(record.exc_info)

        # never carries plaintext, only model / attribute names
        for field in ("model", "attribute"):
            value = getattr(record, field, None)
            if value:
                payload[field] = value

        return json.dumps(payload, default=str)


def setup_logging(stream=None) -> logging.Handler:
    """Configure the root logger based on the DEBUG setting and return the handler."""
    settings = get_settings()

    root = logging.getLogger()
    root.setLevel(logging.DEBUG if settings.debug else logging.INFO)

    # Remove any pre-existing handlers
    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)

    if settings.debug:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
                datefmt="%H:%M:%S",
            )
        )
    else:
        handler.setFormatter(JSONFormatter())

    root.addHandler(handler)

    logging.getLogger(LIBRARY_LOGGER).setLevel(logging.DEBUG if settings.debug else logging.INFO)

    # SQL echo would print ciphertext and bound parameters
    if not settings.debug:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return handler
