"""SQLAlchemy event listeners that keep cached plaintext in sync with storage columns."""

import logging

from sqlalchemy import event
from sqlalchemy.orm import Mapper

from attr_encrypted.db.attribute import AttrEncryptedMixin
from attr_encrypted.errors import ConfigurationError

logger = logging.getLogger(__name__)


def drop_cached_plaintext(target, keys=None) -> None:
    """Drop cached plaintext for encrypted attributes stored in ``keys`` (all when None)."""
    for attribute in type(target).encrypted_attributes().values():
        if keys is None or not set(attribute.options.storage_attributes).isdisjoint(keys):
            attribute.drop_cache(target)


def _on_refresh(target, context, attrs):
    drop_cached_plaintext(target, attrs)


def _on_expire(target, attrs):
    drop_cached_plaintext(target, attrs)


def _storage_set_listener(attribute):
    def on_set(target, value, oldvalue, initiator):
        attribute.drop_cache(target)

    return on_set


@event.listens_for(Mapper, "mapper_configured")
def configure_encrypted_attributes(mapper, class_):
    """Validate storage columns and wire cache invalidation for encrypted models.

    Runs once per mapped class; subclasses are configured on their own.
    """
    if not issubclass(class_, AttrEncryptedMixin):
        return
    attributes = class_.encrypted_attributes()
    if not attributes:
        return

    for name, attribute in attributes.items():
        options = attribute.options
        missing = [key for key in options.storage_attributes if not mapper.has_property(key)]
        if missing:
            raise ConfigurationError(
                f"{class_.__name__}.{name} ({options.mode.value}) needs mapped column(s): "
                + ", ".join(missing)
            )
        for key in options.storage_attributes:
            event.listen(getattr(class_, key), "set", _storage_set_listener(attribute))

    event.listen(class_, "refresh", _on_refresh)
    event.listen(class_, "expire", _on_expire)
    logger.debug(
        "Configured encrypted attributes for %s: %s", class_.__name__, ", ".join(attributes)
    )
