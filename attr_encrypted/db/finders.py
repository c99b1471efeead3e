"""Query encrypted attributes by value.

Only attributes using the deterministic ``single_iv_and_salt`` mode can be
matched: their plaintext is encrypted with the class-level key and compared
against the storage column.

    User.find_by(session, email="jane@example.com", active=True)
    # SELECT ... WHERE users.encrypted_email = :ciphertext AND users.active = true
"""

import logging

from sqlalchemy import select

from attr_encrypted.errors import UnsearchableAttributeError

logger = logging.getLogger(__name__)


def encrypt_criteria(model, criteria: dict) -> dict:
    """Rewrite encrypted attribute names to storage columns and encrypt their values."""
    encrypted = model.encrypted_attributes()
    rewritten = {}
    for name, value in criteria.items():
        attribute = encrypted.get(name)
        if attribute is None:
            rewritten[name] = value
            continue

        options = attribute.options
        if not options.searchable:
            raise UnsearchableAttributeError(
                f"{model.__name__}.{name} uses {options.mode.value} and cannot be searched; "
                "declare it with mode='single_iv_and_salt'"
            )
        rewritten[options.attribute] = model.encrypt_attribute(name, value).value
        logger.debug(
            "Rewrote finder criterion %s.%s -> %s", model.__name__, name, options.attribute,
            extra={"model": model.__name__, "attribute": name},
        )
    return rewritten


def scoped_by(model, **criteria):
    """Return a ``select()`` for ``model`` filtered by ``criteria``."""
    return select(model).filter_by(**encrypt_criteria(model, criteria))


def find_by(session, model, **criteria):
    """First ``model`` matching ``criteria``, or None.

    Needs a synchronous ``Session``; with an ``AsyncSession`` execute
    ``scoped_by()`` instead: ``(await session.scalars(User.scoped_by(...))).first()``.
    """
    return session.scalars(scoped_by(model, **criteria).limit(1)).first()


def find_all_by(session, model, **criteria) -> list:
    """Every ``model`` matching ``criteria`` (synchronous ``Session`` only, see ``find_by``)."""
    return list(session.scalars(scoped_by(model, **criteria)).all())
