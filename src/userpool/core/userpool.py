"""
User pool: user record lifecycle and lookup on top of a ``DataStore``.

The pool's document has two entries::

    {
      "Options": {"UsernameAttributes": ["email", ...]},
      "Users":   {"<Username>": {...UserRecord...}}
    }

Manifesto:
    - **Username is the key:** ``Users`` is keyed by ``Username``; saving under
      an existing key replaces the record wholesale, nothing is merged
    - **sub is ours:** every stored record carries exactly one ``sub``
      attribute equal to its ``Username``, whatever the caller passed
    - **Visibility is configuration:** only attributes named in
      ``UsernameAttributes`` can resolve a lookup; a matching email is
      invisible to a pool that does not list ``email``
    - **A miss is not an error:** unknown identifiers return ``None``

Lookup resolution:
    ::

        get_user_by_username(identifier)
            │
            ├─ Users[identifier] exists? ──────────────► record
            │
            ├─ for name in Options.UsernameAttributes (declared order):
            │     for user in Users (store order):
            │         user.attribute(name) == identifier? ─► record
            │
            └─ None

    When two users share a value for the same attribute the first in store
    order wins. Store order is insertion order of the ``Users`` object.

Examples:
    >>> factory = functools.partial(create_data_store, directory="/tmp/db")
    >>> pool = create_user_pool(PoolOptions(["email"]), factory)
    >>> pool.save_user(UserRecord(username="1", attributes=[Attribute("email", "a@b.c")]))
    >>> pool.get_user_by_username("a@b.c").username
    '1'

Tags:
    userpool, identity, users, lookup, document-store
"""

from __future__ import annotations

import dataclasses
import functools
from typing import TYPE_CHECKING, Any

from .datastore import CreateDataStore, DataStore, create_data_store
from .errors import ValidationError
from .logging import LogContext, get_logger
from .models import PoolOptions, UserRecord, with_sub_attribute

if TYPE_CHECKING:
    from .settings import UserPoolSettings

logger = get_logger(__name__)

DEFAULT_POOL_NAME = "local"

OPTIONS_KEY = "Options"
USERS_KEY = "Users"


class UserPool:
    """A pool of user records persisted in one ``DataStore``.

    Build with :meth:`create`; the constructor only binds an already-open store.
    """

    def __init__(self, store: DataStore, options: PoolOptions):
        self._store = store
        self._options = options

    @classmethod
    def create(
        cls,
        options: PoolOptions,
        create_store: CreateDataStore,
        name: str = DEFAULT_POOL_NAME,
    ) -> UserPool:
        """Open the pool's store, seeding ``{Options, Users: {}}`` if it is new.

        ``options`` is kept for the life of the handle. An existing file keeps
        the options it was created with on disk.
        """
        store = create_store(name, {OPTIONS_KEY: options.to_dict(), USERS_KEY: {}})
        logger.debug(
            "user_pool_opened",
            store=store.name,
            username_attributes=[a.value for a in options.username_attributes],
        )
        return cls(store, options)

    @property
    def options(self) -> PoolOptions:
        return self._options

    @property
    def store(self) -> DataStore:
        return self._store

    def save_user(self, user: UserRecord) -> UserRecord:
        """Persist ``user`` under its username, replacing any previous record.

        Returns the record as stored (with ``sub`` ensured).
        """
        if not user.username:
            raise ValidationError("Cannot save a user without a Username", field="Username")

        with LogContext(store=self._store.name, operation="save_user"):
            stored = dataclasses.replace(
                user, attributes=with_sub_attribute(user.username, user.attributes)
            )
            self._store.set([USERS_KEY, user.username], stored.to_dict())
            logger.info("user_saved", username=user.username)
        return stored

    def get_user_by_username(self, identifier: str) -> UserRecord | None:
        """Find a user by username, then by each configured username attribute."""
        with LogContext(store=self._store.name, operation="get_user_by_username"):
            users: dict[str, Any] = self._store.get([USERS_KEY]) or {}

            record = users.get(identifier)
            if record is not None:
                return UserRecord.from_dict(record)

            for attribute in self._options.username_attributes:
                for record in users.values():
                    for attr in record.get("Attributes") or ():
                        if attr.get("Name") == attribute.value and attr.get("Value") == identifier:
                            logger.debug(
                                "user_found_by_attribute",
                                attribute=attribute.value,
                                username=record.get("Username"),
                            )
                            return UserRecord.from_dict(record)

            logger.debug("user_lookup_miss")
            return None

    def list_users(self) -> list[UserRecord]:
        """All users in store order."""
        users: dict[str, Any] = self._store.get([USERS_KEY]) or {}
        return [UserRecord.from_dict(record) for record in users.values()]

    def delete_user(self, username: str) -> bool:
        """Remove a user by primary key. Returns False if there was none."""
        deleted = self._store.delete([USERS_KEY, username])
        if deleted:
            logger.info("user_deleted", store=self._store.name, username=username)
        return deleted

    def __repr__(self) -> str:
        return f"UserPool(store={self._store.name!r}, options={self._options!r})"


def create_user_pool(
    options: PoolOptions,
    create_store: CreateDataStore,
    name: str = DEFAULT_POOL_NAME,
) -> UserPool:
    """Functional alias for :meth:`UserPool.create`."""
    return UserPool.create(options, create_store, name=name)


def create_default_user_pool(settings: UserPoolSettings | None = None) -> UserPool:
    """Build the pool a local server starts with, from :class:`UserPoolSettings`.

    Defaults to store ``local`` under ``.cognito/db`` with email usernames.
    """
    from .settings import get_settings

    settings = settings or get_settings()
    factory = functools.partial(create_data_store, directory=settings.data_dir)
    return UserPool.create(
        PoolOptions(username_attributes=tuple(settings.username_attributes)),
        factory,
        name=settings.pool_name,
    )


__all__ = [
    "DEFAULT_POOL_NAME",
    "UserPool",
    "create_user_pool",
    "create_default_user_pool",
]
