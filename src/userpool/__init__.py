"""
userpool - a file-backed identity record store.

A ``UserPool`` keeps user records for one tenant in a single JSON document,
assigns every record a ``sub`` attribute equal to its username, and resolves
lookups by username or by the attributes configured as alternate usernames.

Examples:
    >>> import functools
    >>> from userpool import PoolOptions, UserRecord, create_data_store, create_user_pool
    >>> factory = functools.partial(create_data_store, directory=".cognito/db")
    >>> pool = create_user_pool(PoolOptions(["email"]), factory)
    >>> pool.get_user_by_username("nobody") is None
    True
"""

from userpool.core.datastore import CreateDataStore, DataStore, create_data_store
from userpool.core.errors import (
    ConfigError,
    CorruptDataError,
    StorageError,
    StoreNotFoundError,
    UserPoolError,
    ValidationError,
)
from userpool.core.models import (
    Attribute,
    PoolOptions,
    UsernameAttribute,
    UserRecord,
    UserStatus,
)
from userpool.core.userpool import (
    UserPool,
    create_default_user_pool,
    create_user_pool,
)

__version__ = "0.1.0"

__all__ = [
    "Attribute",
    "ConfigError",
    "CorruptDataError",
    "CreateDataStore",
    "DataStore",
    "PoolOptions",
    "StorageError",
    "StoreNotFoundError",
    "UserPool",
    "UserPoolError",
    "UserRecord",
    "UserStatus",
    "UsernameAttribute",
    "ValidationError",
    "create_data_store",
    "create_default_user_pool",
    "create_user_pool",
]
