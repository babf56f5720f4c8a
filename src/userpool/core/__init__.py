"""
Core primitives: document store, user pool, models, errors, logging, settings.

Module index:
    - ``datastore``: one JSON document per file, atomic whole-file writes
    - ``userpool``: user records, ``sub`` injection, lookup resolution
    - ``models``: ``UserRecord``, ``Attribute``, ``PoolOptions`` and enums
    - ``errors``: ``UserPoolError`` hierarchy
    - ``logging``: structlog configuration
    - ``settings``: ``USERPOOL_*`` environment settings
"""
