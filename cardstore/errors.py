"""
Exceptions raised by the card store.
"""


class StoreError(Exception):
    """Base class for store failures."""


class StoreClosedError(StoreError):
    """The store was closed and can no longer run statements."""


class MigrationError(StoreError):
    """A migration script cannot be applied as recorded."""
