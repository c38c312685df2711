"""
Error hierarchy for the library.

All library-specific errors inherit from `FireDatabaseError`. Invalid arguments
still raise the built-in `ValueError`/`TypeError` at call time.
"""


class FireDatabaseError(Exception):
    """Base error for all fire_database operations."""


class PathError(FireDatabaseError):
    """Malformed path text: empty, or containing an empty segment."""


class DecodeError(FireDatabaseError):
    """A snapshot value does not match the target model.

    The underlying validation error is available as `__cause__`.
    """


class BackendError(FireDatabaseError):
    """A failure reported by the backend (cancelled listener, failed write, closed backend)."""


class AbortTransaction(FireDatabaseError):
    """Raised from a transaction function to abort the transaction without error."""
