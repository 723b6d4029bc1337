"""
Error types raised by the relay and mapped to HTTP responses in main.py.
"""


class RelayError(Exception):
    """Base class for relay errors."""


class ValidationError(RelayError):
    """A required field is missing or empty. Surfaced as 400."""


class PersistenceError(RelayError):
    """The datastore rejected or did not answer a call. Surfaced as 500."""
