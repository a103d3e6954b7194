"""
Error taxonomy for the access and readiness core.

Business denials are never raised: they come back as decision objects.
Only caller bugs and storage failures surface as exceptions.
"""


class HireadyError(Exception):
    """Base class for errors raised by the decision core."""


class InvalidInputError(HireadyError):
    """Caller supplied malformed input (maps to HTTP 400)."""


class StorageUnavailableError(HireadyError):
    """The backing store could not be read or written (maps to HTTP 500)."""
