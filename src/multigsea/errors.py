"""Exception types raised by the GeneSetDb core.

All errors are local input/contract violations raised at the offending
call. None of them are retried.
"""


class GeneSetDbError(Exception):
    """Base exception class for all GeneSetDb errors."""

    def __init__(self, message="GeneSetDb error", details=None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self):
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class MalformedInputError(GeneSetDbError, ValueError):
    """Raised when raw gene set input is missing keys or holds an empty gene set."""

    def __init__(self, message="Malformed gene set input", details=None):
        super().__init__(message, details)


class UnknownMetadataKeyError(GeneSetDbError, KeyError):
    """Raised when writing a metadata key that does not exist without allow_add."""

    def __init__(self, message="Unknown collection metadata key", details=None):
        super().__init__(message, details)


class ValidationError(GeneSetDbError, ValueError):
    """Raised when a metadata value is rejected by its validator."""

    def __init__(self, message="Metadata value failed validation", details=None):
        super().__init__(message, details)


class CollisionError(GeneSetDbError, ValueError):
    """Raised when appending GeneSetDbs with conflicting (collection, name) keys."""

    def __init__(self, message="Conflicting gene set definitions", details=None):
        super().__init__(message, details)


class DimensionMismatchError(GeneSetDbError, IndexError):
    """Raised when a boolean subset vector does not match the gene set table."""

    def __init__(self, message="Subset vector length mismatch", details=None):
        super().__init__(message, details)


class NotConformedError(GeneSetDbError, ValueError):
    """Raised when target indices are requested from an unconformed GeneSetDb."""

    def __init__(self, message="GeneSetDb has not been conformed", details=None):
        super().__init__(message, details)
