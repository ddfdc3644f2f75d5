"""
Error taxonomy for Folio.

Each error also subclasses the closest builtin so callers that only know the
standard library (PermissionError, LookupError, ValueError, OSError) still
catch the right thing.

Read paths favour availability: they log and degrade to an empty/default
result instead of raising. Write paths favour correctness: they raise.
"""


class FolioError(Exception):
    """Base class for every error raised by the folio package."""


class AuthRequired(FolioError, PermissionError):
    """A write was attempted without a store handle or owner id."""


class NotFound(FolioError, LookupError):
    """Target policy/config/version is absent or not owned by the caller."""


class ConfigValidationError(FolioError, ValueError):
    """
    Malformed configuration: missing destination/pattern/message/url/payload,
    an invalid JSON payload, or a field schema that drops a default field.
    Stops the offending action only.

    `step` is the short trace label for the failure, e.g.
    "Webhook failed: invalid JSON payload".
    """

    def __init__(self, message: str, step: str | None = None):
        super().__init__(message)
        self.step = step


class IOFailure(FolioError, OSError):
    """A filesystem or network operation failed. Stops the pipeline."""


class StorageError(IOFailure):
    """A data-store write failed. Always raised to the caller."""


class TransientReadFailure(FolioError, RuntimeError):
    """
    A registry/config read failed. Never escapes the read path: it is logged
    and the caller gets an empty or default result instead.
    """
