"""
Error taxonomy for the discovery engine.

Only FatalSetupFailure (and AuthError) ends a run. Everything else is
contained where it happens, logged as a warning, and the run carries on
with a best-effort inventory.
"""
from typing import Optional


class CloudImportError(Exception):
    """Base class for all cloud import errors."""


class UnmappableType(CloudImportError):
    """A type descriptor or item cannot be translated to a type token."""


class ListingFailure(CloudImportError):
    """The listing call for one type failed; that type is abandoned for the run."""

    def __init__(self, type_id: str, cause: Optional[BaseException] = None):
        self.type_id = type_id
        self.cause = cause
        message = f"Listing {type_id} failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class WorkerFault(CloudImportError):
    """Unexpected fault inside a shard worker."""


class SideEffectFailure(CloudImportError):
    """A register or import call failed for one record."""


class FatalSetupFailure(CloudImportError):
    """Catalog, credential or output failure that terminates the run."""


class AuthError(FatalSetupFailure):
    """Custom exception for authentication/authorization failures.

    Raised when a cloud API returns an auth error that should stop discovery
    rather than being silently caught and logged.
    """
    def __init__(self, message: str, provider: str, original_error: Optional[Exception] = None):
        self.provider = provider
        self.original_error = original_error
        super().__init__(message)
