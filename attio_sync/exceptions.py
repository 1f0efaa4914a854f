"""
Library-level exceptions for Attio Sync.

Remote API errors live in attio_sync.api.base.
"""


class AttioSyncError(Exception):
    """Base class for errors raised by this package."""


class ConfigurationError(AttioSyncError):
    """Missing or invalid configuration (e.g. no API key)."""


class BulkSyncError(AttioSyncError):
    """Raised when every record in a bulk run failed and raise_on_failure is set."""


class WorkspaceError(AttioSyncError):
    """Invalid workspace or member."""


class RecordNotFound(AttioSyncError):
    """A background job could not load its record."""
