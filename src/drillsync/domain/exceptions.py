class DrillSyncError(Exception):
    """Base class for drillsync errors."""


class InvalidQualityError(DrillSyncError, ValueError):
    """A review grade outside the supported ordinal set."""


class SyncTransportError(DrillSyncError):
    """The remote record store could not be reached or rejected a request."""


class RemoteAuthError(SyncTransportError):
    """The remote store refused our credentials."""
