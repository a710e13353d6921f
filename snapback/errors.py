class SnapbackError(Exception):
    """Base class for every error snapback reports to its caller."""


class ProviderError(SnapbackError):
    """The snapshot backend failed. Raised verbatim to the caller."""


class NotFoundError(SnapbackError):
    """A snapshot, or a path inside one, no longer exists."""


class AccessDenied(SnapbackError):
    """Insufficient privilege to reach a snapshot or its path."""


class BusyError(SnapbackError):
    """A restore or snapshot creation is already in flight."""


class RestoreError(SnapbackError):
    """Restore could not run against the requested target."""


class PartialFailure(SnapbackError):
    """One file or directory smart sync could not delete.

    Collected into SyncResult.failures, never raised by the synchronizer.
    """

    def __init__(self, path, cause):
        super().__init__(f"{path}: {cause}")
        self.path = path
        self.cause = cause
