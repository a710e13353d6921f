from abc import ABC, abstractmethod


class SnapshotProvider(ABC):
    """Base interface for snapshot backends.

    Implementations: LocalSnapshotProvider (default), BtrfsSnapshotProvider,
    NativeSnapshotProvider (placeholder).

    Providers raise ProviderError when the backend fails, NotFoundError when a
    snapshot id is unknown and AccessDenied on privilege problems.
    """

    @abstractmethod
    def create(self, volume, description):
        """Snapshot the volume. Returns a Snapshot (expiry not stamped)."""
        pass

    @abstractmethod
    def list(self, volume):
        """List snapshots of the volume."""
        pass

    @abstractmethod
    def delete(self, snapshot_id):
        """Delete a snapshot by ID."""
        pass

    @abstractmethod
    def resolve_path(self, snapshot_id, volume):
        """Return the root path the snapshot's volume image is readable at."""
        pass
