from snapback.errors import ProviderError
from snapback.provider.base import SnapshotProvider

_HINT = (
    "Set \"provider\" to \"local\" or \"btrfs\" in .snapbackconfig "
    "or with: snapback config provider local"
)


class NativeSnapshotProvider(SnapshotProvider):
    """Placeholder for a direct kernel snapshot API backend. Not implemented."""

    def create(self, volume, description):
        raise ProviderError(f"The native snapshot provider is not available.\n{_HINT}")

    def list(self, volume):
        raise ProviderError(f"The native snapshot provider is not available.\n{_HINT}")

    def delete(self, snapshot_id):
        raise ProviderError(f"The native snapshot provider is not available.\n{_HINT}")

    def resolve_path(self, snapshot_id, volume):
        raise ProviderError(f"The native snapshot provider is not available.\n{_HINT}")
