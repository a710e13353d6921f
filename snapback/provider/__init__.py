from snapback.provider.local import LocalSnapshotProvider

PROVIDERS = ("local", "btrfs", "native")


def create_provider(config=None):
    """Create a snapshot provider from config.

    Config keys:
        provider: "local" (default), "btrfs" or "native"
        volume: volume the btrfs provider snapshots
        btrfs_snapshot_dir: where btrfs snapshots live (default <volume>/.snapshots)
    """
    config = config or {}
    backend = config.get("provider", "local")

    if backend == "btrfs":
        from snapback.provider.btrfs import BtrfsSnapshotProvider
        return BtrfsSnapshotProvider(
            config.get("volume", "/"),
            snapshot_dir=config.get("btrfs_snapshot_dir"),
        )

    if backend == "native":
        from snapback.provider.native import NativeSnapshotProvider
        return NativeSnapshotProvider()

    if backend == "local":
        return LocalSnapshotProvider()

    raise ValueError(
        f"Unknown snapshot provider: {backend!r}. Use one of: {', '.join(PROVIDERS)}."
    )
