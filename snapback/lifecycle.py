"""Snapshot lifecycle: creation bookkeeping, metadata, expiry and sweep.

Wraps a SnapshotProvider. Expiry is always recomputed from the snapshot's
own creation time plus the configured TTL, so it survives a lost metadata
file. Descriptions come from the MetadataStore, falling back to "Snapshot".
"""

import threading
from dataclasses import replace
from datetime import timedelta
from pathlib import Path

from snapback.errors import NotFoundError
from snapback.metadata import MetadataStore
from snapback.models import DEFAULT_DESCRIPTION, utcnow

DEFAULT_TTL = timedelta(hours=24)


class SnapshotManager:

    def __init__(self, provider, metadata=None, ttl=DEFAULT_TTL):
        self.provider = provider
        self.metadata = metadata or MetadataStore()
        self.ttl = ttl
        self._paths = {}
        self._paths_lock = threading.Lock()

    def _stamp(self, snapshot, description):
        return replace(
            snapshot,
            expires_at=snapshot.created_at + self.ttl,
            description=description,
        )

    def create(self, volume, description):
        """Create a snapshot. Metadata is written only if the provider succeeds."""
        snapshot = self.provider.create(volume, description)
        self.metadata.set(snapshot.id, description)
        return self._stamp(snapshot, description)

    def list(self, volume):
        """All snapshots of the volume, newest first."""
        descriptions = self.metadata.load()
        snapshots = [
            self._stamp(s, descriptions.get(s.id, DEFAULT_DESCRIPTION))
            for s in self.provider.list(volume)
        ]
        return sorted(snapshots, key=lambda s: s.created_at, reverse=True)

    def get(self, snapshot_id, volume):
        """Look up one snapshot by id. Raises NotFoundError."""
        for snapshot in self.list(volume):
            if snapshot.id == snapshot_id:
                return snapshot
        raise NotFoundError(f"Snapshot {snapshot_id} not found")

    def delete(self, snapshot_id):
        """Delete a snapshot. Deleting an already-gone snapshot succeeds.

        The metadata entry is removed even if the provider call fails.
        """
        try:
            self.provider.delete(snapshot_id)
        except NotFoundError:
            pass
        finally:
            self.metadata.remove(snapshot_id)
            with self._paths_lock:
                self._paths.pop(snapshot_id, None)

    def _delete_each(self, snapshots):
        deleted, failures = [], []
        for snapshot in snapshots:
            try:
                self.delete(snapshot.id)
                deleted.append(snapshot)
            except Exception as e:
                failures.append((snapshot, e))
        return deleted, failures

    def expire_and_sweep(self, volume, now=None, keep=()):
        """Delete every expired snapshot whose id is not in keep.

        Returns (survivors, failures): the snapshots left in place, newest first,
        and a (snapshot, error) pair for each expired one that couldn't be
        deleted. One failure never stops the rest of the batch.
        """
        now = now or utcnow()
        snapshots = self.list(volume)
        expired = [s for s in snapshots if s.is_expired(now) and s.id not in keep]
        survivors = [s for s in snapshots if s not in expired]
        _, failures = self._delete_each(expired)
        return survivors, failures

    def delete_all(self, volume):
        """Delete every snapshot of the volume. Returns (deleted, failures)."""
        return self._delete_each(self.list(volume))

    def resolve_path(self, snapshot_id, volume):
        with self._paths_lock:
            if snapshot_id in self._paths:
                return self._paths[snapshot_id]
        path = Path(self.provider.resolve_path(snapshot_id, volume))
        with self._paths_lock:
            self._paths[snapshot_id] = path
        return path

    def folder_path(self, snapshot_id, volume, target_path):
        """Where target_path's contents live inside the snapshot."""
        volume_root = Path(volume).resolve()
        target = Path(target_path).resolve()
        if target != volume_root and volume_root not in target.parents:
            raise ValueError(f"{target} is not on volume {volume_root}")
        return self.resolve_path(snapshot_id, volume) / target.relative_to(volume_root)
