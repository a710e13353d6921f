"""btrfs-backed snapshot provider.

Drives the btrfs management CLI:
    btrfs subvolume snapshot -r <volume> <snapshot_dir>/snapback-<id>
    btrfs subvolume show <path>      (creation time)
    btrfs subvolume delete <path>

The volume must be a btrfs subvolume and snapback must run as root (or with
CAP_SYS_ADMIN). Snapshots are read-only subvolumes, so a snapshot's root path
is simply its subvolume directory.
"""

import subprocess
import uuid
from datetime import datetime, timezone
from pathlib import Path

from snapback.errors import AccessDenied, NotFoundError, ProviderError
from snapback.models import Snapshot
from snapback.provider.base import SnapshotProvider

ID_PREFIX = "snapback-"
_DENIED_MARKERS = ("permission denied", "operation not permitted")


def parse_creation_time(show_output):
    """Pull 'Creation time:' out of `btrfs subvolume show` output. None if absent."""
    for line in show_output.splitlines():
        key, _, value = line.strip().partition(":")
        if key.strip().lower() != "creation time":
            continue
        try:
            return datetime.strptime(value.strip(), "%Y-%m-%d %H:%M:%S %z")
        except ValueError:
            return None
    return None


class BtrfsSnapshotProvider(SnapshotProvider):

    def __init__(self, volume, snapshot_dir=None):
        self.volume = Path(volume)
        self.snapshot_dir = Path(snapshot_dir) if snapshot_dir else self.volume / ".snapshots"

    def _run(self, args):
        command = ["btrfs"] + args
        try:
            p = subprocess.run(command, capture_output=True, text=True)
        except FileNotFoundError as e:
            raise ProviderError("btrfs not found. Install btrfs-progs to use the btrfs provider.") from e

        if p.returncode != 0:
            output = (p.stderr or p.stdout or "").strip()
            if any(marker in output.lower() for marker in _DENIED_MARKERS):
                raise AccessDenied(
                    f"{' '.join(command)} was refused.\n"
                    f"Output: {output}\n\n"
                    "Make sure snapback is running as root."
                )
            raise ProviderError(
                f"btrfs failed with exit code {p.returncode}.\n"
                f"Command: {' '.join(command)}\n"
                f"Output: {output}"
            )
        return p.stdout

    def _path(self, snapshot_id):
        if Path(snapshot_id).name != snapshot_id or not snapshot_id.startswith(ID_PREFIX):
            raise NotFoundError(f"Snapshot {snapshot_id} not found")
        return self.snapshot_dir / snapshot_id

    def _creation_time(self, path):
        created = parse_creation_time(self._run(["subvolume", "show", str(path)]))
        if created is None:
            created = datetime.fromtimestamp(path.stat().st_mtime, timezone.utc)
        return created

    def _owns(self, volume):
        return Path(volume).resolve() == self.volume.resolve()

    def create(self, volume, description):
        if not self._owns(volume):
            raise ProviderError(
                f"btrfs provider is configured for {self.volume}, not {volume}"
            )
        snapshot_id = ID_PREFIX + uuid.uuid4().hex[:8]
        dest = self.snapshot_dir / snapshot_id
        try:
            self.snapshot_dir.mkdir(parents=True, exist_ok=True)
        except PermissionError as e:
            raise AccessDenied(
                f"Cannot create {self.snapshot_dir}: {e}\n\n"
                "Make sure snapback is running as root."
            ) from e

        self._run(["subvolume", "snapshot", "-r", str(self.volume), str(dest)])
        return Snapshot(
            id=snapshot_id,
            volume=str(self.volume),
            created_at=self._creation_time(dest),
            description=description,
        )

    def list(self, volume):
        if not self._owns(volume) or not self.snapshot_dir.is_dir():
            return []
        snapshots = []
        for entry in sorted(self.snapshot_dir.iterdir()):
            if not entry.name.startswith(ID_PREFIX) or not entry.is_dir():
                continue
            snapshots.append(Snapshot(
                id=entry.name,
                volume=str(self.volume),
                created_at=self._creation_time(entry),
            ))
        return snapshots

    def delete(self, snapshot_id):
        path = self._path(snapshot_id)
        if not path.exists():
            raise NotFoundError(f"Snapshot {snapshot_id} not found")
        self._run(["subvolume", "delete", str(path)])

    def resolve_path(self, snapshot_id, volume):
        path = self._path(snapshot_id)
        if not path.is_dir():
            raise NotFoundError(f"Snapshot {snapshot_id} not found at {path}")
        return path
