import json
import shutil
import subprocess
import uuid
from datetime import datetime
from pathlib import Path

from snapback.errors import NotFoundError, ProviderError
from snapback.models import Snapshot, utcnow
from snapback.provider.base import SnapshotProvider

SNAPSHOT_DIR = Path.home() / ".snapback" / "snapshots"
META_FILE = ".snapback_meta"


class LocalSnapshotProvider(SnapshotProvider):
    """Copy-based snapshots under ~/.snapback/snapshots/<id>/.

    The volume image lives in <id>/data/ and <id>/.snapback_meta records the
    source volume and creation time. The meta file is written last, so a
    snapshot whose copy was interrupted never shows up in list().
    The copy does not cross into other mounts (/proc, /sys, network shares).
    """

    def __init__(self, root=None):
        self.root = Path(root) if root else SNAPSHOT_DIR

    def create(self, volume, description):
        volume_path = Path(volume).resolve()
        if not volume_path.is_dir():
            raise NotFoundError(f"Volume {volume} does not exist")

        snapshot_id = uuid.uuid4().hex[:8]
        snapshot_path = self.root / snapshot_id
        data_path = snapshot_path / "data"
        data_path.mkdir(parents=True, exist_ok=True)

        # Never copy the snapshot store into itself
        exclude_args = []
        root = self.root.resolve()
        if root == volume_path or volume_path in root.parents:
            exclude_args = ["--exclude", "/" + str(root.relative_to(volume_path))]

        try:
            subprocess.run(
                ["rsync", "-a", "-x", "--delete"] + exclude_args +
                [str(volume_path) + "/", str(data_path) + "/"],
                check=True,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError as e:
            shutil.rmtree(snapshot_path, ignore_errors=True)
            raise ProviderError("rsync not found. Install rsync to use the local provider.") from e
        except subprocess.CalledProcessError as e:
            shutil.rmtree(snapshot_path, ignore_errors=True)
            raise ProviderError(
                f"rsync failed with exit code {e.returncode}.\n"
                f"Volume: {volume_path}\n"
                f"Output: {(e.stderr or e.stdout or '').strip()}"
            ) from e

        created_at = utcnow()
        (snapshot_path / META_FILE).write_text(json.dumps({
            "volume": str(volume_path),
            "created_at": created_at.isoformat(),
        }))

        return Snapshot(
            id=snapshot_id,
            volume=str(volume_path),
            created_at=created_at,
            description=description,
        )

    def list(self, volume):
        if not self.root.exists():
            return []

        volume_path = str(Path(volume).resolve())
        snapshots = []
        for entry in sorted(self.root.iterdir()):
            meta = self._read_meta(entry)
            if meta is None or meta["volume"] != volume_path:
                continue
            snapshots.append(Snapshot(
                id=entry.name,
                volume=meta["volume"],
                created_at=datetime.fromisoformat(meta["created_at"]),
            ))
        return snapshots

    def _path(self, snapshot_id):
        if not snapshot_id or Path(snapshot_id).name != snapshot_id:
            raise NotFoundError(f"Snapshot {snapshot_id} not found")
        return self.root / snapshot_id

    def delete(self, snapshot_id):
        snapshot_path = self._path(snapshot_id)
        if not snapshot_path.exists():
            raise NotFoundError(f"Snapshot {snapshot_id} not found")
        try:
            shutil.rmtree(snapshot_path)
        except OSError as e:
            raise ProviderError(f"Failed to delete snapshot {snapshot_id}: {e}") from e

    def resolve_path(self, snapshot_id, volume):
        snapshot_path = self._path(snapshot_id)
        data_path = snapshot_path / "data"
        if not (snapshot_path / META_FILE).exists() or not data_path.is_dir():
            raise NotFoundError(f"Snapshot {snapshot_id} not found at {data_path}")
        return data_path

    def _read_meta(self, entry):
        meta_file = entry / META_FILE
        if not meta_file.exists():
            return None
        try:
            meta = json.loads(meta_file.read_text())
            datetime.fromisoformat(meta["created_at"])
            if not isinstance(meta["volume"], str):
                return None
            return meta
        except (json.JSONDecodeError, OSError, KeyError, TypeError, ValueError):
            return None
