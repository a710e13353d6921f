import os
import shutil
from pathlib import Path

import pytest

from snapback import config, log, metadata, restore_state
from snapback.errors import NotFoundError, ProviderError
from snapback.models import Snapshot, utcnow
from snapback.orchestrator import Restorer
from snapback.provider import local
from snapback.provider.base import SnapshotProvider


class FakeProvider(SnapshotProvider):
    """Directory-copy provider for tests. Snapshots are plain copytree copies."""

    def __init__(self, root):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.snapshots = {}
        self.fail_create = False
        self.fail_delete = set()
        self.calls = []
        self._n = 0

    def _next_id(self):
        self._n += 1
        return f"snap{self._n}"

    def create(self, volume, description):
        self.calls.append(("create", volume))
        if self.fail_create:
            raise ProviderError("snapshot backend is down")
        snapshot_id = self._next_id()
        path = self.root / snapshot_id
        shutil.copytree(volume, path, symlinks=True)
        snap = Snapshot(
            id=snapshot_id,
            volume=str(Path(volume).resolve()),
            created_at=utcnow(),
            description=description,
        )
        self.snapshots[snapshot_id] = (snap, path)
        return snap

    def add(self, volume, created_at, snapshot_id=None):
        """Register an empty snapshot with a chosen creation time."""
        snapshot_id = snapshot_id or self._next_id()
        path = self.root / snapshot_id
        path.mkdir()
        snap = Snapshot(id=snapshot_id, volume=str(Path(volume).resolve()), created_at=created_at)
        self.snapshots[snapshot_id] = (snap, path)
        return snap

    def list(self, volume):
        self.calls.append(("list", volume))
        volume = str(Path(volume).resolve())
        return [snap for snap, _ in self.snapshots.values() if snap.volume == volume]

    def delete(self, snapshot_id):
        self.calls.append(("delete", snapshot_id))
        if snapshot_id in self.fail_delete:
            raise ProviderError(f"cannot delete {snapshot_id}")
        if snapshot_id not in self.snapshots:
            raise NotFoundError(f"Snapshot {snapshot_id} not found")
        _, path = self.snapshots.pop(snapshot_id)
        shutil.rmtree(path)

    def resolve_path(self, snapshot_id, volume):
        self.calls.append(("resolve", snapshot_id))
        if snapshot_id not in self.snapshots:
            raise NotFoundError(f"Snapshot {snapshot_id} not found")
        return self.snapshots[snapshot_id][1]


def write_tree(root, files):
    """Create files from {relative_path: text}."""
    root = Path(root)
    for rel, text in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)


def read_tree(root):
    """Return {relative_path: text} for every file under root."""
    root = Path(root)
    return {
        p.relative_to(root).as_posix(): p.read_text()
        for p in root.rglob("*")
        if p.is_file()
    }


def age(path, seconds):
    """Shift a file's mtime into the past."""
    st = os.stat(path)
    os.utime(path, (st.st_atime - seconds, st.st_mtime - seconds))


@pytest.fixture
def home(tmp_path, monkeypatch):
    """Point every ~/.snapback path at a temporary directory."""
    home = tmp_path / "home"
    state_dir = home / ".snapback"
    state_dir.mkdir(parents=True)
    monkeypatch.setattr(config, "GLOBAL_CONFIG_FILE", state_dir / "config.json")
    monkeypatch.setattr(log, "LOGS_FILE", state_dir / "logs.jsonl")
    monkeypatch.setattr(metadata, "METADATA_FILE", state_dir / "snapshots.json")
    monkeypatch.setattr(restore_state, "STATE_FILE", state_dir / "restore_state.json")
    monkeypatch.setattr(local, "SNAPSHOT_DIR", state_dir / "snapshots")
    monkeypatch.chdir(tmp_path)
    return home


@pytest.fixture
def volume(tmp_path):
    volume = tmp_path / "volume"
    write_tree(volume, {
        "jobs/job1/a.txt": "alpha",
        "jobs/job1/b.txt": "bravo",
        "jobs/job1/sub/c.txt": "charlie",
        "jobs/job2/readme.txt": "job two",
    })
    return volume


@pytest.fixture
def provider(tmp_path):
    return FakeProvider(tmp_path / "provider")


@pytest.fixture
def restorer(home, volume, provider):
    r = Restorer(
        config={
            "volume": str(volume),
            "jobs_root": str(volume / "jobs"),
            "snapshot_ttl_hours": 24,
        },
        provider=provider,
    )
    yield r
    r.close()
