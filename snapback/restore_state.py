"""Durable single-slot record of the restore in progress.

    begin()           -> InProgress record written and fsynced
    mark_completed()  -> record deleted
    mark_failed()     -> record rewritten as Failed, other fields kept

The record outlives the process on purpose: finding an InProgress record at
startup means the last restore was interrupted mid-sync.
"""

import json
import os
from contextlib import suppress
from pathlib import Path

from snapback.models import RestoreState, RestoreStatus, utcnow

STATE_FILE = Path.home() / ".snapback" / "restore_state.json"


def _fsync_dir(path):
    with suppress(OSError):
        fd = os.open(path, os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)


def write_durable(path, text):
    """Write text so it is on disk when this returns: temp file, fsync, rename."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with tmp.open("w", encoding="utf-8") as handle:
        handle.write(text)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp, path)
    _fsync_dir(path.parent)


class RestoreStateManager:

    def __init__(self, path=None):
        self.path = Path(path) if path else STATE_FILE

    def _write(self, state):
        write_durable(self.path, json.dumps(state.to_dict(), indent=2) + "\n")

    def read(self):
        """Return whatever record is on disk, or None if absent or unreadable."""
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return RestoreState.from_dict(data)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError, ValueError):
            return None

    def begin(self, snapshot_id, target_path, description=None):
        """Record a restore as InProgress. Must return before the sync starts."""
        state = RestoreState(
            snapshot_id=snapshot_id,
            target_path=str(target_path),
            started_at=utcnow(),
            snapshot_description=description,
        )
        self._write(state)
        return state

    def mark_completed(self):
        with suppress(FileNotFoundError):
            self.path.unlink()
        _fsync_dir(self.path.parent)

    def mark_failed(self):
        """Flip the record to Failed. Silently does nothing if there is no usable record."""
        state = self.read()
        if state is None:
            return
        state.status = RestoreStatus.FAILED
        with suppress(OSError):
            self._write(state)

    def get_pending_restore(self):
        state = self.read()
        if state is None or state.status is not RestoreStatus.IN_PROGRESS:
            return None
        return state
