"""Snapshot metadata side-store.

Providers don't reliably keep human-readable metadata, so snapback keeps its
own id -> description mapping in ~/.snapback/snapshots.json. The file is meant
to be readable by hand. A missing or unparsable file reads as an empty store.
"""

import json
import threading
from pathlib import Path

from snapback.restore_state import write_durable

METADATA_FILE = Path.home() / ".snapback" / "snapshots.json"


class MetadataStore:

    def __init__(self, path=None):
        self.path = Path(path) if path else METADATA_FILE
        self._lock = threading.Lock()

    def load(self):
        """Return the whole mapping. Never raises on a damaged file."""
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (json.JSONDecodeError, OSError, UnicodeDecodeError):
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def get(self, snapshot_id, default=None):
        return self.load().get(snapshot_id, default)

    def set(self, snapshot_id, description):
        with self._lock:
            data = self.load()
            data[snapshot_id] = description
            self._save(data)

    def remove(self, snapshot_id):
        """Drop an entry. Returns True if it existed."""
        with self._lock:
            data = self.load()
            if snapshot_id not in data:
                return False
            del data[snapshot_id]
            self._save(data)
            return True

    def _save(self, data):
        write_durable(self.path, json.dumps(data, indent=2, sort_keys=True) + "\n")
