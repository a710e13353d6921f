"""Audit logging.

Appends structured JSON entries to ~/.snapback/logs.jsonl.
Each entry records a lifecycle event (snapshot_create, snapshot_delete,
sweep, restore_start, restore_complete, restore_failed, restore_abandon)
with a timestamp, the snapshot ID and, for restores, the target path.
"""

import json
from datetime import datetime
from pathlib import Path

LOGS_FILE = Path.home() / ".snapback" / "logs.jsonl"


def write_log(entry):
    """Append an audit log entry."""
    LOGS_FILE.parent.mkdir(parents=True, exist_ok=True)
    entry["timestamp"] = datetime.now().isoformat()
    with open(LOGS_FILE, "a") as f:
        f.write(json.dumps(entry, default=str) + "\n")


def read_logs():
    """Return all parseable entries, oldest first. Damaged lines are skipped."""
    if not LOGS_FILE.exists():
        return []
    entries = []
    for line in LOGS_FILE.read_text().splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            entries.append(json.loads(line))
        except json.JSONDecodeError:
            continue
    return entries
