from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum

DEFAULT_DESCRIPTION = "Snapshot"


def utcnow():
    return datetime.now(timezone.utc)


@dataclass
class Snapshot:
    """A provider-issued, read-only, point-in-time image of a volume."""

    id: str
    volume: str
    created_at: datetime
    expires_at: datetime = None
    description: str = DEFAULT_DESCRIPTION

    def is_expired(self, now=None):
        if self.expires_at is None:
            return False
        return (now or utcnow()) > self.expires_at


class RestoreStatus(str, Enum):
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"


@dataclass
class RestoreState:
    snapshot_id: str
    target_path: str
    started_at: datetime
    status: RestoreStatus = RestoreStatus.IN_PROGRESS
    snapshot_description: str = None

    def to_dict(self):
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(
            snapshot_id=data["snapshot_id"],
            target_path=data["target_path"],
            started_at=datetime.fromisoformat(data["started_at"]),
            status=RestoreStatus(data["status"]),
            snapshot_description=data.get("snapshot_description"),
        )

    @property
    def label(self):
        return self.snapshot_description or self.snapshot_id


class DiffDecision(str, Enum):
    """What smart sync does with one entry of a directory level."""

    RESTORE = "restore"
    OVERWRITE = "overwrite"
    DELETE_EXTRANEOUS = "delete"
    RECURSE = "recurse"
