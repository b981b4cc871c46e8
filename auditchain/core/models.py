import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

GENESIS_PREVIOUS_HASH = "0"

# activity fields in hashing order; changing this breaks every stored hash
ACTIVITY_FIELDS = ("userId", "userEmail", "action", "fileName", "fileURL", "timestamp")


class Action(str, Enum):
    UPLOAD_FILE = "UPLOAD_FILE"
    UPLOAD_FILE_UPLOADCARE = "UPLOAD_FILE_UPLOADCARE"
    DELETE_FILE = "DELETE_FILE"


def is_upload(action: str) -> bool:
    return (action or "").startswith(Action.UPLOAD_FILE.value)


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ActivityEvent:
    user_id: str
    user_email: str
    action: str
    file_name: str
    file_url: Optional[str] = None
    timestamp: Optional[int] = None
    id: Optional[str] = field(default=None, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        """Wire form used for hashing and the API. Field order is fixed."""
        return {
            "userId": self.user_id,
            "userEmail": self.user_email,
            "action": self.action,
            "fileName": self.file_name,
            "fileURL": self.file_url,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], id: Optional[str] = None) -> "ActivityEvent":
        ts = data.get("timestamp")
        action = data.get("action") or ""
        return cls(
            user_id=str(data.get("userId") or ""),
            user_email=str(data.get("userEmail") or ""),
            action=action.value if isinstance(action, Action) else str(action),
            file_name=str(data.get("fileName") or ""),
            file_url=data.get("fileURL"),
            timestamp=int(ts) if ts is not None else None,
            id=id if id is not None else data.get("id"),
        )


@dataclass(frozen=True)
class Block:
    timestamp: int
    activity: Dict[str, Any]
    previous_hash: str
    hash: str
    id: Optional[str] = field(default=None, compare=False)
    # id of the chained activity; not part of the hashed content
    activity_id: Optional[str] = field(default=None, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "activity": dict(self.activity),
            "previousHash": self.previous_hash,
            "hash": self.hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], id: Optional[str] = None) -> "Block":
        return cls(
            timestamp=int(data["timestamp"]),
            activity=dict(data.get("activity") or {}),
            previous_hash=str(data["previousHash"]),
            hash=str(data["hash"]),
            id=id if id is not None else data.get("id"),
            activity_id=data.get("activityId"),
        )
