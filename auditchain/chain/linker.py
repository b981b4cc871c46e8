import json
import hashlib
from typing import Any, Dict, Union
from auditchain.core.models import ACTIVITY_FIELDS, ActivityEvent, Block

Activity = Union[ActivityEvent, Dict[str, Any]]

def _ordered_activity(activity: Activity) -> Dict[str, Any]:
    data = activity.to_dict() if isinstance(activity, ActivityEvent) else activity
    return {k: data.get(k) for k in ACTIVITY_FIELDS}

def _stored_activity(activity: Dict[str, Any]) -> Dict[str, Any]:
    # known keys in hashing order, then any others sorted; missing keys stay missing
    known = {k: activity[k] for k in ACTIVITY_FIELDS if k in activity}
    extra = {k: activity[k] for k in sorted(activity) if k not in known}
    return {**known, **extra}

def serialize(timestamp: int, activity: Activity, previous_hash: str) -> bytes:
    """Canonical bytes hashed for a block: timestamp, activity, previousHash in that order."""
    rec = {
        "timestamp": int(timestamp),
        "activity": _ordered_activity(activity),
        "previousHash": previous_hash,
    }
    return json.dumps(rec, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

def digest(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()

def compute_block(previous_hash: str, activity: Activity, timestamp: int) -> Block:
    act = _ordered_activity(activity)
    h = digest(serialize(timestamp, act, previous_hash))
    return Block(timestamp=int(timestamp), activity=act, previous_hash=previous_hash, hash=h)

def block_digest(block: Block) -> str:
    """Digest of ``block`` exactly as stored.

    Every key of the stored activity is hashed, so an added key or a dropped
    ``None`` field no longer reproduces the digest computed at link time.
    """
    rec = {
        "timestamp": int(block.timestamp),
        "activity": _stored_activity(block.activity),
        "previousHash": block.previous_hash,
    }
    return digest(json.dumps(rec, separators=(",", ":"), ensure_ascii=False).encode("utf-8"))
