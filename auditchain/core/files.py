import os
from typing import Any, Dict, Iterable, List
from auditchain.core.models import Action, ActivityEvent, is_upload

IMAGE_EXT = {"jpg", "jpeg", "png", "gif"}
DOC_EXT = {"pdf", "doc", "docx", "txt"}

def file_type(file_name: str) -> str:
    ext = os.path.splitext(file_name or "")[1].lstrip(".").lower()
    if ext in IMAGE_EXT:
        return "image"
    if ext in DOC_EXT:
        return "doc"
    return "generic"

def current_files(activities: Iterable[ActivityEvent]) -> List[Dict[str, Any]]:
    """Replay the activity log (oldest first) into the files that still exist."""
    files: Dict[str, Dict[str, Any]] = {}
    for a in activities:
        if is_upload(a.action):
            files[a.file_name] = {
                "id": a.id,
                "name": a.file_name,
                "type": file_type(a.file_name),
                "url": a.file_url,
                "timestamp": a.timestamp,
            }
        elif a.action == Action.DELETE_FILE.value:
            files.pop(a.file_name, None)
    return list(files.values())

def recent_activity(activities: Iterable[ActivityEvent], limit: int = 5) -> List[str]:
    """Most recent first, e.g. ``Uploaded 'a.txt'``."""
    out = []
    for a in list(activities)[::-1][:limit]:
        verb = "Deleted" if a.action == Action.DELETE_FILE.value else "Uploaded"
        out.append(f"{verb} '{a.file_name}'")
    return out
