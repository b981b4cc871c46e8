import os
import json
from loguru import logger
from fastapi import Depends, FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from auditchain.chain.verifier import find_forks, verify
from auditchain.core.config import load_config
from auditchain.core.errors import StoreError
from auditchain.core.files import current_files, recent_activity
from auditchain.core.models import ActivityEvent
from auditchain.memory.store import DEFAULT_DB, ChainStore

app = FastAPI(title="auditchain")
cfg = load_config()

API_KEY_ENV = "AUDITCHAIN_API_KEY"
DB_ENV = "AUDITCHAIN_DB"

def get_store() -> ChainStore:
    return ChainStore(os.environ.get(DB_ENV) or cfg.get("store.db_path", DEFAULT_DB))

@app.exception_handler(StoreError)
async def _store_error(request: Request, exc: StoreError):
    logger.error(f"store error on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "store unavailable"})

@app.middleware("http")
async def api_key_guard(request: Request, call_next):
    require_key = cfg.get("api.api_key_required", True)
    if require_key:
        key = request.headers.get("X-API-Key")
        expected = os.environ.get(API_KEY_ENV)
        if not expected or key != expected:
            return JSONResponse(status_code=401, content={"detail": "Unauthorized"})
    return await call_next(request)

@app.get("/health")
async def health():
    return {"status": "ok"}

@app.get("/watcher/health")
async def watcher_health():
    path = cfg.get("watcher.health_file", os.path.join(".auditchain", "watcher.json"))
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError):
        data = {}
    return {
        "state": data.get("state"),
        "last_tick": data.get("last_tick"),
        "blocks_linked": int(data.get("blocks_linked") or 0),
        "events_dropped": int(data.get("events_dropped") or 0),
        "last_error_count": int(data.get("last_error_count") or 0),
        "last_block_hash": data.get("last_block_hash"),
    }

@app.post("/activities")
def record_activity(payload: dict, store: ChainStore = Depends(get_store)):
    if not payload.get("action"):
        raise HTTPException(400, "action required")
    if not payload.get("fileName"):
        raise HTTPException(400, "fileName required")
    event = ActivityEvent.from_dict({k: v for k, v in payload.items() if k not in ("timestamp", "id")})
    stored = store.record_activity(event)
    logger.info(f"activity {stored.action} '{stored.file_name}' logged by {stored.user_email or stored.user_id}")
    return {"id": stored.id, **stored.to_dict()}

@app.get("/activities")
def list_activities(limit: int = 100, order: str = "asc", store: ChainStore = Depends(get_store)):
    acts = store.list_activities(ascending=(order != "desc"), limit=limit)
    return {"activities": [{"id": a.id, **a.to_dict()} for a in acts]}

@app.get("/activities/recent")
def activities_recent(limit: int = 5, store: ChainStore = Depends(get_store)):
    return {"recent": recent_activity(store.list_activities(), limit=limit)}

@app.get("/files")
def files(store: ChainStore = Depends(get_store)):
    return {"files": current_files(store.list_activities())}

@app.get("/chain")
def chain(store: ChainStore = Depends(get_store)):
    blocks = store.list_blocks()
    return {"length": len(blocks), "blocks": [{"id": b.id, "activityId": b.activity_id, **b.to_dict()} for b in blocks]}

@app.get("/chain/verify")
def chain_verify(store: ChainStore = Depends(get_store)):
    blocks = store.list_blocks()
    res = verify(blocks)
    return {"length": len(blocks), "forks": find_forks(blocks), **res.to_dict()}
