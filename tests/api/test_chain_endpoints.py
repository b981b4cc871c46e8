import json
import pytest
from fastapi.testclient import TestClient
from auditchain.core.config import Config
from auditchain.memory.store import ChainStore
from auditchain.ui import api
from auditchain.watch.watcher import ActivityWatcher

H = {"X-API-Key": "k"}

@pytest.fixture
def store(tmp_path, monkeypatch):
    monkeypatch.setenv("AUDITCHAIN_API_KEY", "k")
    s = ChainStore(str(tmp_path / "chain.sqlite"))
    api.app.dependency_overrides[api.get_store] = lambda: s
    yield s
    api.app.dependency_overrides.clear()

def test_api_requires_key(store):
    c = TestClient(api.app)
    assert c.get("/health", headers=H).status_code == 200
    assert c.get("/chain").status_code == 401
    assert c.get("/chain", headers={"X-API-Key": "wrong"}).status_code == 401

def test_record_chain_and_verify(store):
    c = TestClient(api.app)
    r = c.post("/activities", headers=H, json={"userId": "u1", "userEmail": "a@b.c", "action": "UPLOAD_FILE", "fileName": "a.txt", "fileURL": "https://cdn/a"})
    assert r.status_code == 200
    assert r.json()["id"]
    assert r.json()["fileURL"] == "https://cdn/a"
    c.post("/activities", headers=H, json={"userId": "u1", "userEmail": "a@b.c", "action": "DELETE_FILE", "fileName": "a.txt"})
    watcher = ActivityWatcher(store)
    for a in store.list_activities():
        watcher.link(a)
    chain = c.get("/chain", headers=H).json()
    assert chain["length"] == 2
    assert chain["blocks"][1]["previousHash"] == chain["blocks"][0]["hash"]
    v = c.get("/chain/verify", headers=H).json()
    assert v == {"length": 2, "forks": [], "valid": True, "index": None, "reason": None}
    assert c.get("/files", headers=H).json() == {"files": []}
    assert c.get("/activities/recent", headers=H).json()["recent"] == ["Deleted 'a.txt'", "Uploaded 'a.txt'"]
    acts = c.get("/activities", headers=H, params={"order": "desc"}).json()["activities"]
    assert [a["action"] for a in acts] == ["DELETE_FILE", "UPLOAD_FILE"]

def test_empty_chain_verifies(store):
    c = TestClient(api.app)
    v = c.get("/chain/verify", headers=H).json()
    assert v["valid"] is True
    assert v["length"] == 0

def test_record_requires_fields(store):
    c = TestClient(api.app)
    assert c.post("/activities", headers=H, json={"fileName": "a.txt"}).status_code == 400
    assert c.post("/activities", headers=H, json={"action": "UPLOAD_FILE"}).status_code == 400

def test_store_error_is_503(tmp_path, monkeypatch):
    monkeypatch.setenv("AUDITCHAIN_API_KEY", "k")
    api.app.dependency_overrides[api.get_store] = lambda: ChainStore(str(tmp_path))
    try:
        c = TestClient(api.app)
        assert c.get("/chain", headers=H).status_code == 503
    finally:
        api.app.dependency_overrides.clear()

def test_watcher_health(tmp_path, monkeypatch):
    monkeypatch.setenv("AUDITCHAIN_API_KEY", "k")
    path = tmp_path / "watcher.json"
    path.write_text(json.dumps({"state": "idle", "blocks_linked": 3, "last_error_count": 1}))
    monkeypatch.setattr(api, "cfg", Config(raw={"watcher": {"health_file": str(path)}}))
    c = TestClient(api.app)
    data = c.get("/watcher/health", headers=H).json()
    assert data["state"] == "idle"
    assert data["blocks_linked"] == 3
    assert data["last_error_count"] == 1
    assert data["events_dropped"] == 0

def test_chain_blocks_carry_activity_id(store):
    c = TestClient(api.app)
    r = c.post("/activities", headers=H, json={"userId": "u1", "userEmail": "a@b.c", "action": "UPLOAD_FILE", "fileName": "a.txt"})
    ActivityWatcher(store).link(store.list_activities()[0])
    blocks = c.get("/chain", headers=H).json()["blocks"]
    assert blocks[0]["activityId"] == r.json()["id"]
