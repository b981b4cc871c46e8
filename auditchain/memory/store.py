import os
import sqlite3
import json
import uuid
from contextlib import contextmanager
from dataclasses import replace
from typing import Optional, Dict, Any, List, Tuple, Iterator
from auditchain.core.errors import StoreError
from auditchain.core.models import ActivityEvent, Block, now_ms

DEFAULT_DB = ".auditchain/chain.sqlite"

ACTIVITY_LOGS = "activityLogs"
BLOCKCHAIN = "blockchain"
COLLECTIONS = {ACTIVITY_LOGS: "activity_logs", BLOCKCHAIN: "blockchain"}

def _ensure_dir(path: str):
    d = os.path.dirname(os.path.abspath(path))
    if d and not os.path.exists(d):
        os.makedirs(d, exist_ok=True)

def connect(db_path: Optional[str] = None) -> sqlite3.Connection:
    path = db_path or DEFAULT_DB
    _ensure_dir(path)
    conn = sqlite3.connect(path, timeout=30)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute(
        "CREATE TABLE IF NOT EXISTS activity_logs ("
        "seq INTEGER PRIMARY KEY AUTOINCREMENT,"
        "id TEXT NOT NULL UNIQUE,"
        "user_id TEXT NOT NULL,"
        "user_email TEXT NOT NULL,"
        "action TEXT NOT NULL,"
        "file_name TEXT NOT NULL,"
        "file_url TEXT,"
        "timestamp INTEGER NOT NULL"
        ");"
    )
    conn.execute(
        "CREATE TABLE IF NOT EXISTS blockchain ("
        "seq INTEGER PRIMARY KEY AUTOINCREMENT,"
        "id TEXT NOT NULL UNIQUE,"
        "timestamp INTEGER NOT NULL,"
        "activity TEXT NOT NULL,"
        "previous_hash TEXT NOT NULL,"
        "hash TEXT NOT NULL,"
        "activity_id TEXT"
        ");"
    )
    cols = {r[1] for r in conn.execute("PRAGMA table_info(blockchain)")}
    if "activity_id" not in cols:
        conn.execute("ALTER TABLE blockchain ADD COLUMN activity_id TEXT")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_blockchain_ts ON blockchain(timestamp, seq)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_activity_ts ON activity_logs(timestamp, seq)")
    conn.commit()
    return conn

def _table(collection: str) -> str:
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise ValueError(f"unknown collection {collection!r}") from None

def _activity_row(row: Tuple) -> Tuple[int, ActivityEvent]:
    seq, aid, user_id, email, action, name, url, ts = row
    return int(seq), ActivityEvent(user_id, email, action, name, url, int(ts), id=aid)

def _block_row(row: Tuple) -> Block:
    bid, ts, activity, prev, h, activity_id = row
    return Block(timestamp=int(ts), activity=json.loads(activity), previous_hash=prev, hash=h, id=bid, activity_id=activity_id)

_ACTIVITY_COLS = "seq,id,user_id,user_email,action,file_name,file_url,timestamp"
_BLOCK_COLS = "id,timestamp,activity,previous_hash,hash,activity_id"


class ChainStore:
    """sqlite-backed home of the ``activityLogs`` and ``blockchain`` collections.

    Every operation opens its own connection, so one store may be shared by
    the watcher thread, maintenance workers and API handlers. Nothing here
    enforces chain linkage; callers decide what gets appended.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or DEFAULT_DB

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        conn = None
        try:
            conn = connect(self.db_path)
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            if conn is not None:
                conn.rollback()
            raise StoreError(f"{self.db_path}: {e}") from e
        finally:
            if conn is not None:
                conn.close()

    def ping(self):
        with self._conn() as conn:
            conn.execute("SELECT 1").fetchone()

    # activity log

    def record_activity(self, event: ActivityEvent) -> ActivityEvent:
        """Store one activity event, assigning its id and server timestamp."""
        with self._conn() as conn:
            conn.execute("BEGIN IMMEDIATE")
            last = conn.execute("SELECT MAX(timestamp) FROM activity_logs").fetchone()[0]
            ts = event.timestamp if event.timestamp is not None else now_ms()
            if last is not None and ts < last:
                ts = int(last)
            aid = uuid.uuid4().hex
            conn.execute(
                "INSERT INTO activity_logs(id,user_id,user_email,action,file_name,file_url,timestamp) VALUES(?,?,?,?,?,?,?)",
                (aid, event.user_id, event.user_email, event.action, event.file_name, event.file_url, ts),
            )
        return ActivityEvent(event.user_id, event.user_email, event.action, event.file_name, event.file_url, ts, id=aid)

    def list_activities(self, ascending: bool = True, limit: Optional[int] = None) -> List[ActivityEvent]:
        order = "ASC" if ascending else "DESC"
        sql = f"SELECT {_ACTIVITY_COLS} FROM activity_logs ORDER BY timestamp {order}, seq {order}"
        params: Tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (int(limit),)
        with self._conn() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_activity_row(r)[1] for r in rows]

    def activities_after(self, seq: int, limit: int = 100) -> List[Tuple[int, ActivityEvent]]:
        """Activities inserted after ``seq``, in insertion order."""
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT {_ACTIVITY_COLS} FROM activity_logs WHERE seq>? ORDER BY seq ASC LIMIT ?",
                (int(seq), int(limit)),
            ).fetchall()
        return [_activity_row(r) for r in rows]

    def max_activity_seq(self) -> int:
        with self._conn() as conn:
            row = conn.execute("SELECT MAX(seq) FROM activity_logs").fetchone()
        return int(row[0] or 0)

    # blockchain

    def latest_block(self) -> Optional[Block]:
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT {_BLOCK_COLS} FROM blockchain ORDER BY timestamp DESC, seq DESC LIMIT 1"
            ).fetchone()
        return _block_row(row) if row else None

    def append_block(self, block: Block) -> Block:
        bid = block.id or uuid.uuid4().hex
        with self._conn() as conn:
            conn.execute(
                "INSERT INTO blockchain(id,timestamp,activity,previous_hash,hash,activity_id) VALUES(?,?,?,?,?,?)",
                (bid, int(block.timestamp), json.dumps(block.activity, ensure_ascii=False), block.previous_hash, block.hash, block.activity_id),
            )
        return replace(block, id=bid)

    def list_blocks(self, ascending: bool = True) -> List[Block]:
        order = "ASC" if ascending else "DESC"
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT {_BLOCK_COLS} FROM blockchain ORDER BY timestamp {order}, seq {order}"
            ).fetchall()
        return [_block_row(r) for r in rows]

    def last_chained_activity_seq(self) -> int:
        """Activity-log position of the newest activity that has a block, 0 if none."""
        with self._conn() as conn:
            row = conn.execute(
                "SELECT MAX(a.seq) FROM activity_logs a JOIN blockchain b ON b.activity_id = a.id"
            ).fetchone()
        return int(row[0] or 0)

    # maintenance

    def count(self, collection: str) -> int:
        table = _table(collection)
        with self._conn() as conn:
            return int(conn.execute(f"SELECT COUNT(1) FROM {table}").fetchone()[0])

    def page_ids(self, collection: str, limit: int) -> List[str]:
        table = _table(collection)
        with self._conn() as conn:
            rows = conn.execute(f"SELECT id FROM {table} ORDER BY seq ASC LIMIT ?", (int(limit),)).fetchall()
        return [r[0] for r in rows]

    def delete_ids(self, collection: str, ids: List[str]) -> int:
        """Delete one batch of documents in a single transaction."""
        table = _table(collection)
        with self._conn() as conn:
            cur = conn.executemany(f"DELETE FROM {table} WHERE id=?", [(i,) for i in ids])
            return int(cur.rowcount)

    def stats(self) -> Dict[str, Any]:
        return {name: self.count(name) for name in COLLECTIONS}
