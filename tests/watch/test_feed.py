import threading
import pytest
from auditchain.core.errors import StoreError, SubscriptionError
from auditchain.core.models import ActivityEvent
from auditchain.memory.store import ChainStore
from auditchain.watch.feed import ADDED, ActivityFeed

def _ev(name):
    return ActivityEvent("u1", "a@b.c", "UPLOAD_FILE", name)

class BrokenStore(ChainStore):
    def activities_after(self, seq, limit=100):
        raise StoreError("gone")

def test_subscription_delivers_new_events_in_order_once(tmp_path):
    store = ChainStore(str(tmp_path / "chain.sqlite"))
    store.record_activity(_ev("old.txt"))
    sub = ActivityFeed(store).subscribe()
    for n in ("a.txt", "b.txt", "c.txt"):
        store.record_activity(_ev(n))
    changes = sub.poll()
    assert [c.type for c in changes] == [ADDED] * 3
    assert [c.activity.file_name for c in changes] == ["a.txt", "b.txt", "c.txt"]
    assert sub.cursor == changes[-1].seq
    assert sub.poll() == []

def test_resume_from_cursor(tmp_path):
    store = ChainStore(str(tmp_path / "chain.sqlite"))
    feed = ActivityFeed(store)
    sub = feed.subscribe()
    store.record_activity(_ev("a.txt"))
    sub.poll()
    store.record_activity(_ev("b.txt"))
    resumed = feed.subscribe(since=sub.cursor)
    assert [c.activity.file_name for c in resumed.poll()] == ["b.txt"]
    assert [c.activity.file_name for c in feed.subscribe(since=0).poll()] == ["a.txt", "b.txt"]

def test_cancelled_iteration_stops(tmp_path):
    store = ChainStore(str(tmp_path / "chain.sqlite"))
    sub = ActivityFeed(store, poll_interval=0.01).subscribe()
    store.record_activity(_ev("a.txt"))
    seen = []
    def consume():
        for change in sub:
            seen.append(change.activity.file_name)
            sub.cancel()
    t = threading.Thread(target=consume)
    t.start()
    t.join(timeout=5)
    assert not t.is_alive()
    assert seen == ["a.txt"]
    assert sub.cancelled is True
    assert sub.poll() == []

def test_store_failure_raises_subscription_error(tmp_path):
    store = BrokenStore(str(tmp_path / "chain.sqlite"))
    sub = ActivityFeed(store).subscribe()
    with pytest.raises(SubscriptionError):
        sub.poll()
    assert sub.cursor == 0
