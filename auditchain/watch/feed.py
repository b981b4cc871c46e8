import threading
from dataclasses import dataclass
from typing import Iterator, List, Optional
from loguru import logger
from auditchain.core.errors import StoreError, SubscriptionError
from auditchain.core.models import ActivityEvent
from auditchain.memory.store import ChainStore

ADDED = "added"
MODIFIED = "modified"
REMOVED = "removed"


@dataclass(frozen=True)
class FeedChange:
    type: str
    activity: ActivityEvent
    seq: int


class Subscription:
    """Live view of newly recorded activity events.

    Changes are delivered in insertion order, once each. ``cursor`` is the
    sequence number of the last delivered change; pass it to
    ``ActivityFeed.subscribe(since=...)`` to resume without replaying.
    """

    def __init__(self, store: ChainStore, cursor: int, poll_interval: float = 1.0, batch_size: int = 100):
        self.store = store
        self.cursor = cursor
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self._cancelled = threading.Event()

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _fetch(self) -> List[FeedChange]:
        try:
            rows = self.store.activities_after(self.cursor, self.batch_size)
        except StoreError as e:
            raise SubscriptionError(str(e)) from e
        return [FeedChange(ADDED, activity, seq) for seq, activity in rows]

    def poll(self) -> List[FeedChange]:
        if self.cancelled:
            return []
        changes = self._fetch()
        if changes:
            self.cursor = changes[-1].seq
        return changes

    def __iter__(self) -> Iterator[FeedChange]:
        while not self.cancelled:
            changes = self._fetch()
            for change in changes:
                if self.cancelled:
                    return
                self.cursor = change.seq
                yield change
            if len(changes) < self.batch_size:
                self._cancelled.wait(self.poll_interval)


class ActivityFeed:
    def __init__(self, store: ChainStore, poll_interval: float = 1.0):
        self.store = store
        self.poll_interval = poll_interval

    def subscribe(self, since: Optional[int] = None) -> Subscription:
        """Open a subscription.

        Without ``since`` the subscription starts at the current end of the
        log, so events recorded before it are never delivered.
        """
        cursor = self.store.max_activity_seq() if since is None else int(since)
        logger.debug(f"subscribed to activity feed at seq={cursor}")
        return Subscription(self.store, cursor, poll_interval=self.poll_interval)
