import os
import json
import time
import threading
from dataclasses import replace
from enum import Enum
from typing import Optional
from loguru import logger
from auditchain.chain.linker import compute_block
from auditchain.core.errors import SubscriptionError
from auditchain.core.models import GENESIS_PREVIOUS_HASH, ActivityEvent, Block, now_ms
from auditchain.memory.store import ChainStore
from auditchain.watch.feed import ADDED, ActivityFeed, FeedChange, Subscription


class WatcherState(str, Enum):
    IDLE = "idle"
    LINKING = "linking"


class ActivityWatcher:
    """Extends the chain by exactly one block per newly added activity event.

    ``link`` is serialized with a lock, so read-tip/compute/append never
    interleave within one watcher. Two watchers on the same store are not
    coordinated and can fork the chain.
    """

    def __init__(self, store: ChainStore, feed: Optional[ActivityFeed] = None, poll_interval: float = 1.0,
                 backoff_initial: float = 1.0, backoff_max: float = 30.0, health_path: Optional[str] = None, resume: bool = False):
        self.store = store
        self.feed = feed or ActivityFeed(store, poll_interval=poll_interval)
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self.health_path = health_path
        self.resume = resume
        self.state = WatcherState.IDLE
        self.linked = 0
        self.dropped = 0
        self.error_count = 0
        self.last_hash: Optional[str] = None
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._subscription: Optional[Subscription] = None

    @classmethod
    def from_config(cls, cfg, store: ChainStore) -> "ActivityWatcher":
        return cls(
            store,
            poll_interval=cfg.number("watcher.poll_interval", 1.0),
            backoff_initial=cfg.number("watcher.backoff_initial", 1.0),
            backoff_max=cfg.number("watcher.backoff_max", 30.0),
            health_path=cfg.get("watcher.health_file"),
            resume=bool(cfg.get("watcher.resume", False)),
        )

    def handle(self, change: FeedChange) -> Optional[Block]:
        if change.type != ADDED:
            logger.debug(f"ignoring {change.type} change for activity {change.activity.id}")
            return None
        return self.link(change.activity)

    def link(self, activity: ActivityEvent) -> Optional[Block]:
        """Append the block for ``activity``; on failure log and drop it."""
        with self._lock:
            self.state = WatcherState.LINKING
            try:
                logger.info(f"New activity {activity.action} '{activity.file_name}' detected, creating a new block")
                tip = self.store.latest_block()
                if tip is None:
                    previous_hash = GENESIS_PREVIOUS_HASH
                    logger.info("This is the first block in the chain (genesis)")
                else:
                    previous_hash = tip.hash
                    logger.debug(f"Last block found. Previous hash: {previous_hash[:10]}...")
                ts = activity.timestamp if activity.timestamp is not None else now_ms()
                if tip is not None and ts < tip.timestamp:
                    ts = tip.timestamp
                block = compute_block(previous_hash, activity, ts)
                block = self.store.append_block(replace(block, activity_id=activity.id))
            except Exception as e:
                self.dropped += 1
                self.error_count += 1
                logger.exception(f"Error creating block for activity {activity.id}, event dropped: {e}")
                self.state = WatcherState.IDLE
                self._write_health()
                return None
            self.state = WatcherState.IDLE
            self.linked += 1
            self.last_hash = block.hash
            logger.info(f"New block added with hash: {block.hash[:10]}...")
            self._write_health()
            return block

    def run(self):
        """Follow the activity feed until ``stop`` is called.

        With ``resume`` the feed starts right after the newest activity that
        already has a block, so events recorded while no watcher ran are
        chained too; otherwise it starts at the end of the log. A store
        failure while opening the first subscription propagates; later feed
        failures are retried with exponential backoff, resuming from the last
        delivered event.
        """
        since = self.store.last_chained_activity_seq() if self.resume else None
        sub = self.feed.subscribe(since=since)
        delay = self.backoff_initial
        logger.info(f"Watching for new activities (after seq={sub.cursor})")
        while not self._stop.is_set():
            self._subscription = sub
            if self._stop.is_set():
                sub.cancel()
            try:
                for change in sub:
                    self.handle(change)
                    delay = self.backoff_initial
            except SubscriptionError as e:
                self.error_count += 1
                self._write_health()
                logger.warning(f"Activity feed error: {e}; resubscribing in {delay:.1f}s")
                if self._stop.wait(delay):
                    break
                delay = min(delay * 2, self.backoff_max)
                sub = self.feed.subscribe(since=sub.cursor)
        logger.info("Watcher stopped")

    def stop(self):
        self._stop.set()
        sub = self._subscription
        if sub is not None:
            sub.cancel()

    def health(self) -> dict:
        return {
            "state": self.state.value,
            "last_tick": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "blocks_linked": self.linked,
            "events_dropped": self.dropped,
            "last_error_count": self.error_count,
            "last_block_hash": self.last_hash,
        }

    def _write_health(self):
        if not self.health_path:
            return
        try:
            d = os.path.dirname(os.path.abspath(self.health_path))
            os.makedirs(d, exist_ok=True)
            with open(self.health_path, "w", encoding="utf-8") as f:
                json.dump(self.health(), f)
        except OSError as e:
            logger.warning(f"could not write watcher health file: {e}")
