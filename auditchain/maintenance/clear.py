import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, List, Optional
from loguru import logger
from auditchain.core.errors import StoreError
from auditchain.memory.store import ChainStore

PAGE_SIZE = 500


@dataclass
class ClearResult:
    collection: str
    deleted: int = 0
    pages: List[int] = field(default_factory=list)
    aborted: bool = False


def clear_collection(store: ChainStore, collection: str, page_size: int = PAGE_SIZE,
                     abort: Optional[threading.Event] = None) -> ClearResult:
    """Delete every document in ``collection``, one page at a time.

    Each page is fetched only after the previous one is deleted. The loop
    ends on the first page shorter than ``page_size``, or before fetching
    the next page once ``abort`` is set.
    """
    res = ClearResult(collection)
    while True:
        if abort is not None and abort.is_set():
            res.aborted = True
            logger.warning(f"Clearing '{collection}' aborted after {res.deleted} documents")
            return res
        ids = store.page_ids(collection, page_size)
        if ids:
            store.delete_ids(collection, ids)
            res.deleted += len(ids)
            res.pages.append(len(ids))
            logger.info(f"Cleared {len(ids)} documents from '{collection}'")
        if len(ids) < page_size:
            break
    if not res.deleted:
        logger.info(f"Collection '{collection}' is already empty")
    return res


def clear_all(store: ChainStore, collections: Iterable[str], page_size: int = PAGE_SIZE) -> int:
    """Clear several collections concurrently; returns the total deleted.

    The first failure stops the other collections at their next page
    boundary (a page already being deleted completes) and is raised as
    ``StoreError``.
    """
    names = list(dict.fromkeys(collections))
    if not names:
        return 0
    abort = threading.Event()

    def _clear(name: str) -> ClearResult:
        try:
            return clear_collection(store, name, page_size, abort)
        except Exception:
            abort.set()
            raise

    with ThreadPoolExecutor(max_workers=len(names)) as pool:
        futures = [pool.submit(_clear, name) for name in names]
        try:
            results = [f.result() for f in futures]
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"clear failed: {e}") from e
    total = sum(r.deleted for r in results)
    logger.info(f"Clearing process complete: {total} documents removed")
    return total
