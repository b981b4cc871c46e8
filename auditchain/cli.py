import os
import sys
import json
import signal
import argparse
from loguru import logger
from auditchain.chain.verifier import find_forks, verify
from auditchain.core.config import CONFIG_ENV, load_config
from auditchain.core.errors import StoreError
from auditchain.core.files import current_files
from auditchain.core.logs import setup_logging
from auditchain.core.models import Action, ActivityEvent
from auditchain.maintenance.clear import PAGE_SIZE, clear_all
from auditchain.memory.store import ACTIVITY_LOGS, BLOCKCHAIN, DEFAULT_DB, ChainStore
from auditchain.watch.watcher import ActivityWatcher

def _store(cfg, args) -> ChainStore:
    return ChainStore(args.db or os.environ.get("AUDITCHAIN_DB") or cfg.get("store.db_path", DEFAULT_DB))

def cmd_clear(cfg, store: ChainStore) -> int:
    logger.info("Clear command received. Deleting blockchain and activity logs...")
    try:
        clear_all(store, [BLOCKCHAIN, ACTIVITY_LOGS], page_size=int(cfg.get("maintenance.page_size", PAGE_SIZE)))
    except StoreError as e:
        logger.error(f"An error occurred during clearing: {e}")
        return 1
    return 0

def cmd_watch(args, cfg) -> int:
    store = _store(cfg, args)
    if args.clear:
        return cmd_clear(cfg, store)
    try:
        store.ping()
    except StoreError as e:
        logger.error(f"Cannot open chain store: {e}")
        return 1
    watcher = ActivityWatcher.from_config(cfg, store)
    if args.resume:
        watcher.resume = True

    def _terminate(signum, frame):
        logger.info(f"Signal {signum} received, stopping watcher")
        watcher.stop()

    signal.signal(signal.SIGTERM, _terminate)
    logger.info(f"Starting local blockchain watcher on {store.db_path}")
    try:
        watcher.run()
    except KeyboardInterrupt:
        watcher.stop()
    except StoreError as e:
        logger.error(f"Chain store unavailable at startup: {e}")
        return 1
    return 0

def cmd_verify(args, cfg) -> int:
    store = _store(cfg, args)
    blocks = store.list_blocks()
    res = verify(blocks)
    out = {"length": len(blocks), "forks": find_forks(blocks), **res.to_dict()}
    print(json.dumps(out, indent=2))
    if not res.valid:
        logger.warning(f"Tamper detected at block {res.index}: {res.reason}")
    return 0 if res.valid else 1

def cmd_record(args, cfg) -> int:
    store = _store(cfg, args)
    action = Action.DELETE_FILE.value if args.action == "delete" else Action.UPLOAD_FILE.value
    stored = store.record_activity(ActivityEvent(args.user_id, args.email or "", action, args.file, args.url))
    print(json.dumps({"id": stored.id, **stored.to_dict()}, indent=2, ensure_ascii=False))
    return 0

def cmd_files(args, cfg) -> int:
    store = _store(cfg, args)
    print(json.dumps(current_files(store.list_activities()), indent=2, ensure_ascii=False))
    return 0

def cmd_serve(args, cfg) -> int:
    import uvicorn
    # the API module loads its own config and store on import
    if cfg.source:
        os.environ[CONFIG_ENV] = cfg.source
    if args.db:
        os.environ["AUDITCHAIN_DB"] = args.db
    logger.info(f"Starting API on {args.host}:{args.port}")
    uvicorn.run("auditchain.ui.api:app", host=args.host, port=args.port, log_level=str(cfg.get("logging.level", "INFO")).lower())
    return 0

def main():
    parser = argparse.ArgumentParser(prog="auditchain", description="Hash-linked file activity log")
    parser.add_argument("--config", default=None, help="Path to a YAML config file")
    parser.add_argument("--db", default=None, help="Override store.db_path")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="cmd")

    wp = sub.add_parser("watch", help="Chain new activity events as they are recorded")
    wp.add_argument("--clear", action="store_true", help="Delete the blockchain and activity logs, then exit")
    wp.add_argument("--resume", action="store_true", help="Also chain events recorded while no watcher was running")

    sub.add_parser("verify", help="Verify the stored chain")

    rp = sub.add_parser("record", help="Record a file activity event")
    rp.add_argument("action", choices=["upload", "delete"])
    rp.add_argument("file")
    rp.add_argument("--user-id", default="local")
    rp.add_argument("--email", default=None)
    rp.add_argument("--url", default=None)

    sub.add_parser("files", help="List files derived from the activity log")

    sp = sub.add_parser("serve", help="Serve the HTTP API")
    sp.add_argument("--host", default="127.0.0.1")
    sp.add_argument("--port", type=int, default=8000)

    args = parser.parse_args()
    try:
        cfg = load_config(args.config)
    except (OSError, ValueError) as e:
        parser.error(str(e))
    setup_logging(cfg, verbose=args.verbose)
    if cfg.source:
        logger.debug(f"Loaded config from {cfg.source}")
    handlers = {"watch": cmd_watch, "verify": cmd_verify, "record": cmd_record, "files": cmd_files, "serve": cmd_serve}
    handler = handlers.get(args.cmd)
    if handler is None:
        parser.print_help()
        sys.exit(0)
    try:
        rc = handler(args, cfg)
    except StoreError as e:
        logger.error(str(e))
        rc = 1
    sys.exit(rc)

if __name__ == "__main__":
    main()
