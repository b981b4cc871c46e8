import os
import sys
from loguru import logger

def setup_logging(cfg, verbose: bool = False):
    """Route loguru to stderr plus an optional rotating file sink."""
    level = "DEBUG" if verbose else str(cfg.get("logging.level", "INFO")).upper()
    logger.remove()
    logger.add(sys.stderr, level=level)
    path = cfg.get("logging.file")
    if path:
        d = os.path.dirname(os.path.abspath(path))
        os.makedirs(d, exist_ok=True)
        logger.add(
            path,
            level=level,
            rotation=cfg.get("logging.rotation", "5 MB"),
            retention=cfg.get("logging.retention", 3),
            enqueue=True,
        )
