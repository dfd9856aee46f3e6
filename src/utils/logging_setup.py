"""
Logging configuration for the media sync engine.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(log_dir: Path, level: int = logging.INFO) -> Dict[str, logging.Logger]:
    """Initialize loggers and return them keyed by role.

    ``main`` writes to the console, a dated master log and an error-only log.
    ``transfer`` records one line per upload, download or deletion in its own
    file and does not propagate to ``main``.
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    date_stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
    formatter = logging.Formatter(LOG_FORMAT)

    master_log = log_dir / f"master_log_{date_stamp}.log"
    error_log = log_dir / f"error_log_{date_stamp}.log"
    transfer_log = log_dir / f"transfer_log_{date_stamp}.log"

    base_logger = logging.getLogger("media_sync")
    if not base_logger.handlers:
        base_logger.setLevel(level)
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        base_logger.addHandler(stream_handler)

        file_handler = logging.FileHandler(master_log, encoding="utf-8")
        file_handler.setFormatter(formatter)
        base_logger.addHandler(file_handler)

        error_handler = logging.FileHandler(error_log, encoding="utf-8")
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        base_logger.addHandler(error_handler)

    transfer_logger = logging.getLogger("media_sync.transfer")
    if not transfer_logger.handlers:
        transfer_logger.setLevel(logging.INFO)
        transfer_handler = logging.FileHandler(transfer_log, encoding="utf-8")
        transfer_handler.setFormatter(formatter)
        transfer_logger.addHandler(transfer_handler)
        transfer_logger.propagate = False

    return {"main": base_logger, "transfer": transfer_logger}
