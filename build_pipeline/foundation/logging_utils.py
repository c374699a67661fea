"""Operational logging setup for pipeline runs."""

from __future__ import annotations

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(threadName)s | %(message)s"


def configure_stdio_utf8() -> None:
    """Force stdout/stderr to UTF-8 so tool output never crashes the console handler."""
    try:
        sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        sys.stderr.reconfigure(encoding="utf-8", errors="replace")
    except (AttributeError, ValueError, OSError):
        # Streams replaced by wrappers without reconfigure keep their defaults.
        pass


def setup_operational_logger(
    log_dir: str, run_id: str, *, console_level: int = logging.INFO
) -> tuple[logging.Logger, str]:
    """
    Configure the logger for one pipeline run.

    Logs go to both stdout and a UTF-8 file ``<run_id>_oplog.log`` under ``log_dir``.
    Track loggers are children of the returned logger and share its handlers.
    """
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, f"{run_id}_oplog.log")

    logger = logging.getLogger(f"build_pipeline.{run_id}")
    logger.setLevel(logging.DEBUG)
    close_logger(logger)

    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(console_level)
    stream_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)
    logger.propagate = False

    logger.info("Operational logging initialized for run %s", run_id)
    logger.debug("Operational log file: %s", log_file)

    return logger, log_file


def close_logger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        handler.flush()
        handler.close()
    logger.handlers.clear()
