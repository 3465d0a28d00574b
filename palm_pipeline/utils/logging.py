"""Shared logging helpers."""

from __future__ import annotations

import logging
from pathlib import Path
from contextlib import contextmanager
import json
import time

_LOGGER_NAME = "palm_scrna_py"
_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger below the package logger.

    Parameters
    ----------
    name:
        Optional child logger name, usually ``__name__`` of the calling module.
    """
    logger_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    logger = logging.getLogger(logger_name)
    if not logging.getLogger(_LOGGER_NAME).handlers:
        _configure_root_logger()
    return logger


def _formatter() -> logging.Formatter:
    return logging.Formatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT)


def _configure_root_logger() -> None:
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(logging.INFO)
    handler = logging.StreamHandler()
    handler.setFormatter(_formatter())
    logger.addHandler(handler)


def set_log_file(path: Path) -> logging.FileHandler:
    """Mirror the package log into ``path`` and return the new handler."""
    path.parent.mkdir(parents=True, exist_ok=True)
    logger = logging.getLogger(_LOGGER_NAME)
    file_handler = logging.FileHandler(path)
    file_handler.setFormatter(_formatter())
    logger.addHandler(file_handler)
    return file_handler


@contextmanager
def time_block(task_name: str, *, write_jsonl: Path | None = None):
    """Time a pipeline stage, optionally appending a JSON line per run.

    Parameters
    ----------
    task_name:
        A short human-readable name for the stage.
    write_jsonl:
        If provided, appends ``{"task", "t_start", "t_end", "elapsed_sec"}``
        to this file.
    """
    logger = get_logger(__name__)
    start = time.time()
    logger.info("[TIMER] %s | started", task_name)
    try:
        yield
    finally:
        end = time.time()
        elapsed = end - start
        logger.info("[TIMER] %s | completed in %.2f s", task_name, elapsed)
        if write_jsonl is not None:
            try:
                write_jsonl.parent.mkdir(parents=True, exist_ok=True)
                payload = {
                    "task": task_name,
                    "t_start": start,
                    "t_end": end,
                    "elapsed_sec": round(elapsed, 3),
                }
                with write_jsonl.open("a", encoding="utf-8") as f:
                    f.write(json.dumps(payload, ensure_ascii=False) + "\n")
            except OSError as exc:  # timings are informational only
                logger.warning("Failed to write timing JSONL for %s: %s", task_name, exc)
