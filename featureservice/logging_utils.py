"""
Logging Utilities

Loguru sinks for the CLI, timing helpers for wire calls and progress
reporting for the remaining-ids fan-out.
"""

import os
import sys
import time
import functools
from contextlib import contextmanager
from typing import Callable, Optional
from loguru import logger


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Replace loguru's default sink with a console sink and an optional file sink

    Console output goes to stderr so that stdout stays free for data.
    """
    logger.remove()
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT)

    if log_file:
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        logger.add(log_file, level=level, format=FILE_FORMAT, rotation="100 MB", retention=3)

    logger.debug(f"Logging configured: level={level}, file={log_file or '-'}")


@contextmanager
def log_execution_time(operation_name: str, log_level: str = "INFO"):
    """
    Log how long the enclosed block took

    Usage:
        with log_execution_time("Schema fetch"):
            client.fetch_schema(identity)
    """
    started = time.perf_counter()
    outcome = "failed"

    try:
        yield
        outcome = "done"
    finally:
        logger.log(log_level, f"{operation_name} {outcome} in {time.perf_counter() - started:.2f}s")


def performance_logger(operation_name: Optional[str] = None):
    """
    Decorator timing a wire call; failures are logged as warnings and re-raised

    Usage:
        @performance_logger("applyEdits")
        def apply_edits(...):
            ...
    """
    def decorator(func: Callable) -> Callable:
        name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.warning(f"{name} failed after {time.perf_counter() - started:.2f}s: {e}")
                raise
            logger.debug(f"{name} took {time.perf_counter() - started:.2f}s")
            return result

        return wrapper
    return decorator


class BatchLogger:
    """
    Progress of features fetched in batches

    Logs once every ``interval`` features and when the expected total is
    reached.

    Usage:
        progress = BatchLogger("Fetching remaining features", total=len(ids))
        for batch in batches:
            progress.add(len(batch))
        progress.finish()
    """

    def __init__(self, operation: str, total: int, interval: int = 1000):
        self.operation = operation
        self.total = total
        self.interval = interval
        self.fetched = 0
        self.batches = 0
        self._next_report = interval
        self._started = time.perf_counter()

        logger.info(f"{operation}: {total} features expected")

    def add(self, count: int) -> None:
        self.fetched += count
        self.batches += 1

        if self.fetched >= self._next_report or self.fetched >= self.total:
            self._next_report = (self.fetched // self.interval + 1) * self.interval
            elapsed = time.perf_counter() - self._started
            share = self.fetched / self.total * 100 if self.total else 100.0
            speed = self.fetched / elapsed if elapsed > 0 else 0.0
            logger.info(f"{self.operation}: {self.fetched}/{self.total} ({share:.1f}%), {speed:.1f} features/s")

    def finish(self) -> None:
        elapsed = time.perf_counter() - self._started
        missing = self.total - self.fetched

        message = f"{self.operation}: {self.fetched} features in {self.batches} batches, {elapsed:.2f}s"
        if missing > 0:
            logger.warning(f"{message}; {missing} requested ids were not returned")
        else:
            logger.info(message)


def log_summary(operation: str, **metrics):
    """
    Log a block of key/value metrics under one heading

    Usage:
        log_summary("Download", layer="Incidents", features=1200, duration="4.2s")
    """
    width = max((len(k) for k in metrics), default=0)
    lines = [f"{operation} summary:"]
    lines += [f"   {key:<{width}} : {value}" for key, value in metrics.items()]
    logger.info("\n".join(lines))
