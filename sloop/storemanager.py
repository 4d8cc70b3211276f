"""Background garbage collection of old partitions from the store."""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from sloop.kvstore import MemoryStore, StoreError
from sloop.partition import get_time_range_for_partition
from sloop.sleeper import SleepWithCancel
from sloop.tables import Tables

log = logging.getLogger(__name__)

_MB = 1024.0 * 1024.0


class CleanupError(Exception):
    """Raised when a garbage collection pass fails."""


@dataclass
class StoreMetrics:
    """Counters and gauges describing the store and its garbage collection."""

    gc_run_count: int = 0
    gc_cleanup_performed_count: int = 0
    gc_failed_count: int = 0
    store_size_on_disk_mb: float = 0.0
    badger_keys: int = 0
    badger_tables: int = 0
    badger_lsm_size_mb: float = 0.0
    badger_vlog_size_mb: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


metrics = StoreMetrics()


class StoreManager:
    """Runs garbage collection of the oldest partition in a background thread."""

    def __init__(
        self,
        tables: Tables,
        store_root: str,
        freq: timedelta,
        time_limit: timedelta,
        size_limit_mb: int,
    ):
        self.tables = tables
        self.store_root = store_root
        self.freq = freq
        self.time_limit = time_limit
        self.size_limit_mb = size_limit_mb
        self.metrics = metrics
        self._sleeper = SleepWithCancel()
        self._done = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the collection loop in a background thread."""
        self._thread = threading.Thread(target=self._run, name="store-manager", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        wait = self.freq.total_seconds()
        while not self._done.is_set():
            collect_metrics(self.store_root, self.tables.db)
            with self.metrics._lock:
                self.metrics.gc_run_count += 1
            try:
                performed = do_cleanup(
                    self.tables,
                    self.store_root,
                    self.time_limit,
                    self.size_limit_mb * 1024 * 1024,
                )
            except Exception as exc:
                with self.metrics._lock:
                    self.metrics.gc_failed_count += 1
                log.error("GC failed with err:%s, will sleep: %s and retry later ...", exc, self.freq)
                self._sleeper.sleep(wait)
                continue
            if not performed:
                log.debug("GC did not need to clean anything, will sleep: %s", self.freq)
                self._sleeper.sleep(wait)
            else:
                # Space may be low, so loop again straight away.
                log.info("GC cleanup performed")
                with self.metrics._lock:
                    self.metrics.gc_cleanup_performed_count += 1
        log.info("Store manager main loop exiting")

    def shutdown(self) -> None:
        """Stop the loop and wait for the background thread to finish."""
        log.info("Starting store manager shutdown")
        self._done.set()
        self._sleeper.cancel()
        if self._thread is not None:
            self._thread.join()


def do_cleanup(
    tables: Tables, store_root: str, time_limit: timedelta, size_limit_bytes: int
) -> bool:
    """Drop the oldest partition if the store is too old or too large.

    Returns True if any cleanup was done.
    """
    try:
        bounds = tables.get_min_and_max_partition()
    except Exception as exc:
        raise CleanupError(f"failed to get min and max partition, err:{exc}") from exc
    if bounds is None:
        return False
    min_partition, max_partition = bounds

    performed = False
    if clean_up_time_condition(min_partition, max_partition, time_limit) or (
        clean_up_file_size_condition(store_root, size_limit_bytes)
    ):
        errors: List[str] = []
        for table_name in tables.get_table_names():
            prefix = f"/{table_name}/{min_partition}"
            started = time.monotonic()
            try:
                tables.db.drop_prefix(prefix)
            except StoreError as exc:
                elapsed = timedelta(seconds=time.monotonic() - started)
                errors.append(
                    f"failed to cleanup with min key: {prefix}, elapsed: {elapsed},err: {exc},"
                )
            performed = True
        if errors:
            raise CleanupError("".join(msg + "," for msg in errors))
    return performed


def clean_up_time_condition(min_partition: str, max_partition: str, time_limit: timedelta) -> bool:
    """Return True if the partitions span more time than ``time_limit``."""
    try:
        oldest, _ = get_time_range_for_partition(min_partition)
        _, latest = get_time_range_for_partition(max_partition)
    except ValueError as exc:
        log.error("%s", exc)
        return False
    diff = latest - oldest
    if diff > time_limit:
        log.info(
            "Start cleaning up because current time diff: %s exceeds time limit: %s",
            diff,
            time_limit,
        )
        return True
    log.debug(
        "Can not clean up, wait until clean up time gap: %s exceeds time limit: %s yet",
        diff,
        time_limit,
    )
    return False


def clean_up_file_size_condition(store_root: str, size_limit_bytes: int) -> bool:
    """Return True if the files under ``store_root`` exceed ``size_limit_bytes``."""
    try:
        size = get_dir_size_recursive(store_root)
    except OSError:
        return False
    if size > size_limit_bytes:
        log.info(
            "Start cleaning up because current file size: %s exceeds file size: %s",
            size,
            size_limit_bytes,
        )
        return True
    log.debug(
        "Can not clean up, disk size: %s is not exceeding size limit: %s yet",
        size,
        size_limit_bytes,
    )
    return False


def get_dir_size_recursive(root: str) -> int:
    """Return the total size in bytes of all non-directories under ``root``.

    Raises OSError when ``root`` cannot be read.
    """
    info = os.lstat(root)
    if not os.path.isdir(root) or os.path.islink(root):
        return info.st_size
    total = 0
    with os.scandir(root) as entries:
        for entry in entries:
            if entry.is_dir(follow_symlinks=False):
                total += get_dir_size_recursive(entry.path)
            else:
                total += entry.stat(follow_symlinks=False).st_size
    return total


def collect_metrics(store_root: str, db: MemoryStore) -> StoreMetrics:
    """Update the store gauges from the disk and the database; return the metrics."""
    with metrics._lock:
        try:
            size = get_dir_size_recursive(store_root)
        except OSError:
            log.error("Failed to check storage size on disk")
        else:
            metrics.store_size_on_disk_mb = size / _MB

        lsm_size, vlog_size = db.size()
        metrics.badger_lsm_size_mb = lsm_size / _MB
        metrics.badger_vlog_size_mb = vlog_size / _MB

        table_infos = db.tables(True)
        metrics.badger_keys = sum(info.key_count for info in table_infos)
        metrics.badger_tables = len(table_infos)
    return metrics