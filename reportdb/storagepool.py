"""A pool of open storages keyed by day and counter."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path

from reportdb.config import Settings
from reportdb.model import Date
from reportdb.storage import Storage

logger = logging.getLogger("reportdb.storagepool")

# Storages used fewer times than this between two cleanups are closed.
CLEANUP_ACCESS_THRESHOLD = 10


@dataclass(frozen=True)
class StoragePoolKey:
    """Identifies the storage of one counter on one day."""

    date: Date
    counter_id: int


class StoragePool:
    """Opens storages on demand and closes the rarely used ones."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._pool: dict[StoragePoolKey, Storage] = {}
        self._access: dict[StoragePoolKey, int] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._cleaner: threading.Thread | None = None

    def storage_path(self, key: StoragePoolKey) -> Path:
        """Return the directory of a key's storage."""
        return Path(self._settings.storage_directory) / key.date.format() / str(key.counter_id)

    def get_storage(self, key: StoragePoolKey, create_if_missing: bool = False) -> Storage:
        """Return the storage of a key, opening (or creating) it if needed."""
        with self._lock:
            storage = self._pool.get(key)
            if storage is None:
                settings = self._settings
                storage = Storage(
                    self.storage_path(key),
                    settings.partitions,
                    settings.block_size,
                    create_if_missing,
                    initial_file_size=settings.initial_file_size,
                    growth_delta=settings.file_size_growth_delta,
                )
                self._pool[key] = storage
                logger.info("loaded new storage in pool: %s", key)
            self._access[key] = self._access.get(key, 0) + 1
            return storage

    def clean(self) -> None:
        """Close storages used too little since the last clean; reset the rest."""
        with self._lock:
            for key in list(self._pool):
                if self._access.get(key, 0) < CLEANUP_ACCESS_THRESHOLD:
                    self._pool.pop(key).close()
                    self._access.pop(key, None)
                    logger.info("closed storage %s", key)
                else:
                    self._access[key] = 0

    def start_cleanup(self, interval: float | None = None) -> None:
        """Run :meth:`clean` every ``interval`` seconds in a background thread."""
        if self._cleaner is not None:
            raise RuntimeError("cleanup already running")
        period = self._settings.storage_cleanup_interval if interval is None else interval
        if period <= 0:
            raise ValueError("cleanup interval must be positive")

        def run() -> None:
            while not self._stop.wait(period):
                self.clean()

        self._cleaner = threading.Thread(target=run, name="storage-pool-cleanup", daemon=True)
        self._cleaner.start()

    def close(self) -> None:
        """Stop the cleanup and close every storage."""
        self._stop.set()
        if self._cleaner is not None:
            self._cleaner.join()
            self._cleaner = None
        with self._lock:
            for storage in self._pool.values():
                storage.close()
            self._pool.clear()
            self._access.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pool)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._pool

    def __enter__(self) -> StoragePool:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()