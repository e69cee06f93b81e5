"""A partitioned, block-based key/value store for one day and counter."""

from __future__ import annotations

import logging
import mmap
import threading
from pathlib import Path

from reportdb.diskio import disk_write
from reportdb.filemap import OpenFilesPool, data_file_path
from reportdb.index import Index, IndexPool

logger = logging.getLogger("reportdb.storage")

_DEFAULT_FILE_SIZE = 16 * mmap.PAGESIZE


class StorageDoesNotExistError(FileNotFoundError):
    """Raised when opening a storage directory that is absent."""


class ObjectDoesNotExistError(LookupError):
    """Raised when reading an object that has no data."""


class Storage:
    """Object data split over partition files, each with a block index."""

    def __init__(
        self,
        storage_path: str | Path,
        partition_count: int,
        block_size: int,
        create_if_missing: bool = False,
        initial_file_size: int = _DEFAULT_FILE_SIZE,
        growth_delta: int = _DEFAULT_FILE_SIZE,
    ) -> None:
        if partition_count <= 0:
            raise ValueError("partition count must be positive")
        if block_size <= 0:
            raise ValueError("block size must be positive")
        self.storage_path = Path(storage_path)
        self.partition_count = partition_count
        self.block_size = block_size
        self._ensure_directory(create_if_missing, initial_file_size)
        self._files = OpenFilesPool(growth_delta)
        self._indexes = IndexPool()
        self._lock = threading.Lock()

    def _ensure_directory(self, create_if_missing: bool, initial_file_size: int) -> None:
        if self.storage_path.exists():
            return
        if not create_if_missing:
            raise StorageDoesNotExistError(f"storage does not exist: {self.storage_path}")
        logger.info("creating storage %s", self.storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)
        for partition_id in range(self.partition_count):
            with open(data_file_path(self.storage_path, partition_id), "wb") as file:
                file.truncate(initial_file_size)
            Index(self.block_size).sync(self.storage_path, partition_id)

    def _partition(self, key: int) -> int:
        return key % self.partition_count

    def put(self, key: int, value: bytes) -> None:
        """Append bytes to an object."""
        partition = self._partition(key)
        file_mapping = self._files.get(partition, self.storage_path)
        index = self._indexes.get(partition, self.storage_path)
        with self._lock:
            disk_write(key, value, file_mapping, index)
            index.sync(self.storage_path, partition)

    def get(self, key: int) -> bytes:
        """Return all bytes written to an object."""
        partition = self._partition(key)
        file_mapping = self._files.get(partition, self.storage_path)
        index = self._indexes.get(partition, self.storage_path)
        blocks = index.blocks(key)
        if blocks is None:
            raise ObjectDoesNotExistError(f"object does not exist: {key}")
        return file_mapping.read_blocks(blocks, self.block_size)

    def all_keys(self) -> list[int]:
        """Return the ids of every object in every partition."""
        keys: list[int] = []
        for partition in range(self.partition_count):
            index = self._indexes.get(partition, self.storage_path)
            keys.extend(index.object_index)
        return keys

    def close(self) -> None:
        """Unmap the data files and write the indexes back."""
        self._files.close()
        self._indexes.close(self.storage_path)

    def __enter__(self) -> Storage:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()