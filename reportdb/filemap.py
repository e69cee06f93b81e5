"""Memory-mapped partition data files."""

from __future__ import annotations

import logging
import mmap
import os
import threading
from pathlib import Path
from typing import BinaryIO, Iterable

from reportdb.index import ObjectBlock

logger = logging.getLogger("reportdb.filemap")


def data_file_path(storage_path: str | Path, partition_id: int) -> Path:
    """Return the path of a partition's data file."""
    return Path(storage_path) / f"data_{partition_id}.bin"


class FileMapping:
    """A data file mapped into memory, grown on demand."""

    def __init__(self, file: BinaryIO, mapping: mmap.mmap, growth_delta: int) -> None:
        self._file = file
        self._mapping = mapping
        self.growth_delta = growth_delta
        self._lock = threading.Lock()

    @classmethod
    def open(cls, storage_path: str | Path, partition_id: int, growth_delta: int) -> FileMapping:
        """Map an existing, non-empty partition data file."""
        path = data_file_path(storage_path, partition_id)
        file = open(path, "r+b")
        try:
            size = os.fstat(file.fileno()).st_size
            if size == 0:
                raise ValueError(f"cannot map empty data file {path}")
            mapping = mmap.mmap(file.fileno(), size)
        except BaseException:
            file.close()
            raise
        return cls(file, mapping, growth_delta)

    @property
    def name(self) -> str:
        return self._file.name

    @property
    def size(self) -> int:
        """Current mapped size in bytes."""
        return len(self._mapping)

    def _grow(self, needed: int) -> None:
        if self.growth_delta <= 0:
            raise ValueError("file size growth delta must be positive")
        new_size = len(self._mapping)
        while new_size < needed:
            new_size += self.growth_delta
        self._mapping.flush()
        self._mapping.close()
        os.ftruncate(self._file.fileno(), new_size)
        self._mapping = mmap.mmap(self._file.fileno(), new_size)

    def write_at(self, data: bytes, offset: int) -> None:
        """Write bytes at an offset, growing the file when they do not fit."""
        if offset < 0:
            raise ValueError("offset must not be negative")
        end = offset + len(data)
        with self._lock:
            if end > len(self._mapping):
                self._grow(end)
            self._mapping[offset:end] = data

    def read_blocks(self, blocks: Iterable[ObjectBlock], block_size: int) -> bytes:
        """Return the used bytes of the given blocks, in order."""
        with self._lock:
            return b"".join(
                self._mapping[block.offset : block.offset + block_size - block.remaining_capacity]
                for block in blocks
            )

    def close(self) -> None:
        """Unmap and close the file."""
        with self._lock:
            if not self._mapping.closed:
                self._mapping.flush()
                self._mapping.close()
            self._file.close()


class OpenFilesPool:
    """Mapped data files of a storage, one per partition."""

    def __init__(self, growth_delta: int) -> None:
        self.growth_delta = growth_delta
        self._pool: dict[int, FileMapping] = {}
        self._lock = threading.Lock()

    def get(self, partition_id: int, storage_path: str | Path) -> FileMapping:
        """Return the partition's mapping, opening it on first use."""
        with self._lock:
            mapping = self._pool.get(partition_id)
            if mapping is None:
                try:
                    mapping = FileMapping.open(storage_path, partition_id, self.growth_delta)
                except (OSError, ValueError) as error:
                    logger.info("error opening data file for partition %d: %s", partition_id, error)
                    raise
                self._pool[partition_id] = mapping
            return mapping

    def remove(self, partition_id: int) -> None:
        """Close and forget one partition's mapping."""
        with self._lock:
            mapping = self._pool.pop(partition_id)
            mapping.close()

    def close(self) -> None:
        """Close every mapping."""
        with self._lock:
            for mapping in self._pool.values():
                try:
                    mapping.close()
                except (OSError, ValueError) as error:
                    logger.error("error closing file %s: %s", mapping.name, error)
            self._pool.clear()