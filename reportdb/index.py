"""Per-partition block index of a storage."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import msgpack

logger = logging.getLogger("reportdb.index")


def index_file_path(storage_path: str | Path, partition_id: int) -> Path:
    """Return the path of a partition's index file."""
    return Path(storage_path) / f"index_{partition_id}.bin"


@dataclass
class ObjectBlock:
    """A block of a data file owned by one object."""

    offset: int
    remaining_capacity: int


class Index:
    """Maps object ids to the blocks that hold their data in one partition."""

    def __init__(
        self,
        block_size: int,
        next_free_block_offset: int = 0,
        object_index: dict[int, list[ObjectBlock]] | None = None,
    ) -> None:
        self.block_size = block_size
        self.next_free_block_offset = next_free_block_offset
        self.object_index: dict[int, list[ObjectBlock]] = (
            object_index if object_index is not None else {}
        )
        self._lock = threading.RLock()

    def _to_dict(self) -> dict[str, Any]:
        return {
            "block_size": self.block_size,
            "next_free_block_offset": self.next_free_block_offset,
            "object_index": {
                object_id: [
                    {"offset": block.offset, "remaining_capacity": block.remaining_capacity}
                    for block in blocks
                ]
                for object_id, blocks in self.object_index.items()
            },
        }

    @classmethod
    def _from_dict(cls, raw: Any) -> Index:
        if not isinstance(raw, dict):
            raise ValueError("index must be a map")
        objects = raw.get("object_index") or {}
        if not isinstance(objects, dict):
            raise ValueError("object_index must be a map")
        object_index = {
            int(object_id): [
                ObjectBlock(int(block["offset"]), int(block["remaining_capacity"]))
                for block in blocks or []
            ]
            for object_id, blocks in objects.items()
        }
        return cls(
            block_size=int(raw.get("block_size", 0)),
            next_free_block_offset=int(raw.get("next_free_block_offset", 0)),
            object_index=object_index,
        )

    @classmethod
    def load(cls, storage_path: str | Path, partition_id: int) -> Index:
        """Read a partition's index file."""
        path = index_file_path(storage_path, partition_id)
        payload = path.read_bytes()
        try:
            raw = msgpack.unpackb(payload, raw=False, strict_map_key=False)
            return cls._from_dict(raw)
        except (ValueError, TypeError, KeyError, msgpack.exceptions.UnpackException) as error:
            raise ValueError(f"corrupt index file {path}: {error}") from error

    def blocks(self, object_id: int) -> list[ObjectBlock] | None:
        """Return the blocks of an object, or None if it has none."""
        with self._lock:
            found = self.object_index.get(object_id)
            return None if found is None else list(found)

    def append_block(self, object_id: int, block: ObjectBlock) -> list[ObjectBlock]:
        """Add a block to an object and return all its blocks."""
        with self._lock:
            blocks = self.object_index.setdefault(object_id, [])
            blocks.append(block)
            return list(blocks)

    def last_block_capacity(self, object_id: int) -> int:
        """Return the free bytes left in an object's last block."""
        with self._lock:
            return self.object_index[object_id][-1].remaining_capacity

    def update_last_block_capacity(self, object_id: int, capacity: int) -> None:
        """Set the free bytes left in an object's last block."""
        with self._lock:
            self.object_index[object_id][-1].remaining_capacity = capacity

    def sync(self, storage_path: str | Path, partition_id: int) -> None:
        """Write the index to its file."""
        with self._lock:
            payload = msgpack.packb(self._to_dict(), use_bin_type=True)
            index_file_path(storage_path, partition_id).write_bytes(payload)

    def allocate_block(self) -> int:
        """Reserve the next free block and return its offset."""
        with self._lock:
            offset = self.next_free_block_offset
            self.next_free_block_offset += self.block_size
            return offset


class IndexPool:
    """Loaded indexes of a storage, one per partition."""

    def __init__(self) -> None:
        self._pool: dict[int, Index] = {}
        self._lock = threading.Lock()

    def get(self, partition_id: int, storage_path: str | Path) -> Index:
        """Return the partition's index, loading it on first use."""
        with self._lock:
            index = self._pool.get(partition_id)
            if index is None:
                try:
                    index = Index.load(storage_path, partition_id)
                except (OSError, ValueError):
                    logger.error(
                        "error opening index for %s partition %d", storage_path, partition_id
                    )
                    raise
                self._pool[partition_id] = index
            return index

    def close(self, storage_path: str | Path) -> None:
        """Write every loaded index back and forget them."""
        with self._lock:
            for partition_id, index in self._pool.items():
                try:
                    index.sync(storage_path, partition_id)
                except OSError as error:
                    logger.error(
                        "error closing index for %s partition %d: %s",
                        storage_path,
                        partition_id,
                        error,
                    )
            self._pool.clear()