"""Appending an object's bytes to its chain of blocks."""

from __future__ import annotations

from reportdb.filemap import FileMapping
from reportdb.index import Index, ObjectBlock


def _new_block(key: int, index: Index) -> list[ObjectBlock]:
    return index.append_block(key, ObjectBlock(index.allocate_block(), index.block_size))


def disk_write(key: int, data: bytes, file_mapping: FileMapping, index: Index) -> None:
    """Append ``data`` to object ``key``, allocating blocks as they fill up.

    A block that is filled exactly is followed at once by a fresh one, so the
    last block of an object always has room.
    """
    remaining_data = memoryview(bytes(data))
    blocks = index.blocks(key)
    if blocks:
        remaining = blocks[-1].remaining_capacity
    else:
        blocks = _new_block(key, index)
        remaining = index.block_size

    while remaining_data:
        writable = min(len(remaining_data), remaining)
        offset = blocks[-1].offset + index.block_size - remaining
        file_mapping.write_at(remaining_data[:writable], offset)
        index.update_last_block_capacity(key, remaining - writable)
        remaining_data = remaining_data[writable:]

        if remaining_data:
            blocks = _new_block(key, index)
            remaining = index.block_size
        elif writable == remaining:
            blocks = _new_block(key, index)