import pytest

from reportdb.diskio import disk_write
from reportdb.filemap import FileMapping, data_file_path
from reportdb.index import Index

BLOCK = 16
FILE_SIZE = 4096


@pytest.fixture
def mapping(tmp_path):
    data_file_path(tmp_path, 0).write_bytes(b"\0" * FILE_SIZE)
    file_mapping = FileMapping.open(tmp_path, 0, FILE_SIZE)
    yield file_mapping
    file_mapping.close()


def read(mapping, index, key):
    return mapping.read_blocks(index.blocks(key), index.block_size)


def test_small_write_uses_one_block(mapping):
    index = Index(BLOCK)
    payload = b"abc"
    disk_write(1, payload, mapping, index)
    blocks = index.blocks(1)
    assert len(blocks) == 1
    assert blocks[0].remaining_capacity == BLOCK - len(payload)
    assert read(mapping, index, 1) == payload


def test_exact_fill_allocates_fresh_block(mapping):
    index = Index(BLOCK)
    payload = b"x" * BLOCK
    disk_write(1, payload, mapping, index)
    blocks = index.blocks(1)
    assert len(blocks) == 2
    assert blocks[0].remaining_capacity == 0
    assert blocks[1].remaining_capacity == BLOCK
    assert read(mapping, index, 1) == payload


def test_large_write_spans_blocks(mapping):
    index = Index(BLOCK)
    payload = bytes(range(50))
    disk_write(2, payload, mapping, index)
    assert read(mapping, index, 2) == payload
    assert sum(BLOCK - block.remaining_capacity for block in index.blocks(2)) == len(payload)


def test_appends_continue_last_block(mapping):
    index = Index(BLOCK)
    disk_write(1, b"first-", mapping, index)
    disk_write(1, b"second-part", mapping, index)
    disk_write(1, b"third", mapping, index)
    assert read(mapping, index, 1) == b"first-second-partthird"


def test_interleaved_objects_stay_separate(mapping):
    index = Index(BLOCK)
    disk_write(1, b"one" * 7, mapping, index)
    disk_write(2, b"two" * 9, mapping, index)
    disk_write(1, b"more", mapping, index)
    assert read(mapping, index, 1) == b"one" * 7 + b"more"
    assert read(mapping, index, 2) == b"two" * 9
    offsets = [block.offset for key in (1, 2) for block in index.blocks(key)]
    assert len(offsets) == len(set(offsets))


def test_write_past_file_end_grows(tmp_path):
    data_file_path(tmp_path, 0).write_bytes(b"\0" * BLOCK)
    file_mapping = FileMapping.open(tmp_path, 0, BLOCK)
    index = Index(BLOCK)
    payload = b"z" * (BLOCK * 3 + 1)
    disk_write(1, payload, file_mapping, index)
    assert read(file_mapping, index, 1) == payload
    file_mapping.close()