"""Tests for the little-endian byte sink."""

import gzip

import numpy as np
import pytest

from terrainbaker.buffer import Buffer, BufferReader, load_bytes


def test_scalar_layout():
    buf = Buffer()
    buf.write_byte(7)
    buf.write_byte(-1)
    buf.write_short(0x1234)
    buf.write_float(1.5)
    assert buf.bytes == b'\x07\xff\x34\x12' + b'\x00\x00\xc0\x3f'
    assert len(buf) == 8


def test_array_bytes_are_appended_verbatim():
    buf = Buffer()
    buf.write_array(np.array([1, 2, 3], dtype='<u2'))
    assert buf.bytes == b'\x01\x00\x02\x00\x03\x00'


def test_reader_walks_and_stops():
    buf = Buffer()
    buf.write_short(513)
    buf.write_float(-2.25)
    buf.write_byte(200)

    reader = BufferReader(buf.bytes)
    assert reader.read_short() == 513
    assert reader.read_float() == -2.25
    assert reader.read_byte() == 200
    assert reader.at_end()
    with pytest.raises(EOFError):
        reader.read_short()


def test_save_compresses(tmp_path):
    buf = Buffer()
    buf.write_array(np.zeros(1000, dtype=np.uint8))
    path = buf.save(tmp_path / "out.bin.gz")

    raw = path.read_bytes()
    assert len(raw) < 1000
    assert gzip.decompress(raw) == buf.bytes
    assert load_bytes(path) == buf.bytes


def test_load_bytes_passes_plain_files_through(tmp_path):
    path = tmp_path / "plain.bin"
    path.write_bytes(b'\x00\x01\x02')
    assert load_bytes(path) == b'\x00\x01\x02'
