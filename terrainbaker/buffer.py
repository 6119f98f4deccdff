"""Little-endian binary sink shared by every output, and its reader."""

import gzip
import logging
import pathlib
import struct

import numpy as np

logger = logging.getLogger(__name__)

_SHORT = struct.Struct('<H')
_FLOAT = struct.Struct('<f')


class Buffer:
    """Append-only byte sequence with typed little-endian writes."""

    def __init__(self):
        self._bytes = bytearray()

    def __len__(self) -> int:
        return len(self._bytes)

    @property
    def bytes(self) -> bytes:
        return bytes(self._bytes)

    def write_byte(self, x: int) -> None:
        """Write one byte; negative values are stored as two's complement i8."""
        self._bytes.append(x & 0xFF)

    def write_short(self, x: int) -> None:
        self._bytes += _SHORT.pack(x)

    def write_float(self, x: float) -> None:
        self._bytes += _FLOAT.pack(x)

    def write_array(self, arr: np.ndarray) -> None:
        """Append the raw bytes of an array whose dtype already fixes the layout."""
        self._bytes += np.ascontiguousarray(arr).tobytes()

    def save(self, path) -> pathlib.Path:
        """Write the gzip-compressed contents to *path*."""
        path = pathlib.Path(path)
        data = gzip.compress(bytes(self._bytes))
        path.write_bytes(data)
        logger.debug(f"Wrote {path.name}: {len(self._bytes)} bytes "
                     f"({len(data)} compressed)")
        return path


class BufferReader:
    """Sequential reader over bytes produced by :class:`Buffer`."""

    def __init__(self, data: bytes):
        self._data = memoryview(bytes(data))
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def at_end(self) -> bool:
        return self._pos >= len(self._data)

    def _take(self, n: int) -> memoryview:
        if self._pos + n > len(self._data):
            raise EOFError(f"need {n} bytes at offset {self._pos}, "
                           f"only {self.remaining} left")
        chunk = self._data[self._pos:self._pos + n]
        self._pos += n
        return chunk

    def read_byte(self) -> int:
        return self._take(1)[0]

    def read_short(self) -> int:
        return _SHORT.unpack(self._take(2))[0]

    def read_float(self) -> float:
        return _FLOAT.unpack(self._take(4))[0]

    def read_array(self, dtype, count: int) -> np.ndarray:
        dtype = np.dtype(dtype)
        return np.frombuffer(self._take(dtype.itemsize * count), dtype=dtype, count=count)


def load_bytes(path) -> bytes:
    """Read a saved asset, transparently decompressing gzip files."""
    raw = pathlib.Path(path).read_bytes()
    if raw[:2] == b'\x1f\x8b':
        return gzip.decompress(raw)
    return raw
