"""Request-scoped LRU of decoded raster chunks for server mode."""

import logging
import math
from collections import OrderedDict
from typing import Optional

from .constants import CACHE_CAPACITY, SAMPLE_MARGIN
from .models import Tile

logger = logging.getLogger(__name__)


class ElevationCache:
    """Keep at most *capacity* chunks from *source*, evicting the least recently used.

    *source* needs ``size``, ``chunk_size``, ``grid`` and ``read_chunk(index)``,
    as provided by :class:`terrainbaker.raster.RasterSource`. Not thread-safe;
    build one per request.
    """

    def __init__(self, source, capacity: int = CACHE_CAPACITY):
        if capacity < 1:
            raise ValueError("cache capacity must be at least 1")
        self.source = source
        self.capacity = capacity
        self.hits = 0
        self.misses = 0
        self._chunks: "OrderedDict[int, Tile]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._chunks)

    def __contains__(self, index: int) -> bool:
        return index in self._chunks

    def cached_indices(self):
        """Chunk indices from least to most recently used."""
        return list(self._chunks)

    def chunk(self, index: int) -> Tile:
        tile = self._chunks.get(index)
        if tile is not None:
            self._chunks.move_to_end(index)
            self.hits += 1
            return tile

        tile = self.source.read_chunk(index)
        self.misses += 1
        self._chunks[index] = tile
        if len(self._chunks) > self.capacity:
            evicted, _ = self._chunks.popitem(last=False)
            logger.debug(f"Evicted chunk {evicted}")
        return tile

    def sample(self, x: float, y: float) -> Optional[float]:
        """Elevation at (x, y), or None when the point lies outside the raster."""
        size = self.source.size
        if not (math.isfinite(x) and math.isfinite(y)):
            return None
        if x < 0 or y < 0 or x >= size or y >= size:
            return None

        x = min(max(x, SAMPLE_MARGIN), size - SAMPLE_MARGIN)
        y = min(max(y, SAMPLE_MARGIN), size - SAMPLE_MARGIN)

        chunk_size = self.source.chunk_size
        cx = int(x // chunk_size)
        cy = int(y // chunk_size)
        tile = self.chunk(cy * self.source.grid + cx)
        return tile.get(int(x % chunk_size), int(y % chunk_size))
