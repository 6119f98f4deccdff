"""Region: the resident 20x20 elevation grid and the two output pipelines."""

import logging
import math
import pathlib
from typing import Iterator, List, Optional, Sequence

from .constants import CHUNK_SIZE, GRID_DIM, REGION_SIZE, SAMPLE_MARGIN, TILE_COUNT
from .features import FeatureSynthesizer
from .models import BoundingBox, PathManager, Tile, TileNeighbors, UTMCoord
from .osm import fetch_osm, read_osm
from .projection import UTMProjector
from .raster import RasterLoadError, RasterSource
from .scheduler import TileJob, run_tile_jobs

logger = logging.getLogger(__name__)


class SamplingError(ValueError):
    """A sample point does not map to any tile of the grid."""


def expected_tile_dimensions(index: int) -> tuple:
    cx, cy = index % GRID_DIM, index // GRID_DIM
    return (min(CHUNK_SIZE, REGION_SIZE - cx * CHUNK_SIZE),
            min(CHUNK_SIZE, REGION_SIZE - cy * CHUNK_SIZE))


class Region:
    """Full elevation raster held in memory as 400 immutable tiles.

    Tiles are shared read-only between worker threads; nothing here is
    mutated after construction.
    """

    def __init__(self, name: str, coord: UTMCoord, tiles: Sequence[Tile]):
        if len(tiles) != TILE_COUNT:
            raise RasterLoadError(f"expected {TILE_COUNT} tiles, got {len(tiles)}")
        for index, tile in enumerate(tiles):
            expected = expected_tile_dimensions(index)
            if (tile.width, tile.height) != expected:
                raise RasterLoadError(
                    f"tile {index} is {tile.width}x{tile.height}, "
                    f"expected {expected[0]}x{expected[1]}")
        self.name = name
        self.coord = coord
        self._tiles: List[Tile] = list(tiles)

    @classmethod
    def from_geotiff(cls, name: str, zone_number: int, path=None,
                     northern: bool = True) -> "Region":
        """Load ``input/<name>.tif`` (or *path*) into memory."""
        path = pathlib.Path(path) if path else PathManager.get_input_path(f"{name}.tif")
        with RasterSource(path) as source:
            easting, northing = source.origin
            coord = UTMCoord(zone_number=zone_number, easting=easting,
                             northing=northing, northern=northern)
            tiles = source.read_all()
        logger.info(f"Loaded region {name}: {len(tiles)} tiles, zone {zone_number}")
        return cls(name, coord, tiles)

    @property
    def tiles(self) -> List[Tile]:
        return list(self._tiles)

    @property
    def output_dir(self) -> pathlib.Path:
        return PathManager.get_output_dir(self.name)

    def ensure_output_dir(self) -> pathlib.Path:
        out = self.output_dir
        out.mkdir(parents=True, exist_ok=True)
        return out

    # ── Sampling ─────────────────────────────────────────────────────────

    def sample(self, x: float, y: float) -> float:
        """Elevation at local planar (x, y), clamped just inside the raster."""
        x = min(max(x, SAMPLE_MARGIN), REGION_SIZE - SAMPLE_MARGIN)
        y = min(max(y, SAMPLE_MARGIN), REGION_SIZE - SAMPLE_MARGIN)
        if not (math.isfinite(x) and math.isfinite(y)):
            raise SamplingError(f"bad coord ({x}, {y})")

        cx = math.floor(x / CHUNK_SIZE)
        cy = math.floor(y / CHUNK_SIZE)
        if cx < 0 or cy < 0 or cx >= GRID_DIM or cy >= GRID_DIM:
            raise SamplingError(f"bad coord ({x}, {y})")

        tile = self._tiles[cy * GRID_DIM + cx]
        return tile.get(int(x % CHUNK_SIZE), int(y % CHUNK_SIZE))

    def neighbors(self, index: int) -> TileNeighbors:
        tile = self._tiles[index]
        right = self._tiles[index + 1] if tile.is_full_width else None
        below = self._tiles[index + GRID_DIM] if tile.is_full_height else None
        corner = (self._tiles[index + GRID_DIM + 1]
                  if tile.is_full_width and tile.is_full_height else None)
        return TileNeighbors(right=right, below=below, corner=corner)

    def tile_jobs(self) -> Iterator[TileJob]:
        for index, tile in enumerate(self._tiles):
            yield index, tile, self.neighbors(index)

    # ── Georeferencing ───────────────────────────────────────────────────

    def projector(self) -> UTMProjector:
        return UTMProjector(self.coord)

    def bounds(self) -> BoundingBox:
        projector = self.projector()
        north, west = projector.to_latlon(0.0, 0.0)
        south, east = projector.to_latlon(REGION_SIZE, REGION_SIZE)
        return BoundingBox(north=north, south=south, east=east, west=west)

    # ── Pipelines ────────────────────────────────────────────────────────

    def process_elevation(self, workers: Optional[int] = None) -> List[int]:
        out = self.ensure_output_dir()
        return run_tile_jobs(self.tile_jobs(), out, workers=workers)

    def process_map(self, osm_path=None) -> pathlib.Path:
        osm_path = pathlib.Path(osm_path) if osm_path else PathManager.get_input_path(f"{self.name}.osm")
        if not osm_path.exists():
            fetch_osm(self.bounds(), osm_path)

        synthesizer = FeatureSynthesizer(self.sample, self.projector())
        buffer = synthesizer.synthesize(read_osm(osm_path))
        path = buffer.save(self.ensure_output_dir() / "map.bin.gz")
        logger.info("> map done")
        return path
