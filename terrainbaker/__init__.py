"""TerrainBaker: render-ready terrain tiles and map features from survey data."""

from terrainbaker.region import Region
from terrainbaker.models import BoundingBox, Tile, TileNeighbors
from terrainbaker.cache import ElevationCache
