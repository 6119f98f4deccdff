"""Configuration constants, paths, and logging setup."""

import os
import math
import pathlib
import logging

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Configure base paths
BASE_DIR = pathlib.Path(__file__).parent.parent.absolute()
INPUT_DIR = pathlib.Path(os.environ.get("TERRAINBAKER_INPUT_DIR", BASE_DIR / "input"))
OUTPUT_DIR = pathlib.Path(os.environ.get("TERRAINBAKER_OUTPUT_DIR", BASE_DIR / "output"))

# ── Raster grid ──────────────────────────────────────────────────────────
REGION_SIZE = 10012          # samples per side of the source raster
CHUNK_SIZE = 512             # samples per side of a full tile
GRID_DIM = 20                # tiles per side
TILE_COUNT = GRID_DIM * GRID_DIM
SAMPLE_MARGIN = 0.01         # sample() never reads exactly at the raster edge

# ── Terrain meshing ──────────────────────────────────────────────────────
DECIMATION_MAX_ERROR = 1.0
DECIMATION_MIN_FACES = 10_000
INDEX_LIMIT = 65_536         # 16-bit vertex/face indices
QUANT_MAX = 65_535
NORMAL_SCALE = 127.0

# ── Buildings ────────────────────────────────────────────────────────────
LEVEL_HEIGHT = 3.0           # metres per building:levels
DEFAULT_BUILDING_HEIGHT = 3.0
TOWER_MIN_HEIGHT = 10.0
COMMERCIAL_MIN_AREA = 500.0  # m², bounding-box area
COMMERCIAL_MIN_HEIGHT = 6.0

# ── Roads ────────────────────────────────────────────────────────────────
LANE_HALF_WIDTH = 1.5        # half-width contributed by each lane
DEFAULT_LANES = 2.0
PATH_HALF_WIDTH = 1.0
MAX_MITER_ANGLE = math.pi / 2

ROAD_TAGS = {
    'footpath': ['footway', 'path'],
    'bikepath': ['cycleway'],
    'skip_highway': ['steps'],
    'skip_structure': ['tunnel', 'bridge'],
}

# ── Server mode ──────────────────────────────────────────────────────────
CACHE_CAPACITY = int(os.environ.get("TERRAINBAKER_CACHE_CAPACITY", "11"))

# ── Workers ──────────────────────────────────────────────────────────────
# Unset means one worker per CPU
_workers = os.environ.get("TERRAINBAKER_WORKERS", "").strip()
WORKER_COUNT = int(_workers) if _workers else None

# ── Overpass ─────────────────────────────────────────────────────────────
OVERPASS_URL = os.environ.get("TERRAINBAKER_OVERPASS_URL",
                              "https://overpass-api.de/api/interpreter")
OVERPASS_TIMEOUT = 600

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
