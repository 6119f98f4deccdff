import logging
import re
from pathlib import Path as FilePath
from typing import List

from fastapi import APIRouter, HTTPException, Path
from fastapi.responses import FileResponse

from backend import config
from backend.models import TileInfo
from terrainbaker.constants import TILE_COUNT
from terrainbaker.scheduler import tile_filename

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/regions", tags=["assets"])

REGION_PATTERN = r"^[A-Za-z0-9_\-]+$"
_TILE_RE = re.compile(r"^tile(\d+)\.bin\.gz$")


def _serve(path: FilePath) -> FileResponse:
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Asset not found")
    return FileResponse(path=str(path), media_type="application/gzip",
                        filename=path.name)


@router.get("/{name}/tiles", response_model=List[TileInfo])
async def list_tiles(name: str = Path(..., pattern=REGION_PATTERN)):
    """Return every baked tile of a region, ordered by tile index."""
    region_dir: FilePath = config.OUTPUT_DIR / name
    if not region_dir.is_dir():
        raise HTTPException(status_code=404, detail=f"Region {name} has no output")

    tiles: list[TileInfo] = []
    for path in region_dir.glob("tile*.bin.gz"):
        match = _TILE_RE.match(path.name)
        if match is None:
            continue
        tiles.append(TileInfo(index=int(match.group(1)), filename=path.name,
                              size_bytes=path.stat().st_size))
    return sorted(tiles, key=lambda t: t.index)


@router.get("/{name}/tiles/{index}")
async def get_tile(index: int, name: str = Path(..., pattern=REGION_PATTERN)):
    """Serve one gzip-compressed tile mesh."""
    if not 0 <= index < TILE_COUNT:
        raise HTTPException(status_code=404, detail="Tile index out of range")
    return _serve(config.OUTPUT_DIR / name / tile_filename(index))


@router.get("/{name}/map")
async def get_map(name: str = Path(..., pattern=REGION_PATTERN)):
    """Serve the gzip-compressed feature file."""
    return _serve(config.OUTPUT_DIR / name / "map.bin.gz")
