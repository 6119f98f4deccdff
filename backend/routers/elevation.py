import logging

from fastapi import APIRouter, HTTPException, Path, Query

from backend import config
from backend.models import BatchElevationRequest, BatchElevationResponse, ElevationResponse
from terrainbaker.cache import ElevationCache
from terrainbaker.raster import RasterLoadError, RasterSource

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/regions", tags=["elevation"])

REGION_PATTERN = r"^[A-Za-z0-9_\-]+$"


def open_raster(name: str) -> RasterSource:
    """Open the region's GeoTIFF; 404 when it is missing or unreadable."""
    path = config.INPUT_DIR / f"{name}.tif"
    if not path.is_file():
        raise HTTPException(status_code=404, detail=f"No elevation raster for region {name}")
    try:
        return RasterSource(path)
    except RasterLoadError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.get("/{name}/elevation", response_model=ElevationResponse)
def get_elevation(name: str = Path(..., pattern=REGION_PATTERN),
                  x: float = Query(...), y: float = Query(...)):
    """Sample one point in region-local coordinates.

    Uses ``def`` so FastAPI runs the blocking raster read in its threadpool.
    Every request builds its own chunk cache.
    """
    source = open_raster(name)
    try:
        cache = ElevationCache(source, capacity=config.CACHE_CAPACITY)
        elevation = cache.sample(x, y)
    finally:
        source.close()
    return ElevationResponse(x=x, y=y, elevation=elevation)


@router.post("/{name}/elevation", response_model=BatchElevationResponse)
def sample_elevations(request: BatchElevationRequest,
                      name: str = Path(..., pattern=REGION_PATTERN)):
    """Sample many points; points outside the raster come back as ``null``."""
    source = open_raster(name)
    try:
        cache = ElevationCache(source, capacity=config.CACHE_CAPACITY)
        elevations = [cache.sample(x, y) for x, y in request.points]
    finally:
        source.close()
    logger.info(f"Sampled {len(elevations)} points for {name} "
                f"({cache.misses} chunk reads, {cache.hits} hits)")
    return BatchElevationResponse(elevations=elevations,
                                  chunks_loaded=cache.misses,
                                  cache_hits=cache.hits)
