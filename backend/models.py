from pydantic import BaseModel, Field
from typing import List, Optional, Tuple


class ElevationResponse(BaseModel):
    x: float
    y: float
    elevation: Optional[float] = None


class BatchElevationRequest(BaseModel):
    points: List[Tuple[float, float]] = Field(..., min_length=1)


class BatchElevationResponse(BaseModel):
    elevations: List[Optional[float]]
    chunks_loaded: int
    cache_hits: int


class TileInfo(BaseModel):
    index: int
    filename: str
    size_bytes: int
