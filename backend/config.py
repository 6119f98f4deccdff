from terrainbaker.constants import CACHE_CAPACITY, INPUT_DIR, OUTPUT_DIR

__all__ = ["INPUT_DIR", "OUTPUT_DIR", "CACHE_CAPACITY"]
