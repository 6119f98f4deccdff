from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.routers import assets, elevation

app = FastAPI(
    title="TerrainBaker API",
    description="Elevation queries and baked terrain/map assets",
    version="0.1.0",
)

# ---------------------------------------------------------------------------
# CORS -- allow the renderer's dev server
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(elevation.router)
app.include_router(assets.router)


@app.get("/")
async def root():
    return {"status": "ok", "service": "TerrainBaker API"}
