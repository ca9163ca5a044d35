from fastapi import APIRouter

from mint_engine.api.v1.health import router as health_router
from mint_engine.api.v1.mint import router as mint_router
from mint_engine.api.v1.collections import router as collections_router
from mint_engine.api.v1.phases import router as phases_router


v1_router = APIRouter()

# ------------------------------------------------------------------
# SYSTEM / CORE
# ------------------------------------------------------------------
v1_router.include_router(health_router, tags=["health"])

# ------------------------------------------------------------------
# MINT SAGA
# ------------------------------------------------------------------
v1_router.include_router(mint_router, tags=["mint"])

# ------------------------------------------------------------------
# READ MODELS
# ------------------------------------------------------------------
v1_router.include_router(collections_router, tags=["collections"])
v1_router.include_router(phases_router, tags=["phases"])
