"""TaleTree: branching interactive-fiction sessions over HTTP.

Run with:  uvicorn taletree.main:app --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

# Configure logging for all taletree modules
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

from fastapi import FastAPI

from taletree.api.providers import router as providers_router
from taletree.api.seeds import router as seeds_router
from taletree.api.sessions import router as sessions_router
from taletree.api.setup import router as setup_router
from taletree.db.database import init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    await init_db()
    yield


app = FastAPI(
    title="TaleTree",
    description=(
        "Branching narrative engine: every choice is a node in a story graph, "
        "earlier choices can be revisited and untaken branches are generated "
        "ahead of time."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

# ── API routers ──────────────────────────────────────────────────────────
app.include_router(seeds_router)
app.include_router(setup_router)
app.include_router(sessions_router)
app.include_router(providers_router)
