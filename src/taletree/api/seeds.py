from __future__ import annotations

from fastapi import APIRouter, Query

from taletree.services.seeds import random_seeds

router = APIRouter(prefix="/api/seeds", tags=["seeds"])


@router.get("")
async def list_seeds(count: int = Query(default=3, ge=1, le=20)):
    """Random ready-made story hooks for the start screen."""
    return [seed.model_dump() for seed in random_seeds(count)]
