from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel
from fastapi import APIRouter, HTTPException

from taletree.api import dependencies as deps
from taletree.llm.registry import list_providers

log = logging.getLogger(__name__)
router = APIRouter(prefix="/api/providers", tags=["providers"])


class ProviderChoice(BaseModel):
    name: str  # "openai" | "anthropic" | "groq"
    model: Optional[str] = None  # turn-generation model; None = tier default


def _snapshot() -> dict:
    return {
        "active": deps.get_active_provider(),
        "active_model": deps.get_active_model(),
        "providers": list_providers(),
    }


@router.get("")
def get_providers():
    """Providers, their models and which one generates turns right now."""
    return _snapshot()


@router.get("/active")
def get_active():
    return {"active": deps.get_active_provider(), "active_model": deps.get_active_model()}


@router.put("/active")
def switch_provider(body: ProviderChoice):
    """Switch the provider used for new turns and setup calls.

    Generations already in flight finish on the provider they started with.
    """
    info = list_providers()
    entry = info.get(body.name)
    if entry is None:
        raise HTTPException(400, f"Unknown provider '{body.name}'. Choose from: {list(info)}")
    if not entry["configured"]:
        raise HTTPException(400, f"Provider '{body.name}' has no API key configured.")
    if body.model and body.model not in entry["models"]:
        raise HTTPException(
            400,
            f"Model '{body.model}' not available for '{body.name}'. "
            f"Choose from: {entry['models']}",
        )

    deps.set_active_provider(body.name)
    deps.set_active_model(body.model)
    return _snapshot()
