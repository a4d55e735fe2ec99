"""Shared FastAPI dependencies: service singletons and provider access."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import HTTPException

from taletree.config import settings
from taletree.db.database import async_session
from taletree.engine.errors import GeneratorFailure
from taletree.engine.generator import LLMTurnGenerator
from taletree.engine.orchestrator import TurnOrchestrator
from taletree.llm.base import LLMProvider
from taletree.llm.registry import get_provider
from taletree.models.session import Option
from taletree.models.turn import TurnContext, TurnOutput
from taletree.prompts.loader import PromptLoader
from taletree.services.setup import SetupService
from taletree.services.story import StoryService
from taletree.storage.repository import SqlSessionRepository

log = logging.getLogger(__name__)

# --- Singletons ---

_prompts = PromptLoader()

# Provider, model & tier can be switched at runtime via the /providers endpoint
_active_provider: str = settings.default_provider
_active_model: Optional[str] = None  # None = use tier default


def set_active_provider(name: str) -> None:
    global _active_provider
    _active_provider = name
    log.info("Active provider set to: %s", name)


def get_active_provider() -> str:
    return _active_provider


def set_active_model(model: Optional[str]) -> None:
    global _active_model
    _active_model = model
    log.info("Active model set to: %s", model or "(tier default)")


def get_active_model() -> Optional[str]:
    return _active_model


def _turn_llm() -> LLMProvider:
    return get_provider(_active_provider, tier="turn", model=_active_model)


def _setup_llm() -> LLMProvider:
    # The explicit model override only applies to turn generation
    return get_provider(_active_provider, tier="setup")


class _ActiveProviderGenerator:
    """Turn generator that resolves the active provider on every call.

    The story service outlives provider switches, so it cannot hold on to
    one provider instance.
    """

    async def generate(
        self, context: TurnContext, option: Optional[Option]
    ) -> TurnOutput:
        try:
            llm = _turn_llm()
        except ValueError as exc:
            raise GeneratorFailure(str(exc)) from exc
        return await LLMTurnGenerator(llm, _prompts).generate(context, option)


def get_setup_service() -> SetupService:
    try:
        return SetupService(_setup_llm(), _prompts)
    except ValueError as exc:
        raise HTTPException(502, {"kind": GeneratorFailure.kind, "message": str(exc)})


# --- Story service (singleton, holds live sessions and pending generations) ---

_story_service: Optional[StoryService] = None


def get_story_service() -> StoryService:
    global _story_service
    if _story_service is None:
        _story_service = StoryService(
            orchestrator=TurnOrchestrator(_ActiveProviderGenerator()),
            repository=SqlSessionRepository(async_session),
        )
    return _story_service
