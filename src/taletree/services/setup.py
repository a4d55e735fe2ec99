from __future__ import annotations

import json
import logging
from typing import Any, Dict

from taletree.engine.errors import GeneratorFailure
from taletree.llm.base import LLMProvider
from taletree.models.session import SessionParams
from taletree.models.setup import Questionnaire, Synopsis
from taletree.prompts.loader import PromptLoader

log = logging.getLogger(__name__)


class SetupService:
    """Story setup before the first turn.

    Pipeline:
    1. background  →  QUESTIONNAIRE_GENERATOR  →  Questionnaire
    2. background + answers  →  SYNOPSIS_GENERATOR  →  Synopsis
    3. Synopsis  →  SessionParams for ``StoryService.create``
    """

    def __init__(self, llm: LLMProvider, prompts: PromptLoader | None = None):
        self._llm = llm
        self._prompts = prompts or PromptLoader()

    async def generate_questions(self, background: str) -> Questionnaire:
        """Follow-up questions tailored to the player's story concept."""
        system_prompt = self._prompts.render("setup", "QUESTIONNAIRE_GENERATOR")
        user_prompt = f"Story concept:\n{background.strip()}"
        try:
            questionnaire = await self._llm.complete_structured(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                response_model=Questionnaire,
                temperature=0.7,
            )
        except Exception as exc:
            raise GeneratorFailure(f"questionnaire generation failed: {exc}") from exc
        log.info("Generated %d setup question(s)", len(questionnaire.questions))
        return questionnaire

    async def generate_synopsis(
        self, background: str, answers: Dict[str, Any] | None = None
    ) -> Synopsis:
        """Full story foundation from the concept and questionnaire answers."""
        system_prompt = self._prompts.render("setup", "SYNOPSIS_GENERATOR")
        user_prompt = (
            f"Story concept:\n{background.strip()}\n\n"
            f"Player answers:\n{json.dumps(answers or {}, ensure_ascii=False, indent=2)}"
        )
        try:
            synopsis = await self._llm.complete_structured(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                response_model=Synopsis,
            )
        except Exception as exc:
            raise GeneratorFailure(f"synopsis generation failed: {exc}") from exc
        log.info("Generated synopsis '%s'", synopsis.title)
        return synopsis

    @staticmethod
    def session_params(synopsis: Synopsis) -> SessionParams:
        return SessionParams(
            title=synopsis.title,
            synopsis=synopsis.system_synopsis,
            opening_text=synopsis.opening_text,
            location=synopsis.starting_location,
            world_schema=synopsis.world_schema,
        )
