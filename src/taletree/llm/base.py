"""Provider-neutral LLM interface.

Two model tiers are used: ``turn`` writes story turns and wants a capable,
creative model; ``setup`` fills questionnaires and synopses and can use a
cheaper, steadier one.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import ClassVar, List, Literal, TypeVar

from pydantic import BaseModel

from taletree.parsing.output_parser import OutputParser

T = TypeVar("T", bound=BaseModel)
Tier = Literal["turn", "setup"]

log = logging.getLogger(__name__)

JSON_ONLY_SUFFIX = (
    "\n\nRespond with a single JSON object only. Do not wrap it in prose."
)


class LLMProvider(ABC):
    """One configured model of one vendor."""

    name: ClassVar[str] = "base"
    TURN_MODEL: ClassVar[str] = ""
    SETUP_MODEL: ClassVar[str] = ""
    MODELS: ClassVar[List[str]] = []

    def __init__(self, model: str, temperature: float = 0.9):
        self.model = model
        self.temperature = temperature

    @classmethod
    def model_for(cls, tier: Tier) -> str:
        return cls.TURN_MODEL if tier == "turn" else cls.SETUP_MODEL

    def _temperature(self, override: float | None) -> float:
        return override if override is not None else self.temperature

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> str:
        """Return a plain-text completion.

        With *json_mode* the provider must steer the model toward a bare JSON
        object, using native response formats where the API has them.
        """

    async def complete_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        response_model: type[T],
        *,
        temperature: float | None = None,
        max_tokens: int = 4096,
    ) -> T:
        """Ask for JSON matching *response_model*'s schema and validate it.

        Raises ``ValueError`` when the reply cannot be parsed into the model.
        """
        log.info("%s structured: model=%s, target=%s",
                 self.name, self.model, response_model.__name__)
        raw = await self.complete(
            f"{system_prompt}\n\n{OutputParser.format_instructions(response_model)}",
            user_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=True,
        )
        try:
            return OutputParser.parse(raw, response_model)
        except ValueError as exc:
            log.error("%s structured parse failed: %s - raw[:300]=%s",
                      self.name, exc, raw[:300])
            raise
