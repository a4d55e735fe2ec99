from __future__ import annotations

import logging
from typing import Any, Dict

from openai import AsyncOpenAI

from taletree.llm.base import LLMProvider

log = logging.getLogger(__name__)

# Reasoning models only accept the default temperature
_FIXED_TEMPERATURE_PREFIXES = ("gpt-5", "o1", "o3", "o4")


class OpenAIProvider(LLMProvider):
    """Chat-completions provider.  Also the base for OpenAI-compatible APIs."""

    name = "openai"

    TURN_MODEL = "gpt-4.1"
    SETUP_MODEL = "gpt-4.1-mini"

    MODELS = [
        "gpt-4.1",
        "gpt-4.1-mini",
        "gpt-4o",
        "gpt-4o-mini",
        "gpt-5",
        "gpt-5-mini",
    ]

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        temperature: float = 0.9,
        client: Any = None,
    ):
        super().__init__(model=model or self.TURN_MODEL, temperature=temperature)
        self._client = client or self._make_client(api_key)

    def _make_client(self, api_key: str) -> Any:
        return AsyncOpenAI(api_key=api_key)

    def _sampling_kwargs(self, temperature: float | None, max_tokens: int) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"max_completion_tokens": max_tokens}
        if not self.model.startswith(_FIXED_TEMPERATURE_PREFIXES):
            kwargs["temperature"] = self._temperature(temperature)
        return kwargs

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> str:
        log.info("%s complete: model=%s, json_mode=%s, prompt_len=%d",
                 self.name, self.model, json_mode, len(user_prompt))
        kwargs = self._sampling_kwargs(temperature, max_tokens)
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                **kwargs,
            )
        except Exception as exc:
            log.error("%s API error: %s", self.name, exc)
            raise

        text = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        if usage is not None:
            log.info("%s response: %d chars, tokens prompt=%s completion=%s",
                     self.name, len(text), usage.prompt_tokens, usage.completion_tokens)
        else:
            log.info("%s response: %d chars", self.name, len(text))
        return text
