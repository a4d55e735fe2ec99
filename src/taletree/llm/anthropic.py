from __future__ import annotations

import logging
from typing import Any, Dict, List, TypeVar

from anthropic import AsyncAnthropic
from pydantic import BaseModel

from taletree.llm.base import JSON_ONLY_SUFFIX, LLMProvider
from taletree.parsing.output_parser import OutputParser

T = TypeVar("T", bound=BaseModel)
log = logging.getLogger(__name__)

_TOOL_NAME = "structured_output"


class AnthropicProvider(LLMProvider):
    """Messages-API provider.

    There is no native JSON mode: turn generation prefills an opening brace,
    and structured setup calls go through a forced tool call instead.
    """

    name = "anthropic"

    TURN_MODEL = "claude-sonnet-4-5-20250929"
    SETUP_MODEL = "claude-haiku-4-5-20251001"

    MODELS = [
        "claude-sonnet-4-5-20250929",
        "claude-haiku-4-5-20251001",
    ]

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        temperature: float = 0.9,
        client: AsyncAnthropic | None = None,
    ):
        super().__init__(model=model or self.TURN_MODEL, temperature=temperature)
        self._client = client or AsyncAnthropic(api_key=api_key)

    def _temperature(self, override: float | None) -> float:
        # The Messages API caps temperature at 1.0
        return min(super()._temperature(override), 1.0)

    async def _create(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        temperature: float | None,
        max_tokens: int,
        **extra: Any,
    ) -> Any:
        try:
            return await self._client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=self._temperature(temperature),
                system=system,
                messages=messages,
                **extra,
            )
        except Exception as exc:
            log.error("Anthropic API error: %s", exc)
            raise

    @staticmethod
    def _text(response: Any) -> str:
        return "".join(b.text for b in response.content if getattr(b, "type", "") == "text")

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> str:
        log.info("Anthropic complete: model=%s, json_mode=%s, prompt_len=%d",
                 self.model, json_mode, len(user_prompt))
        messages: List[Dict[str, Any]] = [{"role": "user", "content": user_prompt}]
        if json_mode:
            system_prompt += JSON_ONLY_SUFFIX
            messages.append({"role": "assistant", "content": "{"})

        response = await self._create(system_prompt, messages, temperature, max_tokens)
        text = self._text(response)
        if json_mode:
            text = "{" + text
        log.info("Anthropic response: %d chars", len(text))
        return text

    async def complete_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        response_model: type[T],
        *,
        temperature: float | None = None,
        max_tokens: int = 4096,
    ) -> T:
        log.info("Anthropic structured: model=%s, target=%s",
                 self.model, response_model.__name__)
        response = await self._create(
            system_prompt,
            [{"role": "user", "content": user_prompt}],
            temperature,
            max_tokens,
            tools=[{
                "name": _TOOL_NAME,
                "description": f"Return the result as a {response_model.__name__} object.",
                "input_schema": response_model.model_json_schema(),
            }],
            tool_choice={"type": "tool", "name": _TOOL_NAME},
        )
        for block in response.content:
            if getattr(block, "type", "") == "tool_use" and block.name == _TOOL_NAME:
                return response_model.model_validate(block.input)

        log.warning("Anthropic: no tool_use block, parsing the text reply instead")
        return OutputParser.parse(self._text(response), response_model)
