from __future__ import annotations

from typing import Any, Dict

from groq import AsyncGroq

from taletree.llm.openai import OpenAIProvider


class GroqProvider(OpenAIProvider):
    """Groq-hosted open models over Groq's OpenAI-compatible chat API."""

    name = "groq"

    TURN_MODEL = "llama-3.3-70b-versatile"
    SETUP_MODEL = "llama-3.1-8b-instant"

    MODELS = [
        "llama-3.3-70b-versatile",
        "llama-3.1-8b-instant",
        "openai/gpt-oss-120b",
    ]

    def _make_client(self, api_key: str) -> Any:
        return AsyncGroq(api_key=api_key)

    def _sampling_kwargs(self, temperature: float | None, max_tokens: int) -> Dict[str, Any]:
        return {"temperature": self._temperature(temperature), "max_tokens": max_tokens}
