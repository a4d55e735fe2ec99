from __future__ import annotations

import logging
from typing import Dict, Tuple, Type

from taletree.config import Settings, settings as default_settings
from taletree.llm.anthropic import AnthropicProvider
from taletree.llm.base import LLMProvider, Tier
from taletree.llm.groq import GroqProvider
from taletree.llm.openai import OpenAIProvider

log = logging.getLogger(__name__)

# provider name -> (class, settings attribute holding its API key)
_PROVIDERS: Dict[str, Tuple[Type[LLMProvider], str]] = {
    "openai": (OpenAIProvider, "openai_api_key"),
    "anthropic": (AnthropicProvider, "anthropic_api_key"),
    "groq": (GroqProvider, "groq_api_key"),
}


def provider_names() -> list[str]:
    return list(_PROVIDERS)


def get_provider(
    name: str | None = None,
    tier: Tier = "turn",
    model: str | None = None,
    temperature: float | None = None,
    settings: Settings | None = None,
) -> LLMProvider:
    """Build a provider for *tier*.

    Parameters
    ----------
    name:
        ``"openai"`` | ``"anthropic"`` | ``"groq"``; defaults to
        ``settings.default_provider``.
    tier:
        ``"turn"`` for story turns, ``"setup"`` for questionnaire and
        synopsis generation.  Picks the default model and temperature.
    model:
        Explicit model id; overrides the tier's default model.
    temperature:
        Explicit temperature; overrides the tier's configured one.

    Raises ``ValueError`` for an unknown provider or a missing API key.
    """
    settings = settings or default_settings
    name = name or settings.default_provider
    if name not in _PROVIDERS:
        raise ValueError(f"Unknown provider '{name}'. Choose from: {provider_names()}")

    cls, key_attr = _PROVIDERS[name]
    api_key = getattr(settings, key_attr)
    if not api_key:
        raise ValueError(
            f"API key for provider '{name}' is not configured "
            f"(set {key_attr.upper()} in .env)."
        )

    chosen_model = model or cls.model_for(tier)
    if temperature is None:
        temperature = (
            settings.turn_temperature if tier == "turn" else settings.setup_temperature
        )
    log.info("Creating %s provider for %s: model=%s, temperature=%.2f",
             name, tier, chosen_model, temperature)
    return cls(api_key=api_key, model=chosen_model, temperature=temperature)


def list_providers(settings: Settings | None = None) -> dict:
    """Every known provider with its models and whether it has a key."""
    settings = settings or default_settings
    return {
        name: {
            "configured": bool(getattr(settings, key_attr)),
            "turn_model": cls.TURN_MODEL,
            "setup_model": cls.SETUP_MODEL,
            "models": list(cls.MODELS),
            "is_default": name == settings.default_provider,
        }
        for name, (cls, key_attr) in _PROVIDERS.items()
    }
