from __future__ import annotations

from pathlib import Path
from typing import Tuple

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Provider API keys ---
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    groq_api_key: str = ""

    # --- Default provider ---
    default_provider: str = "openai"  # openai | anthropic | groq

    # Story turns want more variety than setup questionnaires and synopses
    turn_temperature: float = 0.9
    setup_temperature: float = 0.3

    # --- Data paths ---
    prompts_dir: str = str(
        _PROJECT_ROOT / "src" / "taletree" / "prompts" / "templates"
    )

    # --- Database ---
    database_url: str = f"sqlite+aiosqlite:///{_PROJECT_ROOT / 'taletree.db'}"

    # --- Session engine ---
    terminal_threshold: int = 4
    phase_turn_thresholds: Tuple[int, int, int] = (3, 7, 10)
    phase_counter_thresholds: Tuple[int, int, int] = (1, 3, 4)
    context_window: int = 6
    prefetch_enabled: bool = True
    prefetch_concurrency: int = 3
    # Idle sessions kept in memory by the story service
    session_cache_size: int = 32

    @field_validator("phase_turn_thresholds", "phase_counter_thresholds")
    @classmethod
    def _non_decreasing(cls, value: Tuple[int, int, int]) -> Tuple[int, int, int]:
        if list(value) != sorted(value):
            raise ValueError(f"phase thresholds must be non-decreasing, got {value}")
        return value

    @field_validator(
        "terminal_threshold", "context_window", "prefetch_concurrency", "session_cache_size"
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value


settings = Settings()
