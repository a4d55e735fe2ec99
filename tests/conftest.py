"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import pytest

from fakes import ScriptedGenerator

from taletree.config import Settings
from taletree.engine.orchestrator import TurnOrchestrator
from taletree.models.session import SessionParams


@pytest.fixture
def engine_settings() -> Settings:
    """Engine settings with background prefetch off; tests opt in explicitly."""
    return Settings(prefetch_enabled=False, prefetch_concurrency=3)


@pytest.fixture
def generator() -> ScriptedGenerator:
    return ScriptedGenerator()


@pytest.fixture
def orchestrator(generator: ScriptedGenerator, engine_settings: Settings) -> TurnOrchestrator:
    return TurnOrchestrator(generator, settings=engine_settings)


@pytest.fixture
def params() -> SessionParams:
    return SessionParams(
        title="Silent Orbit",
        synopsis="A crew member wakes alone on a drifting ship.",
        opening_text="Frost cracks on the cryopod glass.",
        location="Cryobay",
        world_schema={"world": "The starship Meridian"},
    )
