"""Tests for the prompt template loader."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from taletree.prompts.loader import PromptLoader


@pytest.fixture
def loader(tmp_path: Path) -> PromptLoader:
    (tmp_path / "demo").mkdir()
    (tmp_path / "demo" / "GREETING.txt").write_text(
        'Hello {name}, you are in {place}.\nExample: {"name": "x"}\n', encoding="utf-8",
    )
    return PromptLoader(tmp_path)


class TestPromptLoader:
    def test_render_fills_placeholders(self, loader: PromptLoader) -> None:
        text = loader.render("demo", "GREETING", name="Ada", place="{the vault}")
        assert text.startswith("Hello Ada, you are in {the vault}.")
        assert '{"name": "x"}' in text

    def test_missing_variable_left_and_logged(
        self, loader: PromptLoader, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="taletree.prompts.loader"):
            text = loader.render("demo", "GREETING", name="Ada")
        assert "{place}" in text
        assert "place" in caplog.text

    def test_variables_may_share_argument_names(self, tmp_path: Path) -> None:
        (tmp_path / "demo").mkdir()
        (tmp_path / "demo" / "LABEL.txt").write_text("{category}/{name}", encoding="utf-8")
        loader = PromptLoader(tmp_path)

        assert loader.render("demo", "LABEL", category="heist", name="vault") == "heist/vault"

    def test_placeholders(self, loader: PromptLoader) -> None:
        assert loader.placeholders("demo", "GREETING") == {"name", "place"}

    def test_falls_back_to_packaged_templates(self, tmp_path: Path) -> None:
        loader = PromptLoader(tmp_path / "missing")
        assert loader.placeholders("generators", "TURN_GENERATOR") == {
            "synopsis", "world_schema", "phase_directive", "format_instructions",
        }
