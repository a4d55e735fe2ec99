"""Turn generator collaborator.

The engine only depends on :class:`TurnGenerator`.  :class:`LLMTurnGenerator`
is the production implementation: it renders the turn prompt, asks an
:class:`~taletree.llm.base.LLMProvider` for JSON and parses it into a
:class:`~taletree.models.turn.TurnOutput`.
"""

from __future__ import annotations

import json
import logging
from typing import Optional, Protocol, runtime_checkable

from taletree.engine.errors import GeneratorFailure, ParseFailure
from taletree.llm.base import LLMProvider
from taletree.models.session import Option
from taletree.models.turn import TurnContext, TurnOutput
from taletree.parsing.output_parser import OutputParser
from taletree.prompts.loader import PromptLoader

log = logging.getLogger(__name__)


@runtime_checkable
class TurnGenerator(Protocol):
    async def generate(
        self, context: TurnContext, option: Optional[Option]
    ) -> TurnOutput:
        """Produce the next turn.

        *option* is ``None`` for the opening turn.  Implementations raise
        :class:`GeneratorFailure` (or :class:`ParseFailure`) on any failure.
        """
        ...


class LLMTurnGenerator:
    """Generate turns with an LLM provider and the ``TURN_GENERATOR`` template."""

    def __init__(self, llm: LLMProvider, prompts: PromptLoader | None = None):
        self._llm = llm
        self._prompts = prompts or PromptLoader()

    def build_prompts(
        self, context: TurnContext, option: Optional[Option]
    ) -> tuple[str, str]:
        system_prompt = self._prompts.render(
            "generators",
            "TURN_GENERATOR",
            synopsis=context.synopsis or "(none)",
            world_schema=json.dumps(context.world_schema, indent=2, ensure_ascii=False),
            phase_directive=context.directive,
            format_instructions=OutputParser.format_instructions(TurnOutput),
        )

        story_lines = []
        for i, entry in enumerate(context.history):
            line = f"[Turn {i}] {entry.text}"
            if entry.chosen:
                line += f'\n  -> Player chose: "{entry.chosen}"'
            story_lines.append(line)

        state = context.state
        state_info = (
            f"Location: {state.location or '(not set)'}\n"
            f"Inventory: {', '.join(state.inventory) or '(empty)'}\n"
            f"Flags: {json.dumps(state.flags, ensure_ascii=False)}\n"
            f"Progress: good={state.counters.progress_a} bad={state.counters.progress_b}\n"
            f"Turn: {state.turn_count}"
        )
        if option is None:
            action = (
                "This is the beginning of the story. Continue from the opening "
                "and offer the player their first set of choices."
            )
        else:
            action = f'The player chose: "{option.label or option.id}"'

        user_prompt = (
            f"## Story So Far\n{chr(10).join(story_lines) or '(nothing yet)'}\n\n"
            f"## Current State\n{state_info}\n\n"
            f"## Player Action\n{action}"
        )
        return system_prompt, user_prompt

    async def generate(
        self, context: TurnContext, option: Optional[Option]
    ) -> TurnOutput:
        system_prompt, user_prompt = self.build_prompts(context, option)
        try:
            raw = await self._llm.complete(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                json_mode=True,
            )
        except Exception as exc:
            log.warning("Turn generation failed: %s", exc)
            raise GeneratorFailure(f"Generator call failed: {exc}") from exc

        try:
            return OutputParser.parse(raw, TurnOutput)
        except ValueError as exc:
            log.warning("Turn output did not parse: %s", exc)
            raise ParseFailure(str(exc), raw=raw) from exc
