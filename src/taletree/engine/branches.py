"""Branch materialisation shared by live turns and prefetch.

A branch is generated from its parent node alone: the context, the
reduction base and the resulting node all come from the parent, never
from the session's live position, which may have moved on while the
generator was running.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from taletree.engine import graph
from taletree.engine.context import build_context
from taletree.engine.generator import TurnGenerator
from taletree.engine.phase import DEFAULT_THRESHOLDS, PhaseThresholds
from taletree.engine.reducer import (
    HARD_ENDING_THRESHOLD,
    apply_delta,
    resolve_terminal_kind,
)
from taletree.models.session import Node, Option, Session
from taletree.models.turn import TurnOutput

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Choice:
    """A resolved player choice.

    ``key`` is the edge option id; ``option`` is what the generator sees
    (``None`` for the opening turn).
    """

    key: str
    label: str
    option: Optional[Option]


@dataclass(frozen=True)
class Materialized:
    node: Node
    inserted: bool


class BranchBuilder:
    def __init__(
        self,
        generator: TurnGenerator,
        terminal_threshold: int = HARD_ENDING_THRESHOLD,
        context_window: int = 6,
        thresholds: PhaseThresholds = DEFAULT_THRESHOLDS,
    ):
        self._generator = generator
        self._terminal_threshold = terminal_threshold
        self._context_window = context_window
        self._thresholds = thresholds

    def build_node(self, parent: Node, output: TurnOutput, visited: bool) -> Node:
        """Candidate child of *parent* for *output*; not yet in any graph."""
        state = apply_delta(parent.state_snapshot, output, self._terminal_threshold)
        return Node(
            parent_id=parent.id,
            depth=parent.depth + 1,
            generated_text=output.text,
            available_options=[] if state.terminal else list(output.options),
            state_snapshot=state,
            is_terminal=state.terminal,
            terminal_kind=resolve_terminal_kind(state, output, self._terminal_threshold),
            visited=visited,
            turn_summary=output.summary.strip(),
            title=output.title.strip() or f"Turn {state.turn_count}",
        )

    async def materialize(
        self,
        session: Session,
        parent_id: str,
        choice: Choice,
        visited: bool,
    ) -> Materialized:
        """Generate and commit the child of *parent_id* for *choice*.

        If the branch was committed by someone else while the generator was
        running, the fresh candidate is dropped and the existing child is
        returned with ``inserted=False``.
        """
        parent = graph.get_node(session, parent_id)
        context = build_context(
            session, parent_id, window=self._context_window, thresholds=self._thresholds,
        )
        output = await self._generator.generate(context, choice.option)

        candidate = self.build_node(parent, output, visited)
        node, inserted = graph.insert_child(
            session, parent_id, choice.key, candidate, label=choice.label,
        )
        if inserted:
            session.touch()
            log.info(
                "Committed node %s (depth %d) for %s/%s",
                node.id, node.depth, parent_id, choice.key,
            )
        return Materialized(node=node, inserted=inserted)
