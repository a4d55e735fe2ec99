"""Turn orchestrator: the session lifecycle.

A session's position is simply its current node id.  ``advance`` moves it
down a branch, generating the branch only when no child exists yet and no
other operation is already generating it; ``rollback`` jumps to any node and
restores that node's snapshot as is.

Mutating calls return a :class:`~taletree.engine.result.Result` and never
raise; a generator that crashes counts as a ``GeneratorFailure``.  Graph
mutation happens synchronously once the generator outcome is in hand, so
there is no interleaving inside a commit.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from taletree.config import Settings, settings as default_settings
from taletree.engine import graph
from taletree.engine.branches import BranchBuilder, Choice, Materialized
from taletree.engine.errors import (
    EngineError,
    GeneratorFailure,
    GraphIntegrityError,
    InvalidOptionError,
    NodeNotFoundError,
)
from taletree.engine.generator import TurnGenerator
from taletree.engine.inflight import InFlightRegistry
from taletree.engine.phase import Phase, PhaseThresholds, classify
from taletree.engine.prefetch import Prefetcher, PrefetchReport
from taletree.engine.result import Result
from taletree.models.session import (
    CUSTOM_OPTION_ID,
    Node,
    Option,
    RunningState,
    Session,
    SessionParams,
)

log = logging.getLogger(__name__)

START_OPTION_ID = "start"


def custom_option_key(text: str) -> str:
    """Edge key for a free-text action: identical text reuses the branch."""
    normalised = " ".join(text.split()).lower()
    digest = hashlib.sha1(normalised.encode("utf-8")).hexdigest()[:12]
    return f"{CUSTOM_OPTION_ID}:{digest}"


@dataclass(frozen=True)
class AdvanceOutcome:
    node: Node
    reused: bool


class TurnOrchestrator:
    """Create, advance, roll back and prefetch story sessions."""

    def __init__(
        self,
        generator: TurnGenerator,
        settings: Settings | None = None,
        auto_prefetch: bool | None = None,
    ):
        self._settings = settings or default_settings
        self._thresholds = PhaseThresholds(
            turns=tuple(self._settings.phase_turn_thresholds),
            counters=tuple(self._settings.phase_counter_thresholds),
        )
        self._builder = BranchBuilder(
            generator,
            terminal_threshold=self._settings.terminal_threshold,
            context_window=self._settings.context_window,
            thresholds=self._thresholds,
        )
        self._prefetcher = Prefetcher(
            self._builder, concurrency=self._settings.prefetch_concurrency,
        )
        self._auto_prefetch = (
            self._settings.prefetch_enabled if auto_prefetch is None else auto_prefetch
        )
        # One registry per session id
        self._inflight: Dict[str, InFlightRegistry] = {}

    # ── collaborators ───────────────────────────────────────────────────

    def inflight(self, session: Session) -> InFlightRegistry:
        registry = self._inflight.get(session.id)
        if registry is None:
            registry = self._inflight[session.id] = InFlightRegistry()
        return registry

    def pending(self, session: Session) -> int:
        """Number of generations still running for *session*."""
        registry = self._inflight.get(session.id)
        return len(registry) if registry is not None else 0

    async def settle(self, session: Session) -> None:
        """Wait for every pending generation of *session* to finish."""
        registry = self._inflight.get(session.id)
        if registry is not None:
            await registry.drain()

    def forget(self, session_id: str) -> None:
        """Drop the registry of a session that is no longer in use.

        Pending tasks keep running and still commit into their session object.
        """
        self._inflight.pop(session_id, None)

    # ── read accessors ──────────────────────────────────────────────────

    def current_node(self, session: Session) -> Node:
        return graph.get_node(session, session.current_node_id)

    def path_to_root(self, session: Session, node_id: Optional[str] = None) -> List[str]:
        return graph.path_to_root(session, node_id or session.current_node_id)

    def phase(self, session: Session) -> Phase:
        state = session.running_state
        return classify(state.turn_count, state.counters, self._thresholds)

    # ── lifecycle ───────────────────────────────────────────────────────

    def create_session(self, params: SessionParams) -> Session:
        """New session holding only the root node; nothing is generated yet."""
        initial = RunningState(location=params.location)
        root = Node(
            depth=0,
            generated_text=params.opening_text,
            state_snapshot=initial,
            visited=True,
            title=params.title or "Start",
        )
        session = Session(
            title=params.title,
            root_node_id=root.id,
            current_node_id=root.id,
            running_state=initial.model_copy(deep=True),
            synopsis=params.synopsis,
            world_schema=dict(params.world_schema),
        )
        graph.add_node(session, root)
        log.info("Created session %s (%s)", session.id, params.title or "untitled")
        return session

    def _resolve_choice(
        self, session: Session, node: Node, option_id: str, free_text: Optional[str]
    ) -> Choice:
        if node.is_terminal:
            raise InvalidOptionError(node.id, option_id, "the story has ended here")

        if option_id == CUSTOM_OPTION_ID:
            text = (free_text or "").strip()
            if not text:
                raise InvalidOptionError(node.id, option_id, "custom action needs text")
            key = custom_option_key(text)
            return Choice(key=key, label=text, option=Option(id=key, label=text))

        if option_id == START_OPTION_ID and node.id == session.root_node_id:
            return Choice(key=START_OPTION_ID, label="", option=None)

        option = node.option(option_id)
        if option is None:
            raise InvalidOptionError(node.id, option_id)
        return Choice(key=option.id, label=option.label, option=option)

    def _enter(self, session: Session, node: Node) -> None:
        node.visited = True
        session.current_node_id = node.id
        session.running_state = node.state_snapshot.model_copy(deep=True)
        session.touch()

    def _after_turn(self, session: Session, node: Node) -> None:
        if self._auto_prefetch and not node.is_terminal and node.available_options:
            self._prefetcher.launch(session, self.inflight(session))

    async def advance(
        self,
        session: Session,
        option_id: str,
        free_text: Optional[str] = None,
    ) -> Result[AdvanceOutcome]:
        """Take *option_id* from the current node.

        Reuses an existing child without calling the generator; otherwise
        waits on a pending generation of the same branch, or generates it.
        On failure the session stays where it was.
        """
        try:
            node = self.current_node(session)
        except NodeNotFoundError as exc:
            log.error("Session %s points at a missing node: %s", session.id, exc)
            return Result.failure(exc)
        try:
            choice = self._resolve_choice(session, node, option_id, free_text)
        except InvalidOptionError as exc:
            log.info("Rejected advance: %s", exc)
            return Result.failure(exc)

        node.chosen_option_id = choice.key

        registry = self.inflight(session)
        key = (node.id, choice.key)
        while True:
            existing = graph.get_child(session, node.id, choice.key)
            if existing is not None:
                log.info("Reusing node %s for %s/%s", existing.id, node.id, choice.key)
                self._enter(session, existing)
                self._after_turn(session, existing)
                return Result.success(AdvanceOutcome(node=existing, reused=True))

            pending = registry.get(key)
            if pending is None:
                break
            # Another pass may relaunch the key while this one resumes.
            log.info("Waiting on pending generation for %s/%s", *key)
            try:
                await asyncio.shield(pending)
            except Exception as exc:
                log.info("Pending generation for %s/%s failed: %s", key[0], key[1], exc)

        task = registry.launch(
            key, self._builder.materialize(session, node.id, choice, visited=True),
        )
        try:
            built: Materialized = await asyncio.shield(task)
        except GraphIntegrityError as exc:
            log.error("Graph integrity violated while advancing %s/%s: %s", key[0], key[1], exc)
            return Result.failure(exc)
        except GeneratorFailure as exc:
            log.warning("Advance %s/%s failed (%s): %s", key[0], key[1], exc.kind, exc)
            return Result.failure(exc)
        except EngineError as exc:
            return Result.failure(exc)
        except Exception as exc:
            log.warning("Advance %s/%s crashed: %r", key[0], key[1], exc)
            return Result.failure(GeneratorFailure(f"Generator call failed: {exc}"))

        self._enter(session, built.node)
        self._after_turn(session, built.node)
        return Result.success(AdvanceOutcome(node=built.node, reused=not built.inserted))

    def rollback(self, session: Session, target_node_id: str) -> Result[Node]:
        """Make *target_node_id* current and restore its snapshot verbatim."""
        node = session.nodes_by_id.get(target_node_id)
        if node is None:
            return Result.failure(NodeNotFoundError(target_node_id, context="rollback target"))
        session.current_node_id = node.id
        session.running_state = node.state_snapshot.model_copy(deep=True)
        session.touch()
        log.info("Rolled session %s back to node %s (depth %d)", session.id, node.id, node.depth)
        return Result.success(node)

    async def prefetch_current(
        self, session: Session, wait: bool = True
    ) -> Result[PrefetchReport]:
        """Pre-generate every open branch of the current node."""
        registry = self.inflight(session)
        try:
            if wait:
                report = await self._prefetcher.run(session, registry)
            else:
                report, _ = self._prefetcher.launch(session, registry)
        except EngineError as exc:
            return Result.failure(exc)
        return Result.success(report)
