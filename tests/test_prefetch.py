"""Tests for speculative prefetch and its races with live turns."""

from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from fakes import ScriptedGenerator, make_output

from taletree.config import Settings
from taletree.engine import graph
from taletree.engine.branches import Materialized
from taletree.engine.errors import GeneratorFailure
from taletree.engine.inflight import InFlightRegistry
from taletree.engine.orchestrator import START_OPTION_ID, TurnOrchestrator
from taletree.models.session import Node, Option, Session, SessionParams
from taletree.models.turn import TurnContext, TurnOutput


async def _opened(orchestrator: TurnOrchestrator, params: SessionParams) -> Session:
    session = orchestrator.create_session(params)
    (await orchestrator.advance(session, START_OPTION_ID)).unwrap()
    return session


async def _yield(times: int = 3) -> None:
    for _ in range(times):
        await asyncio.sleep(0)


class TestInFlightRegistry:
    @pytest.mark.asyncio
    async def test_key_dropped_when_task_settles(self) -> None:
        registry = InFlightRegistry()
        gate = asyncio.Event()

        async def work() -> str:
            await gate.wait()
            return "done"

        task = registry.launch(("n", "o"), work())
        assert ("n", "o") in registry
        assert registry.get(("n", "o")) is task

        gate.set()
        assert await task == "done"
        await _yield()
        assert ("n", "o") not in registry
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_duplicate_launch_rejected(self) -> None:
        registry = InFlightRegistry()
        gate = asyncio.Event()

        async def work() -> None:
            await gate.wait()

        registry.launch(("n", "o"), work())
        with pytest.raises(RuntimeError):
            registry.launch(("n", "o"), work())
        gate.set()
        await registry.drain()
        assert registry.keys() == []


class TestPrefetchPass:
    @pytest.mark.asyncio
    async def test_generates_every_open_option(
        self, orchestrator: TurnOrchestrator, generator: ScriptedGenerator, params: SessionParams
    ) -> None:
        session = await _opened(orchestrator, params)
        node = orchestrator.current_node(session)

        report = (await orchestrator.prefetch_current(session)).unwrap()

        assert report.node_id == node.id
        assert report.launched == 2
        assert report.inserted == 2
        assert report.failed == 0
        left = graph.get_child(session, node.id, "left")
        right = graph.get_child(session, node.id, "right")
        assert left.visited is False and right.visited is False
        assert session.current_node_id == node.id
        assert sorted(generator.option_ids()[1:]) == ["left", "right"]

    @pytest.mark.asyncio
    async def test_prefetched_branch_reused_by_advance(
        self, orchestrator: TurnOrchestrator, generator: ScriptedGenerator, params: SessionParams
    ) -> None:
        session = await _opened(orchestrator, params)
        await orchestrator.prefetch_current(session)
        calls = len(generator.calls)

        outcome = (await orchestrator.advance(session, "left")).unwrap()

        assert outcome.reused is True
        assert outcome.node.visited is True
        assert len(generator.calls) == calls

    @pytest.mark.asyncio
    async def test_skips_existing_children(
        self, orchestrator: TurnOrchestrator, params: SessionParams
    ) -> None:
        session = await _opened(orchestrator, params)
        opening = orchestrator.current_node(session)
        await orchestrator.advance(session, "left")
        orchestrator.rollback(session, opening.id)

        report = (await orchestrator.prefetch_current(session)).unwrap()

        assert report.skipped == 1
        assert report.launched == 1
        assert report.inserted == 1

    @pytest.mark.asyncio
    async def test_nothing_to_do_at_terminal_node(
        self, generator: ScriptedGenerator, params: SessionParams
    ) -> None:
        generator.script = lambda ctx, opt: make_output(is_terminal=True, terminal_kind="neutral")
        orchestrator = TurnOrchestrator(generator, settings=Settings(), auto_prefetch=False)
        session = await _opened(orchestrator, params)

        report = (await orchestrator.prefetch_current(session)).unwrap()

        assert report.launched == 0
        assert len(generator.calls) == 1

    @pytest.mark.asyncio
    async def test_failures_are_swallowed(
        self, orchestrator: TurnOrchestrator, generator: ScriptedGenerator, params: SessionParams
    ) -> None:
        session = await _opened(orchestrator, params)
        nodes_before = len(session.nodes_by_id)
        generator.fail_with = GeneratorFailure("quota")

        result = await orchestrator.prefetch_current(session)

        assert result.ok
        assert result.value.failed == 2
        assert len(session.nodes_by_id) == nodes_before

        generator.fail_with = None
        outcome = (await orchestrator.advance(session, "left")).unwrap()
        assert outcome.reused is False

    @pytest.mark.asyncio
    async def test_crashing_generator_counted_as_failed(
        self, orchestrator: TurnOrchestrator, generator: ScriptedGenerator, params: SessionParams
    ) -> None:
        session = await _opened(orchestrator, params)
        nodes_before = len(session.nodes_by_id)
        generator.fail_with = KeyError("options")

        (await orchestrator.prefetch_current(session, wait=False)).unwrap()
        await orchestrator.settle(session)
        report = (await orchestrator.prefetch_current(session)).unwrap()

        assert report.failed == 2
        assert len(session.nodes_by_id) == nodes_before
        assert orchestrator.pending(session) == 0

    @pytest.mark.asyncio
    async def test_concurrency_is_capped(self, params: SessionParams) -> None:
        active = 0
        peak = 0

        class SlowGenerator(ScriptedGenerator):
            async def generate(self, context: TurnContext, option: Optional[Option]) -> TurnOutput:
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                await _yield()
                active -= 1
                return make_output(options=("a", "b", "c", "d"))

        orchestrator = TurnOrchestrator(
            SlowGenerator(),
            settings=Settings(prefetch_concurrency=2),
            auto_prefetch=False,
        )
        session = await _opened(orchestrator, params)
        peak = 0

        report = (await orchestrator.prefetch_current(session)).unwrap()

        assert report.inserted == 4
        assert peak == 2

    @pytest.mark.asyncio
    async def test_auto_prefetch_after_turn(
        self, generator: ScriptedGenerator, params: SessionParams
    ) -> None:
        orchestrator = TurnOrchestrator(generator, settings=Settings(), auto_prefetch=True)
        session = orchestrator.create_session(params)

        node = (await orchestrator.advance(session, START_OPTION_ID)).unwrap().node
        assert len(orchestrator.inflight(session)) == 2

        await orchestrator.settle(session)
        assert {o for o, _ in graph.children_of(session, node.id)} == {"left", "right"}


class TestRaces:
    @pytest.mark.asyncio
    async def test_advance_waits_for_pending_prefetch(
        self, orchestrator: TurnOrchestrator, generator: ScriptedGenerator, params: SessionParams
    ) -> None:
        session = await _opened(orchestrator, params)
        node = orchestrator.current_node(session)
        generator.gate = asyncio.Event()

        (await orchestrator.prefetch_current(session, wait=False)).unwrap()
        advance = asyncio.create_task(orchestrator.advance(session, "left"))
        await _yield()
        assert not advance.done()

        generator.gate.set()
        outcome = (await advance).unwrap()
        await orchestrator.settle(session)

        assert outcome.reused is True
        assert generator.option_ids().count("left") == 1
        assert [o for o, _ in graph.children_of(session, node.id)].count("left") == 1
        assert session.current_node_id == outcome.node.id
        assert outcome.node.visited is True

    @pytest.mark.asyncio
    async def test_prefetch_skips_branch_of_pending_advance(
        self, orchestrator: TurnOrchestrator, generator: ScriptedGenerator, params: SessionParams
    ) -> None:
        session = await _opened(orchestrator, params)
        node = orchestrator.current_node(session)
        generator.gate = asyncio.Event()

        advance = asyncio.create_task(orchestrator.advance(session, "left"))
        await _yield()
        prefetch = asyncio.create_task(orchestrator.prefetch_current(session))
        await _yield()
        generator.gate.set()

        outcome = (await advance).unwrap()
        report = (await prefetch).unwrap()

        assert report.skipped == 1
        assert report.inserted == 1
        assert outcome.reused is False
        assert generator.option_ids().count("left") == 1
        edges = [e for e in session.edges if e.from_node_id == node.id and e.option_id == "left"]
        assert len(edges) == 1
        assert edges[0].to_node_id == outcome.node.id

    @pytest.mark.asyncio
    async def test_branch_committed_while_queued_is_discarded(
        self, generator: ScriptedGenerator, params: SessionParams
    ) -> None:
        orchestrator = TurnOrchestrator(
            generator, settings=Settings(prefetch_concurrency=1), auto_prefetch=False,
        )
        session = await _opened(orchestrator, params)
        node = orchestrator.current_node(session)
        generator.gate = asyncio.Event()

        # "left" holds the only slot; "right" queues behind it
        prefetch = asyncio.create_task(orchestrator.prefetch_current(session))
        await _yield()
        committed, _ = graph.insert_child(
            session, node.id, "right",
            Node(parent_id=node.id, depth=node.depth + 1, generated_text="Elsewhere."),
            label="Go right",
        )
        generator.gate.set()
        report = (await prefetch).unwrap()

        assert report.inserted == 1
        assert report.discarded == 1
        assert "right" not in generator.option_ids()
        assert graph.get_child(session, node.id, "right") is committed

    @pytest.mark.asyncio
    async def test_advance_generates_itself_after_failed_prefetch(
        self, orchestrator: TurnOrchestrator, generator: ScriptedGenerator, params: SessionParams
    ) -> None:
        session = await _opened(orchestrator, params)
        attempts = {"left": 0}

        def flaky(context: TurnContext, option: Optional[Option]) -> TurnOutput:
            if option is not None and option.id == "left":
                attempts["left"] += 1
                if attempts["left"] == 1:
                    raise GeneratorFailure("first try fails")
            return make_output()

        generator.script = flaky
        generator.gate = asyncio.Event()
        (await orchestrator.prefetch_current(session, wait=False)).unwrap()
        advance = asyncio.create_task(orchestrator.advance(session, "left"))
        await _yield()
        generator.gate.set()

        outcome = (await advance).unwrap()
        await orchestrator.settle(session)

        assert attempts["left"] == 2
        assert outcome.reused is False
        assert session.current_node_id == outcome.node.id

    @pytest.mark.asyncio
    async def test_advance_waits_again_when_branch_is_relaunched(
        self, orchestrator: TurnOrchestrator, generator: ScriptedGenerator, params: SessionParams
    ) -> None:
        session = await _opened(orchestrator, params)
        node = orchestrator.current_node(session)
        registry = orchestrator.inflight(session)
        key = (node.id, "left")
        generator.gate = asyncio.Event()
        generator.fail_with = GeneratorFailure("quota")

        async def commit_elsewhere() -> Materialized:
            child, inserted = graph.insert_child(
                session, node.id, "left",
                Node(parent_id=node.id, depth=node.depth + 1, generated_text="Relaunched."),
                label="Go left",
            )
            return Materialized(node=child, inserted=inserted)

        (await orchestrator.prefetch_current(session, wait=False)).unwrap()
        advance = asyncio.create_task(orchestrator.advance(session, "left"))
        await _yield()
        # Runs after the failed task leaves the registry, before advance resumes
        registry.get(key).add_done_callback(
            lambda _: registry.launch(key, commit_elsewhere())
        )
        generator.gate.set()

        outcome = (await advance).unwrap()
        await orchestrator.settle(session)

        assert outcome.reused is True
        assert outcome.node.generated_text == "Relaunched."
        assert session.current_node_id == outcome.node.id
        assert generator.option_ids().count("left") == 1

    @pytest.mark.asyncio
    async def test_sessions_do_not_share_registries(
        self, orchestrator: TurnOrchestrator, generator: ScriptedGenerator, params: SessionParams
    ) -> None:
        first = await _opened(orchestrator, params)
        second = await _opened(orchestrator, params)
        generator.gate = asyncio.Event()

        await orchestrator.prefetch_current(first, wait=False)

        assert len(orchestrator.inflight(first)) == 2
        assert len(orchestrator.inflight(second)) == 0
        generator.gate.set()
        await orchestrator.settle(first)
        assert len(second.nodes_by_id) == 2
