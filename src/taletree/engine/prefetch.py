"""Speculative prefetch of untaken branches.

After a turn lands, every option of the current node that has neither a
child nor a pending generation is generated in the background.  Results are
committed through the same insert-if-absent step as live turns, so a
prefetch that loses a race to a live turn is simply discarded.  Failures
are logged and forgotten; the branch stays open for the next pass.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from pydantic import BaseModel

from taletree.engine import graph
from taletree.engine.branches import BranchBuilder, Choice, Materialized
from taletree.engine.errors import EngineError, GraphIntegrityError
from taletree.engine.inflight import InFlightRegistry
from taletree.models.session import Option, Session

log = logging.getLogger(__name__)


class PrefetchReport(BaseModel):
    node_id: str
    launched: int = 0
    skipped: int = 0
    inserted: int = 0
    discarded: int = 0
    failed: int = 0


class Prefetcher:
    def __init__(self, builder: BranchBuilder, concurrency: int = 3):
        self._builder = builder
        self._concurrency = concurrency
        self._slots: Optional[asyncio.Semaphore] = None

    def _semaphore(self) -> asyncio.Semaphore:
        if self._slots is None:
            self._slots = asyncio.Semaphore(self._concurrency)
        return self._slots

    async def _prefetch_one(
        self, session: Session, node_id: str, option: Option
    ) -> Optional[Materialized]:
        choice = Choice(key=option.id, label=option.label, option=option)
        async with self._semaphore():
            # The branch may have been taken while this task waited for a slot.
            existing = graph.get_child(session, node_id, option.id)
            if existing is not None:
                return Materialized(node=existing, inserted=False)
            try:
                return await self._builder.materialize(
                    session, node_id, choice, visited=False,
                )
            except GraphIntegrityError as exc:
                log.error("Prefetch of %s/%s broke graph integrity: %s", node_id, option.id, exc)
                return None
            except EngineError as exc:
                log.warning(
                    "Prefetch of %s/%s failed (%s): %s",
                    node_id, option.id, exc.kind, exc,
                )
                return None
            except Exception:
                log.exception("Prefetch of %s/%s crashed", node_id, option.id)
                return None

    def launch(
        self, session: Session, registry: InFlightRegistry
    ) -> tuple[PrefetchReport, List[asyncio.Task]]:
        """Start background generation for every open option of the current node."""
        node = graph.get_node(session, session.current_node_id)
        report = PrefetchReport(node_id=node.id)
        tasks: List[asyncio.Task] = []
        if node.is_terminal:
            return report, tasks

        for option in node.available_options:
            key = (node.id, option.id)
            if graph.get_child(session, node.id, option.id) is not None or key in registry:
                report.skipped += 1
                continue
            tasks.append(registry.launch(key, self._prefetch_one(session, node.id, option)))

        report.launched = len(tasks)
        if tasks:
            log.info("Prefetching %d option(s) for node %s", len(tasks), node.id)
        return report, tasks

    async def run(self, session: Session, registry: InFlightRegistry) -> PrefetchReport:
        """Launch a prefetch pass and wait for it to finish."""
        report, tasks = self.launch(session, registry)
        if not tasks:
            return report

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                # Cancelled tasks; the pass still completes.
                log.error("Prefetch task crashed: %r", result)
                report.failed += 1
            elif result is None:
                report.failed += 1
            elif result.inserted:
                report.inserted += 1
            else:
                report.discarded += 1
        return report
