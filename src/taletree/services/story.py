from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from taletree.config import settings
from taletree.engine import graph
from taletree.engine.errors import NodeNotFoundError
from taletree.engine.orchestrator import AdvanceOutcome, TurnOrchestrator
from taletree.engine.prefetch import PrefetchReport
from taletree.engine.result import Result
from taletree.models.session import Node, Session, SessionMeta, SessionParams
from taletree.storage.repository import SessionRepository

log = logging.getLogger(__name__)


class UnknownSessionError(LookupError):
    def __init__(self, session_id: str):
        super().__init__(f"No story session with id '{session_id}'")
        self.session_id = session_id


class StoryService:
    """Story sessions for the HTTP layer.

    Manages:
    - A bounded cache of live sessions, loaded from the repository on demand
    - Turn calls into the :class:`TurnOrchestrator`
    - Autosave after every mutation, and again once background prefetch settles

    Least recently used sessions are evicted once the cache exceeds
    *cache_size*, but only when nothing is running or waiting to be saved
    for them.
    """

    def __init__(
        self,
        orchestrator: TurnOrchestrator,
        repository: SessionRepository,
        cache_size: int | None = None,
    ):
        self._orchestrator = orchestrator
        self._repository = repository
        self._cache_size = cache_size or settings.session_cache_size
        self._sessions: OrderedDict[str, _StoryState] = OrderedDict()

    @property
    def orchestrator(self) -> TurnOrchestrator:
        return self._orchestrator

    def cached_ids(self) -> List[str]:
        """Ids of the sessions held in memory, least recently used first."""
        return list(self._sessions)

    # ── lifecycle ───────────────────────────────────────────────────────

    async def create(self, params: SessionParams) -> Session:
        session = self._orchestrator.create_session(params)
        state = _StoryState(session)
        self._sessions[session.id] = state
        state.users += 1
        try:
            await self._persist(state)
        finally:
            state.users -= 1
            self._evict_idle()
        return session

    async def get(self, session_id: str) -> Optional[Session]:
        state = await self._load(session_id)
        return state.session if state else None

    async def list(self) -> List[SessionMeta]:
        return await self._repository.list()

    async def active_session_id(self) -> Optional[str]:
        return await self._repository.get_active()

    async def delete(self, session_id: str) -> bool:
        known = await self._load(session_id) is not None
        state = self._sessions.pop(session_id, None)
        if state is not None and state.saver is not None:
            state.saver.cancel()
        self._orchestrator.forget(session_id)
        await self._repository.delete(session_id)
        return known

    # ── turns ───────────────────────────────────────────────────────────

    async def advance(
        self, session_id: str, option_id: str, free_text: Optional[str] = None
    ) -> Result[AdvanceOutcome]:
        async with self._checkout(session_id) as state:
            result = await self._orchestrator.advance(state.session, option_id, free_text)
            # A rejected choice may still have marked the parent's chosen option.
            await self._persist(state)
            self._save_when_settled(state)
        return result

    async def rollback(self, session_id: str, node_id: str) -> Result[Node]:
        async with self._checkout(session_id) as state:
            result = self._orchestrator.rollback(state.session, node_id)
            if result.ok:
                await self._persist(state)
        return result

    async def prefetch(self, session_id: str, wait: bool = True) -> Result[PrefetchReport]:
        async with self._checkout(session_id) as state:
            result = await self._orchestrator.prefetch_current(state.session, wait=wait)
            if wait:
                await self._persist(state)
            else:
                self._save_when_settled(state)
        return result

    # ── views ───────────────────────────────────────────────────────────

    async def current(self, session_id: str) -> Dict[str, Any]:
        """Current node plus the session's phase."""
        state = await self._require(session_id)
        session = state.session
        node = self._orchestrator.current_node(session)
        phase = self._orchestrator.phase(session)
        return {
            "node": node,
            "phase": phase.name.lower(),
            "phase_index": int(phase),
            "running_state": session.running_state,
            "pending": self._orchestrator.pending(session),
        }

    async def path(self, session_id: str, node_id: str) -> Result[List[str]]:
        state = await self._require(session_id)
        try:
            return Result.success(self._orchestrator.path_to_root(state.session, node_id))
        except NodeNotFoundError as exc:
            return Result.failure(exc)

    async def tree(self, session_id: str) -> Optional[dict]:
        state = await self._require(session_id)
        return graph.tree_view(state.session)

    async def settle(self, session_id: str) -> None:
        """Wait for pending generations and any scheduled save of *session_id*."""
        state = self._sessions.get(session_id)
        if state is None:
            return
        await self._orchestrator.settle(state.session)
        if state.saver is not None and not state.saver.done():
            await state.saver
        self._evict_idle()

    # ── internals ───────────────────────────────────────────────────────

    async def _load(self, session_id: str) -> Optional[_StoryState]:
        state = self._sessions.get(session_id)
        if state is not None:
            self._sessions.move_to_end(session_id)
            return state
        blob = await self._repository.load(session_id)
        if blob is None:
            return None
        # Another caller may have loaded it while the repository was read.
        state = self._sessions.get(session_id)
        if state is None:
            session = Session.model_validate(blob)
            state = self._sessions[session_id] = _StoryState(session)
            log.info("Loaded session %s (%d nodes)", session_id, len(session.nodes_by_id))
            self._evict_idle(keep=session_id)
        return state

    async def _require(self, session_id: str) -> _StoryState:
        state = await self._load(session_id)
        if state is None:
            raise UnknownSessionError(session_id)
        return state

    @asynccontextmanager
    async def _checkout(self, session_id: str) -> AsyncIterator[_StoryState]:
        """Pin a session in the cache for the duration of a mutating call."""
        state = await self._require(session_id)
        state.users += 1
        try:
            yield state
        finally:
            state.users -= 1
            self._evict_idle()

    def _idle(self, state: _StoryState) -> bool:
        if state.users or self._orchestrator.pending(state.session):
            return False
        return state.saver is None or state.saver.done()

    def _evict_idle(self, keep: Optional[str] = None) -> None:
        excess = len(self._sessions) - self._cache_size
        if excess <= 0:
            return
        for session_id, state in list(self._sessions.items()):
            if excess <= 0:
                break
            if session_id == keep or not self._idle(state):
                continue
            del self._sessions[session_id]
            self._orchestrator.forget(session_id)
            excess -= 1
            log.debug("Evicted idle session %s from cache", session_id)

    async def _persist(self, state: _StoryState) -> None:
        session = state.session
        await self._repository.save(session.id, session.model_dump(mode="json"))
        await self._repository.set_active(session.id)

    def _save_when_settled(self, state: _StoryState) -> None:
        if not self._orchestrator.pending(state.session):
            return
        if state.saver is not None and not state.saver.done():
            # The running saver drains the registry until it is empty.
            return
        state.saver = asyncio.get_running_loop().create_task(
            self._settle_then_save(state), name=f"autosave:{state.session.id}"
        )

    async def _settle_then_save(self, state: _StoryState) -> None:
        await self._orchestrator.settle(state.session)
        if self._sessions.get(state.session.id) is not state:
            return
        try:
            await self._persist(state)
        except Exception:
            log.exception("Autosave of session %s failed", state.session.id)


class _StoryState:
    """Internal holder for a cached session, its pending autosave and its users."""

    __slots__ = ("session", "saver", "users")

    def __init__(self, session: Session):
        self.session = session
        self.saver: Optional[asyncio.Task] = None
        self.users = 0
