from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel

from fastapi import APIRouter, Depends, HTTPException

from taletree.api.dependencies import get_story_service
from taletree.engine.errors import EngineError
from taletree.engine.prefetch import PrefetchReport
from taletree.models.session import Node, SessionParams
from taletree.services.story import StoryService, UnknownSessionError

log = logging.getLogger(__name__)
router = APIRouter(prefix="/api/sessions", tags=["sessions"])

_STATUS_BY_KIND = {
    "node_not_found": 404,
    "invalid_option": 400,
    "generator_failure": 502,
    "parse_failure": 502,
    "graph_integrity": 500,
}


def error_status(error: EngineError) -> int:
    return _STATUS_BY_KIND.get(error.kind, 500)


def _fail(error: EngineError) -> HTTPException:
    return HTTPException(
        error_status(error), {"kind": error.kind, "message": str(error)},
    )


def _not_found(exc: UnknownSessionError) -> HTTPException:
    return HTTPException(404, str(exc))


# ── Request / response models ──────────────────────────────────────────


class AdvanceRequest(BaseModel):
    option_id: str
    free_text: Optional[str] = None  # required when option_id == "__custom__"


class AdvanceResponse(BaseModel):
    node: Node
    reused: bool
    phase: str


class RollbackRequest(BaseModel):
    node_id: str


# ── Lifecycle ───────────────────────────────────────────────────────────


@router.post("")
async def create_session(
    body: SessionParams,
    svc: StoryService = Depends(get_story_service),
):
    """Create a new story session holding only its opening node."""
    session = await svc.create(body)
    return session.model_dump()


@router.get("")
async def list_sessions(svc: StoryService = Depends(get_story_service)):
    """List saved sessions, most recently updated first."""
    metas = await svc.list()
    return {
        "active": await svc.active_session_id(),
        "sessions": [m.model_dump() for m in metas],
    }


@router.get("/{session_id}")
async def get_session(
    session_id: str,
    svc: StoryService = Depends(get_story_service),
):
    """Full session graph."""
    session = await svc.get(session_id)
    if session is None:
        raise HTTPException(404, "Story session not found")
    return session.model_dump()


@router.delete("/{session_id}")
async def delete_session(
    session_id: str,
    svc: StoryService = Depends(get_story_service),
):
    if not await svc.delete(session_id):
        raise HTTPException(404, "Story session not found")
    return {"status": "deleted"}


# ── Turns ───────────────────────────────────────────────────────────────


@router.post("/{session_id}/advance", response_model=AdvanceResponse)
async def advance(
    session_id: str,
    body: AdvanceRequest,
    svc: StoryService = Depends(get_story_service),
):
    """Take an option (or a free-text action) from the current node."""
    try:
        result = await svc.advance(session_id, body.option_id, body.free_text)
    except UnknownSessionError as exc:
        raise _not_found(exc)
    if not result.ok:
        raise _fail(result.error)
    session = await svc.get(session_id)
    phase = svc.orchestrator.phase(session)
    return AdvanceResponse(
        node=result.value.node,
        reused=result.value.reused,
        phase=phase.name.lower(),
    )


@router.post("/{session_id}/rollback")
async def rollback(
    session_id: str,
    body: RollbackRequest,
    svc: StoryService = Depends(get_story_service),
):
    """Jump back to any node of the session and restore its state."""
    try:
        result = await svc.rollback(session_id, body.node_id)
    except UnknownSessionError as exc:
        raise _not_found(exc)
    if not result.ok:
        raise _fail(result.error)
    return {"node": result.value.model_dump()}


@router.post("/{session_id}/prefetch", response_model=PrefetchReport)
async def prefetch(
    session_id: str,
    wait: bool = True,
    svc: StoryService = Depends(get_story_service),
):
    """Pre-generate every open branch of the current node."""
    try:
        result = await svc.prefetch(session_id, wait=wait)
    except UnknownSessionError as exc:
        raise _not_found(exc)
    if not result.ok:
        raise _fail(result.error)
    return result.value


# ── Views ───────────────────────────────────────────────────────────────


@router.get("/{session_id}/current")
async def current(
    session_id: str,
    svc: StoryService = Depends(get_story_service),
):
    try:
        view = await svc.current(session_id)
    except UnknownSessionError as exc:
        raise _not_found(exc)
    except EngineError as exc:
        raise _fail(exc)
    return {
        **view,
        "node": view["node"].model_dump(),
        "running_state": view["running_state"].model_dump(),
    }


@router.get("/{session_id}/path/{node_id}")
async def path(
    session_id: str,
    node_id: str,
    svc: StoryService = Depends(get_story_service),
):
    """Node ids from the root down to *node_id*."""
    try:
        result = await svc.path(session_id, node_id)
    except UnknownSessionError as exc:
        raise _not_found(exc)
    if not result.ok:
        raise _fail(result.error)
    return {"path": result.value}


@router.get("/{session_id}/tree")
async def tree(
    session_id: str,
    svc: StoryService = Depends(get_story_service),
):
    """Nested branch view for a tree navigator."""
    try:
        view = await svc.tree(session_id)
    except UnknownSessionError as exc:
        raise _not_found(exc)
    return {"tree": view}
