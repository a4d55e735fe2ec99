from __future__ import annotations

import logging
from typing import Any, Dict

from pydantic import BaseModel, Field

from fastapi import APIRouter, Depends, HTTPException

from taletree.api.dependencies import get_setup_service
from taletree.engine.errors import GeneratorFailure
from taletree.models.setup import Questionnaire, Synopsis
from taletree.services.setup import SetupService

log = logging.getLogger(__name__)
router = APIRouter(prefix="/api/setup", tags=["setup"])


class QuestionsRequest(BaseModel):
    background: str = Field(min_length=1)


class SynopsisRequest(BaseModel):
    background: str = Field(min_length=1)
    answers: Dict[str, Any] = Field(default_factory=dict)


class SynopsisResponse(BaseModel):
    synopsis: Synopsis
    session_params: Dict[str, Any]


@router.post("/questions", response_model=Questionnaire)
async def questions(
    body: QuestionsRequest,
    svc: SetupService = Depends(get_setup_service),
):
    """Follow-up questions for the player's story concept."""
    try:
        return await svc.generate_questions(body.background)
    except GeneratorFailure as exc:
        log.error("Questionnaire failed: %s", exc)
        raise HTTPException(502, {"kind": exc.kind, "message": str(exc)})


@router.post("/synopsis", response_model=SynopsisResponse)
async def synopsis(
    body: SynopsisRequest,
    svc: SetupService = Depends(get_setup_service),
):
    """Story foundation, plus the parameters to open a session with it."""
    try:
        result = await svc.generate_synopsis(body.background, body.answers)
    except GeneratorFailure as exc:
        log.error("Synopsis failed: %s", exc)
        raise HTTPException(502, {"kind": exc.kind, "message": str(exc)})
    return SynopsisResponse(
        synopsis=result,
        session_params=SetupService.session_params(result).model_dump(),
    )
