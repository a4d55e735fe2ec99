from __future__ import annotations

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field


class StorySeed(BaseModel):
    """A ready-made story hook offered on the start screen."""

    id: str
    title: str
    hook: str
    tags: List[str] = Field(default_factory=list)
    tone: str = ""


class Question(BaseModel):
    """One follow-up question about the player's story background."""

    id: str
    label: str
    type: Literal["select", "text", "slider", "checkbox"] = "select"
    options: List[str] = Field(default_factory=list)
    placeholder: str = ""
    min: int = 0
    max: int = 10
    required: bool = True


class Questionnaire(BaseModel):
    title: str = ""
    questions: List[Question] = Field(default_factory=list)


class Synopsis(BaseModel):
    """Story foundation used to open a session."""

    title: str = ""
    system_synopsis: str = ""
    opening_text: str = ""
    starting_location: str = ""
    world_schema: Dict[str, Any] = Field(default_factory=dict)
