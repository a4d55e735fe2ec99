"""Generator-facing models: the context sent out and the turn that comes back.

Everything in :class:`TurnOutput` is untrusted.  The validators here only
normalise shape; the bounds that matter (counter deltas, terminal threshold,
turn counting) are enforced by the reducer.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from taletree.models.session import (
    Option,
    RunningState,
    TerminalKind,
    is_reserved_option_id,
)


class StateDelta(BaseModel):
    """Incremental change to the running state declared by the generator."""

    location: Optional[str] = None
    add_items: List[str] = Field(default_factory=list)
    remove_items: List[str] = Field(default_factory=list)
    set_flags: Dict[str, bool] = Field(default_factory=dict)
    clear_flags: List[str] = Field(default_factory=list)


class TurnOutput(BaseModel):
    """One structured turn as returned by the generator."""

    text: str = ""
    options: List[Option] = Field(default_factory=list)
    state: StateDelta = Field(default_factory=StateDelta)
    summary: str = ""
    progress_a: int = 0
    progress_b: int = 0
    is_terminal: bool = False
    terminal_kind: Optional[TerminalKind] = None
    title: str = ""

    @field_validator("options")
    @classmethod
    def _unique_options(cls, value: List[Option]) -> List[Option]:
        seen: set[str] = set()
        cleaned: List[Option] = []
        for opt in value:
            opt_id = opt.id.strip()
            if not opt_id or opt_id in seen or is_reserved_option_id(opt_id):
                continue
            seen.add(opt_id)
            cleaned.append(Option(id=opt_id, label=opt.label.strip()))
        return cleaned

    @field_validator("terminal_kind", mode="before")
    @classmethod
    def _known_kind(cls, value: Any) -> Any:
        if value is None:
            return None
        try:
            return TerminalKind(str(value).lower())
        except ValueError:
            return None


class HistoryEntry(BaseModel):
    text: str
    chosen: str = ""


class TurnContext(BaseModel):
    """Path-to-root context handed to the generator."""

    synopsis: str = ""
    world_schema: Dict[str, Any] = Field(default_factory=dict)
    history: List[HistoryEntry] = Field(default_factory=list)
    state: RunningState = Field(default_factory=RunningState)
    phase: str = ""
    phase_label: str = ""
    directive: str = ""
