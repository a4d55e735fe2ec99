"""Session graph models.

A session is an arena of nodes keyed by id plus a flat list of labelled
edges.  Nodes refer to their parent by id only; the ``(from, option)`` and
``to`` lookups are private indexes rebuilt whenever a session is validated.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, PrivateAttr


def new_id() -> str:
    return uuid.uuid4().hex[:12]


# ─── Running state ──────────────────────────────────────────────────────


class Counters(BaseModel):
    """Progress clocks.  ``progress_a`` tracks the way to a good ending,
    ``progress_b`` the way to a bad one."""

    progress_a: int = Field(default=0, ge=0)
    progress_b: int = Field(default=0, ge=0)

    def highest(self) -> int:
        return max(self.progress_a, self.progress_b)


class RunningState(BaseModel):
    """Game state as of one turn."""

    location: str = ""
    inventory: List[str] = Field(default_factory=list)
    flags: Dict[str, bool] = Field(default_factory=dict)
    event_log: List[str] = Field(default_factory=list)
    counters: Counters = Field(default_factory=Counters)
    turn_count: int = Field(default=0, ge=0)
    terminal: bool = False


# ─── Graph ──────────────────────────────────────────────────────────────


class TerminalKind(str, Enum):
    GOOD = "good"
    BAD = "bad"
    NEUTRAL = "neutral"


# Option id reserved for free-text actions; their edge keys use it as a prefix
CUSTOM_OPTION_ID = "__custom__"


def is_reserved_option_id(option_id: str) -> bool:
    return option_id == CUSTOM_OPTION_ID or option_id.startswith(f"{CUSTOM_OPTION_ID}:")


class Option(BaseModel):
    """A choice offered to the player."""

    id: str
    label: str = ""


class Node(BaseModel):
    """One turn of narrative plus the game state as of that turn.

    Only ``chosen_option_id`` and ``visited`` change after creation.
    """

    id: str = Field(default_factory=new_id)
    parent_id: Optional[str] = None
    depth: int = Field(default=0, ge=0)
    generated_text: str = ""
    available_options: List[Option] = Field(default_factory=list)
    chosen_option_id: Optional[str] = None
    state_snapshot: RunningState = Field(default_factory=RunningState)
    is_terminal: bool = False
    terminal_kind: Optional[TerminalKind] = None
    visited: bool = False
    turn_summary: str = ""
    title: str = ""

    def option(self, option_id: str) -> Optional[Option]:
        for opt in self.available_options:
            if opt.id == option_id:
                return opt
        return None


class Edge(BaseModel):
    """A committed transition ``from_node_id --option_id--> to_node_id``."""

    from_node_id: str
    option_id: str
    to_node_id: str
    label: str = ""


class Session(BaseModel):
    """The complete, serialisable state of one story session."""

    id: str = Field(default_factory=new_id)
    title: str = ""
    root_node_id: str
    current_node_id: str
    nodes_by_id: Dict[str, Node] = Field(default_factory=dict)
    edges: List[Edge] = Field(default_factory=list)
    running_state: RunningState = Field(default_factory=RunningState)
    synopsis: str = ""
    world_schema: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    _child_index: Dict[Tuple[str, str], str] = PrivateAttr(default_factory=dict)
    _incoming: Dict[str, Edge] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        self.reindex()

    def reindex(self) -> None:
        """Rebuild the edge lookups from ``edges``."""
        self._child_index = {
            (e.from_node_id, e.option_id): e.to_node_id for e in self.edges
        }
        self._incoming = {e.to_node_id: e for e in self.edges}

    def touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)


class SessionParams(BaseModel):
    """Parameters for a new session (usually produced by the setup flow)."""

    title: str = ""
    synopsis: str = ""
    opening_text: str = ""
    location: str = ""
    world_schema: Dict[str, Any] = Field(default_factory=dict)


class SessionMeta(BaseModel):
    """Index entry kept by the persistence layer."""

    id: str
    title: str = ""
    created_at: datetime
    updated_at: datetime
