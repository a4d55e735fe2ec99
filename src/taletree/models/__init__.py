from taletree.models.session import (
    Counters,
    Edge,
    Node,
    Option,
    RunningState,
    Session,
    SessionMeta,
    SessionParams,
    TerminalKind,
)
from taletree.models.turn import HistoryEntry, StateDelta, TurnContext, TurnOutput
from taletree.models.setup import Question, Questionnaire, StorySeed, Synopsis

__all__ = [
    "Counters",
    "Edge",
    "Node",
    "Option",
    "RunningState",
    "Session",
    "SessionMeta",
    "SessionParams",
    "TerminalKind",
    "HistoryEntry",
    "StateDelta",
    "TurnContext",
    "TurnOutput",
    "Question",
    "Questionnaire",
    "StorySeed",
    "Synopsis",
]
