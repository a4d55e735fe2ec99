from __future__ import annotations

from taletree.engine import graph
from taletree.engine.phase import (
    DEFAULT_THRESHOLDS,
    PhaseThresholds,
    classify,
    phase_directive,
    phase_label,
)
from taletree.models.session import Session
from taletree.models.turn import HistoryEntry, TurnContext


def build_context(
    session: Session,
    node_id: str,
    window: int = 6,
    thresholds: PhaseThresholds = DEFAULT_THRESHOLDS,
) -> TurnContext:
    """Generator context for continuing the story from *node_id*.

    History covers the last *window* nodes of the path to *node_id*; each
    entry's ``chosen`` is the label of the edge taken out of it.  The state is
    the node's own snapshot, never the session's live state, so a prefetch
    launched from an older node sees the same context a live turn would.
    """
    path = graph.path_to_root(session, node_id)
    recent = path[-window:]

    history: list[HistoryEntry] = []
    for i, nid in enumerate(recent):
        node = session.nodes_by_id[nid]
        chosen = ""
        if i + 1 < len(recent):
            edge = graph.incoming_edge(session, recent[i + 1])
            chosen = edge.label if edge else ""
        history.append(HistoryEntry(text=node.generated_text, chosen=chosen))

    node = session.nodes_by_id[node_id]
    state = node.state_snapshot.model_copy(deep=True)
    phase = classify(state.turn_count, state.counters, thresholds)
    return TurnContext(
        synopsis=session.synopsis,
        world_schema=dict(session.world_schema),
        history=history,
        state=state,
        phase=phase.name,
        phase_label=phase_label(phase),
        directive=phase_directive(phase),
    )
