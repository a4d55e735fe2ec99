"""State reducer: fold one generator turn into the running game state.

The generator is untrusted.  Whatever it declares, the reducer:

- counts turns itself (``turn_count`` always advances by exactly one),
- clamps each progress delta to 0 or 1,
- forces ``terminal`` once either progress counter reaches the threshold.

The result never shares a mutable container with the previous state, so
each node's snapshot stays independent once stored.
"""

from __future__ import annotations

from typing import Optional

from taletree.models.session import Counters, RunningState, TerminalKind
from taletree.models.turn import TurnOutput

HARD_ENDING_THRESHOLD = 4


def _clamp_step(value: int) -> int:
    return 1 if value >= 1 else 0


def apply_delta(
    prev: RunningState,
    output: TurnOutput,
    terminal_threshold: int = HARD_ENDING_THRESHOLD,
) -> RunningState:
    """Return the state after *output*, leaving *prev* untouched."""
    delta = output.state

    location = prev.location
    if delta.location and delta.location.strip():
        location = delta.location.strip()

    # Removals first, then additions: an item both dropped and picked up
    # in the same turn ends up held.
    removed = {item.strip() for item in delta.remove_items}
    inventory = [item for item in prev.inventory if item not in removed]
    for item in delta.add_items:
        item = item.strip()
        if item and item not in inventory:
            inventory.append(item)

    flags = dict(prev.flags)
    for key in delta.clear_flags:
        flags.pop(key, None)
    for key, value in delta.set_flags.items():
        if key:
            flags[key] = bool(value)

    event_log = list(prev.event_log)
    summary = output.summary.strip()
    if summary:
        event_log.append(summary)

    counters = Counters(
        progress_a=prev.counters.progress_a + _clamp_step(output.progress_a),
        progress_b=prev.counters.progress_b + _clamp_step(output.progress_b),
    )

    terminal = (
        prev.terminal
        or output.is_terminal
        or counters.highest() >= terminal_threshold
    )

    return RunningState(
        location=location,
        inventory=inventory,
        flags=flags,
        event_log=event_log,
        counters=counters,
        turn_count=prev.turn_count + 1,
        terminal=terminal,
    )


def resolve_terminal_kind(
    state: RunningState,
    output: TurnOutput,
    terminal_threshold: int = HARD_ENDING_THRESHOLD,
) -> Optional[TerminalKind]:
    """Ending kind for a node holding *state*.

    The declared kind wins when there is one.  A forced ending without a
    declared kind is read off whichever clock ran out.
    """
    if not state.terminal:
        return None
    if output.terminal_kind is not None:
        return output.terminal_kind
    if state.counters.progress_a >= terminal_threshold:
        return TerminalKind.GOOD
    if state.counters.progress_b >= terminal_threshold:
        return TerminalKind.BAD
    return TerminalKind.NEUTRAL
