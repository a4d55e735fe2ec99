"""Narrative phase classification.

The phase is derived from two monotonically increasing inputs: the turn
count and the highest progress counter.  Each input maps to a phase through
its own sorted threshold list, and the result is the later of the two, so
non-decreasing inputs can never move the phase backwards.
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from enum import IntEnum
from typing import Tuple

from taletree.models.session import Counters


class Phase(IntEnum):
    OPENING = 0
    RISING = 1
    CLIMAX = 2
    RESOLUTION = 3


@dataclass(frozen=True)
class PhaseThresholds:
    """Entry points of RISING, CLIMAX and RESOLUTION for each input."""

    turns: Tuple[int, int, int] = (3, 7, 10)
    counters: Tuple[int, int, int] = (1, 3, 4)

    def __post_init__(self) -> None:
        for name, values in (("turns", self.turns), ("counters", self.counters)):
            if len(values) != len(Phase) - 1:
                raise ValueError(f"{name} needs {len(Phase) - 1} thresholds, got {values}")
            if list(values) != sorted(values):
                raise ValueError(f"{name} thresholds must be non-decreasing, got {values}")


DEFAULT_THRESHOLDS = PhaseThresholds()


def classify(
    turn_count: int,
    counters: Counters,
    thresholds: PhaseThresholds = DEFAULT_THRESHOLDS,
) -> Phase:
    by_turns = bisect_right(thresholds.turns, turn_count)
    by_counters = bisect_right(thresholds.counters, counters.highest())
    return Phase(max(by_turns, by_counters))


_LABELS = {
    Phase.OPENING: "Act 1 (Opening)",
    Phase.RISING: "Act 2 (Rising action)",
    Phase.CLIMAX: "Act 3 (Climax)",
    Phase.RESOLUTION: "Act 4 (Resolution)",
}

_DIRECTIVES = {
    Phase.OPENING: (
        "Take your time. Describe the physical surroundings, the mood and the "
        "key objects or characters in depth so the player can settle in. "
        "Penalties stay at the level of warnings.\n"
        "Choices: favour exploration and information gathering."
    ),
    Phase.RISING: (
        "Develop the conflict. Drop clues about the hidden plot and put "
        "physical or psychological obstacles in the way. Actions have a cost.\n"
        "Choices: make the player weigh risk against safety."
    ),
    Phase.CLIMAX: (
        "Push tension to its peak. The true threat must surface directly in "
        "front of the player. Negative flags turn into serious consequences.\n"
        "Choices: each one carries a decisive, possibly irreversible risk."
    ),
    Phase.RESOLUTION: (
        "Bring the story to a close. Introduce no new clues or allies.\n"
        "Choices: let the player make the final decision toward the win "
        "condition, or end the game now if the loss condition has been met."
    ),
}


def phase_label(phase: Phase) -> str:
    return _LABELS[phase]


def phase_directive(phase: Phase) -> str:
    """Pacing instructions for the generator at *phase*."""
    return f"[PHASE: {phase_label(phase)}]\n{_DIRECTIVES[phase]}"
