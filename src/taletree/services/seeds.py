from __future__ import annotations

import random

from taletree.models.session import new_id
from taletree.models.setup import StorySeed

_SEED_POOL = [
    StorySeed(
        id="modern_detective",
        title="Clues in the Rain",
        hook="A murder mystery in a rain-soaked modern city",
        tags=["modern", "mystery", "city"],
        tone="tense",
    ),
    StorySeed(
        id="fantasy_politics",
        title="Behind the Throne",
        hook="A cutthroat court-intrigue thriller in a fantasy kingdom",
        tags=["fantasy", "politics", "thriller"],
        tone="suffocating",
    ),
    StorySeed(
        id="haunted_escape",
        title="The Locked House",
        hook="An endless escape room inside a haunted mansion",
        tags=["horror", "escape", "psychological"],
        tone="eerie",
    ),
    StorySeed(
        id="cyberpunk_heist",
        title="Shadows Under Neon",
        hook="Breaking into a megacorp's server vault in a cyberpunk city",
        tags=["cyberpunk", "hacking", "infiltration"],
        tone="fast-paced",
    ),
    StorySeed(
        id="post_apocalypse",
        title="Age of Ash",
        hook="Survival in a wasteland that has run out of everything",
        tags=["apocalypse", "survival", "wasteland"],
        tone="desperate",
    ),
    StorySeed(
        id="space_drifter",
        title="Silent Orbit",
        hook="A crew member wakes from cryosleep on a stranded starship",
        tags=["sci-fi", "space", "mystery"],
        tone="isolated",
    ),
    StorySeed(
        id="modern_fantasy",
        title="The City's Other Side",
        hook="A hidden war between mages beneath ordinary city life",
        tags=["urban fantasy", "action", "hidden world"],
        tone="thrilling",
    ),
    StorySeed(
        id="zombie_defense",
        title="The Last Line",
        hook="Holding a supermarket in the first hours of a zombie outbreak",
        tags=["zombies", "defense", "survival"],
        tone="urgent",
    ),
]


def all_seeds() -> list[StorySeed]:
    return list(_SEED_POOL)


def random_seeds(count: int = 3, rng: random.Random | None = None) -> list[StorySeed]:
    """Sample *count* seeds, each with a fresh id suffix so repeated draws stay distinct."""
    rng = rng or random
    picked = rng.sample(_SEED_POOL, k=max(0, min(count, len(_SEED_POOL))))
    return [seed.model_copy(update={"id": f"{seed.id}_{new_id()}"}) for seed in picked]
