from __future__ import annotations

import logging
import random
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Protocol, TypeVar

from .catalog import Level, normalize_category
from .models import HintOverlay, Item

log = logging.getLogger(__name__)

T = TypeVar("T")


class ItemSource(Protocol):
    """Supplies the ordered items for one run of a level."""

    def select_items(self, level: Level, *, options: Mapping[str, Any]) -> list[Item]:
        ...


class SeededRng:
    """Seeded RNG wrapper to keep deterministic streams explicit."""

    def __init__(self, seed: int) -> None:
        self._rng = random.Random(int(seed))

    def random(self) -> float:
        return self._rng.random()

    def randint(self, a: int, b: int) -> int:
        return self._rng.randint(a, b)

    def choice(self, seq: Sequence[T]) -> T:
        return self._rng.choice(seq)


def shuffle_in_place(values: list[T], rng: SeededRng) -> None:
    for i in range(len(values) - 1, 0, -1):
        j = int(rng.random() * (i + 1))
        values[i], values[j] = values[j], values[i]


def pick_distinct(values: Sequence[T], count: int, rng: SeededRng) -> list[T]:
    if len(values) <= count:
        return list(values[:count])
    pool = list(values)
    shuffle_in_place(pool, rng)
    return pool[:count]


class BankItemSource:
    """Samples a level's pool from a fixed bank of prepared items."""

    def __init__(self, bank: Iterable[Item], *, seed: int) -> None:
        self._bank = tuple(bank)
        self._rng = SeededRng(seed)

    @property
    def bank(self) -> tuple[Item, ...]:
        return self._bank

    def select_items(self, level: Level, *, options: Mapping[str, Any]) -> list[Item]:
        _ = options
        allowed = {normalize_category(c) for c in level.allowed}
        pool = [item for item in self._bank if normalize_category(item.truth) in allowed]
        if not pool:
            log.warning("item bank has no entries for level %s", level.id)
            return []
        return pick_distinct(pool, level.pool_size, self._rng)


# Overlay cues per category: (rotation centres, mirror lines, text cue).
OVERLAY_LIBRARY: dict[str, HintOverlay] = {
    "632": HintOverlay(1, 1, "Watch for six-fold rotation centres."),
    "*632": HintOverlay(1, 2, "Mirrors slice the hexagonal lattice every 30°."),
    "442": HintOverlay(1, 2, "Quarter-turn centres sit on the square grid."),
    "*442": HintOverlay(1, 2, "Both axial and diagonal mirrors accompany 4-fold centres."),
    "4*2": HintOverlay(1, 1, "Glide mirrors run diagonally between 4-fold centres."),
    "333": HintOverlay(1, 0, "Triangles repeat with only 120° rotations."),
    "*333": HintOverlay(1, 3, "Mirrors radiate every 60° around triangular hubs."),
    "3*3": HintOverlay(1, 3, "Alternate mirrors pair with 3-fold rotations."),
    "2222": HintOverlay(1, 0, "Pairs of 180° turns tile the plane."),
    "*2222": HintOverlay(1, 2, "Mirrors cross at right angles with 2-fold centres between."),
    "2*22": HintOverlay(1, 2, "Diagonal mirrors with 2-fold rotations on the axes."),
    "22*": HintOverlay(1, 2, "Vertical mirrors combine with horizontal glides."),
    "22×": HintOverlay(1, 0, "Only glides, no mirrors, shift the brickwork rows."),
    "**": HintOverlay(0, 2, "Parallel mirrors repeat without rotations."),
    "*×": HintOverlay(0, 2, "Vertical mirrors pair with horizontal glides between rows."),
    "××": HintOverlay(0, 0, "Perpendicular glides create staggered motifs."),
    "o": HintOverlay(0, 0, "Pure translation: no mirrors, no rotations."),
}


def overlay_for(category: str) -> HintOverlay:
    overlay = OVERLAY_LIBRARY.get(category)
    if overlay is None:
        return HintOverlay(text_cue=f"Identify the {category} symmetry signature.")
    return overlay


class GeneratedItemSource:
    """Builds a level's pool on demand, cycling through its allowed categories.

    The starting category is drawn from the seeded RNG so repeated runs do not
    always open on the same group.
    """

    def __init__(self, *, seed: int) -> None:
        self._rng = SeededRng(seed)
        self._runs = 0

    def select_items(self, level: Level, *, options: Mapping[str, Any]) -> list[Item]:
        _ = options
        allowed = [normalize_category(c) or c for c in level.allowed]
        if not allowed or level.pool_size <= 0:
            return []
        self._runs += 1
        offset = self._rng.randint(0, len(allowed) - 1)
        items: list[Item] = []
        for index in range(level.pool_size):
            category = allowed[(offset + index) % len(allowed)]
            items.append(
                Item(
                    id=f"{level.id}-{category}-{self._runs}-{index}",
                    truth=category,
                    content_ref=f"orb://{category}",
                    overlay=overlay_for(category),
                    tags=(level.id, "auto"),
                )
            )
        return items
