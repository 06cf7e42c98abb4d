"""Item scoring and level gating. Pure functions, no engine state."""

from __future__ import annotations

import math

from .catalog import DEFAULT_RUN_CONFIG, Gate, RunConfig, normalize_category
from .models import ItemResult, median, non_assisted

# Multiplier per hints used. Hint count is bounded to [0, 4] by the hint
# protocol; lookups clamp into that range anyway.
HINT_FACTOR_TABLE: tuple[float, ...] = (1.0, 0.75, 0.5, 0.25, 0.0)


def clamp01(x: float) -> float:
    return 0.0 if x <= 0.0 else 1.0 if x >= 1.0 else float(x)


def hint_factor(hints: int) -> float:
    idx = min(max(int(hints), 0), len(HINT_FACTOR_TABLE) - 1)
    return HINT_FACTOR_TABLE[idx]


def compute_item_points(result: ItemResult, config: RunConfig = DEFAULT_RUN_CONFIG) -> int:
    """Points for a correctly answered item, before any streak bonus.

    points = max(0, floor(base * exp(-t_eff / tau) * 0.5**wrongs * h[hints]) - penalty * wrongs)

    where t_eff is the raw item time plus ``hint_time_penalty_s`` per hint.
    Assisted items, four hints, or reaching the wrong-guess cap score 0.
    """

    hints = int(result.hints_used)
    wrongs = int(result.wrongs)
    if result.assisted or hints >= 4 or wrongs >= config.max_wrongs_per_item:
        return 0

    effective_s = result.item_time_ms / 1000.0 + config.hint_time_penalty_s * hints
    speed = clamp01(math.exp(-effective_s / config.time_constant_tau_s))
    guess_decay = 0.5**wrongs
    base = math.floor(config.base_points * speed * guess_decay * hint_factor(hints))
    return max(0, int(base) - config.wrong_tap_penalty * wrongs)


def is_clean_correct(result: ItemResult) -> bool:
    """Counted as correct in the run accuracy."""

    return (
        not result.assisted
        and result.points > 0
        and result.picked is not None
        and normalize_category(result.truth) == normalize_category(result.picked)
    )


def run_accuracy(results: list[ItemResult] | tuple[ItemResult, ...]) -> float:
    attempted = len(results)
    if attempted == 0:
        return 0.0
    return sum(1 for r in results if is_clean_correct(r)) / attempted


def median_item_seconds(results: list[ItemResult] | tuple[ItemResult, ...]) -> float:
    return median([r.item_time_ms / 1000.0 for r in non_assisted(results)])


def passes_gate(gate: Gate | None, *, accuracy: float, median_item_seconds: float) -> bool:
    """Accuracy must reach the minimum; the median must be strictly under the cap."""

    if gate is None:
        return True
    return accuracy >= gate.min_accuracy and median_item_seconds < gate.max_median_item_seconds
