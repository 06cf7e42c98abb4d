"""Static catalog: symmetry categories, levels and default run tunables."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields, replace

# The 17 wallpaper groups in orbifold notation.
CATEGORIES: tuple[str, ...] = (
    "442",
    "*442",
    "4*2",
    "333",
    "*333",
    "3*3",
    "632",
    "*632",
    "2222",
    "*2222",
    "22×",
    "22*",
    "2*22",
    "**",
    "*×",
    "××",
    "o",
)

# Picker layout, row-major; None marks an empty slot.
CATEGORY_GRID_LAYOUT: tuple[tuple[str | None, ...], ...] = (
    ("442", "*442", "4*2", "333", "*333", "3*3"),
    ("632", "*632", "2222", "*2222", "22×", "22*"),
    ("2*22", "**", "*×", "××", "o", None),
)


def normalize_category(value: str | None) -> str | None:
    """Map ASCII ``x`` to ``×``; unknown labels are returned unchanged."""

    if not value:
        return value
    normalized = str(value).strip().replace("x", "×")
    return normalized if normalized in CATEGORIES else value


@dataclass(frozen=True, slots=True)
class Gate:
    min_accuracy: float
    max_median_item_seconds: float


@dataclass(frozen=True, slots=True)
class Level:
    id: str
    label: str
    allowed: tuple[str, ...]
    pool_size: int
    run_seconds: float
    gate: Gate | None = None


LEVELS: tuple[Level, ...] = (
    Level(
        id="L1-rotate",
        label="Rotate",
        allowed=("632", "442", "333", "2222"),
        pool_size=10,
        run_seconds=90.0,
        gate=Gate(min_accuracy=0.9, max_median_item_seconds=3.0),
    ),
    Level(
        id="L2-reflect",
        label="Reflect",
        allowed=("*632", "*442", "*333", "*2222"),
        pool_size=10,
        run_seconds=90.0,
        gate=Gate(min_accuracy=0.9, max_median_item_seconds=3.0),
    ),
    Level(
        id="L3-mixed",
        label="Mixed",
        allowed=("3*3", "4*2", "2*22", "22*"),
        pool_size=10,
        run_seconds=90.0,
        gate=Gate(min_accuracy=0.9, max_median_item_seconds=3.0),
    ),
    Level(
        id="L4-glide",
        label="Glide",
        allowed=("22×",),
        pool_size=10,
        run_seconds=90.0,
        gate=Gate(min_accuracy=0.9, max_median_item_seconds=3.0),
    ),
    Level(
        id="L5-basics",
        label="Basics",
        allowed=("**", "*×", "××", "o"),
        pool_size=10,
        run_seconds=90.0,
        gate=Gate(min_accuracy=0.9, max_median_item_seconds=3.0),
    ),
)

DEFAULT_LEVEL_ID = LEVELS[0].id
ALWAYS_UNLOCKED_LEVEL_IDS: tuple[str, ...] = (DEFAULT_LEVEL_ID,)


def get_level(level_id: str | None) -> Level | None:
    for level in LEVELS:
        if level.id == level_id:
            return level
    return None


def next_level(level_id: str) -> Level | None:
    """Return the level after ``level_id`` in catalog order, if any."""

    for idx, level in enumerate(LEVELS):
        if level.id == level_id:
            return LEVELS[idx + 1] if idx + 1 < len(LEVELS) else None
    return None


@dataclass(frozen=True, slots=True)
class RunConfig:
    time_constant_tau_s: float = 6.0
    base_points: int = 100
    wrong_tap_penalty: int = 5
    max_wrongs_per_item: int = 3
    hint_time_penalty_s: float = 15.0
    hint_run_deduct_s: float = 15.0
    streak_start: int = 5
    streak_bonus_per_item: int = 10

    def __post_init__(self) -> None:
        if self.time_constant_tau_s <= 0:
            raise ValueError("time_constant_tau_s must be > 0")
        if self.base_points < 0:
            raise ValueError("base_points must be >= 0")
        if self.wrong_tap_penalty < 0:
            raise ValueError("wrong_tap_penalty must be >= 0")
        if self.max_wrongs_per_item < 1:
            raise ValueError("max_wrongs_per_item must be >= 1")
        if self.hint_time_penalty_s < 0 or self.hint_run_deduct_s < 0:
            raise ValueError("hint penalties must be >= 0")
        if self.streak_start < 1:
            raise ValueError("streak_start must be >= 1")

    def with_overrides(self, overrides: Mapping[str, object] | None) -> RunConfig:
        if not overrides:
            return self
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValueError(f"Unknown run config field(s): {', '.join(unknown)}")
        return replace(self, **overrides)


DEFAULT_RUN_CONFIG = RunConfig()


@dataclass(frozen=True, slots=True)
class FeatureToggles:
    timer: bool = True
    hints: bool = True
    penalties: bool = True
    streaks: bool = True
    gating: bool = True
    persistence: bool = True
    telemetry: bool = False
    overlays: bool = True

    def with_overrides(self, overrides: Mapping[str, bool] | None) -> FeatureToggles:
        if not overrides:
            return self
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValueError(f"Unknown feature toggle(s): {', '.join(unknown)}")
        return replace(self, **{k: bool(v) for k, v in overrides.items()})
