from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .catalog import ALWAYS_UNLOCKED_LEVEL_IDS, DEFAULT_LEVEL_ID, get_level

HINT_ORDERS: tuple[int, ...] = (1, 2, 3, 4)


class RunStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    ENDED = "ended"


class ItemStatus(StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    RESOLVED = "resolved"


@dataclass(frozen=True, slots=True)
class HintOverlay:
    rotation_centres: int = 0
    mirror_lines: int = 0
    text_cue: str = ""


@dataclass(frozen=True, slots=True)
class Item:
    id: str
    truth: str
    content_ref: str = ""
    overlay: HintOverlay | None = None
    tags: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ItemResult:
    """Outcome of one item. Replaced (never mutated) while the item is active."""

    item_id: str
    truth: str
    wrongs: int = 0
    hints_used: int = 0
    item_time_ms: float = 0.0
    effective_time_ms: float = 0.0
    points: int = 0
    assisted: bool = False
    picked: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "truth": self.truth,
            "wrongs": int(self.wrongs),
            "hints_used": int(self.hints_used),
            "item_time_ms": float(self.item_time_ms),
            "effective_time_ms": float(self.effective_time_ms),
            "points": int(self.points),
            "assisted": bool(self.assisted),
            "picked": self.picked,
        }


@dataclass(slots=True)
class HintState:
    count: int = 0
    active: list[bool] = field(default_factory=lambda: [False] * len(HINT_ORDERS))

    def reveal(self, order: int) -> None:
        self.count = order
        self.active[order - 1] = True


@dataclass(frozen=True, slots=True)
class RunSnapshot:
    """Immutable copy of the run state handed to listeners and callers."""

    level_id: str
    items: tuple[Item, ...]
    index: int
    run_time_remaining_s: float
    score: int
    current_streak: int
    longest_streak: int
    stats: tuple[ItemResult, ...]
    status: RunStatus


@dataclass(slots=True)
class RunState:
    level_id: str
    items: tuple[Item, ...]
    run_time_remaining_s: float
    index: int = 0
    score: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    stats: list[ItemResult] = field(default_factory=list)
    status: RunStatus = RunStatus.IDLE

    def current_item(self) -> Item | None:
        if 0 <= self.index < len(self.items):
            return self.items[self.index]
        return None

    def snapshot(self) -> RunSnapshot:
        return RunSnapshot(
            level_id=self.level_id,
            items=self.items,
            index=self.index,
            run_time_remaining_s=self.run_time_remaining_s,
            score=self.score,
            current_streak=self.current_streak,
            longest_streak=self.longest_streak,
            stats=tuple(self.stats),
            status=self.status,
        )


@dataclass(frozen=True, slots=True)
class RunSummary:
    user_id: str
    level_id: str
    timestamp: str
    total_score: int
    accuracy: float
    median_item_seconds: float
    longest_streak: int
    reason: str
    items: tuple[ItemResult, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "level_id": self.level_id,
            "timestamp": self.timestamp,
            "total_score": int(self.total_score),
            "accuracy": float(self.accuracy),
            "median_item_seconds": float(self.median_item_seconds),
            "longest_streak": int(self.longest_streak),
            "reason": self.reason,
            "items": [r.to_dict() for r in self.items],
        }


@dataclass(slots=True)
class FeatureWeakness:
    rotations: int = 0
    mirrors: int = 0
    glides: int = 0


@dataclass(slots=True)
class Progress:
    """Cross-run progress. Owned by the engine between runs, stored externally."""

    unlocked_levels: list[str] = field(default_factory=lambda: list(ALWAYS_UNLOCKED_LEVEL_IDS))
    confusion_matrix: dict[str, dict[str, int]] = field(default_factory=dict)
    feature_weakness: FeatureWeakness = field(default_factory=FeatureWeakness)
    completed_levels: list[str] = field(default_factory=list)
    last_level_id: str = DEFAULT_LEVEL_ID

    def copy(self) -> Progress:
        return Progress.from_dict(self.to_dict())

    def normalized(self) -> Progress:
        """Return a copy with the invariants the engine relies on restored."""

        out = self.copy()
        if get_level(out.last_level_id) is None:
            out.last_level_id = DEFAULT_LEVEL_ID
        for level_id in (*ALWAYS_UNLOCKED_LEVEL_IDS, out.last_level_id):
            if level_id not in out.unlocked_levels:
                out.unlocked_levels.append(level_id)
        return out

    def to_dict(self) -> dict[str, Any]:
        return {
            "unlockedLevels": list(self.unlocked_levels),
            "confusionMatrix": {t: dict(row) for t, row in self.confusion_matrix.items()},
            "featureWeakness": {
                "rotations": self.feature_weakness.rotations,
                "mirrors": self.feature_weakness.mirrors,
                "glides": self.feature_weakness.glides,
            },
            "completedLevels": list(self.completed_levels),
            "lastLevelId": self.last_level_id,
        }

    @classmethod
    def from_dict(cls, data: object) -> Progress:
        if not isinstance(data, dict):
            return cls()
        unlocked = data.get("unlockedLevels")
        raw_matrix = data.get("confusionMatrix")
        matrix: dict[str, dict[str, int]] = {}
        if isinstance(raw_matrix, dict):
            for truth, row in raw_matrix.items():
                if isinstance(row, dict):
                    matrix[str(truth)] = {str(p): int(n) for p, n in row.items()}
        raw_weak = data.get("featureWeakness")
        weak = FeatureWeakness()
        if isinstance(raw_weak, dict):
            weak = FeatureWeakness(
                rotations=int(raw_weak.get("rotations", 0)),
                mirrors=int(raw_weak.get("mirrors", 0)),
                glides=int(raw_weak.get("glides", 0)),
            )
        completed = data.get("completedLevels")
        return cls(
            unlocked_levels=[str(v) for v in unlocked] if isinstance(unlocked, list) else [],
            confusion_matrix=matrix,
            feature_weakness=weak,
            completed_levels=[str(v) for v in completed] if isinstance(completed, list) else [],
            last_level_id=str(data.get("lastLevelId") or DEFAULT_LEVEL_ID),
        )


def median(values: list[float]) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2.0
    return float(ordered[mid])


def non_assisted(results: list[ItemResult] | tuple[ItemResult, ...]) -> list[ItemResult]:
    return [r for r in results if not r.assisted]
