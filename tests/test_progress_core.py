from __future__ import annotations

from dataclasses import dataclass

from symmetry_trainer.catalog import Gate, Level
from symmetry_trainer.engine import RunEngine
from symmetry_trainer.models import Item, ItemResult, Progress, RunSummary
from symmetry_trainer.progress import InMemoryProgressStore, apply_run


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def _summary(level_id: str, *items: ItemResult) -> RunSummary:
    return RunSummary(
        user_id="local",
        level_id=level_id,
        timestamp="2026-01-01T00:00:00Z",
        total_score=0,
        accuracy=0.0,
        median_item_seconds=0.0,
        longest_streak=0,
        reason="completed",
        items=items,
    )


def test_apply_run_counts_confusions_and_feature_weakness() -> None:
    progress = Progress()
    summary = _summary(
        "L1-rotate",
        ItemResult(item_id="a", truth="632", picked="442", wrongs=3, assisted=True),
        ItemResult(item_id="b", truth="632", picked="442", wrongs=3, assisted=True, hints_used=1),
        ItemResult(item_id="c", truth="333", picked="333", hints_used=3),
        ItemResult(item_id="d", truth="2222", picked=None, hints_used=4, assisted=True),
    )

    apply_run(progress, summary, gate_passed=False)

    assert progress.confusion_matrix == {"632": {"442": 2}}
    assert progress.feature_weakness.rotations == 3
    assert progress.feature_weakness.mirrors == 2
    assert progress.feature_weakness.glides == 2
    assert progress.unlocked_levels == ["L1-rotate"]
    assert progress.last_level_id == "L1-rotate"


def test_apply_run_gate_pass_unlocks_next_once() -> None:
    progress = Progress()
    apply_run(progress, _summary("L1-rotate"), gate_passed=True)
    apply_run(progress, _summary("L1-rotate"), gate_passed=True)

    assert progress.unlocked_levels == ["L1-rotate", "L2-reflect"]
    assert progress.completed_levels == ["L1-rotate"]
    assert progress.last_level_id == "L2-reflect"


def test_apply_run_last_level_has_no_successor() -> None:
    progress = Progress()
    apply_run(progress, _summary("L5-basics"), gate_passed=True)
    assert progress.last_level_id == "L5-basics"
    assert progress.completed_levels == ["L5-basics"]


def test_progress_normalization_restores_default_unlocks() -> None:
    loaded = Progress.from_dict({"unlockedLevels": [], "lastLevelId": "L3-mixed"})
    normalized = loaded.normalized()
    assert normalized.unlocked_levels == ["L1-rotate", "L3-mixed"]

    unknown = Progress.from_dict({"lastLevelId": "gone"}).normalized()
    assert unknown.last_level_id == "L1-rotate"
    assert Progress.from_dict("garbage") == Progress()


def test_engine_loads_normalized_progress_from_store() -> None:
    store = InMemoryProgressStore(Progress(unlocked_levels=[], last_level_id="L2-reflect"))
    engine = RunEngine(clock=FakeClock(), store=store)
    assert [lvl.id for lvl in engine.unlocked_levels()] == ["L1-rotate", "L2-reflect"]


class BrokenLoadStore(InMemoryProgressStore):
    def load_progress(self) -> Progress:
        raise OSError("unreadable")


def test_engine_falls_back_to_default_progress_when_load_fails() -> None:
    engine = RunEngine(clock=FakeClock(), store=BrokenLoadStore())
    assert engine.progress().unlocked_levels == ["L1-rotate"]


def test_engine_progress_is_a_copy() -> None:
    engine = RunEngine(clock=FakeClock(), store=InMemoryProgressStore())
    progress = engine.progress()
    progress.unlocked_levels.append("L5-basics")
    assert "L5-basics" not in engine.progress().unlocked_levels


def test_max_wrongs_run_records_confusion_in_engine_progress() -> None:
    level = Level(
        id="L1-rotate",
        label="Rotate",
        allowed=("632", "442"),
        pool_size=1,
        run_seconds=90.0,
        gate=Gate(min_accuracy=0.9, max_median_item_seconds=3.0),
    )
    engine = RunEngine(clock=FakeClock(), store=InMemoryProgressStore())
    engine.start_run(level=level, items=[Item(id="x", truth="632")])
    for guess in ("442", "333", "*632"):
        engine.on_guess(guess)

    assert engine.is_running is False
    assert engine.progress().confusion_matrix == {"632": {"*632": 1}}
