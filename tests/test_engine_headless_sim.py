from __future__ import annotations

from dataclasses import dataclass

import pytest

from symmetry_trainer.catalog import get_level
from symmetry_trainer.engine import RunEngine
from symmetry_trainer.events import ItemActive, RunEnded, RunEvent
from symmetry_trainer.item_source import GeneratedItemSource
from symmetry_trainer.progress import InMemoryProgressStore


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def _play(engine: RunEngine, clock: FakeClock, *, seconds_per_item: float, frame_ms: float = 100.0) -> RunEnded:
    """Answer every item correctly after ``seconds_per_item``, ticking like a frame loop."""

    ended: list[RunEnded] = []
    current: list[ItemActive] = []
    engine.on(RunEvent.ITEM_ACTIVE, current.append)
    engine.on(RunEvent.RUN_ENDED, ended.append)

    engine.start_run("L1-rotate")
    while not ended:
        waited = 0.0
        while waited + 1e-9 < seconds_per_item and not ended:
            clock.advance(frame_ms / 1000.0)
            engine.on_tick(frame_ms)
            waited += frame_ms / 1000.0
        if ended:
            break
        engine.on_guess(current[-1].item.truth)
    return ended[0]


def test_fast_clean_run_passes_gate_and_unlocks_next_level() -> None:
    clock = FakeClock()
    store = InMemoryProgressStore()
    engine = RunEngine(clock=clock, item_source=GeneratedItemSource(seed=11), store=store)

    ended = _play(engine, clock, seconds_per_item=1.0)

    assert ended.reason == "completed"
    assert ended.gate_passed is True
    assert ended.summary.accuracy == pytest.approx(1.0)
    assert ended.summary.median_item_seconds == pytest.approx(1.0)
    assert len(ended.summary.items) == 10
    # exp(-1/6) * 100 -> 84 each; items 5..10 earn the streak bonus.
    assert ended.summary.total_score == 84 * 10 + 10 * 6
    assert ended.summary.longest_streak == 10

    progress = store.load_progress()
    assert "L2-reflect" in progress.unlocked_levels
    assert progress.completed_levels == ["L1-rotate"]
    assert progress.last_level_id == "L2-reflect"
    assert [s.level_id for s in store.load_run_history()] == ["L1-rotate"]
    assert [lvl.id for lvl in engine.unlocked_levels()] == ["L1-rotate", "L2-reflect"]


def test_slow_run_fails_gate_and_keeps_level_locked() -> None:
    clock = FakeClock()
    store = InMemoryProgressStore()
    engine = RunEngine(clock=clock, item_source=GeneratedItemSource(seed=3), store=store)

    ended = _play(engine, clock, seconds_per_item=4.0)

    assert ended.reason == "completed"
    assert ended.summary.median_item_seconds == pytest.approx(4.0)
    assert ended.gate_passed is False
    progress = store.load_progress()
    assert progress.unlocked_levels == ["L1-rotate"]
    assert progress.last_level_id == "L1-rotate"


def test_run_clock_expiry_mid_run_times_out() -> None:
    clock = FakeClock()
    engine = RunEngine(clock=clock, item_source=GeneratedItemSource(seed=5), store=InMemoryProgressStore())
    level = get_level("L1-rotate")
    assert level is not None

    ended = _play(engine, clock, seconds_per_item=12.0)

    assert ended.reason == "timeout"
    # 90 s at 12 s per item: seven answered, the eighth cut off by the clock.
    assert len(ended.summary.items) == 8
    assert ended.summary.items[-1].assisted is True
    assert all(not r.assisted for r in ended.summary.items[:-1])
    assert ended.gate_passed is False
    assert engine.is_running is False
