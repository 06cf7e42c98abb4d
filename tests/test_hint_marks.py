from __future__ import annotations

import os
from dataclasses import dataclass

os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")

from symmetry_trainer.app import HintMarks  # noqa: E402
from symmetry_trainer.catalog import Gate, Level  # noqa: E402
from symmetry_trainer.engine import RunEngine  # noqa: E402
from symmetry_trainer.events import RunEvent  # noqa: E402
from symmetry_trainer.models import HintOverlay, Item  # noqa: E402
from symmetry_trainer.progress import InMemoryProgressStore  # noqa: E402


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t


LEVEL = Level(
    id="L2-reflect",
    label="Reflect",
    allowed=("*632", "*442"),
    pool_size=2,
    run_seconds=90.0,
    gate=Gate(min_accuracy=0.9, max_median_item_seconds=3.0),
)


def _setup() -> tuple[RunEngine, HintMarks, list[str]]:
    marks = HintMarks()
    engine = RunEngine(clock=FakeClock(), renderers=marks.renderers(), store=InMemoryProgressStore())
    reveals: list[str] = []
    engine.on(RunEvent.ITEM_ACTIVE, lambda e: reveals.append(marks.track(e.item)))
    return engine, marks, reveals


def test_hint_tiers_fill_in_overlay_marks() -> None:
    engine, marks, _ = _setup()
    items = [
        Item(id="a", truth="*632", overlay=HintOverlay(rotation_centres=1, mirror_lines=2, text_cue="Mirrors every 30°.")),
        Item(id="b", truth="*442"),
    ]
    engine.start_run(level=LEVEL, items=items)
    assert (marks.centres, marks.mirrors, marks.cue) == (0, 0, "")

    engine.on_hint_request(1)
    assert marks.centres == 1 and marks.mirrors == 0
    engine.on_hint_request(2)
    assert marks.mirrors == 2
    engine.on_hint_request(3)
    assert marks.cue == "Mirrors every 30°."


def test_fourth_hint_reveals_target_before_next_item() -> None:
    engine, marks, reveals = _setup()
    engine.start_run(level=LEVEL, items=[Item(id="a", truth="*632"), Item(id="b", truth="*442")])

    for order in (1, 2, 3, 4):
        engine.on_hint_request(order)

    assert reveals == ["", "Target: *632"]
    assert marks.target == ""
    assert marks.cue == ""


def test_item_without_overlay_falls_back_to_library_cue() -> None:
    engine, marks, _ = _setup()
    engine.start_run(level=LEVEL, items=[Item(id="a", truth="*442"), Item(id="b", truth="*632")])

    for order in (1, 2, 3):
        engine.on_hint_request(order)

    assert marks.mirrors == 2
    assert marks.cue == "Both axial and diagonal mirrors accompany 4-fold centres."


def test_renderer_for_stale_item_is_ignored() -> None:
    marks = HintMarks()
    marks.track(Item(id="a", truth="632", overlay=HintOverlay(1, 1, "cue")))

    renderers = marks.renderers()
    renderers.hint1("other")
    renderers.hint4("other")

    assert marks.centres == 0
    assert marks.target == ""
