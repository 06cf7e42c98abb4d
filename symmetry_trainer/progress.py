from __future__ import annotations

from typing import Protocol

from .catalog import next_level, normalize_category
from .models import ItemResult, Progress, RunSummary


class ProgressStore(Protocol):
    """Loads and saves cross-run progress and the run history."""

    def load_progress(self) -> Progress:
        ...

    def save_progress(self, progress: Progress) -> None:
        ...

    def save_run_summary(self, summary: RunSummary) -> None:
        ...

    def load_run_history(self) -> list[RunSummary]:
        ...

    def clear(self) -> None:
        ...


class InMemoryProgressStore:
    def __init__(self, progress: Progress | None = None) -> None:
        self._progress = Progress() if progress is None else progress.copy()
        self._runs: list[RunSummary] = []

    def load_progress(self) -> Progress:
        return self._progress.copy()

    def save_progress(self, progress: Progress) -> None:
        self._progress = progress.copy()

    def save_run_summary(self, summary: RunSummary) -> None:
        self._runs.append(summary)

    def load_run_history(self) -> list[RunSummary]:
        return list(self._runs)

    def clear(self) -> None:
        self._progress = Progress()
        self._runs.clear()


def record_confusion(progress: Progress, result: ItemResult) -> None:
    truth = normalize_category(result.truth)
    picked = normalize_category(result.picked)
    if not truth or not picked or truth == picked:
        return
    row = progress.confusion_matrix.setdefault(truth, {})
    row[picked] = row.get(picked, 0) + 1


def record_feature_weakness(progress: Progress, result: ItemResult) -> None:
    # Hint tiers reveal rotations, then mirrors, then glides.
    hints = result.hints_used
    weak = progress.feature_weakness
    if hints >= 1:
        weak.rotations += 1
    if hints >= 2:
        weak.mirrors += 1
    if hints >= 3:
        weak.glides += 1


def apply_run(progress: Progress, summary: RunSummary, *, gate_passed: bool) -> None:
    """Fold a finished run into ``progress`` in place."""

    for result in summary.items:
        record_confusion(progress, result)
        record_feature_weakness(progress, result)

    if not gate_passed:
        progress.last_level_id = summary.level_id
        return

    if summary.level_id not in progress.completed_levels:
        progress.completed_levels.append(summary.level_id)
    upcoming = next_level(summary.level_id)
    if upcoming is None:
        progress.last_level_id = summary.level_id
        return
    if upcoming.id not in progress.unlocked_levels:
        progress.unlocked_levels.append(upcoming.id)
    progress.last_level_id = upcoming.id
