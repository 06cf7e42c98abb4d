"""Run engine: sequences items, evaluates guesses and hints, scores and gates a run.

All mutation happens synchronously inside the public methods. There is no
background timer; the caller advances the run clock through ``on_tick``.
Listeners only ever receive frozen snapshots.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any

from .catalog import (
    DEFAULT_RUN_CONFIG,
    LEVELS,
    FeatureToggles,
    Level,
    RunConfig,
    get_level,
    normalize_category,
)
from .clock import Clock, RealClock
from .events import (
    EventBus,
    GuessEvaluated,
    HintUsed,
    ItemActive,
    ItemResolved,
    Listener,
    RunEnded,
    RunEvent,
    RunStarted,
    RunTick,
    ScoreUpdated,
)
from .item_source import GeneratedItemSource, ItemSource
from .models import (
    HINT_ORDERS,
    HintState,
    Item,
    ItemResult,
    ItemStatus,
    Progress,
    RunSnapshot,
    RunState,
    RunStatus,
    RunSummary,
)
from .progress import ProgressStore, apply_run
from .scoring import compute_item_points, median_item_seconds, passes_gate, run_accuracy

log = logging.getLogger(__name__)


class RunEngineError(Exception):
    pass


class UnknownLevelError(RunEngineError, KeyError):
    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class EmptyItemPoolError(RunEngineError, ValueError):
    pass


def _noop_renderer(item_id: str) -> None:
    _ = item_id


@dataclass(frozen=True, slots=True)
class HintRenderers:
    """Presentation side effects for each hint tier, called with the item id."""

    hint1: Callable[[str], None] = _noop_renderer
    hint2: Callable[[str], None] = _noop_renderer
    hint3: Callable[[str], None] = _noop_renderer
    hint4: Callable[[str], None] = _noop_renderer

    def for_order(self, order: int) -> Callable[[str], None]:
        return (self.hint1, self.hint2, self.hint3, self.hint4)[order - 1]


@dataclass(frozen=True, slots=True)
class TelemetryRecord:
    event: str
    timestamp: str
    data: dict[str, Any]


@dataclass(frozen=True, slots=True)
class ActiveItemView:
    """Read-only view of the item currently on screen."""

    item: Item
    index: int
    result: ItemResult
    hints_revealed: tuple[bool, ...]
    rejected: frozenset[str]
    elapsed_ms: float


def _utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time()))


class RunEngine:
    """Runs one timed classification session at a time.

    Lifecycle per run: idle -> running -> ended. After ``end_run`` the engine
    drops the finished run and is ready for the next ``start_run``.
    """

    def __init__(
        self,
        *,
        clock: Clock | None = None,
        item_source: ItemSource | None = None,
        renderers: HintRenderers | None = None,
        store: ProgressStore | None = None,
        user_id: str = "local",
        run_config: RunConfig = DEFAULT_RUN_CONFIG,
        features: FeatureToggles | None = None,
        telemetry_sink: Callable[[TelemetryRecord], None] | None = None,
        seed: int = 0,
    ) -> None:
        self._clock: Clock = RealClock() if clock is None else clock
        self._item_source: ItemSource = GeneratedItemSource(seed=seed) if item_source is None else item_source
        self._renderers = HintRenderers() if renderers is None else renderers
        self._store = store
        self._user_id = str(user_id)
        self._base_config = run_config
        self._base_features = FeatureToggles() if features is None else features
        self._telemetry_sink = telemetry_sink
        self._bus = EventBus()

        self._config = self._base_config
        self._features = self._base_features
        self._progress = self._load_progress()
        self._telemetry: list[TelemetryRecord] = []

        self._run: RunState | None = None
        self._level: Level | None = None
        self._result: ItemResult | None = None
        self._hints: HintState | None = None
        self._activated_at: float | None = None
        self._item_status = ItemStatus.PENDING
        self._rejected: set[str] = set()

    # ----- public queries -------------------------------------------------

    @property
    def run_config(self) -> RunConfig:
        return self._config

    @property
    def features(self) -> FeatureToggles:
        return self._features

    @property
    def is_running(self) -> bool:
        return self._run is not None and self._run.status is RunStatus.RUNNING

    @property
    def level(self) -> Level | None:
        return self._level

    def progress(self) -> Progress:
        return self._progress.copy()

    def unlocked_levels(self) -> list[Level]:
        return [lvl for lvl in LEVELS if lvl.id in self._progress.unlocked_levels]

    def run_snapshot(self) -> RunSnapshot | None:
        return None if self._run is None else self._run.snapshot()

    def current_item(self) -> Item | None:
        return None if self._run is None else self._run.current_item()

    def active_item(self) -> ActiveItemView | None:
        item = self.current_item()
        if (
            self._run is None
            or item is None
            or self._result is None
            or self._item_status is not ItemStatus.ACTIVE
        ):
            return None
        hints = self._hints if self._hints is not None else HintState()
        return ActiveItemView(
            item=item,
            index=self._run.index,
            result=self._result,
            hints_revealed=tuple(hints.active),
            rejected=frozenset(self._rejected),
            elapsed_ms=self._elapsed_ms(),
        )

    def telemetry(self) -> tuple[TelemetryRecord, ...]:
        return tuple(self._telemetry)

    # ----- subscriptions ---------------------------------------------------

    def on(self, event: RunEvent | str, listener: Listener) -> Callable[[], None]:
        return self._bus.on(event, listener)

    def off(self, event: RunEvent | str, listener: Listener) -> None:
        self._bus.off(event, listener)

    # ----- lifecycle -------------------------------------------------------

    def start_run(
        self,
        level_id: str | None = None,
        *,
        level: Level | None = None,
        items: Sequence[Item] | None = None,
        run_config_overrides: Mapping[str, object] | None = None,
        feature_overrides: Mapping[str, bool] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> RunSnapshot:
        if self.is_running:
            raise RunEngineError("a run is already active; end it before starting another")

        resolved_id = level_id or self._progress.last_level_id
        resolved = level if level is not None else get_level(resolved_id)
        if resolved is None:
            available = ", ".join(lvl.id for lvl in LEVELS)
            raise UnknownLevelError(f"Unknown level id: {resolved_id}. Available levels: {available}")

        pool = list(items) if items is not None else self._item_source.select_items(resolved, options=options or {})
        if not pool:
            raise EmptyItemPoolError(f"No items available for level {resolved.id}")
        if len(pool) < resolved.pool_size:
            log.warning(
                "item pool smaller than pool size for %s (%d < %d)",
                resolved.id,
                len(pool),
                resolved.pool_size,
            )

        self._features = self._base_features.with_overrides(feature_overrides)
        self._config = self._base_config.with_overrides(run_config_overrides)
        self._reset_runtime_state()
        self._telemetry = []

        run = RunState(
            level_id=resolved.id,
            items=tuple(pool[: resolved.pool_size]),
            run_time_remaining_s=float(resolved.run_seconds),
            status=RunStatus.RUNNING,
        )
        self._run = run
        self._level = resolved
        log.debug("run started: level=%s items=%d", resolved.id, len(run.items))

        started = run.snapshot()
        self._emit_telemetry("runStart", {"levelId": resolved.id, "runSeconds": resolved.run_seconds})
        self._bus.emit(RunEvent.RUN_STARTED, RunStarted(run_state=started, level=resolved))

        self._activate_current_item()
        # A zero-size pool, or a listener, may end the run during activation.
        return run.snapshot()

    def end_run(self, reason: str = "manual") -> RunSummary | None:
        run = self._run
        if run is None or run.status is RunStatus.ENDED:
            return None

        run.status = RunStatus.ENDED
        summary = self._build_summary(run, reason)
        gate_passed = self._evaluate_gate(summary)
        apply_run(self._progress, summary, gate_passed=gate_passed)
        log.debug(
            "run ended: level=%s reason=%s score=%d gate=%s",
            summary.level_id,
            reason,
            summary.total_score,
            gate_passed,
        )

        self._emit_telemetry(
            "runEnd",
            {"reason": reason, "summary": summary.to_dict(), "gatePassed": gate_passed},
        )
        self._bus.emit(RunEvent.RUN_ENDED, RunEnded(summary=summary, gate_passed=gate_passed, reason=reason))

        persist = self._features.persistence
        if self._run is run:
            self._reset_runtime_state()
        if persist:
            self._persist(summary)
        return summary

    # ----- input -----------------------------------------------------------

    def on_item_shown(self, item_id: str) -> None:
        if not self.is_running:
            return
        item = self.current_item()
        run = self._run
        if run is None or item is None or item.id != item_id:
            return
        self._emit_telemetry("itemStart", {"itemId": item_id, "index": run.index})

    def on_guess(self, category: str) -> None:
        if not self.is_running or self._item_status is not ItemStatus.ACTIVE:
            return
        item = self.current_item()
        if item is None:
            return
        guess = normalize_category(category)
        if not guess or guess in self._rejected:
            return

        correct = guess == normalize_category(item.truth)
        self._emit_telemetry("guess", {"guess": guess, "correct": correct})
        if correct:
            self._resolve_current_item(assisted=False, reason="correct", picked=guess, correct=True)
            return
        self._handle_wrong_guess(guess)

    def on_hint_request(self, order: int) -> None:
        if not self._features.hints:
            return
        if not self.is_running or self._item_status is not ItemStatus.ACTIVE:
            return
        if order not in HINT_ORDERS:
            return
        revealed = 0 if self._hints is None else self._hints.count
        if order != revealed + 1:
            return
        self._apply_hint(order)

    def on_tick(self, delta_ms: float) -> None:
        run = self._run
        if run is None or run.status is not RunStatus.RUNNING:
            return

        if self._features.timer:
            run.run_time_remaining_s = max(0.0, run.run_time_remaining_s - delta_ms / 1000.0)
            if run.run_time_remaining_s <= 0:
                self._handle_run_timeout()
                return

        if self._result is not None and self._activated_at is not None:
            self._result = replace(self._result, item_time_ms=self._elapsed_ms())

        self._bus.emit(RunEvent.RUN_TICK, RunTick(delta_ms=delta_ms, run_state=run.snapshot()))

    # ----- internals -------------------------------------------------------

    def _reset_runtime_state(self) -> None:
        self._run = None
        self._level = None
        self._result = None
        self._hints = None
        self._activated_at = None
        self._item_status = ItemStatus.PENDING
        self._rejected = set()

    def _elapsed_ms(self) -> float:
        if self._activated_at is None:
            return 0.0
        return (self._clock.now() - self._activated_at) * 1000.0

    def _still_running(self, run: RunState) -> bool:
        # Listeners and renderers may call end_run re-entrantly.
        return self._run is run and run.status is RunStatus.RUNNING

    def _activate_current_item(self) -> None:
        run = self._run
        if run is None or run.status is not RunStatus.RUNNING:
            return
        item = run.current_item()
        if item is None:
            self.end_run("no-more-items")
            return

        self._result = ItemResult(item_id=item.id, truth=item.truth)
        self._hints = HintState()
        self._activated_at = self._clock.now()
        self._item_status = ItemStatus.ACTIVE
        self._rejected.clear()
        log.debug("item active: %s (%d/%d)", item.id, run.index + 1, len(run.items))

        self._bus.emit(
            RunEvent.ITEM_ACTIVE,
            ItemActive(item=item, index=run.index, run_state=run.snapshot()),
        )

    def _handle_wrong_guess(self, guess: str) -> None:
        run = self._run
        if run is None or self._result is None:
            return
        self._rejected.add(guess)
        result = replace(self._result, wrongs=self._result.wrongs + 1, picked=guess)
        self._result = result
        if self._features.streaks:
            run.current_streak = 0

        self._bus.emit(
            RunEvent.GUESS_EVALUATED,
            GuessEvaluated(guess=guess, correct=False, run_state=run.snapshot(), result=result),
        )
        if not self._still_running(run):
            return

        if result.wrongs >= self._config.max_wrongs_per_item:
            self._resolve_current_item(assisted=True, reason="max-wrongs", picked=result.picked)

    def _apply_hint(self, order: int) -> None:
        run = self._run
        if run is None or self._result is None:
            return
        item = run.current_item()
        if item is None:
            return
        if self._hints is None:
            self._hints = HintState()

        self._hints.reveal(order)
        self._result = replace(self._result, hints_used=order)

        if self._features.penalties and self._features.timer:
            run.run_time_remaining_s = max(0.0, run.run_time_remaining_s - self._config.hint_run_deduct_s)
            if run.run_time_remaining_s <= 0:
                self._handle_run_timeout()
                return

        if self._features.overlays:
            try:
                self._renderers.for_order(order)(item.id)
            except Exception:
                log.exception("hint %d renderer failed for %s", order, item.id)
            if not self._still_running(run):
                return
        if self._features.streaks:
            run.current_streak = 0

        self._bus.emit(RunEvent.HINT_USED, HintUsed(order=order, item_id=item.id, run_state=run.snapshot()))

        if order == HINT_ORDERS[-1] and self._still_running(run):
            self._resolve_current_item(assisted=True, reason="hint4", picked=None)

    def _resolve_current_item(
        self,
        *,
        assisted: bool,
        reason: str,
        picked: str | None = None,
        correct: bool = False,
        advance: bool = True,
    ) -> None:
        run = self._run
        if (
            run is None
            or run.status is not RunStatus.RUNNING
            or self._result is None
            or self._item_status is not ItemStatus.ACTIVE
        ):
            return
        item = run.current_item()

        item_time_ms = self._elapsed_ms()
        hints = self._result.hints_used
        if picked is not None:
            final_pick = normalize_category(picked)
        elif correct and item is not None:
            final_pick = normalize_category(item.truth)
        else:
            final_pick = self._result.picked

        result = replace(
            self._result,
            item_time_ms=item_time_ms,
            effective_time_ms=item_time_ms + self._config.hint_time_penalty_s * hints * 1000.0,
            picked=final_pick,
            assisted=bool(assisted),
        )

        points = compute_item_points(result, self._config) if correct else 0
        if self._features.streaks:
            if not result.assisted and result.wrongs == 0 and hints == 0 and correct:
                run.current_streak += 1
                if run.current_streak >= self._config.streak_start:
                    points += self._config.streak_bonus_per_item
            else:
                run.current_streak = 0
            run.longest_streak = max(run.longest_streak, run.current_streak)

        result = replace(result, points=0 if result.assisted else points)
        run.stats.append(result)
        run.score += result.points

        self._item_status = ItemStatus.RESOLVED
        self._result = None
        self._hints = None
        self._activated_at = None
        self._rejected.clear()
        run.index = min(run.index + 1, len(run.items))
        log.debug("item resolved: %s reason=%s points=%d", result.item_id, reason, result.points)

        snapshot = run.snapshot()
        self._bus.emit(
            RunEvent.ITEM_RESOLVED,
            ItemResolved(item_id=None if item is None else item.id, result=result, run_state=snapshot, reason=reason),
        )
        self._bus.emit(RunEvent.SCORE_UPDATED, ScoreUpdated(score=run.score, run_state=snapshot))

        if not advance or not self._still_running(run):
            return
        if run.index >= len(run.items):
            self.end_run("completed")
            return
        if self._features.timer and run.run_time_remaining_s <= 0:
            self.end_run("timeout")
            return
        self._activate_current_item()

    def _handle_run_timeout(self) -> None:
        run = self._run
        if run is None or not self.is_running:
            return
        if self._result is not None and self._item_status is ItemStatus.ACTIVE:
            self._resolve_current_item(assisted=True, reason="timeout-item", advance=False)
            if not self._still_running(run):
                return
        self.end_run("timeout")

    def _build_summary(self, run: RunState, reason: str) -> RunSummary:
        stats = tuple(run.stats)
        return RunSummary(
            user_id=self._user_id,
            level_id=run.level_id,
            timestamp=_utc_now_iso(),
            total_score=run.score,
            accuracy=run_accuracy(stats),
            median_item_seconds=median_item_seconds(stats),
            longest_streak=run.longest_streak,
            reason=reason,
            items=stats,
        )

    def _evaluate_gate(self, summary: RunSummary) -> bool:
        if not self._features.gating:
            return True
        if self._level is None:
            return False
        return passes_gate(
            self._level.gate,
            accuracy=summary.accuracy,
            median_item_seconds=summary.median_item_seconds,
        )

    def _load_progress(self) -> Progress:
        if not self._base_features.persistence or self._store is None:
            return Progress().normalized()
        try:
            return self._store.load_progress().normalized()
        except Exception as exc:
            log.warning("could not load progress, using defaults: %s", exc)
            return Progress().normalized()

    def _persist(self, summary: RunSummary) -> None:
        if self._store is None:
            return
        try:
            self._store.save_run_summary(summary)
        except Exception as exc:
            log.warning("could not save run summary: %s", exc)
        try:
            self._store.save_progress(self._progress.copy())
        except Exception as exc:
            log.warning("could not save progress: %s", exc)

    def _emit_telemetry(self, event: str, data: dict[str, Any]) -> None:
        if not self._features.telemetry:
            return
        record = TelemetryRecord(event=event, timestamp=_utc_now_iso(), data=data)
        if self._telemetry_sink is None:
            self._telemetry.append(record)
            return
        try:
            self._telemetry_sink(record)
        except Exception:
            log.exception("telemetry sink failed for %s", event)
