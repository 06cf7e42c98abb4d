"""Synchronous publish/subscribe channel between the run engine and the UI."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from .catalog import Level
from .models import Item, ItemResult, RunSnapshot, RunSummary

log = logging.getLogger(__name__)


class RunEvent(StrEnum):
    RUN_STARTED = "run-started"
    RUN_TICK = "run-tick"
    RUN_ENDED = "run-ended"
    ITEM_ACTIVE = "item-active"
    ITEM_RESOLVED = "item-resolved"
    HINT_USED = "hint-used"
    GUESS_EVALUATED = "guess-evaluated"
    SCORE_UPDATED = "score-updated"


@dataclass(frozen=True, slots=True)
class RunStarted:
    run_state: RunSnapshot
    level: Level


@dataclass(frozen=True, slots=True)
class RunTick:
    delta_ms: float
    run_state: RunSnapshot


@dataclass(frozen=True, slots=True)
class ItemActive:
    item: Item
    index: int
    run_state: RunSnapshot


@dataclass(frozen=True, slots=True)
class HintUsed:
    order: int
    item_id: str
    run_state: RunSnapshot


@dataclass(frozen=True, slots=True)
class GuessEvaluated:
    guess: str
    correct: bool
    run_state: RunSnapshot
    result: ItemResult | None


@dataclass(frozen=True, slots=True)
class ItemResolved:
    item_id: str | None
    result: ItemResult
    run_state: RunSnapshot
    reason: str


@dataclass(frozen=True, slots=True)
class ScoreUpdated:
    score: int
    run_state: RunSnapshot


@dataclass(frozen=True, slots=True)
class RunEnded:
    summary: RunSummary
    gate_passed: bool
    reason: str


Listener = Callable[[Any], None]


class EventBus:
    """Listeners run in subscription order; one failing listener never stops the rest."""

    def __init__(self) -> None:
        self._listeners: dict[RunEvent, list[Listener]] = {}

    def on(self, event: RunEvent | str, listener: Listener) -> Callable[[], None]:
        key = RunEvent(event)
        handlers = self._listeners.setdefault(key, [])
        if listener not in handlers:
            handlers.append(listener)
        return lambda: self.off(key, listener)

    def off(self, event: RunEvent | str, listener: Listener) -> None:
        handlers = self._listeners.get(RunEvent(event))
        if handlers and listener in handlers:
            handlers.remove(listener)

    def listener_count(self, event: RunEvent | str) -> int:
        return len(self._listeners.get(RunEvent(event), ()))

    def emit(self, event: RunEvent, payload: object) -> None:
        # Copy so listeners may unsubscribe during dispatch.
        for listener in list(self._listeners.get(event, ())):
            try:
                listener(payload)
            except Exception:
                log.exception("listener for %s failed", event.value)
