"""Pygame UI shell for the symmetry trainer.

Screens:
- Level menu (locked levels are listed but cannot be started)
- Run screen: stand-in pattern tile, category picker, hint keys and marks, HUD
- Summary screen shown when the run ends

Timing, scoring, hints and gating live in symmetry_trainer.engine; this module
only forwards input and frame deltas and draws what the engine reports.
"""

from __future__ import annotations

import os
import random
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import pygame

from .catalog import CATEGORY_GRID_LAYOUT, LEVELS, Level
from .clock import RealClock
from .engine import ActiveItemView, HintRenderers, RunEngine
from .events import ItemActive, RunEnded, RunEvent
from .item_source import GeneratedItemSource, overlay_for
from .models import HintOverlay, Item
from .persistence import SqliteProgressStore
from .progress import InMemoryProgressStore, ProgressStore

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60
STORE_PATH_ENV = "SYMMETRY_TRAINER_DB_PATH"

BG = (3, 9, 78)
PANEL_BG = (8, 18, 104)
BORDER = (226, 236, 255)
TEXT_MAIN = (238, 245, 255)
TEXT_MUTED = (186, 200, 224)
ACTIVE_BG = (244, 248, 255)
ACTIVE_TEXT = (14, 26, 74)
DISABLED = (90, 100, 140)
GOOD = (120, 220, 140)
BAD = (240, 120, 110)


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def update(self, dt_ms: float) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


@dataclass(frozen=True, slots=True)
class MenuItem:
    label: str
    action: Callable[[], None]
    enabled: bool = True


class ScreenStack:
    """Level menu at the bottom, then a run screen, swapped for its summary."""

    def __init__(self, surface: pygame.Surface) -> None:
        self._surface = surface
        self._stack: list[Screen] = []
        self.running = True

    def push(self, screen: Screen) -> None:
        self._stack.append(screen)

    def pop(self) -> None:
        # The level menu stays; it owns quitting.
        if len(self._stack) > 1:
            self._stack.pop()

    def replace(self, screen: Screen) -> None:
        self.pop()
        self.push(screen)

    def quit(self) -> None:
        self.running = False

    def dispatch(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
        elif self._stack:
            self._stack[-1].handle_event(event)

    def step(self, dt_ms: float) -> None:
        # update() may swap the top screen.
        if self._stack:
            self._stack[-1].update(dt_ms)
        if self._stack:
            self._stack[-1].render(self._surface)


class HintMarks:
    """Overlay marks for the item on screen, filled in by the engine's hint renderers.

    Tier 1 shows rotation centres, tier 2 mirror lines, tier 3 the text cue and
    tier 4 reveals the target category.
    """

    def __init__(self) -> None:
        self._item: Item | None = None
        self.centres = 0
        self.mirrors = 0
        self.cue = ""
        self.target = ""

    def renderers(self) -> HintRenderers:
        return HintRenderers(
            hint1=self._show_centres,
            hint2=self._show_mirrors,
            hint3=self._show_cue,
            hint4=self._reveal_target,
        )

    def track(self, item: Item) -> str:
        """Switch to a newly shown item and return the previous target reveal, if any."""
        revealed = self.target
        self._item = item
        self.centres = 0
        self.mirrors = 0
        self.cue = ""
        self.target = ""
        return revealed

    def _overlay(self, item_id: str) -> HintOverlay | None:
        item = self._item
        if item is None or item.id != item_id:
            return None
        return item.overlay if item.overlay is not None else overlay_for(item.truth)

    def _show_centres(self, item_id: str) -> None:
        overlay = self._overlay(item_id)
        if overlay is not None:
            self.centres = overlay.rotation_centres

    def _show_mirrors(self, item_id: str) -> None:
        overlay = self._overlay(item_id)
        if overlay is not None:
            self.mirrors = overlay.mirror_lines

    def _show_cue(self, item_id: str) -> None:
        overlay = self._overlay(item_id)
        if overlay is not None:
            self.cue = overlay.text_cue

    def _reveal_target(self, item_id: str) -> None:
        if self._item is not None and self._item.id == item_id:
            self.target = f"Target: {self._item.truth}"


def _fit_label(font: pygame.font.Font, label: str, max_width: int) -> str:
    if max_width <= 0:
        return ""
    if font.size(label)[0] <= max_width:
        return label
    clipped = label
    while clipped and font.size(f"{clipped}...")[0] > max_width:
        clipped = clipped[:-1]
    return f"{clipped}..." if clipped else "..."


def _draw_frame(surface: pygame.Surface, title: str, font: pygame.font.Font) -> pygame.Rect:
    w, h = surface.get_size()
    surface.fill(BG)
    margin = max(10, min(26, w // 34))
    frame = pygame.Rect(margin, margin, max(260, w - margin * 2), max(220, h - margin * 2))
    pygame.draw.rect(surface, PANEL_BG, frame)
    pygame.draw.rect(surface, BORDER, frame, 2)
    text = font.render(title, True, TEXT_MAIN)
    surface.blit(text, text.get_rect(midtop=(frame.centerx, frame.y + 10)))
    return frame


class MenuScreen:
    def __init__(self, app: ScreenStack, title: str, items: Callable[[], list[MenuItem]], *, is_root: bool = False) -> None:
        self._app = app
        self._title = title
        self._items = items
        self._selected = 0
        self._is_root = is_root
        self._title_font = pygame.font.Font(None, 42)
        self._item_font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_UP, pygame.K_w):
            self._move(-1)
        elif event.key in (pygame.K_DOWN, pygame.K_s):
            self._move(1)
        elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            self._activate()
        elif event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            if self._is_root:
                self._app.quit()
            else:
                self._app.pop()

    def update(self, dt_ms: float) -> None:
        _ = dt_ms

    def _move(self, delta: int) -> None:
        items = self._items()
        if items:
            self._selected = (self._selected + delta) % len(items)

    def _activate(self) -> None:
        items = self._items()
        if not items:
            return
        item = items[self._selected % len(items)]
        if item.enabled:
            item.action()

    def render(self, surface: pygame.Surface) -> None:
        frame = _draw_frame(surface, self._title, self._title_font)
        items = self._items()
        row_h = 40
        y = frame.y + 70
        for idx, item in enumerate(items):
            row = pygame.Rect(frame.x + 40, y, frame.w - 80, row_h - 6)
            selected = idx == self._selected % max(1, len(items))
            if selected:
                pygame.draw.rect(surface, ACTIVE_BG, row)
            else:
                pygame.draw.rect(surface, (62, 84, 152), row, 1)
            color = ACTIVE_TEXT if selected else TEXT_MAIN if item.enabled else DISABLED
            label = _fit_label(self._item_font, item.label, row.w - 20)
            text = self._item_font.render(label, True, color)
            surface.blit(text, (row.x + 10, row.y + (row.h - text.get_height()) // 2))
            y += row_h

        footer = "Up/Down: Move  |  Enter: Start  |  Esc: Quit"
        foot = self._hint_font.render(footer, True, TEXT_MUTED)
        surface.blit(foot, foot.get_rect(midbottom=(frame.centerx, frame.bottom - 10)))


class RunScreen:
    """Drives one run: forwards picks, hints and frame deltas into the engine."""

    def __init__(
        self,
        app: ScreenStack,
        *,
        engine: RunEngine,
        marks: HintMarks,
        level: Level,
        on_finished: Callable[[RunEnded], None],
    ) -> None:
        self._app = app
        self._engine = engine
        self._marks = marks
        self._level = level
        self._on_finished = on_finished
        self._font = pygame.font.Font(None, 28)
        self._big_font = pygame.font.Font(None, 44)
        self._cursor = (0, 0)
        self._flash = ""
        self._cells: list[tuple[pygame.Rect, str]] = []
        self._unsubscribe = [
            engine.on(RunEvent.ITEM_ACTIVE, self._on_item_active),
            engine.on(RunEvent.GUESS_EVALUATED, lambda e: self._set_flash(f"Not {e.guess}")),
            engine.on(RunEvent.RUN_ENDED, self._on_run_ended),
        ]
        engine.start_run(level.id)

    def _on_item_active(self, event: ItemActive) -> None:
        self._flash = self._marks.track(event.item)
        self._engine.on_item_shown(event.item.id)

    def _set_flash(self, text: str) -> None:
        self._flash = text

    def _on_run_ended(self, event: RunEnded) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._on_finished(event)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.MOUSEBUTTONDOWN and event.button == 1:
            for rect, category in self._cells:
                if rect.collidepoint(event.pos):
                    self._engine.on_guess(category)
                    return
            return
        if event.type != pygame.KEYDOWN:
            return
        row, col = self._cursor
        if event.key == pygame.K_LEFT:
            self._move(row, col - 1)
        elif event.key == pygame.K_RIGHT:
            self._move(row, col + 1)
        elif event.key == pygame.K_UP:
            self._move(row - 1, col)
        elif event.key == pygame.K_DOWN:
            self._move(row + 1, col)
        elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            category = CATEGORY_GRID_LAYOUT[row][col]
            if category is not None:
                self._engine.on_guess(category)
        elif event.key in (pygame.K_1, pygame.K_2, pygame.K_3, pygame.K_4):
            self._engine.on_hint_request(event.key - pygame.K_0)
        elif event.key == pygame.K_ESCAPE:
            self._engine.end_run("manual")

    def _move(self, row: int, col: int) -> None:
        rows = len(CATEGORY_GRID_LAYOUT)
        cols = len(CATEGORY_GRID_LAYOUT[0])
        row %= rows
        col %= cols
        if CATEGORY_GRID_LAYOUT[row][col] is None:
            col = (col - 1) % cols
        self._cursor = (row, col)

    def update(self, dt_ms: float) -> None:
        self._engine.on_tick(dt_ms)

    def render(self, surface: pygame.Surface) -> None:
        frame = _draw_frame(surface, self._level.label, self._big_font)
        snap = self._engine.run_snapshot()
        view = self._engine.active_item()
        if snap is None:
            return

        hud = (
            f"Time {snap.run_time_remaining_s:5.1f}s   Score {snap.score}   "
            f"Streak {snap.current_streak}   Item {min(snap.index + 1, len(snap.items))}/{len(snap.items)}"
        )
        surface.blit(self._font.render(hud, True, TEXT_MAIN), (frame.x + 20, frame.y + 50))
        gate = self._level.gate
        if gate is not None:
            gate_text = f"Gate: {int(gate.min_accuracy * 100)}% in < {gate.max_median_item_seconds:g}s median"
            surface.blit(self._font.render(gate_text, True, TEXT_MUTED), (frame.x + 20, frame.y + 76))

        tile = pygame.Rect(frame.x + 20, frame.y + 110, 300, 300)
        pygame.draw.rect(surface, (12, 28, 120), tile)
        pygame.draw.rect(surface, BORDER, tile, 1)
        if view is not None:
            self._draw_stand_in_tile(surface, tile, view.item.truth)
            self._draw_hint_marks(surface, tile)
            item_s = view.elapsed_ms / 1000.0
            surface.blit(self._font.render(f"Item {item_s:4.1f}s", True, TEXT_MUTED), (tile.x, tile.bottom + 6))

        self._draw_picker(surface, pygame.Rect(tile.right + 30, tile.y, frame.right - tile.right - 50, 180), view)

        y = tile.y + 200
        if self._flash:
            surface.blit(self._font.render(self._flash, True, BAD), (tile.right + 30, y))
        if self._marks.cue:
            cue = _fit_label(self._font, self._marks.cue, frame.right - tile.right - 50)
            surface.blit(self._font.render(cue, True, TEXT_MUTED), (tile.right + 30, y + 28))

        footer = "Arrows/Enter or click: pick  |  1-4: hints  |  Esc: end run"
        foot = self._font.render(footer, True, TEXT_MUTED)
        surface.blit(foot, foot.get_rect(midbottom=(frame.centerx, frame.bottom - 10)))

    def _draw_stand_in_tile(
        self,
        surface: pygame.Surface,
        rect: pygame.Rect,
        category: str,
    ) -> None:
        # Pattern rendering is external; a seeded motif lattice stands in for it.
        rng = random.Random(category)
        color = (rng.randint(90, 230), rng.randint(90, 230), rng.randint(90, 230))
        step = 50
        for gx in range(rect.x + step // 2, rect.right, step):
            for gy in range(rect.y + step // 2, rect.bottom, step):
                pygame.draw.circle(surface, color, (gx, gy), 10)
                pygame.draw.line(surface, color, (gx, gy), (gx + 14, gy - 8), 3)

    def _draw_hint_marks(self, surface: pygame.Surface, rect: pygame.Rect) -> None:
        step = 50
        if self._marks.centres:
            for gx in range(rect.x + step // 2, rect.right, step):
                for gy in range(rect.y + step // 2, rect.bottom, step):
                    pygame.draw.circle(surface, GOOD, (gx, gy), 4)
        mirrors = (
            ((rect.centerx, rect.y), (rect.centerx, rect.bottom - 1)),
            ((rect.x, rect.centery), (rect.right - 1, rect.centery)),
            ((rect.x, rect.y), (rect.right - 1, rect.bottom - 1)),
            ((rect.x, rect.bottom - 1), (rect.right - 1, rect.y)),
        )
        for start, end in mirrors[: self._marks.mirrors]:
            pygame.draw.line(surface, BAD, start, end, 2)

    def _draw_picker(self, surface: pygame.Surface, area: pygame.Rect, view: ActiveItemView | None) -> None:
        rejected = frozenset() if view is None else view.rejected
        rows = len(CATEGORY_GRID_LAYOUT)
        cols = len(CATEGORY_GRID_LAYOUT[0])
        cw = area.w // cols
        ch = area.h // rows
        self._cells = []
        for r, row in enumerate(CATEGORY_GRID_LAYOUT):
            for c, category in enumerate(row):
                if category is None:
                    continue
                cell = pygame.Rect(area.x + c * cw + 2, area.y + r * ch + 2, cw - 4, ch - 4)
                self._cells.append((cell, category))
                selected = (r, c) == self._cursor
                pygame.draw.rect(surface, ACTIVE_BG if selected else PANEL_BG, cell)
                pygame.draw.rect(surface, BORDER, cell, 1)
                color = DISABLED if category in rejected else ACTIVE_TEXT if selected else TEXT_MAIN
                text = self._font.render(category, True, color)
                surface.blit(text, text.get_rect(center=cell.center))


class SummaryScreen:
    def __init__(self, app: ScreenStack, *, event: RunEnded) -> None:
        self._app = app
        self._event = event
        self._font = pygame.font.Font(None, 32)
        self._title_font = pygame.font.Font(None, 42)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.KEYDOWN and event.key in (
            pygame.K_RETURN,
            pygame.K_KP_ENTER,
            pygame.K_ESCAPE,
            pygame.K_SPACE,
        ):
            self._app.pop()

    def update(self, dt_ms: float) -> None:
        _ = dt_ms

    def render(self, surface: pygame.Surface) -> None:
        s = self._event.summary
        title = "Level passed" if self._event.gate_passed else "Run complete"
        frame = _draw_frame(surface, title, self._title_font)
        lines = [
            f"Score: {s.total_score}",
            f"Accuracy: {int(round(s.accuracy * 100))}%",
            f"Median item time: {s.median_item_seconds:.2f}s",
            f"Longest streak: {s.longest_streak}",
            f"Ended: {self._event.reason}",
        ]
        y = frame.y + 80
        for line in lines:
            surface.blit(self._font.render(line, True, TEXT_MAIN), (frame.x + 40, y))
            y += 40
        color = GOOD if self._event.gate_passed else TEXT_MUTED
        hint = self._font.render("Press Enter to continue", True, color)
        surface.blit(hint, hint.get_rect(midbottom=(frame.centerx, frame.bottom - 16)))


def default_store() -> ProgressStore:
    explicit = os.environ.get(STORE_PATH_ENV)
    path = Path(explicit).expanduser() if explicit else Path.home() / ".symmetry_trainer.sqlite3"
    return SqliteProgressStore(path)


def _new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def run(
    *,
    max_frames: int | None = None,
    event_injector: Callable[[int], None] | None = None,
    store: ProgressStore | None = None,
) -> int:
    pygame.init()
    pygame.display.set_caption("Symmetry Trainer")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)
    frame_clock = pygame.time.Clock()

    app = ScreenStack(surface)
    if store is None:
        store = InMemoryProgressStore() if max_frames is not None else default_store()

    marks = HintMarks()
    engine = RunEngine(
        clock=RealClock(),
        item_source=GeneratedItemSource(seed=_new_seed()),
        renderers=marks.renderers(),
        store=store,
    )

    def open_level(level: Level) -> None:
        def finished(event: RunEnded) -> None:
            app.replace(SummaryScreen(app, event=event))

        app.push(RunScreen(app, engine=engine, marks=marks, level=level, on_finished=finished))

    def level_items() -> list[MenuItem]:
        unlocked = {lvl.id for lvl in engine.unlocked_levels()}
        items = [
            MenuItem(
                lvl.label if lvl.id in unlocked else f"{lvl.label} (locked)",
                lambda lvl=lvl: open_level(lvl),
                enabled=lvl.id in unlocked,
            )
            for lvl in LEVELS
        ]
        items.append(MenuItem("Quit", app.quit))
        return items

    app.push(MenuScreen(app, "Levels", level_items, is_root=True))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.dispatch(event)

            dt_ms = frame_clock.tick(TARGET_FPS)
            app.step(float(dt_ms))
            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break
    finally:
        if engine.is_running:
            engine.end_run("manual")
        pygame.quit()

    return 0
