from __future__ import annotations

import os

from symmetry_trainer.progress import InMemoryProgressStore


def test_ui_smoke_start_level_hint_guess_and_end_run() -> None:
    # Headless SDL for CI.
    os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
    os.environ.setdefault("SDL_AUDIODRIVER", "dummy")

    import pygame

    from symmetry_trainer.app import run

    def key(k: int) -> None:
        pygame.event.post(pygame.event.Event(pygame.KEYDOWN, {"key": k, "unicode": ""}))

    def inject(frame: int) -> None:
        # Levels -> start L1 -> hint 1 -> pick -> move + pick -> end run -> back to menu
        if frame == 1:
            key(pygame.K_RETURN)
        elif frame == 2:
            key(pygame.K_1)
        elif frame == 3:
            key(pygame.K_RETURN)
        elif frame == 4:
            key(pygame.K_RIGHT)
        elif frame == 5:
            key(pygame.K_RETURN)
        elif frame == 6:
            key(pygame.K_ESCAPE)
        elif frame == 7:
            key(pygame.K_RETURN)

    store = InMemoryProgressStore()
    assert run(max_frames=12, event_injector=inject, store=store) == 0
    history = store.load_run_history()
    assert len(history) == 1
    assert history[0].level_id == "L1-rotate"
    assert history[0].reason == "manual"
