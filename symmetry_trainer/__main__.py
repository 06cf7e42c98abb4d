from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path


def _ensure_repo_root_on_path() -> None:
    """Put the repository root (parent of this package) on ``sys.path``.

    Needed when the file is executed as a script
    (``python symmetry_trainer/__main__.py``) rather than with ``-m``.
    """
    pkg_dir = Path(__file__).resolve().parent
    repo_root_str = str(pkg_dir.parent)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


try:
    # Works when executed as a module: python -m symmetry_trainer
    from .app import run  # type: ignore[attr-defined]
except ImportError:
    _ensure_repo_root_on_path()
    from symmetry_trainer.app import run  # type: ignore[attr-defined]


def main(argv: list[str] | None = None) -> int:
    """Entry point for running the trainer from the command line."""
    parser = argparse.ArgumentParser(prog="symmetry_trainer", description="Timed wallpaper-group trainer")
    parser.add_argument("--log-level", default="WARNING", help="logging level (DEBUG, INFO, WARNING, ...)")
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="[%(levelname)s] %(name)s: %(message)s",
    )
    return run()


if __name__ == "__main__":
    raise SystemExit(main())
