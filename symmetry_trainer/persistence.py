from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path

from .models import ItemResult, Progress, RunSummary

log = logging.getLogger(__name__)

SCHEMA_VERSION = 1


def open_db(path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS progress (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                payload TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS run_summary (
                id INTEGER PRIMARY KEY,
                user_id TEXT NOT NULL,
                level_id TEXT NOT NULL,
                timestamp_utc TEXT NOT NULL,
                total_score INTEGER NOT NULL,
                accuracy REAL NOT NULL,
                median_item_s REAL NOT NULL,
                longest_streak INTEGER NOT NULL,
                reason TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS item_result (
                id INTEGER PRIMARY KEY,
                run_id INTEGER NOT NULL REFERENCES run_summary(id) ON DELETE CASCADE,
                seq INTEGER NOT NULL,
                item_id TEXT NOT NULL,
                truth TEXT NOT NULL,
                picked TEXT,
                wrongs INTEGER NOT NULL,
                hints_used INTEGER NOT NULL,
                item_time_ms REAL NOT NULL,
                effective_time_ms REAL NOT NULL,
                points INTEGER NOT NULL,
                assisted INTEGER NOT NULL
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_item_result_run_seq ON item_result(run_id, seq);")
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


class SqliteProgressStore:
    """ProgressStore backed by a local SQLite file.

    Each call opens and closes its own connection, so the store is cheap to
    keep around between runs.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load_progress(self) -> Progress:
        conn = open_db(self._path)
        try:
            row = conn.execute("SELECT payload FROM progress WHERE id = 1").fetchone()
        finally:
            conn.close()
        if row is None:
            return Progress()
        try:
            return Progress.from_dict(json.loads(row[0]))
        except (ValueError, TypeError) as exc:
            log.warning("stored progress is malformed, using defaults: %s", exc)
            return Progress()

    def save_progress(self, progress: Progress) -> None:
        payload = json.dumps(progress.to_dict(), ensure_ascii=False)
        conn = open_db(self._path)
        try:
            with conn:
                conn.execute(
                    "INSERT INTO progress(id, payload) VALUES (1, ?) "
                    "ON CONFLICT(id) DO UPDATE SET payload = excluded.payload",
                    (payload,),
                )
        finally:
            conn.close()

    def save_run_summary(self, summary: RunSummary) -> None:
        conn = open_db(self._path)
        try:
            _insert_run(conn=conn, summary=summary)
        finally:
            conn.close()

    def load_run_history(self) -> list[RunSummary]:
        conn = open_db(self._path)
        try:
            runs = conn.execute(
                """
                SELECT id, user_id, level_id, timestamp_utc, total_score,
                       accuracy, median_item_s, longest_streak, reason
                FROM run_summary ORDER BY id
                """
            ).fetchall()
            out: list[RunSummary] = []
            for run_id, user_id, level_id, ts, score, acc, med, streak, reason in runs:
                rows = conn.execute(
                    """
                    SELECT item_id, truth, picked, wrongs, hints_used, item_time_ms,
                           effective_time_ms, points, assisted
                    FROM item_result WHERE run_id = ? ORDER BY seq
                    """,
                    (run_id,),
                ).fetchall()
                items = tuple(
                    ItemResult(
                        item_id=str(r[0]),
                        truth=str(r[1]),
                        picked=None if r[2] is None else str(r[2]),
                        wrongs=int(r[3]),
                        hints_used=int(r[4]),
                        item_time_ms=float(r[5]),
                        effective_time_ms=float(r[6]),
                        points=int(r[7]),
                        assisted=bool(r[8]),
                    )
                    for r in rows
                )
                out.append(
                    RunSummary(
                        user_id=str(user_id),
                        level_id=str(level_id),
                        timestamp=str(ts),
                        total_score=int(score),
                        accuracy=float(acc),
                        median_item_seconds=float(med),
                        longest_streak=int(streak),
                        reason=str(reason),
                        items=items,
                    )
                )
            return out
        finally:
            conn.close()

    def clear(self) -> None:
        conn = open_db(self._path)
        try:
            with conn:
                conn.execute("DELETE FROM item_result")
                conn.execute("DELETE FROM run_summary")
                conn.execute("DELETE FROM progress")
        finally:
            conn.close()


def _insert_run(*, conn: sqlite3.Connection, summary: RunSummary) -> int:
    with conn:
        cur = conn.execute(
            """
            INSERT INTO run_summary(
                user_id, level_id, timestamp_utc, total_score,
                accuracy, median_item_s, longest_streak, reason
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                summary.user_id,
                summary.level_id,
                summary.timestamp,
                int(summary.total_score),
                float(summary.accuracy),
                float(summary.median_item_seconds),
                int(summary.longest_streak),
                summary.reason,
            ),
        )
        run_id = int(cur.lastrowid)

        for seq, r in enumerate(summary.items):
            conn.execute(
                """
                INSERT INTO item_result(
                    run_id, seq, item_id, truth, picked, wrongs, hints_used,
                    item_time_ms, effective_time_ms, points, assisted
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run_id,
                    seq,
                    r.item_id,
                    r.truth,
                    r.picked,
                    int(r.wrongs),
                    int(r.hints_used),
                    float(r.item_time_ms),
                    float(r.effective_time_ms),
                    int(r.points),
                    1 if r.assisted else 0,
                ),
            )

    return run_id
