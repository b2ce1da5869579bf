"""Play-time store.

Only the single write the daemon needs lives here; the launcher owns the
rest of the statistics schema.
"""

import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

log = logging.getLogger(__name__)


class PlayTimeStore:
    """SQLite table of cumulative play time per game path."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS games (
                    path TEXT PRIMARY KEY,
                    play_time INTEGER NOT NULL DEFAULT 0,
                    play_count INTEGER NOT NULL DEFAULT 0,
                    last_played TEXT
                )
            """)

    def add_play_time(self, path: str | Path, duration: timedelta) -> None:
        """Add ``duration`` (whole seconds) to the game's running total."""
        seconds = max(int(duration.total_seconds()), 0)
        now = datetime.now(timezone.utc).isoformat()
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO games (path, play_time, play_count, last_played)
                VALUES (?, ?, 1, ?)
                ON CONFLICT(path) DO UPDATE SET
                    play_time = play_time + excluded.play_time,
                    play_count = play_count + 1,
                    last_played = excluded.last_played
                """,
                (str(path), seconds, now),
            )
        log.info("recorded %ds of play time for %s", seconds, path)
