# logging_config.py

import logging
import sqlite3
from datetime import datetime, timezone
from typing import List, Optional

MAX_LOG_ENTRIES = 10000  # Maximum number of log entries to keep
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Handlers installed by setup_logging, replaced on every call.
_handlers: List[logging.Handler] = []


class SQLiteHandler(logging.Handler):
    """
    Stores records in a ``logs`` table, keeping only the newest ``max_entries`` rows.

    Opens the database on construction, so an unusable path fails at startup
    with ``sqlite3.Error`` instead of on the first record.
    """

    def __init__(self, db_path: str, max_entries: int = MAX_LOG_ENTRIES):
        super().__init__()
        self.db_path = db_path
        self.max_entries = max_entries
        # Records arrive from request handlers and update threads; emit() runs under the handler lock.
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        try:
            with self.conn:
                self.conn.execute("""
                    CREATE TABLE IF NOT EXISTS logs (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        timestamp TEXT NOT NULL,
                        level TEXT NOT NULL,
                        message TEXT NOT NULL,
                        module TEXT,
                        exception TEXT
                    )
                """)
        except sqlite3.Error:
            self.conn.close()
            raise

    def emit(self, record):
        try:
            self.format(record)
            with self.conn:
                self.conn.execute(
                    "INSERT INTO logs (timestamp, level, message, module, exception) VALUES (?, ?, ?, ?, ?)",
                    (
                        datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
                        record.levelname,
                        record.getMessage(),
                        record.module,
                        record.exc_text,
                    ),
                )
                # Ids only grow, so everything at or below max(id) - max_entries is surplus.
                self.conn.execute(
                    "DELETE FROM logs WHERE id <= (SELECT MAX(id) FROM logs) - ?",
                    (self.max_entries,),
                )
        except Exception:
            self.handleError(record)

    def close(self):
        self.acquire()
        try:
            self.conn.close()
        finally:
            self.release()
        super().close()


def setup_logging(debug: bool = False, log_db_path: Optional[str] = None):
    """
    Configure the root logger. Safe to call again once the config file is read;
    handlers installed by an earlier call are replaced.

    Raises sqlite3.Error if ``log_db_path`` cannot be opened, leaving the
    previous configuration in place.
    """
    level = logging.DEBUG if debug else logging.INFO
    formatter = logging.Formatter(LOG_FORMAT)

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_db_path:
        handlers.append(SQLiteHandler(log_db_path))

    root = logging.getLogger()
    for handler in _handlers:
        root.removeHandler(handler)
        handler.close()
    _handlers.clear()

    root.setLevel(level)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)
        _handlers.append(handler)
