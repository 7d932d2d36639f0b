# Identity Vault - Central SQLite Connection Helper
#
# Every identity vault SQLite database goes through `transaction()` from
# this module instead of raw `sqlite3.connect()`, so that all of them get:
#
#   - WAL journal mode (concurrent readers + one writer)
#   - busy_timeout to avoid SQLITE_BUSY under contention
#   - foreign_keys enforcement (entries cascade with their vault)
#   - commit on success, rollback on error, close always

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union


def connect(db_path: Union[str, Path]) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode and safe PRAGMAs.

    The parent directory is created if missing. Rows come back as
    ``sqlite3.Row``.
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=10)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def transaction(db_path: Union[str, Path]) -> Iterator[sqlite3.Connection]:
    """Yield a connection; commit on exit, roll back on error, always close."""
    conn = connect(db_path)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
