import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional

from config import BLING_DB_PATH

logger = logging.getLogger(__name__)

# WAL lets the request threads read while a refresh writes; writes are serialized.
_db_write_lock = Lock()
_db_timeout = 10  # seconds


@contextmanager
def get_db_connection(db_path: Optional[Path] = None):
    """
    Context manager for a SQLite connection.
    - Enforces timeout to prevent infinite waits
    - Enables WAL mode for better concurrency
    - Ensures cleanup even on exception
    """
    conn = None
    try:
        conn = sqlite3.connect(Path(db_path or BLING_DB_PATH), timeout=_db_timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        yield conn
    except sqlite3.DatabaseError as e:
        logger.error(f"[DB] Database error: {e}", exc_info=True)
        raise
    finally:
        if conn:
            try:
                conn.close()
            except Exception as e:
                logger.warning(f"[DB] Error closing connection: {e}")


def execute_write(sql: str, params: tuple = (), *, db_path: Optional[Path] = None) -> None:
    """Serialize write operations to prevent SQLITE_BUSY errors."""
    with _db_write_lock:
        with get_db_connection(db_path) as conn:
            try:
                conn.execute(sql, params)
                conn.commit()
            except sqlite3.OperationalError as e:
                if "database is locked" in str(e):
                    logger.error(f"[DB] Database locked after {_db_timeout}s timeout: {e}")
                raise


def ensure_bling_tokens_table(db_path: Optional[Path] = None) -> None:
    """
    Create bling_tokens table if it does not exist.
    One row per connected Bling account.
    """
    sql = """
    CREATE TABLE IF NOT EXISTS bling_tokens (
        account_number INTEGER PRIMARY KEY,
        access_token TEXT NOT NULL,
        refresh_token TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """
    execute_write(sql, db_path=db_path)


def load_token_row(account_number: int, *, db_path: Optional[Path] = None) -> Optional[Dict[str, Any]]:
    ensure_bling_tokens_table(db_path)
    with get_db_connection(db_path) as conn:
        row = conn.execute(
            "SELECT account_number, access_token, refresh_token, expires_at, updated_at "
            "FROM bling_tokens WHERE account_number = ?",
            (int(account_number),),
        ).fetchone()
    return dict(row) if row else None


def upsert_token_row(
    account_number: int,
    *,
    access_token: str,
    refresh_token: str,
    expires_at: str,
    updated_at: str,
    db_path: Optional[Path] = None,
) -> None:
    ensure_bling_tokens_table(db_path)
    execute_write(
        "INSERT INTO bling_tokens (account_number, access_token, refresh_token, expires_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?) "
        "ON CONFLICT(account_number) DO UPDATE SET "
        "access_token=excluded.access_token, "
        "refresh_token=excluded.refresh_token, "
        "expires_at=excluded.expires_at, "
        "updated_at=excluded.updated_at",
        (int(account_number), access_token, refresh_token, expires_at, updated_at),
        db_path=db_path,
    )
    logger.info("[DB] Stored Bling tokens for account %s (expires_at=%s)", account_number, expires_at)


def list_token_accounts(*, db_path: Optional[Path] = None) -> List[int]:
    ensure_bling_tokens_table(db_path)
    with get_db_connection(db_path) as conn:
        rows = conn.execute("SELECT account_number FROM bling_tokens ORDER BY account_number").fetchall()
    return [int(row["account_number"]) for row in rows]
