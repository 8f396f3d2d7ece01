"""
SQLite schema and connection setup for the pairs table.

Durability trade-off: WAL journaling with synchronous=NORMAL. A power
loss can drop the last few commits but never corrupts the file. The
chain is the source of truth; this table is an index of it.
"""

import sqlite3
from pathlib import Path
from typing import Union

import structlog

from soroswap_pairs.errors import StorageInitError

logger = structlog.get_logger(__name__)

PAIRS_TABLE = "soroswap_pairs"

PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
)

SCHEMA_DDL = f"""
    CREATE TABLE IF NOT EXISTS {PAIRS_TABLE} (
        pair_address TEXT NOT NULL PRIMARY KEY,
        token_0 TEXT NOT NULL,
        token_1 TEXT NOT NULL,
        reserve_0 TEXT NOT NULL DEFAULT '0',
        reserve_1 TEXT NOT NULL DEFAULT '0',
        created_at TIMESTAMP NOT NULL,
        last_sync_at TIMESTAMP,
        last_sync_ledger INTEGER,

        -- Reject empty identities
        CHECK (length(pair_address) > 0),
        CHECK (length(token_0) > 0),
        CHECK (length(token_1) > 0)
    );

    -- Token lookups
    CREATE INDEX IF NOT EXISTS idx_tokens ON {PAIRS_TABLE}(token_0, token_1);
"""


def connect(db_path: Union[str, Path], busy_timeout: float = 5.0) -> sqlite3.Connection:
    """
    Open a connection configured for explicit transactions.

    isolation_level=None puts the sqlite3 module in autocommit mode so
    that BEGIN/COMMIT/ROLLBACK are issued by the store, not implicitly.
    """
    path = str(db_path)
    if path != ":memory:" and not path.startswith("file:"):
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(
        path,
        timeout=busy_timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    return conn


def apply_pragmas(conn: sqlite3.Connection) -> None:
    for pragma in PRAGMAS:
        conn.execute(pragma)


def init_schema(conn: sqlite3.Connection) -> None:
    """Create the pairs table and token index if they do not exist."""
    conn.executescript(SCHEMA_DDL)
    logger.info("sqlite_schema_initialized", table=PAIRS_TABLE)


def open_database(db_path: Union[str, Path], busy_timeout: float = 5.0) -> sqlite3.Connection:
    """
    Open, ping, configure and initialize the database.

    There is no degraded mode: any failure closes the connection and
    raises StorageInitError.
    """
    try:
        conn = connect(db_path, busy_timeout=busy_timeout)
    except (sqlite3.Error, OSError) as e:
        logger.error("sqlite_open_failed", path=str(db_path), error=str(e))
        raise StorageInitError(f"failed to open SQLite: {e}") from e

    steps = (
        ("ping SQLite", lambda: conn.execute("SELECT 1").fetchone()),
        ("set SQLite pragmas", lambda: apply_pragmas(conn)),
        (f"create {PAIRS_TABLE} table", lambda: init_schema(conn)),
    )
    for step, run in steps:
        try:
            run()
        except sqlite3.Error as e:
            conn.close()
            logger.error("sqlite_init_failed", path=str(db_path), step=step, error=str(e))
            raise StorageInitError(f"failed to {step}: {e}") from e

    return conn
