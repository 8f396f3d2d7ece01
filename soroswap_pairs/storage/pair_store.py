"""
SQLite store for Soroswap pair state.

This is the write path for pair events:
- insert_pair: idempotent insert keyed by pair_address
- sync_reserves: existence check + reserve update

Every call runs in its own transaction bounded by a deadline. When the
deadline passes the running statement is interrupted and the whole
transaction is rolled back, so an event either lands completely or
not at all.

Each calling thread gets its own connection. Connections owned by
threads that have exited are closed the next time a new thread asks
for one. SQLite serializes writers; there is no extra application
lock around writes.
"""

import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional, Union
import structlog

from soroswap_pairs.config import DEFAULT_BUSY_TIMEOUT, DEFAULT_PROCESS_TIMEOUT
from soroswap_pairs.errors import (
    EventValidationError,
    StorageInitError,
    StorageOperationError,
)
from soroswap_pairs.events import NewPairEvent, SyncEvent, parse_timestamp
from soroswap_pairs.storage.schema import PAIRS_TABLE, open_database

logger = structlog.get_logger(__name__)

# VM instructions between deadline checks
PROGRESS_CHECK_INTERVAL = 1000

INSERT_PAIR_SQL = f"""
    INSERT INTO {PAIRS_TABLE} (
        pair_address, token_0, token_1, created_at,
        reserve_0, reserve_1
    ) VALUES (?, ?, ?, ?, '0', '0')
    ON CONFLICT (pair_address) DO NOTHING
"""

PAIR_EXISTS_SQL = f"""
    SELECT EXISTS (
        SELECT 1 FROM {PAIRS_TABLE} WHERE pair_address = ?
    )
"""

UPDATE_RESERVES_SQL = f"""
    UPDATE {PAIRS_TABLE}
    SET reserve_0 = ?,
        reserve_1 = ?,
        last_sync_at = ?,
        last_sync_ledger = ?
    WHERE pair_address = ?
"""

SELECT_PAIR_SQL = f"""
    SELECT pair_address, token_0, token_1, reserve_0, reserve_1,
           created_at, last_sync_at, last_sync_ledger
    FROM {PAIRS_TABLE}
    WHERE pair_address = ?
"""


@dataclass(frozen=True)
class Pair:
    """One stored row of the pairs table."""
    pair_address: str
    token_0: str
    token_1: str
    reserve_0: str
    reserve_1: str
    created_at: datetime
    last_sync_at: Optional[datetime] = None
    last_sync_ledger: Optional[int] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Pair":
        return cls(
            pair_address=row["pair_address"],
            token_0=row["token_0"],
            token_1=row["token_1"],
            reserve_0=row["reserve_0"],
            reserve_1=row["reserve_1"],
            created_at=parse_timestamp(row["created_at"]),
            last_sync_at=(
                parse_timestamp(row["last_sync_at"])
                if row["last_sync_at"] is not None else None
            ),
            last_sync_ledger=row["last_sync_ledger"],
        )


def validate_new_pair(event: NewPairEvent) -> None:
    """Reject new-pair events with an empty address or token."""
    missing = [
        name for name in ("pair_address", "token_0", "token_1")
        if not getattr(event, name)
    ]
    if missing:
        raise EventValidationError(
            "invalid new pair event data: missing required fields "
            + ", ".join(missing)
        )


class _Deadline:
    """Monotonic deadline used as a SQLite progress handler."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        self.expires_at = time.monotonic() + timeout

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at

    def __call__(self) -> int:
        # Non-zero return interrupts the running statement
        return 1 if self.expired else 0


class PairStore:
    """
    Transactional writer for the pairs table.

    Usage:
        store = PairStore("soroswap_pairs.sqlite")
        store.insert_pair(new_pair_event)
        store.sync_reserves(sync_event)
        store.close()
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        busy_timeout: float = DEFAULT_BUSY_TIMEOUT,
    ):
        """
        Open the store and make sure the schema exists.

        Args:
            db_path: SQLite file path. ":memory:" only works from a
                     single thread, since every thread opens its own
                     connection.
            busy_timeout: Seconds to wait on a locked database

        Raises:
            StorageInitError: the database cannot be opened or configured
        """
        self.db_path = str(db_path)
        self.busy_timeout = busy_timeout

        self._connections: dict[threading.Thread, sqlite3.Connection] = {}
        self._registry_lock = threading.Lock()
        self._closed = False

        # Fail fast on the caller's thread
        self._register(open_database(self.db_path, busy_timeout=busy_timeout))

        logger.info("sqlite_store_initialized", path=self.db_path)

    # =========================================================================
    # Connections
    # =========================================================================

    def _register(self, conn: sqlite3.Connection) -> sqlite3.Connection:
        with self._registry_lock:
            if not self._closed:
                self._connections[threading.current_thread()] = conn
                return conn

        # close() won the race
        conn.close()
        raise StorageOperationError("store is closed")

    def _prune_dead_threads(self) -> None:
        """Close connections owned by threads that have exited."""
        with self._registry_lock:
            dead = [thread for thread in self._connections if not thread.is_alive()]
            stale = [self._connections.pop(thread) for thread in dead]

        for conn in stale:
            try:
                conn.close()
            except sqlite3.Error as e:
                logger.error("sqlite_close_error", path=self.db_path, error=str(e))

        if stale:
            logger.debug("sqlite_thread_connections_pruned", count=len(stale))

    def _connection(self) -> sqlite3.Connection:
        if self._closed:
            raise StorageOperationError("store is closed")

        with self._registry_lock:
            conn = self._connections.get(threading.current_thread())
        if conn is not None:
            return conn

        self._prune_dead_threads()

        try:
            conn = open_database(self.db_path, busy_timeout=self.busy_timeout)
        except StorageInitError as e:
            raise StorageOperationError(f"failed to open connection: {e}") from e

        logger.debug("sqlite_thread_connection_opened", thread=threading.current_thread().name)
        return self._register(conn)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def open_connections(self) -> int:
        with self._registry_lock:
            return len(self._connections)

    def close(self) -> None:
        """Close every connection this store opened. Safe to call twice."""
        with self._registry_lock:
            if self._closed:
                return
            self._closed = True
            connections, self._connections = self._connections, {}

        for conn in connections.values():
            try:
                conn.close()
            except sqlite3.Error as e:
                logger.error("sqlite_close_error", path=self.db_path, error=str(e))

        logger.info("sqlite_store_closed", path=self.db_path)

    # =========================================================================
    # Transactions
    # =========================================================================

    @contextmanager
    def _transaction(self, operation: str, timeout: float) -> Iterator[sqlite3.Connection]:
        """
        Run a block in one IMMEDIATE transaction under a deadline.

        Commits if the block returns, rolls back on any exception.
        sqlite3 errors are re-raised as StorageOperationError.
        """
        conn = self._connection()
        deadline = _Deadline(timeout)
        conn.set_progress_handler(deadline, PROGRESS_CHECK_INTERVAL)

        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                logger.error("sqlite_begin_failed", operation=operation, error=str(e))
                raise StorageOperationError(f"failed to begin transaction: {e}") from e

            try:
                yield conn
                if deadline.expired:
                    logger.error("sqlite_deadline_exceeded", operation=operation, timeout=timeout)
                    raise StorageOperationError(
                        f"failed to {operation}: deadline of {timeout}s exceeded"
                    )
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                # Rollback must not be interrupted by the expired deadline
                conn.set_progress_handler(None, 0)
                self._rollback(conn, operation)

                if deadline.expired:
                    message = f"failed to {operation}: deadline of {timeout}s exceeded"
                else:
                    message = f"failed to {operation}: {e}"
                logger.error(
                    "sqlite_transaction_failed",
                    operation=operation,
                    error=str(e),
                    deadline_exceeded=deadline.expired,
                )
                raise StorageOperationError(message) from e
            except BaseException:
                conn.set_progress_handler(None, 0)
                self._rollback(conn, operation)
                raise
        finally:
            conn.set_progress_handler(None, 0)

    def _rollback(self, conn: sqlite3.Connection, operation: str) -> None:
        if not conn.in_transaction:
            return
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.error("sqlite_rollback_failed", operation=operation, error=str(e))

    # =========================================================================
    # Pair Operations
    # =========================================================================

    def insert_pair(
        self,
        event: NewPairEvent,
        timeout: float = DEFAULT_PROCESS_TIMEOUT,
    ) -> int:
        """
        Insert a new pair unless one with the same address exists.

        A duplicate is a successful no-op: the stored row is kept and
        the event's tokens are discarded.

        Returns:
            Rows affected (1 inserted, 0 duplicate)

        Raises:
            EventValidationError: empty address or token
            StorageOperationError: transaction failed and was rolled back
        """
        validate_new_pair(event)

        logger.info(
            "inserting_pair",
            pair_address=event.pair_address,
            token_0=event.token_0,
            token_1=event.token_1,
        )

        with self._transaction("insert pair", timeout) as conn:
            cursor = conn.execute(INSERT_PAIR_SQL, (
                event.pair_address,
                event.token_0,
                event.token_1,
                event.timestamp.isoformat(),
            ))
            affected = cursor.rowcount

        logger.info(
            "pair_inserted" if affected else "pair_already_exists",
            pair_address=event.pair_address,
            rows_affected=affected,
        )
        return affected

    def sync_reserves(
        self,
        event: SyncEvent,
        timeout: float = DEFAULT_PROCESS_TIMEOUT,
    ) -> int:
        """
        Update a pair's reserves and sync markers.

        A sync for a pair that was never inserted is logged and
        ignored. The stored ledger sequence is overwritten without an
        ordering check, so an older sync replaces newer reserves.

        Returns:
            Rows affected (0 when the pair is unknown)

        Raises:
            StorageOperationError: transaction failed and was rolled back
        """
        logger.debug("checking_pair_exists", pair_address=event.contract_id)

        with self._transaction("sync pair reserves", timeout) as conn:
            exists = conn.execute(PAIR_EXISTS_SQL, (event.contract_id,)).fetchone()[0]

            if not exists:
                logger.warning("sync_for_unknown_pair", pair_address=event.contract_id)
                return 0

            cursor = conn.execute(UPDATE_RESERVES_SQL, (
                event.new_reserve_0,
                event.new_reserve_1,
                event.timestamp.isoformat(),
                event.ledger_sequence,
                event.contract_id,
            ))
            affected = cursor.rowcount

        logger.info(
            "pair_reserves_updated",
            pair_address=event.contract_id,
            reserve_0=event.new_reserve_0,
            reserve_1=event.new_reserve_1,
            ledger=event.ledger_sequence,
            rows_affected=affected,
        )
        return affected

    def get_pair(self, pair_address: str) -> Optional[Pair]:
        """Read one pair. Used for verification, not as a query layer."""
        try:
            row = self._connection().execute(SELECT_PAIR_SQL, (pair_address,)).fetchone()
        except sqlite3.Error as e:
            raise StorageOperationError(f"failed to read pair: {e}") from e
        return Pair.from_row(row) if row is not None else None

    def count_pairs(self) -> int:
        try:
            return self._connection().execute(
                f"SELECT COUNT(*) FROM {PAIRS_TABLE}"
            ).fetchone()[0]
        except sqlite3.Error as e:
            raise StorageOperationError(f"failed to count pairs: {e}") from e
