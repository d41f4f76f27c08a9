"""
Repository pattern for data access.

Handles key queries, per-key refill writes and schema creation.
"""

import sqlite3
from datetime import datetime
from typing import Iterator, List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import Key
from quota_refill.core.dates import DayClassification
from quota_refill.errors import StoreQueryError, UpdateError
from quota_refill.logger import get_logger

log = get_logger("quota_refill.repository")

KEY_COLUMNS = (
    "id, workspace_id, refill_amount, remaining, refill_day, "
    "last_refill_at, deleted_at"
)

# Shared by both branches of the due-key query
_ELIGIBLE = """
    deleted_at IS NULL
    AND refill_amount IS NOT NULL
    AND remaining < refill_amount
"""


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _format_ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _row_to_key(row: tuple) -> Key:
    return Key(
        id=row[0],
        workspace_id=row[1],
        refill_amount=row[2],
        remaining=row[3],
        refill_day=row[4],
        last_refill_at=_parse_ts(row[5]),
        deleted_at=_parse_ts(row[6])
    )


class KeyRepository:
    """Repository for reading and refilling quota keys.

    Every write is scoped to a single key id. No cross-key transaction
    is ever opened.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, batch_size: int = 500):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
            batch_size: Rows fetched per round trip when reading keys
        """
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self.db_path = db_path
        self.batch_size = batch_size

    def insert_key(self, key: Key) -> None:
        """Insert a key record.

        Keys are normally created by key management; this exists for
        seeding and tests.
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute(f"""
                INSERT INTO keys ({KEY_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                key.id,
                key.workspace_id,
                key.refill_amount,
                key.remaining,
                key.refill_day,
                _format_ts(key.last_refill_at),
                _format_ts(key.deleted_at)
            ))
            conn.commit()
        finally:
            conn.close()

    def get_key(self, key_id: str) -> Optional[Key]:
        """Fetch a single key by id, deleted or not."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"SELECT {KEY_COLUMNS} FROM keys WHERE id = ?", (key_id,)
            )
            row = cursor.fetchone()
            return _row_to_key(row) if row else None
        finally:
            conn.close()

    def list_keys(self, include_deleted: bool = False) -> List[Key]:
        """List keys ordered by id.

        Args:
            include_deleted: Also return keys with deleted_at set
        """
        query = f"SELECT {KEY_COLUMNS} FROM keys"
        if not include_deleted:
            query += " WHERE deleted_at IS NULL"
        query += " ORDER BY id"
        return list(self._iter_keys(query, ()))

    def find_due_keys(self, classification: DayClassification) -> List[Key]:
        """Find keys eligible for refill on the classified day.

        On a normal day a key matches when its refill day is unset or equal
        to today. On the last day of the month it matches when its refill
        day is unset or on/after the last day, which catches refill days
        the month does not have. Rows that fail Key validation are logged
        and skipped.

        Args:
            classification: Day classification of the run date

        Returns:
            Due keys ordered by id

        Raises:
            StoreQueryError: If the query cannot be executed
        """
        if classification.is_end_of_month:
            query = f"""
                SELECT {KEY_COLUMNS} FROM keys
                WHERE {_ELIGIBLE}
                  AND (refill_day IS NULL OR refill_day >= ?)
                ORDER BY id
            """
            params = (classification.last_day_of_month,)
        else:
            query = f"""
                SELECT {KEY_COLUMNS} FROM keys
                WHERE {_ELIGIBLE}
                  AND (refill_day IS NULL OR refill_day = ?)
                ORDER BY id
            """
            params = (classification.today,)

        keys = []
        try:
            for row in self._iter_rows(query, params):
                try:
                    keys.append(_row_to_key(row))
                except ValueError as e:
                    log.error(f"skipping invalid key row {row[0]}: {e}")
        except sqlite3.Error as e:
            raise StoreQueryError(f"query on keys failed: {e}", "list due keys") from e
        return keys

    def refill_key(self, key_id: str, amount: int, refilled_at: datetime) -> None:
        """Reset one key's remaining quota and stamp the refill time.

        Args:
            key_id: Key to update
            amount: New remaining quota
            refilled_at: Timestamp stored as last_refill_at

        Raises:
            UpdateError: If the write fails or no key with that id exists
        """
        try:
            conn = get_connection(self.db_path)
        except sqlite3.Error as e:
            raise UpdateError(str(e), "refill", key_id) from e
        try:
            cursor = conn.execute("""
                UPDATE keys
                SET remaining = ?, last_refill_at = ?
                WHERE id = ?
            """, (amount, _format_ts(refilled_at), key_id))
            if cursor.rowcount != 1:
                conn.rollback()
                raise UpdateError(
                    f"expected 1 row to change, got {cursor.rowcount}",
                    "refill",
                    key_id
                )
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise UpdateError(str(e), "refill", key_id) from e
        finally:
            conn.close()

    def _iter_keys(self, query: str, params: tuple) -> Iterator[Key]:
        for row in self._iter_rows(query, params):
            yield _row_to_key(row)

    def _iter_rows(self, query: str, params: tuple) -> Iterator[tuple]:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(query, params)
            while True:
                rows = cursor.fetchmany(self.batch_size)
                if not rows:
                    break
                yield from rows
        finally:
            conn.close()


# Global repository instance
_default_repository: Optional[KeyRepository] = None


def get_repository(db_path: str = DEFAULT_DB_PATH, batch_size: int = 500) -> KeyRepository:
    """Get a repository instance.

    Returns the cached instance when it points at the same database file,
    otherwise replaces it.

    Args:
        db_path: Path to SQLite database file
        batch_size: Rows fetched per round trip when reading keys

    Returns:
        An instance of KeyRepository
    """
    global _default_repository
    if (
        _default_repository is None
        or _default_repository.db_path != db_path
        or _default_repository.batch_size != batch_size
    ):
        _default_repository = KeyRepository(db_path, batch_size)
    return _default_repository


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the keys and audit_log tables if they don't exist.

    audit_log is an append-only ledger. No UPDATE or DELETE is ever run
    against it.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS keys (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                refill_amount INTEGER,
                remaining INTEGER,
                refill_day INTEGER,
                last_refill_at TEXT,
                deleted_at TEXT
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                time TEXT NOT NULL,
                workspace_id TEXT NOT NULL,
                event TEXT NOT NULL,
                actor TEXT NOT NULL,
                description TEXT NOT NULL,
                resources TEXT NOT NULL,
                context TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()
