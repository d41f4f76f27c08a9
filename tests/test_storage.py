"""
Unit tests for storage layer.

Tests schema creation, key models, due-key queries and refill writes.
"""

import logging
import os
import sqlite3
import tempfile
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from quota_refill.core.dates import DayClassification, classify_day
from quota_refill.errors import StoreQueryError, UpdateError
from quota_refill.storage.db import get_connection
from quota_refill.storage.models import Key
from quota_refill.storage.repository import (
    KeyRepository,
    get_repository,
    initialize_schema
)


class TestKeyModel:
    """Test key validation and derived properties."""

    def test_valid_key(self):
        """Test a key with a full refill policy."""
        key = Key(id="key_1", workspace_id="ws_1", refill_amount=100, remaining=10, refill_day=31)

        assert key.needs_refill is True
        assert key.is_deleted is False

    def test_refill_amount_must_be_positive(self):
        """Test zero or negative refill amounts are rejected."""
        with pytest.raises(ValueError, match="refill_amount must be > 0"):
            Key(id="key_1", workspace_id="ws_1", refill_amount=0)

    @pytest.mark.parametrize("day", [0, 32, -1])
    def test_refill_day_range(self, day):
        """Test refill days outside 1-31 are rejected."""
        with pytest.raises(ValueError, match="refill_day"):
            Key(id="key_1", workspace_id="ws_1", refill_amount=10, refill_day=day)

    def test_missing_ids_rejected(self):
        """Test key and workspace ids are required."""
        with pytest.raises(ValueError, match="key id is required"):
            Key(id="", workspace_id="ws_1")
        with pytest.raises(ValueError, match="workspace_id is required"):
            Key(id="key_1", workspace_id="")

    def test_needs_refill(self):
        """Test needs_refill follows the candidate invariant."""
        deleted = datetime(2024, 1, 1, tzinfo=timezone.utc)

        assert Key(id="a", workspace_id="w", refill_amount=10, remaining=10).needs_refill is False
        assert Key(id="b", workspace_id="w", remaining=0).needs_refill is False
        assert Key(id="c", workspace_id="w", refill_amount=10).needs_refill is False
        assert Key(id="d", workspace_id="w", refill_amount=10, remaining=0,
                   deleted_at=deleted).needs_refill is False
        assert Key(id="e", workspace_id="w", refill_amount=10, remaining=9).needs_refill is True


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify tables are created correctly."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                cursor = conn.execute("""
                    SELECT name FROM sqlite_master
                    WHERE type='table' AND name IN ('keys', 'audit_log')
                    ORDER BY name
                """)
                assert [row[0] for row in cursor.fetchall()] == ["audit_log", "keys"]

                cursor = conn.execute("PRAGMA table_info(keys)")
                column_names = [col[1] for col in cursor.fetchall()]
                assert column_names == [
                    'id', 'workspace_id', 'refill_amount', 'remaining',
                    'refill_day', 'last_refill_at', 'deleted_at'
                ]
            finally:
                conn.close()

    def test_connection_is_plain_sqlite(self):
        """Test connections open the file with default pragmas."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            conn = get_connection(db_path)
            try:
                assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 0
                assert conn.execute("SELECT 1").fetchone()[0] == 1
            finally:
                conn.close()

            assert os.path.exists(db_path)

    def test_schema_creation_is_idempotent(self):
        """Test initializing twice keeps existing data."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            repository = KeyRepository(db_path)
            repository.insert_key(Key(id="key_1", workspace_id="ws_1"))

            initialize_schema(db_path)

            assert repository.get_key("key_1") is not None


class TestKeyRepository:
    """Test key reads and writes."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.repository = KeyRepository(self.db_path)

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _insert(self, key_id, refill_amount=100, remaining=10, refill_day=None, deleted_at=None):
        self.repository.insert_key(Key(
            id=key_id,
            workspace_id="ws_1",
            refill_amount=refill_amount,
            remaining=remaining,
            refill_day=refill_day,
            deleted_at=deleted_at
        ))

    def _due_ids(self, classification):
        return [key.id for key in self.repository.find_due_keys(classification)]

    def test_insert_and_get_key(self):
        """Test a key round-trips with timestamps."""
        refilled = datetime(2024, 1, 1, 0, 0, 5, tzinfo=timezone.utc)
        self.repository.insert_key(Key(
            id="key_1",
            workspace_id="ws_1",
            refill_amount=100,
            remaining=3,
            refill_day=7,
            last_refill_at=refilled
        ))

        key = self.repository.get_key("key_1")
        assert key.workspace_id == "ws_1"
        assert key.refill_amount == 100
        assert key.remaining == 3
        assert key.refill_day == 7
        assert key.last_refill_at == refilled
        assert key.deleted_at is None

    def test_get_missing_key(self):
        """Test unknown ids return None."""
        assert self.repository.get_key("missing") is None

    def test_list_keys_excludes_deleted_by_default(self):
        """Test deleted keys are only listed on request."""
        self._insert("key_b")
        self._insert("key_a")
        self._insert("key_c", deleted_at=datetime(2024, 1, 1, tzinfo=timezone.utc))

        assert [k.id for k in self.repository.list_keys()] == ["key_a", "key_b"]
        assert [k.id for k in self.repository.list_keys(include_deleted=True)] == [
            "key_a", "key_b", "key_c"
        ]

    def test_invalid_batch_size(self):
        """Test batch size must be positive."""
        with pytest.raises(ValueError, match="batch_size"):
            KeyRepository(self.db_path, batch_size=0)

    def test_normal_day_selects_unset_or_matching_day(self):
        """Test normal days select refill_day unset or equal to today."""
        self._insert("key_daily", refill_day=None)
        self._insert("key_15", refill_day=15)
        self._insert("key_16", refill_day=16)
        self._insert("key_31", refill_day=31)

        assert self._due_ids(classify_day(datetime(2024, 3, 15))) == ["key_15", "key_daily"]

    def test_end_of_month_selects_later_refill_days(self):
        """Test the last day catches refill days the month does not have."""
        self._insert("key_daily", refill_day=None)
        self._insert("key_28", refill_day=28)
        self._insert("key_29", refill_day=29)
        self._insert("key_30", refill_day=30)
        self._insert("key_31", refill_day=31)

        assert self._due_ids(classify_day(datetime(2024, 2, 29))) == [
            "key_29", "key_30", "key_31", "key_daily"
        ]
        assert self._due_ids(classify_day(datetime(2023, 2, 28))) == [
            "key_28", "key_29", "key_30", "key_31", "key_daily"
        ]
        assert self._due_ids(classify_day(datetime(2024, 4, 30))) == [
            "key_30", "key_31", "key_daily"
        ]

    def test_full_keys_never_selected(self):
        """Test keys at or above their refill amount are skipped."""
        self._insert("key_full", refill_amount=100, remaining=100, refill_day=15)
        self._insert("key_over", refill_amount=100, remaining=150)
        self._insert("key_low", refill_amount=100, remaining=99, refill_day=15)

        assert self._due_ids(DayClassification(today=15, last_day_of_month=31)) == ["key_low"]

    def test_deleted_keys_never_selected(self):
        """Test deleted keys are skipped even when everything else matches."""
        self._insert("key_deleted", remaining=0, deleted_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        self._insert("key_live", remaining=0)

        assert self._due_ids(DayClassification(today=29, last_day_of_month=29)) == ["key_live"]

    def test_keys_without_policy_never_selected(self):
        """Test keys without refill amount or remaining are skipped."""
        self._insert("key_no_amount", refill_amount=None, remaining=0)
        self._insert("key_unlimited", refill_amount=100, remaining=None)

        assert self._due_ids(DayClassification(today=3, last_day_of_month=31)) == []

    def test_batched_reads_return_everything(self):
        """Test results spanning several fetch batches are complete."""
        repository = KeyRepository(self.db_path, batch_size=2)
        for i in range(5):
            self._insert(f"key_{i}")

        keys = repository.find_due_keys(DayClassification(today=3, last_day_of_month=31))
        assert [k.id for k in keys] == [f"key_{i}" for i in range(5)]

    def _insert_raw(self, key_id, refill_amount, remaining, refill_day=None):
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "INSERT INTO keys (id, workspace_id, refill_amount, remaining, refill_day) "
                "VALUES (?, ?, ?, ?, ?)",
                (key_id, "ws_1", refill_amount, remaining, refill_day)
            )
            conn.commit()
        finally:
            conn.close()

    def test_invalid_row_skipped_and_logged(self, caplog):
        """Test a row that fails validation does not hide valid keys."""
        self._insert("key_good", remaining=5)
        self._insert_raw("key_bad", refill_amount=0, remaining=-3)

        with caplog.at_level(logging.ERROR, logger="quota_refill.repository"):
            due = self._due_ids(DayClassification(today=15, last_day_of_month=31))

        assert due == ["key_good"]
        assert "skipping invalid key row key_bad" in caplog.text

    def test_out_of_range_refill_day_skipped_at_end_of_month(self):
        """Test a stored refill day above 31 is skipped on the last day."""
        self._insert("key_31", remaining=5, refill_day=31)
        self._insert_raw("key_40", refill_amount=100, remaining=5, refill_day=40)

        assert self._due_ids(DayClassification(today=31, last_day_of_month=31)) == ["key_31"]

    def test_find_due_keys_wraps_store_errors(self):
        """Test query failures surface as StoreQueryError."""
        repository = KeyRepository(os.path.join(self.temp_dir, "empty.db"))

        with pytest.raises(StoreQueryError, match="list due keys failed") as exc_info:
            repository.find_due_keys(DayClassification(today=3, last_day_of_month=31))

        assert isinstance(exc_info.value.__cause__, sqlite3.Error)

    def test_refill_key_updates_single_row(self):
        """Test refill sets remaining and last_refill_at on one key only."""
        self._insert("key_1", remaining=5)
        self._insert("key_2", remaining=5)
        refilled_at = datetime(2024, 2, 29, 0, 0, 1, tzinfo=timezone.utc)

        self.repository.refill_key("key_1", 100, refilled_at)

        key_1 = self.repository.get_key("key_1")
        key_2 = self.repository.get_key("key_2")
        assert key_1.remaining == 100
        assert key_1.last_refill_at == refilled_at
        assert key_2.remaining == 5
        assert key_2.last_refill_at is None

    def test_refill_missing_key_raises_update_error(self):
        """Test a write that matches no row is a failure."""
        with pytest.raises(UpdateError) as exc_info:
            self.repository.refill_key("gone", 100, datetime(2024, 1, 1, tzinfo=timezone.utc))

        assert exc_info.value.key_id == "gone"
        assert exc_info.value.operation == "refill"

    def test_refill_wraps_store_errors(self):
        """Test sqlite errors during the write become UpdateError."""
        repository = KeyRepository(os.path.join(self.temp_dir, "empty.db"))

        with pytest.raises(UpdateError, match="refill failed for key key_1"):
            repository.refill_key("key_1", 100, datetime(2024, 1, 1, tzinfo=timezone.utc))


class TestGetRepository:
    """Test the cached repository accessor."""

    def test_same_path_returns_same_instance(self):
        """Test repeated calls reuse the repository."""
        with patch("quota_refill.storage.repository._default_repository", None):
            first = get_repository("one.db")
            assert get_repository("one.db") is first

    def test_different_path_replaces_instance(self):
        """Test a new path yields a repository for that path."""
        with patch("quota_refill.storage.repository._default_repository", None):
            first = get_repository("one.db")
            second = get_repository("two.db")
            assert second is not first
            assert second.db_path == "two.db"
