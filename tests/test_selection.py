"""
Unit tests for due-key selection.

Tests error propagation and logging around the key store query.
"""

import logging
from unittest.mock import Mock

import pytest

from quota_refill.core.dates import DayClassification
from quota_refill.core.selection import select_due_keys
from quota_refill.errors import StoreQueryError
from quota_refill.storage.models import Key


class TestSelectDueKeys:
    """Test select_due_keys against a mocked repository."""

    def test_returns_store_result_in_order(self):
        """Test keys come back in the order the store returned them."""
        keys = [
            Key(id="key_b", workspace_id="ws", refill_amount=10, remaining=1),
            Key(id="key_a", workspace_id="ws", refill_amount=10, remaining=1),
        ]
        repository = Mock()
        repository.find_due_keys.return_value = keys
        classification = DayClassification(today=15, last_day_of_month=31)

        result = select_due_keys(repository, classification)

        assert result == keys
        repository.find_due_keys.assert_called_once_with(classification)

    def test_empty_result(self):
        """Test no due keys is a valid outcome."""
        repository = Mock()
        repository.find_due_keys.return_value = []

        assert select_due_keys(repository, DayClassification(today=1, last_day_of_month=31)) == []

    def test_store_query_error_propagates(self):
        """Test StoreQueryError is re-raised unchanged."""
        error = StoreQueryError("connection refused", "list due keys")
        repository = Mock()
        repository.find_due_keys.side_effect = error

        with pytest.raises(StoreQueryError) as exc_info:
            select_due_keys(repository, DayClassification(today=1, last_day_of_month=31))

        assert exc_info.value is error

    def test_unexpected_errors_are_wrapped(self):
        """Test driver errors become StoreQueryError with the cause chained."""
        repository = Mock()
        repository.find_due_keys.side_effect = ConnectionError("store unreachable")

        with pytest.raises(StoreQueryError, match="store unreachable") as exc_info:
            select_due_keys(repository, DayClassification(today=1, last_day_of_month=31))

        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert exc_info.value.operation == "list due keys"

    def test_logs_found_count(self, caplog):
        """Test the number of due keys is logged."""
        repository = Mock()
        repository.find_due_keys.return_value = [
            Key(id="key_1", workspace_id="ws", refill_amount=10, remaining=1)
        ]

        with caplog.at_level(logging.INFO, logger="quota_refill.selection"):
            select_due_keys(repository, DayClassification(today=29, last_day_of_month=29))

        assert "found 1 keys with refill set for today" in caplog.text
        assert "end of month" in caplog.text
