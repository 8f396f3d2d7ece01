"""
Integration test for the consumer.

Tests the full flow:
Raw payload → Decoder → Handler → SQLite row
"""

import sqlite3
from datetime import datetime, timezone

import pytest

from soroswap_pairs import Message, PluginType, SaveSoroswapPairsToSQLite, new
from soroswap_pairs.errors import (
    ConsumerNotInitializedError,
    EventDecodeError,
    EventValidationError,
    PayloadTypeError,
    StorageInitError,
    StorageOperationError,
    UnknownEventTypeError,
)
from soroswap_pairs.storage import PAIRS_TABLE


def table_rows(db_path):
    conn = sqlite3.connect(str(db_path))
    try:
        return conn.execute(
            f"SELECT pair_address, token_0, token_1, reserve_0, reserve_1, "
            f"created_at, last_sync_at, last_sync_ledger FROM {PAIRS_TABLE}"
        ).fetchall()
    finally:
        conn.close()


class TestIdentity:
    """Plugin metadata exposed to the host."""

    def test_identity(self):
        consumer = new()

        assert isinstance(consumer, SaveSoroswapPairsToSQLite)
        assert consumer.name == "SaveSoroswapPairsToSQLite"
        assert consumer.version == "1.0.0"
        assert consumer.type == PluginType.CONSUMER
        assert consumer.type.value == "consumer"


class TestLifecycle:
    """initialize / close behavior."""

    def test_default_db_path(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        consumer = new()

        consumer.initialize({})
        consumer.close()

        assert (tmp_path / "soroswap_pairs.sqlite").exists()

    def test_close_before_initialize(self):
        consumer = new()

        consumer.close()
        consumer.close()

    def test_close_twice(self, consumer):
        consumer.close()
        consumer.close()

        assert consumer.get_stats()["initialized"] is False

    def test_process_before_initialize(self, new_pair_payload):
        with pytest.raises(ConsumerNotInitializedError):
            new().process(Message(payload=new_pair_payload()))

    def test_process_after_close(self, consumer, new_pair_payload):
        consumer.close()

        with pytest.raises(ConsumerNotInitializedError):
            consumer.process(Message(payload=new_pair_payload()))

    def test_failed_initialize_is_fatal(self, tmp_path):
        consumer = new()

        with pytest.raises(StorageInitError):
            consumer.initialize({"db_path": str(tmp_path)})

        assert consumer.store is None
        consumer.close()

    def test_reinitialize_switches_database(self, tmp_path, new_pair_payload):
        consumer = new()
        consumer.initialize({"db_path": str(tmp_path / "one.sqlite")})
        consumer.process(new_pair_payload())

        consumer.initialize({"db_path": str(tmp_path / "two.sqlite")})
        consumer.process(new_pair_payload(pair_address="P2"))
        consumer.close()

        assert [r[0] for r in table_rows(tmp_path / "one.sqlite")] == ["P1"]
        assert [r[0] for r in table_rows(tmp_path / "two.sqlite")] == ["P2"]

    def test_context_manager_closes(self, db_path):
        with new() as consumer:
            consumer.initialize({"db_path": str(db_path)})

        assert consumer.store is None


class TestScenarios:
    """End-to-end pair scenarios."""

    def test_new_pair_row(self, consumer, db_path, new_pair_payload):
        affected = consumer.process(Message(payload=new_pair_payload()))

        assert affected == 1
        assert table_rows(db_path) == [
            ("P1", "A", "B", "0", "0", "2024-01-01T00:00:00+00:00", None, None),
        ]

    def test_sync_after_new_pair(self, consumer, db_path, new_pair_payload, sync_payload):
        consumer.process(Message(payload=new_pair_payload()))

        affected = consumer.process(Message(payload=sync_payload()))

        assert affected == 1
        assert table_rows(db_path) == [
            (
                "P1", "A", "B", "100", "50",
                "2024-01-01T00:00:00+00:00",
                "2024-01-01T01:00:00+00:00",
                42,
            ),
        ]

        pair = consumer.store.get_pair("P1")
        assert pair.last_sync_at == datetime(2024, 1, 1, 1, tzinfo=timezone.utc)

    def test_sync_for_unknown_pair(self, consumer, db_path, sync_payload):
        affected = consumer.process(Message(payload=sync_payload(contract_id="UNKNOWN")))

        assert affected == 0
        assert table_rows(db_path) == []
        assert consumer.get_stats()["unknown_pair_syncs"] == 1

    def test_duplicate_new_pair(self, consumer, db_path, new_pair_payload):
        assert consumer.process(new_pair_payload()) == 1
        assert consumer.process(new_pair_payload(token_0="Z")) == 0

        rows = table_rows(db_path)
        assert len(rows) == 1
        assert rows[0][1] == "A"

    def test_bare_payload_accepted(self, consumer, new_pair_payload):
        assert consumer.process(new_pair_payload()) == 1


class TestRejectedEvents:
    """Malformed events leave the table untouched."""

    @pytest.mark.parametrize("field", ["pair_address", "token_0", "token_1"])
    def test_empty_field(self, consumer, db_path, new_pair_payload, field):
        with pytest.raises(EventValidationError):
            consumer.process(Message(payload=new_pair_payload(**{field: ""})))

        assert table_rows(db_path) == []

    def test_invalid_json(self, consumer, db_path):
        with pytest.raises(EventDecodeError):
            consumer.process(Message(payload=b"not json"))

        assert table_rows(db_path) == []

    def test_unknown_type(self, consumer, db_path, payload):
        with pytest.raises(UnknownEventTypeError):
            consumer.process(Message(payload=payload(type="burn", pair_address="P1")))

        assert table_rows(db_path) == []

    def test_string_payload(self, consumer):
        with pytest.raises(PayloadTypeError):
            consumer.process(Message(payload='{"type": "new_pair"}'))

    def test_consumer_keeps_working_after_rejection(self, consumer, new_pair_payload):
        with pytest.raises(EventDecodeError):
            consumer.process(b"{")

        assert consumer.process(new_pair_payload()) == 1

    def test_oversized_ledger_rejected(self, consumer, db_path, new_pair_payload, sync_payload):
        consumer.process(new_pair_payload())
        before = table_rows(db_path)

        with pytest.raises(EventDecodeError):
            consumer.process(Message(payload=sync_payload(ledger_sequence=2**63)))

        assert table_rows(db_path) == before
        assert consumer.get_stats()["rejected"] == 1
        assert consumer.get_stats()["failed"] == 0


class TestStats:
    """Processing counters."""

    def test_counts(self, consumer, new_pair_payload, sync_payload):
        consumer.process(new_pair_payload())
        consumer.process(new_pair_payload())
        consumer.process(sync_payload())
        consumer.process(sync_payload(contract_id="UNKNOWN"))
        with pytest.raises(EventDecodeError):
            consumer.process(b"[]")

        stats = consumer.get_stats()

        assert stats["processed"] == 4
        assert stats["pairs_inserted"] == 1
        assert stats["duplicate_pairs"] == 1
        assert stats["reserves_synced"] == 1
        assert stats["unknown_pair_syncs"] == 1
        assert stats["rejected"] == 1
        assert stats["failed"] == 0
        assert stats["initialized"] is True

    def test_storage_failure_counted(self, tmp_path, new_pair_payload):
        consumer = new()
        consumer.initialize({"db_path": str(tmp_path / "p.sqlite"), "process_timeout": 30})
        consumer.config.process_timeout = 0

        try:
            with pytest.raises(StorageOperationError):
                consumer.process(new_pair_payload())
            assert consumer.get_stats()["failed"] == 1
        finally:
            consumer.close()
