"""
Tests for Module 04 — Ledger chains.
Tests entry hashing, the append service, chain verification, tamper and fork
detection, conflict retries and the SQL-backed store.
"""
import datetime
import re
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from ledger import writer
from ledger.models import (
    ChainVerificationResult,
    EconomicLedgerEntry,
    LedgerType,
    QualityLedgerEntry,
    utc_now_millis,
)
from ledger.payloads import PayloadType, TransportPayload, UnknownPayload, parse_payload
from ledger.store import LedgerConflictError, SqlLedgerStore
from ledger.verifier import verify_chain
from ledger.writer import append_economic_tx, append_quality_tx, compute_tx_hash, generate_tx_id
from zkp.hashing import epoch_millis, sha256_hex


def economic_data(i=0, **overrides):
    data = {
        "batchId": "BATCH-001",
        "fromParty": "RETAILER",
        "toParty": "FARMER",
        "payerDid": "did:agritrace:retailer",
        "payeeDid": "did:agritrace:farmer",
        "product": "Tomato",
        "quantity": 100 + i,
        "amount": 2500,
        "paymentMethod": "UPI",
        "meta": {"type": "ORDER_PLACED", "orderId": f"ORD-{i}"},
    }
    data.update(overrides)
    return data


class TestEntryHashing:
    def test_hash_payload_order_and_linkage(self):
        created = datetime.datetime(2024, 3, 1, 10, 0, tzinfo=datetime.timezone.utc)
        entry = EconomicLedgerEntry(batch_id="B", amount=10, created_at=created, prev_tx_hash="p" * 64)
        payload = entry.hash_payload()
        assert list(payload) == ["batchId", "amount", "meta", "prevTxHash", "timestamp"]
        assert payload["timestamp"] == epoch_millis(created)
        assert entry.compute_hash() == sha256_hex(payload)

    def test_genesis_prev_is_null_in_payload(self):
        entry = QualityLedgerEntry(batch_id="B", stage="harvest")
        assert entry.hash_payload()["prevTxHash"] is None

    def test_numeric_fields_coerced_to_float(self):
        created = utc_now_millis()
        a = EconomicLedgerEntry(quantity=100, amount=5, created_at=created)
        b = EconomicLedgerEntry(quantity=100.0, amount=5.0, created_at=created)
        assert a.quantity == 100.0
        assert a.compute_hash() == b.compute_hash()

    def test_content_change_changes_hash(self):
        created = utc_now_millis()
        a = QualityLedgerEntry(quality_score=90, created_at=created)
        b = QualityLedgerEntry(quality_score=91, created_at=created)
        assert a.compute_hash() != b.compute_hash()

    def test_tx_id_not_hashed(self):
        created = utc_now_millis()
        a = EconomicLedgerEntry(tx_id="TX-1", amount=1, created_at=created)
        b = EconomicLedgerEntry(tx_id="TX-2", amount=1, created_at=created)
        assert a.compute_hash() == b.compute_hash()

    def test_to_dict_camel_case(self):
        data = EconomicLedgerEntry(batch_id="B", payer_did="did:x").to_dict()
        assert data["batchId"] == "B"
        assert data["payerDid"] == "did:x"
        assert data["ledgerType"] == "ECONOMIC"


class TestTxId:
    def test_economic_format(self):
        assert re.fullmatch(r"TX-\d+-[A-Z0-9]{7}", generate_tx_id(LedgerType.ECONOMIC))

    def test_quality_prefix(self):
        assert generate_tx_id(LedgerType.QUALITY).startswith("QL-")


class TestAppendService:
    def test_genesis_then_linked(self, memory_store):
        first = append_economic_tx(memory_store, economic_data(0))
        second = append_economic_tx(memory_store, economic_data(1))
        assert first.prev_tx_hash is None
        assert second.prev_tx_hash == first.tx_hash
        assert second.created_at > first.created_at

    def test_n_appends_form_valid_chain(self, memory_store):
        entries = [append_economic_tx(memory_store, economic_data(i)) for i in range(25)]
        for prev, cur in zip(entries, entries[1:]):
            assert cur.prev_tx_hash == prev.tx_hash
        assert all(compute_tx_hash(e) == e.tx_hash for e in entries)
        assert len({e.tx_hash for e in entries}) == 25
        assert verify_chain(memory_store, LedgerType.ECONOMIC).is_valid

    def test_chains_are_independent(self, memory_store):
        append_economic_tx(memory_store, economic_data())
        quality = append_quality_tx(memory_store, {"batchId": "BATCH-001", "stage": "harvest", "qualityScore": 90})
        assert quality.prev_tx_hash is None
        assert quality.tx_id.startswith("QL-")

    def test_snake_and_camel_case_accepted(self, memory_store):
        entry = append_quality_tx(memory_store, {"batch_id": "B", "moistureLevel": 10, "quality_data": {"a": 1}})
        assert entry.batch_id == "B"
        assert entry.moisture_level == 10.0
        assert entry.quality_data == {"a": 1}

    def test_unknown_field_rejected(self, memory_store):
        with pytest.raises(ValueError, match="colour"):
            append_economic_tx(memory_store, economic_data(colour="red"))

    def test_quality_score_range(self, memory_store):
        with pytest.raises(ValueError):
            append_quality_tx(memory_store, {"batchId": "B", "qualityScore": 101})

    def test_concurrent_appends_form_single_chain(self, memory_store):
        with ThreadPoolExecutor(max_workers=8) as pool:
            entries = list(pool.map(lambda i: append_economic_tx(memory_store, economic_data(i)), range(40)))
        assert len({e.tx_hash for e in entries}) == 40
        assert len({e.prev_tx_hash for e in entries}) == 40
        result = verify_chain(memory_store, LedgerType.ECONOMIC)
        assert result.is_valid
        assert result.total_entries == 40

    def test_timestamp_after_future_tail(self):
        tail = QualityLedgerEntry(created_at=utc_now_millis() + datetime.timedelta(seconds=5))
        assert writer._next_timestamp(tail) == tail.created_at + datetime.timedelta(milliseconds=1)


class TestConflictRetry:
    def _store(self):
        store = MagicMock()
        store.get_last_entry.return_value = None
        return store

    def test_retries_after_conflict(self):
        store = self._store()
        calls = []

        def append(ledger_type, entry):
            calls.append(entry)
            if len(calls) == 1:
                raise LedgerConflictError(ledger_type, entry.prev_tx_hash, "f" * 64)
            return entry

        store.append_entry.side_effect = append
        entry = append_economic_tx(store, economic_data())
        assert len(calls) == 2
        assert entry is calls[1]
        assert store.get_last_entry.call_count == 2

    def test_gives_up_after_max_retries(self, monkeypatch):
        monkeypatch.setattr(writer, "LEDGER_APPEND_MAX_RETRIES", 2)
        store = self._store()
        store.append_entry.side_effect = LedgerConflictError(LedgerType.ECONOMIC, None, "f" * 64)
        with pytest.raises(LedgerConflictError):
            append_economic_tx(store, economic_data())
        assert store.append_entry.call_count == 2

    def test_memory_store_rejects_stale_prev(self, memory_store):
        append_economic_tx(memory_store, economic_data())
        stale = EconomicLedgerEntry(batch_id="B", prev_tx_hash=None)
        with pytest.raises(LedgerConflictError):
            memory_store.append_entry(LedgerType.ECONOMIC, stale)


class TestChainVerification:
    def test_empty_chain_valid(self, memory_store):
        result = verify_chain(memory_store, LedgerType.QUALITY)
        assert result.is_valid
        assert result.total_entries == 0

    def test_tampered_content_detected(self, memory_store):
        entries = [append_economic_tx(memory_store, economic_data(i)) for i in range(5)]
        entries[2].amount = 1.0
        result = verify_chain(memory_store, LedgerType.ECONOMIC)
        assert not result.is_valid
        assert result.broken_at_tx_id == entries[2].tx_id
        assert "tx_hash mismatch" in result.error_message

    def test_broken_link_detected(self, memory_store):
        entries = [append_economic_tx(memory_store, economic_data(i)) for i in range(3)]
        entries[1].prev_tx_hash = "0" * 64
        entries[1].tx_hash = entries[1].compute_hash()
        result = verify_chain(memory_store, LedgerType.ECONOMIC)
        assert not result.is_valid
        assert result.broken_at_tx_id == entries[1].tx_id

    def test_fork_detected(self, memory_store):
        first = append_economic_tx(memory_store, economic_data(0))
        append_economic_tx(memory_store, economic_data(1))
        fork = EconomicLedgerEntry(
            tx_id="TX-FORK",
            batch_id="BATCH-001",
            amount=1,
            prev_tx_hash=first.tx_hash,
            created_at=utc_now_millis() + datetime.timedelta(seconds=1),
        )
        fork.tx_hash = fork.compute_hash()
        memory_store._entries[LedgerType.ECONOMIC].append(fork)
        result = verify_chain(memory_store, LedgerType.ECONOMIC)
        assert not result.is_valid
        assert result.broken_at_tx_id == "TX-FORK"
        assert "fork" in result.error_message

    def test_result_str(self):
        ok = ChainVerificationResult(LedgerType.ECONOMIC, is_valid=True, total_entries=7)
        assert str(ok) == "ECONOMIC chain OK: 7 entries verified"
        bad = ChainVerificationResult(LedgerType.QUALITY, False, 3, "QL-1", "hash mismatch")
        assert "BROKEN at QL-1" in str(bad)


class TestSqlStore:
    def test_append_and_verify(self, db_session):
        store = SqlLedgerStore(db_session)
        entries = [append_economic_tx(store, economic_data(i)) for i in range(5)]
        assert store.count_entries(LedgerType.ECONOMIC) == 5
        assert store.get_last_entry(LedgerType.ECONOMIC).tx_hash == entries[-1].tx_hash
        assert verify_chain(store, LedgerType.ECONOMIC).is_valid

    def test_round_trip_preserves_hash(self, db_session):
        store = SqlLedgerStore(db_session)
        appended = append_quality_tx(store, {
            "batchId": "BATCH-001", "stage": "transport", "qualityScore": 87.5,
            "temperature": 6, "spoilageDetected": False, "qualityData": {"location": "NH-48", "humidity": 70},
        })
        loaded = store.find_entries_by_batch("BATCH-001")[0]
        assert loaded.tx_hash == appended.tx_hash
        assert compute_tx_hash(loaded) == loaded.tx_hash
        assert loaded.created_at == appended.created_at

    def test_stale_prev_conflicts(self, db_session):
        store = SqlLedgerStore(db_session)
        append_economic_tx(store, economic_data())
        stale = EconomicLedgerEntry(tx_id="TX-STALE", batch_id="B", prev_tx_hash=None)
        stale.tx_hash = stale.compute_hash()
        with pytest.raises(LedgerConflictError):
            store.append_entry(LedgerType.ECONOMIC, stale)

    def test_filters_and_paging(self, db_session):
        store = SqlLedgerStore(db_session)
        for i in range(4):
            append_economic_tx(store, economic_data(i, batchId=f"B-{i % 2}"))
        assert store.count_entries(LedgerType.ECONOMIC, {"batch_id": "B-0"}) == 2
        assert store.count_entries(LedgerType.ECONOMIC, {"did": "did:agritrace:farmer"}) == 4
        newest = store.list_entries(LedgerType.ECONOMIC, newest_first=True, limit=1)[0]
        assert newest.quantity == 103.0
        assert store.list_entries(LedgerType.ECONOMIC, {"stage": "harvest"}) == []

    def test_unknown_filter_rejected(self, db_session):
        with pytest.raises(ValueError):
            SqlLedgerStore(db_session).list_entries(LedgerType.ECONOMIC, {"colour": "red"})


class TestPayloads:
    def test_transport_payload(self):
        payload = parse_payload({"type": "TRANSPORT_PICKUP", "vehicleId": "DL-1C-1234", "temperature": "4.5"})
        assert isinstance(payload, TransportPayload)
        assert payload.payload_type is PayloadType.TRANSPORT_PICKUP
        assert payload.temperature == 4.5

    def test_unknown_marker_keeps_raw(self):
        payload = parse_payload({"type": "SOMETHING_NEW", "x": 1})
        assert isinstance(payload, UnknownPayload)
        assert payload.raw == {"type": "SOMETHING_NEW", "x": 1}
        assert payload.tx_type == "SOMETHING_NEW"

    def test_defaults(self):
        payload = parse_payload(None)
        assert payload.currency == "INR"
        assert payload.tx_type == "Transaction"
