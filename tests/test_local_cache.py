"""Unit tests for the JSON-backed local transaction cache."""

from __future__ import annotations

import json
from decimal import Decimal
from unittest.mock import patch

import pytest

from storefront_finance import constants, ordering
from storefront_finance.exceptions import CacheCorruption
from storefront_finance.local_cache import (
    SEED_TRANSACTIONS,
    LocalCache,
    decode_document,
    encode_document,
)


# ---------------------------------------------------------------------------
# Seeding and loading
# ---------------------------------------------------------------------------


def test_missing_file_is_seeded_and_persisted(local_cache, cache_path):
    """First use writes the baseline records to disk."""

    items = local_cache.load_or_seed()
    assert [txn.id for txn in items] == ["TRX002", "TRX001", "TRX004", "TRX003", "TRX005"]
    assert cache_path.exists()
    document = json.loads(cache_path.read_text(encoding="utf-8"))
    assert len(document[constants.STORAGE_KEY]) == len(SEED_TRANSACTIONS)


def test_seeding_twice_is_byte_identical(tmp_path):
    """Two independent seedings produce the exact same file content."""

    first_path = tmp_path / "one.json"
    second_path = tmp_path / "two.json"
    LocalCache(first_path).load_or_seed()
    LocalCache(second_path).load_or_seed()
    assert first_path.read_bytes() == second_path.read_bytes()


def test_loading_existing_snapshot_does_not_rewrite(local_cache, cache_path):
    """A healthy snapshot is read as-is on the next start."""

    local_cache.load_or_seed()
    before = cache_path.read_bytes()
    mtime = cache_path.stat().st_mtime_ns
    reopened = LocalCache(cache_path)
    assert [txn.id for txn in reopened.load_or_seed()] == [txn.id for txn in local_cache.all()]
    assert cache_path.read_bytes() == before
    assert cache_path.stat().st_mtime_ns == mtime


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        json.dumps({"wrong-key": []}),
        json.dumps({constants.STORAGE_KEY: [{"id": "TRX001"}]}),
        json.dumps([1, 2, 3]),
    ],
)
def test_corrupt_snapshot_is_reseeded(cache_path, content, caplog):
    """Undecodable snapshots are replaced by the seed set without raising."""

    cache_path.parent.mkdir(parents=True, exist_ok=True)
    cache_path.write_text(content, encoding="utf-8")
    caplog.set_level("WARNING")

    items = LocalCache(cache_path).load_or_seed()
    assert len(items) == len(SEED_TRANSACTIONS)
    assert any("corrupt" in record.getMessage() for record in caplog.records)
    assert decode_document(cache_path.read_text(encoding="utf-8")) == items


def test_load_or_seed_returns_copies(local_cache):
    """Mutating a returned list does not change the cache."""

    items = local_cache.load_or_seed()
    items.clear()
    assert len(local_cache.all()) == len(SEED_TRANSACTIONS)


def test_reload_reads_external_changes(local_cache, cache_path, make_transaction):
    """reload discards memory and re-reads the file."""

    local_cache.load_or_seed()
    cache_path.write_text(encode_document([make_transaction(id="TRX900")]), encoding="utf-8")
    assert [txn.id for txn in local_cache.reload()] == ["TRX900"]


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


def test_encode_document_layout(make_transaction):
    """The document holds one array under the storage key, pretty-printed."""

    text = encode_document([make_transaction(description="Café")])
    assert text.endswith("\n")
    assert "Café" in text
    document = json.loads(text)
    assert list(document) == [constants.STORAGE_KEY]
    assert document[constants.STORAGE_KEY][0]["amount"] == "10.00"


def test_decode_document_raises_on_garbage():
    with pytest.raises(CacheCorruption):
        decode_document("]]")


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def test_upsert_inserts_and_keeps_canonical_order(empty_cache, make_transaction):
    """New entries land in their canonical position."""

    empty_cache.upsert(make_transaction(id="TRX001", transaction_date="2024-03-01"))
    empty_cache.upsert(make_transaction(id="TRX002", transaction_date="2024-02-01"))
    empty_cache.upsert(make_transaction(id="TRX003", transaction_date="2024-03-01"))
    assert [txn.id for txn in empty_cache.all()] == ["TRX003", "TRX001", "TRX002"]


def test_upsert_replaces_existing_entry(empty_cache, make_transaction):
    empty_cache.upsert(make_transaction(id="TRX001"))
    empty_cache.upsert(make_transaction(id="TRX001", amount=Decimal("42.00")))
    items = empty_cache.all()
    assert len(items) == 1
    assert items[0].amount == Decimal("42.00")


def test_upsert_many_writes_once_and_skips_unchanged(empty_cache, make_transaction):
    """A batch is persisted in one write; entries equal to the cache are skipped."""

    existing = make_transaction(id="TRX001", transaction_date="2024-01-01")
    empty_cache.upsert(existing)
    batch = [
        existing,
        make_transaction(id="TRX002", transaction_date="2024-03-01"),
        make_transaction(id="TRX003", transaction_date="2024-02-01"),
    ]
    with patch.object(empty_cache, "_write", wraps=empty_cache._write) as write:
        assert empty_cache.upsert_many(batch) == 2
        assert empty_cache.upsert_many(batch) == 0
    assert write.call_count == 1
    assert [txn.id for txn in empty_cache.all()] == ["TRX002", "TRX003", "TRX001"]
    assert decode_document(empty_cache.path.read_text(encoding="utf-8")) == empty_cache.all()


def test_mutations_are_persisted_in_canonical_order(empty_cache, make_transaction):
    """The file on disk always mirrors the in-memory canonical order."""

    for index, day in enumerate(["2024-01-05", "2024-03-01", "2024-02-10"], start=1):
        empty_cache.upsert(make_transaction(id=f"TRX{index:03d}", transaction_date=day))
    on_disk = decode_document(empty_cache.path.read_text(encoding="utf-8"))
    assert ordering.is_canonical(on_disk)
    assert on_disk == empty_cache.all()


def test_remove_reports_whether_entry_existed(empty_cache, make_transaction):
    empty_cache.upsert(make_transaction(id="TRX001"))
    assert empty_cache.remove("TRX001") is True
    assert empty_cache.remove("TRX001") is False
    assert empty_cache.find_by_id("TRX001") is None


def test_query_filters_with_predicate(local_cache):
    pending = local_cache.query(lambda txn: txn.status == constants.TransactionStatus.PENDING)
    assert [txn.id for txn in pending] == ["TRX003"]


def test_replace_all_sorts_and_persists(empty_cache, make_transaction):
    empty_cache.replace_all(
        [
            make_transaction(id="TRX001", transaction_date="2024-01-01"),
            make_transaction(id="TRX002", transaction_date="2024-05-01"),
        ]
    )
    assert [txn.id for txn in LocalCache(empty_cache.path, seed=()).all()] == ["TRX002", "TRX001"]


def test_no_temporary_file_is_left_behind(empty_cache, make_transaction):
    empty_cache.upsert(make_transaction())
    assert not empty_cache.path.with_name(empty_cache.path.name + ".tmp").exists()


# ---------------------------------------------------------------------------
# Local identifiers
# ---------------------------------------------------------------------------


def test_next_local_id_follows_highest_suffix(local_cache):
    assert local_cache.next_local_id() == "TRX006"


def test_next_local_id_does_not_reuse_after_delete(local_cache):
    """Deleting a middle record never makes the next id collide."""

    local_cache.remove("TRX002")
    assert local_cache.next_local_id() == "TRX006"


def test_next_local_id_ignores_remote_ids(empty_cache, make_transaction):
    empty_cache.upsert(make_transaction(id="FT9999"))
    assert empty_cache.next_local_id() == "TRX001"
