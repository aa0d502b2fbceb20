"""
Tests for the SQLite hash history (cross-submission duplicates).

Running:
    python -m pytest tests/test_duplicates.py -v
"""

import threading

import pytest

from loyaltyguard.pipelines.duplicates import FingerprintStore, receipt_id_key
from loyaltyguard.pipelines.image_forensics import content_hash


@pytest.fixture
def store(tmp_path):
    return FingerprintStore(str(tmp_path / "nested" / "fingerprints.db"))


class TestFingerprintStore:

    def test_unknown_hash_is_not_duplicate(self, store):
        assert store.check_duplicate_hash(content_hash(b"image-a")) is False

    def test_recorded_hash_is_duplicate(self, store):
        key = content_hash(b"image-a")
        assert store.record_hashes([key], "r1") == 1
        assert store.check_duplicate_hash(key) is True

    def test_recording_twice_is_idempotent(self, store):
        key = content_hash(b"image-a")
        store.record_hashes([key, key], "r1")
        assert store.record_hashes([key], "r2") == 0
        assert store.count() == 1

    def test_empty_key_never_duplicate(self, store):
        store.record_hashes(["", None], "r1")
        assert store.check_duplicate_hash("") is False
        assert store.count() == 0

    def test_history_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "fp.db")
        FingerprintStore(path).record_hashes(["abc"], "r1")
        assert FingerprintStore(path).check_duplicate_hash("abc") is True

    def test_usable_from_other_threads(self, store):
        store.record_hashes(["abc"], "r1")
        results = []
        worker = threading.Thread(target=lambda: results.append(store.check_duplicate_hash("abc")))
        worker.start()
        worker.join()
        assert results == [True]


class TestReceiptIdKey:

    def test_normalized(self):
        assert receipt_id_key(" inv  2024 ") == "rid:INV 2024"
        assert receipt_id_key("inv 2024") == receipt_id_key("INV 2024")

    def test_prefixed(self):
        assert receipt_id_key("abc").startswith("rid:")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
