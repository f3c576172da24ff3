"""
Tests for the columnar record store.

Run tests:
    pytest tests/test_record_store.py -v
"""

import pytest

from api.shared.record_store import COLUMNS, RecordStore, RecordStoreError


class TestRecordStoreConstruction:
    """Building a store from a challenge set document."""

    def test_missing_optional_columns_are_filled(self):
        store = RecordStore.from_payload({"source": ["a", "b"], "hyp": ["x", None]})

        assert store.count == 2
        assert store.hyp == ["x", ""]
        assert store.x == [0.0, 0.0]
        assert store.date == [None, None]
        assert store.train == [False, False]
        assert store.chrf == [None, None]

    def test_train_flags_become_booleans(self, weather_store):
        assert weather_store.train == [True, False, True, False, False, True]

    def test_numeric_source_ids_are_stringified(self):
        store = RecordStore.from_payload({
            "source": ["a", "b"],
            "hyp": ["x", "y"],
            "source_id": [7, None],
        })
        assert store.source_id == ["7", None]

    def test_length_mismatch_raises(self):
        with pytest.raises(RecordStoreError):
            RecordStore.from_payload({"source": ["a", "b"], "hyp": ["x"]})

    def test_record_store_error_is_value_error(self):
        assert issubclass(RecordStoreError, ValueError)

    def test_keywords_are_kept_in_order(self, weather_store):
        assert weather_store.keywords == [("weather", 0.9), ("flight", 0.6), ("rain", 0.2)]


class TestRecordStoreAccess:
    """Lookup helpers."""

    def test_index_of_source_returns_first_match(self):
        store = RecordStore.from_payload({"source": ["a", "b", "a"], "hyp": ["1", "2", "3"]})
        assert store.index_of_source("a") == 0
        assert store.index_of_source("missing") is None

    def test_values_rejects_unknown_column(self, weather_store):
        with pytest.raises(RecordStoreError):
            weather_store.values("bleu")


class TestRecordStoreDeletion:
    """Deleting a sample keeps every column aligned."""

    def test_delete_splices_every_column(self, weather_store):
        weather_store.delete(2)

        assert weather_store.count == 5
        assert len(weather_store) == 5
        for name in COLUMNS:
            assert len(getattr(weather_store, name)) == 5
        assert weather_store.source[2] == "Is it raining in London"
        assert weather_store.hyp[2] == "Pleut-il à Londres"
        assert weather_store.date[2] == 20230104
        assert weather_store.chrf[2] is None
        assert weather_store.familiarity[2] == 0.75

    def test_delete_out_of_range(self, weather_store):
        with pytest.raises(IndexError):
            weather_store.delete(6)
        with pytest.raises(IndexError):
            weather_store.delete(-1)
