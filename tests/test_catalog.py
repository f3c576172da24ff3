"""
Tests for catalog helpers, app configuration and the data repository.
"""

import asyncio
from pathlib import Path

import pytest

from api.app_config import AppConfig, get_app_config, reset_app_config
from api.data_repository import ChallengeDataRepository, ChallengeSetNotFoundError
from api.shared.catalog import (
    ChallengeSet,
    ChallengeSetType,
    HeaderKey,
    build_preview,
    list_challenge_sets,
    row_histogram,
)

from .sample_data import META, WEATHER_FILE


@pytest.fixture
def catalog():
    return [ChallengeSet.model_validate(entry) for entry in META["challengeSets"]]


class TestChallengeSet:
    def test_aliases(self, weather_set):
        assert weather_set.file_name == WEATHER_FILE
        assert weather_set.train_log_ratio == 1.0
        assert weather_set.model_dump(by_alias=True)["fileName"] == WEATHER_FILE

    def test_overlap_table_follows_type(self, catalog):
        assert catalog[0].overlap_table == "topics"
        assert catalog[1].overlap_table == "tests"

    def test_export_file_name(self, weather_set):
        assert weather_set.export_file_name == "challenge-set-Weather.json"


class TestListChallengeSets:
    def test_no_sort_keeps_file_order(self, catalog):
        assert list_challenge_sets(catalog) == catalog

    def test_type_filter(self, catalog):
        result = list_challenge_sets(catalog, types=[ChallengeSetType.UNIT_TEST])
        assert [s.display_name for s in result] == ["Rain", "Unscored"]

    def test_missing_values_last_in_both_directions(self, catalog):
        for descending in (False, True):
            result = list_challenge_sets(catalog, sort=HeaderKey.FAMILIARITY, descending=descending)
            assert result[-1].display_name == "Unscored"

    def test_counts(self, catalog):
        result = list_challenge_sets(catalog, sort=HeaderKey.LOG_COUNT, descending=True)
        assert [s.log_count for s in result] == [3, 1, 0]


class TestPreviewAndRowHistogram:
    def test_preview_size(self, weather_set, weather_store):
        preview = build_preview(weather_set, weather_store, preview_size=2, max_keywords=1)
        assert [s.source for s in preview.sentences] == [
            "What is the weather today",
            "Weather forecast for tomorrow",
        ]
        assert [k.word for k in preview.keywords] == ["weather"]

    def test_row_histogram(self, weather_store):
        bins = row_histogram(weather_store, "familiarity")
        assert len(bins) == 10
        assert [b.count for b in bins][:2] == [0, 1]
        assert sum(b.count for b in bins) == 3

    def test_row_histogram_unknown_metric(self, weather_store):
        with pytest.raises(ValueError):
            row_histogram(weather_store, "bleu")


class TestAppConfig:
    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CHALLENGE_EXPLORER_DATA", str(tmp_path))
        monkeypatch.setenv("CHALLENGE_EXPLORER_LOG_LEVEL", "debug")
        monkeypatch.setenv("CHALLENGE_EXPLORER_CORS_ORIGINS", "http://a, http://b")
        config = AppConfig.from_env()
        assert config.data_dir == tmp_path
        assert config.challenge_set_dir == tmp_path / "challenge-set"
        assert config.log_level == "DEBUG"
        assert config.cors_origins == ["http://a", "http://b"]

    def test_view_limits(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CHALLENGE_EXPLORER_DATA", str(tmp_path))
        assert AppConfig.from_env().max_views == 32
        monkeypatch.setenv("CHALLENGE_EXPLORER_MAX_VIEWS", "4")
        monkeypatch.setenv("CHALLENGE_EXPLORER_VIEW_MAX_AGE_HOURS", "0.5")
        config = AppConfig.from_env()
        assert config.max_views == 4
        assert config.view_max_age_hours == 0.5

    def test_cached_until_reset(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CHALLENGE_EXPLORER_DATA", str(tmp_path / "one"))
        reset_app_config()
        assert get_app_config().data_dir == Path(tmp_path / "one")
        monkeypatch.setenv("CHALLENGE_EXPLORER_DATA", str(tmp_path / "two"))
        assert get_app_config().data_dir == Path(tmp_path / "one")
        reset_app_config()
        assert get_app_config().data_dir == Path(tmp_path / "two")
        reset_app_config()


class TestDataRepository:
    def test_list_and_get(self, data_dir):
        repository = ChallengeDataRepository(data_dir)
        sets = asyncio.run(repository.list_challenge_sets())
        assert len(sets) == 3
        rain = asyncio.run(repository.get_challenge_set("challenge-test_rain"))
        assert rain.type == ChallengeSetType.UNIT_TEST

    def test_unknown_set(self, data_dir):
        repository = ChallengeDataRepository(data_dir)
        with pytest.raises(ChallengeSetNotFoundError):
            asyncio.run(repository.get_challenge_set("nope"))
        with pytest.raises(ChallengeSetNotFoundError):
            asyncio.run(repository.load_store("../dataset-id-map"))

    def test_each_store_is_fresh(self, data_dir):
        repository = ChallengeDataRepository(data_dir)
        first = asyncio.run(repository.load_store(WEATHER_FILE))
        first.delete(0)
        second = asyncio.run(repository.load_store(WEATHER_FILE))
        assert first.count == 5
        assert second.count == 6

    def test_optional_files(self, data_dir):
        repository = ChallengeDataRepository(data_dir)
        assert asyncio.run(repository.load_source_id_map())["1"] == ["web", "Web"]
        (data_dir / "challenge-set" / "challenge-intersections.json").write_text("{broken", encoding="utf-8")
        assert asyncio.run(repository.load_intersections()) is None
