"""
Root conftest.py for challenge set explorer tests.

This file contains shared fixtures and pytest configuration
that applies to all test modules.
"""

import copy
import json
import sys
from pathlib import Path

import pytest

# Ensure the project root is in the path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from api.app_config import reset_app_config
from api.shared.catalog import ChallengeSet
from api.shared.record_store import RecordStore
from api.shared.set_view import SetView

from .sample_data import (
    INTERSECTIONS,
    META,
    RAIN_DATA,
    SOURCE_ID_MAP,
    WEATHER_DATA,
    WEATHER_FILE,
)


# ============================================================================
# Pytest Hooks
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "websocket: mark test as involving WebSocket communication",
    )
    config.addinivalue_line(
        "markers",
        "api: mark test as going through the HTTP API",
    )


def pytest_collection_modifyitems(config, items):
    """Mark WebSocket and API tests based on their name."""
    for item in items:
        if "websocket" in item.name.lower() or "websocket" in str(item.fspath):
            item.add_marker(pytest.mark.websocket)
        if str(item.fspath).endswith("_api.py"):
            item.add_marker(pytest.mark.api)


# ============================================================================
# Shared Fixtures
# ============================================================================


@pytest.fixture
def weather_set():
    return ChallengeSet.model_validate(META["challengeSets"][0])


@pytest.fixture
def weather_store():
    return RecordStore.from_payload(copy.deepcopy(WEATHER_DATA))


@pytest.fixture
def example_store():
    """Five samples with two training scores on 2023-01-02."""
    return RecordStore.from_payload({
        "source": ["cat", "dog", "bird", "fish", "horse"],
        "hyp": ["chat", "chien", "oiseau", "poisson", "cheval"],
        "date": [20230101, 20230101, 20230102, 20230102, 20230103],
        "train": [1, 0, 1, 1, 0],
        "chrf": [0.9, None, 0.4, 0.95, None],
    })


@pytest.fixture
def make_view(weather_set, weather_store):
    """Factory for set views over the weather set."""

    def _make(store=None, source_id_map=SOURCE_ID_MAP, intersections=INTERSECTIONS, **kwargs):
        return SetView(
            weather_set,
            store if store is not None else weather_store,
            source_id_map=copy.deepcopy(source_id_map),
            intersections=copy.deepcopy(intersections),
            **kwargs,
        )

    return _make


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    """Data folder with the weather and rain sets, used by the HTTP API."""
    challenge_dir = tmp_path / "challenge-set"
    challenge_dir.mkdir()
    (challenge_dir / "challenge-set-meta.json").write_text(json.dumps(META), encoding="utf-8")
    (challenge_dir / f"{WEATHER_FILE}.json").write_text(json.dumps(WEATHER_DATA), encoding="utf-8")
    (challenge_dir / "challenge-test_rain.json").write_text(json.dumps(RAIN_DATA), encoding="utf-8")
    (challenge_dir / "challenge-intersections.json").write_text(json.dumps(INTERSECTIONS), encoding="utf-8")
    (tmp_path / "dataset-id-map.json").write_text(json.dumps(SOURCE_ID_MAP), encoding="utf-8")

    monkeypatch.setenv("CHALLENGE_EXPLORER_DATA", str(tmp_path))
    reset_app_config()
    yield tmp_path
    reset_app_config()

    from api.view_manager import view_manager

    view_manager.clear()
