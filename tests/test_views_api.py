"""
Tests for the set view API: opening views, filters, plots, deletion and
export.

Run tests:
    pytest tests/test_views_api.py -v
"""

import pytest
from fastapi.testclient import TestClient

from api.app_config import reset_app_config
from main import app

from .sample_data import WEATHER_FILE

client = TestClient(app)


@pytest.fixture
def view_id(data_dir):
    response = client.post("/api/views", json={"file_name": WEATHER_FILE})
    assert response.status_code == 200
    return response.json()["view_id"]


class TestViewLifecycle:
    def test_open_view(self, data_dir):
        response = client.post("/api/views", json={"file_name": WEATHER_FILE})
        assert response.status_code == 200
        snapshot = response.json()["snapshot"]
        assert snapshot["count"] == 6
        assert snapshot["visible_count"] == 6
        assert snapshot["filter_tags"] == []
        assert snapshot["charts"]["source_id"]["bins"][0]["display_name"] == "Redacted/Others"

    def test_open_unknown_set(self, data_dir):
        response = client.post("/api/views", json={"file_name": "nope"})
        assert response.status_code == 404

    def test_open_without_optional_files(self, data_dir):
        (data_dir / "dataset-id-map.json").unlink()
        (data_dir / "challenge-set" / "challenge-intersections.json").unlink()
        response = client.post("/api/views", json={"file_name": WEATHER_FILE})
        assert response.status_code == 200
        charts = response.json()["snapshot"]["charts"]
        assert charts["source_id"] is None
        assert charts["other_sets"] is None
        assert charts["chrf"] is not None

    def test_oldest_view_is_closed_beyond_limit(self, data_dir, monkeypatch):
        monkeypatch.setenv("CHALLENGE_EXPLORER_MAX_VIEWS", "1")
        reset_app_config()
        first = client.post("/api/views", json={"file_name": WEATHER_FILE}).json()["view_id"]
        second = client.post("/api/views", json={"file_name": WEATHER_FILE}).json()["view_id"]
        assert client.get(f"/api/views/{first}").status_code == 404
        assert client.get(f"/api/views/{second}").status_code == 200

    def test_get_and_close(self, view_id):
        assert client.get(f"/api/views/{view_id}").status_code == 200
        response = client.delete(f"/api/views/{view_id}")
        assert response.json() == {"success": True, "view_id": view_id}
        assert client.get(f"/api/views/{view_id}").status_code == 404
        assert client.delete(f"/api/views/{view_id}").status_code == 404

    def test_views_are_independent(self, data_dir):
        first = client.post("/api/views", json={"file_name": WEATHER_FILE}).json()["view_id"]
        second = client.post("/api/views", json={"file_name": WEATHER_FILE}).json()["view_id"]
        client.post(f"/api/views/{first}/samples/delete", json={"source": "Cancel my flight"})
        assert client.get(f"/api/views/{first}").json()["count"] == 5
        assert client.get(f"/api/views/{second}").json()["count"] == 6


class TestFilterEndpoints:
    def test_dates(self, view_id):
        response = client.put(f"/api/views/{view_id}/filters/date", json={"dates": ["20230104"]})
        assert response.json()["visible_indexes"] == [3, 4]

        response = client.put(f"/api/views/{view_id}/filters/date", json={"start": "20230101", "end": "20230102"})
        assert response.json()["visible_indexes"] == [0, 1]

    def test_date_request_shape(self, view_id):
        response = client.put(f"/api/views/{view_id}/filters/date", json={"start": "20230101"})
        assert response.status_code == 422

    def test_search(self, view_id):
        response = client.put(f"/api/views/{view_id}/filters/search", json={"key": "zzzznotfound"})
        data = response.json()
        assert data["visible_indexes"] == []
        assert data["groups"]["search"] == [-1]

        response = client.put(f"/api/views/{view_id}/filters/search", json={"key": ""})
        assert response.json()["visible_count"] == 6

    def test_search_key_length_is_capped(self, view_id):
        response = client.put(f"/api/views/{view_id}/filters/search", json={"key": "a" * 201})
        assert response.status_code == 422

    def test_keyword_toggle(self, view_id):
        response = client.post(f"/api/views/{view_id}/filters/keyword/toggle", json={"word": "flight"})
        assert response.json()["visible_indexes"] == [2, 4]

    def test_brush(self, view_id):
        response = client.put(f"/api/views/{view_id}/filters/chrf/brush", json={"selection": [0.3, 0.5]})
        data = response.json()
        assert data["visible_indexes"] == [2]
        assert data["selections"]["chrf"] == pytest.approx([0.3, 0.5])

        response = client.put(f"/api/views/{view_id}/filters/chrf/brush", json={"selection": None})
        assert response.json()["selections"]["chrf"] is None

    def test_brush_validation(self, view_id):
        assert client.put(f"/api/views/{view_id}/filters/bleu/brush", json={"selection": [0.1, 0.2]}).status_code == 400
        assert client.put(f"/api/views/{view_id}/filters/chrf/brush", json={"selection": [0.1]}).status_code == 400

    def test_source_id_toggle(self, view_id):
        response = client.post(f"/api/views/{view_id}/filters/source-id/toggle", json={"key": None})
        assert response.json()["visible_indexes"] == [1, 4]

    def test_other_set_toggle(self, view_id):
        response = client.post(f"/api/views/{view_id}/filters/other-set/toggle", json={"name": "challenge-test_rain"})
        assert response.json()["visible_indexes"] == [0, 3]

    def test_embedding(self, view_id):
        response = client.put(
            f"/api/views/{view_id}/filters/embedding",
            json={"polygon": [[0.5, 0.5], [1.0, 0.5], [1.0, 1.0], [0.5, 1.0]]},
        )
        assert response.json()["visible_indexes"] == [2, 4]

        response = client.put(
            f"/api/views/{view_id}/filters/embedding",
            json={"rect": {"x_min": 0.0, "x_max": 0.3, "y_min": 0.0, "y_max": 0.35}},
        )
        assert response.json()["visible_indexes"] == [0, 1, 3, 5]

        assert client.put(f"/api/views/{view_id}/filters/embedding", json={}).status_code == 422

    def test_ragged_lasso_is_ignored(self, view_id):
        client.put(f"/api/views/{view_id}/filters/search", json={"key": "flight"})
        response = client.put(
            f"/api/views/{view_id}/filters/embedding",
            json={"polygon": [[0, 0], [1], [1, 1, 1]]},
        )
        assert response.status_code == 200
        assert response.json()["visible_indexes"] == [2, 4]
        assert response.json()["groups"]["embedding"] == []

    def test_close_tag(self, view_id):
        client.put(f"/api/views/{view_id}/filters/search", json={"key": "weather"})
        client.post(f"/api/views/{view_id}/filters/keyword/toggle", json={"word": "flight"})
        response = client.delete(f"/api/views/{view_id}/filters/search")
        data = response.json()
        assert data["filter_tags"] == [{"type": "keyword", "message": "Keyword"}]
        assert data["selections"]["search"] == ""

        assert client.delete(f"/api/views/{view_id}/filters/bogus").status_code == 422

    def test_filters_on_unknown_view(self, data_dir):
        response = client.put("/api/views/nope/filters/search", json={"key": "a"})
        assert response.status_code == 404


class TestPlotEndpoints:
    def test_focus(self, view_id):
        response = client.get(f"/api/views/{view_id}/plots/chrf")
        data = response.json()
        assert data["mode"] == "focus"
        assert len(data["data"]["bins"]) == 20

    def test_thumbnail(self, view_id):
        response = client.get(f"/api/views/{view_id}/plots/source%20id", params={"mode": "thumbnail"})
        assert response.json()["data"] == [2, 1, 0]

    def test_unknown_plot(self, view_id):
        assert client.get(f"/api/views/{view_id}/plots/scatter").status_code == 422

    def test_reset(self, view_id):
        client.post(f"/api/views/{view_id}/filters/keyword/toggle", json={"word": "flight"})
        response = client.post(f"/api/views/{view_id}/plots/keyword/reset")
        assert response.json()["visible_count"] == 6

    def test_embedding_layers(self, view_id):
        response = client.put(f"/api/views/{view_id}/plots/embedding/layers", json={"show_log": False})
        data = response.json()
        assert [p["index"] for p in data["charts"]["embedding"]] == [0, 2, 5]
        assert data["visible_count"] == 6

        focus = client.get(f"/api/views/{view_id}/plots/embedding").json()
        assert all(p["is_train"] for p in focus["data"])


class TestSamplesAndExport:
    def test_delete_sample(self, view_id):
        client.put(f"/api/views/{view_id}/filters/search", json={"key": "paris"})
        response = client.post(f"/api/views/{view_id}/samples/delete", json={"source": "Book a flight to Paris"})
        data = response.json()
        assert data["count"] == 5
        assert data["groups"]["search"] == [-1]
        assert data["visible_indexes"] == []

    def test_delete_unknown_sample(self, view_id):
        response = client.post(f"/api/views/{view_id}/samples/delete", json={"source": "missing"})
        assert response.json()["count"] == 6

    def test_reopened_view_has_all_samples(self, view_id):
        client.post(f"/api/views/{view_id}/samples/delete", json={"source": "Cancel my flight"})
        other = client.post("/api/views", json={"file_name": WEATHER_FILE}).json()
        assert other["snapshot"]["count"] == 6

    def test_export(self, view_id):
        client.put(f"/api/views/{view_id}/filters/search", json={"key": "flight"})
        response = client.get(f"/api/views/{view_id}/export")
        assert response.status_code == 200
        assert 'filename="challenge-set-Weather.json"' in response.headers["content-disposition"]
        assert response.json() == {
            "source": ["Book a flight to Paris", "Cancel my flight"],
            "translation": ["Réserver un vol pour Paris", "Annuler mon vol"],
        }
