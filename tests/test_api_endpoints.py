"""
Tests for FastAPI endpoints.

Tests the API routes using FastAPI's TestClient against a populated
insights.db selected through SWIPE_INSIGHTS_DB_PATH.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from swipe_insights.api import app


@pytest.fixture
def client():
    """Create a TestClient for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def populated_client(client, populated_db_path, monkeypatch):
    """TestClient whose insights.db holds tinder-1 and hinge-1."""
    monkeypatch.setenv("SWIPE_INSIGHTS_DB_PATH", str(populated_db_path))
    return client


@pytest.fixture
def missing_db_client(client, tmp_path, monkeypatch):
    """TestClient pointed at an insights.db that does not exist."""
    monkeypatch.setenv("SWIPE_INSIGHTS_DB_PATH", str(tmp_path / "missing.db"))
    return client


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_ok(self, populated_client):
        """Health is ok when insights.db exists."""
        response = populated_client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["analysis_db_exists"] is True

    def test_health_degraded(self, missing_db_client):
        """Health is degraded without insights.db."""
        response = missing_db_client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    def test_health_is_get_only(self, client):
        """Health endpoint should only accept GET requests."""
        response = client.post("/health")
        assert response.status_code == 405


class TestMissingDatabase:
    """Every data endpoint answers 503 before the first ingestion."""

    @pytest.mark.parametrize(
        "path",
        ["/profiles", "/profiles/tinder-1", "/profiles/tinder-1/meta", "/profiles/tinder-1/aggregates"],
    )
    def test_503(self, missing_db_client, path):
        """The error names the missing file."""
        response = missing_db_client.get(path)
        assert response.status_code == 503
        assert response.json()["detail"]["error"] == "insights.db not found"


class TestProfilesEndpoints:
    """Tests for /profiles and /profiles/{profile_id}."""

    def test_list(self, populated_client):
        """Both profiles are listed."""
        response = populated_client.get("/profiles")
        assert response.status_code == 200
        assert {p["profile_id"] for p in response.json()} == {"tinder-1", "hinge-1"}

    def test_detail(self, populated_client):
        """Detail includes counts and the stored all-time snapshot."""
        data = populated_client.get("/profiles/hinge-1").json()
        assert data["counts"]["interaction"] == 10
        assert data["meta"]["swipe_likes_total"] == 2

    def test_detail_unknown(self, populated_client):
        """Unknown profiles are 404."""
        assert populated_client.get("/profiles/nobody").status_code == 404


class TestMetaEndpoint:
    """Tests for /profiles/{profile_id}/meta."""

    def test_default_all_time(self, populated_client):
        """Without a period the stored all-time snapshot is returned."""
        data = populated_client.get("/profiles/tinder-1/meta").json()
        assert data["period"] == "all-time"
        assert data["stored"] is True
        assert data["like_rate"] == pytest.approx(0.375)

    def test_computed_period(self, populated_client):
        """Quarters are computed on the fly."""
        data = populated_client.get("/profiles/tinder-1/meta", params={"period": "2023-Q1"}).json()
        assert data["stored"] is False

    def test_bad_period(self, populated_client):
        """Unrecognised periods are 400."""
        response = populated_client.get("/profiles/tinder-1/meta", params={"period": "last-0-days"})
        assert response.status_code == 400

    def test_unknown_profile(self, populated_client):
        """Unknown profiles are 404."""
        assert populated_client.get("/profiles/nobody/meta", params={"period": "2023-Q1"}).status_code == 404


class TestUsageEndpoint:
    """Tests for /profiles/{profile_id}/usage."""

    def test_bounded(self, populated_client):
        """start/end bound the series."""
        response = populated_client.get(
            "/profiles/tinder-1/usage", params={"start": "2023-01-02", "end": "2023-01-02"}
        )
        assert response.status_code == 200
        assert [row["date"] for row in response.json()] == ["2023-01-02"]

    def test_bad_date(self, populated_client):
        """Dates must be YYYY-MM-DD."""
        response = populated_client.get("/profiles/tinder-1/usage", params={"start": "01/02/2023"})
        assert response.status_code == 422

    def test_unknown_profile(self, populated_client):
        """Unknown profiles are 404."""
        assert populated_client.get("/profiles/nobody/usage").status_code == 404


class TestMatchesEndpoint:
    """Tests for /profiles/{profile_id}/matches."""

    def test_limit(self, populated_client):
        """limit caps the result."""
        response = populated_client.get("/profiles/tinder-1/matches", params={"limit": 1})
        assert response.status_code == 200
        assert len(response.json()) == 1

    @pytest.mark.parametrize("limit", [0, 1001])
    def test_limit_bounds(self, populated_client, limit):
        """limit must be between 1 and 1000."""
        response = populated_client.get("/profiles/tinder-1/matches", params={"limit": limit})
        assert response.status_code == 422


class TestAggregatesEndpoint:
    """Tests for /profiles/{profile_id}/aggregates."""

    def test_buckets(self, populated_client):
        """Monthly and yearly buckets are returned."""
        data = populated_client.get("/profiles/tinder-1/aggregates").json()
        assert set(data) == {"by_month", "by_year"}
        assert data["by_year"]["2023"]["swipe_passes"] == 25

    @patch("swipe_insights.api.get_profile_aggregates", return_value=None)
    def test_unknown(self, mock_aggregates, populated_client):
        """A missing profile is 404."""
        assert populated_client.get("/profiles/nobody/aggregates").status_code == 404
        mock_aggregates.assert_called_once()
