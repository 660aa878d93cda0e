"""Tests for the FastAPI surface (scheduler not started)."""

from datetime import date, datetime
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from edge_engine.core.engine_config import EngineConfig
from edge_engine.main import app, get_client, get_config, scheduler
from edge_engine.models import get_db
from edge_engine.services.kpi import recompute_daily_kpis


@pytest.fixture
def provider():
    client = MagicMock()
    client.get_sport_odds.return_value = []
    client.get_scores.return_value = []
    return client


@pytest.fixture
def api(db, provider):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_client] = lambda: provider
    app.dependency_overrides[get_config] = lambda: EngineConfig(sports=("NBA",))
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------

def test_root(api):
    body = api.get("/").json()
    assert body["status"] == "operational"
    assert "timestamp" in body


def test_health_reports_stopped_scheduler(api):
    assert not scheduler.running
    body = api.get("/health").json()
    assert body["database"] == "connected"
    assert body["scheduler"] == "stopped"
    assert body["status"] == "degraded"


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------

def test_publish_trigger_is_idempotent(api, provider):
    first = api.post("/api/publish")
    assert first.status_code == 200
    body = first.json()
    assert body["status"] == "published"
    assert body["bets_published"] == 0
    assert body["no_bet_reason"]

    second = api.post("/api/publish").json()
    assert second["status"] == "existing"
    assert second["recommendation_id"] == body["recommendation_id"]
    assert provider.get_sport_odds.call_count == 1


def test_grade_trigger_with_nothing_pending(api, provider):
    body = api.post("/api/grade").json()
    assert body["legs_settled"] == 0
    assert body["errors"] == []
    provider.get_scores.assert_not_called()


def test_missing_api_key_is_service_unavailable(monkeypatch):
    monkeypatch.delenv("THE_ODDS_API_KEY", raising=False)
    with pytest.raises(HTTPException) as exc_info:
        get_client(EngineConfig())
    assert exc_info.value.status_code == 503


# ---------------------------------------------------------------------------
# Read-back
# ---------------------------------------------------------------------------

def test_recommendation_read_back(api, add_bet):
    add_bet(date(2026, 2, 28))

    response = api.get("/api/recommendations/2026-02-28")

    assert response.status_code == 200
    body = response.json()
    assert body["reco_date"] == "2026-02-28"
    assert body["bets"][0]["bet_type"] == "single"
    assert body["bets"][0]["legs"][0]["selection"] == "Lakers -5.5"


def test_missing_recommendation_is_404(api):
    assert api.get("/api/recommendations/2026-01-01").status_code == 404


def test_kpi_timeline(api, db):
    today = datetime.utcnow().date()
    recompute_daily_kpis(db, today)

    rows = api.get("/api/kpis", params={"days": 7}).json()
    assert [r["kpi_date"] for r in rows] == [today.isoformat()]
    assert rows[0]["total_bets_placed"] == 0


def test_kpi_days_validated(api):
    assert api.get("/api/kpis", params={"days": 0}).status_code == 422
