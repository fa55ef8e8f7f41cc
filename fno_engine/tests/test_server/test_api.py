"""Tests for the monitoring API and kill switch."""

import pytest
from fastapi.testclient import TestClient

from fno_engine.engine.orchestrator import Orchestrator
from fno_engine.server.app import app
from fno_engine.server.state import EngineState


@pytest.fixture
def client():
    EngineState.reset()
    yield TestClient(app)
    EngineState.reset()


@pytest.fixture
def orchestrator(config, paper, clock):
    o = Orchestrator(config, gateway=paper, clock=clock)
    EngineState().orchestrator = o
    return o


class TestIdleEngine:
    def test_root(self, client):
        assert client.get("/").json()["service"] == "F&O Engine"

    def test_dashboard_idle(self, client):
        body = client.get("/api/dashboard").json()
        assert body["state"] == "idle"
        assert body["open_positions"] == 0

    def test_empty_snapshots(self, client):
        assert client.get("/api/positions").json() == []
        assert client.get("/api/orders").json() == []
        assert client.get("/api/risk").json() == {}
        assert client.get("/api/trades").json()["summary"]["total_trades"] == 0

    def test_actions_need_an_engine(self, client):
        assert client.post("/api/flatten", json={"reason": "test"}).status_code == 409
        assert client.post("/api/shutdown").status_code == 409


class TestRunningEngine:
    def test_dashboard(self, client, orchestrator):
        body = client.get("/api/dashboard").json()
        assert body["mode"] == "paper"
        assert body["state"] == "stopped"
        assert body["underlying"] == "NIFTY"

    def test_risk_and_config(self, client, orchestrator):
        risk = client.get("/api/risk").json()
        assert risk["circuit_breaker_active"] is False
        assert risk["daily_loss_pct"] == 0.0
        config = client.get("/api/config").json()
        assert config["underlying"] == "NIFTY"
        assert config["entry_window_start"] == "10:00:00"

    def test_flatten_with_shutdown(self, client, orchestrator):
        body = client.post("/api/flatten", json={"reason": "test", "shutdown": True}).json()
        assert body["status"] == "flattened"
        assert body["closed"] == 0
        assert body["shutdown_requested"] is True
        assert orchestrator.shutdown_requested

    def test_shutdown(self, client, orchestrator):
        assert client.post("/api/shutdown").json() == {"status": "shutdown_requested"}
        assert orchestrator.shutdown_requested
