"""Test FastAPI application setup and HTTP endpoints."""
import pytest
from fastapi.testclient import TestClient

from mev_bundler.config.settings import Settings
from mev_bundler.engine import BundleConstructionEngine
from mev_bundler.main import create_app
from mev_bundler.risk.models import NetworkCongestion


def opportunity_payload(**overrides):
    payload = {
        "opportunity_id": "opp_http",
        "strategy": "arbitrage",
        "venue": "raydium",
        "tokens": [
            {"mint": "SOL", "direction": "in", "symbol": "SOL"},
            {"mint": "USDC", "direction": "out", "symbol": "USDC"}
        ],
        "profit": 0.04,
        "gas_cost": 0.01,
        "risk_score": 3.0
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def engine(clock):
    """Engine on the fake clock."""
    return BundleConstructionEngine(Settings(random_seed=1), clock=clock)


@pytest.fixture
def client(engine):
    """Test client without the lifespan; the engine loop is not started."""
    return TestClient(create_app(engine=engine))


def test_app_creation(engine):
    """Test that FastAPI app can be created."""
    app = create_app(engine=engine)
    assert app.title == "MEV Bundle Construction API"
    assert app.version == "0.1.0"
    assert app.state.engine is engine


def test_health_endpoint(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_liveness_probe(client):
    response = client.get("/health/live")
    assert response.status_code == 200
    assert response.json()["status"] == "alive"


def test_not_ready_until_engine_runs(client):
    """Test readiness before the lifespan starts the engine."""
    response = client.get("/health/ready")
    assert response.status_code == 503
    assert response.json()["status"] == "not_ready"

    detailed = client.get("/health/detailed").json()
    assert detailed["status"] == "degraded"
    assert detailed["checks"]["pool"]["status"] == "healthy"


def test_ready_with_lifespan(engine):
    """Test that the lifespan starts and stops the engine."""
    with TestClient(create_app(engine=engine)) as client:
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"
        assert engine.is_running

    assert not engine.is_running


def test_submit_opportunity(client, engine):
    """Test opportunity ingestion."""
    response = client.post("/opportunities", json=opportunity_payload())

    assert response.status_code == 201
    assert response.json() == {"opportunity_id": "opp_http", "pending": 1}
    assert len(engine.pool) == 1


def test_submit_opportunity_missing_fields(client, engine):
    """Test that missing fields are reported by name."""
    payload = opportunity_payload()
    del payload["profit"]

    response = client.post("/opportunities", json=payload)

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["missing_fields"] == ["profit"]
    assert "opp_http" in detail["message"]
    assert len(engine.pool) == 0


def test_submit_opportunity_out_of_range(client):
    response = client.post("/opportunities", json=opportunity_payload(risk_score=42))

    assert response.status_code == 422
    assert "missing_fields" not in response.json()["detail"]


def test_update_market_conditions(client, engine):
    """Test replacing the market snapshot."""
    response = client.put("/engine/market-conditions", json={"network_congestion": "high", "utc_hour": 3})

    assert response.status_code == 200
    assert response.json()["network_congestion"] == "high"
    assert engine.market_conditions.network_congestion == NetworkCongestion.HIGH
    assert engine.market_conditions.utc_hour == 3

    invalid = client.put("/engine/market-conditions", json={"utc_hour": 25})
    assert invalid.status_code == 422


def test_engine_stats(client):
    response = client.get("/engine/stats")

    assert response.status_code == 200
    data = response.json()
    assert data["cycles_run"] == 0
    assert data["pool"]["pending"] == 0
    assert data["is_running"] is False


def test_recent_bundles(client, engine):
    """Test that constructed bundles are listed newest first."""
    client.post("/opportunities", json=opportunity_payload(discovered_at=1_000.0))
    client.post("/opportunities", json=opportunity_payload(
        opportunity_id="opp_http_2",
        venue="orca",
        tokens=[
            {"mint": "USDC", "direction": "in", "symbol": "USDC"},
            {"mint": "RAY", "direction": "out", "symbol": "RAY"}
        ],
        profit=0.03,
        gas_cost=0.005,
        discovered_at=1_000.0
    ))
    engine.run_cycle()

    response = client.get("/bundles", params={"limit": 5})

    assert response.status_code == 200
    bundles = response.json()["bundles"]
    assert len(bundles) == 1
    assert bundles[0]["opportunity_ids"] == ["opp_http", "opp_http_2"]


@pytest.mark.parametrize("limit", [-1, 0, 1001])
def test_recent_bundles_limit_validated(client, limit):
    response = client.get("/bundles", params={"limit": limit})

    assert response.status_code == 422


def test_openapi_spec(client):
    """Test that OpenAPI spec is accessible."""
    response = client.get("/openapi.json")
    assert response.status_code == 200
    spec = response.json()
    assert spec["info"]["title"] == "MEV Bundle Construction API"
    assert "/opportunities" in spec["paths"]
