import pytest
from fastapi.testclient import TestClient

from chronicle import main


@pytest.fixture
def client(monkeypatch):
    # Keep the global structlog configuration untouched for other tests
    monkeypatch.setattr(main, "setup_logging", lambda *args, **kwargs: None)
    with TestClient(main.app) as test_client:
        yield test_client


def test_health_reports_backend(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "backend": "memory", "degraded": True}


def test_root(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["message"] == "Store service is running"


def test_store_is_closed_on_shutdown(monkeypatch):
    monkeypatch.setattr(main, "setup_logging", lambda *args, **kwargs: None)

    with TestClient(main.app) as test_client:
        context = test_client.app.state.store_context

    assert context.state.value == "closed"
