from __future__ import annotations

from fastapi.testclient import TestClient

from docvault.main import create_app

from conftest import TEST_SETTINGS


def test_healthz_and_metrics_do_not_need_the_database():
    # no context manager: the lifespan (and its Postgres pool) is not started
    client = TestClient(create_app(TEST_SETTINGS))

    assert client.get("/healthz").json() == {"status": "ok"}
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "python_info" in metrics.text or "process_" in metrics.text


def test_api_routes_are_mounted_under_the_prefix():
    app = create_app(TEST_SETTINGS)
    paths = {route.path for route in app.routes}

    assert "/api/auth/register" in paths
    assert "/api/data/{key}" in paths
    assert "/api/admin/users/{account_id}" in paths
    assert "/api/backup" in paths
