"""Tests for health probes."""

from unittest.mock import patch

from fastapi.testclient import TestClient

from opsflow import __version__
from opsflow.api.routers.health import describe_directory
from opsflow.services.directory import HttpRoleDirectory, StaticRoleDirectory


class TestHealthEndpoints:
    """Test health probe endpoints."""

    def test_health(self, client: TestClient):
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["version"] == __version__

    def test_liveness_probe(self, client: TestClient):
        response = client.get("/health/live")
        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    def test_ready_against_test_database(self, client: TestClient):
        response = client.get("/health/ready")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["checks"]["database"] == {"status": "healthy", "dialect": "sqlite"}
        assert data["directory"]["kind"] == "static"

    def test_not_ready_when_database_down(self, client: TestClient):
        unhealthy = {"status": "unhealthy", "error": "connection refused"}
        with patch("opsflow.api.routers.health.check_database", return_value=unhealthy):
            response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"

    def test_not_ready_without_schema(self, client: TestClient, engine):
        from opsflow.db.base import Base

        Base.metadata.drop_all(bind=engine)
        response = client.get("/health/ready")

        assert response.status_code == 503
        assert "missing tables" in response.json()["checks"]["database"]["error"]

    def test_probes_need_no_org_header(self, client: TestClient):
        assert client.get("/health/ready").status_code == 200
        assert client.get("/").json()["version"] == __version__


def test_describe_directory():
    assert describe_directory(StaticRoleDirectory({"manager": "U1"})) == {"kind": "static", "roles": 1}

    directory = HttpRoleDirectory("http://directory.local/")
    try:
        assert describe_directory(directory) == {"kind": "http", "base_url": "http://directory.local"}
    finally:
        directory.close()
