"""
tests/test_health.py -- Integration tests for GET /health.

Covers:
  - 200 response with status and version
  - No authentication required
  - "degraded" (still 200) when the database does not answer
"""

from __future__ import annotations

from sqlalchemy.exc import OperationalError

from api.main import API_VERSION


def test_health_returns_status_and_version(api):
    resp = api.client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": API_VERSION}


def test_health_no_auth_required(api):
    """Health endpoint is accessible without any authentication headers."""
    resp = api.client.get("/health", headers={})
    assert resp.status_code == 200


def test_health_degraded_when_database_fails(api, monkeypatch):
    def refuse():
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(api.store.engine, "connect", refuse)
    resp = api.client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "degraded", "version": API_VERSION}
