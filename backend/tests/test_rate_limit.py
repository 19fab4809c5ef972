"""
NoteKeep Backend: Rate Limiting and Health Tests
=================================================

What:  RateLimitMiddleware buckets and the /health exemption.
How:   Limits are lowered with monkeypatch on the settings singleton; the
       app fixture gives each test fresh middleware state.
"""

import pytest

from notekeep.config import settings
from notekeep.middleware.rate_limit import RateLimitMiddleware


class TestBuckets:

    def test_auth_paths_use_auth_budget(self, monkeypatch):
        monkeypatch.setattr(settings, "auth_rate_limit_requests", 7)
        assert RateLimitMiddleware.bucket_for("/api/auth/login") == ("auth", 7)

    def test_other_paths_use_general_budget(self, monkeypatch):
        monkeypatch.setattr(settings, "rate_limit_requests", 70)
        assert RateLimitMiddleware.bucket_for("/api/notes") == ("general", 70)


class TestRateLimitMiddleware:

    @pytest.mark.asyncio
    async def test_auth_bucket_exhausted(self, test_client, monkeypatch):
        monkeypatch.setattr(settings, "auth_rate_limit_requests", 3)

        statuses = []
        for _ in range(4):
            response = await test_client.post("/api/auth/login", json={"email": "ghost@notekeep.io"})
            statuses.append(response.status_code)

        assert statuses == [404, 404, 404, 429]
        assert int(response.headers["Retry-After"]) >= 1
        assert response.json()["error"] == "rate_limit_exceeded"

    @pytest.mark.asyncio
    async def test_auth_bucket_does_not_consume_general(self, test_client, monkeypatch):
        monkeypatch.setattr(settings, "auth_rate_limit_requests", 3)
        monkeypatch.setattr(settings, "rate_limit_requests", 3)

        for _ in range(3):
            await test_client.post("/api/auth/login", json={"email": "ghost@notekeep.io"})

        response = await test_client.get("/api/notes")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_health_is_never_limited(self, test_client, monkeypatch):
        monkeypatch.setattr(settings, "rate_limit_requests", 1)

        for _ in range(3):
            response = await test_client.get("/health")
            assert response.status_code != 429


class TestHealth:

    @pytest.mark.asyncio
    async def test_health_reports_components(self, test_client):
        response = await test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["database"] == "connected"
        assert body["email"] in {"closed", "open", "half_open"}
        assert body["status"] in {"healthy", "degraded"}
        assert body["version"]
