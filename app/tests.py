"""
Tests for application startup and the service endpoints
"""
import httpx
import pytest

from app import main
from app.core.config import settings


@pytest.fixture
def created_tables(monkeypatch):
    calls = []

    async def fake_create_all_tables():
        calls.append(True)

    monkeypatch.setattr(main, "create_all_tables", fake_create_all_tables)
    return calls


async def test_lifespan_creates_tables_in_development(monkeypatch, fastapi_app, created_tables):
    monkeypatch.setattr(settings, "ENVIRONMENT", "development")
    async with main.lifespan(fastapi_app):
        assert created_tables == [True]


async def test_lifespan_leaves_the_schema_alone_in_production(monkeypatch, fastapi_app, created_tables):
    monkeypatch.setattr(settings, "ENVIRONMENT", "production")
    async with main.lifespan(fastapi_app):
        pass
    assert created_tables == []


async def test_health(fastapi_app):
    transport = httpx.ASGITransport(app=fastapi_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
