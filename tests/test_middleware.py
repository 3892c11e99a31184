"""Middleware tests — request ID and JSON error handling."""

import pytest
from httpx import AsyncClient

from sips.errors import StoreError
from sips.middleware.request_id import MAX_REQUEST_ID_LENGTH, resolve_request_id


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient) -> None:
    """Request ID is auto-generated when not provided."""
    response = await client.get("/health")
    assert "x-request-id" in response.headers
    assert len(response.headers["x-request-id"]) == 36  # UUID format


@pytest.mark.asyncio
async def test_request_id_preserved(client: AsyncClient) -> None:
    """Custom request ID is echoed back in response."""
    response = await client.get("/health", headers={"X-Request-Id": "test-abc-123"})
    assert response.headers["x-request-id"] == "test-abc-123"


def test_request_id_sanitized() -> None:
    assert resolve_request_id("  trace:42  ") == "trace:42"
    assert len(resolve_request_id("a" * 500)) == MAX_REQUEST_ID_LENGTH
    assert len(resolve_request_id("bad id with spaces")) == 36
    assert len(resolve_request_id(None)) == 36


@pytest.mark.asyncio
async def test_not_found_is_json(client: AsyncClient) -> None:
    response = await client.get("/nope")
    assert response.status_code == 404
    assert response.json() == {"detail": "Not Found"}


@pytest.mark.asyncio
async def test_store_error_maps_to_503(client: AsyncClient, monkeypatch) -> None:
    """Store failures surface as retryable 503s naming the operation."""
    from sips.gamification import router as gamification_router

    async def _broken(_db):
        raise StoreError("load profile analytics", "connection reset")

    monkeypatch.setattr(gamification_router, "fetch_analytics", _broken)

    response = await client.get("/api/v1/gamification/admin/analytics")
    assert response.status_code == 503
    assert response.json()["operation"] == "load profile analytics"
