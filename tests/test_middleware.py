"""Middleware tests: request ID, CORS, logging setup, error rendering."""

import logging

import pytest
from httpx import AsyncClient

from provelt.config import Settings
from provelt.middleware.logging import service_context, setup_logging
from provelt.middleware.request_id import resolve_request_id


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient) -> None:
    """Request ID is auto-generated when not provided."""
    response = await client.get("/health")
    assert "x-request-id" in response.headers
    assert len(response.headers["x-request-id"]) == 36  # UUID format


@pytest.mark.asyncio
async def test_request_id_preserved(client: AsyncClient) -> None:
    """Custom request ID is echoed back in response."""
    response = await client.get("/health", headers={"X-Request-Id": "review-abc-123"})
    assert response.headers["x-request-id"] == "review-abc-123"


@pytest.mark.asyncio
async def test_malformed_request_id_replaced(client: AsyncClient) -> None:
    """An oversized or free-text request ID is not propagated."""
    response = await client.get("/health", headers={"X-Request-Id": "r" * 200})
    assert len(response.headers["x-request-id"]) == 36

    response = await client.get("/health", headers={"X-Request-Id": "drop table; --"})
    assert response.headers["x-request-id"] != "drop table; --"


@pytest.mark.parametrize(
    ("supplied", "kept"),
    [
        ("review-abc-123", True),
        ("01HV3M7N8Q:retry.2", True),
        ("", False),
        (None, False),
        ("-leading-dash", False),
        ("has space", False),
        ("x" * 65, False),
    ],
)
def test_resolve_request_id(supplied: str | None, kept: bool) -> None:
    assert (resolve_request_id(supplied) == supplied) is kept


@pytest.mark.asyncio
async def test_cors_preflight(client: AsyncClient) -> None:
    """CORS preflight allows the configured origin for the decide endpoint."""
    response = await client.options(
        "/api/v1/submissions/decide",
        headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "content-type,x-request-id",
        },
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"
    assert response.headers["access-control-allow-credentials"] == "true"
    assert response.headers["access-control-max-age"] == "600"


@pytest.mark.asyncio
async def test_cors_rejects_unrouted_method(client: AsyncClient) -> None:
    """Methods the API does not route are refused at preflight."""
    response = await client.options(
        "/api/v1/submissions/decide",
        headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "DELETE"},
    )
    assert response.status_code == 400


def test_service_context_fields() -> None:
    processor = service_context(Settings(environment="staging", chain_id=5000))
    event = processor(None, "info", {"event": "badge_minted", "chain_id": 1})
    assert event == {"event": "badge_minted", "service": "provelt", "environment": "staging", "chain_id": 1}


def test_third_party_loggers_quieted() -> None:
    setup_logging(Settings(log_level="DEBUG", log_format="console"))
    assert logging.getLogger("web3").level == logging.WARNING
    assert logging.getLogger("urllib3").level == logging.WARNING


@pytest.mark.asyncio
async def test_404_returns_json(client: AsyncClient) -> None:
    """Unknown paths return 404 with a JSON body and code."""
    response = await client.get("/nonexistent-path")
    assert response.status_code == 404
    assert response.headers["content-type"] == "application/json"
    assert response.json() == {"detail": "Not Found", "code": "http_error"}
