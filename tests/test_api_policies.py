"""Tests for the policy, exemption and health API routes."""

import pytest
from httpx import ASGITransport, AsyncClient

from secgate import __version__
from secgate.api.deps import get_engine
from secgate.api.main import create_app


@pytest.fixture
async def client(make_engine):
    app = create_app()
    engine = make_engine()
    app.dependency_overrides[get_engine] = lambda: engine

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


NEW_POLICY = {
    "id": "leaked-secrets",
    "name": "No leaked secrets",
    "category": "COMPLIANCE",
    "severity": "HIGH",
    "rules": [
        {
            "id": "secret-count",
            "condition": "leaked_secrets",
            "operator": "GT",
            "value": 0,
            "description": "Secret scanners must be clean",
        }
    ],
    "enforcement": {"type": "BLOCK", "notification_channels": ["slack"]},
}


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "version": __version__, "policies": 5}


@pytest.mark.asyncio
async def test_list_policies(client):
    response = await client.get("/api/v1/policies")

    assert response.status_code == 200
    assert [p["id"] for p in response.json()] == [
        "critical-vulns",
        "high-vuln-threshold",
        "restricted-licenses",
        "outdated-deps",
        "code-quality",
    ]


@pytest.mark.asyncio
async def test_list_policies_by_category(client):
    response = await client.get("/api/v1/policies", params={"category": "code_quality"})

    assert [p["id"] for p in response.json()] == ["code-quality"]


@pytest.mark.asyncio
async def test_create_and_get_policy(client):
    created = await client.post("/api/v1/policies", json=NEW_POLICY)

    assert created.status_code == 201
    body = created.json()
    assert body["id"] == "leaked-secrets"
    assert body["enforcement"]["block_deployment"] is True
    assert body["enforcement"]["approval_required"] is False
    assert body["rules"][0]["type"] == "THRESHOLD"

    fetched = await client.get("/api/v1/policies/leaked-secrets")
    assert fetched.json() == body


@pytest.mark.asyncio
async def test_create_policy_with_invalid_regex(client):
    policy = {
        "rules": [{"condition": "license_type", "operator": "MATCHES", "value": "([a-z"}],
    }

    response = await client.post("/api/v1/policies", json=policy)

    assert response.status_code == 422
    assert "details" in response.json()


@pytest.mark.asyncio
async def test_create_duplicate_policy(client):
    response = await client.post("/api/v1/policies", json={"id": "critical-vulns"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_get_unknown_policy(client):
    response = await client.get("/api/v1/policies/nope")

    assert response.status_code == 404
    assert response.json()["details"] == {"policy_id": "nope"}


@pytest.mark.asyncio
async def test_patch_policy(client):
    response = await client.patch(
        "/api/v1/policies/high-vuln-threshold", json={"enabled": False, "severity": "LOW"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["enabled"] is False
    assert body["severity"] == "LOW"
    assert body["enforcement"]["type"] == "REQUIRE_APPROVAL"


@pytest.mark.asyncio
async def test_patch_unknown_policy(client):
    response = await client.patch("/api/v1/policies/nope", json={"enabled": False})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_delete_policy(client):
    assert (await client.delete("/api/v1/policies/outdated-deps")).status_code == 204
    assert (await client.delete("/api/v1/policies/outdated-deps")).status_code == 404


@pytest.mark.asyncio
async def test_exemption_lifecycle(client):
    created = await client.post(
        "/api/v1/policies/critical-vulns/exemptions",
        json={
            "reason": "vendor patch pending",
            "approved_by": "ciso@co",
            "repository_id": "repo-1",
            "expires_at": "2026-04-01T00:00:00Z",
        },
    )

    assert created.status_code == 201
    exemption = created.json()
    assert exemption["repository_id"] == "repo-1"

    listed = await client.get("/api/v1/policies/critical-vulns/exemptions")
    assert [e["id"] for e in listed.json()] == [exemption["id"]]

    path = f"/api/v1/policies/critical-vulns/exemptions/{exemption['id']}"
    assert (await client.delete(path)).status_code == 204
    assert (await client.delete(path)).status_code == 404


@pytest.mark.asyncio
async def test_exemption_for_unknown_policy(client):
    response = await client.post(
        "/api/v1/policies/nope/exemptions", json={"reason": "r", "approved_by": "a"}
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_exemption_requires_reason(client):
    response = await client.post(
        "/api/v1/policies/critical-vulns/exemptions", json={"approved_by": "a"}
    )
    assert response.status_code == 422
