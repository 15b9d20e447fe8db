"""
Tests de los endpoints HTTP

La aplicación se ejercita con httpx sobre ASGI, sin lifespan: el servicio y la
sesión de base de datos se inyectan desde las fixtures.
"""
import httpx
import pytest

from shared.auth.jwt_handler import create_access_token
from shared.database.session import get_db
from services.ticket_validation.services.ticket_service import build_validation_service

from conftest import payload_for, qr_png

from main import app


def auth_headers(role: str = "validator", sub: str = "validator-1") -> dict:
    token = create_access_token({
        "sub": sub,
        "name": "Puerta Norte",
        "app_metadata": {"role": role},
    })
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client(session_maker, redis_client):
    app.state.validation_service = build_validation_service(session_maker, redis_client)

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    app.dependency_overrides.clear()
    app.state.validation_service = None


class TestValidateEndpoint:
    """POST /api/v1/tickets/validate"""

    async def test_valid_ticket_returns_200(self, client, seeder):
        ticket = await seeder.ticket(await seeder.event())

        response = await client.post(
            "/api/v1/tickets/validate",
            json={"qrCodeData": payload_for(ticket), "location": "Puerta Norte"},
            headers=auth_headers(),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["ticket"]["ticketId"] == ticket.id
        assert body["ticket"]["validatedBy"] == "validator-1"

        log = (await seeder.logs())[0]
        assert log.location == "Puerta Norte"
        assert log.device_ip is not None

    async def test_used_ticket_returns_409(self, client, seeder):
        ticket = await seeder.ticket(await seeder.event())
        body = {"qrCodeData": payload_for(ticket)}

        await client.post("/api/v1/tickets/validate", json=body, headers=auth_headers())
        response = await client.post("/api/v1/tickets/validate", json=body, headers=auth_headers())

        assert response.status_code == 409
        assert response.json()["error"] == "AlreadyUsed"
        assert response.json()["success"] is False

    async def test_malformed_payload_returns_400(self, client):
        response = await client.post(
            "/api/v1/tickets/validate", json={"qrCodeData": "{}"}, headers=auth_headers()
        )
        assert response.status_code == 400
        assert response.json()["error"] == "MalformedPayload"

    async def test_unknown_ticket_returns_404(self, client, seeder):
        ticket = await seeder.ticket(await seeder.event())
        response = await client.post(
            "/api/v1/tickets/validate",
            json={"qrCodeData": payload_for(ticket, ticket_id="otro")},
            headers=auth_headers(),
        )
        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

    async def test_disabled_feature_returns_403(self, client, seeder):
        await seeder.policy(scanner_enabled=False)
        ticket = await seeder.ticket(await seeder.event())

        response = await client.post(
            "/api/v1/tickets/validate", json={"qrCodeData": payload_for(ticket)}, headers=auth_headers()
        )

        assert response.status_code == 403
        assert response.json()["error"] == "FeatureDisabled"

    async def test_customer_role_returns_403(self, client, seeder):
        ticket = await seeder.ticket(await seeder.event())
        response = await client.post(
            "/api/v1/tickets/validate",
            json={"qrCodeData": payload_for(ticket)},
            headers=auth_headers(role="customer"),
        )
        assert response.status_code == 403
        assert response.json()["error"] == "Unauthorized"

    async def test_invalid_token_returns_401(self, client):
        response = await client.post(
            "/api/v1/tickets/validate",
            json={"qrCodeData": "{}"},
            headers={"Authorization": "Bearer no-es-un-jwt"},
        )
        assert response.status_code == 401

    async def test_missing_token_is_rejected(self, client):
        response = await client.post("/api/v1/tickets/validate", json={"qrCodeData": "{}"})
        assert response.status_code in (401, 403)

    async def test_missing_body_field_returns_422(self, client):
        response = await client.post("/api/v1/tickets/validate", json={}, headers=auth_headers())
        assert response.status_code == 422


class TestValidateImageEndpoint:
    """POST /api/v1/tickets/validate/image"""

    async def test_qr_image_is_validated(self, client, seeder):
        ticket = await seeder.ticket(await seeder.event())

        response = await client.post(
            "/api/v1/tickets/validate/image",
            files={"file": ("ticket.png", qr_png(payload_for(ticket)), "image/png")},
            data={"validationType": "entry"},
            headers=auth_headers(),
        )

        assert response.status_code == 200
        assert response.json()["ticket"]["ticketId"] == ticket.id
        assert (await seeder.logs())[0].scan_method == "image"

    async def test_unreadable_image_returns_400(self, client):
        response = await client.post(
            "/api/v1/tickets/validate/image",
            files={"file": ("ticket.png", b"no es una imagen", "image/png")},
            headers=auth_headers(),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "UnreadableImage"


class TestValidationLogsEndpoint:
    """GET /api/v1/validation-logs"""

    async def test_lists_logs_with_statistics(self, client, seeder):
        ticket = await seeder.ticket(await seeder.event())
        await client.post(
            "/api/v1/tickets/validate", json={"qrCodeData": payload_for(ticket)}, headers=auth_headers()
        )
        await client.post(
            "/api/v1/tickets/validate", json={"qrCodeData": "basura"}, headers=auth_headers()
        )

        response = await client.get("/api/v1/validation-logs", headers=auth_headers(role="admin"))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["pagination"]["totalCount"] == 2
        assert data["statistics"] == {"validated": 1, "rejected": 1}

    async def test_filters_by_status(self, client, seeder):
        await client.post(
            "/api/v1/tickets/validate", json={"qrCodeData": "basura"}, headers=auth_headers()
        )

        response = await client.get(
            "/api/v1/validation-logs",
            params={"status": "validated"},
            headers=auth_headers(),
        )

        assert response.json()["data"]["pagination"]["totalCount"] == 0

    async def test_customer_cannot_read_logs(self, client):
        response = await client.get("/api/v1/validation-logs", headers=auth_headers(role="customer"))
        assert response.status_code == 403

    async def test_export_returns_csv(self, client):
        await client.post(
            "/api/v1/tickets/validate", json={"qrCodeData": "basura"}, headers=auth_headers()
        )

        response = await client.get("/api/v1/validation-logs/export", headers=auth_headers())

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]
        lines = response.text.strip().splitlines()
        assert lines[0].startswith("Date,Time,Event")
        assert len(lines) == 2


class TestHealth:

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
