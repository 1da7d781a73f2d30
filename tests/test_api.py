"""Integration tests for the public intake, checkout and admin sync endpoints.

Builds a minimal FastAPI app with the v1 router and wires in-memory doubles
through build_services, so the real SyncEngine, FulfillmentOrchestrator and
OrderService run end to end without a database or network. Admin auth is
overridden except in TestAdminAuth, which mints real JWTs.
"""

from __future__ import annotations

from datetime import timedelta

import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from src.consultancy.api.deps import get_current_admin
from src.consultancy.api.v1.router import router as v1_router
from src.consultancy.config import Settings
from src.consultancy.core.security import create_access_token
from src.consultancy.crm.errors import RemoteRejected
from src.consultancy.crm.schemas import ConnectionCheck
from src.consultancy.integrations.schemas import SuiteDashSettings, mask_secret
from src.consultancy.services import build_services, load_stored_settings
from src.consultancy.sync.schemas import EntityType, SiteUserCreate, SyncStatus


def _make_app(
    crm, sync_repo, order_repo, integration_repo=None, client_factory=None
) -> FastAPI:
    app = FastAPI()
    app.include_router(v1_router)
    build_services(
        app,
        Settings(_env_file=None),
        client=crm,
        client_factory=client_factory,
        sync_repository=sync_repo,
        order_repository=order_repo,
        integration_repository=integration_repo,
    )
    return app


async def _mock_get_current_admin() -> dict:
    return {"sub": "admin-1", "role": "admin"}


@pytest_asyncio.fixture
async def app(crm, sync_repo, order_repo, integration_repo, client_factory):
    app = _make_app(crm, sync_repo, order_repo, integration_repo, client_factory)
    app.dependency_overrides[get_current_admin] = _mock_get_current_admin
    return app


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def _order_body() -> dict:
    return {
        "customer": {"firstName": "Grace", "lastName": "Hopper", "email": "grace@example.com"},
        "items": [
            {"id": "svc-1", "title": "Strategy Workshop", "price": 1500.0,
             "pillarName": "Digital Strategy", "quantity": 1},
        ],
    }


# ── Public Intake ────────────────────────────────────────────────────────────


class TestContactEndpoint:
    async def test_contact_is_stored_and_synced(self, client, sync_repo, crm):
        response = await client.post(
            "/api/v1/contact",
            json={
                "name": "Ada Lovelace",
                "email": "ada@example.com",
                "pillar_name": "Digital Strategy",
                "message": "Hello",
            },
            headers={"User-Agent": "pytest-browser"},
        )

        assert response.status_code == 201
        submission_id = response.json()["id"]
        stored = await sync_repo.get_contact_submission(submission_id)
        assert stored.user_agent == "pytest-browser"
        # Background task has completed by the time ASGITransport returns
        assert stored.sync_status == SyncStatus.SYNCED
        assert stored.external_id == "ct_1"

    async def test_contact_saved_when_crm_rejects(self, client, sync_repo, crm):
        crm.upsert_error = RemoteRejected(422, "email blacklisted")

        response = await client.post(
            "/api/v1/contact",
            json={"name": "Ada", "email": "ada@example.com", "message": "Hi"},
        )

        assert response.status_code == 201
        stored = await sync_repo.get_contact_submission(response.json()["id"])
        assert stored.sync_status == SyncStatus.FAILED
        assert "email blacklisted" in stored.last_error

    async def test_invalid_email_is_422(self, client):
        response = await client.post(
            "/api/v1/contact", json={"name": "Ada", "email": "nope", "message": "Hi"}
        )

        assert response.status_code == 422


class TestUserEndpoint:
    async def test_register_and_duplicate(self, client, crm):
        body = {"first_name": "Grace", "last_name": "Hopper", "email": "grace@example.com"}

        first = await client.post("/api/v1/users", json=body)
        second = await client.post("/api/v1/users", json=body)

        assert first.status_code == 201
        assert first.json()["email"] == "grace@example.com"
        assert second.status_code == 409
        assert crm.call_count("upsert_contact") == 1


# ── Checkout ─────────────────────────────────────────────────────────────────


class TestOrderEndpoints:
    async def test_place_order_returns_camel_case(self, client, crm):
        crm.production = True

        response = await client.post("/api/v1/orders", json=_order_body())

        assert response.status_code == 201
        data = response.json()
        assert data["orderNumber"].startswith("ORD-")
        assert data["total"] == 1500.0
        assert data["fulfillment"]["mode"] == "paid_redirect"
        assert data["fulfillment"]["payment_url"] == "https://pay.example.com/checkout"
        assert data["fulfillment"]["confirmation"] == "pay_now"

    async def test_crm_down_still_201(self, client, crm):
        crm.configured = False

        response = await client.post("/api/v1/orders", json=_order_body())

        assert response.status_code == 201
        assert response.json()["fulfillment"]["mode"] == "deferred_invoice"
        assert response.json()["fulfillment"]["payment_url"] is None

    async def test_empty_cart_is_422(self, client):
        body = _order_body()
        body["items"] = []

        response = await client.post("/api/v1/orders", json=body)

        assert response.status_code == 422

    async def test_confirmation_round_trip(self, client, crm):
        crm.production = False
        placed = (await client.post("/api/v1/orders", json=_order_body())).json()

        response = await client.get(f"/api/v1/orders/{placed['orderNumber']}/confirmation")

        assert response.status_code == 200
        assert response.json()["fulfillment"] == placed["fulfillment"]
        assert response.json()["fulfillment"]["confirmation"] == "demo_notice"

    async def test_unknown_confirmation_is_404(self, client):
        response = await client.get("/api/v1/orders/ORD-00000000/confirmation")

        assert response.status_code == 404


# ── Admin Sync Surface ───────────────────────────────────────────────────────


class TestAdminSync:
    async def test_resync_one(self, client, sync_repo, crm):
        user = await sync_repo.create_user(
            SiteUserCreate(first_name="Grace", email="grace@example.com")
        )

        response = await client.post(f"/api/v1/admin/users/{user.id}/resync")

        assert response.status_code == 200
        body = response.json()
        assert body["sync_status"] == "synced"
        assert body["external_id"] == "ct_1"
        assert body["entity_type"] == "user"

    async def test_resync_failure_exposes_last_error(self, client, sync_repo, crm):
        user = await sync_repo.create_user(
            SiteUserCreate(first_name="Grace", email="grace@example.com")
        )
        crm.upsert_error = RemoteRejected(400, "phone format")

        response = await client.post(f"/api/v1/admin/users/{user.id}/resync")

        assert response.status_code == 200
        assert response.json()["sync_status"] == "failed"
        assert response.json()["last_error"] == "CRM rejected request (400): phone format"
        assert response.json()["error_kind"] == "remote_rejected"

    async def test_resync_unknown_is_404(self, client):
        response = await client.post("/api/v1/admin/contact-submissions/missing/resync")

        assert response.status_code == 404

    async def test_unknown_entity_segment_is_422(self, client):
        response = await client.post("/api/v1/admin/invoices/x/resync")

        assert response.status_code == 422

    async def test_resync_all_partial_failure(self, client, sync_repo, crm):
        for n in range(1, 4):
            await sync_repo.create_user(
                SiteUserCreate(first_name=f"U{n}", email=f"u{n}@example.com")
            )
        crm.fail_emails["u2@example.com"] = RemoteRejected(422, "bad")

        response = await client.post("/api/v1/admin/users/resync-all")

        assert response.status_code == 200
        body = response.json()
        assert (body["synced"], body["failed"], body["total"]) == (2, 1, 3)

    async def test_stats_and_bulk_delete(self, client, sync_repo, make_submission):
        first = await sync_repo.create_contact_submission(make_submission())
        second = await sync_repo.create_contact_submission(make_submission(email="b@example.com"))
        await client.post(f"/api/v1/admin/contact-submissions/{first.id}/resync")

        stats = (await client.get("/api/v1/admin/contact-submissions/stats")).json()
        assert stats == {"total": 2, "unsynced": 1, "pending": 0, "synced": 1, "failed": 0}

        response = await client.post(
            "/api/v1/admin/contact-submissions/bulk-delete",
            json={"ids": [first.id, second.id, "gone"]},
        )
        assert response.json() == {"deleted": 2}

    async def test_bulk_delete_requires_ids(self, client):
        response = await client.post("/api/v1/admin/users/bulk-delete", json={"ids": []})

        assert response.status_code == 422

    async def test_list_and_workflow_status(self, client, sync_repo, make_submission):
        submission = await sync_repo.create_contact_submission(make_submission())

        listed = await client.get("/api/v1/admin/contact-submissions")
        assert listed.status_code == 200
        assert listed.json()[0]["display_status"] == "new"

        response = await client.patch(
            f"/api/v1/admin/contact-submissions/{submission.id}/workflow-status",
            json={"workflow_status": "closed"},
        )
        assert response.status_code == 200
        assert response.json()["workflow_status"] == "closed"
        assert response.json()["sync_status"] == "unsynced"

    async def test_sync_log(self, client, sync_repo, crm):
        user = await sync_repo.create_user(
            SiteUserCreate(first_name="Grace", email="grace@example.com")
        )
        await client.post(f"/api/v1/admin/users/{user.id}/resync")

        response = await client.get(
            "/api/v1/admin/sync-log", params={"entity_type": EntityType.USER.value}
        )

        assert response.status_code == 200
        [entry] = response.json()
        assert entry["action"] == "upsert_contact"
        assert entry["status"] == "success"

    async def test_order_detail(self, client, order_repo, crm):
        placed = (await client.post("/api/v1/orders", json=_order_body())).json()

        response = await client.get(f"/api/v1/admin/orders/{placed['orderId']}")

        assert response.status_code == 200
        assert response.json()["sync_status"] == "synced"
        assert response.json()["crm_invoice_id"] == "inv_1"

    async def test_service_missing_is_503(self):
        app = FastAPI()
        app.include_router(v1_router)
        app.dependency_overrides[get_current_admin] = _mock_get_current_admin

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/api/v1/admin/users/stats")

        assert response.status_code == 503
        assert "not initialized" in response.json()["detail"]


# ── Integrations ─────────────────────────────────────────────────────────────


_SETTINGS_URL = "/api/v1/admin/integrations/suitedash/settings"

_CREDENTIALS = {
    "enabled": True,
    "public_id": "pub-0000-1111",
    "secret_key": "sec-2222-3333-4444",
    "invoicing_enabled": True,
    "production": True,
}


class TestIntegrations:
    def test_mask_secret(self):
        assert mask_secret("") == ""
        assert mask_secret("short") == "*****"
        assert mask_secret("abcdef123456") == "********3456"

    async def test_status_masks_credentials(self, client):
        response = await client.get("/api/v1/admin/integrations/suitedash")

        assert response.status_code == 200
        body = response.json()
        assert body["configured"] is True
        assert body["auto_sync"] is True
        assert body["last_tested_at"] is None
        assert "sandbox_" in body["sandbox_prefixes"]

    async def test_connection_check_result_is_stored(
        self, client, crm, integration_repo, monkeypatch
    ):
        async def _check():
            return ConnectionCheck(success=False, message="Connection failed: 401 bad key")

        monkeypatch.setattr(crm, "test_connection", _check)

        response = await client.post("/api/v1/admin/integrations/suitedash/test")

        assert response.json()["success"] is False
        assert integration_repo.stored.last_test_success is False
        status = (await client.get("/api/v1/admin/integrations/suitedash")).json()
        assert status["last_test_success"] is False
        assert status["last_test_message"] == "Connection failed: 401 bad key"
        assert status["last_tested_at"] is not None


class TestSuiteDashSettingsUpdate:
    """Admin-saved settings replace the CRM client without a restart."""

    async def test_update_rebuilds_crm_services(self, client, app, crm, integration_repo):
        response = await client.put(_SETTINGS_URL, json=_CREDENTIALS)

        assert response.status_code == 200
        body = response.json()
        assert body["configured"] is True
        assert body["production"] is True
        assert body["public_id"] == "*********1111"
        assert body["secret_key"].endswith("4444")
        assert "sec-" not in body["secret_key"]
        assert integration_repo.stored.secret_key == "sec-2222-3333-4444"
        assert app.state.crm_client is not crm
        assert app.state.sync_engine.client is app.state.crm_client

    async def test_failed_row_resyncable_after_configuration(self, client, app, sync_repo, crm):
        crm.configured = False
        created = await client.post(
            "/api/v1/contact",
            json={"name": "Ada Lovelace", "email": "ada@example.com", "message": "Hello"},
        )
        submission_id = created.json()["id"]
        stored = await sync_repo.get_contact_submission(submission_id)
        assert stored.sync_status == SyncStatus.FAILED
        assert stored.last_error == "CRM not configured"

        await client.put(_SETTINGS_URL, json=_CREDENTIALS)
        response = await client.post(
            f"/api/v1/admin/contact-submissions/{submission_id}/resync"
        )

        assert response.status_code == 200
        assert response.json()["sync_status"] == "synced"
        assert app.state.crm_client.call_count("upsert_contact") == 1
        assert crm.calls == []

    async def test_masked_or_blank_secrets_keep_stored_values(self, client, integration_repo):
        await client.put(_SETTINGS_URL, json=_CREDENTIALS)

        response = await client.put(
            _SETTINGS_URL,
            json={"public_id": "", "secret_key": "**************4444", "auto_sync": False},
        )

        assert response.status_code == 200
        assert integration_repo.stored.public_id == "pub-0000-1111"
        assert integration_repo.stored.secret_key == "sec-2222-3333-4444"
        assert integration_repo.stored.auto_sync is False
        assert response.json()["configured"] is True

    async def test_disabling_makes_client_unconfigured(self, client, app):
        await client.put(_SETTINGS_URL, json=_CREDENTIALS)

        response = await client.put(_SETTINGS_URL, json={"enabled": False})

        assert response.json()["configured"] is False
        assert app.state.crm_client.is_configured() is False

    async def test_invalid_api_url_is_422(self, client, integration_repo):
        response = await client.put(_SETTINGS_URL, json={"api_url": "not a url"})

        assert response.status_code == 422
        assert integration_repo.saves == 0

    async def test_auto_sync_off_leaves_rows_unsynced(self, client, app, sync_repo):
        await client.put(_SETTINGS_URL, json={**_CREDENTIALS, "auto_sync": False})
        new_client = app.state.crm_client

        contact = await client.post(
            "/api/v1/contact",
            json={"name": "Ada Lovelace", "email": "ada@example.com", "message": "Hello"},
        )
        user = await client.post(
            "/api/v1/users",
            json={"first_name": "Grace", "last_name": "Hopper", "email": "grace@example.com"},
        )

        assert contact.status_code == 201
        assert user.status_code == 201
        assert new_client.calls == []
        stored = await sync_repo.get_contact_submission(contact.json()["id"])
        assert stored.sync_status == SyncStatus.UNSYNCED
        assert user.json()["sync_status"] == "unsynced"

    async def test_stored_settings_loaded_on_startup(
        self, crm, sync_repo, order_repo, integration_repo, client_factory
    ):
        integration_repo.stored = SuiteDashSettings(
            enabled=True,
            api_url="https://crm.example.com/secure-api",
            public_id="pub",
            secret_key="sec",
            auto_sync=False,
        )
        app = _make_app(crm, sync_repo, order_repo, integration_repo, client_factory)

        await load_stored_settings(app)

        assert app.state.crm_client is not crm
        assert app.state.crm_client.is_configured() is True
        assert app.state.suitedash_settings.auto_sync is False


# ── Admin Auth ───────────────────────────────────────────────────────────────


class TestAdminAuth:
    """Real JWT validation: no dependency override."""

    @pytest_asyncio.fixture
    async def raw_client(self, crm, sync_repo, order_repo):
        app = _make_app(crm, sync_repo, order_repo)
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client

    async def test_missing_token_is_401(self, raw_client):
        response = await raw_client.get("/api/v1/admin/users")

        assert response.status_code == 401

    async def test_garbage_token_is_401(self, raw_client):
        response = await raw_client.get(
            "/api/v1/admin/users", headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == 401

    async def test_expired_token_is_401(self, raw_client):
        token = create_access_token(
            {"sub": "admin-1", "role": "admin"}, expires_delta=timedelta(minutes=-1)
        )

        response = await raw_client.get(
            "/api/v1/admin/users", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401

    async def test_non_admin_is_403(self, raw_client):
        token = create_access_token({"sub": "user-1", "role": "customer"})

        response = await raw_client.get(
            "/api/v1/admin/users", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 403

    async def test_admin_token_is_accepted(self, raw_client):
        token = create_access_token({"sub": "admin-1", "role": "admin"})

        response = await raw_client.get(
            "/api/v1/admin/users", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 200
        assert response.json() == []

    async def test_public_routes_need_no_token(self, raw_client):
        response = await raw_client.get("/api/v1/orders/ORD-00000000/confirmation")

        assert response.status_code == 404
