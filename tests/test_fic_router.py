"""Management API, scheduled refresh endpoint and the OAuth routes."""
from datetime import timedelta

import pytest

from ficsync.core.config import settings
from ficsync.core.exceptions import FicApiError
from ficsync.db.enums import EventStatus, ResourceType
from ficsync.services import event_service, oauth_service, subscription_service
from ficsync.utils.datetime_parsing import now_utc

INTERNAL = {"X-Internal-Secret": "internal-secret"}


class FakeSubscriptionClient:
    def __init__(self):
        self.calls = []
        self.deleted = []
        self.delete_error = None

    async def create_or_renew_subscription(self, sink, types, existing_subscription_id=None):
        self.calls.append((sink, list(types), existing_subscription_id))
        return {
            "id": existing_subscription_id or "SUB-API",
            "secret": "api-secret",
            "expires_at": now_utc() + timedelta(days=30),
        }

    async def delete_subscription(self, subscription_id):
        self.deleted.append(subscription_id)
        if self.delete_error:
            raise self.delete_error


@pytest.fixture
def fic_subscriptions(monkeypatch) -> FakeSubscriptionClient:
    fake = FakeSubscriptionClient()
    monkeypatch.setattr(subscription_service, "_default_client", lambda account: fake)
    return fake


# =============================================================================
# Internal secret
# =============================================================================


@pytest.mark.asyncio
async def test_management_requires_internal_secret(client, account):
    missing = await client.get("/fic/accounts")
    wrong = await client.get("/fic/accounts", headers={"X-Internal-Secret": "nope"})

    assert missing.status_code == 422
    assert wrong.status_code == 403


@pytest.mark.asyncio
async def test_internal_endpoints_disabled_without_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "INTERNAL_SECRET", "")

    response = await client.get("/fic/accounts", headers=INTERNAL)

    assert response.status_code == 501


# =============================================================================
# Accounts, subscriptions, events
# =============================================================================


@pytest.mark.asyncio
async def test_list_accounts_never_exposes_tokens(client, account):
    response = await client.get("/fic/accounts", headers=INTERNAL)

    assert response.status_code == 200
    body = response.json()
    assert body[0]["company_id"] == 1550348
    assert "access_token" not in body[0]
    assert "refresh_token" not in body[0]
    assert "access-token" not in response.text


@pytest.mark.asyncio
async def test_list_subscriptions_includes_sink_url(client, account, subscription):
    response = await client.get(f"/fic/accounts/{account.id}/subscriptions", headers=INTERNAL)

    assert response.status_code == 200
    item = response.json()[0]
    assert item["fic_subscription_id"] == subscription.fic_subscription_id
    assert item["sink_url"] == f"https://sync.example.com/webhooks/{account.id}/entity"
    assert "webhook_secret" not in item


@pytest.mark.asyncio
async def test_subscriptions_for_unknown_account(client):
    response = await client.get("/fic/accounts/999/subscriptions", headers=INTERNAL)

    assert response.status_code == 404
    assert response.json() == {"error": "Account not found"}


@pytest.mark.asyncio
async def test_register_subscription(client, account, fic_subscriptions):
    response = await client.post(
        f"/fic/accounts/{account.id}/subscriptions",
        json={"event_group": "issued_documents"},
        headers=INTERNAL,
    )

    assert response.status_code == 201
    body = response.json()
    assert body["fic_subscription_id"] == "SUB-API"
    assert body["event_group"] == "issued_documents"
    sink, types, _ = fic_subscriptions.calls[0]
    assert sink.endswith(f"/webhooks/{account.id}/issued_documents")
    assert any("invoices" in t for t in types)


@pytest.mark.asyncio
async def test_register_subscription_rejects_bad_group(client, account, fic_subscriptions):
    response = await client.post(
        f"/fic/accounts/{account.id}/subscriptions",
        json={"event_group": "Not-Valid"},
        headers=INTERNAL,
    )

    assert response.status_code == 422
    assert fic_subscriptions.calls == []


@pytest.mark.asyncio
async def test_register_subscription_without_known_types(client, account, fic_subscriptions):
    response = await client.post(
        f"/fic/accounts/{account.id}/subscriptions",
        json={"event_group": "unknown_group"},
        headers=INTERNAL,
    )

    assert response.status_code == 400
    assert fic_subscriptions.calls == []


@pytest.mark.asyncio
async def test_delete_subscription_stops_webhooks(client, account, subscription, fic_subscriptions):
    response = await client.delete(f"/fic/subscriptions/{subscription.id}", headers=INTERNAL)

    assert response.status_code == 200
    assert response.json()["is_active"] is False
    assert fic_subscriptions.deleted == [subscription.fic_subscription_id]

    hook = await client.post(f"/webhooks/{account.id}/entity", content=b"{}")
    assert hook.status_code == 404


@pytest.mark.asyncio
async def test_delete_subscription_already_gone_upstream(client, db, subscription, fic_subscriptions):
    fic_subscriptions.delete_error = FicApiError("FIC API returned HTTP 404", http_status=404)

    response = await client.delete(f"/fic/subscriptions/{subscription.id}", headers=INTERNAL)

    assert response.status_code == 200
    assert response.json()["is_active"] is False


@pytest.mark.asyncio
async def test_delete_subscription_upstream_failure_keeps_it_active(
    client, db, subscription, fic_subscriptions
):
    fic_subscriptions.delete_error = FicApiError("FIC API returned HTTP 503", http_status=503)

    response = await client.delete(f"/fic/subscriptions/{subscription.id}", headers=INTERNAL)

    assert response.status_code == 502
    assert "503" in response.json()["error"]
    db.refresh(subscription)
    assert subscription.is_active


@pytest.mark.asyncio
async def test_list_events_filters_by_status(client, db, account):
    for fic_id, status in ((1, EventStatus.PROCESSED), (2, EventStatus.FAILED)):
        event_service.record_event(
            db,
            account_id=account.id,
            event_type="it.fattureincloud.webhooks.entities.clients.update",
            resource_type=ResourceType.CLIENT,
            fic_resource_id=fic_id,
            occurred_at=now_utc(),
            payload={},
            status=status,
            error="boom" if status == EventStatus.FAILED else None,
        )

    response = await client.get(
        f"/fic/accounts/{account.id}/events", params={"status": "failed"}, headers=INTERNAL
    )

    assert response.status_code == 200
    body = response.json()
    assert [e["fic_resource_id"] for e in body] == [2]
    assert body[0]["error"] == "boom"


# =============================================================================
# Scheduled refresh
# =============================================================================


@pytest.mark.asyncio
async def test_subscription_refresh_endpoint(client, account, make_subscription, fic_subscriptions):
    make_subscription(account, expires_at=now_utc() + timedelta(days=2))

    response = await client.post(
        "/internal/scheduled/subscription-refresh", params={"days": 15}, headers=INTERNAL
    )

    assert response.status_code == 200
    assert response.json() == {
        "checked": 1,
        "renewed": 1,
        "skipped": 0,
        "deactivated": 0,
        "failed": 0,
        "errors": [],
    }


@pytest.mark.asyncio
async def test_subscription_refresh_requires_secret(client):
    response = await client.post(
        "/internal/scheduled/subscription-refresh", headers={"X-Internal-Secret": "x"}
    )

    assert response.status_code == 403


# =============================================================================
# OAuth
# =============================================================================


@pytest.mark.asyncio
async def test_oauth_redirect_sets_state_cookie(client):
    response = await client.get("/fic/oauth/redirect", params={"tenant_id": "team-1"})

    assert response.status_code == 302
    assert response.headers["location"].startswith(
        "https://api-v2.fattureincloud.it/oauth/authorize?"
    )
    cookie = response.headers["set-cookie"]
    assert cookie.startswith(f"{oauth_service.STATE_COOKIE_NAME}=")
    assert "HttpOnly" in cookie
    assert "Path=/fic/oauth" in cookie


@pytest.mark.asyncio
async def test_oauth_callback_binds_account(client, monkeypatch):
    async def fake_exchange(code):
        return {"access_token": "tok", "refresh_token": "ref", "expires_in": 3600}

    async def fake_companies(access_token):
        return [{"id": 777, "name": "Bottega"}]

    monkeypatch.setattr(oauth_service, "exchange_code", fake_exchange)
    monkeypatch.setattr(oauth_service, "list_user_companies", fake_companies)
    state, cookie = oauth_service.create_state_token("team-5")

    response = await client.get(
        "/fic/oauth/callback",
        params={"code": "abc", "state": state},
        headers={"Cookie": f"{oauth_service.STATE_COOKIE_NAME}={cookie}"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["company_id"] == 777
    assert body["tenant_id"] == "team-5"
    assert "tok" not in response.text


@pytest.mark.asyncio
async def test_oauth_callback_rejects_bad_state(client):
    _, cookie = oauth_service.create_state_token("team-5")

    response = await client.get(
        "/fic/oauth/callback",
        params={"code": "abc", "state": "forged"},
        headers={"Cookie": f"{oauth_service.STATE_COOKIE_NAME}={cookie}"},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid OAuth state"}


@pytest.mark.asyncio
async def test_oauth_callback_company_mismatch(client, make_account, monkeypatch):
    make_account(company_id=1, tenant_id="team-5")

    async def fake_exchange(code):
        return {"access_token": "tok", "expires_in": 3600}

    async def fake_companies(access_token):
        return [{"id": 2, "name": "Elsewhere"}]

    monkeypatch.setattr(oauth_service, "exchange_code", fake_exchange)
    monkeypatch.setattr(oauth_service, "list_user_companies", fake_companies)
    state, cookie = oauth_service.create_state_token("team-5")

    response = await client.get(
        "/fic/oauth/callback",
        params={"code": "abc", "state": state},
        headers={"Cookie": f"{oauth_service.STATE_COOKIE_NAME}={cookie}"},
    )

    assert response.status_code == 409
    assert "Company mismatch" in response.json()["error"]


@pytest.mark.asyncio
async def test_oauth_denied(client):
    response = await client.get("/fic/oauth/callback", params={"error": "access_denied"})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
