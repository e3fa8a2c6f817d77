"""fic_webhook job handler, including the full receive -> queue -> sync path."""
from __future__ import annotations

import logging
from datetime import timedelta

import pytest
from sqlalchemy import select

from ficsync import worker
from ficsync.core.exceptions import (
    AccountNotFound,
    AccountUnavailable,
    FicApiError,
    TokenUnavailable,
)
from ficsync.db.enums import AccountStatus, EventStatus, JobStatus, JobType, ResourceType
from ficsync.db.models import Client, Event, Job
from ficsync.jobs.handlers import fic as fic_handler
from ficsync.services import job_service, oauth_service, sync_service
from ficsync.services.job_service import RetryPolicy
from tests.conftest import FakeFicClient
from ficsync.utils.datetime_parsing import now_utc
from tests.helpers import CLIENT_CREATE, binary_headers, ids_body


@pytest.fixture
def fic_client(monkeypatch) -> FakeFicClient:
    fake = FakeFicClient(
        {
            123: {"name": "Mario Rossi", "vat_number": "IT01234567890"},
            456: {"name": "Luigi Verdi"},
        }
    )
    monkeypatch.setattr(fic_handler, "_client_for", lambda account: fake)
    return fake


def _job(db, account, event_type=CLIENT_CREATE, ids=(123, 456)):
    return job_service.schedule_job(
        db,
        JobType.FIC_WEBHOOK,
        payload={
            "account_id": account.id,
            "event_group": "entity",
            "envelope": {
                "event_type": event_type,
                "occurred_at": "2026-10-19T09:30:00Z",
                "ce_id": "evt-1",
                "resource_ids": list(ids),
            },
        },
        account_id=account.id,
    )


@pytest.mark.asyncio
async def test_handler_syncs_every_id_and_records_events(db, account, fic_client):
    job = _job(db, account)

    await fic_handler.process_fic_webhook(db, job)

    rows = sync_service.list_resources(db, account.id, ResourceType.CLIENT)
    assert [r.fic_id for r in rows] == [123, 456]

    events = list(db.scalars(select(Event).order_by(Event.fic_resource_id)))
    assert [e.fic_resource_id for e in events] == [123, 456]
    assert {e.status for e in events} == {EventStatus.PROCESSED.value}
    assert events[0].event_type == CLIENT_CREATE
    assert events[0].occurred_at.year == 2026
    # vat numbers never reach the audit payload
    assert events[0].payload["vat_number"] == "[REDACTED]"


@pytest.mark.asyncio
async def test_handler_records_failed_ids(db, account, fic_client):
    fic_client.failures[456] = "HTTP 404"
    job = _job(db, account)

    await fic_handler.process_fic_webhook(db, job)

    failed = db.scalar(select(Event).where(Event.status == EventStatus.FAILED.value))
    assert failed.fic_resource_id == 456
    assert "HTTP 404" in failed.error
    assert sync_service.get_resource(db, account.id, ResourceType.CLIENT, 123) is not None


@pytest.mark.asyncio
async def test_unknown_event_type_completes_without_work(db, account, fic_client, caplog):
    job = _job(db, account, event_type="it.fattureincloud.webhooks.receipts.create")

    with caplog.at_level(logging.WARNING, logger="ficsync.jobs.handlers.fic"):
        await fic_handler.process_fic_webhook(db, job)

    assert fic_client.fetched == []
    assert db.scalar(select(Event)) is None
    assert any("Unknown event type" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_missing_account_raises(db, account, fic_client):
    job = _job(db, account)
    job.payload = {**job.payload, "account_id": 9999}
    db.commit()

    with pytest.raises(AccountNotFound):
        await fic_handler.process_fic_webhook(db, job)


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [AccountStatus.REVOKED, AccountStatus.SUSPENDED, AccountStatus.DISCONNECTED])
async def test_unsyncable_account_is_refused(db, make_account, fic_client, status):
    account = make_account(status=status.value)

    with pytest.raises(AccountUnavailable):
        await fic_handler.process_fic_webhook(db, _job(db, account))

    assert fic_client.fetched == []
    assert db.scalar(select(Event)) is None


@pytest.mark.asyncio
async def test_dead_token_raises_instead_of_syncing(db, make_account, fic_client, monkeypatch):
    account = make_account(token_expires_at=now_utc() - timedelta(minutes=5))

    async def unreachable(refresh_token):
        raise FicApiError("FIC token request failed: ConnectError")

    monkeypatch.setattr(oauth_service, "refresh_tokens", unreachable)

    with pytest.raises(TokenUnavailable):
        await fic_handler.process_fic_webhook(db, _job(db, account))

    assert fic_client.fetched == []
    assert db.scalar(select(Event)) is None


@pytest.mark.asyncio
async def test_rejected_token_flags_account_and_fails_the_job(db, account, fic_client):
    fic_client.failures[123] = FicApiError("FIC API returned HTTP 401", http_status=401)

    with pytest.raises(FicApiError):
        await fic_handler.process_fic_webhook(db, _job(db, account))

    db.refresh(account)
    assert account.status == AccountStatus.NEEDS_REFRESH.value
    # the remaining id is left for the retry, not marked failed
    assert [fic_id for _, fic_id in fic_client.fetched] == [123]
    assert db.scalar(select(Event)) is None


@pytest.mark.asyncio
async def test_flagged_account_is_repaired_by_refresh_then_syncs(db, make_account, fic_client, monkeypatch):
    account = make_account(status=AccountStatus.NEEDS_REFRESH.value)

    async def fake_refresh(refresh_token):
        return {"access_token": "rotated", "expires_in": 3600}

    monkeypatch.setattr(oauth_service, "refresh_tokens", fake_refresh)

    await fic_handler.process_fic_webhook(db, _job(db, account))

    db.refresh(account)
    assert account.status == AccountStatus.ACTIVE.value
    assert len(sync_service.list_resources(db, account.id, ResourceType.CLIENT)) == 2


@pytest.mark.asyncio
async def test_delete_event_removes_rows(db, account, fic_client):
    await fic_handler.process_fic_webhook(db, _job(db, account))

    await fic_handler.process_fic_webhook(
        db, _job(db, account, event_type="it.fattureincloud.webhooks.entities.clients.delete", ids=(123,))
    )

    remaining = sync_service.list_resources(db, account.id, ResourceType.CLIENT)
    assert [r.fic_id for r in remaining] == [456]


@pytest.mark.asyncio
async def test_binary_notification_end_to_end(
    client, db, session_factory, account, subscription, fic_client, published
):
    response = await client.post(
        f"/webhooks/{account.id}/entity",
        content=ids_body(123, 456),
        headers=binary_headers(),
    )
    assert response.status_code == 202

    processed = await worker.run_once(session_factory, RetryPolicy(), concurrency=1)
    assert processed == 1

    job = db.scalar(select(Job))
    db.refresh(job)
    assert job.status == JobStatus.COMPLETED.value

    rows = list(db.scalars(select(Client).order_by(Client.fic_id)))
    assert [(r.fic_id, r.name) for r in rows] == [(123, "Mario Rossi"), (456, "Luigi Verdi")]
    assert [fic_id for _, fic_id in fic_client.fetched] == [123, 456]

    synced = [p for _, name, p in published if name == "resource.synced"]
    assert [p["fic_id"] for p in synced] == [123, 456]
    assert all(p["action"] == "created" for p in synced)
