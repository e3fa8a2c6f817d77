"""CLI tools for FIC sync administration."""

import asyncio

import click
from sqlalchemy.orm.attributes import flag_modified

from ficsync.core.exceptions import AccountUnavailable, FicApiError, FicSyncError
from ficsync.db.enums import (
    SYNCABLE_ACCOUNT_STATUSES,
    AccountStatus,
    EventStatus,
    JobType,
    ResourceType,
)
from ficsync.db.session import SessionLocal
from ficsync.services import (
    account_service,
    event_service,
    job_service,
    oauth_service,
    subscription_service,
    sync_service,
)
from ficsync.services.fic_api import FicApiClient


def _fmt(value) -> str:
    if value is None:
        return "-"
    if hasattr(value, "isoformat"):
        return value.isoformat(timespec="seconds")
    return str(value)


@click.group()
def cli():
    """FIC sync CLI tools."""
    pass


@cli.command()
@click.option("--tenant-id", default=None, help="Only accounts bound to this tenant")
def list_accounts(tenant_id: str | None):
    """List connected FIC accounts (tokens are never shown)."""
    with SessionLocal() as db:
        accounts = account_service.list_accounts(db, tenant_id=tenant_id)
        if not accounts:
            click.echo("No accounts found")
            return
        for account in accounts:
            click.echo(
                f"{account.id}\tcompany={account.company_id}\t{account.company_name or '-'}"
                f"\tstatus={account.status}\ttenant={account.tenant_id or '-'}"
                f"\tlast_sync={_fmt(account.last_sync_at)}"
            )


@cli.command()
@click.option("--account-id", type=int, default=None, help="Filter by account")
@click.option("--active-only", is_flag=True, help="Hide deactivated subscriptions")
def list_subscriptions(account_id: int | None, active_only: bool):
    """List webhook subscriptions."""
    with SessionLocal() as db:
        subscriptions = subscription_service.list_subscriptions(
            db, account_id=account_id, active_only=active_only
        )
        if not subscriptions:
            click.echo("No subscriptions found")
            return
        for s in subscriptions:
            click.echo(
                f"{s.id}\taccount={s.account_id}\tgroup={s.event_group}"
                f"\tfic_id={s.fic_subscription_id}\tactive={'yes' if s.is_active else 'no'}"
                f"\texpires={_fmt(s.expires_at)}\tverified={_fmt(s.verified_at)}"
            )


@cli.command()
@click.option("--account-id", type=int, default=None, help="Filter by account")
@click.option(
    "--resource-type",
    type=click.Choice([t.value for t in ResourceType]),
    default=None,
    help="Filter by resource type",
)
@click.option(
    "--status",
    type=click.Choice([s.value for s in EventStatus]),
    default=None,
    help="Filter by processing status",
)
@click.option("--limit", default=50, show_default=True, help="Maximum rows")
def list_events(account_id: int | None, resource_type: str | None, status: str | None, limit: int):
    """List the most recent sync events."""
    with SessionLocal() as db:
        events = event_service.list_events(
            db,
            account_id=account_id,
            resource_type=ResourceType(resource_type) if resource_type else None,
            status=EventStatus(status) if status else None,
            limit=limit,
        )
        if not events:
            click.echo("No events found")
            return
        for e in events:
            line = (
                f"{_fmt(e.occurred_at)}\taccount={e.account_id}\t{e.event_type}"
                f"\t{e.resource_type}:{e.fic_resource_id}\t{e.status}"
            )
            if e.error:
                line += f"\terror={e.error}"
            click.echo(line)


@cli.command()
@click.option("--account-id", type=int, required=True, help="Account to subscribe")
@click.option("--event-group", required=True, help="Event group, e.g. entity")
@click.option("--type", "types", multiple=True, help="CloudEvents type (repeatable)")
def register_subscription(account_id: int, event_group: str, types: tuple[str, ...]):
    """Create or renew the FIC subscription for an event group."""
    with SessionLocal() as db:
        account = account_service.get_account(db, account_id)
        if account is None:
            click.echo(f"❌ Account {account_id} not found")
            raise SystemExit(1)
        try:
            subscription = asyncio.run(
                subscription_service.register_subscription(
                    db, account, event_group, types=list(types) or None
                )
            )
        except Exception as e:
            click.echo(f"❌ Error: {e}")
            raise SystemExit(1)
        click.echo(f"✓ Subscription {subscription.fic_subscription_id} registered")
        click.echo(f"  Sink: {subscription_service.build_sink_url(account_id, event_group)}")


def _fic_client(account) -> FicApiClient:
    return FicApiClient.for_account(account)


async def _full_sync(db, account, resource_types):
    if AccountStatus(account.status) not in SYNCABLE_ACCOUNT_STATUSES:
        raise AccountUnavailable(account.id, account.status)
    await oauth_service.ensure_fresh_token(db, account)
    try:
        return await sync_service.full_sync(db, account, resource_types, _fic_client(account))
    except FicApiError as exc:
        if exc.is_auth_error and account.status == AccountStatus.ACTIVE.value:
            account_service.transition_status(
                db, account, AccountStatus.NEEDS_REFRESH, f"FIC API returned HTTP {exc.http_status}"
            )
        raise


@cli.command()
@click.option("--account-id", type=int, required=True, help="Account to sync")
@click.option(
    "--type",
    "types",
    multiple=True,
    type=click.Choice([t.value for t in ResourceType]),
    help="Resource type to sync (repeatable, default: all)",
)
def sync(account_id: int, types: tuple[str, ...]):
    """Pull every client, supplier, invoice and quote from FIC and upsert it."""
    resource_types = [ResourceType(t) for t in types] or list(ResourceType)
    with SessionLocal() as db:
        account = account_service.get_account(db, account_id)
        if account is None:
            click.echo(f"❌ Account {account_id} not found")
            raise SystemExit(1)
        try:
            summaries = asyncio.run(_full_sync(db, account, resource_types))
        except FicSyncError as e:
            click.echo(f"❌ Error: {e.message}")
            raise SystemExit(1)

    failed = False
    for summary in summaries:
        click.echo(
            f"✓ {summary.resource_type.value}: {summary.synced}/{summary.total} synced "
            f"({summary.created} created, {summary.updated} updated)"
        )
        for error in summary.errors:
            failed = True
            click.echo(f"  ❌ {error}")
    if failed:
        raise SystemExit(1)


@cli.command()
@click.option("--days", type=int, default=None, help="Renew subscriptions expiring within N days")
def refresh_subscriptions(days: int | None):
    """Renew active subscriptions that are about to expire."""
    with SessionLocal() as db:
        summary = asyncio.run(subscription_service.refresh_expiring_subscriptions(db, days=days))
    click.echo(
        f"✓ Checked {summary.checked}: renewed {summary.renewed}, "
        f"skipped {summary.skipped}, deactivated {summary.deactivated}, failed {summary.failed}"
    )
    for error in summary.errors:
        click.echo(f"  ❌ {error}")
    if summary.failed:
        raise SystemExit(1)


@cli.command()
@click.option(
    "--job-type",
    type=click.Choice([t.value for t in JobType]),
    default=None,
    help="Only requeue jobs of this type",
)
def retry_failed_jobs(job_type: str | None):
    """Requeue dead-lettered jobs with a fresh attempt budget."""
    with SessionLocal() as db:
        count = job_service.retry_failed_jobs(db, JobType(job_type) if job_type else None)
    click.echo(f"✓ Requeued {count} failed jobs")


@cli.command()
def reencrypt_secrets():
    """Re-encrypt tokens and webhook secrets under the first DATA_ENCRYPTION_KEY."""
    with SessionLocal() as db:
        accounts = account_service.list_accounts(db)
        for account in accounts:
            flag_modified(account, "access_token")
            flag_modified(account, "refresh_token")
        subscriptions = subscription_service.list_subscriptions(db)
        for subscription in subscriptions:
            flag_modified(subscription, "webhook_secret")
        db.commit()
    click.echo(
        f"✓ Re-encrypted {len(accounts)} accounts and {len(subscriptions)} subscriptions"
    )


if __name__ == "__main__":
    cli()
