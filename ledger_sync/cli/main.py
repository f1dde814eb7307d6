"""ledger-sync command line interface."""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import click

from .. import __version__
from ..config import ConfigError, load_config
from ..models import (
    AccountActivity,
    ConflictResolutionStrategy,
    SyncJob,
    SyncJobStatus,
    SyncPriority,
    SyncType,
    Transaction,
)
from .formatters import (
    echo_error,
    echo_header,
    echo_success,
    echo_warning,
    format_enrichment,
    format_rule_row,
    format_sync_result,
    format_sync_time,
    format_transaction_row,
)
from .helpers import build_transformer, get_database, get_engine, require_data, setup_logging

# Window used to estimate an account's daily activity
ACTIVITY_WINDOW_DAYS = 30


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to config.toml.",
)
@click.option("--mock", is_flag=True, help="Use the mock provider and a separate mock database.")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr.")
@click.version_option(__version__, prog_name="ledger-sync")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[Path], mock: bool, verbose: bool) -> None:
    """ledger-sync - pull, reconcile and enrich bank transactions."""
    ctx.ensure_object(dict)
    try:
        cfg = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    ctx.obj["config"] = cfg
    ctx.obj["mock"] = mock
    setup_logging(cfg, verbose=verbose)


@main.command()
@click.option(
    "--type",
    "sync_type",
    type=click.Choice([t.value for t in SyncType]),
    default=SyncType.INCREMENTAL.value,
    show_default=True,
    help="What to sync.",
)
@click.option(
    "--priority",
    type=click.Choice([p.value for p in SyncPriority]),
    default=SyncPriority.NORMAL.value,
    show_default=True,
)
@click.option("--user", "user_id", default="local", show_default=True, help="User to sync.")
@click.option(
    "--account",
    "account_ids",
    multiple=True,
    help="Restrict to an account id (repeatable). Default: all active accounts.",
)
@click.option(
    "--strategy",
    type=click.Choice([s.value for s in ConflictResolutionStrategy]),
    default=None,
    help="Conflict resolution strategy (overrides sync.conflict_strategy).",
)
@click.option(
    "--credentials",
    "credentials_ref",
    default="local",
    show_default=True,
    help="Access token or credentials reference handed to the provider.",
)
@click.pass_context
def sync(
    ctx: click.Context,
    sync_type: str,
    priority: str,
    user_id: str,
    account_ids: tuple[str, ...],
    strategy: Optional[str],
    credentials_ref: str,
) -> None:
    """Run a sync job through the queue and report the result."""
    from ..services import SyncQueue, SyncWorkerPool

    cfg = ctx.obj["config"]
    if strategy:
        cfg.sync.conflict_strategy = ConflictResolutionStrategy(strategy)
    engine = get_engine(ctx)

    job = SyncJob(
        user_id=user_id,
        credentials_ref=credentials_ref,
        provider=engine.provider_name,
        account_ids=list(account_ids),
        type=SyncType(sync_type),
        priority=SyncPriority(priority),
        max_retries=cfg.queue.max_retries,
    )
    click.echo(f"Starting {job.type.value} sync for user '{user_id}' ({engine.provider_name})...")

    queue = SyncQueue(max_concurrent=cfg.queue.max_concurrent)
    with SyncWorkerPool(queue, engine, cfg.queue) as pool:
        pool.submit(job)
        pool.wait()
        result = pool.result(job.id)
    final = queue.status(job.id)

    if result is None:
        echo_error(f"Job {job.id} did not run (status: {final.status.value})")
        ctx.exit(1)
    format_sync_result(result, final)
    if final.status is not SyncJobStatus.COMPLETED:
        ctx.exit(1)


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show database contents and per-account sync state."""
    db = get_database(ctx)
    echo_header("Database Status")
    click.echo(f"Transactions:   {db.get_transaction_count()}")
    click.echo(f"Uncategorized:  {db.get_uncategorized_count()}")
    click.echo(f"Needs review:   {db.get_review_count()}")
    click.echo(f"Accounts:       {db.get_account_count()}")

    states = db.get_sync_states()
    echo_header("Sync State")
    if not states:
        click.echo("No accounts synced yet.")
        return
    for state in states:
        click.echo(
            f"  {state['user_id']:<12} {state['account_id']:<20} "
            f"{format_sync_time(state['last_synced_at'])}"
        )


@main.command()
@click.option("-n", "--limit", default=20, show_default=True, help="Number of rows to show.")
@click.option("--account", "account_id", default=None, help="Only this account.")
@click.option("--user", "user_id", default=None, help="Only this user.")
@click.pass_context
def transactions(
    ctx: click.Context, limit: int, account_id: Optional[str], user_id: Optional[str]
) -> None:
    """List stored transactions, newest first."""
    db = get_database(ctx)
    if not require_data(db):
        return
    rows = db.get_transactions(user_id=user_id, account_id=account_id, limit=limit)
    if not rows:
        click.echo("No transactions match.")
        return
    click.echo(f"Found {len(rows)} transactions:\n")
    for txn in rows:
        click.echo(format_transaction_row(txn))


@main.command()
@click.pass_context
def rules(ctx: click.Context) -> None:
    """List categorization rules in evaluation order."""
    from ..services import RuleCategorizer

    categorizer = RuleCategorizer(ctx.obj["config"].categorization)
    echo_header("Categorization Rules")
    for rule in categorizer.rules:
        click.echo(format_rule_row(rule))


@main.command()
@click.argument("description")
@click.option("--amount", type=float, default=10.0, show_default=True)
@click.option("--merchant", default=None, help="Merchant name as the provider reports it.")
@click.option("--currency", default="USD", show_default=True)
@click.pass_context
def categorize(
    ctx: click.Context,
    description: str,
    amount: float,
    merchant: Optional[str],
    currency: str,
) -> None:
    """Preview how a transaction DESCRIPTION would be cleaned and categorized."""
    transformer = build_transformer(ctx.obj["config"])
    txn = Transaction(
        id="preview",
        account_id="preview",
        date=datetime.now(),
        amount=amount,
        description=description,
        merchant_name=merchant,
        currency=currency.upper(),
    )
    enriched, enrichment = transformer.transform(txn)
    echo_header(f"Categorize: {description}")
    format_enrichment(enriched, enrichment)


@main.command()
@click.argument("account_id")
@click.pass_context
def frequency(ctx: click.Context, account_id: str) -> None:
    """Suggest a sync frequency for ACCOUNT_ID from its recent activity."""
    from ..services import SyncFrequency, calculate_optimal_sync_frequency

    db = get_database(ctx)
    now = datetime.now()
    txns = db.get_transactions(account_id=account_id)
    if not txns:
        echo_warning(f"No transactions stored for {account_id}; assuming a quiet account")
    recent = [t for t in txns if now - t.date <= timedelta(days=ACTIVITY_WINDOW_DAYS)]
    activity = AccountActivity(
        account_id=account_id,
        transaction_count=len(txns),
        last_transaction_date=max((t.date for t in txns), default=None),
        avg_daily_transactions=len(recent) / ACTIVITY_WINDOW_DAYS,
    )
    interval = calculate_optimal_sync_frequency(activity, now=now)
    suggested = SyncFrequency.from_interval(interval)
    echo_success(f"{account_id}: sync {suggested.value.replace('_', ' ')}")
    click.echo(
        f"    {activity.transaction_count} transactions, "
        f"{activity.avg_daily_transactions:.1f}/day over the last {ACTIVITY_WINDOW_DAYS} days, "
        f"last on {format_sync_time(activity.last_transaction_date)}"
    )


if __name__ == "__main__":
    main()
