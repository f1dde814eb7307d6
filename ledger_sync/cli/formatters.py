"""CLI output formatters.

Keeps display logic out of main.py.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

import click

if TYPE_CHECKING:
    from ..models import CategorizationRule, EnrichmentResult, SyncJob, SyncResult, Transaction


def format_sync_time(when: Optional[datetime]) -> str:
    """Format sync time for display."""
    if when:
        return when.strftime("%Y-%m-%d %H:%M")
    return "Never"


def format_transaction_row(txn: Transaction) -> str:
    """Format a transaction row for CLI display."""
    date = txn.date.strftime("%Y-%m-%d")
    amount = f"{txn.amount:,.2f} {txn.currency}"
    description = (txn.description or "")[:28].ljust(28)
    category = (txn.category or "Uncategorized")[:20].ljust(20)
    row = f"{date}  {amount:>14}  {description}  {category}"
    if txn.pending:
        row += "  [PENDING]"
    return row


def format_rule_row(rule: CategorizationRule) -> str:
    state = "" if rule.enabled else "  (disabled)"
    target = f"{rule.category}/{rule.subcategory}" if rule.subcategory else rule.category
    return f"  {rule.priority:>4}  {rule.id:<20} {rule.name[:28]:<28} -> {target}{state}"


def echo_success(message: str) -> None:
    """Echo a success message in green."""
    click.echo(click.style(f"✓ {message}", fg="green"))


def echo_error(message: str) -> None:
    """Echo an error message in red."""
    click.echo(click.style(f"✗ {message}", fg="red"))


def echo_warning(message: str) -> None:
    """Echo a warning message in yellow."""
    click.echo(click.style(f"⚠ {message}", fg="yellow"))


def echo_header(message: str) -> None:
    """Echo a header with underline."""
    click.echo(f"\n{message}")
    click.echo("=" * len(message))


def format_sync_result(result: SyncResult, job: Optional[SyncJob] = None) -> None:
    """Format and display the outcome of a sync job.

    Args:
        result: SyncResult from the engine.
        job: Final state of the job, when it ran through the queue.
    """
    duration = result.duration
    took = f" in {duration:.1f}s" if duration is not None else ""
    if result.success:
        echo_success(f"Sync completed{took}")
    else:
        message = result.error.message if result.error else "unknown error"
        echo_error(f"Sync failed{took}: {message}")

    click.echo(
        f"    Accounts: {result.accounts_succeeded}/{result.accounts_processed} succeeded"
    )
    click.echo(
        f"    Transactions: {result.transactions_processed} processed, "
        f"{result.transactions_added} added, {result.transactions_updated} updated"
    )
    click.echo(
        f"    Duplicates: {result.duplicates_detected} "
        f"({len(result.review_queue)} flagged for review)"
    )
    if result.records_skipped:
        click.echo(f"    Skipped records: {result.records_skipped}")
    if result.retry_attempts:
        click.echo(f"    Retries: {result.retry_attempts}")
    if job is not None and job.retry_count:
        click.echo(f"    Job attempts: {job.retry_count + 1}")

    for failure in result.partial_failures:
        echo_warning(f"{failure.account_id}: {failure.error.code} {failure.error.message}")
    if result.requires_reauth:
        echo_warning("Credentials were rejected; re-link the institution and try again")


def format_enrichment(txn: Transaction, enrichment: EnrichmentResult) -> None:
    """Display what the transformer made of a single record."""
    click.echo(f"  Description: {txn.description}")
    if txn.merchant_name:
        click.echo(f"  Merchant:    {txn.merchant_name}")
    confidence = f" ({txn.category_confidence:.0%})" if txn.category_confidence else ""
    category = txn.category or "Uncategorized"
    if txn.subcategory:
        category += f" / {txn.subcategory}"
    click.echo(f"  Category:    {category}{confidence}")
    if txn.converted_amount is not None:
        click.echo(f"  Converted:   {txn.converted_amount:,.2f} {txn.converted_currency}")
    if enrichment.quality is not None:
        click.echo(f"  Quality:     {enrichment.quality.overall_score:.2f}")
        for issue in enrichment.quality.issues:
            click.echo(f"      - {issue.description} ({issue.severity})")
