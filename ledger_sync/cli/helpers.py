"""Shared CLI helpers for context management and service creation."""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

import click

if TYPE_CHECKING:
    from click import Context

    from ..clients.protocols import ProviderClient
    from ..config import Config, LoggingConfig
    from ..db.database import Database
    from ..services import DataTransformer, SyncEngine

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_PACKAGE_LOGGER = "ledger_sync"


def setup_logging(cfg: Config, verbose: bool = False) -> None:
    """Attach a log file in the data dir and a stderr handler to the package logger.

    Calling it again replaces the handlers installed by the previous call.
    """
    log_cfg: LoggingConfig = cfg.logging
    level = logging.DEBUG if verbose else getattr(logging, log_cfg.level.upper(), logging.INFO)
    package_logger = logging.getLogger(_PACKAGE_LOGGER)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    if log_cfg.file:
        cfg.data_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(cfg.data_dir / log_cfg.file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        package_logger.addHandler(file_handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    # Keep the terminal for progress bars and results unless asked for more
    stream_handler.setLevel(level if verbose else max(level, logging.WARNING))
    package_logger.addHandler(stream_handler)
    package_logger.setLevel(level)


def load_provider(cfg: Config, mock: bool = False) -> ProviderClient:
    """Instantiate the aggregator adapter.

    ``provider.adapter`` names a factory as ``"package.module:callable"``;
    it is called with ``provider.options`` as keyword arguments.
    """
    from ..clients import MockProviderClient

    if mock:
        return MockProviderClient(**cfg.provider.options)

    adapter = cfg.provider.adapter
    if not adapter:
        raise click.UsageError(
            "No provider adapter configured. Set provider.adapter in config.toml or use --mock."
        )
    module_name, _, attr = adapter.partition(":")
    if not module_name or not attr:
        raise click.UsageError(f"provider.adapter must look like 'module:factory', got {adapter!r}")
    try:
        factory = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise click.UsageError(f"Cannot load provider adapter {adapter!r}: {e}") from e
    return factory(**cfg.provider.options)


def build_transformer(cfg: Config) -> DataTransformer:
    """Transformer wired from the categorization and currency settings."""
    from ..services import CurrencyConverter, DataTransformer, MerchantNormalizer, RuleCategorizer

    return DataTransformer(
        categorizer=RuleCategorizer(cfg.categorization),
        merchants=MerchantNormalizer(),
        currency=CurrencyConverter(cfg.currency),
    )


def get_database(ctx: Context) -> Database:
    """Lazily open the database.

    Mock runs use a separate database file so they never touch real data.
    """
    from ..db.database import Database

    if "db" not in ctx.obj:
        cfg = ctx.obj["config"]
        cfg.data_dir.mkdir(parents=True, exist_ok=True)
        db_path = cfg.data_dir / "mock_ledger.db" if ctx.obj.get("mock") else cfg.db_path
        ctx.obj["db"] = Database(db_path)
        ctx.call_on_close(ctx.obj["db"].close)
    return ctx.obj["db"]


def get_engine(ctx: Context) -> SyncEngine:
    """Lazily create the sync engine.

    Args:
        ctx: Click context with config and mock flags.

    Returns:
        SyncEngine instance.
    """
    from ..clients import StaticConsentGate
    from ..services import DuplicateDetector, SyncEngine

    if "engine" not in ctx.obj:
        cfg = ctx.obj["config"]
        ctx.obj["engine"] = SyncEngine(
            provider=load_provider(cfg, mock=ctx.obj.get("mock", False)),
            store=get_database(ctx),
            # Running the CLI against your own credentials is the consent
            consent=StaticConsentGate(allow_all=True),
            transformer=build_transformer(cfg),
            detector=DuplicateDetector(cfg.duplicates),
            config=cfg,
            show_progress=True,
        )
    return ctx.obj["engine"]


def require_data(db: Database) -> bool:
    """Check if database has transactions, show message if empty."""
    if db.get_transaction_count() == 0:
        click.echo(click.style("No transactions in database.", fg="yellow"))
        click.echo("Run 'sync' first to pull data.")
        return False
    return True
