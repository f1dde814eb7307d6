"""Configuration loading for ledger-sync.

Settings live in a TOML file and are parsed into dataclasses. Lookup order:

1. Explicit path passed to ``load_config``
2. ``config.toml`` in the current directory
3. ``$XDG_CONFIG_HOME/ledger-sync/config.toml``

A missing file yields the defaults. ``LEDGER_SYNC_DATA_DIR`` and
``LEDGER_SYNC_LOG_LEVEL`` override the corresponding file values.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .models import CategorizationRule, ConflictResolutionStrategy

CONFIG_FILENAME = "config.toml"


class ConfigError(ValueError):
    """Raised when the configuration file contains invalid values."""


@dataclass
class SyncConfig:
    """Engine behaviour."""

    batch_size: int = 100
    page_size: int = 500
    full_history_days: int = 30
    sync_overlap_days: int = 3
    provider_timeout_seconds: float = 30.0
    conflict_strategy: ConflictResolutionStrategy = ConflictResolutionStrategy.MERGE


@dataclass
class RetryConfig:
    """Per-provider-call retry policy.

    ``max_attempts`` counts the first call, so 3 means two retries.
    """

    max_attempts: int = 3
    base_delay_seconds: float = 0.5
    backoff_factor: float = 2.0
    max_delay_seconds: float = 8.0
    rate_limit_floor_seconds: float = 1.0
    rate_limit_max_wait_seconds: float = 60.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        delay = self.base_delay_seconds * (self.backoff_factor ** (attempt - 1))
        return min(delay, self.max_delay_seconds)


@dataclass
class QueueConfig:
    """Job scheduling."""

    max_concurrent: int = 5
    max_retries: int = 3
    retry_base_delay_seconds: float = 1.0


@dataclass
class DuplicateConfig:
    """Duplicate scoring. Points are summed; confidence = score / 100."""

    amount_points: int = 40
    date_points: int = 20
    description_points: int = 30
    merchant_points: int = 10
    amount_tolerance: float = 0.01
    window_days: int = 3
    description_threshold: float = 0.8
    merchant_threshold: float = 0.9
    duplicate_score: int = 70
    merge_confidence: float = 0.9
    review_confidence: float = 0.7


@dataclass
class CategorizationConfig:
    """Rules loaded from [[categorization.rules]] plus fallback confidences."""

    rules: list[CategorizationRule] = field(default_factory=list)
    heuristic_confidence: float = 0.5
    fallback_category: str = "Other"
    fallback_confidence: float = 0.2


@dataclass
class CurrencyConfig:
    base_currency: str = "USD"
    max_rate_age_hours: float = 24.0
    # Seed rates ("EUR_USD" = 1.1); stamped with the load time
    rates: dict[str, float] = field(default_factory=dict)


@dataclass
class ProviderConfig:
    """Where to find the aggregator adapter: ``"package.module:factory"``."""

    adapter: str = ""
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = "ledger-sync.log"


def _default_data_dir() -> Path:
    xdg_data_home = os.getenv("XDG_DATA_HOME", str(Path.home() / ".local" / "share"))
    return Path(xdg_data_home) / "ledger-sync"


@dataclass
class Config:
    """Top-level configuration."""

    sync: SyncConfig = field(default_factory=SyncConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    duplicates: DuplicateConfig = field(default_factory=DuplicateConfig)
    categorization: CategorizationConfig = field(default_factory=CategorizationConfig)
    currency: CurrencyConfig = field(default_factory=CurrencyConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    data_dir: Path = field(default_factory=_default_data_dir)

    @property
    def db_path(self) -> Path:
        return self.data_dir / "ledger.db"


def get_config_dir() -> Path:
    """Get the config directory path (XDG compliant)."""
    xdg_config_home = os.getenv("XDG_CONFIG_HOME", str(Path.home() / ".config"))
    return Path(xdg_config_home) / "ledger-sync"


def find_config_file() -> Optional[Path]:
    """Find the config file in standard locations."""
    for path in (Path(CONFIG_FILENAME), get_config_dir() / CONFIG_FILENAME):
        if path.exists():
            return path
    return None


def _build_section(cls: type, data: dict[str, Any], section: str) -> Any:
    known = cls.__dataclass_fields__
    unknown = set(data) - set(known)
    if unknown:
        raise ConfigError(f"Unknown key(s) in [{section}]: {', '.join(sorted(unknown))}")
    try:
        return cls(**data)
    except TypeError as e:
        raise ConfigError(f"Invalid [{section}] section: {e}") from e


def _parse_sync(data: dict[str, Any]) -> SyncConfig:
    data = dict(data)
    if "conflict_strategy" in data:
        try:
            data["conflict_strategy"] = ConflictResolutionStrategy(data["conflict_strategy"])
        except ValueError as e:
            raise ConfigError(f"Invalid sync.conflict_strategy: {data['conflict_strategy']}") from e
    cfg = _build_section(SyncConfig, data, "sync")
    if cfg.batch_size < 1:
        raise ConfigError("sync.batch_size must be at least 1")
    if cfg.page_size < 1:
        raise ConfigError("sync.page_size must be at least 1")
    return cfg


def _parse_categorization(data: dict[str, Any]) -> CategorizationConfig:
    data = dict(data)
    raw_rules = data.pop("rules", [])
    cfg = _build_section(CategorizationConfig, data, "categorization")
    try:
        cfg.rules = [CategorizationRule.from_dict(r) for r in raw_rules]
    except (KeyError, ValueError) as e:
        raise ConfigError(f"Invalid categorization rule: {e}") from e
    return cfg


def parse_config(raw: dict[str, Any]) -> Config:
    """Build a Config from an already-parsed TOML document."""
    config = Config()
    if "sync" in raw:
        config.sync = _parse_sync(raw["sync"])
    if "retry" in raw:
        config.retry = _build_section(RetryConfig, raw["retry"], "retry")
    if "queue" in raw:
        config.queue = _build_section(QueueConfig, raw["queue"], "queue")
        if config.queue.max_concurrent < 1:
            raise ConfigError("queue.max_concurrent must be at least 1")
    if "duplicates" in raw:
        config.duplicates = _build_section(DuplicateConfig, raw["duplicates"], "duplicates")
    if "categorization" in raw:
        config.categorization = _parse_categorization(raw["categorization"])
    if "currency" in raw:
        config.currency = _build_section(CurrencyConfig, raw["currency"], "currency")
    if "provider" in raw:
        config.provider = _build_section(ProviderConfig, raw["provider"], "provider")
    if "logging" in raw:
        config.logging = _build_section(LoggingConfig, raw["logging"], "logging")
    if "data_dir" in raw:
        config.data_dir = Path(raw["data_dir"]).expanduser()
    return config


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from file (if any) and apply environment overrides."""
    path = Path(config_path) if config_path else find_config_file()
    if path is not None:
        try:
            with open(path, "rb") as f:
                raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Cannot parse {path}: {e}") from e
        config = parse_config(raw)
    else:
        config = Config()

    if data_dir := os.getenv("LEDGER_SYNC_DATA_DIR"):
        config.data_dir = Path(data_dir).expanduser()
    if log_level := os.getenv("LEDGER_SYNC_LOG_LEVEL"):
        config.logging.level = log_level.upper()
    return config
