"""Tests for configuration loading."""

from pathlib import Path

import pytest

from ledger_sync.config import (
    Config,
    ConfigError,
    RetryConfig,
    find_config_file,
    load_config,
    parse_config,
)
from ledger_sync.models import ConditionField, ConditionOperator, ConflictResolutionStrategy


class TestDefaults:
    """Tests for built-in defaults."""

    def test_default_values(self):
        """Defaults match the documented engine behaviour."""
        config = Config()
        assert config.sync.batch_size == 100
        assert config.sync.conflict_strategy is ConflictResolutionStrategy.MERGE
        assert config.queue.max_concurrent == 5
        assert config.duplicates.duplicate_score == 70
        assert config.currency.max_rate_age_hours == 24.0
        assert config.db_path == config.data_dir / "ledger.db"

    def test_retry_backoff_is_capped(self):
        """Backoff doubles from the base delay and stops at the cap."""
        retry = RetryConfig()
        assert retry.delay_for(1) == 0.5
        assert retry.delay_for(2) == 1.0
        assert retry.delay_for(3) == 2.0
        assert retry.delay_for(10) == 8.0


class TestLoadConfig:
    """Tests for reading TOML files."""

    def test_loads_test_config(self, test_config):
        """Every section of the test file is applied."""
        assert test_config.sync.batch_size == 50
        assert test_config.sync.page_size == 200
        assert test_config.sync.conflict_strategy is ConflictResolutionStrategy.PROVIDER_WINS
        assert test_config.retry.max_attempts == 4
        assert test_config.retry.base_delay_seconds == 0.1
        assert test_config.queue.max_concurrent == 2
        assert test_config.duplicates.window_days == 5
        assert test_config.currency.rates == {"EUR_USD": 1.08, "GBP_USD": 1.27}

    def test_loads_categorization_rules(self, test_config):
        """Rules tables become CategorizationRule objects."""
        rules = {r.id: r for r in test_config.categorization.rules}
        assert set(rules) == {"rule_coffee", "rule_big_purchase"}
        coffee = rules["rule_coffee"]
        assert coffee.priority == 200
        assert coffee.subcategory == "Coffee"
        assert coffee.conditions[0].field is ConditionField.MERCHANT
        assert coffee.conditions[0].operator is ConditionOperator.CONTAINS
        assert len(rules["rule_big_purchase"].conditions) == 2

    def test_missing_file_gives_defaults(self, tmp_path, monkeypatch):
        """No config file anywhere yields the defaults."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
        monkeypatch.delenv("LEDGER_SYNC_DATA_DIR", raising=False)
        monkeypatch.delenv("LEDGER_SYNC_LOG_LEVEL", raising=False)
        assert find_config_file() is None
        config = load_config()
        assert config.sync.batch_size == 100

    def test_finds_config_in_xdg_dir(self, tmp_path, monkeypatch):
        """The XDG config dir is searched after the working directory."""
        monkeypatch.chdir(tmp_path)
        config_dir = tmp_path / "xdg" / "ledger-sync"
        config_dir.mkdir(parents=True)
        (config_dir / "config.toml").write_text("[sync]\nbatch_size = 7\n")
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
        assert load_config().sync.batch_size == 7

    def test_env_overrides(self, tmp_path, monkeypatch):
        """Environment variables win over file values."""
        path = tmp_path / "config.toml"
        path.write_text('data_dir = "/somewhere"\n[logging]\nlevel = "INFO"\n')
        monkeypatch.setenv("LEDGER_SYNC_DATA_DIR", str(tmp_path / "override"))
        monkeypatch.setenv("LEDGER_SYNC_LOG_LEVEL", "debug")
        config = load_config(path)
        assert config.data_dir == tmp_path / "override"
        assert config.logging.level == "DEBUG"

    def test_invalid_toml(self, tmp_path):
        """A syntax error surfaces as ConfigError."""
        path = tmp_path / "config.toml"
        path.write_text("[sync\nbatch_size = ")
        with pytest.raises(ConfigError):
            load_config(path)


class TestParseConfig:
    """Tests for validation of parsed documents."""

    def test_unknown_key_rejected(self):
        """Typos in a section are reported, not ignored."""
        with pytest.raises(ConfigError, match="batch_sise"):
            parse_config({"sync": {"batch_sise": 10}})

    def test_invalid_strategy(self):
        with pytest.raises(ConfigError):
            parse_config({"sync": {"conflict_strategy": "coin_flip"}})

    def test_batch_size_must_be_positive(self):
        with pytest.raises(ConfigError):
            parse_config({"sync": {"batch_size": 0}})

    def test_max_concurrent_must_be_positive(self):
        with pytest.raises(ConfigError):
            parse_config({"queue": {"max_concurrent": 0}})

    def test_rule_without_conditions_rejected(self):
        """A rule that could never match is a configuration error."""
        raw = {"categorization": {"rules": [{"name": "Empty", "category": "X"}]}}
        with pytest.raises(ConfigError):
            parse_config(raw)

    def test_data_dir_expands_user(self):
        config = parse_config({"data_dir": "~/ledger"})
        assert config.data_dir == Path("~/ledger").expanduser()
