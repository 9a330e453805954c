"""Tests for configuration management."""
from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError

from src.shared.config import CmdbConfig, SharedConfig


class TestSharedConfig:
    def test_default_values(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("DATABASE_PATH", raising=False)
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        config = SharedConfig()
        assert config.log_level == "info"
        assert config.database_path == "./data/cmdb.db"

    def test_env_override_log_level(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("LOG_LEVEL", "debug")
        config = SharedConfig()
        assert config.log_level == "debug"

    def test_env_override_database_path(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("DATABASE_PATH", "/custom/path.db")
        config = SharedConfig()
        assert config.database_path == "/custom/path.db"


class TestCmdbConfig:
    @pytest.fixture(autouse=True)
    def _clean_env(self, monkeypatch: pytest.MonkeyPatch):
        for name in (
            "INVENTORY_DATABASE_PATH",
            "CMDB_STORE_DISABLED",
            "REFERENCE_DATA_PATH",
            "IMPACT_DEFAULT_DEPTH",
            "IMPACT_MAX_DEPTH",
            "NETWORK_PROBE_PORTS",
        ):
            monkeypatch.delenv(name, raising=False)

    def test_default_values(self):
        config = CmdbConfig()
        assert config.inventory_database_path == "./data/inventory.db"
        assert config.store_disabled is False
        assert config.reference_data_path is None
        assert config.impact_default_depth == 3
        assert config.impact_max_depth == 10
        assert config.ci_id_max_attempts == 50
        assert config.network_probe_ports == [22, 80, 443, 3389]

    def test_inherits_shared_defaults(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        config = CmdbConfig()
        assert config.log_level == "info"

    def test_store_disabled_from_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("CMDB_STORE_DISABLED", "true")
        assert CmdbConfig().store_disabled is True

    def test_probe_ports_parsed_as_json(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("NETWORK_PROBE_PORTS", "[22, 8080]")
        assert CmdbConfig().network_probe_ports == [22, 8080]

    def test_depth_must_be_positive(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("IMPACT_MAX_DEPTH", "0")
        with pytest.raises(PydanticValidationError):
            CmdbConfig()
