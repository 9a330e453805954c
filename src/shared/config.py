"""Shared configuration management using pydantic-settings."""
from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class SharedConfig(BaseSettings):
    """Base configuration shared across all services."""
    log_level: str = Field(default="info", validation_alias="LOG_LEVEL")
    database_path: str = Field(
        default="./data/cmdb.db", validation_alias="DATABASE_PATH"
    )

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }


class CmdbConfig(SharedConfig):
    """Configuration for the CMDB engine service."""
    inventory_database_path: str = Field(
        default="./data/inventory.db",
        validation_alias="INVENTORY_DATABASE_PATH",
    )
    store_disabled: bool = Field(
        default=False, validation_alias="CMDB_STORE_DISABLED"
    )
    reference_data_path: str | None = Field(
        default=None, validation_alias="REFERENCE_DATA_PATH"
    )
    impact_default_depth: int = Field(
        default=3, ge=1, validation_alias="IMPACT_DEFAULT_DEPTH"
    )
    impact_max_depth: int = Field(
        default=10, ge=1, validation_alias="IMPACT_MAX_DEPTH"
    )
    ci_id_max_attempts: int = Field(
        default=50, ge=1, validation_alias="CI_ID_MAX_ATTEMPTS"
    )
    network_probe_max_hosts: int = Field(
        default=256, ge=1, validation_alias="NETWORK_PROBE_MAX_HOSTS"
    )
    network_probe_timeout: float = Field(
        default=1.0, gt=0, validation_alias="NETWORK_PROBE_TIMEOUT"
    )
    network_probe_ports: list[int] = Field(
        default_factory=lambda: [22, 80, 443, 3389],
        validation_alias="NETWORK_PROBE_PORTS",
    )
