"""Shared constants used across the CMDB engine."""
from __future__ import annotations

# Application version
VERSION: str = "1.0.0"

# Port the service listens on inside its container
INTERNAL_PORT: int = 8000

# Service names
CMDB_ENGINE_SERVICE_NAME: str = "cmdb-engine"

# Database settings
DB_BUSY_TIMEOUT_MS: int = 30000

# Configuration item business keys: "CI" + 6 digits
CI_ID_PREFIX: str = "CI"
CI_ID_MIN: int = 100000
CI_ID_MAX: int = 999999

# Criticality levels, lowest first
CRITICALITY_LEVELS: list[str] = ["Low", "Medium", "High", "Critical"]

# Relationship traversal directions
RELATIONSHIP_DIRECTIONS: list[str] = ["outgoing", "incoming", "both"]

# CIs not updated for this many days count as stale
STALE_CI_DAYS: int = 30
