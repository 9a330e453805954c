"""Load CI types and relationship types from YAML reference data."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from src.cmdb_engine.services.ci_store import CIStore
from src.cmdb_engine.services.relationship_store import RelationshipStore
from src.shared.models.cmdb import CIType, RelationshipType

logger = logging.getLogger(__name__)

DEFAULT_REFERENCE_DATA = Path(__file__).with_name("reference_data.yaml")


def load_reference_data(path: str | Path | None = None) -> dict[str, Any]:
    """Parse the reference data file.

    Raises:
        FileNotFoundError: If *path* does not exist.
    """
    data_path = Path(path) if path else DEFAULT_REFERENCE_DATA
    if not data_path.exists():
        raise FileNotFoundError(f"Reference data file not found: {data_path}")
    with open(data_path, "r", encoding="utf-8") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}
    return raw


def seed_reference_data(
    ci_store: CIStore,
    relationship_store: RelationshipStore,
    path: str | Path | None = None,
) -> tuple[int, int]:
    """Insert reference rows idempotently; returns (ci_types, relationship_types) seen."""
    raw = load_reference_data(path)
    ci_types = [CIType(**entry) for entry in raw.get("ci_types", [])]
    rel_types = [RelationshipType(**entry) for entry in raw.get("relationship_types", [])]

    for ci_type in ci_types:
        ci_store.insert_ci_type(ci_type, ignore_existing=True)
    for rel_type in rel_types:
        relationship_store.insert_type(rel_type, ignore_existing=True)

    logger.info(
        "Reference data loaded: %d CI types, %d relationship types",
        len(ci_types), len(rel_types),
    )
    return len(ci_types), len(rel_types)
