"""Deterministic identity keys for discovery observations."""
from __future__ import annotations

import base64
from typing import Any

# Identifying keys in priority order
FINGERPRINT_FIELDS: tuple[str, ...] = (
    "serialNumber",
    "macAddress",
    "hostname",
    "ipAddress",
    "instanceId",
)

_DELIMITER = "|"


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def generate_fingerprint(observation: dict[str, Any]) -> str:
    """Return the base64 fingerprint of an observation.

    Joins the truthy identifying values in priority order. When none is
    present, falls back to ``name|discoveryType`` with missing parts left
    empty. Equal identifying values always give equal fingerprints.
    """
    identifiers = [
        _as_text(observation.get(key))
        for key in FINGERPRINT_FIELDS
        if observation.get(key)
    ]
    if not identifiers:
        identifiers = [
            _as_text(observation.get("name")),
            _as_text(observation.get("discoveryType")),
        ]
    raw = _DELIMITER.join(identifiers)
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")
