"""Shared utility functions."""
import json
import re
from datetime import datetime, timezone
from typing import Any

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def is_uuid(value: str) -> bool:
    """Return True when *value* looks like an RFC 4122 uuid."""
    return bool(_UUID_RE.match(value or ""))


def dumps_json(value: Any) -> str | None:
    """Serialize an open-schema map for a TEXT column; ``None`` stays NULL."""
    if value is None:
        return None
    return json.dumps(value, sort_keys=True, default=str)


def loads_json(raw: str | None, default: Any = None) -> Any:
    """Inverse of :func:`dumps_json`."""
    if raw is None or raw == "":
        return default
    return json.loads(raw)
