"""Prefixed identifiers for stored documents."""

import uuid
from datetime import datetime, timezone

ID_PREFIXES = {
    "workspace": "wrk_",
    "folder": "fld_",
    "request": "req_",
    "response": "res_",
    "environment": "env_",
    "variable": "var_",
    "token": "tok_",
}


def generate_id(kind: str) -> str:
    """Return a new id for a document of the given kind, e.g. ``req_<uuid4>``."""
    try:
        prefix = ID_PREFIXES[kind]
    except KeyError:
        raise ValueError(f"Unknown document kind: {kind}") from None
    return f"{prefix}{uuid.uuid4()}"


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
