# src/strata_sync/integrity.py
"""Content hashing used to verify written documents."""

import base64
import hashlib
import json
from datetime import date, datetime
from typing import Any, Dict


def _canonical(value: Any) -> Any:
    """`json.dumps` fallback for values that are not JSON-native."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return {"_bytes": base64.b64encode(bytes(value)).decode("ascii")}
    if hasattr(value, "latitude") and hasattr(value, "longitude"):
        return {"_latitude": value.latitude, "_longitude": value.longitude}
    path: Any = getattr(value, "path", None)
    if isinstance(path, str):
        return {"_path": path}
    return repr(value)


def hash_document_data(data: Dict[str, Any]) -> str:
    """
    SHA-256 hex digest of a key-sorted serialization of `data`.

    Equal documents hash equally regardless of key order.
    """
    serialized: str = json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_canonical,
    )
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()
