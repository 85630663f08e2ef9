# src/strata_sync/doc_size.py
"""
Approximate stored size of a document.

Sizing rules:
    - strings: UTF-8 length + 1
    - numbers, timestamps: 8
    - booleans, null: 1
    - geo points: 16
    - document references: path length + 1
    - maps: sum of (key length + 1 + value size)
    - arrays: sum of element sizes
"""

from datetime import date, datetime
from typing import Any, Dict, Mapping, Optional

MAX_DOCUMENT_SIZE: int = 1024 * 1024


def _is_geo_point(value: Any) -> bool:
    return hasattr(value, "latitude") and hasattr(value, "longitude")


def _reference_path(value: Any) -> Optional[str]:
    path: Any = getattr(value, "path", None)
    if isinstance(path, str) and hasattr(value, "id"):
        return path
    return None


def _value_size(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 1
    if isinstance(value, (int, float, datetime, date)):
        return 8
    if isinstance(value, str):
        return len(value.encode("utf-8")) + 1
    if isinstance(value, (bytes, bytearray)):
        return len(value) + 1
    if isinstance(value, Mapping):
        return sum(
            len(str(k).encode("utf-8")) + 1 + _value_size(v) for k, v in value.items()
        )
    if isinstance(value, (list, tuple)):
        return sum(_value_size(item) for item in value)
    if _is_geo_point(value):
        return 16
    reference: Optional[str] = _reference_path(value)
    if reference is not None:
        return len(reference) + 1
    return 8


def estimate_document_size(data: Dict[str, Any], doc_path: Optional[str] = None) -> int:
    """
    Estimate the stored size of a document in bytes.

    Args:
        data (Dict[str, Any]): The document fields.
        doc_path (str, optional): The full document path, which counts
            towards the size.

    Returns:
        int: The estimated size.
    """
    size: int = len(doc_path) + 1 if doc_path else 0
    return size + _value_size(data)


def format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.2f} MB"
