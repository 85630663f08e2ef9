# src/strata_sync/patterns.py
"""Exclude-pattern matching for sub-collection names."""

import functools
import re
from typing import Iterable, Pattern


@functools.lru_cache(maxsize=256)
def _compile_glob(pattern: str) -> Pattern[str]:
    """Compile a `*` glob into an anchored regular expression."""
    parts = (re.escape(part) for part in pattern.split("*"))
    return re.compile("^" + ".*".join(parts) + "$")


def matches(name: str, patterns: Iterable[str]) -> bool:
    """
    Check whether a collection name or path matches any exclude pattern.

    Patterns are evaluated against the leaf segment of `name`. A pattern
    that contains a `/` is evaluated against the full path instead. `*` is
    the only wildcard; a pattern without one must match exactly.

    Args:
        name (str): A sub-collection id or a full collection path.
        patterns (Iterable[str]): Exclude patterns.

    Returns:
        bool: True if any pattern matches.
    """
    leaf: str = name.rsplit("/", 1)[-1]
    for pattern in patterns:
        subject: str = name if "/" in pattern else leaf
        if "*" in pattern:
            if _compile_glob(pattern).match(subject):
                return True
        elif subject == pattern:
            return True
    return False
