# tests/unit/test_patterns.py
"""Unit tests for exclude-pattern matching."""

from typing import List

import pytest

from strata_sync.patterns import matches


@pytest.mark.parametrize(
    "name, patterns, expected",
    [
        ("cache_v1", ["cache*"], True),
        ("orders", ["cache*"], False),
        ("logs", ["logs"], True),
        ("logs2", ["logs"], False),
        ("mylogs", ["logs"], False),
        ("tmp_data_old", ["tmp*old"], True),
        ("tmp_data_new", ["tmp*old"], False),
        ("anything", ["*"], True),
        ("orders", [], False),
        ("a.b", ["a.b"], True),
        ("axb", ["a.b"], False),
    ],
)
def test_matches_leaf_names(name: str, patterns: List[str], expected: bool) -> None:
    """
    Tests exact and glob matching against plain collection names.

    Args:
        name (str): The collection name.
        patterns (List[str]): Exclude patterns.
        expected (bool): The expected result.
    """
    assert matches(name, patterns) is expected


def test_matches_uses_leaf_segment_of_path() -> None:
    """
    Tests that a full sub-collection path is matched on its last segment.

    Assert:
        - Bare and glob patterns match the leaf of a nested path.
        - A pattern never matches an inner segment.
    """
    assert matches("users/u1/logs", ["logs"])
    assert matches("users/u1/cache_v2", ["cache*"])
    assert not matches("users/u1/orders", ["users"])
    assert not matches("users/u1/orders", ["u1"])


def test_matches_pattern_with_slash_uses_full_path() -> None:
    """
    Tests that a pattern containing '/' is compared with the full path.
    """
    assert matches("users/u1/logs", ["users/*/logs"])
    assert not matches("teams/t1/logs", ["users/*/logs"])
    assert matches("users/u1/logs", ["users/u1/logs"])
