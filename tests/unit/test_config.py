# tests/unit/test_config.py
"""Unit tests for configuration parsing and validation."""

import json
from pathlib import Path
from typing import Callable, List

import pytest

from strata_sync.config import (
    TransferConfig,
    WhereFilter,
    load_config_file,
    parse_rename_mapping,
    parse_where_filter,
    validate_collection_path,
    validate_config,
)
from strata_sync.exceptions import ConfigError


@pytest.mark.parametrize(
    "expression, expected",
    [
        ("status == active", WhereFilter("status", "==", "active")),
        ("age>=18", WhereFilter("age", ">=", 18)),
        ("score < 2.5", WhereFilter("score", "<", 2.5)),
        ("deleted != true", WhereFilter("deleted", "!=", True)),
        ("archived == false", WhereFilter("archived", "==", False)),
        ("parent == null", WhereFilter("parent", "==", None)),
        ("name == 'Ada'", WhereFilter("name", "==", "Ada")),
        ('city == "Paris"', WhereFilter("city", "==", "Paris")),
    ],
)
def test_parse_where_filter(expression: str, expected: WhereFilter) -> None:
    """
    Tests operator detection and value coercion.

    Args:
        expression (str): The raw filter expression.
        expected (WhereFilter): The expected parsed filter.
    """
    assert parse_where_filter(expression) == expected


@pytest.mark.parametrize("expression", ["status active", "== active", "status =="])
def test_parse_where_filter_rejects_invalid(expression: str) -> None:
    with pytest.raises(ConfigError, match="Invalid where filter"):
        parse_where_filter(expression)


def test_parse_rename_mapping() -> None:
    assert parse_rename_mapping(["users:users_backup", " orders : orders_v2 "]) == {
        "users": "users_backup",
        "orders": "orders_v2",
    }
    with pytest.raises(ConfigError):
        parse_rename_mapping(["users"])


def test_load_config_file_normalizes_keys(tmp_path: Path) -> None:
    """
    Tests that dashed keys become parameter names.
    """
    path: Path = tmp_path / "config.json"
    path.write_text(json.dumps({"batch-size": 100, "collections": ["users"]}))

    assert load_config_file(path) == {"batch_size": 100, "collections": ["users"]}


@pytest.mark.parametrize("content", ["{broken", "[1, 2]"])
def test_load_config_file_rejects_bad_content(tmp_path: Path, content: str) -> None:
    path: Path = tmp_path / "config.json"
    path.write_text(content)

    with pytest.raises(ConfigError):
        load_config_file(path)


def test_load_config_file_missing(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config_file(tmp_path / "absent.json")


@pytest.mark.parametrize(
    "path, valid",
    [
        ("users", True),
        ("users/u1/orders", True),
        ("__users__", False),
        ("users/../orders", False),
        ("users//orders", False),
    ],
)
def test_validate_collection_path(path: str, valid: bool) -> None:
    assert (validate_collection_path(path) == []) is valid


def test_validate_config_accepts_valid_config(
    make_config: Callable[..., TransferConfig],
) -> None:
    assert validate_config(make_config()) == []


def test_validate_config_reports_every_problem(
    make_config: Callable[..., TransferConfig],
) -> None:
    """
    Tests that all problems are reported together.
    """
    config: TransferConfig = make_config(
        source="",
        destination="",
        collections=(),
        batch_size=501,
        parallel=0,
        max_depth=-1,
    )

    errors: List[str] = validate_config(config)

    assert len(errors) == 6
    assert any("Source project" in e for e in errors)
    assert any("Batch size" in e for e in errors)


def test_validate_config_same_project_needs_remapping(
    make_config: Callable[..., TransferConfig],
) -> None:
    """
    Tests that copying a project onto itself requires a rename or id change.
    """
    same: TransferConfig = make_config(source="p", destination="p")
    renamed: TransferConfig = make_config(
        source="p", destination="p", rename_collection={"users": "users_copy"}
    )
    prefixed: TransferConfig = make_config(source="p", destination="p", id_prefix="copy_")

    assert any("same" in e for e in validate_config(same))
    assert validate_config(renamed) == []
    assert validate_config(prefixed) == []
