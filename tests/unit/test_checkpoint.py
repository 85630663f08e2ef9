# tests/unit/test_checkpoint.py
"""
Unit tests for the checkpoint store.

These tests exercise loading, atomic saving, deletion and resume validation
against real files in a temporary directory.
"""

import json
from pathlib import Path
from typing import Any, Callable, Dict, List
from unittest.mock import patch

import pytest

from strata_sync.checkpoint import (
    CHECKPOINT_VERSION,
    CheckpointState,
    create_initial_checkpoint,
    delete_checkpoint,
    load_checkpoint,
    save_checkpoint,
    validate_for_resume,
)
from strata_sync.config import TransferConfig
from strata_sync.exceptions import CheckpointError
from strata_sync.models import Stats


def test_create_initial_checkpoint(make_config: Callable[..., TransferConfig]) -> None:
    """
    Tests that a fresh checkpoint mirrors the config and starts empty.
    """
    config: TransferConfig = make_config(collections=("users", "orders"))

    state: CheckpointState = create_initial_checkpoint(config)

    assert state.version == CHECKPOINT_VERSION
    assert state.source == "source-project"
    assert state.destination == "dest-project"
    assert state.collections == ["users", "orders"]
    assert state.completed_docs == {}
    assert state.stats == Stats()
    assert state.started_at == state.updated_at


def test_save_and_load_checkpoint(
    tmp_path: Path, make_config: Callable[..., TransferConfig]
) -> None:
    """
    Tests that a saved checkpoint loads back with the same content.

    Arrange:
        - A checkpoint with completed documents and non-zero stats.
    Act:
        - Save it, then load it.
    Assert:
        - The loaded state equals the saved state.
        - No temporary file is left in the directory.

    Args:
        tmp_path (Path): The temporary Path to use.
        make_config (Callable[..., TransferConfig]): Config factory fixture.
    """
    path: Path = tmp_path / "state.json"
    state: CheckpointState = create_initial_checkpoint(make_config())
    state.completed_docs = {"users": ["a", "b"], "users/a/orders": ["o1"]}
    state.stats = Stats(collections_processed=2, documents_transferred=3, errors=1)

    save_checkpoint(path, state)
    loaded = load_checkpoint(path)

    assert loaded == state
    assert loaded is not None and loaded.completed_count == 3
    assert [p.name for p in tmp_path.iterdir()] == ["state.json"]


def test_save_checkpoint_stamps_updated_at(
    tmp_path: Path, make_config: Callable[..., TransferConfig]
) -> None:
    state: CheckpointState = create_initial_checkpoint(make_config())
    state.updated_at = "2000-01-01T00:00:00+00:00"

    save_checkpoint(tmp_path / "state.json", state)

    assert state.updated_at != "2000-01-01T00:00:00+00:00"


def test_save_checkpoint_failure_keeps_previous_file(
    tmp_path: Path, make_config: Callable[..., TransferConfig]
) -> None:
    """
    Tests that a failing write neither truncates the old file nor leaks a temp file.

    Arrange:
        - A checkpoint already saved on disk.
    Act:
        - Save again while `json.dump` raises mid-write.
    Assert:
        - A `CheckpointError` is raised.
        - The previous checkpoint is intact and no temp file remains.

    Args:
        tmp_path (Path): The temporary Path to use.
        make_config (Callable[..., TransferConfig]): Config factory fixture.
    """
    path: Path = tmp_path / "state.json"
    state: CheckpointState = create_initial_checkpoint(make_config())
    save_checkpoint(path, state)
    before: str = path.read_text()

    state.completed_docs = {"users": ["x"]}
    with patch("strata_sync.checkpoint.json.dump", side_effect=OSError("disk full")):
        with pytest.raises(CheckpointError, match="disk full"):
            save_checkpoint(path, state)

    assert path.read_text() == before
    assert [p.name for p in tmp_path.iterdir()] == ["state.json"]


def _checkpoint_json(**overrides: Any) -> str:
    """Serialize a valid checkpoint header with `overrides` applied."""
    data: Dict[str, Any] = {
        "version": CHECKPOINT_VERSION,
        "source": "a",
        "destination": "b",
        "collections": ["users"],
        "started_at": "2024-01-01T00:00:00+00:00",
        "updated_at": "2024-01-01T00:00:00+00:00",
        "completed_docs": {},
        "stats": {},
    }
    data.update(overrides)
    return json.dumps(data)


@pytest.mark.parametrize(
    "content",
    [
        "",
        "{not json",
        "[]",
        json.dumps({"version": 99, "source": "a"}),
        _checkpoint_json(completed_docs=[]),
        _checkpoint_json(completed_docs={"users": "doc1"}),
        _checkpoint_json(stats=[]),
        _checkpoint_json(stats=None),
    ],
)
def test_load_checkpoint_returns_none_for_bad_files(tmp_path: Path, content: str) -> None:
    """
    Tests that unreadable or incompatible checkpoints load as None.

    Args:
        tmp_path (Path): The temporary Path to use.
        content (str): The file content under test.
    """
    path: Path = tmp_path / "state.json"
    path.write_text(content)

    assert load_checkpoint(path) is None


def test_load_checkpoint_accepts_valid_header(tmp_path: Path) -> None:
    path: Path = tmp_path / "state.json"
    path.write_text(_checkpoint_json(completed_docs={"users": ["doc1"]}))

    state = load_checkpoint(path)

    assert state is not None
    assert state.completed_docs == {"users": ["doc1"]}


def test_load_checkpoint_missing_file(tmp_path: Path) -> None:
    assert load_checkpoint(tmp_path / "absent.json") is None


def test_delete_checkpoint_is_best_effort(
    tmp_path: Path, make_config: Callable[..., TransferConfig]
) -> None:
    path: Path = tmp_path / "state.json"
    save_checkpoint(path, create_initial_checkpoint(make_config()))

    delete_checkpoint(path)
    delete_checkpoint(path)

    assert not path.exists()


def test_validate_for_resume_accepts_matching_config(
    make_config: Callable[..., TransferConfig],
) -> None:
    config: TransferConfig = make_config(collections=("users", "orders"))
    state: CheckpointState = create_initial_checkpoint(make_config(collections=("users",)))

    assert validate_for_resume(state, config) == []


def test_validate_for_resume_source_mismatch(
    make_config: Callable[..., TransferConfig],
) -> None:
    """
    Tests that a different source yields exactly one source mismatch message.
    """
    state: CheckpointState = create_initial_checkpoint(make_config(source="A"))

    problems: List[str] = validate_for_resume(state, make_config(source="B"))

    assert len(problems) == 1
    assert problems[0].startswith("Source mismatch")


def test_validate_for_resume_source_and_destination_mismatch(
    make_config: Callable[..., TransferConfig],
) -> None:
    state: CheckpointState = create_initial_checkpoint(
        make_config(source="A", destination="C")
    )

    problems: List[str] = validate_for_resume(
        state, make_config(source="B", destination="D")
    )

    assert len(problems) == 2
    assert problems[0].startswith("Source mismatch")
    assert problems[1].startswith("Destination mismatch")


def test_validate_for_resume_unknown_collection(
    make_config: Callable[..., TransferConfig],
) -> None:
    state: CheckpointState = create_initial_checkpoint(
        make_config(collections=("users", "orders"))
    )

    problems: List[str] = validate_for_resume(state, make_config(collections=("users",)))

    assert problems == ["Checkpoint contains collection 'orders' not in current config"]
