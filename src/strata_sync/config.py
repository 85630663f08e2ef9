# src/strata_sync/config.py
"""
Configuration for the strata-sync transfer engine.

This module centralizes all run parameters in typed, immutable dataclasses,
along with the helpers that turn raw option values (CLI flags, environment
variables, a JSON config file) into them.
"""

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from strata_sync.exceptions import ConfigError

FilterValue = Union[str, int, float, bool, None]

WHERE_OPERATORS: Tuple[str, ...] = ("==", "!=", "<=", ">=", "<", ">")
MAX_BATCH_SIZE: int = 500
DEFAULT_CHECKPOINT_FILE: str = ".strata-sync-state.json"

_OPERATOR_RE = re.compile(r"(==|!=|<=|>=|<|>)")
_RESERVED_ID_RE = re.compile(r"^__.*__$")


@dataclass(frozen=True)
class WhereFilter:
    """
    A single equality/inequality/range filter applied to root collections.

    Attributes:
        field (str): The document field to compare.
        op (str): One of `==`, `!=`, `<`, `<=`, `>`, `>=`.
        value (FilterValue): The value to compare against.
    """

    field: str
    op: str
    value: FilterValue

    def __str__(self) -> str:
        return f"{self.field} {self.op} {self.value!r}"


@dataclass(frozen=True)
class TransferConfig:
    """
    Immutable run parameters, read-only for the duration of a run.

    Attributes:
        source (str): Identity (project id) of the source store.
        destination (str): Identity (project id) of the destination store.
        collections (Tuple[str, ...]): Root collection paths to transfer.
        include_subcollections (bool): Recurse into sub-collections.
        dry_run (bool): Perform every step except the write commits.
        batch_size (int): Maximum operations per batched write.
        limit (int): Per-collection document limit at depth 0 (0 = none).
        retries (int): Retries for every remote write.
        where (Tuple[WhereFilter, ...]): Filters applied at depth 0 only.
        exclude (Tuple[str, ...]): Sub-collection exclude patterns.
        merge (bool): Merge into existing documents instead of overwriting.
        parallel (int): Number of root collections transferred concurrently.
        clear (bool): Delete destination collections before the transfer.
        delete_missing (bool): Delete destination orphans after the transfer.
        transform (str, optional): Path to a Python transform file.
        rename_collection (Dict[str, str]): Root collection rename map.
        id_prefix (str, optional): Prefix added to destination document ids.
        id_suffix (str, optional): Suffix added to destination document ids.
        max_depth (int): Maximum sub-collection depth (0 = unlimited).
        detect_conflicts (bool): Record destination documents modified
            while a batch was being prepared.
        checkpoint_file (Path): Location of the resume checkpoint.
        resume (bool): Resume from `checkpoint_file`.
        verify (bool): Compare source and destination counts afterwards.
        verify_integrity (bool): Re-read and hash-compare written documents.
        rate_limit (int): Maximum written documents per second (0 = none).
        skip_oversized (bool): Skip documents over the size limit.
        transform_samples (int): Documents per collection used to validate
            the transform during a dry run (0 = skip, -1 = all).
        json_output (bool): Emit the final result as JSON.
    """

    source: str = ""
    destination: str = ""
    collections: Tuple[str, ...] = ()
    include_subcollections: bool = False
    dry_run: bool = True
    batch_size: int = MAX_BATCH_SIZE
    limit: int = 0
    retries: int = 3
    where: Tuple[WhereFilter, ...] = ()
    exclude: Tuple[str, ...] = ()
    merge: bool = False
    parallel: int = 1
    clear: bool = False
    delete_missing: bool = False
    transform: Optional[str] = None
    rename_collection: Dict[str, str] = field(default_factory=dict)
    id_prefix: Optional[str] = None
    id_suffix: Optional[str] = None
    max_depth: int = 0
    detect_conflicts: bool = False
    checkpoint_file: Path = field(
        default_factory=lambda: Path(DEFAULT_CHECKPOINT_FILE)
    )
    resume: bool = False
    verify: bool = False
    verify_integrity: bool = False
    rate_limit: int = 0
    skip_oversized: bool = False
    transform_samples: int = 3
    json_output: bool = False


def _coerce_value(raw: str) -> FilterValue:
    """Convert a raw filter value into bool, None, int, float or str."""
    if raw == "true":
        return True
    if raw == "false":
        return False
    if raw == "null":
        return None
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        return float(raw)
    except ValueError:
        pass
    return re.sub(r"^[\"']|[\"']$", "", raw)


def parse_where_filter(expression: str) -> WhereFilter:
    """
    Parse a filter expression such as ``"status == active"``.

    Args:
        expression (str): The raw expression.

    Returns:
        WhereFilter: The parsed filter.

    Raises:
        ConfigError: If the operator, field or value is missing.
    """
    match: Optional[re.Match[str]] = _OPERATOR_RE.search(expression)
    if match is None:
        raise ConfigError(f"Invalid where filter '{expression}': missing operator.")
    field_part: str = expression[: match.start()].strip()
    value_part: str = expression[match.end() :].strip()
    if not field_part or not value_part:
        raise ConfigError(
            f"Invalid where filter '{expression}': missing field or value."
        )
    return WhereFilter(field_part, match.group(0), _coerce_value(value_part))


def parse_rename_mapping(pairs: Iterable[str]) -> Dict[str, str]:
    """
    Parse ``source:dest`` pairs into a rename mapping.

    Raises:
        ConfigError: If a pair is not of the form ``source:dest``.
    """
    mapping: Dict[str, str] = {}
    for pair in pairs:
        source, sep, dest = pair.partition(":")
        if not sep or not source.strip() or not dest.strip():
            raise ConfigError(
                f"Invalid rename mapping '{pair}': expected 'source:dest'."
            )
        mapping[source.strip()] = dest.strip()
    return mapping


def load_config_file(path: Path) -> Dict[str, Any]:
    """
    Load option values from a JSON config file.

    Keys use the option names with underscores (``batch_size``) or dashes
    (``batch-size``).

    Args:
        path (Path): The JSON file to read.

    Returns:
        Dict[str, Any]: Option values keyed by parameter name.
    """
    try:
        raw: Any = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file '{path}' is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file '{path}' must contain a JSON object.")
    return {str(key).replace("-", "_"): value for key, value in raw.items()}


def _validate_id(segment: str, kind: str) -> Optional[str]:
    if not segment:
        return f"{kind} name cannot be empty"
    if segment in (".", ".."):
        return f"{kind} name cannot be '.' or '..'"
    if _RESERVED_ID_RE.match(segment):
        return f"{kind} name cannot match pattern '__*__' (reserved)"
    return None


def validate_collection_path(path: str) -> List[str]:
    """Validate every segment of a (possibly nested) collection path."""
    errors: List[str] = []
    for index, segment in enumerate(path.split("/")):
        kind: str = "collection" if index % 2 == 0 else "document"
        error: Optional[str] = _validate_id(segment, kind)
        if error:
            errors.append(f"Invalid {kind} in path '{path}': {error}")
    return errors


def validate_config(config: TransferConfig) -> List[str]:
    """
    Check a configuration for errors before any remote call is made.

    Args:
        config (TransferConfig): The configuration to check.

    Returns:
        List[str]: Human-readable problems; empty when the config is valid.
    """
    errors: List[str] = []
    if not config.source:
        errors.append("Source project is required (--source-project).")
    if not config.destination:
        errors.append("Destination project is required (--dest-project).")
    if config.source and config.source == config.destination:
        rewrites_ids: bool = bool(config.id_prefix or config.id_suffix)
        if not config.rename_collection and not rewrites_ids:
            errors.append(
                "Source and destination are the same. Use --rename-collection "
                "or --id-prefix/--id-suffix to avoid overwriting data."
            )
    if not config.collections:
        errors.append("At least one collection is required (--collections).")
    for collection in config.collections:
        errors.extend(validate_collection_path(collection))
    if not 1 <= config.batch_size <= MAX_BATCH_SIZE:
        errors.append(f"Batch size must be between 1 and {MAX_BATCH_SIZE}.")
    if config.parallel < 1:
        errors.append("Parallel must be at least 1.")
    if config.max_depth < 0:
        errors.append("Max depth cannot be negative.")
    if config.limit < 0:
        errors.append("Limit cannot be negative.")
    if config.retries < 0:
        errors.append("Retries cannot be negative.")
    return errors
