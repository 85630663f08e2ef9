# src/strata_sync/transform.py
"""
User-supplied document transforms.

A transform file is a Python module exposing
``transform(data: dict, meta: dict) -> dict | Keep | Skip | None``. The
``meta`` mapping carries the document ``id`` and ``path``. Whatever the
function returns is normalised into an explicit `Keep` or `Skip`.
"""

import importlib.util
import logging
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Dict, Mapping, Union

from strata_sync.exceptions import TransformError

logger: logging.Logger = logging.getLogger(__name__)

TransformFn = Callable[[Dict[str, Any], Dict[str, str]], Any]


@dataclass(frozen=True)
class Keep:
    """Write the document with `data`."""

    data: Dict[str, Any]


@dataclass(frozen=True)
class Skip:
    """Do not write the document."""

    reason: str = "transform returned no data"


TransformOutcome = Union[Keep, Skip]


def load_transform(path: Union[str, Path]) -> TransformFn:
    """
    Import a transform file and return its ``transform`` callable.

    Args:
        path (Union[str, Path]): Path to a ``.py`` file.

    Returns:
        TransformFn: The transform function.

    Raises:
        TransformError: If the file is missing, fails to import, or does
            not define a callable ``transform``.
    """
    file_path: Path = Path(path).resolve()
    if not file_path.is_file():
        raise TransformError(f"Transform file not found: {file_path}")

    spec = importlib.util.spec_from_file_location(
        f"strata_sync_transform_{file_path.stem}", file_path
    )
    if spec is None or spec.loader is None:
        raise TransformError(f"Cannot import transform file: {file_path}")
    module: ModuleType = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise TransformError(f"Failed to load transform file: {e}") from e

    transform_fn: Any = getattr(module, "transform", None)
    if not callable(transform_fn):
        raise TransformError(
            "Transform file must define a 'transform' function. "
            f"Got: {type(transform_fn).__name__}"
        )
    logger.debug(f"Transform loaded from '{file_path}'.")
    return transform_fn


def apply_transform(
    transform_fn: TransformFn, data: Dict[str, Any], doc_id: str, path: str
) -> TransformOutcome:
    """
    Run `transform_fn` on a document and normalise its result.

    Exceptions raised by the transform propagate to the caller.

    Raises:
        TypeError: If the transform returns something other than a mapping,
            `Keep`, `Skip` or None.
    """
    result: Any = transform_fn(dict(data), {"id": doc_id, "path": path})
    if isinstance(result, (Keep, Skip)):
        return result
    if result is None:
        return Skip()
    if isinstance(result, Mapping):
        return Keep(dict(result))
    raise TypeError(
        f"Transform must return a dict, Keep, Skip or None, got {type(result).__name__}"
    )
