# src/strata_sync/output.py
"""
Run output: console lines, the structured transfer log, and the summary.

Console output goes through the standard `logging` tree (rendered by rich
once the CLI has configured it). Structured entries are written as JSON
lines to an optional transfer-log file through a dedicated logger that does
not propagate to the console.
"""

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console
from rich.table import Table

from strata_sync.models import Stats, TransferResult

logger: logging.Logger = logging.getLogger(__name__)

_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMG]?B?)\s*$", re.IGNORECASE)
_SIZE_UNITS: Dict[str, int] = {
    "": 1,
    "B": 1,
    "K": 1024,
    "KB": 1024,
    "M": 1024**2,
    "MB": 1024**2,
    "G": 1024**3,
    "GB": 1024**3,
}


def parse_size(value: str) -> int:
    """
    Convert a human size such as ``"10MB"`` into bytes (1024-based).

    Raises:
        ValueError: If the value cannot be parsed.
    """
    match: Optional[re.Match[str]] = _SIZE_RE.match(value or "")
    if match is None:
        raise ValueError(f"Invalid size: '{value}'")
    number, unit = match.groups()
    return int(float(number) * _SIZE_UNITS[unit.upper()])


def rotate_file_if_needed(path: Optional[Path], max_size: int, max_files: int = 5) -> bool:
    """
    Rotate `path` to numbered backups once it reaches `max_size` bytes.

    ``log.txt`` becomes ``log.1.txt``; existing backups shift up by one and
    ``log.<max_files>.txt`` is evicted.

    Args:
        path (Path, optional): The file to rotate.
        max_size (int): Size threshold in bytes; 0 or less disables rotation.
        max_files (int): Number of backups to keep.

    Returns:
        bool: True if the file was rotated.
    """
    if not path or max_size <= 0 or not path.exists():
        return False
    if path.stat().st_size < max_size:
        return False

    def backup(index: int) -> Path:
        return path.with_name(f"{path.stem}.{index}{path.suffix}")

    oldest: Path = backup(max_files)
    if oldest.exists():
        oldest.unlink()
    for index in range(max_files - 1, 0, -1):
        if backup(index).exists():
            backup(index).rename(backup(index + 1))
    path.rename(backup(1))
    return True


class _JsonLineFormatter(logging.Formatter):
    """Formats a record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
        }
        entry.update(getattr(record, "payload", {}))
        return json.dumps(entry, default=str)


class TransferLog:
    """The logging and output sink used throughout a run."""

    def __init__(
        self,
        log_path: Optional[Path] = None,
        max_size: int = 0,
        max_files: int = 5,
        quiet: bool = False,
        json_output: bool = False,
        console: Optional[Console] = None,
    ) -> None:
        """
        Initialize the sink. Call `open` before use to attach the log file.

        Args:
            log_path (Path, optional): Transfer-log file; none if omitted.
            max_size (int): Rotate the log file at this size (0 = never).
            max_files (int): Rotated log files to keep.
            quiet (bool): Suppress informational console lines.
            json_output (bool): Suppress console lines in favour of JSON.
            console (Console, optional): Console used for the summary.
        """
        self.log_path: Optional[Path] = log_path
        self._max_size: int = max_size
        self._max_files: int = max_files
        self.quiet: bool = quiet
        self.json_output: bool = json_output
        self._console: Console = console or Console()
        self._handler: Optional[logging.Handler] = None
        self._audit: logging.Logger = logging.getLogger(f"strata_sync.audit.{id(self)}")
        self._audit.propagate = False
        self._audit.setLevel(logging.INFO)
        if not self._audit.handlers:
            self._audit.addHandler(logging.NullHandler())

    def open(self) -> None:
        """Rotate the transfer-log file if needed and attach it."""
        if self.log_path is None or self._handler is not None:
            return
        if rotate_file_if_needed(self.log_path, self._max_size, self._max_files):
            logger.info(f"Rotated transfer log '{self.log_path}'.")
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._handler = logging.FileHandler(self.log_path, mode="w", encoding="utf-8")
        self._handler.setFormatter(_JsonLineFormatter())
        self._audit.addHandler(self._handler)

    def close(self) -> None:
        if self._handler is not None:
            self._audit.removeHandler(self._handler)
            self._handler.close()
            self._handler = None

    @property
    def console_enabled(self) -> bool:
        return not (self.quiet or self.json_output)

    def info(self, message: str) -> None:
        if self.console_enabled:
            logger.info(message)

    def error(self, message: str) -> None:
        logger.error(message)

    def warning(self, message: str) -> None:
        if not self.json_output:
            logger.warning(message)

    def log(self, level: int, message: str, **data: Any) -> None:
        """Write a structured entry with an arbitrary key/value payload."""
        self._audit.log(level, message, extra={"payload": data})
        if data:
            logger.debug(f"{message} {json.dumps(data, default=str)}")
        else:
            logger.debug(message)

    def log_info(self, message: str, **data: Any) -> None:
        self.log(logging.INFO, message, **data)

    def log_error(self, message: str, **data: Any) -> None:
        self.log(logging.ERROR, message, **data)

    def summary(self, stats: Stats, duration: float, dry_run: bool) -> None:
        """Record the end-of-run summary in the log file and on the console."""
        self.log_info("Summary", duration=round(duration, 2), dry_run=dry_run, **stats.to_dict())
        if not self.console_enabled:
            return
        if dry_run:
            self._console.print(
                "[bold yellow]DRY RUN:[/bold yellow] no documents were written. "
                "Re-run with --no-dry-run to apply."
            )
        table: Table = Table(title="Transfer summary", show_header=False)
        table.add_column("Metric", style="bold")
        table.add_column("Value", justify="right")
        table.add_row("Collections", str(stats.collections_processed))
        table.add_row("Transferred", str(stats.documents_transferred))
        if stats.documents_deleted:
            table.add_row("Deleted", str(stats.documents_deleted))
        if stats.conflicts:
            table.add_row("Conflicts", str(stats.conflicts))
        if stats.integrity_errors:
            table.add_row("Integrity errors", str(stats.integrity_errors))
        table.add_row("Errors", str(stats.errors))
        table.add_row("Duration", f"{duration:.2f}s")
        self._console.print(table)
        if self.log_path is not None:
            self._console.print(f"Log written to {self.log_path}")

    def result(self, result: TransferResult) -> None:
        """Print the final result as JSON when JSON output is enabled."""
        if self.json_output:
            self._console.print_json(json.dumps(result.to_dict()))
