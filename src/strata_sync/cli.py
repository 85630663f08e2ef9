# src/strata_sync/cli.py
"""Command-line interface for the strata-sync tool."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import click
from click.core import ParameterSource
from dotenv import load_dotenv
from rich.logging import RichHandler

from strata_sync.config import (
    DEFAULT_CHECKPOINT_FILE,
    MAX_BATCH_SIZE,
    TransferConfig,
    WhereFilter,
    load_config_file,
    parse_rename_mapping,
    parse_where_filter,
    validate_config,
)
from strata_sync.exceptions import ConfigError, StrataSyncError
from strata_sync.models import TransferResult
from strata_sync.output import TransferLog, parse_size

logger: logging.Logger = logging.getLogger(__name__)

# Options that accept several values, given repeatedly or comma-separated.
_MULTI_VALUE_OPTIONS: Tuple[str, ...] = ("collections", "exclude", "where", "rename_collection")


def setup_logging(level: str) -> None:
    """Configure rich-based logging for the application."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # Silence noisy loggers
    for logger_name in ["google", "grpc", "urllib3"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def _split_values(values: Iterable[str]) -> List[str]:
    """Flatten repeated and comma-separated option values."""
    items: List[str] = []
    for value in values:
        items.extend(part.strip() for part in str(value).split(",") if part.strip())
    return items


def apply_config_file(ctx: click.Context, params: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fill options left at their defaults from the `--config` JSON file.

    Values given on the command line or through the environment win.

    Args:
        ctx (click.Context): The current click context.
        params (Dict[str, Any]): Parsed option values.

    Returns:
        Dict[str, Any]: The merged option values.
    """
    config_path: Optional[str] = params.get("config")
    if not config_path:
        return params

    file_values: Dict[str, Any] = load_config_file(Path(config_path))
    merged: Dict[str, Any] = dict(params)
    for name, value in file_values.items():
        if name not in params or name == "config":
            logger.warning(f"Ignoring unknown config file key '{name}'.")
            continue
        if ctx.get_parameter_source(name) is not ParameterSource.DEFAULT:
            continue
        if name in _MULTI_VALUE_OPTIONS:
            value = [value] if isinstance(value, str) else list(value)
        merged[name] = value
    return merged


def build_config(params: Dict[str, Any]) -> TransferConfig:
    """
    Turn raw option values into a `TransferConfig`.

    Raises:
        ConfigError: If a filter or rename mapping cannot be parsed.
    """
    where: Tuple[WhereFilter, ...] = tuple(
        parse_where_filter(expression) for expression in params["where"]
    )
    return TransferConfig(
        source=params["source_project"] or "",
        destination=params["dest_project"] or "",
        collections=tuple(_split_values(params["collections"])),
        include_subcollections=bool(params["include_subcollections"]),
        dry_run=bool(params["dry_run"]),
        batch_size=int(params["batch_size"]),
        limit=int(params["limit"]),
        retries=int(params["retries"]),
        where=where,
        exclude=tuple(_split_values(params["exclude"])),
        merge=bool(params["merge"]),
        parallel=int(params["parallel"]),
        clear=bool(params["clear"]),
        delete_missing=bool(params["delete_missing"]),
        transform=params["transform"],
        rename_collection=parse_rename_mapping(_split_values(params["rename_collection"])),
        id_prefix=params["id_prefix"],
        id_suffix=params["id_suffix"],
        max_depth=int(params["max_depth"]),
        detect_conflicts=bool(params["detect_conflicts"]),
        checkpoint_file=Path(params["checkpoint_file"]),
        resume=bool(params["resume"]),
        verify=bool(params["verify"]),
        verify_integrity=bool(params["verify_integrity"]),
        rate_limit=int(params["rate_limit"]),
        skip_oversized=bool(params["skip_oversized"]),
        transform_samples=int(params["transform_samples"]),
        json_output=bool(params["json_output"]),
    )


def confirm_run(config: TransferConfig) -> bool:
    """Ask before a run that writes to the destination."""
    click.echo(
        f"About to transfer {', '.join(config.collections)} "
        f"from '{config.source}' to '{config.destination}'."
    )
    if config.clear:
        click.echo("WARNING: destination collections will be cleared first.")
    if config.delete_missing:
        click.echo("WARNING: destination documents missing from the source will be deleted.")
    return click.confirm("Continue?", default=False)


async def main_async(config: TransferConfig, output: TransferLog) -> TransferResult:
    """
    Asynchronously execute the transfer.

    Args:
        config (TransferConfig): The run configuration.
        output (TransferLog): The output sink.
    """
    # Lazily import to keep CLI start-up fast
    from strata_sync.orchestrator import run_transfer

    return await run_transfer(config, output)


@click.command(context_settings=dict(help_option_names=["-h", "--help"]))
@click.option(
    "--source-project",
    envvar="STRATA_SOURCE_PROJECT",
    help="Source project id.",
)
@click.option(
    "--dest-project",
    envvar="STRATA_DEST_PROJECT",
    help="Destination project id.",
)
@click.option(
    "--collections",
    "-c",
    multiple=True,
    help="Collection to transfer; repeat or comma-separate for several.",
)
@click.option(
    "--include-subcollections",
    "-s",
    is_flag=True,
    default=False,
    envvar="STRATA_INCLUDE_SUBCOLLECTIONS",
    help="Also transfer sub-collections.",
)
@click.option(
    "--dry-run/--no-dry-run",
    default=True,
    envvar="STRATA_DRY_RUN",
    help="Simulate the transfer without writing.",
    show_default=True,
)
@click.option(
    "--batch-size",
    type=click.IntRange(1, MAX_BATCH_SIZE),
    default=MAX_BATCH_SIZE,
    envvar="STRATA_BATCH_SIZE",
    help="Documents per batched write.",
    show_default=True,
)
@click.option(
    "--limit",
    type=click.IntRange(min=0),
    default=0,
    envvar="STRATA_LIMIT",
    help="Maximum documents per root collection (0 = no limit).",
    show_default=True,
)
@click.option(
    "--retries",
    type=click.IntRange(min=0),
    default=3,
    envvar="STRATA_RETRIES",
    help="Retries for each failed write.",
    show_default=True,
)
@click.option(
    "--where",
    "-w",
    multiple=True,
    help="Filter root collections, e.g. 'status == active'. Repeatable.",
)
@click.option(
    "--exclude",
    "-x",
    multiple=True,
    help="Sub-collection pattern to skip ('*' wildcard). Repeatable.",
)
@click.option(
    "--merge",
    is_flag=True,
    default=False,
    help="Merge into existing documents instead of overwriting them.",
)
@click.option(
    "--parallel",
    "-p",
    type=click.IntRange(min=1),
    default=1,
    envvar="STRATA_PARALLEL",
    help="Collections transferred concurrently.",
    show_default=True,
)
@click.option(
    "--clear",
    is_flag=True,
    default=False,
    help="Delete destination collections before transferring.",
)
@click.option(
    "--delete-missing",
    is_flag=True,
    default=False,
    help="Delete destination documents that no longer exist in the source.",
)
@click.option(
    "--transform",
    "-t",
    type=click.Path(dir_okay=False),
    help="Python file defining transform(data, meta).",
)
@click.option(
    "--rename-collection",
    "-r",
    multiple=True,
    help="Rename a root collection as 'source:dest'. Repeatable.",
)
@click.option("--id-prefix", help="Prefix added to destination document ids.")
@click.option("--id-suffix", help="Suffix added to destination document ids.")
@click.option(
    "--max-depth",
    type=click.IntRange(min=0),
    default=0,
    help="Maximum sub-collection depth (0 = unlimited).",
    show_default=True,
)
@click.option(
    "--detect-conflicts",
    is_flag=True,
    default=False,
    help="Report destination documents modified during the transfer.",
)
@click.option(
    "--checkpoint-file",
    type=click.Path(dir_okay=False),
    default=DEFAULT_CHECKPOINT_FILE,
    envvar="STRATA_CHECKPOINT_FILE",
    help="Where resume state is kept.",
    show_default=True,
)
@click.option(
    "--resume",
    is_flag=True,
    default=False,
    help="Resume an interrupted transfer from the checkpoint file.",
)
@click.option(
    "--verify",
    is_flag=True,
    default=False,
    help="Compare source and destination counts afterwards.",
)
@click.option(
    "--verify-integrity",
    is_flag=True,
    default=False,
    help="Hash-check every written document.",
)
@click.option(
    "--rate-limit",
    type=click.IntRange(min=0),
    default=0,
    envvar="STRATA_RATE_LIMIT",
    help="Maximum documents written per second (0 = unlimited).",
    show_default=True,
)
@click.option(
    "--skip-oversized",
    is_flag=True,
    default=False,
    help="Skip documents over 1 MB instead of counting them as errors.",
)
@click.option(
    "--transform-samples",
    type=click.IntRange(min=-1),
    default=3,
    help="Documents per collection used to test the transform in a dry run "
    "(0 = skip, -1 = all).",
    show_default=True,
)
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    default=False,
    help="Print the result as JSON.",
)
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    default=False,
    help="Only print errors and the summary.",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False),
    envvar="STRATA_LOG_FILE",
    help="Write a JSON-lines transfer log to this file.",
)
@click.option(
    "--max-log-size",
    default="0",
    help="Rotate the transfer log at this size, e.g. '10MB' (0 = never).",
    show_default=True,
)
@click.option(
    "--yes",
    "-y",
    is_flag=True,
    default=False,
    help="Do not ask for confirmation.",
)
@click.option(
    "--config",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file supplying option values.",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Set the logging level.",
    show_default=True,
)
@click.pass_context
def cli(ctx: click.Context, **kwargs: Any) -> None:
    """
    A resumable bulk transfer tool for Firestore collections.

    Copies collections (and optionally their sub-collections) from a source
    project to a destination project in batched writes, with retries, rate
    limiting and a checkpoint that lets an interrupted run be resumed.

    Runs are dry runs unless --no-dry-run is given. Project ids can also be
    set via environment variables; see the .env.example file.
    """
    load_dotenv()
    setup_logging(kwargs["log_level"])

    output: Optional[TransferLog] = None
    try:
        params: Dict[str, Any] = apply_config_file(ctx, kwargs)
        config: TransferConfig = build_config(params)
        errors: List[str] = validate_config(config)
        if errors:
            raise ConfigError("Invalid configuration:\n  - " + "\n  - ".join(errors))

        output = TransferLog(
            log_path=Path(params["log_file"]) if params["log_file"] else None,
            max_size=parse_size(str(params["max_log_size"])),
            quiet=bool(params["quiet"]),
            json_output=config.json_output,
        )

        if not config.dry_run and not params["yes"] and not confirm_run(config):
            logger.info("Transfer cancelled.")
            return

        output.open()
        result: TransferResult = asyncio.run(main_async(config, output))
        if not result.success:
            sys.exit(1)
        if not config.json_output:
            logger.info("✅ Run completed successfully.")
    except StrataSyncError as e:
        logger.critical(f"A critical application error occurred: {e}")
        sys.exit(1)
    except ValueError as e:
        logger.critical(f"Invalid option value: {e}")
        sys.exit(1)
    except Exception:
        logger.critical(
            "An unexpected error caused the application to fail:", exc_info=True
        )
        sys.exit(1)
    finally:
        if output is not None:
            output.close()


if __name__ == "__main__":
    cli()
