"""CLI entry point for tool-api."""

import glob
import re
import time
from pathlib import Path

import click

from tool_api.errors import ApiError
from tool_api.log import configure_logging
from tool_api.pipeline import (
    GenerateSettings,
    GenerateStats,
    OperationFilter,
    generate_batch,
    generate_document,
    load_api,
)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _check_pattern(ctx, param, value):
    if value is not None:
        try:
            re.compile(value)
        except re.error as e:
            raise click.BadParameter(f"invalid regular expression: {e}") from e
    return value


def _filter_options(func):
    """Attach the --include / --exclude / --tags options shared by every command."""
    func = click.option("--tags", default=None, help="Only include operations with these tags (comma-separated).")(func)
    func = click.option("--exclude", default=None, callback=_check_pattern, help="Skip operations whose operationId matches this pattern.")(func)
    func = click.option("--include", default=None, callback=_check_pattern, help="Only operations whose operationId matches this pattern.")(func)
    return func


def _output_options(func):
    """Attach the options controlling how handle files are written."""
    options = [
        click.option("--format", "fmt", default="json", type=click.Choice(["json", "yaml"]), help="Output format."),
        click.option("-v", "--verbose", is_flag=True, help="Print detailed information during processing."),
        click.option("--dry-run", is_flag=True, help="Preview what would be generated without writing files."),
        click.option("--overwrite/--no-overwrite", default=True, help="Overwrite files that already exist."),
        click.option("--skip-existing", is_flag=True, help="Skip operations whose file already exists."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _report(stats: GenerateStats, verbose: bool, dry_run: bool) -> None:
    for operation_id, file_path in stats.files:
        if dry_run:
            click.echo(f"Would generate {operation_id} -> {file_path}")
        elif verbose:
            click.echo(f"Generated {operation_id} -> {file_path}")


@click.group(context_settings={"auto_envvar_prefix": "TOOL_API"})
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    help="Logging level (env: TOOL_API_LOG_LEVEL).",
)
def main(log_level: str):
    """tool-api: generate HTTP Tool Handles from OpenAPI documents."""
    configure_logging(log_level)


@main.command("list")
@click.argument("input_path", metavar="INPUT", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@_filter_options
def list_operations(input_path: Path, include: str | None, exclude: str | None, tags: str | None):
    """List operations in an OpenAPI document."""
    try:
        api = load_api(input_path)
    except ApiError as e:
        raise click.ClickException(str(e)) from e

    operation_filter = OperationFilter(include=include, exclude=exclude, tags=tags)
    operations = [operation for operation in api.operations() if operation_filter.matches(operation)]

    click.echo(f"Operations in {input_path}")
    click.echo()
    for operation in operations:
        click.echo(f"{operation.method} {operation.path}")
        if operation.operation_id is not None:
            click.echo(f"ID: {operation.operation_id}")
        if operation.tags:
            click.echo(f"TAGS: {', '.join(operation.tags)}")
        click.echo()

    click.echo(f"Found {len(operations)} operation(s)")


@main.command()
@click.argument("input_path", metavar="INPUT", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-o", "--output-dir", default=".", type=click.Path(file_okay=False, path_type=Path), help="Directory in which to write the Tool Handles.")
@click.option("--server-url", default=None, help="Override the server URL for all operations.")
@_filter_options
@_output_options
def generate(
    input_path: Path,
    output_dir: Path,
    server_url: str | None,
    include: str | None,
    exclude: str | None,
    tags: str | None,
    fmt: str,
    verbose: bool,
    dry_run: bool,
    overwrite: bool,
    skip_existing: bool,
):
    """Generate HTTP Tool Handles from an OpenAPI document."""
    if verbose:
        configure_logging("DEBUG")

    settings = GenerateSettings(
        output_dir=output_dir,
        format=fmt,
        server_url=server_url,
        filter=OperationFilter(include=include, exclude=exclude, tags=tags),
        verbose=verbose,
        dry_run=dry_run,
        overwrite=overwrite,
        skip_existing=skip_existing,
    )
    try:
        stats = generate_document(input_path, settings)
    except ApiError as e:
        raise click.ClickException(str(e)) from e

    _report(stats, verbose, dry_run)

    summary = f"Generated {stats.generated} Tool Handles"
    if stats.skipped:
        summary += f"; skipped {stats.skipped} operations"
    if stats.failed:
        summary += f"; {stats.failed} failed"
    click.echo(summary)
    if dry_run:
        click.echo("DRY RUN: No files were actually written")


@main.command()
@click.argument("pattern", metavar="GLOB")
@click.option("-o", "--output-dir", default="tool-handles", help="Subdirectory, relative to each OpenAPI file, for the Tool Handles.")
@_filter_options
@_output_options
@click.option("--skip-errors/--no-skip-errors", default=True, help="Continue when a document fails to load or parse.")
@click.option("--concurrent", default=4, type=click.IntRange(min=1), help="Maximum number of documents processed concurrently.")
def batch(
    pattern: str,
    output_dir: str,
    include: str | None,
    exclude: str | None,
    tags: str | None,
    fmt: str,
    verbose: bool,
    dry_run: bool,
    overwrite: bool,
    skip_existing: bool,
    skip_errors: bool,
    concurrent: int,
):
    """Generate Tool Handles from multiple OpenAPI documents."""
    if verbose:
        configure_logging("DEBUG")

    start = time.perf_counter()
    files = sorted(Path(match).resolve() for match in glob.glob(pattern, recursive=True) if Path(match).is_file())
    if not files:
        click.echo(f"No files matched pattern: {pattern}")
        return
    click.echo(f"Found {len(files)} OpenAPI files")

    settings = GenerateSettings(
        format=fmt,
        filter=OperationFilter(include=include, exclude=exclude, tags=tags),
        verbose=verbose,
        dry_run=dry_run,
        overwrite=overwrite,
        skip_existing=skip_existing,
    )
    try:
        stats = generate_batch(files, settings, subdir=output_dir, skip_errors=skip_errors, concurrent=concurrent)
    except ApiError as e:
        raise click.ClickException(str(e)) from e

    _report(stats.handles, verbose, dry_run)

    click.echo()
    click.echo(f"Batch processing completed in {time.perf_counter() - start:.0f}s")
    click.echo(f"Files processed: {stats.processed_files}")
    if stats.skipped_files:
        click.echo(f"Files skipped: {stats.skipped_files}")
    if stats.failed_files:
        click.echo(f"Files failed: {stats.failed_files}")
    click.echo(f"Operations found: {stats.handles.operations}")
    if stats.handles.skipped:
        click.echo(f"Operations skipped: {stats.handles.skipped}")
    click.echo(f"Tool Handles generated: {stats.handles.generated}")
    if dry_run:
        click.echo("DRY RUN: No files were actually written")
