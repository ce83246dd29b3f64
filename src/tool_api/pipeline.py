"""Generate Tool Handle files from OpenAPI documents on disk."""

from __future__ import annotations

import json
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator

from tool_api.errors import ApiError
from tool_api.generator.handle import ToolHandle, generate_handle
from tool_api.generator.validator import validate_handle
from tool_api.log import get_logger
from tool_api.parser.base import HandleOptions, Server
from tool_api.parser.document import parse_api
from tool_api.parser.graph import Api, ApiOperation
from tool_api.parser.loader import file_retriever, load_openapi_file

logger = get_logger(__name__)

OutputFormat = Literal["json", "yaml"]


class OperationFilter(BaseModel):
    """Selects operations by tag and by operationId pattern."""

    include: str | None = None
    exclude: str | None = None
    # Comma separated
    tags: str | None = None

    @field_validator("include", "exclude")
    @classmethod
    def _check_pattern(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"invalid regular expression {value!r}: {e}") from e
        return value

    def matches(self, operation: ApiOperation) -> bool:
        if self.tags is not None and operation.tags is not None:
            wanted = {tag.strip() for tag in self.tags.split(",")}
            if not any(tag in wanted for tag in operation.tags):
                return False

        operation_id = operation.operation_id
        if operation_id is None:
            return True
        if self.include is not None and not re.search(self.include, operation_id):
            return False
        if self.exclude is not None and re.search(self.exclude, operation_id):
            return False
        return True


class GenerateSettings(BaseModel):
    output_dir: Path = Path(".")
    format: OutputFormat = "json"
    server_url: str | None = None
    filter: OperationFilter = Field(default_factory=OperationFilter)
    verbose: bool = False
    dry_run: bool = False
    overwrite: bool = True
    skip_existing: bool = False

    def handle_options(self) -> HandleOptions:
        if self.server_url is None:
            return HandleOptions()
        return HandleOptions(server=Server(url=self.server_url))


@dataclass
class GenerateStats:
    operations: int = 0
    generated: int = 0
    skipped: int = 0
    failed: int = 0
    # (operationId, path) of every handle written, or planned in a dry run
    files: list[tuple[str, Path]] = field(default_factory=list)


@dataclass
class BatchStats:
    processed_files: int = 0
    skipped_files: int = 0
    failed_files: int = 0
    handles: GenerateStats = field(default_factory=GenerateStats)

    def add(self, stats: GenerateStats) -> None:
        self.processed_files += 1
        self.handles.operations += stats.operations
        self.handles.generated += stats.generated
        self.handles.skipped += stats.skipped
        self.handles.failed += stats.failed
        self.handles.files.extend(stats.files)


def serialize_handle(handle: ToolHandle, fmt: OutputFormat) -> str:
    data = handle.to_dict()
    if fmt == "yaml":
        return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def handle_file_path(output_dir: Path, operation_id: str, fmt: OutputFormat) -> Path:
    """Map ``a/b/op`` to ``<output_dir>/a/b/op.<fmt>``."""
    segments = operation_id.split("/")
    file_name = f"{segments.pop()}.{fmt}"
    return output_dir.joinpath(*segments, file_name)


def load_api(file_path: Path, node: Any = None) -> Api:
    """Parse the document at ``file_path``; sibling files are served to ``$ref`` lookups."""
    if node is None:
        node = load_openapi_file(file_path)
    file_path = file_path.resolve()
    return parse_api(node, base_uri=file_path.as_uri(), retrieve=file_retriever(file_path.parent))


def generate_api(api: Api, settings: GenerateSettings) -> GenerateStats:
    """Generate and write one handle file per selected operation of ``api``."""
    options = settings.handle_options()
    stats = GenerateStats()

    for operation in api.operations():
        stats.operations += 1
        operation_id = operation.operation_id
        if operation_id is None:
            logger.info("Skipping unidentified operation", method=operation.method, path=operation.path)
            stats.skipped += 1
            continue

        if not settings.filter.matches(operation):
            logger.info("Skipping filtered operation", operation_id=operation_id)
            stats.skipped += 1
            continue

        try:
            handle = generate_handle(operation, options)
        except ApiError as e:
            logger.error("Failed to generate Tool Handle", operation_id=operation_id, error=str(e))
            stats.failed += 1
            continue

        error = validate_handle(handle.to_dict())
        if error is not None:
            logger.error("Generated Tool Handle is invalid", operation_id=operation_id, error=error)
            stats.failed += 1
            continue

        file_path = handle_file_path(settings.output_dir, operation_id, settings.format)
        exists = file_path.exists()
        if exists and settings.skip_existing:
            logger.info("Skipping existing file", operation_id=operation_id, path=str(file_path))
            stats.skipped += 1
            continue
        if exists and not settings.overwrite:
            logger.warning("File already exists", path=str(file_path))
            stats.skipped += 1
            continue

        if settings.dry_run:
            stats.generated += 1
            stats.files.append((operation_id, file_path))
            continue

        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(serialize_handle(handle, settings.format), encoding="utf-8")
        except OSError as e:
            logger.error("Failed to write Tool Handle", path=str(file_path), error=str(e))
            stats.failed += 1
            continue

        logger.debug("Wrote Tool Handle", operation_id=operation_id, path=str(file_path))
        stats.generated += 1
        stats.files.append((operation_id, file_path))

    return stats


def generate_document(file_path: Path, settings: GenerateSettings) -> GenerateStats:
    """Load, parse and generate handles for a single OpenAPI document.

    Raises ApiError if the document cannot be loaded or parsed.
    """
    return generate_api(load_api(file_path), settings)


def _process_file(file_path: Path, settings: GenerateSettings, subdir: str) -> GenerateStats | None:
    node = load_openapi_file(file_path)
    version = node.get("openapi") if isinstance(node, dict) else None
    if not isinstance(version, str) or not version.startswith("3."):
        logger.info("Skipping document with unsupported version", path=str(file_path), version=version)
        return None

    api = load_api(file_path, node)
    file_settings = settings.model_copy(update={"output_dir": file_path.parent / subdir})
    return generate_api(api, file_settings)


def generate_batch(
    files: list[Path],
    settings: GenerateSettings,
    *,
    subdir: str = "tool-handles",
    skip_errors: bool = True,
    concurrent: int = 4,
) -> BatchStats:
    """Generate handles for many documents, writing each into ``subdir`` next to it.

    Every document is parsed into its own context, so documents are processed
    on a thread pool. With ``skip_errors`` disabled the first load or parse
    failure is raised.
    """
    batch = BatchStats()
    with ThreadPoolExecutor(max_workers=max(concurrent, 1)) as executor:
        futures = [(path, executor.submit(_process_file, path, settings, subdir)) for path in files]
        for path, future in futures:
            try:
                stats = future.result()
            except ApiError as e:
                if not skip_errors:
                    raise
                logger.error("Failed to process document", path=str(path), error=str(e))
                batch.failed_files += 1
                continue
            if stats is None:
                batch.skipped_files += 1
            else:
                batch.add(stats)
    return batch
