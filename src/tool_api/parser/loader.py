"""Load OpenAPI documents from disk."""

import json
from pathlib import Path
from typing import Any, Callable
from urllib.parse import unquote, urlsplit

import yaml

from tool_api.errors import ApiError

YAML_SUFFIXES = (".yaml", ".yml")


def detect_format(file_path: Path) -> str:
    """Detect the serialization of an OpenAPI document.

    Returns: 'yaml' or 'json'.
    """
    if file_path.suffix.lower() in YAML_SUFFIXES:
        return "yaml"
    if file_path.suffix.lower() == ".json":
        return "json"

    # Sniff the content for anything else
    text = file_path.read_text(encoding="utf-8").lstrip()
    if text.startswith(("{", "[")):
        try:
            json.loads(text)
            return "json"
        except (json.JSONDecodeError, ValueError):
            pass
    return "yaml"


def load_openapi_file(file_path: Path) -> Any:
    """Load a YAML or JSON OpenAPI document into plain Python data."""
    try:
        text = file_path.read_text(encoding="utf-8")
        if detect_format(file_path) == "yaml":
            return yaml.safe_load(text)
        return json.loads(text)
    except (OSError, yaml.YAMLError, ValueError) as e:
        raise ApiError(f"Failed to load OpenAPI file: {file_path}") from e


def file_retriever(root: Path) -> Callable[[str], Any]:
    """Build a ``retrieve`` callable that loads referenced documents from disk.

    Relative file URIs are resolved against ``root``; only ``file:`` URIs are
    served, anything else is reported as unretrievable.
    """

    def retrieve(uri: str) -> Any:
        parts = urlsplit(uri)
        if parts.scheme not in ("", "file"):
            raise ApiError(f"Refusing to fetch non-file document: {uri}")
        path = Path(unquote(parts.path))
        if not path.is_absolute():
            path = root / path
        return load_openapi_file(path)

    return retrieve
