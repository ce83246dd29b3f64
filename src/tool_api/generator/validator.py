"""Validates generated Tool Handles and their serialized files."""

import json
from typing import Any, Iterator

import yaml
from pydantic import ValidationError

from tool_api.generator.handle import ToolHandle

DEFS_PREFIX = "#/$defs/"


def _iter_refs(node: Any) -> Iterator[str]:
    stack = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, dict):
            ref = current.get("$ref")
            if isinstance(ref, str):
                yield ref
            stack.extend(current.values())
        elif isinstance(current, list):
            stack.extend(current)


def validate_handle(handle: Any) -> str | None:
    """Check one handle mapping. Returns an error message, or None if it is valid."""
    try:
        model = ToolHandle.model_validate(handle)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        return f"ValidationError: {location}: {first['msg']}"

    if model.parameters.get("type") != "object":
        return "ValidationError: parameters: must be an object schema"
    if "method" not in model.request or "url" not in model.request:
        return "ValidationError: request: method and url are required"

    for ref in _iter_refs(model.parameters):
        if not ref.startswith(DEFS_PREFIX):
            return f"ValidationError: parameters: reference outside $defs: {ref}"
    return None


def validate_handles(handles: dict[str, Any]) -> dict[str, str]:
    """Check generated handles against the Tool Handle invariants.

    Returns dict of {name: error_message} for handles with errors.
    """
    errors = {}
    for name, handle in handles.items():
        error = validate_handle(handle)
        if error is not None:
            errors[name] = error
    return errors


def validate_json(files: dict[str, str]) -> dict[str, str]:
    """Check serialized JSON handle files.

    Returns dict of {filename: error_message} for files with errors.
    """
    errors = {}
    for filename, content in files.items():
        if not filename.endswith(".json"):
            continue
        try:
            handle = json.loads(content)
        except json.JSONDecodeError as e:
            errors[filename] = f"JSONDecodeError: {e.msg} (line {e.lineno})"
            continue
        error = validate_handle(handle)
        if error is not None:
            errors[filename] = error
    return errors


def validate_yaml(files: dict[str, str]) -> dict[str, str]:
    """Check serialized YAML handle files.

    Returns dict of {filename: error_message} for files with errors.
    """
    errors = {}
    for filename, content in files.items():
        if not filename.endswith((".yaml", ".yml")):
            continue
        try:
            handle = yaml.safe_load(content)
        except yaml.YAMLError as e:
            errors[filename] = f"YAMLError: {e}"
            continue
        error = validate_handle(handle)
        if error is not None:
            errors[filename] = error
    return errors


def validate_files(files: dict[str, str]) -> dict[str, str]:
    """Run all validations on serialized handle files.

    Returns dict of {filename: error_message} for all files with errors.
    """
    errors = {}
    errors.update(validate_json(files))
    errors.update(validate_yaml(files))
    return errors
