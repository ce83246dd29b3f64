"""Assemble complete Tool Handles from API operations."""

from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import BaseModel, Field

from tool_api.errors import ApiError
from tool_api.generator.request import generate_handle_request
from tool_api.generator.responses import generate_handle_responses
from tool_api.parser.base import HandleOptions
from tool_api.parser.graph import ApiOperation

HANDLE_NAME_PATTERN = r"^[A-Za-z0-9_-]+$"

_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")


class ToolHandle(BaseModel):
    """A self-contained tool descriptor for one HTTP operation."""

    name: str = Field(pattern=HANDLE_NAME_PATTERN)
    description: str | None = None
    parameters: dict[str, Any]
    handler: Literal["http"] = "http"
    request: dict[str, Any]
    responses: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready mapping with absent fields omitted."""
        # exclude_none would also strip null literals inside schemas
        exclude = {"description"} if self.description is None else None
        return self.model_dump(exclude=exclude)


def handle_name(operation: ApiOperation) -> str:
    name = operation.operation_id
    if name is None:
        name = f"{operation.method} {operation.path}"
    name = _INVALID_NAME_CHARS.sub("_", name)
    if not name:
        raise ApiError("Unnamed operation")
    return name


def generate_handle(operation: ApiOperation, options: HandleOptions | None = None) -> ToolHandle:
    """Generate the Tool Handle for ``operation``.

    Raises ApiError when the operation has no derivable name or no server.
    """
    name = handle_name(operation)
    description = operation.description
    if description is None:
        description = operation.summary

    request = generate_handle_request(operation, options)
    responses = generate_handle_responses(operation, options)

    return ToolHandle(
        name=name,
        description=description,
        parameters=request.parameters,
        request=request.request,
        responses=responses.responses,
    )
