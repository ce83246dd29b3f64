"""Response side of a Tool Handle: one display template per status code."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from tool_api.generator.schema import SchemaState, generate_schema_template
from tool_api.generator.shake import tree_shake_references
from tool_api.parser.base import HandleOptions
from tool_api.parser.graph import ApiOperation, ApiResponse


class ResponseTemplates(BaseModel):
    responses: dict[str, Any]


def generate_handle_responses(operation: ApiOperation, options: HandleOptions | None = None) -> ResponseTemplates:
    """Render the first object-valued schema of each response as a markdown template."""
    options = options or HandleOptions()
    context = operation.api.context

    response_index: dict[str, tuple[int, ApiResponse]] = {}
    roots: list[Any] = []
    for response in operation.responses:
        for content_type in response.content:
            if not isinstance(content_type.schema, dict):
                continue
            response_index[response.key] = (len(roots), response)
            roots.append(content_type.schema)
            break

    # All responses share one definitions namespace
    result = tree_shake_references(context, roots, defs_uri="#/$defs", transform=options.transform)

    responses: dict[str, Any] = {}
    for code, (index, response) in response_index.items():
        state = SchemaState(varname="body", depth=1, response=response, operation=operation)
        responses[code] = generate_schema_template(context, state, result.roots[index], result)
    return ResponseTemplates(responses=responses)
