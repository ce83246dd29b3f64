"""Request side of a Tool Handle: the parameters schema and the HTTP request template."""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel

from tool_api.errors import ApiError
from tool_api.generator.shake import tree_shake_references
from tool_api.log import get_logger
from tool_api.parser.base import HandleOptions, Server
from tool_api.parser.graph import ApiOperation

logger = get_logger(__name__)

_SERVER_VARIABLE = re.compile(r"\{([^{}]+)\}")

BODY_ENCODINGS = {
    "application/json": "json",
    "application/x-www-form-urlencoded": "urlencoded",
    "multipart/form-data": "multipart",
}


class RequestTemplate(BaseModel):
    parameters: dict[str, Any]
    request: dict[str, Any]


def generate_handle_request(operation: ApiOperation, options: HandleOptions | None = None) -> RequestTemplate:
    """Build the parameters JSON Schema and the request template for ``operation``.

    Raises ApiError if no server is configured for the operation.
    """
    options = options or HandleOptions()

    required: list[str] = []
    query: dict[str, Any] = {}
    headers: dict[str, Any] = {}
    cookies: dict[str, Any] = {}
    body: dict[str, Any] | None = None

    # property name -> index into roots
    param_index: dict[str, int] = {}
    roots: list[Any] = []

    for parameter in operation.all_parameters:
        schema = parameter.schema
        if not isinstance(schema, dict):
            continue
        if parameter.description is not None:
            schema = operation.api.context.derive(schema, description=parameter.description)

        name = parameter.name
        if parameter.location == "query":
            query[name] = {"$": name}
        elif parameter.location == "header":
            headers[name] = {"$": name}
        elif parameter.location == "cookie":
            # Collected only; request templates carry no cookie section
            cookies[name] = {"$": name}

        if parameter.required is True:
            required.append(name)
        param_index[name] = len(roots)
        roots.append(schema)

    request_body = operation.request_body
    if request_body is not None:
        body_key = "body"
        index = 1
        while body_key in param_index:
            body_key = f"body{index}"
            index += 1

        for content_type in request_body.content:
            schema = content_type.schema
            if not isinstance(schema, dict):
                continue
            encoding = BODY_ENCODINGS.get(content_type.media_type)
            if encoding is None:
                continue
            if request_body.description is not None:
                schema = operation.api.context.derive(schema, description=request_body.description)

            body = {"$": body_key, "encode": encoding}
            if request_body.required is True:
                required.append(body_key)
            param_index[body_key] = len(roots)
            roots.append(schema)
            break

    result = tree_shake_references(operation.api.context, roots, defs_uri="#/$defs", transform=options.transform)
    properties = {name: result.roots[index] for name, index in param_index.items()}

    url = _server_url(_select_server(operation, options)) + operation.path
    if query:
        variables = ",".join(query)
        url += f"{{&{variables}}}" if "?" in url else f"{{?{variables}}}"

    parameters: dict[str, Any] = {"type": "object"}
    if properties:
        parameters["properties"] = properties
    if required:
        parameters["required"] = required
    if result.defs is not None:
        parameters["$defs"] = result.defs

    request: dict[str, Any] = {"method": operation.method, "url": {"$uri": url}}
    if headers:
        request["headers"] = headers
    if body is not None:
        request["body"] = body

    logger.debug(
        "Generated request template",
        method=operation.method,
        path=operation.path,
        parameters=len(properties),
        cookies_ignored=len(cookies),
    )
    return RequestTemplate(parameters=parameters, request=request)


def _select_server(operation: ApiOperation, options: HandleOptions) -> Server:
    if options.server is not None:
        return options.server
    # The nearest declared list wins, even when it is empty
    servers = operation.servers
    if servers is None:
        servers = operation.path_item.servers
    if servers is None:
        servers = operation.api.servers
    if not servers:
        raise ApiError("No servers defined for operation")
    return servers[0]


def _server_url(server: Server) -> str:
    """Substitute server variables with their defaults; undeclared ones expand to nothing."""
    if server.variables is None:
        return server.url
    defaults = server.variable_defaults

    def substitute(match: re.Match) -> str:
        name = match.group(1)
        if name not in defaults:
            logger.warning("Server variable has no default", variable=name, url=server.url)
        return defaults.get(name, "")

    return _SERVER_VARIABLE.sub(substitute, server.url)
