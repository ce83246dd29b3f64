"""Read-only views over a parsed OpenAPI document.

Every view wraps a raw document fragment plus the owning :class:`Api`, and
is re-created on each accessor call. Views never copy or mutate document
data; ``$ref`` indirection is followed through the API's context when a
field is read.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterator

from pydantic import ValidationError

from tool_api.errors import ApiError
from tool_api.parser.base import HTTP_METHODS, Server

if TYPE_CHECKING:
    from tool_api.parser.context import ApiContext


def _servers(raw: Any, location: str) -> list[Server] | None:
    if raw is None:
        return None
    try:
        return [Server.model_validate(server) for server in raw]
    except (ValidationError, TypeError) as e:
        raise ApiError("Invalid Server Object", location=location) from e


class Api:
    """A handle to a resolved OpenAPI document."""

    def __init__(self, node: dict, context: ApiContext):
        self.node = node
        self.context = context

    @property
    def openapi(self) -> str | None:
        return self.node.get("openapi")

    @property
    def info(self) -> dict | None:
        return self.node.get("info")

    @property
    def json_schema_dialect(self) -> str | None:
        return self.node.get("jsonSchemaDialect")

    @property
    def servers(self) -> list[Server] | None:
        return _servers(self.node.get("servers"), "#/servers")

    @property
    def paths(self) -> ApiPaths:
        return ApiPaths(self.node.get("paths"), self)

    @property
    def webhooks(self) -> ApiPaths:
        return ApiPaths(self.node.get("webhooks"), self)

    @property
    def components(self) -> dict | None:
        return self.node.get("components")

    @property
    def security(self) -> list[dict] | None:
        return self.node.get("security")

    @property
    def tags(self) -> list[dict] | None:
        return self.node.get("tags")

    @property
    def external_docs(self) -> dict | None:
        return self.node.get("externalDocs")

    def operations(self) -> Iterator[ApiOperation]:
        """Iterate over every operation of every path item."""
        for path_item in self.paths:
            yield from path_item.operations()

    def to_json(self) -> Any:
        return self.node


class ApiPaths:
    """Path templates (or webhook names) mapped to path items."""

    def __init__(self, node: dict | None, api: Api):
        self.node = node
        self.api = api

    def get(self, template: str) -> ApiPathItem | None:
        if self.node is None or template.startswith("x-"):
            return None
        path_item = self.node.get(template)
        if path_item is None:
            return None
        return ApiPathItem(template, path_item, self.api)

    def __iter__(self) -> Iterator[ApiPathItem]:
        if self.node is None:
            return
        for key, value in self.node.items():
            if key.startswith("x-"):
                continue
            yield ApiPathItem(key, value, self.api)

    def __len__(self) -> int:
        if self.node is None:
            return 0
        return sum(1 for key in self.node if not key.startswith("x-"))

    def to_json(self) -> Any:
        return self.node


class ApiPathItem:
    """A path item; fields missing locally fall back to its ``$ref`` target."""

    def __init__(self, key: str, node: dict, api: Api):
        self.key = key
        self.node = node
        self.api = api

    @property
    def resolved(self) -> ApiPathItem | None:
        """The path item this one references, with the same key."""
        reference = self.api.context.get_reference(self.node)
        if reference is None or not isinstance(reference.target, dict):
            return None
        return ApiPathItem(self.key, reference.target, self.api)

    def _chain(self) -> Iterator[ApiPathItem]:
        seen: set[int] = set()
        path_item: ApiPathItem | None = self
        while path_item is not None and id(path_item.node) not in seen:
            seen.add(id(path_item.node))
            yield path_item
            path_item = path_item.resolved

    def _field(self, name: str) -> Any:
        for path_item in self._chain():
            value = path_item.node.get(name)
            if value is not None:
                return value
        return None

    @property
    def ref(self) -> str | None:
        return self.node.get("$ref")

    @property
    def summary(self) -> str | None:
        return self._field("summary")

    @property
    def description(self) -> str | None:
        return self._field("description")

    @property
    def servers(self) -> list[Server] | None:
        return _servers(self._field("servers"), f"{self.key}/servers")

    @property
    def parameters(self) -> list[ApiParameter] | None:
        parameters = self._field("parameters")
        if parameters is None:
            return None
        return [ApiParameter(parameter, self.api) for parameter in parameters]

    def operation(self, method: str) -> ApiOperation | None:
        """The operation for ``method``, taken from the nearest item in the chain defining it."""
        method = method.lower()
        if method not in HTTP_METHODS:
            return None
        node = self._field(method)
        if node is None:
            return None
        return ApiOperation(method, node, self)

    @property
    def get(self) -> ApiOperation | None:
        return self.operation("get")

    @property
    def put(self) -> ApiOperation | None:
        return self.operation("put")

    @property
    def post(self) -> ApiOperation | None:
        return self.operation("post")

    @property
    def delete(self) -> ApiOperation | None:
        return self.operation("delete")

    @property
    def options(self) -> ApiOperation | None:
        return self.operation("options")

    @property
    def head(self) -> ApiOperation | None:
        return self.operation("head")

    @property
    def patch(self) -> ApiOperation | None:
        return self.operation("patch")

    @property
    def trace(self) -> ApiOperation | None:
        return self.operation("trace")

    def operations(self) -> Iterator[ApiOperation]:
        """Iterate over all operations of this path item.

        Walks the reference chain outward; a method already defined by a
        nearer path item hides the same method on items further along.
        """
        seen: set[str] = set()
        for path_item in self._chain():
            for key, value in path_item.node.items():
                if key not in HTTP_METHODS or key in seen:
                    continue
                seen.add(key)
                yield ApiOperation(key, value, self)

    def to_json(self) -> Any:
        return self.node


class ApiOperation:
    """A single API operation on a path item."""

    def __init__(self, key: str, node: dict, path_item: ApiPathItem):
        self.key = key
        self.node = node
        self.path_item = path_item

    @property
    def api(self) -> Api:
        return self.path_item.api

    @property
    def method(self) -> str:
        return self.key.upper()

    @property
    def path(self) -> str:
        return self.path_item.key

    @property
    def tags(self) -> list[str] | None:
        return self.node.get("tags")

    @property
    def summary(self) -> str | None:
        return self.node.get("summary")

    @property
    def description(self) -> str | None:
        return self.node.get("description")

    @property
    def external_docs(self) -> dict | None:
        return self.node.get("externalDocs")

    @property
    def operation_id(self) -> str | None:
        return self.node.get("operationId")

    @property
    def parameters(self) -> list[ApiParameter] | None:
        parameters = self.node.get("parameters")
        if parameters is None:
            return None
        return [ApiParameter(parameter, self.api) for parameter in parameters]

    @property
    def all_parameters(self) -> list[ApiParameter]:
        """Operation parameters followed by path item parameters not overridden by them."""
        parameters = list(self.parameters or [])
        keys = {(parameter.name, parameter.location) for parameter in parameters}
        for parameter in self.path_item.parameters or []:
            if (parameter.name, parameter.location) in keys:
                continue
            keys.add((parameter.name, parameter.location))
            parameters.append(parameter)
        return parameters

    @property
    def request_body(self) -> ApiRequestBody | None:
        node = self.node.get("requestBody")
        if node is None:
            return None
        return ApiRequestBody(node, self.api)

    @property
    def responses(self) -> ApiResponses:
        return ApiResponses(self.node.get("responses"), self.api)

    @property
    def callbacks(self) -> ApiCallbacks:
        return ApiCallbacks(self.node.get("callbacks"), self.api)

    @property
    def deprecated(self) -> bool | None:
        return self.node.get("deprecated")

    @property
    def security(self) -> list[dict] | None:
        return self.node.get("security")

    @property
    def servers(self) -> list[Server] | None:
        return _servers(self.node.get("servers"), f"{self.path}/{self.key}/servers")

    def to_json(self) -> Any:
        return self.node


class _ReferencedNode:
    """Base for views whose node may be a Reference Object."""

    def __init__(self, node: Any, api: Api):
        self.node = api.context.traverse_reference(node)
        self.api = api

    def to_json(self) -> Any:
        return self.node


class ApiParameter(_ReferencedNode):
    """A parameter, identified by ``(name, location)``."""

    @property
    def name(self) -> str | None:
        return self.node.get("name")

    @property
    def location(self) -> str | None:
        return self.node.get("in")

    @property
    def description(self) -> str | None:
        return self.node.get("description")

    @property
    def required(self) -> bool | None:
        return self.node.get("required")

    @property
    def deprecated(self) -> bool | None:
        return self.node.get("deprecated")

    @property
    def allow_empty_value(self) -> bool | None:
        return self.node.get("allowEmptyValue")

    @property
    def style(self) -> str | None:
        return self.node.get("style")

    @property
    def explode(self) -> bool | None:
        return self.node.get("explode")

    @property
    def allow_reserved(self) -> bool | None:
        return self.node.get("allowReserved")

    @property
    def schema(self) -> Any:
        return self.node.get("schema")

    @property
    def example(self) -> Any:
        return self.node.get("example")

    @property
    def examples(self) -> ApiExamples:
        return ApiExamples(self.node.get("examples"), self.api)

    @property
    def content(self) -> ApiContentTypes:
        return ApiContentTypes(self.node.get("content"), self.api)


class ApiRequestBody(_ReferencedNode):
    @property
    def description(self) -> str | None:
        return self.node.get("description")

    @property
    def content(self) -> ApiContentTypes:
        return ApiContentTypes(self.node.get("content"), self.api)

    @property
    def required(self) -> bool | None:
        return self.node.get("required")


class _KeyedCollection:
    """A map of keys to child views, in document order."""

    skip_extensions = False

    def __init__(self, node: dict | None, api: Api):
        self.node = node
        self.api = api

    def _create(self, key: str, value: Any) -> Any:
        raise NotImplementedError

    def get(self, key: str) -> Any:
        if self.node is None or (self.skip_extensions and str(key).startswith("x-")):
            return None
        value = self.node.get(key)
        if value is None:
            return None
        return self._create(key, value)

    def __iter__(self) -> Iterator[Any]:
        if self.node is None:
            return
        for key, value in self.node.items():
            if self.skip_extensions and str(key).startswith("x-"):
                continue
            yield self._create(key, value)

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def to_json(self) -> Any:
        return self.node


class ApiContentTypes(_KeyedCollection):
    def _create(self, key: str, value: Any) -> ApiContentType:
        return ApiContentType(key, value, self.api)


class ApiContentType:
    """A media type entry of a ``content`` map."""

    def __init__(self, key: str, node: dict, api: Api):
        self.key = key
        self.node = node
        self.api = api

    @property
    def media_type(self) -> str:
        return self.key

    @property
    def schema(self) -> Any:
        return self.node.get("schema")

    @property
    def example(self) -> Any:
        return self.node.get("example")

    @property
    def examples(self) -> ApiExamples:
        return ApiExamples(self.node.get("examples"), self.api)

    @property
    def encoding(self) -> dict | None:
        return self.node.get("encoding")

    def to_json(self) -> Any:
        return self.node


class ApiResponses(_KeyedCollection):
    skip_extensions = True

    def _create(self, key: str, value: Any) -> ApiResponse:
        return ApiResponse(str(key), value, self.api)

    def get(self, key: str) -> ApiResponse | None:
        response = super().get(key)
        # YAML loads unquoted status codes as integers
        if response is None and key.isdigit():
            response = super().get(int(key))
        return response

    @property
    def default(self) -> ApiResponse | None:
        return self.get("default")


class ApiResponse(_ReferencedNode):
    """A response, keyed by status code (or ``default``)."""

    def __init__(self, key: str, node: Any, api: Api):
        super().__init__(node, api)
        self.key = key

    @property
    def description(self) -> str | None:
        return self.node.get("description")

    @property
    def headers(self) -> ApiHeaders | None:
        headers = self.node.get("headers")
        if headers is None:
            return None
        return ApiHeaders(headers, self.api)

    @property
    def content(self) -> ApiContentTypes:
        return ApiContentTypes(self.node.get("content"), self.api)

    @property
    def links(self) -> ApiLinks:
        return ApiLinks(self.node.get("links"), self.api)


class ApiHeaders(_KeyedCollection):
    def _create(self, key: str, value: Any) -> ApiHeader:
        return ApiHeader(key, value, self.api)


class ApiHeader(_ReferencedNode):
    def __init__(self, key: str, node: Any, api: Api):
        super().__init__(node, api)
        self.key = key

    @property
    def description(self) -> str | None:
        return self.node.get("description")

    @property
    def required(self) -> bool | None:
        return self.node.get("required")

    @property
    def deprecated(self) -> bool | None:
        return self.node.get("deprecated")

    @property
    def style(self) -> str | None:
        return self.node.get("style")

    @property
    def explode(self) -> bool | None:
        return self.node.get("explode")

    @property
    def schema(self) -> Any:
        return self.node.get("schema")

    @property
    def example(self) -> Any:
        return self.node.get("example")

    @property
    def examples(self) -> ApiExamples:
        return ApiExamples(self.node.get("examples"), self.api)

    @property
    def content(self) -> ApiContentTypes:
        return ApiContentTypes(self.node.get("content"), self.api)


class ApiExamples(_KeyedCollection):
    def _create(self, key: str, value: Any) -> ApiExample:
        return ApiExample(key, value, self.api)


class ApiExample(_ReferencedNode):
    def __init__(self, key: str, node: Any, api: Api):
        super().__init__(node, api)
        self.key = key

    @property
    def summary(self) -> str | None:
        return self.node.get("summary")

    @property
    def description(self) -> str | None:
        return self.node.get("description")

    @property
    def value(self) -> Any:
        return self.node.get("value")

    @property
    def external_value(self) -> str | None:
        return self.node.get("externalValue")


class ApiLinks(_KeyedCollection):
    def _create(self, key: str, value: Any) -> ApiLink:
        return ApiLink(key, value, self.api)


class ApiLink(_ReferencedNode):
    """A design-time link from a response to another operation."""

    def __init__(self, key: str, node: Any, api: Api):
        super().__init__(node, api)
        self.key = key

    @property
    def operation_ref(self) -> str | None:
        return self.node.get("operationRef")

    @property
    def operation_id(self) -> str | None:
        return self.node.get("operationId")

    @property
    def parameters(self) -> dict | None:
        return self.node.get("parameters")

    @property
    def request_body(self) -> Any:
        return self.node.get("requestBody")

    @property
    def description(self) -> str | None:
        return self.node.get("description")

    @property
    def server(self) -> Server | None:
        server = self.node.get("server")
        if server is None:
            return None
        servers = _servers([server], f"links/{self.key}/server")
        return servers[0]


class ApiCallbacks(_KeyedCollection):
    def _create(self, key: str, value: Any) -> ApiCallback:
        return ApiCallback(key, value, self.api)


class ApiCallback(_ReferencedNode):
    """Runtime expressions mapped to the path items invoked by a callback."""

    def __init__(self, key: str, node: Any, api: Api):
        super().__init__(node, api)
        self.key = key

    def get(self, expression: str) -> ApiPathItem | None:
        path_item = self.node.get(expression)
        if path_item is None or expression.startswith("x-"):
            return None
        return ApiPathItem(expression, path_item, self.api)

    def __iter__(self) -> Iterator[ApiPathItem]:
        for key, value in self.node.items():
            if key.startswith("x-"):
                continue
            yield ApiPathItem(key, value, self.api)
