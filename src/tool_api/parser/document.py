"""Parse an OpenAPI document and resolve every reference it contains."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, Callable
from urllib.parse import urldefrag, urljoin, urlsplit

from referencing import Registry, Resource
from referencing.exceptions import Unresolvable

from tool_api.errors import ApiError
from tool_api.log import get_logger
from tool_api.parser.context import DIALECTS, OAS30_DIALECT, OAS31_DIALECT, ApiContext, Reference
from tool_api.parser.graph import Api

if TYPE_CHECKING:
    from referencing._core import Resolver

logger = get_logger(__name__)

# Keywords whose values are literal data, never walked for references
LITERAL_KEYWORDS = frozenset({"example", "default", "const", "enum", "value"})

# Keywords whose values are name -> node maps; their keys are not keywords
MAP_KEYWORDS = frozenset(
    {
        "properties",
        "patternProperties",
        "dependentSchemas",
        "$defs",
        "definitions",
        "paths",
        "webhooks",
        "schemas",
        "responses",
        "parameters",
        "requestBodies",
        "headers",
        "securitySchemes",
        "links",
        "callbacks",
        "pathItems",
        "content",
        "encoding",
        "variables",
        "mapping",
    }
)

_INVALID_URI_CHARS = re.compile(r'[\s<>"{}|\\^`\x00-\x1f\x7f]')


def _escape(key: str) -> str:
    return str(key).replace("~", "~0").replace("/", "~1")


def is_uri_reference(value: str) -> bool:
    if _INVALID_URI_CHARS.search(value):
        return False
    try:
        urlsplit(value)
    except ValueError:
        return False
    return True


def is_absolute_uri(value: str) -> bool:
    return is_uri_reference(value) and bool(urlsplit(value).scheme)


def parse_api(
    node: Any,
    *,
    base_uri: str = "",
    retrieve: Callable[[str], Any] | None = None,
    context: ApiContext | None = None,
) -> Api:
    """Parse ``node`` as an OpenAPI document and resolve its references.

    Raises ApiError if the document is structurally unusable: a non-object
    root, a malformed or unknown ``jsonSchemaDialect``, a malformed ``$ref``
    or a reference that cannot be resolved. No partial document is returned.
    """
    if context is None:
        context = ApiContext(retrieve=retrieve)
    elif retrieve is not None:
        context.retrieve = retrieve

    if not isinstance(node, dict):
        raise ApiError("OpenAPI document must be an object", location="#")

    _select_dialect(context, node)
    logger.debug("Selected JSON Schema dialect", dialect=context.dialect.uri)

    registry = Registry(retrieve=_wrap_retrieve(context)) if context.retrieve else Registry()
    root = context.create_resource(node)
    registry = registry.with_resource(base_uri, root)
    for uri, schema in _collect_embedded_resources(node, base_uri):
        registry = registry.with_resource(uri, context.create_resource(schema))
    context.registry = registry.crawl()
    context.resolver = context.registry.resolver(base_uri=base_uri)

    _Walker(context).walk(node, context.resolver, base_uri, "#")
    return Api(node, context)


def _select_dialect(context: ApiContext, node: dict) -> None:
    dialect_uri = node.get("jsonSchemaDialect")
    if dialect_uri is not None:
        if not isinstance(dialect_uri, str):
            raise ApiError("jsonSchemaDialect must be a string", location="#/jsonSchemaDialect")
        if not is_absolute_uri(dialect_uri):
            raise ApiError("jsonSchemaDialect must be a valid URI", location="#/jsonSchemaDialect")
        dialect = context.dialects.get(dialect_uri)
        if dialect is None:
            raise ApiError(
                f"Unknown JSON Schema dialect {dialect_uri!r}",
                location="#/jsonSchemaDialect",
            )
        context.dialect = dialect
    elif context.dialect is None:
        version = node.get("openapi")
        if isinstance(version, str) and version.startswith("3.1"):
            context.dialect = DIALECTS[OAS31_DIALECT]
        else:
            context.dialect = DIALECTS[OAS30_DIALECT]


def _wrap_retrieve(context: ApiContext) -> Callable[[str], Resource]:
    def retrieve(uri: str) -> Resource:
        logger.debug("Retrieving referenced document", uri=uri)
        return context.create_resource(context.retrieve(uri))

    return retrieve


def _collect_embedded_resources(node: Any, base_uri: str) -> list[tuple[str, Any]]:
    """Find schemas that declare their own ``$id`` so they can be looked up by URI."""
    found: list[tuple[str, Any]] = []
    stack: list[tuple[Any, str, bool]] = [(node, base_uri, False)]
    seen: set[int] = set()
    while stack:
        current, base, is_map = stack.pop()
        if isinstance(current, list):
            stack.extend((item, base, False) for item in current)
            continue
        if not isinstance(current, dict) or id(current) in seen:
            continue
        seen.add(id(current))
        if not is_map and current is not node and isinstance(current.get("$id"), str):
            base = urldefrag(urljoin(base, current["$id"])).url
            found.append((base, current))
        for key, value in current.items():
            if not is_map and key in LITERAL_KEYWORDS:
                continue
            stack.append((value, base, not is_map and key in MAP_KEYWORDS))
    return found


class _Walker:
    """Depth-first walk registering every ``$ref`` with its resolved target."""

    def __init__(self, context: ApiContext):
        self.context = context
        self.visited: set[int] = set()

    def walk(self, node: Any, resolver: Resolver, base: str, pointer: str, is_map: bool = False) -> None:
        if isinstance(node, list):
            for index, item in enumerate(node):
                self.walk(item, resolver, base, f"{pointer}/{index}")
            return
        if not isinstance(node, dict) or id(node) in self.visited:
            return
        self.visited.add(id(node))

        if not is_map:
            if isinstance(node.get("$id"), str) and pointer != "#":
                base = urldefrag(urljoin(base, node["$id"])).url
                resolver = resolver.in_subresource(self.context.create_resource(node))
            if "$ref" in node:
                self._register(node, resolver, base, f"{pointer}/$ref")

        for key, value in node.items():
            if not is_map and key in LITERAL_KEYWORDS:
                continue
            # JSON Schema "examples" is a literal array; OpenAPI "examples" is a map
            if not is_map and key == "examples" and isinstance(value, list):
                continue
            child_is_map = not is_map and (key in MAP_KEYWORDS or key == "examples")
            self.walk(value, resolver, base, f"{pointer}/{_escape(key)}", child_is_map)

    def _register(self, node: dict, resolver: Resolver, base: str, location: str) -> None:
        ref = node["$ref"]
        if not isinstance(ref, str):
            raise ApiError('"$ref" must be a string', location=location)
        if not is_uri_reference(ref):
            raise ApiError('"$ref" must be a valid URI reference', location=location)

        try:
            resolved = resolver.lookup(ref)
        except Unresolvable as e:
            raise ApiError(f"Unresolvable reference {ref!r}", location=location) from e

        uri = urljoin(base, ref)
        self.context.register_reference(node, Reference(uri=uri, target=resolved.contents, resolver=resolved.resolver))
        logger.debug("Resolved reference", ref=ref, uri=uri)

        target_base = urldefrag(uri).url
        self.walk(resolved.contents, resolved.resolver, target_base, uri if "#" in uri else f"{uri}#")
