"""Shared resolution state for OpenAPI processing.

The context owns everything the document graph and the generators need to
follow ``$ref`` indirection: the JSON Schema dialect table, the
``referencing`` registry holding every loaded document, and a table of
resolved references keyed by the identity of the node carrying ``$ref``.
Nodes themselves stay plain dicts and lists.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Mapping

from referencing import Registry, Resource, Specification
from referencing.exceptions import Unresolvable
from referencing.jsonschema import DRAFT3, DRAFT4, DRAFT6, DRAFT7, DRAFT201909, DRAFT202012

from tool_api.errors import ApiError
from tool_api.log import get_logger

if TYPE_CHECKING:
    from referencing._core import Resolver

logger = get_logger(__name__)

OAS31_DIALECT = "https://spec.openapis.org/oas/3.1/dialect/base"
OAS30_DIALECT = "http://json-schema.org/draft-05/schema#"


@dataclass(frozen=True)
class Dialect:
    """A JSON Schema dialect known to the parser."""

    uri: str
    specification: Specification


DIALECTS: Mapping[str, Dialect] = {
    uri: Dialect(uri, spec)
    for uri, spec in (
        (OAS31_DIALECT, DRAFT202012),
        ("https://json-schema.org/draft/2020-12/schema", DRAFT202012),
        ("https://json-schema.org/draft/2019-09/schema", DRAFT201909),
        ("http://json-schema.org/draft-07/schema#", DRAFT7),
        ("http://json-schema.org/draft-06/schema#", DRAFT6),
        # Draft 05 never shipped its own meta-schema; OpenAPI 3.0 schemas use draft 04 rules.
        (OAS30_DIALECT, DRAFT4),
        ("http://json-schema.org/draft-04/schema#", DRAFT4),
        ("http://json-schema.org/draft-03/schema#", DRAFT3),
    )
}


@dataclass(frozen=True)
class Reference:
    """A resolved ``$ref``: the absolute URI, its target node and the resolver scoped to it."""

    uri: str
    target: Any
    resolver: Resolver = field(repr=False, compare=False)


class ApiContext:
    """Resolution tables shared by every view over one parsed document."""

    def __init__(
        self,
        dialects: Mapping[str, Dialect] | None = None,
        dialect: Dialect | None = None,
        retrieve: Callable[[str], Any] | None = None,
    ):
        self.dialects = dict(DIALECTS if dialects is None else dialects)
        self.dialect = dialect
        self.retrieve = retrieve
        self.registry: Registry = Registry()
        self.resolver: Resolver | None = None
        # id(node) -> (node, reference); the node is held so its id stays unique
        self._references: dict[int, tuple[Any, Reference]] = {}

    @property
    def specification(self) -> Specification:
        return (self.dialect or DIALECTS[OAS31_DIALECT]).specification

    def create_resource(self, contents: Any) -> Resource:
        return Resource(contents=contents, specification=self.specification)

    def register_reference(self, node: Any, reference: Reference) -> None:
        self._references[id(node)] = (node, reference)

    def derive(self, node: dict, **updates: Any) -> dict:
        """Return a shallow copy of ``node`` with ``updates`` applied.

        The copy carries the same reference as ``node``, so relative ``$ref``s
        keep resolving against the document that declared them.
        """
        derived = {**node, **updates}
        entry = self._references.get(id(node))
        if entry is not None and entry[0] is node:
            self.register_reference(derived, entry[1])
        return derived

    def get_reference(self, node: Any) -> Reference | None:
        """Return the reference carried by ``node``, if any.

        Nodes registered during parsing are answered from the table. Copies
        made later (e.g. a schema with an overridden description) are looked
        up against the document root on demand.
        """
        if not isinstance(node, dict):
            return None
        entry = self._references.get(id(node))
        if entry is not None and entry[0] is node:
            return entry[1]
        ref = node.get("$ref")
        if not isinstance(ref, str) or self.resolver is None:
            return None
        return self.lookup(ref)

    def lookup(self, ref: str, resolver: Resolver | None = None) -> Reference | None:
        """Resolve ``ref`` against ``resolver`` (the document root by default)."""
        resolver = resolver or self.resolver
        if resolver is None:
            return None
        try:
            resolved = resolver.lookup(ref)
        except Unresolvable:
            logger.debug("Unresolvable reference", ref=ref)
            return None
        return Reference(uri=ref, target=resolved.contents, resolver=resolved.resolver)

    def traverse_reference(self, node: Any) -> Any:
        """Follow a chain of references to its final target.

        Cyclic chains stop at the first node seen twice.
        """
        seen: set[int] = set()
        while id(node) not in seen:
            seen.add(id(node))
            reference = self.get_reference(node)
            if reference is None:
                break
            node = reference.target
        return node


def create_api_context(
    dialect_uri: str | None = None,
    retrieve: Callable[[str], Any] | None = None,
) -> ApiContext:
    """Create a fresh context, optionally pinning the default JSON Schema dialect."""
    dialect = None
    if dialect_uri is not None:
        dialect = DIALECTS.get(dialect_uri)
        if dialect is None:
            raise ApiError(f"Unknown JSON Schema dialect {dialect_uri!r}")
    return ApiContext(dialect=dialect, retrieve=retrieve)
