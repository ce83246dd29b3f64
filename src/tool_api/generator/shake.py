"""Tree-shake schema fragments into a minimal, closed ``$defs`` namespace.

Given a list of root schemas taken from a document, produce rewritten copies
whose references all point into a single definitions map holding exactly
the schemas reachable from those roots.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable
from urllib.parse import unquote, urldefrag, urlsplit

from tool_api.log import get_logger
from tool_api.parser.context import ApiContext, Reference
from tool_api.parser.document import LITERAL_KEYWORDS, MAP_KEYWORDS

if TYPE_CHECKING:
    from referencing._core import Resolver

logger = get_logger(__name__)

Transform = Callable[[Any], Any]


@dataclass
class ShakeResult:
    """Rewritten roots, index-aligned with the input, plus the shared definitions."""

    roots: list[Any]
    defs: dict[str, Any] | None
    defs_uri: str = "#/$defs"

    def lookup(self, ref: str) -> Any:
        """Return the definition a rewritten ``$ref`` points to, if it is one of ours."""
        prefix = self.defs_uri.rstrip("/") + "/"
        if not self.defs or not ref.startswith(prefix):
            return None
        name = unquote(ref[len(prefix):]).replace("~1", "/").replace("~0", "~")
        return self.defs.get(name)


def tree_shake_references(
    context: ApiContext,
    roots: list[Any],
    defs_uri: str = "#/$defs",
    transform: Transform | None = None,
) -> ShakeResult:
    shaker = _TreeShaker(context, defs_uri, transform)
    rewritten = [shaker.rewrite(root, context.resolver) for root in roots]
    return ShakeResult(roots=rewritten, defs=shaker.defs or None, defs_uri=defs_uri)


def _def_name(uri: str) -> str:
    base, fragment = urldefrag(uri)
    segments = [segment for segment in fragment.split("/") if segment]
    if segments:
        name = segments[-1].replace("~1", "/").replace("~0", "~")
    else:
        path = urlsplit(base).path.rstrip("/")
        name = path.rsplit("/", 1)[-1].split(".", 1)[0]
    name = re.sub(r"[^A-Za-z0-9_.-]", "_", unquote(name))
    return name or "schema"


class _TreeShaker:
    def __init__(self, context: ApiContext, defs_uri: str, transform: Transform | None):
        self.context = context
        self.defs_uri = defs_uri.rstrip("/")
        self.transform = transform
        self.defs: dict[str, Any] = {}
        # id(target) -> (target, name)
        self.names: dict[int, tuple[Any, str]] = {}

    def rewrite(self, node: Any, resolver: Resolver | None, is_map: bool = False) -> Any:
        if isinstance(node, list):
            return [self.rewrite(item, resolver) for item in node]
        if not isinstance(node, dict):
            return node

        result: dict[str, Any] = {}
        for key, value in node.items():
            if is_map:
                result[key] = self.rewrite(value, resolver)
            elif key == "$ref" and isinstance(value, str):
                ref = self._rewrite_ref(node, value, resolver)
                if ref is not None:
                    result[key] = ref
            elif key in LITERAL_KEYWORDS or (key == "examples" and isinstance(value, list)):
                result[key] = copy.deepcopy(value)
            else:
                result[key] = self.rewrite(value, resolver, key in MAP_KEYWORDS)

        if self.transform is not None and not is_map:
            return self.transform(result)
        return result

    def _rewrite_ref(self, node: dict, ref: str, resolver: Resolver | None) -> str | None:
        reference = self.context.get_reference(node)
        if reference is None and resolver is not None:
            reference = self.context.lookup(ref, resolver)
        if reference is not None:
            return f"{self.defs_uri}/{self._define(reference)}"
        if ref.startswith(self.defs_uri + "/"):
            return ref
        logger.warning("Dropping unresolvable schema reference", ref=ref)
        return None

    def _define(self, reference: Reference) -> str:
        entry = self.names.get(id(reference.target))
        if entry is not None and entry[0] is reference.target:
            return entry[1]

        base = _def_name(reference.uri)
        name = base
        index = 2
        while name in self.defs:
            name = f"{base}{index}"
            index += 1

        self.names[id(reference.target)] = (reference.target, name)
        # Reserve the slot before recursing so cycles resolve to this name
        self.defs[name] = None
        self.defs[name] = self.rewrite(reference.target, reference.resolver)
        return name
