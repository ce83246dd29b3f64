"""Field-access queries embedded in response templates.

A tiny JSONPath-style AST (child segments of name or wildcard selectors)
and its formatter. Queries are relative: the first name selector names a
template variable, e.g. ``body``, ``body[*]`` or ``item.title``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass

_SHORTHAND_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class NameSelector:
    name: str


@dataclass(frozen=True)
class WildcardSelector:
    pass


Selector = NameSelector | WildcardSelector


@dataclass(frozen=True)
class ChildSegment:
    selectors: tuple[Selector, ...]


@dataclass(frozen=True)
class Query:
    segments: tuple[ChildSegment, ...]


def _quote(name: str) -> str:
    # JSON string escaping, re-quoted with single quotes
    body = json.dumps(name, ensure_ascii=False)[1:-1].replace('\\"', '"').replace("'", "\\'")
    return f"'{body}'"


def _format_selector(selector: Selector) -> str:
    if isinstance(selector, WildcardSelector):
        return "*"
    return _quote(selector.name)


def format_query(query: Query) -> str:
    parts: list[str] = []
    for index, segment in enumerate(query.segments):
        if len(segment.selectors) == 1:
            selector = segment.selectors[0]
            if isinstance(selector, NameSelector) and _SHORTHAND_NAME.match(selector.name):
                parts.append(selector.name if index == 0 else f".{selector.name}")
                continue
        parts.append("[" + ",".join(_format_selector(s) for s in segment.selectors) + "]")
    return "".join(parts)


def name_query(*names: str) -> Query:
    return Query(tuple(ChildSegment((NameSelector(name),)) for name in names))
