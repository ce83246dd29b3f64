"""Render JSON Schemas as markdown document templates.

The templates describe how a response body should be shown to a language
model: headings, a digest of the key properties and a fenced JSON block
bound to the live value through a query. Actual data is never interpolated
here; the consuming runtime evaluates the ``$`` queries.
"""

from __future__ import annotations

import dataclasses
import json
from typing import TYPE_CHECKING, Any

from tool_api.generator.query import ChildSegment, NameSelector, Query, WildcardSelector, format_query, name_query

if TYPE_CHECKING:
    from tool_api.generator.shake import ShakeResult
    from tool_api.parser.context import ApiContext
    from tool_api.parser.graph import ApiOperation, ApiResponse

MAX_DEPTH = 6

TITLE_PROPERTIES = ("title", "name", "id")


@dataclasses.dataclass(frozen=True)
class SchemaState:
    """Where in the response template a schema is being rendered."""

    varname: str  # template variable bound to the current value
    depth: int  # heading level, 1-based
    response: ApiResponse | None = None
    operation: ApiOperation | None = None


def generate_schema_template(
    context: ApiContext,
    state: SchemaState,
    schema: Any,
    definitions: ShakeResult | None = None,
) -> dict:
    """Generate a markdown-encoded template for values described by ``schema``.

    ``definitions`` resolves references into a tree-shaken ``$defs``
    namespace when ``schema`` is a rewritten root.
    """
    return SchemaTemplateGenerator(context, definitions).generate(state, schema)


def first_line(text: str | None) -> str | None:
    if text is None:
        return None
    return text.split("\n", 1)[0]


def is_string_schema(schema: Any) -> bool:
    if not isinstance(schema, dict):
        return False
    schema_type = schema.get("type")
    return schema_type == "string" or (isinstance(schema_type, list) and "string" in schema_type)


def is_array_schema(schema: Any) -> bool:
    return isinstance(schema, dict) and (schema.get("type") == "array" or schema.get("items") is not None)


def is_object_schema(schema: Any) -> bool:
    return isinstance(schema, dict) and (schema.get("type") == "object" or isinstance(schema.get("properties"), dict))


def current_query(state: SchemaState) -> str:
    return format_query(name_query(state.varname))


def children_query(state: SchemaState) -> str:
    return format_query(
        Query(
            (
                ChildSegment((NameSelector(state.varname),)),
                ChildSegment((WildcardSelector(),)),
            )
        )
    )


def child_query(state: SchemaState, name: str) -> str:
    return format_query(name_query(state.varname, name))


def _format_default(value: Any) -> str:
    if isinstance(value, bool) or value is None:
        return json.dumps(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


class SchemaTemplateGenerator:
    """Converts resolved JSON Schemas into Tool Form display templates."""

    def __init__(self, context: ApiContext, definitions: ShakeResult | None = None):
        self.context = context
        self.definitions = definitions
        # ids of allOf lists currently being merged
        self._merging: set[int] = set()

    def generate(self, state: SchemaState, schema: Any) -> dict:
        content = self._master_template(state, schema)
        if not isinstance(content, dict):
            content = {"$block": content}
        return {"$encode": "markdown", **content}

    # -- schema resolution ----------------------------------------------------

    def resolve(self, schema: Any) -> Any:
        """Follow references, then merge an all-object ``allOf``."""
        schema = self._traverse_reference(schema)
        return self._resolve_all_of(schema)

    def _follow(self, schema: Any) -> Any:
        if not isinstance(schema, dict):
            return None
        ref = schema.get("$ref")
        if self.definitions is not None and isinstance(ref, str):
            target = self.definitions.lookup(ref)
            if target is not None:
                return target
        reference = self.context.get_reference(schema)
        return None if reference is None else reference.target

    def _traverse_reference(self, schema: Any) -> dict:
        """Follow ``$ref`` chains; the nearest title and description win."""
        title = None
        description = None
        seen: set[int] = set()
        while True:
            if isinstance(schema, dict):
                if title is None and isinstance(schema.get("title"), str):
                    title = schema["title"]
                if description is None and isinstance(schema.get("description"), str):
                    description = schema["description"]
            if id(schema) in seen:
                break
            seen.add(id(schema))
            target = self._follow(schema)
            if target is None:
                break
            schema = target

        resolved = dict(schema) if isinstance(schema, dict) else {}
        if title is not None:
            resolved["title"] = title
        if description is not None:
            resolved["description"] = description
        return resolved

    def _resolve_all_of(self, schema: Any) -> Any:
        if not isinstance(schema, dict) or not isinstance(schema.get("allOf"), list):
            return schema

        members = schema["allOf"]
        if id(members) in self._merging:
            return schema
        self._merging.add(id(members))
        try:
            return self._merge_all_of(schema, members)
        finally:
            self._merging.discard(id(members))

    def _merge_all_of(self, schema: dict, members: list) -> Any:
        title = None
        description = None
        properties: dict[str, Any] = {}
        for member in members:
            member = self.resolve(member)
            # Only merge when every member is an object; anything else is left alone
            if not is_object_schema(member):
                return schema
            if title is None and isinstance(member.get("title"), str):
                title = member["title"]
            if description is None and isinstance(member.get("description"), str):
                description = member["description"]
            properties.update(member.get("properties") or {})

        merged: dict[str, Any] = {"type": "object"}
        if title is not None:
            merged["title"] = title
        if description is not None:
            merged["description"] = description
        merged["properties"] = properties
        return merged

    # -- templates ------------------------------------------------------------

    def _master_template(self, state: SchemaState, schema: Any) -> Any:
        schema = self.resolve(schema)

        if state.depth > MAX_DEPTH:
            return self._fallback_template(state)
        if is_array_schema(schema):
            return self._array_master_template(state, schema)
        if is_object_schema(schema):
            return self._object_master_template(state, schema)
        return self._fallback_template(state)

    def _element_template(self, state: SchemaState, schema: Any) -> Any:
        schema = self.resolve(schema)

        if state.depth > MAX_DEPTH:
            return self._fallback_template(state)
        if is_object_schema(schema):
            return self._object_element_template(state, schema)
        return self._fallback_template(state)

    def _object_master_template(self, state: SchemaState, schema: dict) -> dict:
        title = schema.get("title")
        if title is None:
            title = "Object"

        blocks: list[Any] = [{f"$h{state.depth}": first_line(title)}]
        if schema.get("description") is not None:
            blocks.append(schema["description"])
        blocks.extend(self._key_properties(schema))
        blocks.append(self._json_block(state))
        return {"$block": blocks}

    def _object_element_template(self, state: SchemaState, schema: dict) -> dict:
        title_property = self._pick_title_property(schema)
        title: Any = "Item" if title_property is None else {"$": child_query(state, title_property)}

        return {
            "$block": [
                {f"$h{state.depth}": title},
                self._json_block(state),
            ]
        }

    def _array_master_template(self, state: SchemaState, schema: dict) -> dict:
        item_schema = self.resolve(schema.get("items"))

        title = schema.get("title")
        if title is None:
            item_title = item_schema.get("title")
            title = "List" if item_title is None else f"{item_title} list"

        description = schema.get("description")
        if description is None:
            description = item_schema.get("description")

        item_state = dataclasses.replace(state, varname="item", depth=state.depth + 1)
        item_template = self._element_template(item_state, item_schema)
        if not isinstance(item_template, dict):
            item_template = {"$value": item_template}

        blocks: list[Any] = [{f"$h{state.depth}": first_line(title)}]
        if description is not None:
            blocks.append(description)
        blocks.extend(self._key_properties(item_schema))
        blocks.append({"$each": children_query(state), "$as": "item", **item_template})
        return {"$block": blocks}

    def _fallback_template(self, state: SchemaState) -> dict:
        return self._json_block(state)

    def _json_block(self, state: SchemaState) -> dict:
        return {
            "$lang": "json",
            "$code": {
                "$encode": "json",
                "$indent": True,
                "$content": {"$": current_query(state)},
            },
        }

    # -- key properties -------------------------------------------------------

    def _key_properties(self, schema: dict) -> list[Any]:
        items = self.key_property_items(schema)
        if not items:
            return []
        return ["**Key properties:**", {"$ul": items}]

    def key_property_items(self, schema: Any, level: int = 1) -> list[Any]:
        """Bullet items summarising each property, nested for object properties.

        Nesting stops at MAX_DEPTH levels so self-referencing schemas terminate.
        """
        properties = schema.get("properties") if isinstance(schema, dict) else None
        if not isinstance(properties, dict):
            return []

        items: list[Any] = []
        for name, prop_schema in properties.items():
            prop_schema = self.resolve(prop_schema)
            if not isinstance(prop_schema, dict):
                continue

            summary = f"**{name}**"
            if isinstance(prop_schema.get("description"), str):
                summary += ": " + first_line(prop_schema["description"])
            if "default" in prop_schema:
                summary += f" (default: {_format_default(prop_schema['default'])})"

            sub_items: list[Any] = []
            if is_object_schema(prop_schema) and level < MAX_DEPTH:
                sub_items = self.key_property_items(prop_schema, level + 1)

            items.append([summary, {"$ul": sub_items}] if sub_items else summary)
        return items

    def _pick_title_property(self, schema: dict) -> str | None:
        properties = schema.get("properties") or {}
        for name in TITLE_PROPERTIES:
            if name in properties and is_string_schema(self.resolve(properties[name])):
                return name
        return None
