from pathlib import Path

import pytest

from tool_api.errors import ApiError
from tool_api.generator.request import generate_handle_request
from tool_api.parser.base import HandleOptions, Server
from tool_api.parser.document import parse_api
from tool_api.parser.loader import file_retriever, load_openapi_file

FIXTURES = Path(__file__).parent / "fixtures"

SERVERS = [{"url": "https://api.example.com"}]


def _petstore():
    return parse_api(load_openapi_file(FIXTURES / "petstore.yaml"))


def _operation(operation, *, method="get", path="/things", servers=SERVERS, path_item=None, components=None):
    doc = {
        "openapi": "3.1.0",
        "paths": {path: {**(path_item or {}), method: operation}},
    }
    if servers is not None:
        doc["servers"] = servers
    if components is not None:
        doc["components"] = components
    return parse_api(doc).paths.get(path).operation(method)


class TestParameters:
    def test_list_pets(self):
        operation = _petstore().paths.get("/pets").get
        template = generate_handle_request(operation)
        assert template.parameters == {
            "type": "object",
            "properties": {
                "limit": {"type": "integer", "default": 20, "description": "How many items to return"},
                "X-Trace": {"type": "string"},
            },
        }
        assert template.request == {
            "method": "GET",
            "url": {"$uri": "https://eu.petstore.example/v1/pets{?limit}"},
            "headers": {"X-Trace": {"$": "X-Trace"}},
        }

    def test_path_parameters_from_referenced_path_item(self):
        operation = _petstore().paths.get("/pets/{petId}").get
        template = generate_handle_request(operation)
        assert template.parameters == {
            "type": "object",
            "properties": {"petId": {"type": "string"}},
            "required": ["petId"],
        }
        assert template.request == {
            "method": "GET",
            "url": {"$uri": "https://eu.petstore.example/v1/pets/{petId}"},
        }

    def test_parameters_without_schema_are_skipped(self):
        operation = _operation(
            {"parameters": [{"name": "q", "in": "query", "content": {"application/json": {}}}]},
        )
        template = generate_handle_request(operation)
        assert template.parameters == {"type": "object"}
        assert template.request["url"] == {"$uri": "https://api.example.com/things"}

    def test_cookie_parameters_are_not_templated(self):
        operation = _operation(
            {"parameters": [{"name": "session", "in": "cookie", "required": True, "schema": {"type": "string"}}]},
        )
        template = generate_handle_request(operation)
        assert template.parameters["properties"] == {"session": {"type": "string"}}
        assert template.parameters["required"] == ["session"]
        assert template.request == {"method": "GET", "url": {"$uri": "https://api.example.com/things"}}

    def test_query_appended_to_existing_query_string(self):
        operation = _operation(
            {
                "parameters": [
                    {"name": "a", "in": "query", "schema": {"type": "string"}},
                    {"name": "b", "in": "query", "schema": {"type": "string"}},
                ]
            },
            path="/search?v=2",
        )
        template = generate_handle_request(operation)
        assert template.request["url"] == {"$uri": "https://api.example.com/search?v=2{&a,b}"}

    def test_referenced_parameter_schema_goes_to_defs(self):
        operation = _operation(
            {"parameters": [{"name": "status", "in": "query", "schema": {"$ref": "#/components/schemas/Status"}}]},
            components={"schemas": {"Status": {"type": "string", "enum": ["on", "off"]}}},
        )
        template = generate_handle_request(operation)
        assert template.parameters == {
            "type": "object",
            "properties": {"status": {"$ref": "#/$defs/Status"}},
            "$defs": {"Status": {"type": "string", "enum": ["on", "off"]}},
        }


class TestRequestBody:
    def test_create_pet(self):
        operation = _petstore().paths.get("/pets").post
        template = generate_handle_request(operation)
        assert template.parameters == {
            "type": "object",
            "properties": {
                "limit": {"type": "integer", "description": "Path-level limit"},
                "X-Trace": {"type": "string"},
                "body": {"$ref": "#/$defs/NewPet", "description": "Pet to add"},
            },
            "required": ["body"],
            "$defs": {
                "NewPet": {
                    "type": "object",
                    "properties": {"name": {"type": "string"}, "tag": {"type": "string"}},
                }
            },
        }
        assert template.request == {
            "method": "POST",
            "url": {"$uri": "https://eu.petstore.example/v1/pets{?limit}"},
            "headers": {"X-Trace": {"$": "X-Trace"}},
            "body": {"$": "body", "encode": "json"},
        }

    def test_first_supported_content_type_wins(self):
        operation = _operation(
            {
                "requestBody": {
                    "content": {
                        "text/plain": {"schema": {"type": "string"}},
                        "application/x-www-form-urlencoded": {"schema": {"type": "object"}},
                        "application/json": {"schema": {"type": "object"}},
                    }
                }
            },
            method="post",
        )
        template = generate_handle_request(operation)
        assert template.request["body"] == {"$": "body", "encode": "urlencoded"}
        assert "required" not in template.parameters

    def test_multipart(self):
        operation = _operation(
            {"requestBody": {"content": {"multipart/form-data": {"schema": {"type": "object"}}}}},
            method="post",
        )
        template = generate_handle_request(operation)
        assert template.request["body"] == {"$": "body", "encode": "multipart"}

    def test_unsupported_content_types_only(self):
        operation = _operation(
            {"requestBody": {"required": True, "content": {"text/plain": {"schema": {"type": "string"}}}}},
            method="post",
        )
        template = generate_handle_request(operation)
        assert "body" not in template.request
        assert template.parameters == {"type": "object"}

    def test_body_key_avoids_parameter_names(self):
        operation = _operation(
            {
                "parameters": [
                    {"name": "body", "in": "query", "schema": {"type": "string"}},
                    {"name": "body1", "in": "header", "schema": {"type": "string"}},
                ],
                "requestBody": {"content": {"application/json": {"schema": {"type": "object"}}}},
            },
            method="post",
        )
        template = generate_handle_request(operation)
        assert list(template.parameters["properties"]) == ["body", "body1", "body2"]
        assert template.request["body"] == {"$": "body2", "encode": "json"}


class TestSplitDocuments:
    def _api(self):
        path = (FIXTURES / "split_params" / "openapi.yaml").resolve()
        return parse_api(load_openapi_file(path), base_uri=path.as_uri(), retrieve=file_retriever(path.parent))

    def test_described_parameter_keeps_relative_reference(self):
        operation = self._api().paths.get("/items").get
        template = generate_handle_request(operation)
        assert template.parameters == {
            "type": "object",
            "properties": {"limit": {"$ref": "#/$defs/LimitSchema", "description": "Page size"}},
            "$defs": {"LimitSchema": {"type": "integer", "maximum": 100}},
        }
        assert template.request["url"] == {"$uri": "https://inventory.example/items{?limit}"}

    def test_described_body_keeps_relative_reference(self):
        operation = self._api().paths.get("/items").post
        template = generate_handle_request(operation)
        assert template.parameters == {
            "type": "object",
            "properties": {"body": {"$ref": "#/$defs/ItemSchema", "description": "Item to add"}},
            "required": ["body"],
            "$defs": {"ItemSchema": {"type": "object", "properties": {"sku": {"type": "string"}}}},
        }


class TestServers:
    def test_no_servers(self):
        operation = _operation({}, servers=None)
        with pytest.raises(ApiError, match="No servers defined for operation"):
            generate_handle_request(operation)

    def test_empty_operation_servers(self):
        operation = _operation({"servers": []})
        with pytest.raises(ApiError, match="No servers defined"):
            generate_handle_request(operation)

    def test_option_server_wins(self):
        operation = _operation({"servers": [{"url": "https://op.example.com"}]})
        options = HandleOptions(server=Server(url="http://localhost:8080"))
        template = generate_handle_request(operation, options)
        assert template.request["url"] == {"$uri": "http://localhost:8080/things"}

    def test_operation_servers_beat_path_item(self):
        operation = _operation(
            {"servers": [{"url": "https://op.example.com"}]},
            path_item={"servers": [{"url": "https://item.example.com"}]},
        )
        template = generate_handle_request(operation)
        assert template.request["url"] == {"$uri": "https://op.example.com/things"}

    def test_path_item_servers_beat_api(self):
        operation = _operation({}, path_item={"servers": [{"url": "https://item.example.com"}]})
        template = generate_handle_request(operation)
        assert template.request["url"] == {"$uri": "https://item.example.com/things"}

    def test_server_variables_use_defaults(self):
        operation = _operation(
            {},
            servers=[
                {
                    "url": "https://{env}.example.com:{port}/{base}",
                    "variables": {
                        "env": {"default": "staging"},
                        "port": {"default": "8443"},
                        "base": {"default": "v2"},
                    },
                }
            ],
        )
        template = generate_handle_request(operation)
        assert template.request["url"] == {"$uri": "https://staging.example.com:8443/v2/things"}

    def test_undeclared_server_variable_expands_to_nothing(self):
        operation = _operation(
            {},
            servers=[{"url": "https://{env}.example.com/{base}", "variables": {"env": {"default": "eu"}}}],
        )
        template = generate_handle_request(operation)
        assert template.request["url"] == {"$uri": "https://eu.example.com//things"}

    def test_server_without_variables_is_verbatim(self):
        operation = _operation({}, servers=[{"url": "https://{tenant}.example.com"}])
        template = generate_handle_request(operation)
        assert template.request["url"] == {"$uri": "https://{tenant}.example.com/things"}


class TestTransform:
    def test_transform_is_applied(self):
        operation = _operation(
            {"parameters": [{"name": "id", "in": "query", "schema": {"type": "string", "format": "uuid"}}]},
        )

        def drop_format(node):
            return {key: value for key, value in node.items() if key != "format"}

        template = generate_handle_request(operation, HandleOptions(transform=drop_format))
        assert template.parameters["properties"] == {"id": {"type": "string"}}
