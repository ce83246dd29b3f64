from pathlib import Path

import pytest

from tool_api.errors import ApiError
from tool_api.parser.loader import detect_format, file_retriever, load_openapi_file

FIXTURES = Path(__file__).parent / "fixtures"


class TestDetectFormat:
    def test_yaml_suffix(self):
        assert detect_format(FIXTURES / "petstore.yaml") == "yaml"

    def test_json_suffix(self, tmp_path):
        f = tmp_path / "api.json"
        f.write_text("{}")
        assert detect_format(f) == "json"

    def test_sniff_json_content(self, tmp_path):
        f = tmp_path / "api.txt"
        f.write_text('{"openapi": "3.1.0"}')
        assert detect_format(f) == "json"

    def test_sniff_yaml_content(self, tmp_path):
        f = tmp_path / "api"
        f.write_text("openapi: 3.1.0\n")
        assert detect_format(f) == "yaml"

    def test_flow_yaml_is_not_json(self, tmp_path):
        f = tmp_path / "api.txt"
        f.write_text("{openapi: 3.1.0}")
        assert detect_format(f) == "yaml"


class TestLoadOpenApiFile:
    def test_load_yaml(self):
        node = load_openapi_file(FIXTURES / "petstore.yaml")
        assert node["openapi"] == "3.1.0"
        assert "/pets" in node["paths"]

    def test_load_json(self, tmp_path):
        f = tmp_path / "api.json"
        f.write_text('{"openapi": "3.1.0", "paths": {}}')
        assert load_openapi_file(f) == {"openapi": "3.1.0", "paths": {}}

    def test_missing_file(self, tmp_path):
        missing = tmp_path / "missing.yaml"
        with pytest.raises(ApiError, match="Failed to load OpenAPI file") as exc_info:
            load_openapi_file(missing)
        assert isinstance(exc_info.value.__cause__, OSError)

    def test_invalid_json(self, tmp_path):
        f = tmp_path / "api.json"
        f.write_text("{broken")
        with pytest.raises(ApiError, match="Failed to load OpenAPI file"):
            load_openapi_file(f)

    def test_invalid_yaml(self, tmp_path):
        f = tmp_path / "api.yaml"
        f.write_text("key: [invalid\n")
        with pytest.raises(ApiError, match="Failed to load OpenAPI file"):
            load_openapi_file(f)


class TestFileRetriever:
    def test_relative_path(self):
        retrieve = file_retriever(FIXTURES / "split")
        node = retrieve("schemas.yaml")
        assert set(node) == {"Item", "Dimensions"}

    def test_file_uri(self):
        path = (FIXTURES / "split" / "schemas.yaml").resolve()
        retrieve = file_retriever(Path("/nonexistent"))
        assert "Item" in retrieve(path.as_uri())
