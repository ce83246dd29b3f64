import json
import shutil
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from pydantic import ValidationError

from tool_api.errors import ApiError
from tool_api.generator.validator import validate_files
from tool_api.parser.document import parse_api
from tool_api.parser.loader import load_openapi_file
from tool_api.pipeline import (
    GenerateSettings,
    OperationFilter,
    generate_batch,
    generate_document,
    handle_file_path,
)

FIXTURES = Path(__file__).parent / "fixtures"
PETSTORE = FIXTURES / "petstore.yaml"


def _operations():
    api = parse_api(load_openapi_file(PETSTORE))
    return {(op.method, op.path): op for op in api.operations()}


class TestOperationFilter:
    def test_no_filter_matches_everything(self):
        assert all(OperationFilter().matches(op) for op in _operations().values())

    def test_tags(self):
        operations = _operations()
        operation_filter = OperationFilter(tags="owners, admin")
        assert operation_filter.matches(operations[("GET", "/owners/{ownerId}")])
        assert not operation_filter.matches(operations[("GET", "/pets")])

    def test_include_applies_to_identified_operations(self):
        operations = _operations()
        operation_filter = OperationFilter(include="^list")
        assert operation_filter.matches(operations[("GET", "/pets")])
        assert not operation_filter.matches(operations[("GET", "/pets/{petId}")])
        # No operationId
        assert operation_filter.matches(operations[("GET", "/owners/{ownerId}")])

    def test_exclude(self):
        operations = _operations()
        operation_filter = OperationFilter(exclude="Pet")
        assert not operation_filter.matches(operations[("GET", "/pets")])
        assert not operation_filter.matches(operations[("POST", "/pets")])
        assert operation_filter.matches(operations[("GET", "/owners/{ownerId}")])

    @pytest.mark.parametrize("field", ["include", "exclude"])
    def test_invalid_pattern(self, field):
        with pytest.raises(ValidationError, match="invalid regular expression"):
            OperationFilter(**{field: "(unclosed"})


class TestHandleFilePath:
    def test_simple(self):
        assert handle_file_path(Path("out"), "listPets", "json") == Path("out/listPets.json")

    def test_segments_become_directories(self):
        assert handle_file_path(Path("out"), "pets/createPet", "yaml") == Path("out/pets/createPet.yaml")


class TestGenerateDocument:
    def test_writes_handles(self, tmp_path):
        stats = generate_document(PETSTORE, GenerateSettings(output_dir=tmp_path))
        assert (stats.operations, stats.generated, stats.skipped, stats.failed) == (4, 3, 1, 0)

        data = json.loads((tmp_path / "listPets.json").read_text(encoding="utf-8"))
        assert data["name"] == "listPets"
        assert data["request"]["url"] == {"$uri": "https://eu.petstore.example/v1/pets{?limit}"}
        assert (tmp_path / "pets" / "createPet.json").exists()
        assert (tmp_path / "showPetById.json").exists()

    def test_written_files_validate(self, tmp_path):
        generate_document(PETSTORE, GenerateSettings(output_dir=tmp_path))
        files = {str(p.relative_to(tmp_path)): p.read_text(encoding="utf-8") for p in tmp_path.rglob("*.json")}
        assert len(files) == 3
        assert validate_files(files) == {}

    def test_yaml_output(self, tmp_path):
        generate_document(PETSTORE, GenerateSettings(output_dir=tmp_path, format="yaml"))
        data = yaml.safe_load((tmp_path / "showPetById.yaml").read_text(encoding="utf-8"))
        assert list(data) == ["name", "parameters", "handler", "request", "responses"]
        assert data["request"]["url"] == {"$uri": "https://eu.petstore.example/v1/pets/{petId}"}

    def test_dry_run_writes_nothing(self, tmp_path):
        stats = generate_document(PETSTORE, GenerateSettings(output_dir=tmp_path, dry_run=True))
        assert stats.generated == 3
        assert [operation_id for operation_id, _ in stats.files] == ["listPets", "pets/createPet", "showPetById"]
        assert list(tmp_path.iterdir()) == []

    def test_skip_existing(self, tmp_path):
        existing = tmp_path / "listPets.json"
        existing.write_text("{}", encoding="utf-8")
        stats = generate_document(PETSTORE, GenerateSettings(output_dir=tmp_path, skip_existing=True))
        assert stats.generated == 2
        assert stats.skipped == 2
        assert existing.read_text(encoding="utf-8") == "{}"

    def test_no_overwrite(self, tmp_path):
        existing = tmp_path / "listPets.json"
        existing.write_text("{}", encoding="utf-8")
        stats = generate_document(PETSTORE, GenerateSettings(output_dir=tmp_path, overwrite=False))
        assert stats.skipped == 2
        assert existing.read_text(encoding="utf-8") == "{}"

    def test_overwrite_by_default(self, tmp_path):
        existing = tmp_path / "listPets.json"
        existing.write_text("{}", encoding="utf-8")
        generate_document(PETSTORE, GenerateSettings(output_dir=tmp_path))
        assert json.loads(existing.read_text(encoding="utf-8"))["name"] == "listPets"

    def test_filter(self, tmp_path):
        settings = GenerateSettings(output_dir=tmp_path, filter=OperationFilter(include="^show"))
        stats = generate_document(PETSTORE, settings)
        assert stats.generated == 1
        assert (tmp_path / "showPetById.json").exists()

    def test_server_url_override(self, tmp_path):
        generate_document(PETSTORE, GenerateSettings(output_dir=tmp_path, server_url="http://localhost:4010"))
        data = json.loads((tmp_path / "showPetById.json").read_text(encoding="utf-8"))
        assert data["request"]["url"] == {"$uri": "http://localhost:4010/pets/{petId}"}

    def test_failed_operations_are_counted(self, tmp_path):
        doc = tmp_path / "api.json"
        doc.write_text(
            json.dumps({"openapi": "3.1.0", "paths": {"/a": {"get": {"operationId": "a"}}}}),
            encoding="utf-8",
        )
        stats = generate_document(doc, GenerateSettings(output_dir=tmp_path / "out"))
        assert stats.failed == 1
        assert stats.generated == 0

    @patch("tool_api.pipeline.validate_handle", return_value="ValidationError: parameters: must be an object schema")
    def test_invalid_handles_are_not_written(self, mock_validate, tmp_path):
        stats = generate_document(PETSTORE, GenerateSettings(output_dir=tmp_path))
        assert stats.failed == 3
        assert stats.generated == 0
        assert mock_validate.call_count == 3
        assert list(tmp_path.iterdir()) == []

    def test_split_parameters_document(self, tmp_path):
        generate_document(FIXTURES / "split_params" / "openapi.yaml", GenerateSettings(output_dir=tmp_path))
        data = json.loads((tmp_path / "listItems.json").read_text(encoding="utf-8"))
        assert data["parameters"]["properties"]["limit"] == {"$ref": "#/$defs/LimitSchema", "description": "Page size"}
        assert data["parameters"]["$defs"] == {"LimitSchema": {"type": "integer", "maximum": 100}}

    def test_split_document(self, tmp_path):
        stats = generate_document(FIXTURES / "split" / "openapi.yaml", GenerateSettings(output_dir=tmp_path))
        assert stats.generated == 1
        data = json.loads((tmp_path / "listItems.json").read_text(encoding="utf-8"))
        template = data["responses"]["200"]
        assert template["$block"][0] == {"$h1": "List"}
        assert template["$block"][-1]["$block"][0] == {"$h2": {"$": "item.title"}}

    def test_unparsable_document(self, tmp_path):
        doc = tmp_path / "api.json"
        doc.write_text('{"openapi": "3.1.0", "components": {"schemas": {"A": {"$ref": "#/missing"}}}}')
        with pytest.raises(ApiError, match="Unresolvable reference"):
            generate_document(doc, GenerateSettings(output_dir=tmp_path))


class TestGenerateBatch:
    def _workspace(self, tmp_path):
        for name in ("a", "b"):
            directory = tmp_path / name
            directory.mkdir()
            shutil.copy(PETSTORE, directory / "openapi.yaml")
        return sorted(tmp_path.glob("*/openapi.yaml"))

    def test_batch(self, tmp_path):
        files = self._workspace(tmp_path)
        stats = generate_batch(files, GenerateSettings(), subdir="handles", concurrent=2)
        assert stats.processed_files == 2
        assert stats.handles.operations == 8
        assert stats.handles.generated == 6
        assert (tmp_path / "a" / "handles" / "listPets.json").exists()
        assert (tmp_path / "b" / "handles" / "pets" / "createPet.json").exists()

    def test_unsupported_versions_are_skipped(self, tmp_path):
        files = self._workspace(tmp_path)
        swagger = tmp_path / "swagger.json"
        swagger.write_text('{"swagger": "2.0"}')
        stats = generate_batch(files + [swagger], GenerateSettings())
        assert stats.processed_files == 2
        assert stats.skipped_files == 1

    def test_errors_skipped(self, tmp_path):
        broken = tmp_path / "broken.yaml"
        broken.write_text("key: [invalid\n")
        stats = generate_batch([broken], GenerateSettings())
        assert stats.failed_files == 1
        assert stats.processed_files == 0

    def test_errors_raised(self, tmp_path):
        broken = tmp_path / "broken.yaml"
        broken.write_text("key: [invalid\n")
        with pytest.raises(ApiError, match="Failed to load OpenAPI file"):
            generate_batch([broken], GenerateSettings(), skip_errors=False)
