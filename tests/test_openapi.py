"""Unit tests for spec loading and operation extraction."""

import json

import httpx
import pytest

from openapi_mcp_bridge.auth import ApiKeyAuth, AuthConfig, AuthState, AuthType
from openapi_mcp_bridge.client import OpenAPIClient
from openapi_mcp_bridge.models import ParameterValue
from openapi_mcp_bridge.openapi import (
    SpecLoadError,
    derive_operation_id,
    extract_operations,
    fetch_openapi_spec,
    load_openapi_spec,
    load_operations,
    parse_document,
    resolve_refs,
)


YAML_SPEC = """\
openapi: 3.0.0
info:
  title: Minimal
  version: "1"
paths:
  /ping:
    get:
      operationId: ping
"""


class TestLoadOpenapiSpec:
    def test_remote_url_passes_through(self):
        assert load_openapi_spec("https://example.com/openapi.json") == "https://example.com/openapi.json"

    def test_json_file(self, spec_file, petstore_spec):
        assert load_openapi_spec(str(spec_file)) == petstore_spec

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "spec.yaml"
        path.write_text(YAML_SPEC, encoding="utf-8")

        document = load_openapi_spec(str(path))

        assert document["paths"]["/ping"]["get"]["operationId"] == "ping"

    def test_json_detected_by_content(self):
        assert parse_document('  {"openapi": "3.0.0"}', "spec.txt") == {"openapi": "3.0.0"}

    def test_missing_file(self, tmp_path):
        with pytest.raises(SpecLoadError, match="Failed to read"):
            load_openapi_spec(str(tmp_path / "missing.yaml"))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{broken", encoding="utf-8")

        with pytest.raises(SpecLoadError, match="Failed to parse"):
            load_openapi_spec(str(path))

    def test_document_must_be_mapping(self):
        with pytest.raises(SpecLoadError, match="not a mapping"):
            parse_document("- just\n- a list\n", "spec.yaml")


class TestFetchOpenapiSpec:
    @pytest.mark.asyncio
    async def test_fetches_and_parses(self, fake_api):
        fake_api.on("GET", "/openapi.yaml", httpx.Response(200, text=YAML_SPEC))

        document = await fetch_openapi_spec("https://specs.example.com/openapi.yaml", transport=fake_api.transport())

        assert document["info"]["title"] == "Minimal"

    @pytest.mark.asyncio
    async def test_non_200_fails(self, fake_api):
        with pytest.raises(SpecLoadError, match="HTTP 404"):
            await fetch_openapi_spec("https://specs.example.com/missing.json", transport=fake_api.transport())


class TestDeriveOperationId:
    def test_operation_id_wins(self):
        assert derive_operation_id({"operationId": "listPets", "description": "x"}, "get", "/pets") == "listPets"

    def test_from_description(self):
        operation = {"description": "Test operation with spaces & symbols!"}

        assert derive_operation_id(operation, "get", "/x") == "Test_operation_with_spaces___symbols_"

    def test_description_is_truncated(self):
        assert len(derive_operation_id({"description": "a" * 100}, "get", "/x")) == 64

    def test_from_method_and_path(self):
        assert derive_operation_id({}, "post", "/test/resource/123") == "post__test_resource_123"

    def test_long_path_keeps_its_tail(self):
        path = "/" + "segment/" * 20 + "end"

        derived = derive_operation_id({}, "get", path)

        assert derived.startswith("get_")
        assert derived.endswith("_end")
        assert len(derived) == len("get_") + 55


class TestResolveRefs:
    def test_inlines_local_references(self, petstore_spec):
        document = resolve_refs(petstore_spec)

        schema = document["paths"]["/pets"]["post"]["requestBody"]["content"]["application/json"]["schema"]
        assert schema["required"] == ["name"]
        assert "$ref" not in schema

    def test_sibling_keys_override_target(self):
        document = {
            "components": {"schemas": {"Name": {"type": "string", "description": "base"}}},
            "value": {"$ref": "#/components/schemas/Name", "description": "override"},
        }

        assert resolve_refs(document)["value"] == {"type": "string", "description": "override"}

    def test_circular_reference_terminates(self):
        document = {
            "components": {
                "schemas": {
                    "Node": {
                        "type": "object",
                        "properties": {"child": {"$ref": "#/components/schemas/Node"}},
                    }
                }
            }
        }

        node = resolve_refs(document)["components"]["schemas"]["Node"]

        assert node["properties"]["child"]["properties"]["child"] == {"type": "object"}

    def test_unresolvable_reference_is_dropped(self):
        resolved = resolve_refs({"value": {"$ref": "#/nowhere", "description": "kept"}})

        assert resolved["value"] == {"description": "kept"}

    def test_input_is_not_mutated(self, petstore_spec):
        resolve_refs(petstore_spec)

        schema = petstore_spec["paths"]["/pets"]["post"]["requestBody"]["content"]["application/json"]["schema"]
        assert schema == {"$ref": "#/components/schemas/Pet"}


class TestExtractOperations:
    def extract(self, document):
        client = OpenAPIClient("https://api.example.com")
        return client, {entry.operation_id: entry for entry in extract_operations(resolve_refs(document), client)}

    def test_one_entry_per_operation(self, petstore_spec):
        client, entries = self.extract(petstore_spec)

        assert set(entries) == {"listPets", "createPet", "showPetById", "Delete_a_pet_by_id", "getPetPhoto"}
        assert client.routes[("delete", "/pets/{petId}")] == "Delete_a_pet_by_id"

    def test_description_falls_back_to_summary(self, petstore_spec):
        _, entries = self.extract(petstore_spec)

        assert entries["listPets"].description == "List all pets"
        assert entries["showPetById"].description == "Info for a specific pet"

    def test_path_level_parameters_are_merged(self, petstore_spec):
        _, entries = self.extract(petstore_spec)

        parameters = entries["showPetById"].parameters
        assert [(param.name, param.location) for param in parameters] == [
            ("petId", "path"),
            ("X-Trace-Id", "header"),
        ]
        assert parameters[0].required is True

    def test_operation_parameter_overrides_path_level(self):
        document = {
            "paths": {
                "/items/{id}": {
                    "parameters": [{"name": "id", "in": "path", "required": True, "schema": {"type": "string"}}],
                    "get": {
                        "operationId": "getItem",
                        "parameters": [
                            {"name": "id", "in": "path", "required": True, "schema": {"type": "integer"}}
                        ],
                    },
                }
            }
        }

        _, entries = self.extract(document)

        assert [param.schema for param in entries["getItem"].parameters] == [{"type": "integer"}]

    def test_request_body_becomes_body_parameter(self, petstore_spec):
        _, entries = self.extract(petstore_spec)

        body = entries["createPet"].parameters[-1]
        assert body.name == "body"
        assert body.location == "body"
        assert body.required is True
        assert body.schema["properties"]["birthday"]["format"] == "date-time"
        assert body.description == "A pet in the store"

    def test_non_json_request_body(self):
        document = {
            "paths": {
                "/upload": {
                    "post": {
                        "operationId": "upload",
                        "requestBody": {"content": {"text/plain": {"schema": {"type": "string"}}}},
                    }
                }
            }
        }

        _, entries = self.extract(document)

        body = entries["upload"].parameters[0]
        assert body.schema == {"type": "string"}
        assert body.required is False

    def test_swagger2_inline_parameter_schema(self):
        document = {
            "paths": {
                "/search": {
                    "get": {
                        "operationId": "search",
                        "parameters": [{"name": "q", "in": "query", "type": "string", "required": True}],
                    }
                }
            }
        }

        _, entries = self.extract(document)

        assert entries["search"].parameters[0].schema["type"] == "string"

    def test_unknown_keys_are_ignored(self):
        document = {"paths": {"/x": {"summary": "not an operation", "x-internal": True}}}

        _, entries = self.extract(document)

        assert entries == {}


class TestLoadOperations:
    @pytest.mark.asyncio
    async def test_entries_call_the_api(self, spec_file, fake_api):
        fake_api.on("GET", "/pets/5", httpx.Response(200, json={"id": 5, "name": "Rex"}))
        auth = AuthConfig(type=AuthType.API_KEY, api_key=ApiKeyAuth(key="secret", header_name="X-API-Key"))

        operations = await load_operations(
            str(spec_file),
            "https://api.example.com",
            extra_headers={"X-API-Key": "overridden", "X-Tenant": "acme"},
            auth_config=auth,
            auth_state=AuthState(),
            transport=fake_api.transport(),
        )
        entry = next(op for op in operations if op.operation_id == "showPetById")
        response = await entry.callback([ParameterValue("petId", "path", 5)], None)

        assert response.data == {"id": 5, "name": "Rex"}
        request = fake_api.last_request
        assert request.headers["X-API-Key"] == "secret"
        assert request.headers["X-Tenant"] == "acme"

    @pytest.mark.asyncio
    async def test_remote_spec_is_fetched(self, petstore_spec, fake_api):
        fake_api.on("GET", "/openapi.json", httpx.Response(200, text=json.dumps(petstore_spec)))

        operations = await load_operations(
            "https://specs.example.com/openapi.json",
            "https://api.example.com",
            auth_config=AuthConfig(),
            auth_state=AuthState(),
            transport=fake_api.transport(),
        )

        assert len(operations) == 5

    @pytest.mark.asyncio
    async def test_missing_spec_file(self, tmp_path):
        with pytest.raises(SpecLoadError):
            await load_operations(
                str(tmp_path / "none.json"),
                "https://api.example.com",
                auth_config=AuthConfig(),
                auth_state=AuthState(),
            )

