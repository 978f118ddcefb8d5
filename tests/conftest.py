"""Pytest configuration and shared fixtures."""

import copy
import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest


PETSTORE: Dict[str, Any] = {
    "openapi": "3.0.3",
    "info": {"title": "Petstore", "version": "1.0.0"},
    "paths": {
        "/pets": {
            "get": {
                "operationId": "listPets",
                "summary": "List all pets",
                "parameters": [
                    {
                        "name": "limit",
                        "in": "query",
                        "required": False,
                        "description": "How many items to return",
                        "schema": {"type": "integer", "minimum": 1, "maximum": 100},
                    },
                    {
                        "name": "status",
                        "in": "query",
                        "schema": {"type": "string", "enum": ["available", "sold"]},
                    },
                ],
            },
            "post": {
                "operationId": "createPet",
                "description": "Create a pet",
                "requestBody": {
                    "required": True,
                    "content": {
                        "application/json": {"schema": {"$ref": "#/components/schemas/Pet"}}
                    },
                },
            },
        },
        "/pets/{petId}": {
            "parameters": [
                {"name": "petId", "in": "path", "required": True, "schema": {"type": "integer"}}
            ],
            "get": {
                "operationId": "showPetById",
                "description": "Info for a specific pet",
                "parameters": [
                    {"name": "X-Trace-Id", "in": "header", "schema": {"type": "string"}}
                ],
            },
            "delete": {"description": "Delete a pet by id"},
        },
        "/pets/{petId}/photo": {
            "get": {
                "operationId": "getPetPhoto",
                "parameters": [
                    {"name": "petId", "in": "path", "required": True, "schema": {"type": "integer"}}
                ],
            }
        },
    },
    "components": {
        "schemas": {
            "Pet": {
                "type": "object",
                "description": "A pet in the store",
                "required": ["name"],
                "properties": {
                    "name": {"type": "string"},
                    "tag": {"type": "string"},
                    "birthday": {"type": "string", "format": "date-time"},
                },
            }
        }
    },
}


class FakeApi:
    """Records requests and answers them from a route table."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.routes: Dict[tuple, Callable[[httpx.Request], httpx.Response]] = {}

    def on(self, method: str, path: str, response: httpx.Response) -> None:
        self.routes[(method.upper(), path)] = lambda request: response

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": "not found"})
        return handler(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    @property
    def last_request(self) -> Optional[httpx.Request]:
        return self.requests[-1] if self.requests else None


@pytest.fixture
def petstore_spec() -> Dict[str, Any]:
    return copy.deepcopy(PETSTORE)


@pytest.fixture
def spec_file(tmp_path, petstore_spec):
    path = tmp_path / "petstore.json"
    path.write_text(json.dumps(petstore_spec), encoding="utf-8")
    return path


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: Unit tests with mocked dependencies")
