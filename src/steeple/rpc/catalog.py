"""Tool and resource catalog advertised by the MCP endpoint.

Anonymous callers only see the read tools. Write tools are listed once a
bearer identity is present; restore is listed for every writer so the
catalog does not leak role details, and is refused at call time.
"""

from __future__ import annotations

from typing import Any

from steeple.auth.identity import McpIdentity
from steeple.directory.entities import ENTITIES, EntitySpec

READ_ACTIONS = ("list", "get")
WRITE_ACTIONS = ("create", "update", "delete", "restore")

JSON_MIME = "application/json"

# --- Tool Schemas ---

LIST_SCHEMA = {
    "type": "object",
    "properties": {
        "limit": {"type": "number", "minimum": 1, "maximum": 200},
        "offset": {"type": "number", "minimum": 0},
        "include_deleted": {"type": "boolean"},
    },
    "additionalProperties": False,
}

GET_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": "number", "description": "Numeric id; wins over path"},
        "path": {"type": "string", "description": "Path slug"},
        "include_deleted": {"type": "boolean"},
    },
    "additionalProperties": False,
}

_SELECTOR_PROPERTIES = {
    "id": {"type": "number"},
    "path": {"type": "string"},
    "updated_at": {
        "type": "string",
        "description": "The updated_at value last read from this record",
    },
}

CREATE_SCHEMA = {
    "type": "object",
    "properties": {
        "data": {
            "type": "object",
            "description": "Column values; path defaults to a slug of name",
        },
    },
    "additionalProperties": True,
}

UPDATE_SCHEMA = {
    "type": "object",
    "properties": {
        **_SELECTOR_PROPERTIES,
        "patch": {"type": "object", "description": "Columns to change"},
    },
    "required": ["updated_at", "patch"],
}

DELETE_SCHEMA = {
    "type": "object",
    "properties": dict(_SELECTOR_PROPERTIES),
    "required": ["updated_at"],
}

RESTORE_SCHEMA = DELETE_SCHEMA

_SCHEMAS = {
    "list": LIST_SCHEMA,
    "get": GET_SCHEMA,
    "create": CREATE_SCHEMA,
    "update": UPDATE_SCHEMA,
    "delete": DELETE_SCHEMA,
    "restore": RESTORE_SCHEMA,
}


def _describe(spec: EntitySpec, action: str) -> str:
    singular = spec.singular
    if action == "list":
        return f"List {spec.name} with offset pagination."
    if action == "get":
        return f"Get one {singular} by id or path."
    if action == "create":
        return f"Create one {singular} record (authenticated write tool)."
    if action == "update":
        return (
            f"Update one {singular} record with optimistic concurrency "
            "(authenticated write tool)."
        )
    if action == "delete":
        return f"Soft delete one {singular} record (authenticated write tool)."
    return f"Restore one soft-deleted {singular} record (admin-only write tool)."


def tool_definition(spec: EntitySpec, action: str) -> dict[str, Any]:
    return {
        "name": f"{spec.name}_{action}",
        "description": _describe(spec, action),
        "inputSchema": _SCHEMAS[action],
    }


def build_tool_list(identity: McpIdentity | None) -> list[dict[str, Any]]:
    tools = [
        tool_definition(spec, action)
        for spec in ENTITIES.values()
        for action in READ_ACTIONS
    ]
    if identity is not None:
        tools.extend(
            tool_definition(spec, action)
            for spec in ENTITIES.values()
            for action in WRITE_ACTIONS
        )
    return tools


def build_resource_list(identity: McpIdentity | None) -> list[dict[str, Any]]:
    hint = " (supports include_deleted=true)" if identity is not None and identity.is_admin else ""
    return [
        {
            "uri": f"{spec.name}://list",
            "name": spec.name.capitalize(),
            "mimeType": JSON_MIME,
            "description": f"{spec.label} list resource{hint}.",
        }
        for spec in ENTITIES.values()
    ]


def build_resource_templates() -> list[dict[str, Any]]:
    templates: list[dict[str, Any]] = []
    for spec in ENTITIES.values():
        templates.append({
            "uriTemplate": f"{spec.name}://id/{{id}}",
            "name": f"{spec.label} By ID",
            "mimeType": JSON_MIME,
            "description": f"Read a {spec.singular} by numeric id.",
        })
        templates.append({
            "uriTemplate": f"{spec.name}://path/{{path}}",
            "name": f"{spec.label} By Path",
            "mimeType": JSON_MIME,
            "description": f"Read a {spec.singular} by path slug.",
        })
    return templates
