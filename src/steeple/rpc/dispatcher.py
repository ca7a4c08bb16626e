"""MCP JSON-RPC dispatcher.

Routes protocol methods to handlers, and tool names to read/write service
calls through an explicit command table. Envelopes in a batch run one at a
time, in order. Directory errors become JSON-RPC error objects; anything
else is logged and reported as a generic internal error.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qs, unquote, urlsplit

from steeple import __version__
from steeple.auth.identity import McpIdentity
from steeple.config import MCPConfig
from steeple.directory.entities import ENTITIES, EntitySpec, Selector, get_entity, read_id
from steeple.directory.errors import DirectoryError, ValidationError
from steeple.directory.read_service import ListQuery, ReadService
from steeple.directory.write_service import WriteService, require_admin, require_writer
from steeple.rpc.catalog import (
    JSON_MIME,
    READ_ACTIONS,
    WRITE_ACTIONS,
    build_resource_list,
    build_resource_templates,
    build_tool_list,
)
from steeple.rpc.protocol import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    RpcError,
    RpcRequest,
    error,
    is_conflict,
    success,
)
from steeple.utils.latency import timed_block

logger = logging.getLogger(__name__)

SERVER_NAME = "steeple"

Params = dict[str, Any]
MethodHandler = Callable[[Params, McpIdentity | None], Awaitable[Any]]


@dataclass(frozen=True)
class ToolCommand:
    """One entry of the tool table: an entity and the action to run on it."""

    spec: EntitySpec
    action: str

    @property
    def name(self) -> str:
        return f"{self.spec.name}_{self.action}"

    @property
    def writes(self) -> bool:
        return self.action in WRITE_ACTIONS


ToolHandler = Callable[[ToolCommand, Params, McpIdentity | None], Awaitable[Any]]


def build_command_table() -> dict[str, ToolCommand]:
    commands = [
        ToolCommand(spec, action)
        for spec in ENTITIES.values()
        for action in (*READ_ACTIONS, *WRITE_ACTIONS)
    ]
    return {command.name: command for command in commands}


# --- Argument helpers ---


def read_number(value: Any, default: int, minimum: int, maximum: int) -> int:
    """Clamp a numeric argument, falling back to the default for non-numbers."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if not math.isfinite(value):
        return default
    return min(maximum, max(minimum, int(value)))


def read_bool(value: Any, default: bool = False) -> bool:
    return value if isinstance(value, bool) else default


def read_string(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _query_number(query: dict[str, list[str]], key: str) -> float | None:
    values = query.get(key)
    if not values:
        return None
    try:
        return float(values[0])
    except ValueError:
        return None


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Non-standard JSON constant: {name}")


def _finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"Number out of range: {text}")
    return value


def parse_body(body: bytes | str) -> Any:
    """Decode strict JSON: no NaN/Infinity, no overflowing floats."""
    return json.loads(body, parse_constant=_reject_constant, parse_float=_finite_float)


def _object_params(params: Any) -> Params:
    return params if isinstance(params, dict) else {}


def tool_result(payload: Any) -> dict[str, Any]:
    return {
        "content": [{"type": "text", "text": json.dumps(payload)}],
        "isError": False,
    }


class McpDispatcher:
    """Executes JSON-RPC envelopes against the directory services."""

    def __init__(
        self,
        read_service: ReadService,
        write_service: WriteService,
        config: MCPConfig | None = None,
    ):
        self._read = read_service
        self._write = write_service
        self._config = config or MCPConfig()
        self._commands = build_command_table()
        self._methods: dict[str, MethodHandler] = {
            "initialize": self._initialize,
            "notifications/initialized": self._acknowledge,
            "ping": self._acknowledge,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
            "resources/list": self._list_resources,
            "resources/templates/list": self._list_resource_templates,
            "resources/read": self._read_resource,
        }
        self._tools: dict[str, ToolHandler] = {
            "list": self._tool_list,
            "get": self._tool_get,
            "create": self._tool_create,
            "update": self._tool_update,
            "delete": self._tool_delete,
            "restore": self._tool_restore,
        }

    # --- Envelopes ---

    async def handle_payload(
        self,
        body: bytes | str,
        identity: McpIdentity | None,
    ) -> tuple[int, Any]:
        """Process a raw HTTP body. Returns (status code, JSON body or None)."""
        try:
            payload = parse_body(body)
        except (ValueError, RecursionError):
            return 400, error(None, PARSE_ERROR, "Parse error")

        is_batch = isinstance(payload, list)
        envelopes = payload if is_batch else [payload]
        if not envelopes:
            return 400, error(None, INVALID_REQUEST, "Invalid Request")

        responses: list[dict[str, Any]] = []
        for envelope in envelopes:
            request = RpcRequest.parse(envelope)
            if request is None:
                responses.append(error(None, INVALID_REQUEST, "Invalid Request"))
                continue
            response = await self.handle_request(request, identity)
            if response is not None:
                responses.append(response)

        if not responses:
            return 202, None
        if is_batch:
            return 200, responses
        first = responses[0]
        return (409 if is_conflict(first) else 200), first

    async def handle_request(
        self,
        request: RpcRequest,
        identity: McpIdentity | None,
    ) -> dict[str, Any] | None:
        """Run one envelope. Notifications always return None."""
        handler = self._methods.get(request.method)
        if handler is None:
            if request.is_notification:
                return None
            return error(request.id, METHOD_NOT_FOUND, f"Method not found: {request.method}")

        try:
            with timed_block(logger, event="mcp_method", fields={"method": request.method}):
                result = await handler(_object_params(request.params), identity)
        except DirectoryError as e:
            if request.is_notification:
                logger.info("Notification %s failed: %s", request.method, e)
                return None
            rpc_error = RpcError.from_directory_error(e)
            return error(request.id, rpc_error.code, rpc_error.message, rpc_error.data)
        except Exception:
            logger.exception("Unhandled error in MCP method %s", request.method)
            if request.is_notification:
                return None
            return error(request.id, INTERNAL_ERROR, "Internal MCP error")

        if request.is_notification:
            return None
        return success(request.id, result)

    # --- Protocol methods ---

    async def _initialize(self, params: Params, identity: McpIdentity | None) -> dict[str, Any]:
        return {
            "protocolVersion": (
                read_string(params.get("protocolVersion")) or self._config.protocol_version
            ),
            "capabilities": {
                "tools": {"listChanged": False},
                "resources": {"listChanged": False, "subscribe": False},
            },
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
        }

    async def _acknowledge(self, params: Params, identity: McpIdentity | None) -> dict[str, Any]:
        return {}

    async def _list_tools(self, params: Params, identity: McpIdentity | None) -> dict[str, Any]:
        return {"tools": build_tool_list(identity)}

    async def _list_resources(
        self, params: Params, identity: McpIdentity | None,
    ) -> dict[str, Any]:
        return {"resources": build_resource_list(identity)}

    async def _list_resource_templates(
        self, params: Params, identity: McpIdentity | None,
    ) -> dict[str, Any]:
        return {"resourceTemplates": build_resource_templates()}

    async def _call_tool(self, params: Params, identity: McpIdentity | None) -> dict[str, Any]:
        name = read_string(params.get("name"))
        if name is None:
            raise ValidationError("tools/call requires a tool name")
        command = self._commands.get(name)
        if command is None:
            raise ValidationError(f"Unknown tool: {name}")
        arguments = _object_params(params.get("arguments"))
        payload = await self._tools[command.action](command, arguments, identity)
        return tool_result(payload)

    async def _read_resource(
        self, params: Params, identity: McpIdentity | None,
    ) -> dict[str, Any]:
        uri = read_string(params.get("uri"))
        if uri is None:
            raise ValidationError("resources/read requires uri")
        try:
            parts = urlsplit(uri)
        except ValueError as e:
            raise ValidationError(f"Unsupported resource uri: {uri}") from e

        spec = get_entity(parts.scheme)
        query = parse_qs(parts.query)
        include_deleted = query.get("include_deleted", [""])[0] == "true"
        mode = parts.netloc

        if mode == "list":
            payload = await self._read.list(spec, self._list_query(
                _query_number(query, "limit"), _query_number(query, "offset"), include_deleted,
            ), identity)
        elif mode in ("id", "path"):
            key = unquote(parts.path.lstrip("/"))
            if not key:
                raise ValidationError("resources/read id/path uri must contain a value")
            if mode == "id":
                record_id = read_id(key)
                if record_id is None:
                    raise ValidationError(f"Invalid id in resource uri: {uri}")
                selector = Selector(id=record_id)
            else:
                selector = Selector(path=key)
            payload = await self._read.get(spec, selector, include_deleted, identity)
        else:
            raise ValidationError(f"Unsupported resource uri: {uri}")

        return {"contents": [{"uri": uri, "mimeType": JSON_MIME, "text": json.dumps(payload)}]}

    # --- Tools ---

    def _list_query(self, limit: Any, offset: Any, include_deleted: bool) -> ListQuery:
        return ListQuery(
            limit=read_number(limit, self._config.default_limit, 1, self._config.max_limit),
            offset=read_number(offset, 0, 0, self._config.max_offset),
            include_deleted=include_deleted,
        )

    @staticmethod
    def _selector(command: ToolCommand, args: Params) -> Selector:
        record_id = read_id(args.get("id"))
        path = read_string(args.get("path"))
        if record_id is None and path is None:
            raise ValidationError(f"{command.name} requires id or path")
        return Selector(id=record_id, path=path)

    @staticmethod
    def _expected_version(args: Params) -> Any:
        if "updated_at" in args:
            return args["updated_at"]
        return args.get("updatedAt")

    async def _tool_list(
        self, command: ToolCommand, args: Params, identity: McpIdentity | None,
    ) -> dict[str, Any]:
        query = self._list_query(
            args.get("limit"), args.get("offset"), read_bool(args.get("include_deleted")),
        )
        return await self._read.list(command.spec, query, identity)

    async def _tool_get(
        self, command: ToolCommand, args: Params, identity: McpIdentity | None,
    ) -> dict[str, Any]:
        return await self._read.get(
            command.spec,
            self._selector(command, args),
            read_bool(args.get("include_deleted")),
            identity,
        )

    async def _tool_create(
        self, command: ToolCommand, args: Params, identity: McpIdentity | None,
    ) -> dict[str, Any]:
        require_writer(identity)
        data = args["data"] if "data" in args else args
        return await self._write.create(command.spec, identity, data)

    async def _tool_update(
        self, command: ToolCommand, args: Params, identity: McpIdentity | None,
    ) -> dict[str, Any]:
        require_writer(identity)
        patch = args.get("patch", args.get("data"))
        if patch is None:
            raise ValidationError(f"{command.name} requires a patch object")
        return await self._write.update(
            command.spec,
            identity,
            self._selector(command, args),
            self._expected_version(args),
            patch,
        )

    async def _tool_delete(
        self, command: ToolCommand, args: Params, identity: McpIdentity | None,
    ) -> dict[str, Any]:
        require_writer(identity)
        return await self._write.delete(
            command.spec, identity, self._selector(command, args), self._expected_version(args),
        )

    async def _tool_restore(
        self, command: ToolCommand, args: Params, identity: McpIdentity | None,
    ) -> dict[str, Any]:
        require_admin(identity, command.spec)
        return await self._write.restore(
            command.spec, identity, self._selector(command, args), self._expected_version(args),
        )
