"""Model Context Protocol server for cached site content.

The server speaks JSON-RPC 2.0 over stdio, one message per line. Tools map
onto SiteFetchOperations; captured sites are exposed as ``sitefetch://``
resources. Requests are dispatched as independent tasks so a slow crawl does
not block listing or reading other sites.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any, Callable

from .logging_utils import get_logger
from .operations import SiteFetchOperations
from .resources import MIME_TYPE, URI_TEMPLATE
from .types import OperationResult


PROTOCOL_VERSION = "2024-11-05"

PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
RESOURCE_NOT_FOUND = -32002

TOOLS = [
    {
        "name": "fetch-site",
        "description": (
            "Fetch the full text of a website and cache it. Cached content is reused "
            "unless forceRefresh is set. The content becomes available as a "
            "sitefetch:// resource."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "url": {"type": "string", "format": "uri", "description": "The site URL to fetch."},
                "forceRefresh": {
                    "type": "boolean",
                    "description": "Capture the site again even if it is cached.",
                    "default": False,
                },
                "addToContext": {
                    "type": "boolean",
                    "description": "Announce the resulting resource to the client.",
                    "default": True,
                },
            },
            "required": ["url"],
        },
    },
    {
        "name": "list-sites",
        "description": "List every cached site with its resource identifier and fetch time.",
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "clear-cache",
        "description": "Delete every cached site and reset the index.",
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "add-to-context",
        "description": "Announce an already cached site as a resource. Does not fetch.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "url": {"type": "string", "format": "uri", "description": "A previously fetched URL."},
            },
            "required": ["url"],
        },
    },
    {
        "name": "remove-site",
        "description": "Remove one site from the cache.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "url": {"type": "string", "format": "uri", "description": "The cached URL to remove."},
            },
            "required": ["url"],
        },
    },
    {
        "name": "reconcile-cache",
        "description": "Drop index entries without content and delete unindexed files.",
        "inputSchema": {"type": "object", "properties": {}},
    },
]

RESOURCE_TEMPLATES = [
    {
        "uriTemplate": URI_TEMPLATE,
        "name": "site-content",
        "description": "Full text of a fetched website.",
        "mimeType": MIME_TYPE,
    }
]


class RequestError(Exception):
    """Turns into a JSON-RPC error response."""

    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def _response(request_id: Any, result: dict[str, Any]) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _error(request_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def _tool_result(result: OperationResult) -> dict[str, Any]:
    payload: dict[str, Any] = {"content": [{"type": "text", "text": result.text}]}
    if not result.ok:
        payload["isError"] = True
    return payload


def _require_str(arguments: dict[str, Any], name: str) -> str:
    value = arguments.get(name)
    if not isinstance(value, str):
        raise RequestError(INVALID_PARAMS, f"'{name}' must be a string")
    return value


def _optional_bool(arguments: dict[str, Any], name: str, default: bool) -> bool:
    value = arguments.get(name, default)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise RequestError(INVALID_PARAMS, f"'{name}' must be a boolean")
    return value


class SiteFetchServer:
    """Dispatches MCP requests onto SiteFetchOperations.

    ``send`` writes one outgoing message. The operations' notifier is wired to
    emit ``notifications/resources/list_changed`` through it.
    """

    def __init__(
        self,
        operations: SiteFetchOperations,
        name: str = "SiteFetch MCP Server",
        version: str = "1.0.0",
        send: Callable[[dict[str, Any]], None] | None = None,
        logger: logging.Logger | None = None,
    ):
        self.operations = operations
        self.name = name
        self.version = version
        self.send = send or _write_stdout
        self.logger = logger or get_logger("server")
        self.operations.notifier = self.notify_resources_changed

    def notify_resources_changed(self, identifier: str) -> None:
        self.logger.debug("Announcing resource %s", identifier)
        self.send({"jsonrpc": "2.0", "method": "notifications/resources/list_changed"})

    async def handle_request(self, request: dict[str, Any]) -> dict[str, Any] | None:
        """Handle one JSON-RPC message; returns None for notifications."""
        method = request.get("method")
        method = method if isinstance(method, str) else ""
        request_id = request.get("id")
        params = request.get("params") or {}
        if not isinstance(params, dict):
            return _error(request_id, INVALID_PARAMS, "params must be an object")
        is_notification = "id" not in request

        try:
            if method == "initialize":
                result = {
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": {
                        "tools": {},
                        "resources": {"listChanged": True},
                    },
                    "serverInfo": {"name": self.name, "version": self.version},
                }
            elif method.startswith("notifications/"):
                return None
            elif method == "ping":
                result = {}
            elif method == "tools/list":
                result = {"tools": TOOLS}
            elif method == "tools/call":
                arguments = params.get("arguments") or {}
                if not isinstance(arguments, dict):
                    raise RequestError(INVALID_PARAMS, "arguments must be an object")
                result = await self._call_tool(params.get("name"), arguments)
                if result is None:
                    return _error(request_id, METHOD_NOT_FOUND, f"Unknown tool: {params.get('name')}")
            elif method == "resources/list":
                result = await self._list_resources()
            elif method == "resources/templates/list":
                result = {"resourceTemplates": RESOURCE_TEMPLATES}
            elif method == "resources/read":
                uri = _require_str(params, "uri")
                read = await self.operations.read_resource(uri)
                if not read.ok:
                    return _error(request_id, RESOURCE_NOT_FOUND, read.text)
                result = {"contents": [{"uri": uri, "mimeType": MIME_TYPE, "text": read.text}]}
            else:
                return None if is_notification else _error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")
        except RequestError as exc:
            return _error(request_id, exc.code, exc.message)

        if is_notification:
            return None
        return _response(request_id, result)

    async def _call_tool(self, name: Any, arguments: dict[str, Any]) -> dict[str, Any] | None:
        ops = self.operations
        if name == "fetch-site":
            result = await ops.fetch_site(
                _require_str(arguments, "url"),
                force_refresh=_optional_bool(arguments, "forceRefresh", False),
                add_to_context=_optional_bool(arguments, "addToContext", True),
            )
        elif name == "list-sites":
            result = await ops.list_sites()
        elif name == "clear-cache":
            result = await ops.clear_cache()
        elif name == "add-to-context":
            result = await ops.add_to_context(_require_str(arguments, "url"))
        elif name == "remove-site":
            result = await ops.remove_site(_require_str(arguments, "url"))
        elif name == "reconcile-cache":
            result = await ops.reconcile_cache()
        else:
            return None
        return _tool_result(result)

    async def _list_resources(self) -> dict[str, Any]:
        listed = await self.operations.list_sites()
        if not listed.ok:
            raise RequestError(INTERNAL_ERROR, listed.text)
        return {
            "resources": [
                {
                    "uri": item.identifier,
                    "name": item.display_name,
                    "description": item.description,
                    "mimeType": MIME_TYPE,
                }
                for item in listed.data["sites"]
            ]
        }

    async def _handle_line(self, line: str) -> None:
        try:
            request = json.loads(line)
        except json.JSONDecodeError:
            self.send(_error(None, PARSE_ERROR, "Parse error"))
            return
        if not isinstance(request, dict):
            self.send(_error(None, PARSE_ERROR, "Parse error"))
            return
        try:
            response = await self.handle_request(request)
        except Exception as exc:  # noqa: BLE001
            self.logger.exception("Request %r failed", request.get("method"))
            if "id" not in request:
                return
            response = _error(request.get("id"), INTERNAL_ERROR, f"Internal error: {type(exc).__name__}: {exc}")
        if response is not None:
            self.send(response)

    async def serve(self, read_line: Callable[[], str] | None = None) -> None:
        """Read requests until EOF, handling each in its own task."""
        read_line = read_line or sys.stdin.readline
        loop = asyncio.get_running_loop()
        pending: set[asyncio.Task] = set()
        while True:
            line = await loop.run_in_executor(None, read_line)
            if not line:
                break
            if not line.strip():
                continue
            task = asyncio.create_task(self._handle_line(line))
            pending.add(task)
            task.add_done_callback(pending.discard)
        if pending:
            await asyncio.gather(*pending)


def _write_stdout(message: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(message, ensure_ascii=False) + "\n")
    sys.stdout.flush()
