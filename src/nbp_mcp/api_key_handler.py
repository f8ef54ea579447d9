"""API-key authentication path: a minimal JSON-RPC 2.0 MCP endpoint.

For clients that cannot run the OAuth flow (IDEs, scripts). Supports the
fixed method set ``initialize``, ``ping``, ``tools/list`` and ``tools/call``;
every tool call goes through the same :class:`ToolDispatcher` as the OAuth
path.

Error codes:
    -32700 parse error        body is not JSON
    -32600 invalid request    not an object, wrong ``jsonrpc``, bad ``method``/``id``
    -32601 method not found   unknown method, or unknown tool name
    -32602 invalid params     ``params``/``name``/``arguments`` of the wrong shape
    -32603 internal error     the ledger could not record a charge, or an
                              unexpected server fault
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from mcp.types import Implementation, InitializeResult, ServerCapabilities, ToolsCapability
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from nbp_mcp.auth import validate_api_key
from nbp_mcp.consumption import LedgerError
from nbp_mcp.db.store import LedgerStore
from nbp_mcp.dispatcher import ToolDispatcher
from nbp_mcp.dispatcher_cache import DispatcherCache
from nbp_mcp.instructions import SERVER_INSTRUCTIONS
from nbp_mcp.messages import LEDGER_FAILURE_MESSAGE
from nbp_mcp.tools.definitions import ToolNotFoundError, list_tool_definitions
from nbp_mcp.utils.constants import (
    JSONRPC_VERSION,
    PROTOCOL_VERSION,
    SERVER_VERSION,
    JsonRpcError,
)

logger = logging.getLogger(__name__)

RequestId = str | int | None


class _RpcError(Exception):
    def __init__(self, code: JsonRpcError, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def _result(request_id: RequestId, result: dict[str, Any]) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def _error(request_id: RequestId, code: JsonRpcError, message: str) -> dict[str, Any]:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "error": {"code": int(code), "message": message},
    }


def parse_error(detail: str) -> dict[str, Any]:
    return _error(None, JsonRpcError.PARSE_ERROR, f"Parse error: {detail}")


# ---------------------------------------------------------------------------
# Method handlers
# ---------------------------------------------------------------------------


async def _initialize(params: dict[str, Any], dispatcher: ToolDispatcher) -> dict[str, Any]:
    result = InitializeResult(
        protocolVersion=PROTOCOL_VERSION,
        capabilities=ServerCapabilities(tools=ToolsCapability()),
        serverInfo=Implementation(
            name=dispatcher.settings.mcp_server_name, version=SERVER_VERSION
        ),
        instructions=SERVER_INSTRUCTIONS,
    )
    return result.model_dump(by_alias=True, exclude_none=True)


async def _ping(params: dict[str, Any], dispatcher: ToolDispatcher) -> dict[str, Any]:
    return {}


async def _tools_list(params: dict[str, Any], dispatcher: ToolDispatcher) -> dict[str, Any]:
    return {
        "tools": [
            tool.model_dump(by_alias=True, exclude_none=True)
            for tool in list_tool_definitions()
        ]
    }


async def _tools_call(params: dict[str, Any], dispatcher: ToolDispatcher) -> dict[str, Any]:
    name = params.get("name")
    if not isinstance(name, str) or not name:
        raise _RpcError(JsonRpcError.INVALID_PARAMS, "Invalid params: name is required")
    arguments = params.get("arguments")
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise _RpcError(JsonRpcError.INVALID_PARAMS, "Invalid params: arguments must be an object")

    try:
        outcome = await dispatcher.call_tool(name, arguments)
    except ToolNotFoundError as e:
        raise _RpcError(JsonRpcError.METHOD_NOT_FOUND, str(e)) from e
    except LedgerError as e:
        raise _RpcError(JsonRpcError.INTERNAL_ERROR, LEDGER_FAILURE_MESSAGE) from e

    return outcome.to_call_tool_result().model_dump(by_alias=True, exclude_none=True)


_METHODS: dict[str, Callable[[dict[str, Any], ToolDispatcher], Awaitable[dict[str, Any]]]] = {
    "initialize": _initialize,
    "ping": _ping,
    "tools/list": _tools_list,
    "tools/call": _tools_call,
}


async def handle_jsonrpc(message: Any, dispatcher: ToolDispatcher) -> dict[str, Any] | None:
    """Handle one decoded JSON-RPC message.

    Returns the response envelope, or None for notifications (no ``id``),
    which are acknowledged without being executed.
    """
    if not isinstance(message, dict):
        return _error(None, JsonRpcError.INVALID_REQUEST, "Invalid Request: expected a JSON object")

    # Notifications (no id) never get a reply, not even an error.
    if "id" not in message:
        logger.debug("Ignoring notification %r.", message.get("method"))
        return None

    request_id = message.get("id")
    if isinstance(request_id, bool) or not isinstance(request_id, (str, int, type(None))):
        return _error(None, JsonRpcError.INVALID_REQUEST, "Invalid Request: id must be a string or number")
    if message.get("jsonrpc") != JSONRPC_VERSION:
        return _error(request_id, JsonRpcError.INVALID_REQUEST, "Invalid Request: jsonrpc must be '2.0'")
    method = message.get("method")
    if not isinstance(method, str) or not method:
        return _error(request_id, JsonRpcError.INVALID_REQUEST, "Invalid Request: method must be a string")

    handler = _METHODS.get(method)
    if handler is None:
        return _error(request_id, JsonRpcError.METHOD_NOT_FOUND, f"Method not found: {method}")

    params = message.get("params")
    if params is None:
        params = {}
    if not isinstance(params, dict):
        return _error(request_id, JsonRpcError.INVALID_PARAMS, "Invalid params: params must be an object")

    try:
        return _result(request_id, await handler(params, dispatcher))
    except _RpcError as e:
        return _error(request_id, e.code, e.message)
    except Exception:
        logger.exception("Unhandled error in %s (user %s).", method, dispatcher.user_id)
        return _error(request_id, JsonRpcError.INTERNAL_ERROR, "Internal error")


# ---------------------------------------------------------------------------
# HTTP endpoint
# ---------------------------------------------------------------------------


def _bearer_token(request: Request) -> str | None:
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def handle_api_key_request(
    request: Request,
    store: LedgerStore,
    cache: DispatcherCache,
    build_dispatcher: Callable[[str, str], ToolDispatcher],
) -> Response:
    """Authenticate by API key, then answer one JSON-RPC message.

    401 for a missing or unusable key and 404 when the key's owner no longer
    exists. Closed accounts are let through so tool calls report the
    account-closed error, exactly as on the OAuth path.
    """
    api_key = _bearer_token(request)
    if api_key is None:
        return JSONResponse({"error": "Missing Authorization header"}, status_code=401)

    user_id = await validate_api_key(store, api_key)
    if user_id is None:
        return JSONResponse({"error": "Invalid or expired API key"}, status_code=401)

    user = await store.get_user(user_id)
    if user is None:
        logger.info("API key for unknown user %s.", user_id)
        return JSONResponse({"error": "User not found"}, status_code=404)

    dispatcher = cache.get_or_create(user.user_id, lambda: build_dispatcher(user.user_id, user.email))

    try:
        message = json.loads(await request.body())
    except ValueError as e:
        return JSONResponse(parse_error(str(e)))

    response = await handle_jsonrpc(message, dispatcher)
    if response is None:
        return Response(status_code=202)
    return JSONResponse(response)
