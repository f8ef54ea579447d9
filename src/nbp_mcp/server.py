"""NBP Exchange MCP server using FastMCP.

Two ways in, one workflow:

- OAuth path: the FastMCP endpoint below. Callers are identified by the
  email claim of their WorkOS AuthKit access token.
- API-key path: ``POST /api/mcp`` (see :mod:`nbp_mcp.api_key_handler`),
  mounted on the same app as a custom route.

Both resolve a per-user :class:`ToolDispatcher` from the shared LRU cache and
let it validate, charge and answer.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Annotated, Any

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.server.dependencies import get_access_token
from fastmcp.tools.tool import ToolResult
from mcp.types import TextContent
from pydantic import Field
from starlette.requests import Request
from starlette.responses import Response

from nbp_mcp.api.client import NBPClient
from nbp_mcp.api_key_handler import handle_api_key_request
from nbp_mcp.config import Settings, get_settings
from nbp_mcp.consumption import LedgerError
from nbp_mcp.db.store import LedgerStore
from nbp_mcp.dispatcher import ToolDispatcher
from nbp_mcp.dispatcher_cache import DispatcherCache
from nbp_mcp.instructions import SERVER_INSTRUCTIONS
from nbp_mcp.messages import LEDGER_FAILURE_MESSAGE, format_purchase_required_error
from nbp_mcp.tools.definitions import (
    CURRENCY_CODE_SCHEMA,
    END_DATE_DESCRIPTION,
    GOLD_DATE_DESCRIPTION,
    RATE_DATE_DESCRIPTION,
    START_DATE_DESCRIPTION,
    TOOL_SPECS,
)
from nbp_mcp.utils.constants import DATE_PATTERN, SUPPORTED_CURRENCIES

logger = logging.getLogger(__name__)

API_KEY_ROUTE = "/api/mcp"

# Initialize FastMCP server (don't load settings yet - wait until runtime)
mcp = FastMCP("nbp-exchange-mcp", instructions=SERVER_INSTRUCTIONS)


# ---------------------------------------------------------------------------
# Runtime state (built lazily, on first use)
# ---------------------------------------------------------------------------


@dataclass
class ServerRuntime:
    """Process-wide collaborators shared by both authentication paths."""

    settings: Settings
    store: LedgerStore
    api: NBPClient
    cache: DispatcherCache = field(default_factory=DispatcherCache)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServerRuntime":
        return cls(
            settings=settings,
            store=LedgerStore(settings.database_url),
            api=NBPClient(settings.nbp_api_url, settings.nbp_timeout_seconds),
            cache=DispatcherCache(settings.dispatcher_cache_size),
        )

    def build_dispatcher(self, user_id: str, email: str) -> ToolDispatcher:
        return ToolDispatcher(self.store, self.api, user_id, email, self.settings)


_runtime: ServerRuntime | None = None


def get_runtime() -> ServerRuntime:
    global _runtime
    if _runtime is None:
        _runtime = ServerRuntime.from_settings(get_settings())
    return _runtime


# ---------------------------------------------------------------------------
# OAuth identity
# ---------------------------------------------------------------------------


def _get_current_email() -> str | None:
    """Email of the OAuth caller, or None when unauthenticated.

    The email comes from the AuthKit userinfo response that
    ``WorkOSTokenVerifier`` stores in the token claims.
    """
    token = get_access_token()
    if token is None:
        return None
    email = (getattr(token, "claims", None) or {}).get("email")
    return email if isinstance(email, str) and email else None


async def _resolve_dispatcher() -> ToolDispatcher:
    """Dispatcher for the OAuth caller; only ledger account holders get one."""
    runtime = get_runtime()
    email = _get_current_email()
    if email is None:
        raise ToolError("Authentication required. Sign in to use this tool.")

    user = await runtime.store.get_user_by_email(email)
    if user is None:
        logger.info("OAuth caller %s has no token account.", email)
        raise ToolError(format_purchase_required_error(email, runtime.settings.purchase_url))

    return runtime.cache.get_or_create(
        user.user_id, lambda: runtime.build_dispatcher(user.user_id, user.email)
    )


async def _run_tool(name: str, **arguments: Any) -> ToolResult:
    """Dispatch one call and translate the outcome for FastMCP."""
    dispatcher = await _resolve_dispatcher()
    # Omitted optionals arrive as None; drop them so both paths see the same arguments.
    arguments = {k: v for k, v in arguments.items() if v is not None}
    try:
        outcome = await dispatcher.call_tool(name, arguments)
    except LedgerError as e:
        raise ToolError(LEDGER_FAILURE_MESSAGE) from e

    if outcome.is_error:
        raise ToolError(outcome.text)
    return ToolResult(
        content=[TextContent(type="text", text=outcome.text)],
        structured_content=outcome.structured,
    )


# ---------------------------------------------------------------------------
# Tools (schemas advertised from the shared definitions; the dispatcher validates)
# ---------------------------------------------------------------------------

CurrencyCodeArg = Annotated[
    str,
    Field(
        description=CURRENCY_CODE_SCHEMA["description"],
        json_schema_extra={"enum": list(SUPPORTED_CURRENCIES)},
    ),
]


def _date_arg(description: str) -> Any:
    return Field(description=description, json_schema_extra={"pattern": DATE_PATTERN})


_rate = TOOL_SPECS["getCurrencyRate"]
_gold = TOOL_SPECS["getGoldPrice"]
_history = TOOL_SPECS["getCurrencyHistory"]


@mcp.tool(
    name=_rate.name,
    title=_rate.title,
    description=_rate.description,
    output_schema=_rate.output_schema,
)
async def get_currency_rate(
    currencyCode: CurrencyCodeArg,  # noqa: N803
    date: Annotated[str | None, _date_arg(RATE_DATE_DESCRIPTION)] = None,
) -> ToolResult:
    return await _run_tool(_rate.name, currencyCode=currencyCode, date=date)


@mcp.tool(
    name=_gold.name,
    title=_gold.title,
    description=_gold.description,
    output_schema=_gold.output_schema,
)
async def get_gold_price(
    date: Annotated[str | None, _date_arg(GOLD_DATE_DESCRIPTION)] = None,
) -> ToolResult:
    return await _run_tool(_gold.name, date=date)


@mcp.tool(
    name=_history.name,
    title=_history.title,
    description=_history.description,
    output_schema=_history.output_schema,
)
async def get_currency_history(
    currencyCode: CurrencyCodeArg,  # noqa: N803
    startDate: Annotated[str, _date_arg(START_DATE_DESCRIPTION)],  # noqa: N803
    endDate: Annotated[str, _date_arg(END_DATE_DESCRIPTION)],  # noqa: N803
) -> ToolResult:
    return await _run_tool(
        _history.name, currencyCode=currencyCode, startDate=startDate, endDate=endDate
    )


# ---------------------------------------------------------------------------
# API-key path
# ---------------------------------------------------------------------------


@mcp.custom_route(API_KEY_ROUTE, methods=["POST"])
async def api_key_mcp(request: Request) -> Response:
    runtime = get_runtime()
    return await handle_api_key_request(
        request, runtime.store, runtime.cache, runtime.build_dispatcher
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def _build_auth(settings: Settings) -> Any:
    """WorkOS AuthKit provider, or None to serve without OAuth (local dev)."""
    if not settings.workos_authkit_domain:
        logger.warning("WORKOS_AUTHKIT_DOMAIN not set; OAuth path is unauthenticated.")
        return None
    from fastmcp.server.auth.providers.workos import AuthKitProvider, WorkOSTokenVerifier

    # AuthKit JWTs carry no email claim; the userinfo verifier fills it in.
    return AuthKitProvider(
        authkit_domain=settings.workos_authkit_domain,
        base_url=settings.public_base_url,
        token_verifier=WorkOSTokenVerifier(authkit_domain=settings.workos_authkit_domain),
    )


async def _prepare_database(store: LedgerStore) -> None:
    await store.create_all()
    # Release connections bound to this event loop before the server starts its own.
    await store.dispose()


def main() -> None:
    """Main entry point for the server."""
    runtime = get_runtime()
    settings = runtime.settings
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    mcp.auth = _build_auth(settings)
    asyncio.run(_prepare_database(runtime.store))
    logger.info("Starting %s on %s:%d.", settings.mcp_server_name, settings.host, settings.port)
    mcp.run(transport="http", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
