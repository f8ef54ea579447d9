"""Tests for the FastMCP (OAuth) path and its parity with the API-key path."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from fastmcp import Client
from fastmcp.server.auth import AccessToken
from fastmcp.server.auth.providers.workos import WorkOSTokenVerifier
from mcp.types import CallToolResult

from nbp_mcp import server
from nbp_mcp.api_key_handler import handle_jsonrpc
from nbp_mcp.config import Settings
from nbp_mcp.consumption import LedgerUnavailableError
from nbp_mcp.db.store import LedgerStore
from nbp_mcp.dispatcher_cache import DispatcherCache
from nbp_mcp.messages import LEDGER_FAILURE_MESSAGE
from nbp_mcp.server import ServerRuntime
from nbp_mcp.tools.definitions import TOOL_SPECS
from nbp_mcp.utils.constants import SUPPORTED_CURRENCIES


@pytest.fixture
def runtime(store, nbp_api, settings, monkeypatch) -> ServerRuntime:
    """Point the server at the test ledger and NBP double."""
    rt = ServerRuntime(settings=settings, store=store, api=nbp_api, cache=DispatcherCache())
    monkeypatch.setattr(server, "_runtime", rt)
    return rt


def _sign_in(monkeypatch, email: str | None) -> None:
    monkeypatch.setattr(server, "_get_current_email", lambda: email)


async def _call_oauth(name: str, arguments: dict) -> CallToolResult:
    async with Client(server.mcp) as client:
        return await client.call_tool_mcp(name, arguments)


async def _api_key_response(runtime: ServerRuntime, user, name: str, arguments: dict) -> dict:
    message = {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": name, "arguments": arguments}}
    return await handle_jsonrpc(message, runtime.build_dispatcher(user.user_id, user.email))


async def _call_api_key(runtime: ServerRuntime, user, name: str, arguments: dict) -> CallToolResult:
    response = await _api_key_response(runtime, user, name, arguments)
    return CallToolResult.model_validate(response["result"])


async def _call_api_key_error(runtime: ServerRuntime, user, name: str, arguments: dict) -> dict:
    response = await _api_key_response(runtime, user, name, arguments)
    return response["error"]


def _text(result: CallToolResult) -> str:
    return result.content[0].text


# ---------------------------------------------------------------------------
# Tool listing
# ---------------------------------------------------------------------------


class TestToolListing:
    @pytest.mark.asyncio
    async def test_same_tools_on_both_paths(self) -> None:
        async with Client(server.mcp) as client:
            tools = {t.name: t for t in await client.list_tools()}

        assert set(tools) == set(TOOL_SPECS)
        for name, spec in TOOL_SPECS.items():
            tool = tools[name]
            assert tool.title == spec.title
            assert tool.description == spec.description
            assert set(tool.inputSchema.get("required", [])) == set(spec.input_schema["required"])
            assert set(tool.inputSchema["properties"]) == set(spec.input_schema["properties"])
            assert set(tool.outputSchema["properties"]) == set(spec.output_schema["properties"])

    @pytest.mark.asyncio
    async def test_currency_enum_advertised(self) -> None:
        async with Client(server.mcp) as client:
            tools = {t.name: t for t in await client.list_tools()}
        schema = tools["getCurrencyRate"].inputSchema["properties"]["currencyCode"]
        assert schema["enum"] == list(SUPPORTED_CURRENCIES)


# ---------------------------------------------------------------------------
# Parity
# ---------------------------------------------------------------------------


class TestParity:
    @pytest.mark.asyncio
    async def test_success_identical(self, runtime, store, monkeypatch) -> None:
        user = await store.create_user("p1@example.com", balance=5)
        _sign_in(monkeypatch, user.email)
        args = {"currencyCode": "USD", "date": "2025-10-01"}

        oauth = await _call_oauth("getCurrencyRate", args)
        api_key = await _call_api_key(runtime, user, "getCurrencyRate", args)

        assert oauth.isError is False
        assert api_key.isError is False
        assert _text(oauth) == _text(api_key)
        assert oauth.structuredContent == api_key.structuredContent
        assert (await store.get_user(user.user_id)).current_token_balance == 3

    @pytest.mark.asyncio
    async def test_optional_argument_omitted(self, runtime, store, monkeypatch, nbp_api) -> None:
        user = await store.create_user("p2@example.com", balance=1)
        _sign_in(monkeypatch, user.email)

        result = await _call_oauth("getGoldPrice", {})

        assert result.isError is False
        nbp_api.get_gold_price.assert_awaited_once_with(None)
        actions = await store.list_actions(user.user_id)
        assert actions[0].parameters == "{}"

    @pytest.mark.asyncio
    async def test_range_rejection_identical(self, runtime, store, monkeypatch) -> None:
        user = await store.create_user("p3@example.com", balance=5)
        _sign_in(monkeypatch, user.email)
        args = {"currencyCode": "USD", "startDate": "2025-01-01", "endDate": "2025-07-20"}

        oauth = await _call_oauth("getCurrencyHistory", args)
        api_key = await _call_api_key(runtime, user, "getCurrencyHistory", args)

        assert oauth.isError is True
        assert api_key.isError is True
        assert _text(oauth) == _text(api_key)
        assert (await store.get_user(user.user_id)).current_token_balance == 5
        assert await store.list_actions(user.user_id) == []

    @pytest.mark.asyncio
    async def test_insufficient_identical(self, runtime, store, monkeypatch) -> None:
        user = await store.create_user("p4@example.com", balance=0)
        _sign_in(monkeypatch, user.email)

        oauth = await _call_oauth("getGoldPrice", {})
        api_key = await _call_api_key(runtime, user, "getGoldPrice", {})

        assert oauth.isError is api_key.isError is True
        assert _text(oauth) == _text(api_key)
        assert "need 1, have 0" in _text(oauth)

    @pytest.mark.asyncio
    async def test_closed_account_identical(self, runtime, store, monkeypatch) -> None:
        user = await store.create_user("p5@example.com", balance=9)
        await store.soft_delete_user(user.user_id)
        _sign_in(monkeypatch, user.email)

        oauth = await _call_oauth("getGoldPrice", {})
        api_key = await _call_api_key(runtime, user, "getGoldPrice", {})

        assert oauth.isError is api_key.isError is True
        assert _text(oauth) == _text(api_key)

    @pytest.mark.asyncio
    async def test_invalid_currency_rejected_on_both(self, runtime, store, monkeypatch) -> None:
        user = await store.create_user("p6@example.com", balance=5)
        _sign_in(monkeypatch, user.email)

        oauth = await _call_oauth("getCurrencyRate", {"currencyCode": "XXX"})
        api_key = await _call_api_key(runtime, user, "getCurrencyRate", {"currencyCode": "XXX"})

        assert oauth.isError is True
        assert api_key.isError is True
        assert (await store.get_user(user.user_id)).current_token_balance == 5

    @pytest.mark.asyncio
    async def test_unknown_tool_same_text(self, runtime, store, monkeypatch) -> None:
        user = await store.create_user("p9@example.com", balance=5)
        _sign_in(monkeypatch, user.email)

        oauth = await _call_oauth("getSilverPrice", {})
        error = await _call_api_key_error(runtime, user, "getSilverPrice", {})

        assert oauth.isError is True
        assert _text(oauth) == "Unknown tool: getSilverPrice"
        assert error == {"code": -32601, "message": "Unknown tool: getSilverPrice"}
        assert (await store.get_user(user.user_id)).current_token_balance == 5

    @pytest.mark.asyncio
    async def test_ledger_failure_same_text(self, runtime, store, monkeypatch) -> None:
        user = await store.create_user("p10@example.com", balance=5)
        _sign_in(monkeypatch, user.email)
        failing = AsyncMock(side_effect=LedgerUnavailableError("Ledger unavailable after 3 attempts"))

        with patch("nbp_mcp.dispatcher.consume_tokens_with_retry", failing):
            oauth = await _call_oauth("getGoldPrice", {})
            error = await _call_api_key_error(runtime, user, "getGoldPrice", {})

        assert oauth.isError is True
        assert _text(oauth) == LEDGER_FAILURE_MESSAGE
        assert error == {"code": -32603, "message": LEDGER_FAILURE_MESSAGE}
        assert (await store.get_user(user.user_id)).current_token_balance == 5


# ---------------------------------------------------------------------------
# OAuth-only behavior
# ---------------------------------------------------------------------------


class TestOAuthPath:
    @pytest.mark.asyncio
    async def test_unauthenticated(self, runtime, monkeypatch) -> None:
        _sign_in(monkeypatch, None)
        result = await _call_oauth("getGoldPrice", {})
        assert result.isError is True
        assert "Authentication required" in _text(result)

    @pytest.mark.asyncio
    async def test_no_ledger_account(self, runtime, monkeypatch) -> None:
        _sign_in(monkeypatch, "stranger@example.com")
        result = await _call_oauth("getGoldPrice", {})
        assert result.isError is True
        assert "No token account exists for stranger@example.com" in _text(result)

    @pytest.mark.asyncio
    async def test_ledger_failure(self, runtime, store, monkeypatch) -> None:
        user = await store.create_user("p7@example.com", balance=5)
        _sign_in(monkeypatch, user.email)
        failing = AsyncMock(side_effect=LedgerUnavailableError("Ledger unavailable after 3 attempts"))

        with patch("nbp_mcp.dispatcher.consume_tokens_with_retry", failing):
            result = await _call_oauth("getGoldPrice", {})

        assert result.isError is True
        assert _text(result) == "Internal error: token usage could not be recorded"
        assert (await store.get_user(user.user_id)).current_token_balance == 5

    @pytest.mark.asyncio
    async def test_dispatcher_cached_per_user(self, runtime, store, monkeypatch) -> None:
        user = await store.create_user("p8@example.com", balance=5)
        _sign_in(monkeypatch, user.email)

        await _call_oauth("getGoldPrice", {})
        await _call_oauth("getGoldPrice", {})

        assert user.user_id in runtime.cache
        assert runtime.cache.size == 1


# ---------------------------------------------------------------------------
# OAuth identity
# ---------------------------------------------------------------------------

AUTHKIT_DOMAIN = "https://example.authkit.app"

USERINFO = {
    "sub": "user_01HX",
    "email": "oauth@example.com",
    "email_verified": True,
    "name": "Ada Nowak",
    "given_name": "Ada",
    "family_name": "Nowak",
}


def _access_token(claims: dict) -> AccessToken:
    return AccessToken(token="opaque-token", client_id="client_01HX", scopes=[], claims=claims)


class TestOAuthIdentity:
    def test_authkit_uses_userinfo_verifier(self) -> None:
        provider = server._build_auth(Settings(_env_file=None, workos_authkit_domain=AUTHKIT_DOMAIN))
        assert isinstance(provider.token_verifier, WorkOSTokenVerifier)
        assert provider.token_verifier.authkit_domain == AUTHKIT_DOMAIN

    def test_email_from_claims(self, monkeypatch) -> None:
        monkeypatch.setattr(server, "get_access_token", lambda: _access_token(USERINFO))
        assert server._get_current_email() == "oauth@example.com"

    def test_jwt_claims_without_email(self, monkeypatch) -> None:
        claims = {"sub": "user_01HX", "iss": AUTHKIT_DOMAIN, "aud": "client_01HX", "sid": "session_01HX"}
        monkeypatch.setattr(server, "get_access_token", lambda: _access_token(claims))
        assert server._get_current_email() is None

    def test_no_token(self, monkeypatch) -> None:
        monkeypatch.setattr(server, "get_access_token", lambda: None)
        assert server._get_current_email() is None

    @pytest.mark.asyncio
    async def test_verified_token_yields_email(self, monkeypatch) -> None:
        verifier = WorkOSTokenVerifier(authkit_domain=AUTHKIT_DOMAIN)
        userinfo = AsyncMock(return_value=httpx.Response(200, json=USERINFO))

        with patch.object(httpx.AsyncClient, "get", userinfo):
            token = await verifier.verify_token("opaque-token")

        assert userinfo.await_args.args[0] == f"{AUTHKIT_DOMAIN}/oauth2/userinfo"
        monkeypatch.setattr(server, "get_access_token", lambda: token)
        assert server._get_current_email() == "oauth@example.com"

    @pytest.mark.asyncio
    async def test_tool_call_charges_token_owner(self, runtime, store, monkeypatch) -> None:
        user = await store.create_user("oauth@example.com", balance=2)
        monkeypatch.setattr(server, "get_access_token", lambda: _access_token(USERINFO))

        result = await _call_oauth("getGoldPrice", {})

        assert result.isError is False
        assert (await store.get_user(user.user_id)).current_token_balance == 1


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def test_api_key_route_registered() -> None:
    paths = [getattr(route, "path", None) for route in server.mcp._additional_http_routes]
    assert server.API_KEY_ROUTE in paths


def test_auth_disabled_without_authkit_domain(settings) -> None:
    assert server._build_auth(settings) is None


def test_build_dispatcher_uses_runtime_collaborators(nbp_api, settings) -> None:
    store = MagicMock(spec=LedgerStore)
    rt = ServerRuntime(settings=settings, store=store, api=nbp_api)
    dispatcher = rt.build_dispatcher("u1", "u1@example.com")
    assert dispatcher.store is store
    assert dispatcher.api is nbp_api
    assert dispatcher.settings is settings
    assert dispatcher.email == "u1@example.com"
